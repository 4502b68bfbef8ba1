"""
Score aggregation: check -> category -> section -> page -> site.

Every function here is pure. A score is an int in 0..100, or None when
there is nothing evaluated to score; None never counts as 0 in an average.
"""

from enum import Enum
from typing import Iterable, Mapping

from siteaudit.config import settings
from siteaudit.models.audit import IssuePriority
from siteaudit.schemas.audit import (
    AggregatedSummary,
    Category,
    CategoryTotals,
    PageAuditResult,
    Section,
)
from siteaudit.services import taxonomy


class ScoringPolicy(str, Enum):
    """How unknown checks weigh in a score.

    LENIENT: only the fail fraction counts, so unknown weighs like a pass.
    STRICT: only the pass fraction counts, so unknown weighs like a fail.
    """

    LENIENT = "lenient"
    STRICT = "strict"

    @classmethod
    def from_settings(cls) -> "ScoringPolicy":
        return cls(settings.AUDIT_SCORING_POLICY.lower())


def category_score(totals: CategoryTotals, policy: ScoringPolicy = ScoringPolicy.LENIENT) -> int | None:
    # Nothing evaluated (no checks, or only unknown ones) has no score.
    if totals.evaluated == 0:
        return None
    if policy == ScoringPolicy.STRICT:
        return round(totals.passed / totals.total * 100)
    return round(100 - totals.failed / totals.total * 100)


def category_totals(categories: Iterable[Category]) -> dict[str, CategoryTotals]:
    """Per-title totals; repeated titles are pooled."""
    totals: dict[str, CategoryTotals] = {}
    for category in categories:
        totals[category.title] = totals.get(category.title, CategoryTotals()) + category.totals()
    return totals


def merge_totals(*maps: Mapping[str, CategoryTotals]) -> dict[str, CategoryTotals]:
    merged: dict[str, CategoryTotals] = {}
    for totals in maps:
        for title, value in totals.items():
            merged[title] = merged.get(title, CategoryTotals()) + value
    return merged


def section_scores(
    totals: Mapping[str, CategoryTotals],
    policy: ScoringPolicy = ScoringPolicy.LENIENT,
) -> dict[Section, int | None]:
    """Score each section over the pooled counts of its categories."""
    scores: dict[Section, int | None] = {}
    for section, titles in taxonomy.SECTION_CATEGORIES.items():
        pooled = CategoryTotals()
        for title in titles:
            pooled = pooled + totals.get(title, CategoryTotals())
        scores[section] = category_score(pooled, policy)
    return scores


def overall_score(scores: Mapping[Section, int | None]) -> int | None:
    present = [score for score in scores.values() if score is not None]
    if not present:
        return None
    return round(sum(present) / len(present))


def page_score(categories: list[Category], policy: ScoringPolicy = ScoringPolicy.LENIENT) -> int | None:
    return overall_score(section_scores(category_totals(categories), policy))


def aggregate(
    pages: Iterable[PageAuditResult],
    policy: ScoringPolicy = ScoringPolicy.LENIENT,
) -> AggregatedSummary:
    """
    Cross-page summary.

    Section and overall scores come from the summed category totals,
    not from averaging per-page scores.
    """
    priority_counts = {priority: 0 for priority in IssuePriority}
    totals: dict[str, CategoryTotals] = {}
    pages_analyzed = 0
    pages_degraded = 0

    for page in pages:
        pages_analyzed += 1
        if page.degraded:
            pages_degraded += 1
        for issue in page.issues:
            priority_counts[issue.priority] += 1
        totals = merge_totals(totals, category_totals(page.categories))

    ordered_totals = {
        title: totals[title]
        for title in [*taxonomy.CATEGORY_ORDER, *sorted(set(totals) - set(taxonomy.CATEGORY_ORDER))]
        if title in totals
    }
    scores = section_scores(ordered_totals, policy)

    return AggregatedSummary(
        priority_counts=priority_counts,
        category_totals=ordered_totals,
        section_scores=scores,
        overall_score=overall_score(scores),
        total_issues=sum(priority_counts.values()),
        pages_analyzed=pages_analyzed,
        pages_degraded=pages_degraded,
    )
