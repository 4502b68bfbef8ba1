"""
Builds per-page results and the final job snapshot.
"""

import logging
from typing import Sequence

from siteaudit.core.exceptions import AnalysisFailure, FetchFailure
from siteaudit.models.audit import IssuePriority
from siteaudit.schemas.audit import (
    AuditJobRecord,
    Issue,
    NarrativeAnalysis,
    PageAuditResult,
)
from siteaudit.schemas.signals import PageSignals, SiteFacts
from siteaudit.services.issue_synthesizer import synthesize_issues
from siteaudit.services.rule_engine import RuleEngine
from siteaudit.services.scoring import ScoringPolicy, aggregate, page_score

logger = logging.getLogger(__name__)


def build_page_result(
    signals: PageSignals,
    analysis: NarrativeAnalysis | None = None,
    site: SiteFacts | None = None,
    engine: RuleEngine | None = None,
    policy: ScoringPolicy = ScoringPolicy.LENIENT,
) -> PageAuditResult:
    """
    Evaluate one page: signals -> checks -> issues -> score.

    Any exception raised while evaluating is re-raised as AnalysisFailure
    so the caller can record a degraded result and move on.
    """
    engine = engine or RuleEngine()
    try:
        evaluation = engine.evaluate(signals, site)
        issues = synthesize_issues(signals, evaluation.categories, analysis, engine.thresholds)
        score = page_score(evaluation.categories, policy)
    except Exception as e:
        raise AnalysisFailure(signals.url, str(e) or type(e).__name__) from e

    return PageAuditResult(
        url=signals.url,
        signals=signals,
        categories=evaluation.categories,
        issues=issues,
        recommendations=list(analysis.recommendations) if analysis else [],
        fail_count=evaluation.fail_count,
        per_page_score=score,
    )


def degraded_page_result(
    url: str,
    failure: FetchFailure | AnalysisFailure,
    signals: PageSignals | None = None,
    engine: RuleEngine | None = None,
) -> PageAuditResult:
    """Result for a page that could not be fetched or evaluated: every check unknown."""
    engine = engine or RuleEngine()
    if isinstance(failure, FetchFailure):
        text = f"Failed to fetch page: {failure.reason}"
    else:
        text = f"Failed to analyze page: {failure.reason}"

    evaluation = engine.evaluate_unknown(url, note=text)
    return PageAuditResult(
        url=url,
        signals=signals or PageSignals.empty(url),
        categories=evaluation.categories,
        issues=[Issue(text=text, priority=IssuePriority.CRITICAL)],
        fail_count=0,
        per_page_score=None,
        degraded=True,
        error=failure.reason,
    )


def build_report(
    job: AuditJobRecord,
    slots: Sequence[PageAuditResult | None],
    policy: ScoringPolicy = ScoringPolicy.LENIENT,
) -> AuditJobRecord:
    """
    Write pages (discovery order, unprocessed slots skipped) and a freshly
    computed summary onto the job.
    """
    job.pages = [page for page in slots if page is not None]
    job.summary = aggregate(job.pages, policy)
    logger.debug(
        f"Report for {job.id}: {len(job.pages)} pages, "
        f"{job.summary.total_issues} issues, overall {job.summary.overall_score}"
    )
    return job


def replace_page(
    job: AuditJobRecord,
    url: str,
    result: PageAuditResult,
    policy: ScoringPolicy = ScoringPolicy.LENIENT,
) -> AuditJobRecord:
    """Swap the result of the page listed under `url` wholesale and recompute the summary."""
    slots: list[PageAuditResult | None] = [
        result if page.url == url else page for page in job.pages
    ]
    return build_report(job, slots, policy)
