"""
Issue synthesis for one page.

Sources, in insertion order:
1. analyzer findings (structured by issue type, freeform by keyword heuristic)
2. issues derived directly from page signals
3. failing checks from categories not already covered by (2)

Issues are de-duplicated on normalized text; the first occurrence wins.
"""

import logging
import re
from typing import Iterable

from siteaudit.config import settings
from siteaudit.models.audit import IssuePriority
from siteaudit.schemas.audit import (
    Category,
    CheckStatus,
    FreeformFinding,
    Issue,
    IssueType,
    NarrativeAnalysis,
    StructuredFinding,
)
from siteaudit.schemas.signals import PageSignals
from siteaudit.services import taxonomy
from siteaudit.services.rule_engine import RuleThresholds

logger = logging.getLogger(__name__)

# Fallback for legacy free-text findings; first match wins.
KEYWORD_RULES: tuple[tuple[re.Pattern, IssuePriority], ...] = (
    (re.compile(r"broken|error|5xx|4xx|404|timeout|redirect loop", re.I), IssuePriority.CRITICAL),
    (
        re.compile(
            r"noindex|robots|canonical|duplicate content|multiple h1|missing h1|missing meta description",
            re.I,
        ),
        IssuePriority.HIGH,
    ),
    (
        re.compile(r"missing alt|title too (long|short)|description too (long|short)|slow|large", re.I),
        IssuePriority.MEDIUM,
    ),
)

STRUCTURED_PRIORITIES: dict[IssueType, tuple[IssuePriority, str]] = {
    IssueType.BROKEN_LINK: (IssuePriority.CRITICAL, "Broken links on page"),
    IssueType.SERVER_ERROR: (IssuePriority.CRITICAL, "Server error response"),
    IssueType.REDIRECT_LOOP: (IssuePriority.CRITICAL, "Redirect loop detected"),
    IssueType.NOINDEX: (IssuePriority.HIGH, "Page is marked noindex"),
    IssueType.ROBOTS_BLOCKED: (IssuePriority.HIGH, "Page is blocked by robots.txt"),
    IssueType.CANONICAL: (IssuePriority.HIGH, "Canonical tag problem"),
    IssueType.DUPLICATE_CONTENT: (IssuePriority.HIGH, "Duplicate content detected"),
    IssueType.MISSING_H1: (IssuePriority.HIGH, "Missing H1 on page"),
    IssueType.MULTIPLE_H1: (IssuePriority.HIGH, "Multiple H1 tags on page"),
    IssueType.MISSING_META_DESCRIPTION: (IssuePriority.HIGH, "Missing meta description"),
    IssueType.MISSING_ALT: (IssuePriority.MEDIUM, "Images missing alt text"),
    IssueType.TITLE_LENGTH: (IssuePriority.MEDIUM, "Title length out of range"),
    IssueType.DESCRIPTION_LENGTH: (IssuePriority.MEDIUM, "Meta description length out of range"),
    IssueType.SLOW_PAGE: (IssuePriority.MEDIUM, "Slow page load"),
    IssueType.LARGE_PAGE: (IssuePriority.MEDIUM, "Large page size"),
    IssueType.OTHER: (IssuePriority.LOW, "Other SEO issue"),
}

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_issue_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.strip()).lower()


def classify_issue_text(text: str) -> IssuePriority:
    """Priority for an unstructured finding, by keyword."""
    for pattern, priority in KEYWORD_RULES:
        if pattern.search(text):
            return priority
    return IssuePriority.LOW


def check_priority(category: str, note: str | None) -> IssuePriority:
    if category == taxonomy.LINKS and note and "broken" in note.lower():
        return taxonomy.BROKEN_LINK_PRIORITY
    return taxonomy.CATEGORY_PRIORITIES.get(category, IssuePriority.LOW)


class IssueList:
    """Insertion-ordered issue collection keyed on normalized text."""

    def __init__(self):
        self._issues: dict[str, Issue] = {}

    def add(self, text: str, priority: IssuePriority) -> bool:
        key = normalize_issue_text(text)
        if not key or key in self._issues:
            return False
        self._issues[key] = Issue(text=text.strip(), priority=priority)
        return True

    def extend(self, issues: Iterable[Issue]):
        for issue in issues:
            self.add(issue.text, issue.priority)

    def to_list(self) -> list[Issue]:
        return list(self._issues.values())

    def __len__(self) -> int:
        return len(self._issues)


def analyzer_issues(analysis: NarrativeAnalysis | None) -> list[Issue]:
    if analysis is None:
        return []
    issues = []
    for finding in analysis.findings:
        if isinstance(finding, StructuredFinding):
            priority, default_text = STRUCTURED_PRIORITIES[finding.issue_type]
            issues.append(Issue(text=finding.text or default_text, priority=priority))
        elif isinstance(finding, FreeformFinding):
            issues.append(Issue(text=finding.text, priority=classify_issue_text(finding.text)))
    return issues


def signal_issues(
    signals: PageSignals,
    thresholds: RuleThresholds | None = None,
    alt_high_threshold: int | None = None,
) -> list[Issue]:
    """Issues read straight off the page's signals."""
    t = thresholds or RuleThresholds.from_settings()
    if alt_high_threshold is None:
        alt_high_threshold = settings.IMAGES_ALT_HIGH_THRESHOLD
    issues = []

    h1_count = signals.h1_count
    if h1_count == 0:
        issues.append(Issue(text="Missing H1 on page", priority=IssuePriority.HIGH))
    elif h1_count > 1:
        issues.append(Issue(text=f"Multiple H1 tags on page ({h1_count})", priority=IssuePriority.HIGH))

    desc_len = len(signals.meta_description)
    if desc_len == 0:
        issues.append(Issue(text="Missing meta description", priority=IssuePriority.HIGH))
    elif desc_len < t.meta_description_min_length:
        issues.append(Issue(text=f"Meta description too short ({desc_len} chars)", priority=IssuePriority.MEDIUM))
    elif desc_len > t.meta_description_max_length:
        issues.append(Issue(text=f"Meta description too long ({desc_len} chars)", priority=IssuePriority.MEDIUM))

    title_len = len(signals.title)
    if title_len == 0:
        issues.append(Issue(text="Missing title tag", priority=IssuePriority.LOW))
    elif title_len < t.title_min_length:
        issues.append(Issue(text=f"Title too short ({title_len} chars)", priority=IssuePriority.LOW))
    elif title_len > t.title_max_length:
        issues.append(Issue(text=f"Title too long ({title_len} chars)", priority=IssuePriority.LOW))

    missing_alt = signals.images_missing_alt
    if missing_alt:
        noun = "image" if missing_alt == 1 else "images"
        issues.append(Issue(
            text=f"{missing_alt} {noun} missing alt text",
            priority=IssuePriority.HIGH if missing_alt >= alt_high_threshold else IssuePriority.MEDIUM,
        ))

    return issues


def check_issues(categories: list[Category]) -> list[Issue]:
    """Failing checks outside the categories signal issues already cover."""
    issues = []
    for category in categories:
        if category.title in taxonomy.SUPPRESSED_CATEGORIES:
            continue
        for check in category.items:
            if check.status != CheckStatus.FAIL:
                continue
            text = check.note or f"{check.label} check failed"
            issues.append(Issue(text=text, priority=check_priority(category.title, check.note)))
    return issues


def synthesize_issues(
    signals: PageSignals,
    categories: list[Category],
    analysis: NarrativeAnalysis | None = None,
    thresholds: RuleThresholds | None = None,
) -> list[Issue]:
    """Unified, de-duplicated issue list for one page."""
    issues = IssueList()
    issues.extend(analyzer_issues(analysis))
    issues.extend(signal_issues(signals, thresholds))
    issues.extend(check_issues(categories))
    logger.debug(f"Synthesized {len(issues)} issues for {signals.url}")
    return issues.to_list()


def count_by_priority(issues: Iterable[Issue]) -> dict[IssuePriority, int]:
    counts = {priority: 0 for priority in IssuePriority}
    for issue in issues:
        counts[issue.priority] += 1
    return counts
