"""
Audit schemas: checks, issues, page results, summaries and job records.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union
from urllib.parse import urlparse
from uuid import UUID

from pydantic import ConfigDict, Field, computed_field, field_validator

from siteaudit.models.audit import AuditStatus, AuditType, IssuePriority
from siteaudit.schemas.common import BaseSchema
from siteaudit.schemas.signals import PageSignals


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    UNKNOWN = "unknown"


class Section(str, Enum):
    TECHNICAL = "Technical"
    ON_PAGE = "On-Page"
    PERFORMANCE = "Performance"


class IssueType(str, Enum):
    """Issue kinds an upstream analyzer can report without free text."""

    BROKEN_LINK = "broken_link"
    SERVER_ERROR = "server_error"
    REDIRECT_LOOP = "redirect_loop"
    NOINDEX = "noindex"
    ROBOTS_BLOCKED = "robots_blocked"
    CANONICAL = "canonical"
    DUPLICATE_CONTENT = "duplicate_content"
    MISSING_H1 = "missing_h1"
    MULTIPLE_H1 = "multiple_h1"
    MISSING_META_DESCRIPTION = "missing_meta_description"
    MISSING_ALT = "missing_alt"
    TITLE_LENGTH = "title_length"
    DESCRIPTION_LENGTH = "description_length"
    SLOW_PAGE = "slow_page"
    LARGE_PAGE = "large_page"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Checks and categories
# ---------------------------------------------------------------------------

class Check(BaseSchema):
    """One pass/fail/unknown evaluation. Immutable once produced."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    category: str
    label: str
    status: CheckStatus
    note: str | None = None


class CategoryTotals(BaseSchema):
    passed: int = 0
    failed: int = 0
    unknown: int = 0

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.unknown

    @property
    def evaluated(self) -> int:
        return self.passed + self.failed

    def __add__(self, other: "CategoryTotals") -> "CategoryTotals":
        return CategoryTotals(
            passed=self.passed + other.passed,
            failed=self.failed + other.failed,
            unknown=self.unknown + other.unknown,
        )


class Category(BaseSchema):
    title: str
    items: list[Check] = Field(default_factory=list)

    @computed_field
    @property
    def fail_count(self) -> int:
        return sum(1 for check in self.items if check.status == CheckStatus.FAIL)

    def totals(self) -> CategoryTotals:
        return CategoryTotals(
            passed=sum(1 for check in self.items if check.status == CheckStatus.PASS),
            failed=self.fail_count,
            unknown=sum(1 for check in self.items if check.status == CheckStatus.UNKNOWN),
        )


class Issue(BaseSchema):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    text: str
    priority: IssuePriority


# ---------------------------------------------------------------------------
# Upstream analyzer findings
# ---------------------------------------------------------------------------

class StructuredFinding(BaseSchema):
    kind: Literal["structured"] = "structured"
    issue_type: IssueType
    text: str | None = None


class FreeformFinding(BaseSchema):
    kind: Literal["freeform"] = "freeform"
    text: str


AnalyzerFinding = Annotated[
    Union[StructuredFinding, FreeformFinding],
    Field(discriminator="kind"),
]


class NarrativeAnalysis(BaseSchema):
    """Per-page output of the narrative analyzer collaborator."""

    findings: list[AnalyzerFinding] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @classmethod
    def from_legacy(
        cls,
        critical_issues: list[str] | None = None,
        opportunities: list[str] | None = None,
        recommendations: list[str] | None = None,
    ) -> "NarrativeAnalysis":
        texts = [*(critical_issues or []), *(opportunities or [])]
        return cls(
            findings=[FreeformFinding(text=text) for text in texts if text and text.strip()],
            recommendations=[text for text in recommendations or [] if text],
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class PageAuditResult(BaseSchema):
    url: str
    signals: PageSignals
    categories: list[Category] = Field(default_factory=list)
    issues: list[Issue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    fail_count: int = 0
    per_page_score: int | None = None
    degraded: bool = False
    error: str | None = None


def _empty_priority_counts() -> dict[IssuePriority, int]:
    return {priority: 0 for priority in IssuePriority}


def _empty_section_scores() -> dict[Section, int | None]:
    return {section: None for section in Section}


class AggregatedSummary(BaseSchema):
    priority_counts: dict[IssuePriority, int] = Field(default_factory=_empty_priority_counts)
    category_totals: dict[str, CategoryTotals] = Field(default_factory=dict)
    section_scores: dict[Section, int | None] = Field(default_factory=_empty_section_scores)
    overall_score: int | None = None
    total_issues: int = 0
    pages_analyzed: int = 0
    pages_degraded: int = 0


class AuditJobRecord(BaseSchema):
    """Snapshot of one audit job as owned by its worker."""

    id: UUID
    client_id: str
    target_url: str
    audit_type: AuditType = AuditType.FULL_SITE
    status: AuditStatus = AuditStatus.QUEUED
    progress_percent: int = Field(default=0, ge=0, le=100)
    progress_is_estimate: bool = False
    cancel_requested: bool = False
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    pages: list[PageAuditResult] = Field(default_factory=list)
    summary: AggregatedSummary = Field(default_factory=AggregatedSummary)

    @field_validator("summary", mode="before")
    @classmethod
    def _empty_summary(cls, value):
        return value or AggregatedSummary()


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

class AuditCreate(BaseSchema):
    """Submit audit request."""

    client_id: str = Field(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")
    target_url: str = Field(..., min_length=1, max_length=2048)
    audit_type: AuditType = AuditType.FULL_SITE

    @field_validator("target_url")
    @classmethod
    def _normalize_url(cls, value: str) -> str:
        value = value.strip()
        if not value or any(ch.isspace() for ch in value):
            raise ValueError("target_url must be a URL without whitespace")
        if "://" not in value:
            value = f"https://{value}"
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError("target_url must be an http(s) URL with a host")
        return value


class AuditJobResponse(BaseSchema):
    """Audit status and progress."""

    id: UUID
    client_id: str
    target_url: str
    audit_type: AuditType
    status: AuditStatus
    progress_percent: int
    progress_is_estimate: bool
    cancel_requested: bool
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    error: str | None


class AuditReportResponse(AuditJobResponse):
    """Full audit report."""

    pages: list[PageAuditResult]
    summary: AggregatedSummary

    @field_validator("summary", mode="before")
    @classmethod
    def _empty_summary(cls, value):
        return value or AggregatedSummary()


class PageRefreshRequest(BaseSchema):
    url: str = Field(..., min_length=1)


class CategoryDefinition(BaseSchema):
    """One category of the static check taxonomy."""

    title: str
    sections: list[Section]
    advisory: bool
    issue_priority: IssuePriority | None = None
    checks: list[str]
