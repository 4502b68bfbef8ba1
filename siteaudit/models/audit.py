"""
Audit job model: lifecycle, progress and the stored report snapshot.
"""
from enum import Enum as PyEnum

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, Integer, String, Text

from siteaudit.models.base import Base, BaseModel


class AuditStatus(str, PyEnum):
    QUEUED = "Queued"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


class IssuePriority(str, PyEnum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class AuditType(str, PyEnum):
    FULL_SITE = "Full Site"
    TECHNICAL = "Technical"
    CONTENT = "Content"
    ON_PAGE = "On-Page"
    QUICK_SCAN = "Quick Scan"


class AuditJob(Base, BaseModel):
    """One full-site audit run."""

    __tablename__ = "audit_jobs"

    client_id = Column(String(64), nullable=False, index=True)
    target_url = Column(String(2048), nullable=False)
    audit_type = Column(
        Enum(AuditType, values_callable=lambda e: [m.value for m in e]),
        default=AuditType.FULL_SITE,
        nullable=False,
    )
    status = Column(
        Enum(AuditStatus, values_callable=lambda e: [m.value for m in e]),
        default=AuditStatus.QUEUED,
        nullable=False,
        index=True,
    )
    progress_percent = Column(Integer, default=0, nullable=False)
    progress_is_estimate = Column(Boolean, default=False, nullable=False)
    cancel_requested = Column(Boolean, default=False, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    pages = Column(JSON, default=list, nullable=False)
    summary = Column(JSON, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<AuditJob {self.id} ({self.status.value})>"
