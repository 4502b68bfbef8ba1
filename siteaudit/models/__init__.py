"""
SQLAlchemy models for SiteAudit.
"""
from siteaudit.models.base import Base, BaseModel
from siteaudit.models.audit import AuditJob, AuditStatus, AuditType, IssuePriority

__all__ = [
    "Base",
    "BaseModel",
    "AuditJob",
    "AuditStatus",
    "AuditType",
    "IssuePriority",
]
