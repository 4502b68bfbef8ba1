"""
Notification service for audit terminal-state events.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

import httpx

from siteaudit.config import settings
from siteaudit.models.audit import AuditStatus, IssuePriority
from siteaudit.schemas.audit import AuditJobRecord

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    """Emitted once per job when it reaches Completed or Failed."""

    job_id: UUID
    client_id: str
    status: AuditStatus
    overall_score: int | None = None
    error: str | None = None
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_job(cls, job: AuditJobRecord) -> "AuditEvent":
        return cls(
            job_id=job.id,
            client_id=job.client_id,
            status=job.status,
            overall_score=job.summary.overall_score,
            error=job.error,
        )

    @property
    def priority(self) -> IssuePriority:
        if self.status == AuditStatus.FAILED:
            return IssuePriority.HIGH
        if self.overall_score is not None and self.overall_score < 50:
            return IssuePriority.HIGH
        if self.overall_score is not None and self.overall_score < 70:
            return IssuePriority.MEDIUM
        return IssuePriority.LOW

    @property
    def message(self) -> str:
        if self.status == AuditStatus.FAILED:
            return f"Audit failed: {self.error or 'unknown error'}"
        if self.overall_score is None:
            return "Audit completed"
        return f"Audit completed with an overall score of {self.overall_score}"

    def to_payload(self) -> dict:
        return {
            "event": "audit.completed" if self.status == AuditStatus.COMPLETED else "audit.failed",
            "job_id": str(self.job_id),
            "client_id": self.client_id,
            "status": self.status.value,
            "overall_score": self.overall_score,
            "error": self.error,
            "priority": self.priority.value,
            "message": self.message,
            "emitted_at": self.emitted_at.isoformat(),
        }


class NotificationService:
    """Logs audit events and forwards them to a webhook when one is configured."""

    def __init__(self, webhook_url: str | None = None, timeout: int = 10):
        self.webhook_url = settings.AUDIT_WEBHOOK_URL if webhook_url is None else webhook_url
        self.timeout = timeout

    async def notify(self, event: AuditEvent) -> dict:
        """Deliver one event. Delivery problems are logged, never raised."""
        logger.info(
            f"[NOTIFY] Audit {event.job_id} for client {event.client_id}: "
            f"{event.status.value} ({event.priority.value} priority)"
        )
        if not self.webhook_url:
            return {"channel": "log", "success": True}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.webhook_url,
                    json=event.to_payload(),
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
            return {"channel": "webhook", "success": True, "status_code": response.status_code}
        except httpx.HTTPError as e:
            logger.warning(f"[NOTIFY] Webhook delivery failed for audit {event.job_id}: {type(e).__name__}: {e}")
            return {"channel": "webhook", "success": False, "error": str(e)}
