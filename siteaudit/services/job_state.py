"""
AuditJob lifecycle: forward-only status transitions and monotonic progress.
"""

from datetime import datetime, timezone

from siteaudit.core.exceptions import InvalidTransitionError
from siteaudit.models.audit import AuditStatus
from siteaudit.schemas.audit import AuditJobRecord

ALLOWED_TRANSITIONS: dict[AuditStatus, frozenset[AuditStatus]] = {
    AuditStatus.QUEUED: frozenset({AuditStatus.RUNNING}),
    AuditStatus.RUNNING: frozenset({AuditStatus.COMPLETED, AuditStatus.FAILED}),
    AuditStatus.COMPLETED: frozenset(),
    AuditStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({AuditStatus.COMPLETED, AuditStatus.FAILED})

# Streaming estimates never claim completion before discovery ends.
ESTIMATE_CEILING = 99


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_terminal(status: AuditStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: AuditStatus, target: AuditStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(job: AuditJobRecord, target: AuditStatus, error: str | None = None) -> AuditJobRecord:
    """Move the job to `target`, stamping timestamps; raises on any backward or skipping edge."""
    if not can_transition(job.status, target):
        raise InvalidTransitionError(job.status, target)

    job.status = target
    if target == AuditStatus.RUNNING:
        job.started_at = job.started_at or utcnow()
    if target in TERMINAL_STATUSES:
        job.completed_at = utcnow()
    if target == AuditStatus.COMPLETED:
        job.progress_percent = 100
        job.progress_is_estimate = False
    if error:
        job.error = error
    return job


def exact_progress(processed: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(100, round(processed / total * 100))


def estimated_progress(processed: int, discovered: int) -> int:
    """Progress while more pages may still be discovered."""
    return min(ESTIMATE_CEILING, round(processed / (discovered + 1) * 100))


def record_progress(job: AuditJobRecord, percent: int, estimate: bool = False) -> AuditJobRecord:
    """Apply a progress reading; readings below the current value are ignored."""
    if job.status != AuditStatus.RUNNING:
        return job
    job.progress_percent = max(job.progress_percent, max(0, min(100, percent)))
    job.progress_is_estimate = estimate
    return job
