"""
HTTP and domain exceptions for SiteAudit.
"""
from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Resource not found exception."""

    def __init__(self, resource: str = "Resource"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found"
        )


class ConflictError(HTTPException):
    """Conflict exception (e.g., operation invalid for the job's state)."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )


# ---------------------------------------------------------------------------
# Domain errors
# ---------------------------------------------------------------------------

class AuditError(Exception):
    """Base class for audit engine errors."""


class FetchFailure(AuditError):
    """A single page could not be fetched by the crawling collaborator."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class AnalysisFailure(AuditError):
    """Rule evaluation or issue synthesis raised for one page."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to analyze {url}: {reason}")


class JobFailure(AuditError):
    """The job as a whole cannot make progress."""


class AuditCancelled(AuditError):
    """Cancellation was requested for the running job."""


class InvalidTransitionError(AuditError):
    """Attempted an AuditJob status change outside the lifecycle graph."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Invalid audit status transition: {current.value} -> {target.value}")


class JobNotFoundError(AuditError):
    """No audit job with the given id exists in the store."""

    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Audit job {job_id} not found")
