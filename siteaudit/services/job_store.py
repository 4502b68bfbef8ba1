"""
Job store contract used by the audit runner, plus an in-memory store.

The SQLAlchemy-backed store lives in audit_service.
"""

import asyncio
from typing import Callable, Protocol
from uuid import UUID

from siteaudit.models.audit import AuditStatus
from siteaudit.schemas.audit import AuditJobRecord
from siteaudit.services.job_state import transition


class JobStore(Protocol):
    async def get(self, job_id: UUID) -> AuditJobRecord | None:
        ...

    async def claim(self, job_id: UUID) -> AuditJobRecord | None:
        """Atomically move a Queued job to Running; None if it is not Queued."""
        ...

    async def save(self, job: AuditJobRecord) -> None:
        """Persist everything the worker owns. Never overwrites cancel_requested."""
        ...

    async def is_cancel_requested(self, job_id: UUID) -> bool:
        ...

    async def update(self, job_id: UUID, mutate: Callable[[AuditJobRecord], None]) -> AuditJobRecord | None:
        """
        Apply `mutate` to the current record and persist it, serialized with
        every other update of the same job. None if the job does not exist;
        exceptions from `mutate` propagate and nothing is written.
        """
        ...


class InMemoryJobStore:
    """Dict-backed JobStore. Records are copied on the way in and out."""

    def __init__(self, jobs: list[AuditJobRecord] | None = None):
        self._jobs: dict[UUID, AuditJobRecord] = {}
        self._lock = asyncio.Lock()
        self.history: list[AuditJobRecord] = []
        for job in jobs or []:
            self.add(job)

    def add(self, job: AuditJobRecord) -> AuditJobRecord:
        self._jobs[job.id] = job.model_copy(deep=True)
        return job

    async def get(self, job_id: UUID) -> AuditJobRecord | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    async def claim(self, job_id: UUID) -> AuditJobRecord | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != AuditStatus.QUEUED:
                return None
            transition(job, AuditStatus.RUNNING)
            self.history.append(job.model_copy(deep=True))
            return job.model_copy(deep=True)

    async def save(self, job: AuditJobRecord) -> None:
        async with self._lock:
            stored = self._jobs.get(job.id)
            snapshot = job.model_copy(deep=True)
            if stored is not None:
                snapshot.cancel_requested = stored.cancel_requested
            self._jobs[job.id] = snapshot
            self.history.append(snapshot.model_copy(deep=True))

    async def is_cancel_requested(self, job_id: UUID) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            return bool(job and job.cancel_requested)

    async def update(self, job_id: UUID, mutate: Callable[[AuditJobRecord], None]) -> AuditJobRecord | None:
        async with self._lock:
            stored = self._jobs.get(job_id)
            if stored is None:
                return None
            job = stored.model_copy(deep=True)
            mutate(job)
            job.cancel_requested = stored.cancel_requested
            self._jobs[job_id] = job
            self.history.append(job.model_copy(deep=True))
            return job.model_copy(deep=True)

    async def request_cancel(self, job_id: UUID) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            job.cancel_requested = True
            return True
