"""
Audit job persistence: CRUD for the API and the SQL-backed JobStore for workers.
"""
import logging
from typing import Callable
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from siteaudit.config import settings
from siteaudit.models.audit import AuditJob, AuditStatus
from siteaudit.schemas.audit import AuditCreate, AuditJobRecord
from siteaudit.services.job_state import TERMINAL_STATUSES, utcnow

logger = logging.getLogger(__name__)


def to_record(job: AuditJob) -> AuditJobRecord:
    return AuditJobRecord.model_validate(job)


def apply_record(job: AuditJob, record: AuditJobRecord) -> AuditJob:
    """Copy worker-owned fields onto the row. cancel_requested is left alone."""
    job.status = record.status
    job.progress_percent = record.progress_percent
    job.progress_is_estimate = record.progress_is_estimate
    job.started_at = record.started_at
    job.completed_at = record.completed_at
    job.error = record.error
    job.pages = [page.model_dump(mode="json") for page in record.pages]
    job.summary = record.summary.model_dump(mode="json")
    return job


class AuditService:
    """Service for audit job operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, audit_id: UUID) -> AuditJob | None:
        """Get audit job by ID."""
        result = await self.db.execute(select(AuditJob).where(AuditJob.id == audit_id))
        return result.scalar_one_or_none()

    async def list_by_client(
        self,
        client_id: str,
        page: int = 1,
        per_page: int = 20,
        status: AuditStatus | None = None,
    ) -> tuple[list[AuditJob], int]:
        """List a client's audits, newest first."""
        query = select(AuditJob).where(AuditJob.client_id == client_id)
        count_query = select(func.count(AuditJob.id)).where(AuditJob.client_id == client_id)

        if status:
            query = query.where(AuditJob.status == status)
            count_query = count_query.where(AuditJob.status == status)

        total_result = await self.db.execute(count_query)
        total = total_result.scalar()

        query = query.order_by(AuditJob.created_at.desc(), AuditJob.id)
        query = query.offset((page - 1) * per_page).limit(per_page)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def create(self, data: AuditCreate) -> AuditJob:
        """Create a Queued audit job."""
        job = AuditJob(
            client_id=data.client_id,
            target_url=data.target_url,
            audit_type=data.audit_type,
            status=AuditStatus.QUEUED,
            progress_percent=0,
            progress_is_estimate=False,
            cancel_requested=False,
            pages=[],
            summary={},
        )
        self.db.add(job)
        await self.db.flush()
        await self.db.refresh(job)

        if settings.AUDIT_RETENTION_PER_CLIENT > 0:
            await self.prune(data.client_id, keep=settings.AUDIT_RETENTION_PER_CLIENT)
        return job

    async def request_cancel(self, audit_id: UUID) -> AuditJob | None:
        """Flag a job for cancellation; the owning worker acts on it."""
        job = await self.get_by_id(audit_id)
        if not job:
            return None
        job.cancel_requested = True
        await self.db.flush()
        await self.db.refresh(job)
        return job

    async def delete(self, audit_id: UUID) -> bool:
        """Delete an audit job and its report."""
        job = await self.get_by_id(audit_id)
        if not job:
            return False
        await self.db.delete(job)
        await self.db.flush()
        return True

    async def prune(self, client_id: str, keep: int) -> int:
        """Delete a client's oldest terminal audits beyond the newest `keep`."""
        query = (
            select(AuditJob.id)
            .where(
                AuditJob.client_id == client_id,
                AuditJob.status.in_(TERMINAL_STATUSES),
            )
            .order_by(AuditJob.created_at.desc(), AuditJob.id)
            .offset(keep)
        )
        result = await self.db.execute(query)
        stale_ids = list(result.scalars().all())
        if not stale_ids:
            return 0

        await self.db.execute(delete(AuditJob).where(AuditJob.id.in_(stale_ids)))
        await self.db.flush()
        logger.info(f"Pruned {len(stale_ids)} old audits for client {client_id}")
        return len(stale_ids)


class SqlAlchemyJobStore:
    """JobStore backed by the audit_jobs table. One short session per call."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def get(self, job_id: UUID) -> AuditJobRecord | None:
        async with self.session_maker() as session:
            job = await session.get(AuditJob, job_id)
            return to_record(job) if job else None

    async def claim(self, job_id: UUID) -> AuditJobRecord | None:
        async with self.session_maker() as session:
            result = await session.execute(
                update(AuditJob)
                .where(AuditJob.id == job_id, AuditJob.status == AuditStatus.QUEUED)
                .values(status=AuditStatus.RUNNING, started_at=utcnow())
            )
            await session.commit()
            if result.rowcount != 1:
                return None
            job = await session.get(AuditJob, job_id)
            return to_record(job) if job else None

    async def save(self, record: AuditJobRecord) -> None:
        async with self.session_maker() as session:
            job = await session.get(AuditJob, record.id)
            if job is None:
                logger.warning(f"Audit {record.id} disappeared before save")
                return
            if job.status in TERMINAL_STATUSES and job.status != record.status:
                # Failed by the stale-job sweeper while this worker was still running.
                logger.warning(f"Audit {record.id} is already {job.status.value}; dropping late write")
                return
            apply_record(job, record)
            await session.commit()

    async def update(self, job_id: UUID, mutate: Callable[[AuditJobRecord], None]) -> AuditJobRecord | None:
        async with self.session_maker() as session:
            result = await session.execute(
                select(AuditJob).where(AuditJob.id == job_id).with_for_update()
            )
            job = result.scalar_one_or_none()
            if job is None:
                return None
            record = to_record(job)
            mutate(record)
            apply_record(job, record)
            await session.commit()
            return record

    async def is_cancel_requested(self, job_id: UUID) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(
                select(AuditJob.cancel_requested).where(AuditJob.id == job_id)
            )
            return bool(result.scalar_one_or_none())
