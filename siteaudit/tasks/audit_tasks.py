"""
Audit Tasks

Background tasks that run audit jobs, refresh single pages and fail
audits whose worker disappeared.
"""

import asyncio
import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from sqlalchemy import and_, or_, select

from siteaudit.config import settings
from siteaudit.core.exceptions import AuditError
from siteaudit.database import task_session_maker
from siteaudit.integrations.crawler_client import CrawlerServiceClient
from siteaudit.integrations.narrative import NarrativeAnalyzerClient
from siteaudit.models.audit import AuditJob, AuditStatus
from siteaudit.schemas.audit import AuditJobRecord
from siteaudit.services.audit_service import SqlAlchemyJobStore, apply_record, to_record
from siteaudit.services.job_orchestrator import AuditJobRunner
from siteaudit.services.job_state import transition, utcnow
from siteaudit.services.notification_service import AuditEvent, NotificationService

logger = logging.getLogger(__name__)

STALE_AUDIT_MESSAGE = "Audit timed out"
STALE_QUEUED_MESSAGE = "Audit timed out waiting for a worker"


def run_async(coro):
    """Helper to run async code in sync context."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def build_runner(session_maker) -> AuditJobRunner:
    """Runner wired to the production collaborators."""
    return AuditJobRunner(
        store=SqlAlchemyJobStore(session_maker),
        fetcher=CrawlerServiceClient(streaming=settings.CRAWLER_STREAMING_DISCOVERY),
        analyzer=NarrativeAnalyzerClient.from_settings(),
        notifier=NotificationService(),
    )


@shared_task(bind=True)
def run_audit(self, job_id: str):
    """Run one audit job to a terminal state."""
    return run_async(_run_audit(job_id))


async def _run_audit(job_id: str):
    async with task_session_maker() as session_maker:
        job = await build_runner(session_maker).run(UUID(job_id))

    if job is None:
        return {"job_id": job_id, "skipped": True}
    return {
        "job_id": job_id,
        "status": job.status.value,
        "pages": len(job.pages),
        "overall_score": job.summary.overall_score,
        "error": job.error,
    }


@shared_task(bind=True)
def refresh_audit_page(self, job_id: str, url: str):
    """Recompute one page of a completed audit."""
    return run_async(_refresh_audit_page(job_id, url))


async def _refresh_audit_page(job_id: str, url: str):
    async with task_session_maker() as session_maker:
        try:
            job = await build_runner(session_maker).refresh_page(UUID(job_id), url)
        except AuditError as e:
            logger.warning(f"Refresh of {url} in audit {job_id} rejected: {e}")
            return {"job_id": job_id, "url": url, "error": str(e)}

    return {"job_id": job_id, "url": url, "overall_score": job.summary.overall_score}


@shared_task(bind=True)
def check_stale_audits(self):
    """Check for and fail audits stuck in Running."""
    return run_async(_check_stale_audits())


async def _check_stale_audits():
    async with task_session_maker() as session_maker:
        failed = await fail_stale_audits(session_maker, NotificationService())
    return {"stale_audits_marked": len(failed)}


async def fail_stale_audits(session_maker, notifier=None) -> list[AuditJobRecord]:
    """
    Fail audits stuck longer than the timeout plus grace: Running jobs whose
    worker died, and Queued jobs whose task message never reached a worker.
    """
    stale_threshold = utcnow() - timedelta(
        seconds=settings.AUDIT_TIMEOUT_SECONDS + settings.AUDIT_STALE_GRACE_SECONDS
    )
    async with session_maker() as session:
        result = await session.execute(
            select(AuditJob)
            .where(
                or_(
                    and_(AuditJob.status == AuditStatus.RUNNING, AuditJob.started_at < stale_threshold),
                    and_(AuditJob.status == AuditStatus.QUEUED, AuditJob.created_at < stale_threshold),
                )
            )
            .order_by(AuditJob.created_at)
            .with_for_update()
        )
        records = []
        for job in result.scalars().all():
            record = to_record(job)
            if record.status == AuditStatus.QUEUED:
                transition(record, AuditStatus.RUNNING)
                transition(record, AuditStatus.FAILED, error=STALE_QUEUED_MESSAGE)
            else:
                transition(record, AuditStatus.FAILED, error=STALE_AUDIT_MESSAGE)
            apply_record(job, record)
            records.append(record)
        await session.commit()

    if records:
        logger.warning(f"Marked {len(records)} stale audits as failed")
    if notifier is not None:
        for record in records:
            await notifier.notify(AuditEvent.from_job(record))
    return records
