"""
Celery Worker Configuration

Runs audit jobs in the background and sweeps audits whose worker died.
"""

import logging

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from siteaudit.config import settings
from siteaudit.core.logging import configure_logging

logger = logging.getLogger(__name__)


# Create Celery app
celery_app = Celery(
    "siteaudit",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "siteaudit.tasks.audit_tasks",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings; the runner's own timeout fires well before these
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=settings.AUDIT_TIMEOUT_SECONDS + settings.AUDIT_STALE_GRACE_SECONDS,
    task_soft_time_limit=settings.AUDIT_TIMEOUT_SECONDS + 60,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
    worker_max_tasks_per_child=100,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Queue routing
    task_routes={
        "siteaudit.tasks.audit_tasks.*": {"queue": "audit"},
    },
    task_default_queue="default",
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Fail audits stuck in Running every 5 minutes
    "check-stale-audits": {
        "task": "siteaudit.tasks.audit_tasks.check_stale_audits",
        "schedule": crontab(minute="*/5"),
    },
}


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging(settings.LOG_LEVEL)


class SiteAuditTask(celery_app.Task):
    """Base task class that logs failures."""

    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Task {self.name}[{task_id}] failed: {type(exc).__name__}: {exc}")


# Register base class
celery_app.Task = SiteAuditTask
