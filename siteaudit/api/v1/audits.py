"""
Audit endpoints.
"""
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from siteaudit.core.exceptions import ConflictError, NotFoundError
from siteaudit.database import get_db
from siteaudit.models.audit import AuditStatus
from siteaudit.schemas.audit import (
    AuditCreate,
    AuditJobResponse,
    AuditReportResponse,
    CategoryDefinition,
    PageRefreshRequest,
)
from siteaudit.schemas.common import MessageResponse, PaginatedResponse
from siteaudit.services import taxonomy
from siteaudit.services.audit_service import AuditService
from siteaudit.services.job_state import is_terminal

router = APIRouter(tags=["Audits"])


async def _get_job_or_404(audit_service: AuditService, audit_id: UUID):
    job = await audit_service.get_by_id(audit_id)
    if not job:
        raise NotFoundError("Audit")
    return job


@router.post(
    "/audits",
    response_model=AuditJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_audit(
    data: AuditCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Submit a site audit. The job is queued and runs in the background."""
    audit_service = AuditService(db)
    job = await audit_service.create(data)

    await db.commit()

    from siteaudit.tasks.audit_tasks import run_audit
    run_audit.delay(str(job.id))

    return AuditJobResponse.model_validate(job)


@router.get("/audits/checks", response_model=list[CategoryDefinition])
async def list_checks():
    """The static check taxonomy in report order."""
    return [
        CategoryDefinition(
            title=title,
            sections=taxonomy.sections_for(title),
            advisory=title in taxonomy.ADVISORY_CATEGORIES,
            issue_priority=taxonomy.CATEGORY_PRIORITIES.get(title),
            checks=list(taxonomy.CHECK_LABELS[title]),
        )
        for title in taxonomy.CATEGORY_ORDER
    ]


@router.get("/audits/{audit_id}/status", response_model=AuditJobResponse)
async def get_audit_status(
    audit_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get audit status and progress."""
    job = await _get_job_or_404(AuditService(db), audit_id)
    return AuditJobResponse.model_validate(job)


@router.get("/audits/{audit_id}", response_model=AuditReportResponse)
async def get_audit(
    audit_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get the full audit report: pages in discovery order plus summary."""
    job = await _get_job_or_404(AuditService(db), audit_id)
    return AuditReportResponse.model_validate(job)


@router.get("/clients/{client_id}/audits", response_model=PaginatedResponse[AuditJobResponse])
async def list_client_audits(
    client_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    status: AuditStatus | None = None,
):
    """List a client's audits, newest first."""
    audit_service = AuditService(db)
    jobs, total = await audit_service.list_by_client(client_id, page, per_page, status)

    return PaginatedResponse.create(
        items=[AuditJobResponse.model_validate(job) for job in jobs],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post(
    "/audits/{audit_id}/cancel",
    response_model=AuditJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_audit(
    audit_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Request cancellation. The worker stops scheduling pages and fails the job."""
    audit_service = AuditService(db)
    job = await _get_job_or_404(audit_service, audit_id)
    if is_terminal(job.status):
        raise ConflictError(f"Audit is already {job.status.value}")

    job = await audit_service.request_cancel(audit_id)
    await db.commit()
    return AuditJobResponse.model_validate(job)


@router.post(
    "/audits/{audit_id}/pages/refresh",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def refresh_audit_page(
    audit_id: UUID,
    data: PageRefreshRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Re-run one page of a completed audit."""
    job = await _get_job_or_404(AuditService(db), audit_id)
    if job.status != AuditStatus.COMPLETED:
        raise ConflictError("Only completed audits can be refreshed")
    if data.url not in {page.get("url") for page in job.pages or []}:
        raise NotFoundError("Page")

    from siteaudit.tasks.audit_tasks import refresh_audit_page as refresh_task
    refresh_task.delay(str(audit_id), data.url)

    return MessageResponse(message=f"Refresh of {data.url} queued")


@router.delete("/audits/{audit_id}", response_model=MessageResponse)
async def delete_audit(
    audit_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete an audit and its report."""
    audit_service = AuditService(db)
    job = await _get_job_or_404(audit_service, audit_id)
    if job.status == AuditStatus.RUNNING:
        raise ConflictError("Cannot delete a running audit")

    await audit_service.delete(audit_id)
    await db.commit()
    return MessageResponse(message="Audit deleted")
