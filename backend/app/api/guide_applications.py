"""Guide application review API.

Listing, exclusive review leases, decisions, applicant responses and the
audit trail. Lease conflicts surface as 423 Locked.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_utils import require_roles
from app.database import get_db
from app.models.admin import AdminUser, AdminRole, REVIEWER_ROLES
from app.models.application import ApplicationStatus, as_utc
from app.schemas import (
    ApplicantResponse,
    ApprovalResponse,
    DecisionRequest,
    ExpireStaleResponse,
    GuideApplicationResponse,
    LeaseReleaseResponse,
    LeaseResponse,
    TimelineEntry,
)
from app.services import lease as lease_service
from app.services import review as review_service
from app.services.lease import LeaseError, LockedError, NotFoundError, StatusTransitionError
from app.services.error_logger import log_error

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_http(exc: LeaseError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, LockedError):
        return HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail={
                "message": "This application is being reviewed by another admin",
                "locked_by": exc.holder_id,
                "lock_expiry": exc.expires_at.isoformat() if exc.expires_at else None,
            },
        )
    if isinstance(exc, StatusTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("", response_model=list[GuideApplicationResponse])
async def list_guide_applications(
    status_filter: Optional[ApplicationStatus] = Query(None, alias="status"),
    flagged_for_review: Optional[bool] = None,
    user_id: Optional[int] = None,
    current_admin: AdminUser = Depends(require_roles(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Applications visible to the caller (excludes ones leased to other admins)."""
    try:
        return await review_service.list_applications(
            db,
            reviewer_id=current_admin.id,
            status=status_filter,
            flagged_for_review=flagged_for_review,
            user_id=user_id,
        )
    except Exception as e:
        await log_error(e, db=db, module="api.guide_applications", function_name="list_guide_applications")
        raise


@router.post("/expire-stale", response_model=ExpireStaleResponse)
async def expire_stale_leases(
    current_admin: AdminUser = Depends(require_roles(AdminRole.SUPER_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    """Clear every expired lease now instead of waiting for the next read."""
    try:
        expired = await lease_service.expire_stale(db)
        await db.commit()
        return ExpireStaleResponse(expired=expired)
    except Exception as e:
        await log_error(e, db=db, module="api.guide_applications", function_name="expire_stale_leases")
        raise


@router.get("/{application_id}", response_model=GuideApplicationResponse)
async def get_guide_application(
    application_id: str,
    readonly: bool = False,
    current_admin: AdminUser = Depends(require_roles(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Application detail. ``readonly=true`` skips the lease check entirely."""
    try:
        return await review_service.get_application(
            db, application_id, current_admin.id, read_only=readonly,
        )
    except LeaseError as e:
        raise _to_http(e)
    except Exception as e:
        await log_error(
            e, db=db, module="api.guide_applications", function_name="get_guide_application",
            admin_id=current_admin.id, application_id=application_id,
        )
        raise


@router.post("/{application_id}/acquire-lock", response_model=LeaseResponse)
async def acquire_lock(
    application_id: str,
    current_admin: AdminUser = Depends(require_roles(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Take or refresh the caller's exclusive review lease. 423 if someone else holds it."""
    try:
        application = await lease_service.acquire(db, application_id, current_admin.id)
        await db.commit()
        return LeaseResponse(
            application_id=application.id,
            locked_by=application.locked_by,
            locked_at=as_utc(application.locked_at),
            lock_expiry=as_utc(application.lock_expiry),
        )
    except LeaseError as e:
        raise _to_http(e)
    except Exception as e:
        await log_error(
            e, db=db, module="api.guide_applications", function_name="acquire_lock",
            admin_id=current_admin.id, application_id=application_id,
        )
        raise


@router.post("/{application_id}/release-lock", response_model=LeaseReleaseResponse)
async def release_lock(
    application_id: str,
    current_admin: AdminUser = Depends(require_roles(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Release the caller's lease. Always succeeds; ``released`` says whether there was one."""
    try:
        released = await lease_service.release(db, application_id, current_admin.id)
        await db.commit()
        return LeaseReleaseResponse(application_id=application_id, released=released)
    except Exception as e:
        await log_error(
            e, db=db, module="api.guide_applications", function_name="release_lock",
            admin_id=current_admin.id, application_id=application_id,
        )
        raise


@router.get("/{application_id}/lock", response_model=LeaseResponse)
async def get_lock_status(
    application_id: str,
    current_admin: AdminUser = Depends(require_roles(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        info = await lease_service.get_lease(db, application_id)
        if info is None:
            return LeaseResponse(application_id=application_id)
        return LeaseResponse(
            application_id=application_id,
            locked_by=info.holder_id,
            locked_at=info.acquired_at,
            lock_expiry=info.expires_at,
            expired=info.expired,
            locked_by_other=await lease_service.is_locked_by_other(
                db, application_id, current_admin.id,
            ),
        )
    except LeaseError as e:
        raise _to_http(e)
    except Exception as e:
        await log_error(e, db=db, module="api.guide_applications", function_name="get_lock_status")
        raise


@router.get("/{application_id}/approvals", response_model=list[ApprovalResponse])
async def get_approval_history(
    application_id: str,
    current_admin: AdminUser = Depends(require_roles(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await review_service.get_approval_history(db, application_id)
    except LeaseError as e:
        raise _to_http(e)
    except Exception as e:
        await log_error(e, db=db, module="api.guide_applications", function_name="get_approval_history")
        raise


@router.get("/{application_id}/timeline", response_model=list[TimelineEntry])
async def get_timeline(
    application_id: str,
    current_admin: AdminUser = Depends(require_roles(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        application = await review_service.get_application(
            db, application_id, current_admin.id, read_only=True,
        )
        events = await review_service.get_approval_history(db, application_id)
        return review_service.build_timeline(application, events)
    except LeaseError as e:
        raise _to_http(e)
    except Exception as e:
        await log_error(e, db=db, module="api.guide_applications", function_name="get_timeline")
        raise


@router.post(
    "/{application_id}/decision",
    response_model=ApprovalResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_decision(
    application_id: str,
    body: DecisionRequest,
    current_admin: AdminUser = Depends(require_roles(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Approve, reject or ask for more information. Requires the caller's live lease."""
    try:
        event = await review_service.record_decision(
            db, application_id, current_admin.id, body.admin_action, body.note,
        )
        await db.commit()
        return event
    except LeaseError as e:
        raise _to_http(e)
    except Exception as e:
        await log_error(
            e, db=db, module="api.guide_applications", function_name="record_decision",
            admin_id=current_admin.id, application_id=application_id,
        )
        raise


@router.post("/{application_id}/applicant-response", response_model=ApprovalResponse)
async def attach_applicant_response(
    application_id: str,
    body: ApplicantResponse,
    current_admin: AdminUser = Depends(require_roles(*REVIEWER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Record the applicant's answer to a require_more_info decision."""
    try:
        event = await review_service.attach_applicant_response(
            db, application_id, body.model_dump(exclude_none=True),
        )
        await db.commit()
        return event
    except LeaseError as e:
        raise _to_http(e)
    except Exception as e:
        await log_error(e, db=db, module="api.guide_applications", function_name="attach_applicant_response")
        raise
