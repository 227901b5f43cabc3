"""Guide application review workflow.

Listing, opening, deciding on and annotating applications. Anything that
needs exclusivity goes through the lease functions in app.services.lease;
this module only adds the status workflow and the audit-trail reads on top.
"""

import logging
from typing import Any

from sqlalchemy import select, update, desc, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.application import GuideApplication, ApplicationStatus, as_utc
from app.models.approval import ApplicationApproval, AdminAction
from app.services.lease import (
    LockedError,
    NotFoundError,
    StatusTransitionError,
    utcnow,
    expire_stale,
    is_locked_by_other,
)

logger = logging.getLogger(__name__)

# Decision action → resulting application status
DECISION_TRANSITIONS = {
    AdminAction.APPROVE: ApplicationStatus.APPROVED,
    AdminAction.REJECT: ApplicationStatus.REJECTED,
    AdminAction.REQUIRE_MORE_INFO: ApplicationStatus.NEEDS_MORE_INFO,
}

# Statuses a decision may be recorded from
DECIDABLE_STATUSES = (ApplicationStatus.PENDING,)


async def _load(db: AsyncSession, application_id: str) -> GuideApplication:
    result = await db.execute(
        select(GuideApplication).where(GuideApplication.id == application_id)
        .execution_options(populate_existing=True)
    )
    application = result.scalar_one_or_none()
    if application is None:
        raise NotFoundError(application_id)
    return application


async def list_applications(
    db: AsyncSession,
    *,
    reviewer_id: int | None = None,
    status: ApplicationStatus | None = None,
    flagged_for_review: bool | None = None,
    user_id: int | None = None,
) -> list[GuideApplication]:
    """Applications newest-updated first.

    With ``reviewer_id`` set, applications that another reviewer currently
    holds a live lease on are left out.
    """
    if settings.sweep_on_read:
        await expire_stale(db)

    conditions = []
    if status is not None:
        conditions.append(GuideApplication.application_status == status)
    if flagged_for_review is not None:
        conditions.append(GuideApplication.flagged_for_review == flagged_for_review)
    if user_id is not None:
        conditions.append(GuideApplication.user_id == user_id)
    if reviewer_id is not None:
        now = utcnow()
        conditions.append(
            or_(
                GuideApplication.locked_by.is_(None),
                GuideApplication.lock_expiry < now,
                GuideApplication.locked_by == reviewer_id,
            )
        )

    query = select(GuideApplication)
    if conditions:
        query = query.where(and_(*conditions))
    result = await db.execute(
        query.order_by(desc(GuideApplication.updated_at), GuideApplication.id)
    )
    return list(result.scalars().all())


async def get_application(
    db: AsyncSession,
    application_id: str,
    reviewer_id: int,
    *,
    read_only: bool = False,
) -> GuideApplication:
    """Fetch an application for a reviewer.

    In read-only mode the lease is neither checked nor taken. Otherwise the
    call fails with LockedError while another reviewer holds the lease.
    """
    application = await _load(db, application_id)
    if read_only:
        return application

    if settings.sweep_on_read:
        await expire_stale(db)
    if await is_locked_by_other(db, application_id, reviewer_id):
        raise LockedError(application_id, application.locked_by, as_utc(application.lock_expiry))
    return application


async def record_decision(
    db: AsyncSession,
    application_id: str,
    reviewer_id: int,
    action: AdminAction,
    note: str | None = None,
) -> ApplicationApproval:
    """Record approve / reject / require_more_info and move the status on.

    The reviewer must hold a live lease on the application, and the status
    change is written with the same conditional-update discipline as the
    lease itself. The lease is left in place; the client releases it when
    it leaves the record.
    """
    if action not in DECISION_TRANSITIONS:
        raise StatusTransitionError(f"'{action.value}' is not a decision")

    now = utcnow()
    result = await db.execute(
        update(GuideApplication)
        .where(
            GuideApplication.id == application_id,
            GuideApplication.locked_by == reviewer_id,
            GuideApplication.lock_expiry > now,
            GuideApplication.application_status.in_(DECIDABLE_STATUSES),
        )
        .values(application_status=DECISION_TRANSITIONS[action], updated_at=now)
        .returning(GuideApplication)
        .execution_options(synchronize_session="fetch", populate_existing=True)
    )
    application = result.scalar_one_or_none()

    if application is None:
        current = await _load(db, application_id)
        if current.locked_by != reviewer_id or not current.lease_active(now):
            raise LockedError(application_id, current.locked_by, as_utc(current.lock_expiry))
        raise StatusTransitionError(
            f"Cannot {action.value} an application in status "
            f"'{current.application_status.value}'"
        )

    event = ApplicationApproval(
        application_id=application.id,
        user_id=application.user_id,
        admin_id=reviewer_id,
        admin_action=action,
        note=note,
    )
    db.add(event)
    await db.flush()
    await db.refresh(event)

    logger.info(
        "Admin %d recorded %s on %s (now %s)",
        reviewer_id, action.value, application_id, application.application_status.value,
    )
    return event


async def attach_applicant_response(
    db: AsyncSession,
    application_id: str,
    response: dict[str, Any],
) -> ApplicationApproval:
    """Attach the applicant's answer to the latest require_more_info event.

    The application goes back to ``pending`` so a reviewer can pick it up
    again.
    """
    application = await _load(db, application_id)
    if application.application_status != ApplicationStatus.NEEDS_MORE_INFO:
        raise StatusTransitionError(
            f"Application {application_id} is not waiting for more information"
        )

    result = await db.execute(
        select(ApplicationApproval)
        .where(
            ApplicationApproval.application_id == application_id,
            ApplicationApproval.admin_action == AdminAction.REQUIRE_MORE_INFO,
        )
        .order_by(desc(ApplicationApproval.created_at), desc(ApplicationApproval.id))
        .limit(1)
    )
    event = result.scalar_one_or_none()
    if event is None:
        raise StatusTransitionError(
            f"Application {application_id} has no request for more information"
        )
    if event.user_response is not None:
        raise StatusTransitionError("The latest request for more information was already answered")

    now = utcnow()
    event.user_response = response
    event.updated_at = now
    application.application_status = ApplicationStatus.PENDING
    application.updated_at = now
    await db.flush()
    await db.refresh(event)

    logger.info("Applicant response attached to %s (event %d)", application_id, event.id)
    return event


async def get_approval_history(
    db: AsyncSession, application_id: str,
) -> list[ApplicationApproval]:
    """Audit trail for an application, newest first."""
    await _load(db, application_id)
    result = await db.execute(
        select(ApplicationApproval)
        .where(ApplicationApproval.application_id == application_id)
        .order_by(desc(ApplicationApproval.created_at), desc(ApplicationApproval.id))
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().unique().all())


def build_timeline(
    application: GuideApplication,
    events: list[ApplicationApproval],
) -> list[dict[str, Any]]:
    """Flatten an application and its events into a chronological timeline.

    Each event yields an ``admin_action`` entry; events carrying an applicant
    response also yield a ``user_response`` entry stamped with the time the
    response was attached.
    """
    timeline: list[dict[str, Any]] = [
        {
            "id": f"submitted-{application.id}",
            "type": "application_submitted",
            "timestamp": application.created_at,
        }
    ]
    for event in sorted(events, key=lambda e: (e.created_at, e.id)):
        timeline.append({
            "id": event.id,
            "type": "admin_action",
            "timestamp": event.created_at,
            "admin_action": event.admin_action.value if event.admin_action else None,
            "note": event.note,
            "admin_name": event.admin.name if event.admin else None,
        })
        if event.user_response is not None:
            timeline.append({
                "id": f"response-{event.id}",
                "type": "user_response",
                "timestamp": event.updated_at,
                "user_response": event.user_response,
            })
    return timeline
