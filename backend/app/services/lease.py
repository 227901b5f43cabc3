"""Exclusive review leases on guide applications.

A lease gives one reviewer read-write access to an application for
``settings.lease_duration``. The lease lives in three columns on the
application row itself (``locked_by``, ``locked_at``, ``lock_expiry``) and
every write to them is a single conditional ``UPDATE ... WHERE id = ? AND
<predicate>`` statement, so two reviewers racing for the same row can never
both win. There are no in-process locks: any number of API workers may call
these functions concurrently.

Expired leases are cleared lazily by ``expire_stale``, which ``acquire`` and
the listing endpoints run before they touch lease state. The sweep runs in
the caller's transaction, so a request that fails afterwards (a 423 or a
404) rolls its sweep back and the expired leases stay until the next read
that succeeds. Every lease predicate compares ``lock_expiry`` with the
current time, so an unswept expired lease never blocks an acquire or a
decision. Nothing renews a lease except an explicit re-acquire by its
holder.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update, exists, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.application import GuideApplication, as_utc
from app.models.approval import ApplicationApproval, AdminAction

logger = logging.getLogger(__name__)


class LeaseError(Exception):
    """Base for review-lease and review-workflow failures."""


class NotFoundError(LeaseError):
    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f"Guide application {application_id} not found")


class LockedError(LeaseError):
    """Another reviewer holds an unexpired lease on the application."""

    def __init__(
        self,
        application_id: str,
        holder_id: int | None = None,
        expires_at: datetime | None = None,
    ):
        self.application_id = application_id
        self.holder_id = holder_id
        self.expires_at = expires_at
        holder = f"admin {holder_id}" if holder_id is not None else "another admin"
        super().__init__(f"Guide application {application_id} is being reviewed by {holder}")


class StatusTransitionError(LeaseError):
    pass


@dataclass(frozen=True)
class LeaseInfo:
    application_id: str
    holder_id: int
    acquired_at: datetime | None
    expires_at: datetime | None
    expired: bool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleared(now: datetime) -> dict:
    return {"locked_by": None, "locked_at": None, "lock_expiry": None, "updated_at": now}


def _available_to(reviewer_id: int, now: datetime):
    """Row predicate: no lease, an expired lease, or a lease already held by reviewer_id."""
    return or_(
        GuideApplication.locked_by.is_(None),
        GuideApplication.lock_expiry < now,
        GuideApplication.locked_by == reviewer_id,
    )


def _held_by_other(reviewer_id: int, now: datetime):
    return and_(
        GuideApplication.locked_by.is_not(None),
        GuideApplication.locked_by != reviewer_id,
        GuideApplication.lock_expiry > now,
    )


async def expire_stale(db: AsyncSession) -> int:
    """Clear every lease whose expiry has passed, whoever holds it.

    Returns the number of leases cleared. Safe to run at any time and from
    any number of workers.
    """
    now = utcnow()
    result = await db.execute(
        update(GuideApplication)
        .where(GuideApplication.lock_expiry < now)
        .values(**_cleared(now))
        .returning(GuideApplication.id)
        .execution_options(synchronize_session="fetch")
    )
    cleared = result.scalars().all()
    if cleared:
        logger.info("Expired %d stale review lease(s): %s", len(cleared), ", ".join(cleared))
    return len(cleared)


async def _take_lease(
    db: AsyncSession, application_id: str, reviewer_id: int,
) -> GuideApplication | None:
    """One conditional UPDATE; returns the leased row, or None if the predicate failed."""
    now = utcnow()
    result = await db.execute(
        update(GuideApplication)
        .where(
            GuideApplication.id == application_id,
            _available_to(reviewer_id, now),
        )
        .values(
            locked_by=reviewer_id,
            locked_at=now,
            lock_expiry=now + settings.lease_duration,
            updated_at=now,
        )
        .returning(GuideApplication)
        .execution_options(synchronize_session="fetch", populate_existing=True)
    )
    return result.scalar_one_or_none()


async def acquire(
    db: AsyncSession, application_id: str, reviewer_id: int,
) -> GuideApplication:
    """Take (or refresh) the exclusive lease on an application.

    Succeeds when the application has no lease, has an expired lease, or is
    already leased to ``reviewer_id``; in every case the lease is rewritten
    to start now. Raises NotFoundError for unknown ids and LockedError when
    another reviewer holds a live lease.

    If the update loses but the row turns out to be free by the time it is
    re-read (the holder released in between), the update is tried once more.

    The first successful acquire by a reviewer on an application appends a
    ``review`` event to its audit trail. The event is written in the same
    transaction as the lease.
    """
    await expire_stale(db)

    application = None
    for _ in range(2):
        application = await _take_lease(db, application_id, reviewer_id)
        if application is not None:
            break

        current = (
            await db.execute(
                select(GuideApplication.locked_by, GuideApplication.lock_expiry)
                .where(GuideApplication.id == application_id)
            )
        ).one_or_none()
        if current is None:
            raise NotFoundError(application_id)
        expires_at = as_utc(current.lock_expiry)
        if current.locked_by is not None and expires_at is not None and expires_at > utcnow():
            raise LockedError(application_id, current.locked_by, expires_at)
        logger.debug("Lease on %s freed while admin %d was acquiring; retrying", application_id, reviewer_id)

    if application is None:
        raise LockedError(application_id)

    await _record_review_started(db, application, reviewer_id)
    logger.info(
        "Admin %d holds review lease on %s until %s",
        reviewer_id, application_id, application.lock_expiry,
    )
    return application


async def _record_review_started(
    db: AsyncSession, application: GuideApplication, reviewer_id: int,
) -> None:
    already = await db.scalar(
        select(
            exists().where(
                ApplicationApproval.application_id == application.id,
                ApplicationApproval.admin_id == reviewer_id,
                ApplicationApproval.admin_action == AdminAction.REVIEW,
            )
        )
    )
    if already:
        return
    db.add(
        ApplicationApproval(
            application_id=application.id,
            user_id=application.user_id,
            admin_id=reviewer_id,
            admin_action=AdminAction.REVIEW,
        )
    )
    await db.flush()


async def release(db: AsyncSession, application_id: str, reviewer_id: int) -> bool:
    """Drop reviewer_id's lease on an application.

    Only the holder's lease is cleared. Releasing a lease held by someone
    else, an absent lease, or an unknown application is a no-op. Returns
    True when a lease was actually cleared.
    """
    now = utcnow()
    result = await db.execute(
        update(GuideApplication)
        .where(
            GuideApplication.id == application_id,
            GuideApplication.locked_by == reviewer_id,
        )
        .values(**_cleared(now))
        .returning(GuideApplication.id)
        .execution_options(synchronize_session="fetch")
    )
    released = result.scalar_one_or_none() is not None
    if released:
        logger.info("Admin %d released review lease on %s", reviewer_id, application_id)
    else:
        logger.debug("Admin %d holds no lease on %s; release ignored", reviewer_id, application_id)
    return released


async def is_locked_by_other(db: AsyncSession, application_id: str, reviewer_id: int) -> bool:
    """True iff someone other than reviewer_id holds a live lease on the application."""
    now = utcnow()
    locked = await db.scalar(
        select(
            exists().where(
                GuideApplication.id == application_id,
                _held_by_other(reviewer_id, now),
            )
        )
    )
    return bool(locked)


async def get_lease(db: AsyncSession, application_id: str) -> LeaseInfo | None:
    """Current lease on an application, or None when there is none.

    Raises NotFoundError for unknown ids. Expired leases that have not been
    swept yet are returned with ``expired=True``.
    """
    row = (
        await db.execute(
            select(
                GuideApplication.locked_by,
                GuideApplication.locked_at,
                GuideApplication.lock_expiry,
            ).where(GuideApplication.id == application_id)
        )
    ).one_or_none()
    if row is None:
        raise NotFoundError(application_id)
    if row.locked_by is None:
        return None
    expires_at = as_utc(row.lock_expiry)
    return LeaseInfo(
        application_id=application_id,
        holder_id=row.locked_by,
        acquired_at=as_utc(row.locked_at),
        expires_at=expires_at,
        expired=expires_at is None or expires_at <= utcnow(),
    )
