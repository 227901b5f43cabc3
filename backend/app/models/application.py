"""Guide application model: the record reviewers lease while they work on it."""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, Boolean, Enum, DateTime, JSON, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class ApplicationStatus(str, enum.Enum):
    DRAFTED = "drafted"
    PENDING = "pending"
    NEEDS_MORE_INFO = "needs_more_info"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({ApplicationStatus.APPROVED, ApplicationStatus.REJECTED})


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class GuideApplication(Base):
    __tablename__ = "guide_applications"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    application_status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, name="application_status_type", values_callable=lambda e: [i.value for i in e]),
        default=ApplicationStatus.DRAFTED,
        nullable=False,
        index=True,
    )
    internal_tags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    flagged_for_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Exclusive review lease. All three are set together or cleared together.
    locked_by: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lock_expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False,
    )

    approvals = relationship(
        "ApplicationApproval", back_populates="application",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="ApplicationApproval.created_at",
    )

    @property
    def is_terminal(self) -> bool:
        return self.application_status in TERMINAL_STATUSES

    def lease_active(self, now: datetime) -> bool:
        """True when a lease is held and has not yet expired at `now`."""
        expiry = as_utc(self.lock_expiry)
        return self.locked_by is not None and expiry is not None and expiry > now
