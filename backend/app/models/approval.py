"""Append-only decision events recorded against guide applications."""

import enum
from datetime import datetime

from sqlalchemy import String, Integer, Enum, DateTime, ForeignKey, JSON, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class AdminAction(str, enum.Enum):
    REVIEW = "review"
    APPROVE = "approve"
    REJECT = "reject"
    REQUIRE_MORE_INFO = "require_more_info"


class ApplicationApproval(Base):
    """One entry in an application's audit trail.

    ``admin_id`` is null for entries written by the system or before a
    reviewer was involved. ``user_response`` is the only column that may be
    written after creation, and only on a ``require_more_info`` entry.
    """
    __tablename__ = "guide_application_approvals"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    application_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("guide_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    admin_id: Mapped[int | None] = mapped_column(
        ForeignKey("admin_users.id"), nullable=True, index=True,
    )
    admin_action: Mapped[AdminAction | None] = mapped_column(
        Enum(AdminAction, name="admin_action_type", values_callable=lambda e: [i.value for i in e]),
        nullable=True,
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False,
    )

    application = relationship("GuideApplication", back_populates="approvals")
    admin = relationship("AdminUser", foreign_keys=[admin_id], lazy="joined")
