"""Pydantic schemas for request/response validation."""

from datetime import datetime
from typing import Any, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict

from app.models.application import ApplicationStatus
from app.models.approval import AdminAction


# ── Guide applications ────────────────────────────────

class GuideApplicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: int
    name: str
    application_status: ApplicationStatus
    internal_tags: Optional[list[str]] = None
    flagged_for_review: bool = False
    locked_by: Optional[int] = None
    locked_at: Optional[datetime] = None
    lock_expiry: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class LeaseResponse(BaseModel):
    application_id: str
    locked_by: Optional[int] = None
    locked_at: Optional[datetime] = None
    lock_expiry: Optional[datetime] = None
    expired: bool = False
    locked_by_other: bool = False


class LeaseReleaseResponse(BaseModel):
    application_id: str
    released: bool


class ExpireStaleResponse(BaseModel):
    expired: int


# ── Decisions & audit trail ───────────────────────────

class DecisionRequest(BaseModel):
    action: Literal["approve", "reject", "require_more_info"]
    note: Optional[str] = Field(default=None, max_length=5000)

    @property
    def admin_action(self) -> AdminAction:
        return AdminAction(self.action)


class CertificationProof(BaseModel):
    proof: str = Field(min_length=1, description="URL of the uploaded file")
    description: str


class ApplicantResponse(BaseModel):
    """What an applicant sends back after a require_more_info decision."""
    description: Optional[str] = None
    certifications: Optional[dict[str, CertificationProof]] = None


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    application_id: str
    user_id: int
    admin_id: Optional[int] = None
    admin_action: Optional[AdminAction] = None
    note: Optional[str] = None
    user_response: Optional[dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class TimelineEntry(BaseModel):
    id: str | int
    type: Literal["application_submitted", "admin_action", "user_response"]
    timestamp: datetime
    admin_action: Optional[AdminAction] = None
    note: Optional[str] = None
    user_response: Optional[dict[str, Any]] = None
    admin_name: Optional[str] = None
