"""Tests for the review workflow on top of the lease.

Covers listing visibility, read-only access, lease-guarded decisions,
applicant responses and the audit trail / timeline.
"""

import pytest

from app.config import settings
from app.models import ApplicationStatus, AdminAction, GuideApplication
from app.services.lease import (
    LockedError,
    NotFoundError,
    StatusTransitionError,
    acquire,
    release,
)
from app.services.review import (
    list_applications,
    get_application,
    record_decision,
    attach_applicant_response,
    get_approval_history,
    build_timeline,
)

from conftest import ADA, BEN, backdate_lease


def _ids(applications):
    return sorted(a.id for a in applications)


RESPONSE = {
    "description": "Attached my first-aid certificate",
    "certifications": {
        "first_aid": {"proof": "https://files.example.com/fa.pdf", "description": "Red Cross 2026"},
    },
}


# ── listing ───────────────────────────────────────────

class TestListApplications:

    @pytest.mark.asyncio
    async def test_unfiltered_listing(self, db):
        assert _ids(await list_applications(db)) == ["app-1", "app-2", "app-3"]

    @pytest.mark.asyncio
    async def test_leased_application_hidden_from_other_reviewers(self, db):
        await acquire(db, "app-1", ADA)
        await db.commit()

        assert _ids(await list_applications(db, reviewer_id=BEN)) == ["app-2", "app-3"]
        assert _ids(await list_applications(db, reviewer_id=ADA)) == ["app-1", "app-2", "app-3"]

    @pytest.mark.asyncio
    async def test_expired_lease_is_swept_and_visible(self, db, session_factory):
        await acquire(db, "app-1", ADA)
        await db.commit()
        await backdate_lease(session_factory, "app-1")

        applications = await list_applications(db, reviewer_id=BEN)
        assert "app-1" in _ids(applications)
        app_1 = next(a for a in applications if a.id == "app-1")
        assert app_1.locked_by is None

    @pytest.mark.asyncio
    async def test_expired_lease_visible_without_sweep(self, db, session_factory, monkeypatch):
        monkeypatch.setattr(settings, "sweep_on_read", False)
        await acquire(db, "app-1", ADA)
        await db.commit()
        await backdate_lease(session_factory, "app-1")

        applications = await list_applications(db, reviewer_id=BEN)
        app_1 = next(a for a in applications if a.id == "app-1")
        assert app_1.locked_by == ADA

    @pytest.mark.asyncio
    async def test_status_filter(self, db):
        pending = await list_applications(db, status=ApplicationStatus.PENDING)
        assert _ids(pending) == ["app-1", "app-2"]

    @pytest.mark.asyncio
    async def test_flagged_filter(self, db):
        assert _ids(await list_applications(db, flagged_for_review=True)) == ["app-2"]
        assert _ids(await list_applications(db, flagged_for_review=False)) == ["app-1", "app-3"]

    @pytest.mark.asyncio
    async def test_user_filter(self, db):
        assert _ids(await list_applications(db, user_id=103)) == ["app-3"]
        assert await list_applications(db, user_id=999) == []


# ── detail ────────────────────────────────────────────

class TestGetApplication:

    @pytest.mark.asyncio
    async def test_leased_by_other_raises_locked(self, db):
        await acquire(db, "app-1", ADA)
        await db.commit()

        with pytest.raises(LockedError) as exc_info:
            await get_application(db, "app-1", BEN)
        assert exc_info.value.holder_id == ADA

    @pytest.mark.asyncio
    async def test_read_only_bypasses_lease(self, db):
        await acquire(db, "app-1", ADA)
        await db.commit()

        application = await get_application(db, "app-1", BEN, read_only=True)
        assert application.id == "app-1"
        assert application.locked_by == ADA

    @pytest.mark.asyncio
    async def test_holder_can_open(self, db):
        await acquire(db, "app-1", ADA)
        application = await get_application(db, "app-1", ADA)
        assert application.locked_by == ADA

    @pytest.mark.asyncio
    async def test_unleased_application_opens_without_taking_lease(self, db):
        application = await get_application(db, "app-2", BEN)
        assert application.locked_by is None

    @pytest.mark.asyncio
    async def test_unknown_application(self, db):
        with pytest.raises(NotFoundError):
            await get_application(db, "missing", ADA)
        with pytest.raises(NotFoundError):
            await get_application(db, "missing", ADA, read_only=True)


# ── decisions ─────────────────────────────────────────

class TestRecordDecision:

    @pytest.mark.asyncio
    async def test_approve_with_lease(self, db):
        await acquire(db, "app-1", ADA)
        event = await record_decision(db, "app-1", ADA, AdminAction.APPROVE, "All documents verified")
        await db.commit()

        assert event.id is not None
        assert event.admin_action == AdminAction.APPROVE
        assert event.note == "All documents verified"
        assert event.admin_id == ADA
        assert event.user_id == 101

        application = await db.get(GuideApplication, "app-1", populate_existing=True)
        assert application.application_status == ApplicationStatus.APPROVED
        assert application.locked_by == ADA

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action, expected", [
        (AdminAction.REJECT, ApplicationStatus.REJECTED),
        (AdminAction.REQUIRE_MORE_INFO, ApplicationStatus.NEEDS_MORE_INFO),
    ])
    async def test_transitions(self, db, action, expected):
        await acquire(db, "app-2", BEN)
        await record_decision(db, "app-2", BEN, action)
        application = await db.get(GuideApplication, "app-2", populate_existing=True)
        assert application.application_status == expected

    @pytest.mark.asyncio
    async def test_without_lease_raises_locked(self, db):
        with pytest.raises(LockedError) as exc_info:
            await record_decision(db, "app-1", ADA, AdminAction.APPROVE)
        assert exc_info.value.holder_id is None

    @pytest.mark.asyncio
    async def test_lease_held_by_other_raises_locked(self, db):
        await acquire(db, "app-1", BEN)
        await db.commit()

        with pytest.raises(LockedError) as exc_info:
            await record_decision(db, "app-1", ADA, AdminAction.REJECT)
        assert exc_info.value.holder_id == BEN

        application = await db.get(GuideApplication, "app-1", populate_existing=True)
        assert application.application_status == ApplicationStatus.PENDING

    @pytest.mark.asyncio
    async def test_expired_own_lease_raises_locked(self, db, session_factory):
        await acquire(db, "app-1", ADA)
        await db.commit()
        await backdate_lease(session_factory, "app-1")

        with pytest.raises(LockedError):
            await record_decision(db, "app-1", ADA, AdminAction.APPROVE)

    @pytest.mark.asyncio
    async def test_released_lease_raises_locked(self, db):
        await acquire(db, "app-1", ADA)
        await release(db, "app-1", ADA)
        with pytest.raises(LockedError):
            await record_decision(db, "app-1", ADA, AdminAction.APPROVE)

    @pytest.mark.asyncio
    async def test_decided_application_cannot_be_decided_again(self, db):
        await acquire(db, "app-3", ADA)
        with pytest.raises(StatusTransitionError):
            await record_decision(db, "app-3", ADA, AdminAction.REJECT)

    @pytest.mark.asyncio
    async def test_review_is_not_a_decision(self, db):
        await acquire(db, "app-1", ADA)
        with pytest.raises(StatusTransitionError):
            await record_decision(db, "app-1", ADA, AdminAction.REVIEW)

    @pytest.mark.asyncio
    async def test_unknown_application(self, db):
        with pytest.raises(NotFoundError):
            await record_decision(db, "missing", ADA, AdminAction.APPROVE)


# ── applicant responses ───────────────────────────────

class TestApplicantResponse:

    @pytest.mark.asyncio
    async def test_response_returns_application_to_pending(self, db):
        await acquire(db, "app-1", ADA)
        request = await record_decision(
            db, "app-1", ADA, AdminAction.REQUIRE_MORE_INFO, "Need a first-aid certificate",
        )

        event = await attach_applicant_response(db, "app-1", RESPONSE)
        assert event.id == request.id
        assert event.user_response == RESPONSE

        application = await db.get(GuideApplication, "app-1", populate_existing=True)
        assert application.application_status == ApplicationStatus.PENDING

    @pytest.mark.asyncio
    async def test_pending_application_rejects_response(self, db):
        with pytest.raises(StatusTransitionError):
            await attach_applicant_response(db, "app-1", RESPONSE)

    @pytest.mark.asyncio
    async def test_second_response_to_same_request_rejected(self, db):
        await acquire(db, "app-1", ADA)
        await record_decision(db, "app-1", ADA, AdminAction.REQUIRE_MORE_INFO)
        await attach_applicant_response(db, "app-1", RESPONSE)

        with pytest.raises(StatusTransitionError):
            await attach_applicant_response(db, "app-1", {"description": "again"})

    @pytest.mark.asyncio
    async def test_response_attaches_to_latest_request(self, db):
        await acquire(db, "app-1", ADA)
        first = await record_decision(db, "app-1", ADA, AdminAction.REQUIRE_MORE_INFO, "first")
        await attach_applicant_response(db, "app-1", {"description": "one"})
        second = await record_decision(db, "app-1", ADA, AdminAction.REQUIRE_MORE_INFO, "second")

        event = await attach_applicant_response(db, "app-1", {"description": "two"})
        assert event.id == second.id
        assert event.id != first.id

    @pytest.mark.asyncio
    async def test_unknown_application(self, db):
        with pytest.raises(NotFoundError):
            await attach_applicant_response(db, "missing", RESPONSE)


# ── audit trail ───────────────────────────────────────

class TestHistoryAndTimeline:

    @pytest.mark.asyncio
    async def test_history_newest_first(self, db):
        await acquire(db, "app-1", ADA)
        await record_decision(db, "app-1", ADA, AdminAction.REQUIRE_MORE_INFO)
        await db.commit()

        history = await get_approval_history(db, "app-1")
        assert [e.admin_action for e in history] == [
            AdminAction.REQUIRE_MORE_INFO,
            AdminAction.REVIEW,
        ]

    @pytest.mark.asyncio
    async def test_history_empty(self, db):
        assert await get_approval_history(db, "app-2") == []

    @pytest.mark.asyncio
    async def test_history_unknown_application(self, db):
        with pytest.raises(NotFoundError):
            await get_approval_history(db, "missing")

    @pytest.mark.asyncio
    async def test_timeline(self, db):
        await acquire(db, "app-1", ADA)
        request = await record_decision(db, "app-1", ADA, AdminAction.REQUIRE_MORE_INFO, "Need proof")
        await attach_applicant_response(db, "app-1", RESPONSE)
        await db.commit()

        application = await get_application(db, "app-1", ADA, read_only=True)
        timeline = build_timeline(application, await get_approval_history(db, "app-1"))

        assert [entry["type"] for entry in timeline] == [
            "application_submitted",
            "admin_action",
            "admin_action",
            "user_response",
        ]
        assert timeline[0]["id"] == "submitted-app-1"
        assert timeline[1]["admin_action"] == "review"
        assert timeline[1]["admin_name"] == "Ada Okafor"
        assert timeline[2]["admin_action"] == "require_more_info"
        assert timeline[2]["note"] == "Need proof"
        assert timeline[3]["id"] == f"response-{request.id}"
        assert timeline[3]["user_response"] == RESPONSE

    @pytest.mark.asyncio
    async def test_timeline_without_events(self, db):
        application = await get_application(db, "app-2", ADA, read_only=True)
        timeline = build_timeline(application, [])
        assert len(timeline) == 1
        assert timeline[0]["type"] == "application_submitted"
