"""
Tests for the special request lifecycle.

Covers status transitions and their stamping rules, progress tracking,
the revision quota, milestones, cancellation and feedback.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from commissions.errors import NotFound, PersistenceFailure, QuotaExceeded, ValidationError
from commissions.extensions import db
from commissions.models import Notification, SpecialRequest, User
from commissions.services import lifecycle, notification_service
from commissions.services.special_request_service import create_request
from tests.conftest import ARTIST_ID, SENDER_ID, reload


# ============================================================
# apply_transition
# ============================================================

class TestApplyTransition:

    def _unsaved(self, **kwargs):
        values = dict(
            sender_id=SENDER_ID, artist_id=ARTIST_ID, request_type="portrait",
            description="x", budget=100.0, status="pending", current_progress=40,
        )
        values.update(kwargs)
        return SpecialRequest(**values)

    def test_completed_forces_progress_and_defaults_final_price(self):
        sr = self._unsaved(status="review", quoted_price=500.0)

        lifecycle.apply_transition(sr, "completed")

        assert sr.status == "completed"
        assert sr.current_progress == 100
        assert sr.final_price == 500.0
        assert sr.completed_at is not None

    def test_explicit_final_price_is_kept(self):
        sr = self._unsaved(status="review", quoted_price=500.0, final_price=450.0)

        lifecycle.apply_transition(sr, "completed")

        assert sr.final_price == 450.0

    def test_no_final_price_without_quote(self):
        sr = self._unsaved(status="review")

        lifecycle.apply_transition(sr, "completed")

        assert sr.final_price is None

    @pytest.mark.parametrize("status,field", [
        ("accepted", "accepted_at"),
        ("in_progress", "started_at"),
        ("completed", "completed_at"),
        ("rejected", "rejected_at"),
        ("cancelled", "cancelled_at"),
    ])
    def test_timestamps_are_stamped_once(self, status, field):
        sr = self._unsaved()
        first = datetime(2024, 1, 1, 12, 0)

        lifecycle.apply_transition(sr, status, now=first)
        lifecycle.apply_transition(sr, status, now=first + timedelta(days=3))

        assert getattr(sr, field) == first

    def test_review_stamps_nothing(self):
        sr = self._unsaved(status="in_progress")

        lifecycle.apply_transition(sr, "review")

        assert sr.status == "review"
        assert sr.completed_at is None

    def test_unknown_status_rejected(self):
        sr = self._unsaved()

        with pytest.raises(ValidationError):
            lifecycle.apply_transition(sr, "shipped")


class TestValidateRequest:

    def test_used_revisions_above_quota(self):
        sr = SpecialRequest(used_revisions=4, max_revisions=3)

        with pytest.raises(ValidationError):
            lifecycle.validate_request(sr)

    def test_used_revisions_at_quota_is_fine(self):
        sr = SpecialRequest(used_revisions=3, max_revisions=3)

        lifecycle.validate_request(sr)


# ============================================================
# update_status
# ============================================================

class TestUpdateStatus:

    def test_accept_sets_quote_and_timestamp(self, make_request):
        sr = make_request()

        lifecycle.update_status(sr, "accepted", actor_id=ARTIST_ID, quoted_price="650")

        sr = reload(sr)
        assert sr.status == "accepted"
        assert sr.quoted_price == 650.0
        assert sr.accepted_at is not None

    def test_completion_scenario(self, make_request):
        sr = make_request("in_progress", quoted_price=500)
        assert sr.final_price is None

        lifecycle.update_status(sr, "completed", actor_id=ARTIST_ID)

        sr = reload(sr)
        assert sr.final_price == 500
        assert sr.current_progress == 100
        assert sr.completed_at is not None

    def test_reentering_status_keeps_timestamp(self, make_request):
        sr = make_request("accepted")
        accepted_at = sr.accepted_at

        lifecycle.update_status(sr, "accepted", actor_id=ARTIST_ID)

        assert reload(sr).accepted_at == accepted_at

    def test_terminal_status_cannot_be_left(self, make_request):
        sr = make_request("completed")

        with pytest.raises(ValidationError):
            lifecycle.update_status(sr, "in_progress", actor_id=ARTIST_ID)

        assert reload(sr).status == "completed"

    def test_illegal_jump_rejected(self, make_request):
        sr = make_request()

        with pytest.raises(ValidationError):
            lifecycle.update_status(sr, "review", actor_id=ARTIST_ID)

    def test_invalid_quote_leaves_request_unchanged(self, make_request):
        sr = make_request()

        with pytest.raises(ValidationError):
            lifecycle.update_status(sr, "accepted", actor_id=ARTIST_ID, quoted_price="lots")

        sr = reload(sr)
        assert sr.status == "pending"
        assert sr.accepted_at is None

    def test_sender_is_notified(self, make_request):
        sr = make_request()

        lifecycle.update_status(sr, "accepted", actor_id=ARTIST_ID, response="Happy to paint it")

        notes = Notification.query.filter_by(user_id=SENDER_ID, type="special_request_accepted").all()
        assert len(notes) == 1
        assert notes[0].message == "Happy to paint it"
        assert notes[0].details["request_id"] == sr.id

    def test_notification_failure_does_not_undo_transition(self, make_request, monkeypatch):
        sr = make_request()

        def broken(**kwargs):
            raise OperationalError("INSERT", {}, Exception("notifications table locked"))

        monkeypatch.setattr(notification_service, "Notification", broken)
        lifecycle.update_status(sr, "accepted", actor_id=ARTIST_ID)

        assert reload(sr).status == "accepted"

    def test_persistence_failure_is_typed_and_rolled_back(self, make_request, monkeypatch):
        sr = make_request()

        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("database is gone"))

        with monkeypatch.context() as m:
            m.setattr(db.session, "commit", failing_commit)
            with pytest.raises(PersistenceFailure):
                lifecycle.update_status(sr, "accepted", actor_id=ARTIST_ID)

        assert reload(sr).status == "pending"


# ============================================================
# record_progress
# ============================================================

class TestRecordProgress:

    @pytest.mark.parametrize("status,progress,expected", [
        ("in_progress", 100, "review"),
        ("accepted", 30, "in_progress"),
        ("accepted", 100, "in_progress"),
        ("accepted", 0, "accepted"),
        ("in_progress", 99, "in_progress"),
        ("pending", 50, "pending"),
        ("review", 100, "review"),
    ])
    def test_auto_transitions(self, make_request, status, progress, expected):
        sr = make_request(status)

        lifecycle.record_progress(sr, progress, "update", ARTIST_ID)

        sr = reload(sr)
        assert sr.status == expected
        assert sr.current_progress == progress

    def test_moving_to_in_progress_stamps_started_at(self, make_request):
        sr = make_request("accepted")

        lifecycle.record_progress(sr, 10, "sketch done", ARTIST_ID)

        assert reload(sr).started_at is not None

    def test_appends_log_entries(self, make_request):
        sr = make_request("in_progress")

        lifecycle.record_progress(sr, 20, "sketch", ARTIST_ID)
        lifecycle.record_progress(sr, 60, "colors", ARTIST_ID, attachments=["https://cdn.example/wip.png"])

        sr = reload(sr)
        assert [p.percentage for p in sr.progress_updates] == [20, 60]
        assert sr.progress_updates[-1].attachments[0]["url"] == "https://cdn.example/wip.png"
        assert sr.current_progress == 60

    def test_progress_may_go_backwards(self, make_request):
        sr = make_request("in_progress")
        lifecycle.record_progress(sr, 80, None, ARTIST_ID)

        lifecycle.record_progress(sr, 40, "restarting background", ARTIST_ID)

        assert reload(sr).current_progress == 40

    @pytest.mark.parametrize("progress", [-1, 101, "50", 12.5, True])
    def test_invalid_progress_rejected(self, make_request, progress):
        sr = make_request("in_progress")

        with pytest.raises(ValidationError):
            lifecycle.record_progress(sr, progress, None, ARTIST_ID)

        sr = reload(sr)
        assert sr.progress_updates == []
        assert sr.current_progress == 0

    def test_unknown_milestone_link(self, make_request):
        sr = make_request("in_progress")

        with pytest.raises(NotFound):
            lifecycle.record_progress(sr, 10, None, ARTIST_ID, milestone_id="MS-missing")


# ============================================================
# request_revision
# ============================================================

class TestRequestRevision:

    def test_quota_scenario(self, make_request):
        sr = make_request("in_progress", max_revisions=3)

        for i in range(3):
            lifecycle.request_revision(sr, SENDER_ID, f"change number {i}")

        sr = reload(sr)
        assert sr.used_revisions == 3
        assert sr.status == "review"
        assert len(sr.revisions) == 3

        with pytest.raises(QuotaExceeded):
            lifecycle.request_revision(sr, SENDER_ID, "one more please")

        sr = reload(sr)
        assert sr.used_revisions == 3
        assert len(sr.revisions) == 3
        assert sr.status == "review"

    def test_zero_quota(self, make_request):
        sr = make_request("in_progress", max_revisions=0)

        with pytest.raises(QuotaExceeded):
            lifecycle.request_revision(sr, SENDER_ID, "brighter sky")

        sr = reload(sr)
        assert sr.used_revisions == 0
        assert sr.revisions == []
        assert sr.status == "in_progress"

    def test_revision_record(self, make_request):
        sr = make_request("review")

        revision = lifecycle.request_revision(
            sr, SENDER_ID, "Make the sky warmer",
            specific_changes=["sky", "lighting"], priority="high",
            attachments=[{"url": "https://cdn.example/ref.jpg", "name": "reference"}],
        )

        assert revision.status == "pending"
        assert revision.priority == "high"
        assert revision.specific_changes == ["sky", "lighting"]
        assert revision.attachments[0]["type"] == "document"
        assert Notification.query.filter_by(user_id=ARTIST_ID, type="special_request_revision").count() == 1

    def test_stale_instance_cannot_overdraw_quota(self, make_request):
        sr = make_request("in_progress", max_revisions=1)
        lifecycle.request_revision(sr, SENDER_ID, "first")

        # another request handler already consumed the quota; this copy still says 0 used
        sr = reload(sr)
        db.session.expire_all()
        stale = db.session.get(SpecialRequest, sr.id)
        stale.__dict__["used_revisions"] = 0
        stale.__dict__["status"] = "in_progress"

        with pytest.raises(QuotaExceeded):
            lifecycle.request_revision(stale, SENDER_ID, "second")

        assert reload(sr).used_revisions == 1

    def test_request_cancelled_after_loading_is_not_a_quota_error(self, make_request):
        sr = make_request("in_progress", max_revisions=2)
        request_id = sr.id

        # another request handler cancelled it; this copy still says in_progress
        db.session.execute(update(SpecialRequest).where(SpecialRequest.id == request_id).values(status="cancelled"))
        db.session.commit()
        stale = db.session.get(SpecialRequest, request_id)
        stale.__dict__["status"] = "in_progress"

        with pytest.raises(ValidationError) as exc:
            lifecycle.request_revision(stale, SENDER_ID, "change it")

        assert exc.value.details == {"status": "cancelled"}
        sr = reload(stale)
        assert sr.used_revisions == 0
        assert sr.revisions == []

    @pytest.mark.parametrize("status", ["pending", "accepted", "completed", "cancelled"])
    def test_only_work_in_progress_can_be_revised(self, make_request, status):
        sr = make_request(status)

        with pytest.raises(ValidationError):
            lifecycle.request_revision(sr, SENDER_ID, "change it")

        assert reload(sr).used_revisions == 0

    def test_revisions_disabled(self, make_request):
        sr = make_request("in_progress", allow_revisions=False)

        with pytest.raises(ValidationError):
            lifecycle.request_revision(sr, SENDER_ID, "change it")

    def test_feedback_required(self, make_request):
        sr = make_request("in_progress")

        with pytest.raises(ValidationError):
            lifecycle.request_revision(sr, SENDER_ID, "   ")

    def test_artist_responds(self, make_request):
        sr = make_request("in_progress")
        revision = lifecycle.request_revision(sr, SENDER_ID, "warmer colors")

        lifecycle.respond_to_revision(reload(sr), revision.id, "On it", status="in_progress")

        revision = reload(sr).revisions[0]
        assert revision.artist_response == "On it"
        assert revision.status == "in_progress"
        assert revision.responded_at is not None

    def test_respond_to_unknown_revision(self, make_request):
        sr = make_request("in_progress")

        with pytest.raises(NotFound):
            lifecycle.respond_to_revision(sr, "REV-missing", "?")

    def test_quota_lowered_below_usage_is_rejected(self, make_request):
        sr = make_request("in_progress", max_revisions=2)
        lifecycle.request_revision(sr, SENDER_ID, "first")
        sr = reload(sr)

        with pytest.raises(ValidationError):
            with lifecycle.rollback_on_error():
                sr.max_revisions = 0
                lifecycle.persist(sr)

        sr = reload(sr)
        assert sr.max_revisions == 2
        assert sr.used_revisions == 1


# ============================================================
# milestones
# ============================================================

class TestMilestones:

    def _with_milestones(self, make_request, weights):
        sr = make_request("in_progress")
        ids = [lifecycle.add_milestone(sr, f"step {i}", w).id for i, w in enumerate(weights)]
        return reload(sr), ids

    def test_progress_is_weighted(self, make_request):
        sr, ids = self._with_milestones(make_request, [20, 30, 50])

        lifecycle.complete_milestone(sr, ids[0])
        lifecycle.complete_milestone(reload(sr), ids[2], deliverables=[{"url": "https://cdn.example/final.png"}])

        sr = reload(sr)
        assert sr.current_progress == 70
        done = next(m for m in sr.milestones if m.id == ids[2])
        assert done.status == "completed"
        assert done.completed_at is not None
        assert done.deliverables[0]["type"] == "final"

    def test_half_rounds_up(self, make_request):
        sr, ids = self._with_milestones(make_request, [1, 7])

        lifecycle.complete_milestone(sr, ids[0])

        assert reload(sr).current_progress == 13

    def test_zero_total_weight_leaves_progress(self, make_request):
        sr, ids = self._with_milestones(make_request, [0, 0])
        lifecycle.record_progress(sr, 25, None, ARTIST_ID)

        lifecycle.complete_milestone(reload(sr), ids[0])

        assert reload(sr).current_progress == 25

    def test_unknown_milestone(self, make_request):
        sr, ids = self._with_milestones(make_request, [50, 50])

        with pytest.raises(NotFound):
            lifecycle.complete_milestone(sr, "MS-nope")

        sr = reload(sr)
        assert sr.current_progress == 0
        assert all(m.status == "pending" for m in sr.milestones)

    def test_bad_deliverable_type(self, make_request):
        sr, ids = self._with_milestones(make_request, [100])

        with pytest.raises(ValidationError):
            lifecycle.complete_milestone(sr, ids[0], deliverables=[{"url": "u", "type": "zip"}])

        assert reload(sr).milestones[0].status == "pending"

    def test_weight_out_of_range(self, make_request):
        sr = make_request("in_progress")

        with pytest.raises(ValidationError):
            lifecycle.add_milestone(sr, "too heavy", 120)

        assert reload(sr).milestones == []


# ============================================================
# estimate / complete / cancel / feedback
# ============================================================

class TestEstimateCompletion:

    def test_prefers_estimated_delivery(self):
        eta = datetime(2030, 5, 1)
        sr = SpecialRequest(estimated_delivery=eta, deadline=datetime(2030, 6, 1))

        assert lifecycle.estimate_completion(sr) == eta

    def test_falls_back_to_deadline(self):
        deadline = datetime(2030, 6, 1)
        sr = SpecialRequest(deadline=deadline)

        assert lifecycle.estimate_completion(sr) == deadline

    def test_fixed_fourteen_days_otherwise(self):
        now = datetime(2030, 1, 1)

        assert lifecycle.estimate_completion(SpecialRequest(), now=now) == datetime(2030, 1, 15)


class TestCompleteRequest:

    def test_delivers_and_completes(self, make_request):
        sr = make_request("review", quoted_price=300)

        lifecycle.complete_request(
            sr, ARTIST_ID,
            [{"url": "https://cdn.example/final.png"}, {"url": "https://cdn.example/src.psd", "type": "source"}],
            final_note="Enjoy",
        )

        sr = reload(sr)
        assert sr.status == "completed"
        assert [d["type"] for d in sr.deliverables] == ["final", "source"]
        assert sr.final_note == "Enjoy"
        assert sr.final_price == 300

    def test_requires_deliverables(self, make_request):
        sr = make_request("in_progress")

        with pytest.raises(ValidationError):
            lifecycle.complete_request(sr, ARTIST_ID, [])

    def test_pending_cannot_be_completed(self, make_request):
        sr = make_request()

        with pytest.raises(ValidationError):
            lifecycle.complete_request(sr, ARTIST_ID, ["https://cdn.example/final.png"])


class TestCancelRequest:

    def test_cancel_with_refund(self, make_request):
        sr = make_request("accepted")

        lifecycle.cancel_request(sr, SENDER_ID, reason="Changed my mind", refund_amount=100)

        sr = reload(sr)
        assert sr.status == "cancelled"
        assert sr.cancelled_at is not None
        assert sr.cancellation_reason == "Changed my mind"
        assert sr.cancelled_by == SENDER_ID
        assert sr.refund_status == "pending"
        assert Notification.query.filter_by(user_id=ARTIST_ID, type="special_request_cancelled").count() == 1

    def test_reason_code_is_stored_as_label(self, make_request):
        sr = make_request()

        lifecycle.cancel_request(sr, SENDER_ID, reason="service_delayed")

        assert reload(sr).cancellation_reason == lifecycle.CANCELLATION_REASONS["service_delayed"]

    @pytest.mark.parametrize("amount", ["nan", "inf", -5, "ten"])
    def test_refund_must_be_a_finite_amount(self, make_request, amount):
        sr = make_request("accepted")

        with pytest.raises(ValidationError):
            lifecycle.cancel_request(sr, SENDER_ID, reason="Changed my mind", refund_amount=amount)

        assert reload(sr).status == "accepted"

    def test_cannot_cancel_twice(self, make_request):
        sr = make_request("cancelled")

        with pytest.raises(ValidationError):
            lifecycle.cancel_request(sr, SENDER_ID)


class TestFeedback:

    def test_rating_on_completed(self, make_request):
        sr = make_request("completed")

        lifecycle.submit_feedback(sr, SENDER_ID, 5, "Beautiful work")

        sr = reload(sr)
        assert sr.rating == 5
        assert sr.feedback_at is not None

    @pytest.mark.parametrize("rating", [0, 6, "5", None])
    def test_rating_range(self, make_request, rating):
        sr = make_request("completed")

        with pytest.raises(ValidationError):
            lifecycle.submit_feedback(sr, SENDER_ID, rating)

    def test_unfinished_request_cannot_be_rated(self, make_request):
        sr = make_request("in_progress")

        with pytest.raises(ValidationError):
            lifecycle.submit_feedback(sr, SENDER_ID, 4)


# ============================================================
# create_request
# ============================================================

class TestCreateRequest:

    def test_creates_pending_request(self, app_ctx, request_data):
        sr = create_request(SENDER_ID, request_data)

        assert sr.status == "pending"
        assert sr.used_revisions == 0
        assert sr.allow_revisions is True

    @pytest.mark.parametrize("artist_id,role,active", [
        ("USR-nobody1", None, True),
        ("USR-buyer02", "buyer", True),
        ("USR-retired", "artist", False),
    ])
    def test_artist_must_exist_and_be_active(self, app_ctx, request_data, artist_id, role, active):
        if role:
            db.session.add(User(id=artist_id, display_name="X", email=f"{artist_id}@example.com",
                                role=role, is_active=active))
            db.session.commit()

        with pytest.raises(NotFound):
            create_request(SENDER_ID, dict(request_data, artist_id=artist_id))

        assert SpecialRequest.query.count() == 0

    @pytest.mark.parametrize("budget", ["nan", "inf", "-inf", float("nan"), -1, "cheap", True])
    def test_budget_must_be_a_finite_amount(self, app_ctx, request_data, budget):
        with pytest.raises(ValidationError):
            create_request(SENDER_ID, dict(request_data, budget=budget))

    @pytest.mark.parametrize("raw,expected", [
        ("false", False), ("False", False), ("0", False), (False, False),
        ("true", True), ("yes", True), (True, True),
    ])
    def test_boolean_flags_are_parsed(self, app_ctx, request_data, raw, expected):
        sr = create_request(SENDER_ID, dict(request_data, allow_revisions=raw, is_private=raw))

        assert sr.allow_revisions is expected
        assert sr.is_private is expected

    @pytest.mark.parametrize("raw", ["maybe", 2, "off-ish"])
    def test_unparseable_boolean_rejected(self, app_ctx, request_data, raw):
        with pytest.raises(ValidationError):
            create_request(SENDER_ID, dict(request_data, allow_revisions=raw))

    def test_revisions_disabled_by_string_flag(self, make_request):
        sr = make_request("in_progress", allow_revisions="false")

        with pytest.raises(ValidationError):
            lifecycle.request_revision(sr, SENDER_ID, "change it")
