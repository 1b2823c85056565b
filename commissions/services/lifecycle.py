"""Special request lifecycle: status transitions and the operations that drive them.

Every mutation path goes through ``apply_transition`` for status changes and
through ``persist`` for the commit.
"""
from contextlib import contextmanager
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from commissions.errors import CommissionError, NotFound, PersistenceFailure, QuotaExceeded, ValidationError
from commissions.extensions import db
from commissions.models.attachment import normalize_attachments, normalize_deliverables
from commissions.models.milestone import Milestone
from commissions.models.progress_update import ProgressUpdate
from commissions.models.revision import Revision
from commissions.models.special_request import (
    Priority,
    RequestStatus,
    SpecialRequest,
    check_choice,
)
from commissions.services.notification_service import send_notification_to_user
from commissions.utils.dates import parse_datetime
from commissions.utils.numbers import to_amount

DEFAULT_COMPLETION_DAYS = 14

STATUS_TIMESTAMPS = {
    "accepted": "accepted_at",
    "in_progress": "started_at",
    "completed": "completed_at",
    "rejected": "rejected_at",
    "cancelled": "cancelled_at",
}

ALLOWED_TRANSITIONS = {
    "pending": {"accepted", "rejected", "cancelled"},
    "accepted": {"in_progress", "completed", "rejected", "cancelled"},
    "in_progress": {"review", "completed", "cancelled"},
    "review": {"in_progress", "completed", "cancelled"},
    "completed": set(),
    "rejected": set(),
    "cancelled": set(),
}

REVISABLE_STATUSES = ("in_progress", "review")

STATUS_MESSAGES = {
    "accepted": "Your special request has been accepted",
    "rejected": "Your special request has been rejected",
    "in_progress": "Work has started on your special request",
    "review": "Your special request is ready for review",
    "completed": "Your special request has been completed",
    "cancelled": "The special request has been cancelled",
}

# reason codes offered by the cancel dialog, stored as their label
CANCELLATION_REASONS = {
    "ordered_by_mistake": "Ordered by mistake",
    "service_delayed": "Service was delayed",
    "other_reasons": "Other reasons",
}


# ------------------------------------------------------------
#  Transition rules and persistence
# ------------------------------------------------------------
def apply_transition(special_request, new_status, now=None):
    """
    Set the status and apply its side effects. Touches only the entity,
    never the session, so it can be exercised on an unsaved instance.

    Lifecycle timestamps are stamped the first time their status is
    entered and never overwritten afterwards.
    """
    new_status = check_choice(RequestStatus, new_status, "status")
    now = now or datetime.utcnow()

    special_request.status = new_status

    field = STATUS_TIMESTAMPS.get(new_status)
    if field and getattr(special_request, field) is None:
        setattr(special_request, field, now)

    if new_status == RequestStatus.COMPLETED.value:
        special_request.current_progress = 100
        if special_request.final_price is None and special_request.quoted_price is not None:
            special_request.final_price = special_request.quoted_price

    return special_request


def validate_request(special_request):
    used = special_request.used_revisions or 0
    maximum = special_request.max_revisions if special_request.max_revisions is not None else 0
    if maximum < 0:
        raise ValidationError("max_revisions cannot be negative", {"field": "max_revisions"})
    if used > maximum:
        raise ValidationError(
            "Used revisions cannot exceed the revision quota",
            {"used_revisions": used, "max_revisions": maximum},
        )
    progress = special_request.current_progress
    if progress is not None and not 0 <= progress <= 100:
        raise ValidationError("Progress must be between 0 and 100", {"field": "current_progress"})


def commit_session():
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"[PERSISTENCE_FAILURE] {e}")
        raise PersistenceFailure("The special request could not be saved") from e


def persist(special_request):
    validate_request(special_request)
    special_request.updated_at = datetime.utcnow()
    db.session.add(special_request)
    commit_session()
    return special_request


@contextmanager
def rollback_on_error():
    """Discard in-memory changes of a failed operation so the entity is left as stored."""
    try:
        yield
    except CommissionError:
        db.session.rollback()
        raise


def notify(recipient_id, title, message, notif_type, special_request, sender_id=None):
    send_notification_to_user(
        recipient_id,
        title=title,
        message=message,
        notif_type=notif_type,
        details={"request_id": special_request.id, "status": special_request.status},
        sender_id=sender_id,
    )


def _ensure_open(special_request, action):
    if special_request.is_terminal:
        raise ValidationError(
            f"Cannot {action} a request that is already {special_request.status}",
            {"status": special_request.status},
        )


# ------------------------------------------------------------
#  Status changes
# ------------------------------------------------------------
def update_status(special_request, new_status, actor_id=None, response=None,
                  estimated_delivery=None, quoted_price=None):
    new_status = check_choice(RequestStatus, new_status, "status")
    current = special_request.status

    if new_status != current:
        _ensure_open(special_request, f"move to {new_status}")
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise ValidationError(
                f"Cannot move a request from {current} to {new_status}",
                {"from": current, "to": new_status},
            )

    estimated_delivery = parse_datetime(estimated_delivery, "estimated_delivery")
    if quoted_price is not None:
        quoted_price = to_amount(quoted_price, "quoted_price")

    with rollback_on_error():
        if response:
            special_request.response = response
        if estimated_delivery:
            special_request.estimated_delivery = estimated_delivery
        if quoted_price is not None:
            special_request.quoted_price = quoted_price

        apply_transition(special_request, new_status)
        persist(special_request)

    current_app.logger.info(f"[STATUS_CHANGED] {special_request.id}: {current} -> {new_status}")

    if new_status != current and new_status in STATUS_MESSAGES:
        recipient = special_request.sender_id
        if actor_id == special_request.sender_id:
            recipient = special_request.artist_id
        notify(
            recipient,
            title=STATUS_MESSAGES[new_status],
            message=response or f"Request '{special_request.title or special_request.id}' is now {new_status}",
            notif_type=f"special_request_{new_status}",
            special_request=special_request,
            sender_id=actor_id,
        )

    return special_request


def complete_request(special_request, actor_id, deliverables, final_note=None):
    """Artist delivers the work. Moves the request to completed."""
    if special_request.status not in ("accepted", "in_progress", "review"):
        raise ValidationError(
            f"Cannot complete a request in status {special_request.status}",
            {"status": special_request.status},
        )
    deliverables = normalize_deliverables(deliverables)
    if not deliverables:
        raise ValidationError("At least one deliverable is required", {"field": "deliverables"})

    with rollback_on_error():
        special_request.deliverables = (special_request.deliverables or []) + deliverables
        if final_note:
            special_request.final_note = final_note
        apply_transition(special_request, "completed")
        persist(special_request)

    current_app.logger.info(f"[REQUEST_COMPLETED] {special_request.id} by {actor_id}")
    notify(
        special_request.sender_id,
        title="Your special request has been completed",
        message="The artist has completed your request and delivered the work",
        notif_type="special_request_completed",
        special_request=special_request,
        sender_id=actor_id,
    )
    return special_request


def cancel_request(special_request, actor_id, reason=None, refund_amount=None):
    _ensure_open(special_request, "cancel")

    if refund_amount is not None:
        refund_amount = to_amount(refund_amount, "refund_amount")

    with rollback_on_error():
        special_request.cancellation_reason = CANCELLATION_REASONS.get(reason, reason) or "Cancelled by user"
        special_request.cancelled_by = actor_id
        if refund_amount:
            special_request.refund_amount = refund_amount
            special_request.refund_status = "pending"
        apply_transition(special_request, "cancelled")
        persist(special_request)

    current_app.logger.info(f"[REQUEST_CANCELLED] {special_request.id} by {actor_id}")
    recipient = special_request.artist_id if actor_id == special_request.sender_id else special_request.sender_id
    notify(
        recipient,
        title=STATUS_MESSAGES["cancelled"],
        message=f"Reason: {special_request.cancellation_reason}",
        notif_type="special_request_cancelled",
        special_request=special_request,
        sender_id=actor_id,
    )
    return special_request


# ------------------------------------------------------------
#  Progress, revisions and milestones
# ------------------------------------------------------------
def record_progress(special_request, progress, note, updater_id, attachments=None, milestone_id=None):
    """
    Append a progress entry and make it the current progress.

    Reaching 100 while in_progress moves the request to review; any
    positive progress on an accepted request moves it to in_progress.
    Progress may go backwards and terminal requests are not guarded.
    """
    if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
        raise ValidationError("Progress must be an integer between 0 and 100", {"field": "progress"})
    if milestone_id and not any(m.id == milestone_id for m in special_request.milestones):
        raise NotFound("Milestone not found", {"milestone_id": milestone_id})
    attachments = normalize_attachments(attachments)

    previous_status = special_request.status
    with rollback_on_error():
        special_request.progress_updates.append(ProgressUpdate(
            percentage=progress,
            note=note,
            attachments=attachments,
            milestone_id=milestone_id,
            updated_by=updater_id,
        ))
        special_request.current_progress = progress

        if progress == 100 and special_request.status == "in_progress":
            apply_transition(special_request, "review")
        elif progress > 0 and special_request.status == "accepted":
            apply_transition(special_request, "in_progress")

        persist(special_request)

    current_app.logger.info(f"[PROGRESS_RECORDED] {special_request.id}: {progress}%")
    notify(
        special_request.sender_id,
        title="Progress update on your special request",
        message=note or f"Progress is now {progress}%",
        notif_type="special_request_progress",
        special_request=special_request,
        sender_id=updater_id,
    )
    if special_request.status != previous_status:
        current_app.logger.info(
            f"[STATUS_CHANGED] {special_request.id}: {previous_status} -> {special_request.status}"
        )
    return special_request


def _check_revisable(special_request):
    if special_request.status not in REVISABLE_STATUSES:
        raise ValidationError(
            f"Revisions can only be requested on work in progress or in review, not {special_request.status}",
            {"status": special_request.status},
        )
    if not special_request.allow_revisions:
        raise ValidationError("Revisions are disabled for this request", {"field": "allow_revisions"})
    if special_request.used_revisions >= special_request.max_revisions:
        raise QuotaExceeded(
            "Revision quota already used",
            {"used_revisions": special_request.used_revisions, "max_revisions": special_request.max_revisions},
        )


def request_revision(special_request, requester_id, feedback, specific_changes=None,
                     priority="medium", attachments=None):
    """
    Raise a revision and consume one unit of the quota.

    The quota check and the increment happen in a single conditional
    UPDATE, so two concurrent calls cannot both pass the check.
    """
    if not feedback or not str(feedback).strip():
        raise ValidationError("Revision feedback is required", {"field": "feedback"})
    priority = check_choice(Priority, priority or "medium", "priority")
    _check_revisable(special_request)
    specific_changes = [str(c) for c in (specific_changes or [])]
    attachments = normalize_attachments(attachments, default_type="document")

    now = datetime.utcnow()
    stmt = (
        update(SpecialRequest)
        .where(
            SpecialRequest.id == special_request.id,
            SpecialRequest.used_revisions < SpecialRequest.max_revisions,
            SpecialRequest.status.in_(REVISABLE_STATUSES),
            SpecialRequest.allow_revisions.is_(True),
        )
        .values(
            used_revisions=SpecialRequest.used_revisions + 1,
            status=RequestStatus.REVIEW.value,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )

    try:
        result = db.session.execute(stmt)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"[PERSISTENCE_FAILURE] {e}")
        raise PersistenceFailure("The revision could not be saved") from e

    if result.rowcount != 1:
        # the row changed after it was loaded; rollback expires it so the check sees the stored state
        db.session.rollback()
        _check_revisable(special_request)
        raise QuotaExceeded("Revision quota already used", {"request_id": special_request.id})

    revision = Revision(
        request_id=special_request.id,
        requester_id=requester_id,
        feedback=str(feedback).strip(),
        specific_changes=specific_changes,
        priority=priority,
        attachments=attachments,
    )
    db.session.add(revision)
    commit_session()

    current_app.logger.info(
        f"[REVISION_REQUESTED] {special_request.id}: "
        f"{special_request.used_revisions}/{special_request.max_revisions}"
    )
    notify(
        special_request.artist_id,
        title="A revision was requested",
        message=revision.feedback,
        notif_type="special_request_revision",
        special_request=special_request,
        sender_id=requester_id,
    )
    return revision


def respond_to_revision(special_request, revision_id, response, status="in_progress"):
    revision = next((r for r in special_request.revisions if r.id == revision_id), None)
    if revision is None:
        raise NotFound("Revision not found", {"revision_id": revision_id})
    if status not in ("in_progress", "completed"):
        raise ValidationError("Revision status must be in_progress or completed", {"field": "status"})

    with rollback_on_error():
        revision.artist_response = response
        revision.responded_at = datetime.utcnow()
        revision.status = status
        persist(special_request)

    notify(
        revision.requester_id,
        title="The artist responded to your revision",
        message=response or f"Revision is now {status}",
        notif_type="special_request_revision_response",
        special_request=special_request,
        sender_id=special_request.artist_id,
    )
    return revision


def add_milestone(special_request, title, percentage, due_date=None, description=None):
    if not title:
        raise ValidationError("Milestone title is required", {"field": "title"})
    _ensure_open(special_request, "add a milestone to")
    due_date = parse_datetime(due_date, "due_date")

    with rollback_on_error():
        milestone = Milestone(title=title, description=description, due_date=due_date, percentage=percentage)
        special_request.milestones.append(milestone)
        persist(special_request)
    return milestone


def _round_half_up(value):
    return int(value + 0.5)


def complete_milestone(special_request, milestone_id, deliverables=None):
    milestone = next((m for m in special_request.milestones if m.id == milestone_id), None)
    if milestone is None:
        raise NotFound("Milestone not found", {"milestone_id": milestone_id})
    deliverables = normalize_deliverables(deliverables)

    with rollback_on_error():
        milestone.status = "completed"
        if milestone.completed_at is None:
            milestone.completed_at = datetime.utcnow()
        milestone.deliverables = (milestone.deliverables or []) + deliverables

        total = sum(m.percentage for m in special_request.milestones)
        if total > 0:
            done = sum(m.percentage for m in special_request.milestones if m.status == "completed")
            special_request.current_progress = _round_half_up(100 * done / total)

        persist(special_request)

    current_app.logger.info(
        f"[MILESTONE_COMPLETED] {special_request.id}/{milestone_id}: {special_request.current_progress}%"
    )
    notify(
        special_request.sender_id,
        title="Milestone completed",
        message=f"Milestone '{milestone.title}' is complete",
        notif_type="special_request_milestone",
        special_request=special_request,
        sender_id=special_request.artist_id,
    )
    return milestone


def estimate_completion(special_request, now=None):
    # TODO: derive the fallback from completed requests of the same request_type
    if special_request.estimated_delivery:
        return special_request.estimated_delivery
    if special_request.deadline:
        return special_request.deadline
    return (now or datetime.utcnow()) + timedelta(days=DEFAULT_COMPLETION_DAYS)


# ------------------------------------------------------------
#  Conversation and feedback
# ------------------------------------------------------------
def add_response(special_request, actor_id, text, attachments=None):
    if not text or not str(text).strip():
        raise ValidationError("Response text is required", {"field": "response"})
    attachments = normalize_attachments(attachments, default_type="document")

    with rollback_on_error():
        special_request.response = str(text).strip()
        if attachments:
            special_request.attachments = (special_request.attachments or []) + attachments
        persist(special_request)

    recipient = special_request.artist_id if actor_id == special_request.sender_id else special_request.sender_id
    notify(
        recipient,
        title="New response on a special request",
        message=special_request.response,
        notif_type="special_request_response",
        special_request=special_request,
        sender_id=actor_id,
    )
    return special_request


def submit_feedback(special_request, actor_id, rating, feedback=None):
    if special_request.status != "completed":
        raise ValidationError("Only completed requests can be rated", {"status": special_request.status})
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5", {"field": "rating"})

    with rollback_on_error():
        special_request.rating = rating
        special_request.feedback = feedback
        special_request.feedback_at = datetime.utcnow()
        persist(special_request)

    notify(
        special_request.artist_id,
        title="You received a new rating",
        message=f"{rating}/5" + (f": {feedback}" if feedback else ""),
        notif_type="special_request_feedback",
        special_request=special_request,
        sender_id=actor_id,
    )
    return special_request
