from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from commissions.models.special_request import REQUEST_TYPE_LABELS, RequestType, SpecialRequest
from commissions.services import lifecycle
from commissions.services.special_request_service import (
    create_request,
    update_request,
    find_with_filters,
    get_request_for_update,
)
from commissions.utils.auth import current_actor, is_party
from commissions.utils.dates import isoformat
from commissions.utils.response_formatter import success_response, error_response

bp = Blueprint("special_requests", __name__, url_prefix="/api/v1/special-requests")


def _load(request_id, for_update=False):
    if for_update:
        return get_request_for_update(request_id)
    return SpecialRequest.query.get(request_id)


def _int_arg(data, key):
    # form-style "50" becomes 50; anything else is left for the service to reject
    value = data.get(key)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return value


# ------------------------------------------------------------
#  GET /special-requests - List requests visible to the caller
#  buyers see what they sent, artists what they received, admins everything
# ------------------------------------------------------------
@bp.route("", methods=["GET"])
@jwt_required()
def list_requests():
    uid, role = current_actor()

    filters = {
        "status": request.args.get("status"),
        "request_type": request.args.get("request_type"),
        "priority": request.args.get("priority"),
        "category_id": request.args.get("category_id"),
    }
    if role == "artist":
        filters["artist_id"] = uid
    elif role != "admin":
        filters["sender_id"] = uid

    populate = [p for p in request.args.get("populate", "").split(",") if p]
    options = {
        "search": request.args.get("search"),
        "page": request.args.get("page", 1, type=int),
        "limit": request.args.get("limit", 10, type=int),
        "sort_by": request.args.get("sort_by"),
        "sort_order": request.args.get("sort_order", "desc"),
        "populate": populate,
    }

    items, pagination = find_with_filters(filters, options)
    return success_response({
        "requests": [r.serialize(populate=populate) for r in items],
        "pagination": pagination,
    })


# ------------------------------------------------------------
#  POST /special-requests - Buyer sends a new request to an artist
# ------------------------------------------------------------
@bp.route("", methods=["POST"])
@jwt_required()
def create_new_request():
    uid, role = current_actor()
    if role == "artist":
        return error_response("FORBIDDEN", "Artists cannot send special requests", status=403)

    data = request.get_json(silent=True) or {}
    special_request = create_request(uid, data)
    return success_response(special_request.serialize(), status=201, message="Special request created")


# ------------------------------------------------------------
#  GET /special-requests/types - Request types for the create form
# ------------------------------------------------------------
@bp.route("/types", methods=["GET"])
def list_request_types():
    types = []
    for request_type in RequestType:
        label, icon = REQUEST_TYPE_LABELS[request_type.value]
        types.append({"value": request_type.value, "label": label, "icon": icon})
    return success_response({"request_types": types})


# ------------------------------------------------------------
#  GET /special-requests/cancellation-reasons - Reasons for the cancel dialog
# ------------------------------------------------------------
@bp.route("/cancellation-reasons", methods=["GET"])
def list_cancellation_reasons():
    reasons = [{"value": code, "label": label} for code, label in lifecycle.CANCELLATION_REASONS.items()]
    return success_response({"cancellation_reasons": reasons})


# ------------------------------------------------------------
#  GET /special-requests/<id> - Single request with its history
# ------------------------------------------------------------
@bp.route("/<request_id>", methods=["GET"])
@jwt_required()
def get_request(request_id):
    uid, role = current_actor()
    special_request = _load(request_id)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if role != "admin" and not is_party(special_request, uid):
        return error_response("FORBIDDEN", "Not your request", status=403)

    data = special_request.serialize(populate=("sender", "artist", "category"), include_history=True)
    data["can_edit"] = uid == special_request.sender_id and special_request.status == "pending"
    data["can_cancel"] = not special_request.is_terminal
    data["can_complete"] = uid == special_request.artist_id and special_request.status in ("accepted", "in_progress", "review")
    data["can_request_revision"] = (
        uid == special_request.sender_id
        and special_request.allow_revisions
        and special_request.used_revisions < special_request.max_revisions
        and not special_request.is_terminal
    )
    return success_response(data)


# ------------------------------------------------------------
#  PATCH /special-requests/<id> - Sender edits a pending request
# ------------------------------------------------------------
@bp.route("/<request_id>", methods=["PATCH"])
@jwt_required()
def patch_request(request_id):
    uid, _ = current_actor()
    special_request = _load(request_id, for_update=True)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if special_request.sender_id != uid:
        return error_response("FORBIDDEN", "Only the sender can edit this request", status=403)

    data = request.get_json(silent=True) or {}
    special_request = update_request(special_request, data)
    return success_response(special_request.serialize(), message="Special request updated")


# ------------------------------------------------------------
#  PATCH /special-requests/<id>/status - Artist accepts, rejects, starts...
# ------------------------------------------------------------
@bp.route("/<request_id>/status", methods=["PATCH"])
@jwt_required()
def change_status(request_id):
    uid, role = current_actor()
    special_request = _load(request_id, for_update=True)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if role != "admin" and special_request.artist_id != uid:
        return error_response("FORBIDDEN", "Only the artist can change the status", status=403)

    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return error_response("VALIDATION_ERROR", "Status is required", {"field": "status"}, status=422)

    special_request = lifecycle.update_status(
        special_request,
        data["status"],
        actor_id=uid,
        response=data.get("response"),
        estimated_delivery=data.get("estimated_delivery"),
        quoted_price=data.get("quoted_price"),
    )
    return success_response(special_request.serialize(), message=f"Status updated to {special_request.status}")


# ------------------------------------------------------------
#  POST /special-requests/<id>/response - Either party replies
# ------------------------------------------------------------
@bp.route("/<request_id>/response", methods=["POST"])
@jwt_required()
def post_response(request_id):
    uid, _ = current_actor()
    special_request = _load(request_id, for_update=True)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if not is_party(special_request, uid):
        return error_response("FORBIDDEN", "Not your request", status=403)

    data = request.get_json(silent=True) or {}
    special_request = lifecycle.add_response(special_request, uid, data.get("response"), data.get("attachments"))
    return success_response(special_request.serialize(), message="Response added")


# ------------------------------------------------------------
#  POST /special-requests/<id>/progress - Artist reports progress
# ------------------------------------------------------------
@bp.route("/<request_id>/progress", methods=["POST"])
@jwt_required()
def post_progress(request_id):
    uid, _ = current_actor()
    special_request = _load(request_id, for_update=True)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if special_request.artist_id != uid:
        return error_response("FORBIDDEN", "Only the artist can report progress", status=403)

    data = request.get_json(silent=True) or {}
    special_request = lifecycle.record_progress(
        special_request,
        _int_arg(data, "progress"),
        data.get("note"),
        uid,
        attachments=data.get("attachments"),
        milestone_id=data.get("milestone_id"),
    )
    return success_response(special_request.serialize(), message="Progress recorded")


# ------------------------------------------------------------
#  POST /special-requests/<id>/revisions - Sender asks for changes
# ------------------------------------------------------------
@bp.route("/<request_id>/revisions", methods=["POST"])
@jwt_required()
def post_revision(request_id):
    uid, _ = current_actor()
    special_request = _load(request_id)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if special_request.sender_id != uid:
        return error_response("FORBIDDEN", "Only the sender can request revisions", status=403)

    data = request.get_json(silent=True) or {}
    revision = lifecycle.request_revision(
        special_request,
        uid,
        data.get("feedback"),
        specific_changes=data.get("specific_changes"),
        priority=data.get("priority") or "medium",
        attachments=data.get("attachments"),
    )
    return success_response({
        "revision": revision.serialize(),
        "used_revisions": special_request.used_revisions,
        "max_revisions": special_request.max_revisions,
        "status": special_request.status,
    }, status=201, message="Revision requested")


# ------------------------------------------------------------
#  PATCH /special-requests/<id>/revisions/<revision_id> - Artist answers a revision
# ------------------------------------------------------------
@bp.route("/<request_id>/revisions/<revision_id>", methods=["PATCH"])
@jwt_required()
def patch_revision(request_id, revision_id):
    uid, _ = current_actor()
    special_request = _load(request_id, for_update=True)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if special_request.artist_id != uid:
        return error_response("FORBIDDEN", "Only the artist can answer revisions", status=403)

    data = request.get_json(silent=True) or {}
    revision = lifecycle.respond_to_revision(
        special_request, revision_id, data.get("response"), status=data.get("status", "in_progress")
    )
    return success_response(revision.serialize())


# ------------------------------------------------------------
#  POST /special-requests/<id>/milestones - Artist plans a milestone
# ------------------------------------------------------------
@bp.route("/<request_id>/milestones", methods=["POST"])
@jwt_required()
def post_milestone(request_id):
    uid, _ = current_actor()
    special_request = _load(request_id, for_update=True)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if special_request.artist_id != uid:
        return error_response("FORBIDDEN", "Only the artist can add milestones", status=403)

    data = request.get_json(silent=True) or {}
    milestone = lifecycle.add_milestone(
        special_request,
        data.get("title"),
        _int_arg(data, "percentage"),
        due_date=data.get("due_date"),
        description=data.get("description"),
    )
    return success_response(milestone.serialize(), status=201)


# ------------------------------------------------------------
#  POST /special-requests/<id>/milestones/<milestone_id>/complete
# ------------------------------------------------------------
@bp.route("/<request_id>/milestones/<milestone_id>/complete", methods=["POST"])
@jwt_required()
def post_milestone_complete(request_id, milestone_id):
    uid, _ = current_actor()
    special_request = _load(request_id, for_update=True)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if special_request.artist_id != uid:
        return error_response("FORBIDDEN", "Only the artist can complete milestones", status=403)

    data = request.get_json(silent=True) or {}
    milestone = lifecycle.complete_milestone(special_request, milestone_id, data.get("deliverables"))
    return success_response({
        "milestone": milestone.serialize(),
        "current_progress": special_request.current_progress,
    })


# ------------------------------------------------------------
#  POST /special-requests/<id>/complete - Artist delivers the work
# ------------------------------------------------------------
@bp.route("/<request_id>/complete", methods=["POST"])
@jwt_required()
def post_complete(request_id):
    uid, _ = current_actor()
    special_request = _load(request_id, for_update=True)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if special_request.artist_id != uid:
        return error_response("FORBIDDEN", "Only the artist can complete this request", status=403)

    data = request.get_json(silent=True) or {}
    special_request = lifecycle.complete_request(
        special_request, uid, data.get("deliverables"), final_note=data.get("final_note")
    )
    return success_response(special_request.serialize(), message="Special request completed")


# ------------------------------------------------------------
#  POST /special-requests/<id>/cancel - Either party cancels
# ------------------------------------------------------------
@bp.route("/<request_id>/cancel", methods=["POST"])
@jwt_required()
def post_cancel(request_id):
    uid, role = current_actor()
    special_request = _load(request_id, for_update=True)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if role != "admin" and not is_party(special_request, uid):
        return error_response("FORBIDDEN", "Not your request", status=403)

    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()
    # once work has started the other side deserves an explanation
    if special_request.status not in ("pending",) and not reason:
        return error_response(
            "REASON_REQUIRED",
            "A cancellation reason is required once the request has been accepted.",
            status=400,
        )

    special_request = lifecycle.cancel_request(
        special_request, uid, reason=reason or None, refund_amount=data.get("refund_amount")
    )
    return success_response(special_request.serialize(), message="Special request cancelled")


# ------------------------------------------------------------
#  POST /special-requests/<id>/feedback - Sender rates the finished work
# ------------------------------------------------------------
@bp.route("/<request_id>/feedback", methods=["POST"])
@jwt_required()
def post_feedback(request_id):
    uid, _ = current_actor()
    special_request = _load(request_id, for_update=True)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if special_request.sender_id != uid:
        return error_response("FORBIDDEN", "Only the sender can rate this request", status=403)

    data = request.get_json(silent=True) or {}
    special_request = lifecycle.submit_feedback(special_request, uid, _int_arg(data, "rating"), data.get("feedback"))
    return success_response(special_request.serialize(), message="Thanks for your feedback")


# ------------------------------------------------------------
#  GET /special-requests/<id>/estimate - Expected delivery date
# ------------------------------------------------------------
@bp.route("/<request_id>/estimate", methods=["GET"])
@jwt_required()
def get_estimate(request_id):
    uid, role = current_actor()
    special_request = _load(request_id)
    if not special_request:
        return error_response("NOT_FOUND", "Special request not found", status=404)
    if role != "admin" and not is_party(special_request, uid):
        return error_response("FORBIDDEN", "Not your request", status=403)

    return success_response({
        "request_id": special_request.id,
        "estimated_completion": isoformat(lifecycle.estimate_completion(special_request)),
        "remaining_days": special_request.remaining_days,
        "is_overdue": special_request.is_overdue,
    })
