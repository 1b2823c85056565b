from flask import Blueprint, request
from flask_jwt_extended import jwt_required, get_jwt_identity

from commissions.services.notification_service import list_notifications, mark_as_read
from commissions.utils.pagination import paginate_query
from commissions.utils.response_formatter import success_response, error_response

bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")


@bp.route("", methods=["GET"])
@jwt_required()
def get_notifications():
    uid = get_jwt_identity()
    unread_only = request.args.get("unread") in ("1", "true", "yes")
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", 20, type=int)

    items, pagination = paginate_query(list_notifications(uid, unread_only), page, limit)
    return success_response({
        "notifications": [n.serialize() for n in items],
        "pagination": pagination,
    })


@bp.route("/<notification_id>/read", methods=["POST"])
@jwt_required()
def read_notification(notification_id):
    uid = get_jwt_identity()
    notification = mark_as_read(uid, notification_id)
    if not notification:
        return error_response("NOT_FOUND", "Notification not found", status=404)
    return success_response(notification.serialize())
