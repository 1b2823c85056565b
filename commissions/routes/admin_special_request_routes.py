from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from commissions.services.special_request_service import get_status_counts
from commissions.services.stats_service import get_stats, get_trending_types
from commissions.utils.auth import current_actor
from commissions.utils.response_formatter import success_response, error_response

bp = Blueprint("admin_special_requests", __name__, url_prefix="/api/v1/admin/special-requests")

def admin_required(role):
    return role == "admin"

def _scope_filters():
    return {
        "status": request.args.get("status"),
        "request_type": request.args.get("request_type"),
        "artist_id": request.args.get("artist_id"),
        "category_id": request.args.get("category_id"),
    }


@bp.route("/stats", methods=["GET"])
@jwt_required()
def stats():
    _, role = current_actor()
    if not admin_required(role):
        return error_response("FORBIDDEN", "Admin privileges required", status=403)

    options = {
        "group_by": request.args.get("group_by", "status"),
        "period": request.args.get("period", "month"),
        "start_date": request.args.get("start_date"),
        "end_date": request.args.get("end_date"),
    }
    return success_response(get_stats(_scope_filters(), options))


@bp.route("/trending", methods=["GET"])
@jwt_required()
def trending():
    _, role = current_actor()
    if not admin_required(role):
        return error_response("FORBIDDEN", "Admin privileges required", status=403)

    limit = request.args.get("limit", 10)
    timeframe = request.args.get("timeframe", "month")
    return success_response({"types": get_trending_types(limit, timeframe), "timeframe": timeframe})


@bp.route("/status-counts", methods=["GET"])
@jwt_required()
def status_counts():
    _, role = current_actor()
    if not admin_required(role):
        return error_response("FORBIDDEN", "Admin privileges required", status=403)

    return success_response({"status_counts": get_status_counts(_scope_filters())})
