"""Read-only aggregations over special requests for the admin dashboard.

Nothing here writes. Each call reads whatever is committed when it runs.
"""
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta
from sqlalchemy import case, func, literal_column

from commissions.errors import ValidationError
from commissions.extensions import db
from commissions.models.special_request import SpecialRequest
from commissions.services.special_request_service import apply_filters
from commissions.utils.dates import isoformat, parse_datetime

PERIODS = {
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": relativedelta(months=1),
    "quarter": relativedelta(months=3),
    "year": relativedelta(years=1),
    "all": None,
}

GROUPABLE_FIELDS = {"status", "request_type", "priority", "artist_id", "sender_id", "category_id", "currency"}


def resolve_window(period="month", start_date=None, end_date=None, now=None):
    """
    Turn a period name or explicit dates into (start, end).
    Explicit dates win over the period. A None bound is open.
    """
    now = now or datetime.utcnow()
    start = parse_datetime(start_date, "start_date")
    end = parse_datetime(end_date, "end_date", end_of_day=True)
    if start or end:
        if start and end and start > end:
            raise ValidationError("start_date must be before end_date", {"field": "start_date"})
        return start, end

    if period not in PERIODS:
        raise ValidationError(
            f"Invalid period '{period}'",
            {"field": "period", "allowed": list(PERIODS)},
        )
    delta = PERIODS[period]
    if delta is None:
        return None, None
    return now - delta, now


def _window_filters(q, start, end):
    if start:
        q = q.filter(SpecialRequest.created_at >= start)
    if end:
        q = q.filter(SpecialRequest.created_at <= end)
    return q


def _round(value, digits=2):
    return round(float(value), digits) if value is not None else None


def completion_days():
    """
    SQL expression for completed_at - accepted_at in days. NULL unless both are
    set, so AVG over it only counts completed work.
    """
    accepted, completed = SpecialRequest.accepted_at, SpecialRequest.completed_at
    dialect = db.session.get_bind().dialect.name
    if dialect == "sqlite":
        return func.julianday(completed) - func.julianday(accepted)
    if dialect in ("mysql", "mariadb"):
        return func.timestampdiff(literal_column("SECOND"), accepted, completed) / 86400.0
    return func.extract("epoch", completed - accepted) / 86400.0


def get_stats(filters=None, options=None):
    """
    Grouped totals and averages plus an overall summary.

    options: group_by (default "status"), period (day/week/month/quarter/
    year/all), start_date, end_date.
    """
    options = options or {}
    group_by = options.get("group_by") or "status"
    if group_by not in GROUPABLE_FIELDS:
        raise ValidationError(f"Cannot group by '{group_by}'", {"field": "group_by"})
    start, end = resolve_window(
        options.get("period", "month"),
        options.get("start_date"),
        options.get("end_date"),
    )

    group_col = getattr(SpecialRequest, group_by)
    q = db.session.query(
        group_col,
        func.count(SpecialRequest.id),
        func.sum(SpecialRequest.budget),
        func.avg(SpecialRequest.budget),
        func.sum(SpecialRequest.quoted_price),
        func.avg(SpecialRequest.quoted_price),
        func.sum(SpecialRequest.final_price),
        func.avg(SpecialRequest.final_price),
        func.avg(completion_days()),
    )
    q = _window_filters(apply_filters(q, filters), start, end)
    rows = q.group_by(group_col).order_by(func.count(SpecialRequest.id).desc()).all()

    groups = []
    for key, count, budget_sum, budget_avg, quoted_sum, quoted_avg, final_sum, final_avg, days_avg in rows:
        groups.append({
            "key": key,
            "count": count,
            "total_budget": _round(budget_sum or 0),
            "average_budget": _round(budget_avg),
            "total_quoted_price": _round(quoted_sum or 0),
            "average_quoted_price": _round(quoted_avg),
            "total_final_price": _round(final_sum or 0),
            "average_final_price": _round(final_avg),
            "average_completion_days": _round(days_avg),
        })

    summary = db.session.query(
        func.count(SpecialRequest.id),
        func.sum(SpecialRequest.budget),
        func.avg(SpecialRequest.budget),
        func.sum(case((SpecialRequest.status == "completed", SpecialRequest.final_price), else_=0)),
        func.sum(case((SpecialRequest.status == "completed", 1), else_=0)),
        func.sum(case((SpecialRequest.status == "cancelled", 1), else_=0)),
        func.avg(SpecialRequest.rating),
        func.avg(completion_days()),
    )
    total, budget_sum, budget_avg, revenue, completed, cancelled, rating_avg, days_avg = (
        _window_filters(apply_filters(summary, filters), start, end).one()
    )
    completed = int(completed or 0)
    overall = {
        "total_requests": total,
        "total_budget": _round(budget_sum or 0),
        "average_budget": _round(budget_avg),
        "total_revenue": _round(revenue or 0),
        "completed_requests": completed,
        "cancelled_requests": int(cancelled or 0),
        "completion_rate": round(completed / total, 4) if total else 0.0,
        "average_completion_days": _round(days_avg),
        "average_rating": _round(rating_avg),
    }

    return {
        "group_by": group_by,
        "period": options.get("period", "month"),
        "start_date": isoformat(start),
        "end_date": isoformat(end),
        "groups": groups,
        "overall": overall,
    }


def get_trending_types(limit=10, timeframe="month"):
    """
    Request types ranked by how many non-cancelled requests were created
    in the timeframe. completion_rate is completed / counted requests.
    """
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValidationError("limit must be an integer", {"field": "limit"})
    if limit < 1:
        raise ValidationError("limit must be positive", {"field": "limit"})
    start, end = resolve_window(timeframe)

    count = func.count(SpecialRequest.id)
    q = db.session.query(
        SpecialRequest.request_type,
        count,
        func.avg(SpecialRequest.budget),
        func.sum(case((SpecialRequest.status == "completed", 1), else_=0)),
    ).filter(SpecialRequest.status != "cancelled")
    q = _window_filters(q, start, end)
    rows = (
        q.group_by(SpecialRequest.request_type)
        .order_by(count.desc(), SpecialRequest.request_type)
        .limit(limit)
        .all()
    )

    return [
        {
            "request_type": request_type,
            "count": total,
            "average_budget": _round(avg_budget),
            "completion_rate": round(int(completed or 0) / total, 4) if total else 0.0,
        }
        for request_type, total, avg_budget, completed in rows
    ]
