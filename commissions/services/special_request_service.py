import re

from flask import current_app
from sqlalchemy import String, case, cast, func, literal
from sqlalchemy.orm import selectinload

from commissions.errors import NotFound, ValidationError
from commissions.extensions import db
from commissions.models.attachment import normalize_attachments
from commissions.models.special_request import SpecialRequest
from commissions.models.user import User
from commissions.services.lifecycle import persist, rollback_on_error, notify
from commissions.utils.dates import parse_datetime
from commissions.utils.numbers import to_amount, to_bool
from commissions.utils.pagination import paginate_query

FILTERABLE_FIELDS = {
    "status", "request_type", "priority", "sender_id", "artist_id",
    "category_id", "is_private", "currency",
}
SORTABLE_FIELDS = {
    "created_at", "updated_at", "budget", "deadline", "priority", "status",
    "title", "current_progress", "quoted_price", "final_price",
}
POPULATABLE_FIELDS = ("sender", "artist", "category")
EDITABLE_FIELDS = (
    "title", "description", "request_type", "budget", "deadline", "priority",
    "tags", "category_id", "is_private", "max_revisions", "allow_revisions",
)

# weights of the free-text search
SEARCH_WEIGHTS = {"title": 10, "description": 5, "tags": 1}
JSON_PUNCTUATION = re.compile(r"[\[\]\"\\,:{}]")


def _to_int(value, field):
    if isinstance(value, bool):
        raise ValidationError(f"'{field}' must be an integer", {"field": field})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{field}' must be an integer", {"field": field})


def _normalize_tags(tags):
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = [t for t in tags.split(",")]
    seen = []
    for tag in tags:
        tag = str(tag).strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def _clean_field(field, value):
    if field == "budget":
        return to_amount(value, field)
    if field == "deadline":
        return parse_datetime(value, field)
    if field == "tags":
        return _normalize_tags(value)
    if field == "max_revisions":
        value = _to_int(value, field)
        if value < 0:
            raise ValidationError("max_revisions cannot be negative", {"field": field})
        return value
    if field in ("is_private", "allow_revisions"):
        return to_bool(value, field)
    return value


# ------------------------------------------------------------
#  Create / edit
# ------------------------------------------------------------
def create_request(sender_id, data):
    required = ["artist_id", "request_type", "description", "budget"]
    missing = [r for r in required if data.get(r) in (None, "")]
    if missing:
        raise ValidationError("Missing fields", {"fields": missing})
    if data["artist_id"] == sender_id:
        raise ValidationError("You cannot send a special request to yourself", {"field": "artist_id"})

    artist = User.query.filter_by(id=data["artist_id"], role="artist", is_active=True).first()
    if not artist:
        raise NotFound("Artist not found or inactive", {"artist_id": data["artist_id"]})

    config = current_app.config
    values = {
        "sender_id": sender_id,
        "artist_id": data["artist_id"],
        "currency": data.get("currency") or config.get("DEFAULT_CURRENCY", "SAR"),
        "priority": data.get("priority") or "medium",
        "max_revisions": config.get("DEFAULT_MAX_REVISIONS", 3),
        "attachments": normalize_attachments(data.get("attachments")),
        "status": "pending",
        "current_progress": 0,
        "used_revisions": 0,
    }
    for field in EDITABLE_FIELDS:
        if field in data and data[field] is not None:
            values[field] = _clean_field(field, data[field])

    with rollback_on_error():
        special_request = SpecialRequest(**values)
        persist(special_request)

    current_app.logger.info(f"[REQUEST_CREATED] {special_request.id} {sender_id} -> {special_request.artist_id}")
    notify(
        special_request.artist_id,
        title="New special request",
        message=special_request.title or special_request.description[:120],
        notif_type="special_request_new",
        special_request=special_request,
        sender_id=sender_id,
    )
    return special_request


def update_request(special_request, data):
    """Sender edits; only allowed while the artist has not answered yet."""
    if special_request.status != "pending":
        raise ValidationError("Only pending requests can be edited", {"status": special_request.status})

    updates = {k: _clean_field(k, v) for k, v in data.items() if k in EDITABLE_FIELDS}
    if not updates:
        return special_request

    with rollback_on_error():
        for k, v in updates.items():
            setattr(special_request, k, v)
        persist(special_request)

    current_app.logger.info(f"[REQUEST_UPDATED] {special_request.id}: {', '.join(updates)}")
    return special_request


def get_request_for_update(request_id):
    """Load a request with a row lock held until the next commit or rollback."""
    return (
        SpecialRequest.query
        .filter_by(id=request_id)
        .with_for_update()
        .first()
    )


# ------------------------------------------------------------
#  Queries
# ------------------------------------------------------------
def apply_filters(q, filters):
    for field, value in (filters or {}).items():
        if value is None or value == "":
            continue
        if field not in FILTERABLE_FIELDS:
            raise ValidationError(f"Cannot filter on '{field}'", {"field": field})
        column = getattr(SpecialRequest, field)
        if isinstance(value, (list, tuple, set)):
            q = q.filter(column.in_(list(value)))
        else:
            q = q.filter(column == value)
    return q


def search_score(search):
    """Weighted relevance of a free-text search over title, description and tags."""
    score = literal(0)
    for term in search.split():
        pattern = f"%{term}%"
        score = (
            score
            + case((SpecialRequest.title.ilike(pattern), SEARCH_WEIGHTS["title"]), else_=0)
            + case((SpecialRequest.description.ilike(pattern), SEARCH_WEIGHTS["description"]), else_=0)
        )
        # tags are matched against their JSON text, so the list syntax itself must not match
        tag_term = JSON_PUNCTUATION.sub("", term)
        if tag_term:
            score = score + case(
                (cast(SpecialRequest.tags, String).ilike(f"%{tag_term}%"), SEARCH_WEIGHTS["tags"]),
                else_=0,
            )
    return score


def find_with_filters(filters=None, options=None):
    """
    Return one page of requests as (items, pagination).

    options: search, page, limit, sort_by, sort_order, populate.
    With a search and no explicit sort_by, results come by relevance.
    """
    options = options or {}
    q = apply_filters(SpecialRequest.query, filters)

    search = (options.get("search") or "").strip()
    score = None
    if search:
        score = search_score(search)
        q = q.filter(score > 0)

    sort_by = options.get("sort_by")
    sort_order = (options.get("sort_order") or "desc").lower()
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc", {"field": "sort_order"})

    if sort_by:
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by '{sort_by}'", {"field": "sort_by"})
        column = getattr(SpecialRequest, sort_by)
        q = q.order_by(column.asc() if sort_order == "asc" else column.desc(), SpecialRequest.id)
    elif score is not None:
        q = q.order_by(score.desc(), SpecialRequest.created_at.desc())
    else:
        q = q.order_by(SpecialRequest.created_at.desc(), SpecialRequest.id)

    for field in options.get("populate") or ():
        if field not in POPULATABLE_FIELDS:
            raise ValidationError(f"Cannot populate '{field}'", {"field": field})
        q = q.options(selectinload(getattr(SpecialRequest, field)))

    return paginate_query(q, options.get("page", 1), options.get("limit", 10))


def get_status_counts(filters=None):
    q = apply_filters(db.session.query(SpecialRequest.status, func.count(SpecialRequest.id)), filters)
    rows = q.group_by(SpecialRequest.status).all()
    return {status: count for status, count in rows}
