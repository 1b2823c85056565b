from flask import current_app


def paginate_query(q, page=1, limit=10):
    """
    Apply offset/limit to a query and return (items, pagination).
    The query itself is not consumed, so it can be re-issued for another page.
    """
    try:
        page = max(int(page), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = 10

    max_limit = current_app.config.get("MAX_PAGE_SIZE", 100)
    limit = min(max(limit, 1), max_limit)

    total = q.order_by(None).count()
    items = q.offset((page - 1) * limit).limit(limit).all()

    pagination = {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }
    return items, pagination
