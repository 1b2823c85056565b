"""Attachment and deliverable value records.

Neither has its own identity: they are stored as JSON lists on whatever
owns them (a request, a milestone, a revision or a progress update).
"""
from datetime import datetime

from commissions.errors import ValidationError

DELIVERABLE_TYPES = ("final", "preview", "source", "documentation")


def normalize_attachment(item, default_type="image"):
    if isinstance(item, str):
        item = {"url": item}
    if not isinstance(item, dict) or not item.get("url"):
        raise ValidationError("Every attachment needs a url", {"field": "attachments"})

    try:
        size = int(item.get("size") or 0)
    except (TypeError, ValueError):
        raise ValidationError("Attachment size must be an integer", {"field": "attachments"})

    return {
        "url": item["url"],
        "type": item.get("type") or default_type,
        "name": item.get("name") or "attachment",
        "size": size,
        "uploaded_at": datetime.utcnow().isoformat() + "Z",
    }


def normalize_attachments(items, default_type="image"):
    return [normalize_attachment(i, default_type) for i in (items or [])]


def normalize_deliverables(items):
    deliverables = []
    for item in items or []:
        record = normalize_attachment(item, default_type="final")
        if record["type"] not in DELIVERABLE_TYPES:
            raise ValidationError(
                f"Deliverable type must be one of {', '.join(DELIVERABLE_TYPES)}",
                {"field": "deliverables"},
            )
        deliverables.append(record)
    return deliverables
