from datetime import datetime, timezone
from dateutil import parser

from commissions.errors import ValidationError


def parse_datetime(value, field, end_of_day=False):
    """
    Accept a datetime or any ISO-ish string; return a naive UTC datetime.

    With ``end_of_day`` a string without a time part ("2030-01-31") resolves
    to the last microsecond of that day instead of midnight.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        midnight = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
        try:
            parsed = parser.parse(str(value), default=midnight)
            if end_of_day:
                # no hour given means no time part
                last = midnight.replace(hour=23, minute=59, second=59, microsecond=999999)
                late = parser.parse(str(value), default=last)
                if late.hour != parsed.hour:
                    parsed = late
        except (ValueError, OverflowError):
            raise ValidationError(f"Invalid date for '{field}'", {"field": field})

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def isoformat(value):
    return value.isoformat() + "Z" if value else None
