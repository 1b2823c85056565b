import math

from commissions.errors import ValidationError

TRUE_STRINGS = ("true", "1", "yes")
FALSE_STRINGS = ("false", "0", "no")


def to_amount(value, field):
    """Finite, non-negative float from a number or numeric string."""
    if isinstance(value, bool):
        raise ValidationError(f"'{field}' must be numeric", {"field": field})
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{field}' must be numeric", {"field": field})
    if not math.isfinite(number):
        raise ValidationError(f"'{field}' must be a finite number", {"field": field})
    if number < 0:
        raise ValidationError(f"'{field}' cannot be negative", {"field": field})
    return number


def to_bool(value, field):
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    raise ValidationError(f"'{field}' must be true or false", {"field": field})
