"""Scalar normalisation for imported rows."""
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional

from .errors import ErrorCode, ValidationError

DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d")
TRUE_VALUES = {"true", "yes", "1", "y"}
FALSE_VALUES = {"false", "no", "0", "n", ""}


def text(row: Mapping[str, Any], *names: str) -> Optional[str]:
    """First non-blank value among the aliases ``names``, stripped."""
    for name in names:
        value = row.get(name)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def required(row: Mapping[str, Any], *names: str) -> str:
    value = text(row, *names)
    if value is None:
        raise ValidationError(f"Missing required field {names[0]}",
                              code=ErrorCode.MISSING_FIELD, details={"field": names[0]})
    return value


def to_int(value: Any, field: str, default: Optional[int] = None,
           minimum: Optional[int] = None) -> Optional[int]:
    """Parse an integer; blank falls back to ``default``, garbage is an error."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer, got {value!r}")
    try:
        number = int(str(value).strip())
    except ValueError:
        try:
            as_float = float(str(value).strip())
        except ValueError:
            raise ValidationError(f"{field} must be an integer, got {value!r}") from None
        if not as_float.is_integer():
            raise ValidationError(f"{field} must be an integer, got {value!r}") from None
        number = int(as_float)
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}, got {number}")
    return number


def to_bool(value: Any, field: str, default: bool = False) -> bool:
    # Spreadsheet exports write TRUE/FALSE; JSON callers send real booleans.
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered == "":
        return default
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValidationError(f"{field} must be a boolean, got {value!r}")


def to_date(value: Any, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value or "").strip()
    if not raw:
        raise ValidationError(f"Missing required field {field}",
                              code=ErrorCode.MISSING_FIELD, details={"field": field})
    # ISO timestamps ("2024-06-01T00:00:00") keep only the date part.
    candidate = raw.split("T", 1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    raise ValidationError(f"{field} is not a valid date: {raw!r}")


def choice(value: Optional[str], field: str, allowed: Iterable[str],
           default: Optional[str] = None) -> str:
    allowed = tuple(allowed)
    if value is None or not str(value).strip():
        if default is None:
            raise ValidationError(f"Missing required field {field}",
                                  code=ErrorCode.MISSING_FIELD, details={"field": field})
        return default
    normalised = str(value).strip().lower()
    if normalised not in allowed:
        raise ValidationError(
            f"Invalid {field} {value!r}. Must be one of: {', '.join(allowed)}",
            details={"field": field, "value": value, "allowed": list(allowed)},
        )
    return normalised
