"""
Value coercion for DTO dictionaries

JSON bodies and query strings carry amounts, dates and statuses as strings;
these helpers turn them into the types the models store and raise
BusinessValidationError for anything malformed.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Type, TypeVar

from exceptions import BusinessValidationError

E = TypeVar('E', bound=Enum)

TRUE_VALUES = ('true', '1', 'yes', 'y', 'on')
FALSE_VALUES = ('false', '0', 'no', 'n', 'off')


def to_decimal(value: Any, field: str = 'value', default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None or value == '':
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise BusinessValidationError(f"Invalid number for {field}: {value!r}")
    try:
        # str() keeps floats such as 0.1 from dragging binary noise along
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise BusinessValidationError(f"Invalid number for {field}: {value!r}")


def to_int(value: Any, field: str = 'value', default: Optional[int] = None) -> Optional[int]:
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise BusinessValidationError(f"Invalid integer for {field}: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BusinessValidationError(f"Invalid integer for {field}: {value!r}")


def to_date(value: Any, field: str = 'date', default: Optional[date] = None) -> Optional[date]:
    if value is None or value == '':
        return default
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise BusinessValidationError(f"Invalid date for {field}: {value!r} (expected YYYY-MM-DD)")


def to_datetime(value: Any, field: str = 'datetime', default: Optional[datetime] = None) -> Optional[datetime]:
    if value is None or value == '':
        return default
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        raise BusinessValidationError(
            f"Invalid date-time for {field}: {value!r} (expected YYYY-MM-DDTHH:MM)")
    return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed


def to_bool(value: Any, field: str = 'flag', default: Optional[bool] = None) -> Optional[bool]:
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise BusinessValidationError(f"Invalid boolean for {field}: {value!r}")


def to_enum(enum_cls: Type[E], value: Any, field: str = 'status', default: Optional[E] = None) -> Optional[E]:
    """Resolve an enum member from its name or value, case-insensitively."""
    if value is None or value == '':
        return default
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip()
    for member in enum_cls:
        if text.upper() == member.name or text.lower() == str(member.value).lower():
            return member
    allowed = ', '.join(member.name for member in enum_cls)
    raise BusinessValidationError(f"Invalid {field}: {value!r}. Allowed values: {allowed}")


def to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
