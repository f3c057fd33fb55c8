"""
Shared helpers for the entity services: document numbering, remark
audit lines and field copying from DTO dictionaries.
"""

import calendar
import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Optional
from sqlalchemy import DateTime, func
from exceptions import BusinessValidationError
from models import db, ZERO

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 4


def generate_document_number(column, prefix: str, date_part: str) -> str:
    """
    Build the next ``<prefix><date_part><NNNN>`` number for a column.

    The sequence continues from the highest existing number sharing the same
    prefix and date part and restarts at 0001 for a new date part. Numbers
    are ranked by length before value so a sequence past 9999 keeps counting.
    """
    stem = f"{prefix}{date_part}"
    last_number = db.session.query(column) \
        .filter(column.like(f"{stem}%")) \
        .order_by(func.length(column).desc(), column.desc()) \
        .limit(1).scalar()

    next_sequence = 1
    if last_number:
        suffix = last_number[len(stem):]
        if suffix.isdigit():
            next_sequence = int(suffix) + 1
        else:
            logger.warning(f"Unexpected document number format {last_number!r}; counting existing rows")
            next_sequence = db.session.query(column).filter(column.like(f"{stem}%")).count() + 1

    return f"{stem}{next_sequence:0{SEQUENCE_WIDTH}d}"


def append_remark(entity, message: str) -> None:
    """Append an audit line to an entity's free-text remarks."""
    entity.remarks = (entity.remarks or "") + "\n" + message


def apply_fields(entity, data: Dict[str, Any], converters: Dict[str, Callable[[Any], Any]],
                 fields: Optional[Iterable[str]] = None) -> None:
    """
    Copy DTO values onto an entity, converting each one.

    Only keys present in ``data`` are touched so partial updates leave the
    other columns alone.
    """
    for field in (fields or converters.keys()):
        if field in data:
            setattr(entity, field, converters[field](data[field]))


def reject_blank_required(model, data: Dict[str, Any], converters: Dict[str, Callable[[Any], Any]]) -> None:
    """
    Raise when ``data`` would clear a NOT NULL column of ``model``.

    A key sent as ``""`` or ``null`` converts to None; partial updates must
    leave required columns populated.
    """
    columns = model.__table__.columns
    for field, converter in converters.items():
        if field not in data or field not in columns or columns[field].nullable:
            continue
        if converter(data[field]) is None:
            raise BusinessValidationError(f"{field.replace('_', ' ').capitalize()} is required")


def is_value_unique(model, column, value: Optional[str], exclude_id: Optional[int] = None) -> bool:
    """True when no other row of ``model`` holds ``value``; blank values are always unique."""
    if not value:
        return True
    query = model.query.filter(column == value)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    return query.first() is None


def month_key(value) -> str:
    return value.strftime('%Y-%m')


def date_range_conditions(column, start_date=None, end_date=None) -> list:
    """
    SQL conditions limiting ``column`` to the calendar days start..end.

    DateTime columns are compared against midnight bounds so the whole end
    day is included.
    """
    conditions = []
    if isinstance(column.type, DateTime):
        if start_date:
            conditions.append(column >= datetime.combine(start_date, time.min))
        if end_date:
            conditions.append(column < datetime.combine(end_date + timedelta(days=1), time.min))
    else:
        if start_date:
            conditions.append(column >= start_date)
        if end_date:
            conditions.append(column <= end_date)
    return conditions


def as_decimal(value) -> Decimal:
    """Normalise an aggregate result to Decimal; SQLite hands back floats for some sums."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


OVERDUE_BUCKETS = (
    ('current', None, 0),
    ('1-30', 1, 30),
    ('31-60', 31, 60),
    ('61-90', 61, 90),
    ('90+', 91, None),
)


def overdue_bucket(days_past_due: int) -> str:
    """Label of the OVERDUE_BUCKETS range holding ``days_past_due``; not yet due is ``current``."""
    for label, low, high in OVERDUE_BUCKETS:
        if (low is None or days_past_due >= low) and (high is None or days_past_due <= high):
            return label
    return OVERDUE_BUCKETS[-1][0]


def add_months(value: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the target month's length (Jan 31 + 1 → Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
