from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional, Union

DateLike = Union[date, datetime, str]


def as_date(value: Optional[DateLike]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value.replace(microsecond=0)
    if isinstance(value, date):
        return datetime.combine(value, time())
    return datetime.fromisoformat(str(value).strip())


def day_range(start: DateLike, end: DateLike) -> tuple[str, str]:
    """Inclusive day range -> (start iso, exclusive end iso) for ``>= ? AND < ?`` filters."""
    first = as_date(start)
    last = as_date(end)
    return first.isoformat(), (last + timedelta(days=1)).isoformat()
