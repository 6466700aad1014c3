from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from xbs.core.errors import ValidationError


BILLING_INTERVALS = ("day", "week", "month", "year")


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month addition; the day is clamped to the last day of the target month."""
    month_index = value.month - 1 + months
    year = value.year + (month_index // 12)
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_end(start: datetime, interval: str, count: int = 1) -> datetime:
    if count < 1:
        raise ValidationError("interval count must be at least 1")
    if interval == "day":
        return start + timedelta(days=count)
    if interval == "week":
        return start + timedelta(weeks=count)
    if interval == "month":
        return add_months(start, count)
    if interval == "year":
        return add_months(start, 12 * count)
    raise ValidationError(f"Invalid billing_interval. Must be one of: {', '.join(BILLING_INTERVALS)}")
