"""
Metric period boundaries. All datetimes are naive UTC.
"""
from datetime import datetime, timedelta
from typing import Tuple

from app.models.metrics import PERIOD_MONTHLY, PERIOD_WEEKLY


def week_start(moment: datetime) -> datetime:
    """Monday 00:00 of the week containing moment."""
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return day - timedelta(days=day.weekday())


def month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_month(start: datetime) -> datetime:
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def period_bounds(moment: datetime, period_type: str) -> Tuple[datetime, datetime]:
    """
    Start and exclusive end of the period containing moment.

    Args:
        moment: Any point in time
        period_type: weekly or monthly

    Returns:
        (period_start, period_end)
    """
    if period_type == PERIOD_WEEKLY:
        start = week_start(moment)
        return start, start + timedelta(days=7)
    if period_type == PERIOD_MONTHLY:
        start = month_start(moment)
        return start, next_month(start)
    raise ValueError(f"Unknown period type: {period_type}")
