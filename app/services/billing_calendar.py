from calendar import monthrange
from datetime import datetime, timedelta


def month_window(year: int, month: int) -> tuple[datetime, datetime]:
    """Inclusive UTC bounds of a calendar month, to MongoDB's millisecond resolution."""
    last_day = monthrange(year, month)[1]
    start = datetime(year, month, 1)
    end = datetime(year, month, last_day, 23, 59, 59, 999000)
    return start, end


def count_working_days(start: datetime, end: datetime) -> int:
    # Weekends only; there is no holiday calendar
    day = start.date()
    last = end.date()
    count = 0
    while day <= last:
        if day.weekday() < 5:
            count += 1
        day += timedelta(days=1)
    return count
