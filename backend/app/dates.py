import calendar
from datetime import date, datetime, timezone
from typing import Optional


def today() -> date:
    return datetime.now(timezone.utc).date()


def as_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def add_months(d: date, months: int) -> date:
    # Clamp to the last day of the target month (Jan 31 + 1 month -> Feb 28/29).
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)
