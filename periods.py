from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def previous(self) -> "Period":
        """The period of equal length that ends the day before this one starts."""
        prev_end = self.start - date.resolution
        prev_start = prev_end - (self.end - self.start)
        return Period("previous", prev_start, prev_end)


def local_today() -> date:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).date()


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    first = month_start(d)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def parse_date(value: str, field: str = "date") -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date") from exc


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if period == "custom" or (not period and (start or end)):
        if not start or not end:
            raise ValidationError("Custom period requires start and end dates")
        start_date = parse_date(start, "start")
        end_date = parse_date(end, "end")
        if start_date > end_date:
            raise ValidationError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if not period or period == "month_to_date":
        return Period("month_to_date", month_start(today), today)
    if period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        last_month_end = month_start(today) - date.resolution
        return Period("last_month", month_start(last_month_end), last_month_end)
    if period == "this_month":
        return Period("this_month", month_start(today), month_end(today))
    raise ValidationError(f"Unknown period: {period}")
