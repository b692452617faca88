from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def local_now() -> datetime:
    """Naive wall-clock time in the configured timezone."""
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None, second=0, microsecond=0)


def local_today() -> date:
    return local_now().date()


def month_bounds(year: int, month: int) -> Period:
    first = date(year, month, 1)
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return Period(f"{year:04d}-{month:02d}", first, next_month - date.resolution)


def month_label(year: int, month: int) -> str:
    return date(year, month, 1).strftime("%B %Y")


def resolve_month(
    year: Optional[str],
    month: Optional[str],
    *,
    today: Optional[date] = None,
) -> tuple[int, int]:
    today = today or local_today()
    try:
        year_value = int(year) if year else today.year
    except ValueError:
        year_value = today.year
    try:
        month_value = int(month) if month else today.month
    except ValueError:
        month_value = today.month
    if not 1 <= month_value <= 12:
        raise ValueError("Month must be between 1 and 12")
    if not 1970 <= year_value <= 3000:
        raise ValueError("Year out of range")
    return year_value, month_value


def year_options(today: Optional[date] = None, *, before: int = 5, after: int = 4) -> list[int]:
    today = today or local_today()
    return list(range(today.year + after, today.year - before - 1, -1))
