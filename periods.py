import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Optional, Protocol, TypeVar, Union
from zoneinfo import ZoneInfo

from config import get_settings

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str, None]

TRAILING_MONTHS = {"3months": 3, "6months": 6}


class InvalidRange(ValueError):
    pass


class Dated(Protocol):
    date: Optional[datetime]


T = TypeVar("T", bound=Dated)


@dataclass(frozen=True)
class Window:
    slug: str
    start: Optional[datetime]
    end: Optional[datetime]

    @property
    def is_bounded(self) -> bool:
        return self.start is not None or self.end is not None

    def contains(self, moment: Optional[datetime]) -> bool:
        if not self.is_bounded:
            return True
        if moment is None:
            return False
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


def local_now() -> datetime:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def to_local_naive(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    tz = ZoneInfo(get_settings().timezone)
    return moment.astimezone(tz).replace(tzinfo=None)


def month_index(moment: Union[date, datetime]) -> int:
    return moment.year * 12 + (moment.month - 1)


def shift_months(moment: datetime, count: int) -> datetime:
    """Move ``moment`` by whole calendar months, clamping to the month end."""
    year, month0 = divmod(month_index(moment) + count, 12)
    month = month0 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def current_month_window(now: Optional[datetime] = None) -> Window:
    now = now or local_now()
    first = now.date().replace(day=1)
    last_day = calendar.monthrange(first.year, first.month)[1]
    return Window(
        "month",
        datetime.combine(first, time.min),
        datetime.combine(first.replace(day=last_day), time.max),
    )


def _as_date(value: DateLike) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise InvalidRange(f"Invalid date: {text}") from exc


def date_bounds(start: DateLike = None, end: DateLike = None) -> Window:
    """Inclusive day bounds; either side may be open."""
    start_date = _as_date(start)
    end_date = _as_date(end)
    if start_date is not None and end_date is not None and start_date > end_date:
        raise InvalidRange("Start date must be before end date")
    return Window(
        "custom",
        datetime.combine(start_date, time.min) if start_date else None,
        datetime.combine(end_date, time.max) if end_date else None,
    )


def resolve_window(
    period: Optional[str],
    start: DateLike = None,
    end: DateLike = None,
    *,
    now: Optional[datetime] = None,
) -> Window:
    now = now or local_now()
    slug = (period or "all").strip().lower()
    if slug == "all":
        return Window("all", None, None)
    if slug == "month":
        first = now.date().replace(day=1)
        return Window("month", datetime.combine(first, time.min), None)
    if slug in TRAILING_MONTHS:
        return Window(slug, shift_months(now, -TRAILING_MONTHS[slug]), None)
    if slug == "year":
        return Window("year", datetime(now.year, 1, 1), None)
    if slug == "custom":
        window = date_bounds(start, end)
        if window.start is None or window.end is None:
            raise InvalidRange("Custom period requires start and end dates")
        return window

    logger.warning(f"period_unrecognized: period={period!r} filtering=none")
    return Window(slug, None, None)


def select_window(transactions: Iterable[T], window: Window) -> list[T]:
    if not window.is_bounded:
        return list(transactions)
    return [txn for txn in transactions if window.contains(txn.date)]


def select_period(
    transactions: Iterable[T],
    period: Optional[str],
    start: DateLike = None,
    end: DateLike = None,
    *,
    now: Optional[datetime] = None,
) -> list[T]:
    return select_window(transactions, resolve_window(period, start, end, now=now))
