import calendar
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Optional, Protocol
from zoneinfo import ZoneInfo

from config import get_settings


class PeriodState(str, Enum):
    past = "past"
    current = "current"
    future = "future"


@dataclass(frozen=True, order=True)
class Period:
    year: int
    month: int

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def window(self) -> tuple[datetime, datetime]:
        """Inclusive bounds covering the whole month, first to last microsecond."""
        start = datetime.combine(self.first_day, time.min)
        end = datetime.combine(self.last_day, time.max)
        return start, end

    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def previous(self) -> "Period":
        if self.month == 1:
            return Period(self.year - 1, 12)
        return Period(self.year, self.month - 1)

    @classmethod
    def containing(cls, moment: date) -> "Period":
        return cls(moment.year, moment.month)


class Clock(Protocol):
    def now(self) -> datetime:  # pragma: no cover - interface
        ...


class SystemClock:
    """Wall clock in the configured timezone, returned as naive local time."""

    def __init__(self, timezone: Optional[str] = None) -> None:
        self.tz = ZoneInfo(timezone or get_settings().timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None)


def current_period(clock: Clock) -> Period:
    return Period.containing(clock.now())


def classify_period(period: Period, clock: Clock) -> PeriodState:
    current = current_period(clock)
    if period == current:
        return PeriodState.current
    if period < current:
        return PeriodState.past
    return PeriodState.future
