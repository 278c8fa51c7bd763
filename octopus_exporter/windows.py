"""
Octopus Exporter: Window Calculator

Computes the start of each aggregation window relative to "now".

  2d, 1w, 2w, 4w   plain subtraction, no calendar alignment
  1m               first instant of the current UTC month
  2m, 3m, 6m       first instant of the month N months back (year borrow)
  1y               same month one year back, day 1, midnight

The 1y window is deliberately "same month last year", not a rolling 365 days.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterator

from .errors import DateConstructionError


class WindowLabel(str, Enum):
    """Window labels in their fixed, duration-ordered sequence."""
    TWO_DAYS = "2d"
    ONE_WEEK = "1w"
    TWO_WEEKS = "2w"
    FOUR_WEEKS = "4w"
    CURRENT_MONTH = "1m"
    TWO_MONTHS = "2m"
    THREE_MONTHS = "3m"
    SIX_MONTHS = "6m"
    ONE_YEAR = "1y"


# ── Boundary rules ───────────────────────────────────────────────────────
FIXED_DURATIONS = {
    WindowLabel.TWO_DAYS: timedelta(days=2),
    WindowLabel.ONE_WEEK: timedelta(weeks=1),
    WindowLabel.TWO_WEEKS: timedelta(weeks=2),
    WindowLabel.FOUR_WEEKS: timedelta(weeks=4),
}

MONTHS_BACK = {
    WindowLabel.CURRENT_MONTH: 0,
    WindowLabel.TWO_MONTHS: 2,
    WindowLabel.THREE_MONTHS: 3,
    WindowLabel.SIX_MONTHS: 6,
}


@dataclass(frozen=True, slots=True)
class Window:
    label: WindowLabel
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise DateConstructionError(
                f"Window {self.label.value} starts after it ends: {self.start} > {self.end}"
            )


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def month_start(now: datetime, months_back: int = 0) -> datetime:
    """First instant of the month ``months_back`` months before ``now``'s month."""
    if months_back < 0:
        raise DateConstructionError(f"months_back must be >= 0, got {months_back}")
    now = _as_utc(now)

    year = now.year
    month = now.month - months_back
    while month <= 0:
        month += 12
        year -= 1

    try:
        return now.replace(year=year, month=month, day=1,
                           hour=0, minute=0, second=0, microsecond=0)
    except ValueError as e:
        raise DateConstructionError(str(e)) from e


def year_start(now: datetime, years_back: int = 1) -> datetime:
    """Day 1 of ``now``'s month, ``years_back`` years earlier, at midnight."""
    if years_back < 0:
        raise DateConstructionError(f"years_back must be >= 0, got {years_back}")
    now = _as_utc(now)
    try:
        # day is forced in the same replace() so Feb 29 never hits a missing date
        return now.replace(year=now.year - years_back, day=1,
                           hour=0, minute=0, second=0, microsecond=0)
    except ValueError as e:
        raise DateConstructionError(str(e)) from e


def window_start(label: WindowLabel, now: datetime) -> datetime:
    label = WindowLabel(label)
    now = _as_utc(now)
    if label in FIXED_DURATIONS:
        return now - FIXED_DURATIONS[label]
    if label in MONTHS_BACK:
        return month_start(now, MONTHS_BACK[label])
    return year_start(now, 1)


@dataclass(frozen=True)
class WindowSet:
    """The nine windows computed from one anchor instant."""
    computed_at: datetime
    windows: tuple[Window, ...]

    def __iter__(self) -> Iterator[Window]:
        return iter(self.windows)

    def __len__(self) -> int:
        return len(self.windows)

    def __getitem__(self, label) -> Window:
        label = WindowLabel(label)
        for w in self.windows:
            if w.label is label:
                return w
        raise KeyError(label)

    def until(self, now: datetime) -> "WindowSet":
        """Same starts, with every window's end moved to ``now``."""
        now = _as_utc(now)
        return WindowSet(
            computed_at=self.computed_at,
            windows=tuple(Window(w.label, w.start, max(now, w.start)) for w in self.windows),
        )


def compute_windows(now: datetime) -> WindowSet:
    now = _as_utc(now)
    return WindowSet(
        computed_at=now,
        windows=tuple(Window(label, window_start(label, now), now) for label in WindowLabel),
    )
