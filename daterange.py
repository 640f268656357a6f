from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable
from zoneinfo import ZoneInfo


REPORT_TZ = ZoneInfo(os.environ.get("REPORT_TZ", "Asia/Phnom_Penh"))

PRESETS = (
    "all",
    "today",
    "yesterday",
    "this_week",
    "last_week",
    "this_month",
    "last_month",
    "this_year",
    "last_year",
    "custom",
)

END_OF_DAY = time(23, 59, 59, 999000)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class DateWindow:
    """Inclusive range of local wall-clock instants; ``None`` leaves a side open."""

    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError(f"window start {self.start} is after end {self.end}")

    @property
    def is_bounded(self) -> bool:
        return self.start is not None or self.end is not None

    def contains(self, value: datetime | None) -> bool:
        if value is None:
            return False
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True

    def intersect(self, other: "DateWindow") -> "DateWindow | None":
        starts = [value for value in (self.start, other.start) if value is not None]
        ends = [value for value in (self.end, other.end) if value is not None]
        start = max(starts) if starts else None
        end = min(ends) if ends else None
        if start is not None and end is not None and start > end:
            return None
        return DateWindow(start, end)

    def describe(self) -> str:
        left = self.start.strftime("%Y-%m-%d") if self.start else "..."
        right = self.end.strftime("%Y-%m-%d") if self.end else "..."
        if self.start is None and self.end is None:
            return "All time"
        return f"{left} to {right}"


ALL_TIME = DateWindow()


def report_now(tz: ZoneInfo = REPORT_TZ) -> datetime:
    """Current wall-clock time in the report timezone, as a naive datetime."""
    return datetime.now(tz).replace(tzinfo=None)


def _start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min)


def _end_of_day(value: date) -> datetime:
    return datetime.combine(value, END_OF_DAY)


def _add_months(value: date, months: int) -> date:
    year = value.year + (value.month - 1 + months) // 12
    month = (value.month - 1 + months) % 12 + 1
    return date(year, month, 1)


def month_bounds(year: int, month_index: int) -> DateWindow:
    """Window covering calendar month ``month_index`` (0-11) of ``year``."""
    first = date(year, month_index + 1, 1)
    last = _add_months(first, 1) - timedelta(days=1)
    return DateWindow(_start_of_day(first), _end_of_day(last))


def _parse_day(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def resolve_window(
    preset: str | None,
    custom_start: str | None = None,
    custom_end: str | None = None,
    clock: Clock = report_now,
) -> DateWindow:
    now = clock()
    today = now.date()
    if preset == "today":
        return DateWindow(_start_of_day(today), _end_of_day(today))
    if preset == "yesterday":
        yesterday = today - timedelta(days=1)
        return DateWindow(_start_of_day(yesterday), _end_of_day(yesterday))
    if preset == "this_week":
        monday = today - timedelta(days=today.weekday())
        return DateWindow(_start_of_day(monday), _end_of_day(today))
    if preset == "last_week":
        monday = today - timedelta(days=today.weekday() + 7)
        return DateWindow(_start_of_day(monday), _end_of_day(monday + timedelta(days=6)))
    if preset == "this_month":
        return month_bounds(today.year, today.month - 1)
    if preset == "last_month":
        previous = _add_months(today, -1)
        return month_bounds(previous.year, previous.month - 1)
    if preset == "this_year":
        return DateWindow(_start_of_day(date(today.year, 1, 1)), _end_of_day(date(today.year, 12, 31)))
    if preset == "last_year":
        year = today.year - 1
        return DateWindow(_start_of_day(date(year, 1, 1)), _end_of_day(date(year, 12, 31)))
    if preset == "custom":
        start_day = _parse_day(custom_start)
        end_day = _parse_day(custom_end)
        if start_day and end_day and start_day > end_day:
            start_day, end_day = end_day, start_day
        return DateWindow(
            _start_of_day(start_day) if start_day else None,
            _end_of_day(end_day) if end_day else None,
        )
    return ALL_TIME
