"""
Interval algebra over absolute instants.

Everything here is pure: inputs are never mutated and every function returns
intervals sorted ascending by (start, end).
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence
from zoneinfo import ZoneInfo

from interview_scheduling.core.datetime_utils import ensure_utc
from interview_scheduling.core.timezones import (
    WorkingHours,
    get_zone,
    local_window,
    sunday_based_weekday,
    to_local,
)

BROWSE_STRIDE_MINUTES = 30


@dataclass(frozen=True, order=True)
class TimeInterval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("TimeInterval bounds must be timezone-aware")
        object.__setattr__(self, "start", self.start.astimezone(timezone.utc))
        object.__setattr__(self, "end", self.end.astimezone(timezone.utc))
        if not self.start < self.end:
            raise ValueError(f"TimeInterval start must be before end ({self.start} >= {self.end})")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def duration_minutes(self) -> float:
        return self.duration.total_seconds() / 60

    def overlaps(self, other: TimeInterval) -> bool:
        # Open boundaries: touching intervals do not overlap.
        return self.start < other.end and other.start < self.end

    def contains(self, other: TimeInterval) -> bool:
        return self.start <= other.start and other.end <= self.end


def free_intervals(busy: Iterable[TimeInterval], range_start: datetime, range_end: datetime) -> list[TimeInterval]:
    range_start = ensure_utc(range_start)
    range_end = ensure_utc(range_end)
    if range_start >= range_end:
        return []

    free: list[TimeInterval] = []
    cursor = range_start
    for block in sorted(busy):
        if block.start > cursor:
            gap_end = min(block.start, range_end)
            if cursor < gap_end:
                free.append(TimeInterval(cursor, gap_end))
        # Overlapping and touching busy blocks merge through the cursor.
        cursor = max(cursor, block.end)
        if cursor >= range_end:
            break

    if cursor < range_end:
        free.append(TimeInterval(cursor, range_end))
    return free


def merge(intervals: Iterable[TimeInterval]) -> list[TimeInterval]:
    merged: list[TimeInterval] = []
    for interval in sorted(intervals):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = TimeInterval(last.start, interval.end)
            continue
        merged.append(interval)
    return merged


def clip_to_working_hours(
    intervals: Iterable[TimeInterval],
    working_hours: Iterable[WorkingHours],
    tz: str | ZoneInfo,
) -> list[TimeInterval]:
    """
    Keep only the parts of each interval that fall inside the user's local
    working windows.

    Every local day an interval touches is checked against that weekday's
    windows, so an interval crossing local midnight (or spanning several days)
    keeps its portion on each side. The previous day is included too because a
    window may itself run past midnight.
    """
    zone = get_zone(tz)
    by_day: dict[int, list[WorkingHours]] = defaultdict(list)
    for hours in working_hours:
        by_day[hours.day_of_week].append(hours)
    if not by_day:
        return []

    clipped: list[TimeInterval] = []
    for interval in intervals:
        day = to_local(interval.start, zone).date() - timedelta(days=1)
        last_day = to_local(interval.end, zone).date()
        while day <= last_day:
            for hours in by_day.get(sunday_based_weekday(day), ()):
                window_start, window_end = local_window(day, hours, zone)
                start = max(interval.start, window_start)
                end = min(interval.end, window_end)
                if start < end:
                    clipped.append(TimeInterval(start, end))
            day += timedelta(days=1)
    return merge(clipped)


def intersect(a: Iterable[TimeInterval], b: Iterable[TimeInterval]) -> list[TimeInterval]:
    right = list(b)
    out: list[TimeInterval] = []
    for first in a:
        for second in right:
            if first.overlaps(second):
                out.append(TimeInterval(max(first.start, second.start), min(first.end, second.end)))
    return sorted(out)


def intersect_all(interval_sets: Sequence[Iterable[TimeInterval]]) -> list[TimeInterval]:
    if not interval_sets:
        return []
    common = sorted(interval_sets[0])
    for other in interval_sets[1:]:
        if not common:
            return []
        common = intersect(common, other)
    return common


def drop_shorter_than(intervals: Iterable[TimeInterval], minutes: int) -> list[TimeInterval]:
    minimum = timedelta(minutes=minutes)
    return sorted(interval for interval in intervals if interval.duration >= minimum)


def discretize(intervals: Iterable[TimeInterval], duration_minutes: int, stride_minutes: int) -> list[TimeInterval]:
    """Cut fixed-length slots out of each interval; a slot may end exactly on the interval end."""
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    if stride_minutes <= 0:
        raise ValueError("stride_minutes must be positive")

    duration = timedelta(minutes=duration_minutes)
    stride = timedelta(minutes=stride_minutes)
    slots: list[TimeInterval] = []
    for interval in intervals:
        current = interval.start
        while current + duration <= interval.end:
            slots.append(TimeInterval(current, current + duration))
            current += stride
    return sorted(slots)
