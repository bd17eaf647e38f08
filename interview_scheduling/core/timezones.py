from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from interview_scheduling.core.datetime_utils import ensure_utc, utc_now
from interview_scheduling.core.exceptions import SchedulingValidationError

UTC = ZoneInfo("UTC")
MINUTES_PER_DAY = 24 * 60

DEFAULT_DAY_START = "09:00"
DEFAULT_DAY_END = "17:00"


@dataclass(frozen=True)
class WorkingHours:
    """Recurring local wall-clock window. day_of_week: 0 = Sunday ... 6 = Saturday."""

    day_of_week: int
    start_time: str
    end_time: str

    def __post_init__(self) -> None:
        if not 0 <= int(self.day_of_week) <= 6:
            raise SchedulingValidationError(f"day_of_week must be between 0 and 6, got {self.day_of_week}")
        parse_clock(self.start_time)
        parse_clock(self.end_time)

    @property
    def start_minutes(self) -> int:
        return parse_clock(self.start_time)

    @property
    def end_minutes(self) -> int:
        end = parse_clock(self.end_time)
        # A window that does not end after it starts runs past local midnight.
        if end <= self.start_minutes:
            end += MINUTES_PER_DAY
        return end


def parse_clock(value: str) -> int:
    """Parse HH:mm into minutes after midnight. 24:00 is accepted as end of day."""
    raw = (value or "").strip()
    parts = raw.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise SchedulingValidationError(f"Invalid time {value!r}, expected HH:mm")
    hours, minutes = int(parts[0]), int(parts[1])
    if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
        raise SchedulingValidationError(f"Invalid time {value!r}, expected HH:mm")
    return hours * 60 + minutes


def is_valid_timezone(name: str | None) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        return False
    return True


def get_zone(tz: str | ZoneInfo) -> ZoneInfo:
    if isinstance(tz, ZoneInfo):
        return tz
    if not is_valid_timezone(tz):
        raise SchedulingValidationError(f"Unknown timezone: {tz}")
    return ZoneInfo(tz)


def to_local(instant: datetime, tz: str | ZoneInfo) -> datetime:
    return ensure_utc(instant).astimezone(get_zone(tz))


def from_local(day: date, wall_time: time, tz: str | ZoneInfo) -> datetime:
    """Interpret a local wall-clock time on a given day and return the UTC instant."""
    local = datetime.combine(day, wall_time, tzinfo=get_zone(tz))
    return local.astimezone(UTC)


def sunday_based_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


def weekday_index(instant: datetime, tz: str | ZoneInfo) -> int:
    """Weekday of an instant as seen in tz, 0 = Sunday."""
    return sunday_based_weekday(to_local(instant, tz).date())


def local_window(day: date, hours: WorkingHours, tz: str | ZoneInfo) -> tuple[datetime, datetime]:
    zone = get_zone(tz)
    midnight = datetime.combine(day, time(0, 0), tzinfo=zone)
    # Aware arithmetic on a zoneinfo datetime is wall-clock arithmetic, which is
    # what a working-hours window means across DST changes.
    start = midnight + timedelta(minutes=hours.start_minutes)
    end = midnight + timedelta(minutes=hours.end_minutes)
    return start.astimezone(UTC), end.astimezone(UTC)


def format_in_timezone(instant: datetime, tz: str | ZoneInfo, fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    return to_local(instant, tz).strftime(fmt)


def _clock_label(local: datetime) -> str:
    return local.strftime("%I:%M %p").lstrip("0")


def slot_display(start: datetime, end: datetime, tz: str | ZoneInfo) -> tuple[str, str]:
    local_start = to_local(start, tz)
    local_end = to_local(end, tz)
    display_start = f"{format_in_timezone(start, tz, '%b %d, %Y')} {_clock_label(local_start)} {local_start.tzname()}"
    display_end = f"{_clock_label(local_end)} {local_end.tzname()}"
    return display_start, display_end


def timezone_offset_minutes(tz: str | ZoneInfo, at: datetime | None = None) -> int:
    offset = to_local(at or utc_now(), tz).utcoffset() or timedelta(0)
    return int(offset.total_seconds() // 60)


def timezone_display_name(tz: str | ZoneInfo, at: datetime | None = None) -> str:
    zone = get_zone(tz)
    offset = timezone_offset_minutes(zone, at)
    sign = "+" if offset >= 0 else "-"
    hours, minutes = divmod(abs(offset), 60)
    abbr = to_local(at or utc_now(), zone).tzname()
    return f"{zone.key} (UTC{sign}{hours:02d}:{minutes:02d}) {abbr}"


def default_working_hours() -> list[WorkingHours]:
    # Monday through Friday.
    return [WorkingHours(day, DEFAULT_DAY_START, DEFAULT_DAY_END) for day in range(1, 6)]


def parse_working_hours(raw: str | None) -> list[WorkingHours] | None:
    """Decode the stored JSON column. None means the user never configured hours."""
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise SchedulingValidationError("Stored working hours are not valid JSON") from exc
    if not isinstance(data, list):
        raise SchedulingValidationError("Working hours must be a list")
    return [coerce_working_hours(item) for item in data]


def coerce_working_hours(item: Any) -> WorkingHours:
    if isinstance(item, WorkingHours):
        return item
    if isinstance(item, dict):
        try:
            return WorkingHours(
                day_of_week=int(item["day_of_week"]),
                start_time=str(item["start_time"]),
                end_time=str(item["end_time"]),
            )
        except KeyError as exc:
            raise SchedulingValidationError(f"Working hours entry missing {exc.args[0]}") from exc
    raise SchedulingValidationError("Invalid working hours entry")


def dump_working_hours(items: Iterable[WorkingHours]) -> str:
    return json.dumps([asdict(item) for item in items], separators=(",", ":"))
