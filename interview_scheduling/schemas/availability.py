from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$|^24:00$"


class IntervalOut(BaseModel):
    start: datetime
    end: datetime


class UserAvailabilityOut(BaseModel):
    user_id: str
    timezone: str
    availability: List[IntervalOut]


class CommonAvailabilityIn(BaseModel):
    user_ids: List[str] = Field(min_length=1)
    start_date: datetime
    end_date: datetime
    duration_minutes: int = Field(ge=15, le=480)


class CommonAvailabilityOut(BaseModel):
    user_ids: List[str]
    duration_minutes: int
    availability: List[IntervalOut]


class SlotBrowseIn(CommonAvailabilityIn):
    target_timezone: Optional[str] = Field(default=None, max_length=64)


class BrowseSlotOut(BaseModel):
    start: datetime
    end: datetime
    display_start: str
    display_end: str


class SlotBrowseOut(BaseModel):
    target_timezone: str
    duration_minutes: int
    slots: List[BrowseSlotOut]


class ConflictCheckIn(BaseModel):
    start: datetime
    end: datetime
    user_ids: Optional[List[str]] = None


class UserConflictOut(BaseModel):
    user_id: str
    has_conflict: bool


class ConflictCheckOut(BaseModel):
    start: datetime
    end: datetime
    has_conflict: bool
    conflicts: List[UserConflictOut]


class WorkingHoursIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str = Field(pattern=CLOCK_PATTERN)
    end_time: str = Field(pattern=CLOCK_PATTERN)


class WorkingHoursUpdate(BaseModel):
    working_hours: List[WorkingHoursIn] = Field(min_length=1)


class TimezoneUpdate(BaseModel):
    timezone: str = Field(min_length=1, max_length=64)


class CalendarConnectionIn(BaseModel):
    provider: Literal["google", "microsoft"]
    credentials: Dict[str, Any]


class CalendarPreferencesOut(BaseModel):
    user_id: str
    email: str
    timezone: str
    timezone_display: str
    working_hours: List[WorkingHoursIn]
    calendar_provider: Optional[str] = None
    calendar_connected: bool
