from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

LocationType = Literal["phone", "video", "onsite"]


class SchedulingLinkCreate(BaseModel):
    application_id: int = Field(ge=1)
    interview_stage_id: Optional[int] = Field(default=None, ge=1)
    interviewer_ids: List[str] = Field(min_length=1)
    duration_minutes: int = Field(ge=15, le=480)
    buffer_minutes: int = Field(default=0, ge=0, le=60)
    location_type: LocationType
    meeting_link: Optional[str] = Field(default=None, max_length=500)
    start_date: datetime
    end_date: datetime
    expires_at: Optional[datetime] = None
    allow_reschedule: bool = True

    @model_validator(mode="after")
    def _check_interviewers(self):
        cleaned = [item.strip() for item in self.interviewer_ids if item and item.strip()]
        if not cleaned:
            raise ValueError("At least one interviewer is required")
        # Keep first-seen order; duplicates would double-count the same calendar.
        self.interviewer_ids = list(dict.fromkeys(cleaned))
        return self


class SchedulingLinkOut(BaseModel):
    scheduling_link_id: int
    token: str
    url: str
    application_id: int
    interview_stage_id: Optional[int] = None
    interviewer_ids: List[str]
    duration_minutes: int
    buffer_minutes: int
    location_type: str
    meeting_link: Optional[str] = None
    start_date: datetime
    end_date: datetime
    expires_at: Optional[datetime] = None
    used: bool
    interview_id: Optional[int] = None
    allow_reschedule: bool
    created_by: str
    created_at: datetime


class CandidateOut(BaseModel):
    first_name: str
    last_name: str


class JobOut(BaseModel):
    title: str


class LinkInfoOut(BaseModel):
    application_id: int
    candidate: CandidateOut
    job: JobOut
    duration_minutes: int
    location_type: str
    start_date: datetime
    end_date: datetime
    expires_at: Optional[datetime] = None


class SlotOut(BaseModel):
    start: datetime
    end: datetime
    display_start: str
    display_end: str
    timezone: str


class SlotsOut(BaseModel):
    timezone: str
    slots: List[SlotOut]


class BookSlotIn(BaseModel):
    scheduled_at: datetime
    # Used to interpret a scheduled_at sent without an offset.
    timezone: Optional[str] = Field(default=None, max_length=64)


class InterviewOut(BaseModel):
    interview_id: int
    application_id: int
    interview_stage_id: Optional[int] = None
    scheduled_at: datetime
    duration_minutes: int
    status: str
    location_type: str
    meeting_link: Optional[str] = None


class BookingOut(BaseModel):
    message: str
    interview: InterviewOut
    reschedule_url: Optional[str] = None


class DateRangeOut(BaseModel):
    start_date: datetime
    end_date: datetime


class RescheduleInfoOut(BaseModel):
    interview: InterviewOut
    candidate: CandidateOut
    job: JobOut
    allowed_date_range: DateRangeOut


class RescheduleIn(BaseModel):
    scheduled_at: datetime
    timezone: Optional[str] = Field(default=None, max_length=64)


class RescheduleTokenOut(BaseModel):
    reschedule_token: str
    reschedule_url: str


class MessageOut(BaseModel):
    message: str
