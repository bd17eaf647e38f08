from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from interview_scheduling.api import deps
from interview_scheduling.core.auth import require_roles
from interview_scheduling.core.datetime_utils import from_utc_naive
from interview_scheduling.core.roles import Role
from interview_scheduling.core.timezones import get_zone
from interview_scheduling.models.application import Application
from interview_scheduling.models.interview import Interview
from interview_scheduling.models.scheduling_link import SchedulingLink
from interview_scheduling.schemas.scheduling_link import (
    BookingOut,
    BookSlotIn,
    CandidateOut,
    DateRangeOut,
    InterviewOut,
    JobOut,
    LinkInfoOut,
    MessageOut,
    RescheduleIn,
    RescheduleInfoOut,
    RescheduleTokenOut,
    SchedulingLinkCreate,
    SchedulingLinkOut,
    SlotOut,
    SlotsOut,
)
from interview_scheduling.schemas.user import UserContext
from interview_scheduling.services.availability import Slot
from interview_scheduling.services.public_links import reschedule_url, scheduling_link_url
from interview_scheduling.services.scheduling_links import SchedulingLinkService

router = APIRouter(prefix="/scheduling-links", tags=["scheduling-links"])
public_router = APIRouter(tags=["scheduling-public"])

_managers = require_roles([Role.HR_ADMIN, Role.RECRUITER])


def _instant(value: datetime, tz: Optional[str]) -> datetime:
    # A wall-clock time without an offset is read in the caller's timezone.
    if value.tzinfo is None:
        return value.replace(tzinfo=get_zone(tz or "UTC"))
    return value


def _link_out(link: SchedulingLink) -> SchedulingLinkOut:
    return SchedulingLinkOut(
        scheduling_link_id=link.scheduling_link_id,
        token=link.token,
        url=scheduling_link_url(link.token),
        application_id=link.application_id,
        interview_stage_id=link.interview_stage_id,
        interviewer_ids=link.interviewer_ids,
        duration_minutes=link.duration_minutes,
        buffer_minutes=link.buffer_minutes,
        location_type=link.location_type,
        meeting_link=link.meeting_link,
        start_date=from_utc_naive(link.start_date),
        end_date=from_utc_naive(link.end_date),
        expires_at=from_utc_naive(link.expires_at),
        used=link.used,
        interview_id=link.interview_id,
        allow_reschedule=link.allow_reschedule,
        created_by=link.created_by,
        created_at=from_utc_naive(link.created_at),
    )


def _interview_out(interview: Interview) -> InterviewOut:
    return InterviewOut(
        interview_id=interview.interview_id,
        application_id=interview.application_id,
        interview_stage_id=interview.interview_stage_id,
        scheduled_at=from_utc_naive(interview.scheduled_at),
        duration_minutes=interview.duration_minutes,
        status=interview.status,
        location_type=interview.location_type,
        meeting_link=interview.meeting_link,
    )


def _candidate_out(application: Application) -> CandidateOut:
    return CandidateOut(first_name=application.candidate_first_name, last_name=application.candidate_last_name)


def _slots_out(slots: list[Slot], tz: Optional[str]) -> SlotsOut:
    return SlotsOut(
        timezone=get_zone(tz or "UTC").key,
        slots=[
            SlotOut(
                start=slot.start,
                end=slot.end,
                display_start=slot.display_start,
                display_end=slot.display_end,
                timezone=slot.timezone,
            )
            for slot in slots
        ],
    )


@router.post("", response_model=SchedulingLinkOut, status_code=status.HTTP_201_CREATED)
async def create_scheduling_link(
    payload: SchedulingLinkCreate,
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
    user: UserContext = Depends(_managers),
):
    link = await service.create_link(user.user_id, payload)
    return _link_out(link)


@router.get("/application/{application_id}", response_model=list[SchedulingLinkOut])
async def list_scheduling_links(
    application_id: int,
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
    _user: UserContext = Depends(_managers),
):
    links = await service.list_links_for_application(application_id)
    return [_link_out(link) for link in links]


@router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_scheduling_link(
    link_id: int,
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
    user: UserContext = Depends(_managers),
):
    await service.delete_link(link_id, user.user_id)


@router.post("/{link_id}/reschedule-token", response_model=RescheduleTokenOut)
async def issue_reschedule_token(
    link_id: int,
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
    user: UserContext = Depends(_managers),
):
    token = await service.generate_reschedule_token(link_id, requester_id=user.user_id)
    return RescheduleTokenOut(reschedule_token=token, reschedule_url=reschedule_url(token))


@public_router.get("/schedule/{token}", response_model=LinkInfoOut)
async def get_scheduling_link_info(
    token: str,
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
):
    link, application = await service.get_link_info(token)
    return LinkInfoOut(
        application_id=link.application_id,
        candidate=_candidate_out(application),
        job=JobOut(title=application.job_title),
        duration_minutes=link.duration_minutes,
        location_type=link.location_type,
        start_date=from_utc_naive(link.start_date),
        end_date=from_utc_naive(link.end_date),
        expires_at=from_utc_naive(link.expires_at),
    )


@public_router.get("/schedule/{token}/slots", response_model=SlotsOut)
async def get_scheduling_link_slots(
    token: str,
    tz: Optional[str] = Query(default=None, alias="timezone"),
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
):
    slots = await service.get_slots(token, tz)
    return _slots_out(slots, tz)


@public_router.post("/schedule/{token}/book", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def book_scheduling_link(
    token: str,
    payload: BookSlotIn,
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
):
    booking = await service.book(token, _instant(payload.scheduled_at, payload.timezone))
    return BookingOut(
        message="Interview scheduled successfully",
        interview=_interview_out(booking.interview),
        reschedule_url=reschedule_url(booking.reschedule_token),
    )


@public_router.get("/reschedule/{reschedule_token}", response_model=RescheduleInfoOut)
async def get_reschedule_info(
    reschedule_token: str,
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
):
    link, interview, application = await service.get_reschedule_info(reschedule_token)
    return RescheduleInfoOut(
        interview=_interview_out(interview),
        candidate=_candidate_out(application),
        job=JobOut(title=application.job_title),
        allowed_date_range=DateRangeOut(
            start_date=from_utc_naive(link.start_date),
            end_date=from_utc_naive(link.end_date),
        ),
    )


@public_router.get("/reschedule/{reschedule_token}/slots", response_model=SlotsOut)
async def get_reschedule_slots(
    reschedule_token: str,
    tz: Optional[str] = Query(default=None, alias="timezone"),
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
):
    slots = await service.get_reschedule_slots(reschedule_token, tz)
    return _slots_out(slots, tz)


@public_router.post("/reschedule/{reschedule_token}", response_model=InterviewOut)
async def reschedule_interview(
    reschedule_token: str,
    payload: RescheduleIn,
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
):
    interview = await service.reschedule(reschedule_token, _instant(payload.scheduled_at, payload.timezone))
    return _interview_out(interview)


@public_router.post("/reschedule/{reschedule_token}/cancel", response_model=MessageOut)
async def cancel_interview(
    reschedule_token: str,
    service: SchedulingLinkService = Depends(deps.get_scheduling_link_service),
):
    await service.cancel(reschedule_token)
    return MessageOut(message="Interview cancelled successfully")
