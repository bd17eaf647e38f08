from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from interview_scheduling.api import deps
from interview_scheduling.core.auth import require_roles
from interview_scheduling.core.roles import Role
from interview_scheduling.core.timezones import get_zone, timezone_display_name
from interview_scheduling.models.calendar_user import CalendarUser
from interview_scheduling.schemas.availability import (
    BrowseSlotOut,
    CalendarConnectionIn,
    CalendarPreferencesOut,
    CommonAvailabilityIn,
    CommonAvailabilityOut,
    ConflictCheckIn,
    ConflictCheckOut,
    IntervalOut,
    SlotBrowseIn,
    SlotBrowseOut,
    TimezoneUpdate,
    UserAvailabilityOut,
    UserConflictOut,
    WorkingHoursIn,
    WorkingHoursUpdate,
)
from interview_scheduling.schemas.user import UserContext
from interview_scheduling.services import calendar_users
from interview_scheduling.services.availability import AvailabilityService

router = APIRouter(prefix="/calendar", tags=["calendar"])

_schedulers = require_roles([Role.HR_ADMIN, Role.RECRUITER, Role.INTERVIEWER])


def _preferences_out(row: CalendarUser) -> CalendarPreferencesOut:
    tz = calendar_users.timezone_for(row)
    return CalendarPreferencesOut(
        user_id=row.user_id,
        email=row.email,
        timezone=tz,
        timezone_display=timezone_display_name(tz),
        working_hours=[
            WorkingHoursIn(day_of_week=item.day_of_week, start_time=item.start_time, end_time=item.end_time)
            for item in calendar_users.working_hours_for(row)
        ],
        calendar_provider=row.calendar_provider,
        calendar_connected=row.has_calendar,
    )


@router.get("/availability", response_model=UserAvailabilityOut)
async def get_availability(
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    user_id: Optional[str] = Query(default=None),
    service: AvailabilityService = Depends(deps.get_availability_service),
    user: UserContext = Depends(_schedulers),
):
    result = await service.user_availability(user_id or user.user_id, start_date, end_date)
    return UserAvailabilityOut(
        user_id=result.user_id,
        timezone=result.timezone,
        availability=[IntervalOut(start=item.start, end=item.end) for item in result.free],
    )


@router.post("/availability/common", response_model=CommonAvailabilityOut)
async def get_common_availability(
    payload: CommonAvailabilityIn,
    service: AvailabilityService = Depends(deps.get_availability_service),
    _user: UserContext = Depends(_schedulers),
):
    common = await service.common_availability(
        payload.user_ids, payload.start_date, payload.end_date, payload.duration_minutes
    )
    return CommonAvailabilityOut(
        user_ids=payload.user_ids,
        duration_minutes=payload.duration_minutes,
        availability=[IntervalOut(start=item.start, end=item.end) for item in common],
    )


@router.post("/availability/slots", response_model=SlotBrowseOut)
async def browse_slots(
    payload: SlotBrowseIn,
    service: AvailabilityService = Depends(deps.get_availability_service),
    _user: UserContext = Depends(_schedulers),
):
    tz = get_zone(payload.target_timezone or "UTC").key
    slots = await service.generate_slots(
        payload.user_ids, payload.start_date, payload.end_date, payload.duration_minutes, tz
    )
    return SlotBrowseOut(
        target_timezone=tz,
        duration_minutes=payload.duration_minutes,
        slots=[
            BrowseSlotOut(
                start=slot.start,
                end=slot.end,
                display_start=slot.display_start,
                display_end=slot.display_end,
            )
            for slot in slots
        ],
    )


@router.post("/conflicts/check", response_model=ConflictCheckOut)
async def check_conflicts(
    payload: ConflictCheckIn,
    service: AvailabilityService = Depends(deps.get_availability_service),
    user: UserContext = Depends(_schedulers),
):
    user_ids = payload.user_ids or [user.user_id]
    conflicts = await service.conflicts_for_users(user_ids, payload.start, payload.end)
    return ConflictCheckOut(
        start=payload.start,
        end=payload.end,
        has_conflict=any(item.has_conflict for item in conflicts),
        conflicts=[UserConflictOut(user_id=item.user_id, has_conflict=item.has_conflict) for item in conflicts],
    )


@router.get("/preferences", response_model=CalendarPreferencesOut)
async def get_preferences(
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(deps.get_user),
):
    row = await calendar_users.get_or_create_user(session, user)
    await session.commit()
    return _preferences_out(row)


@router.put("/working-hours", response_model=CalendarPreferencesOut)
async def put_working_hours(
    payload: WorkingHoursUpdate,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(deps.get_user),
):
    row = await calendar_users.update_working_hours(
        session, user, [item.model_dump() for item in payload.working_hours]
    )
    return _preferences_out(row)


@router.put("/timezone", response_model=CalendarPreferencesOut)
async def put_timezone(
    payload: TimezoneUpdate,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(deps.get_user),
):
    row = await calendar_users.update_timezone(session, user, payload.timezone)
    return _preferences_out(row)


@router.put("/connection", response_model=CalendarPreferencesOut)
async def put_connection(
    payload: CalendarConnectionIn,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(deps.get_user),
):
    row = await calendar_users.connect_calendar(session, user, payload.provider, payload.credentials)
    return _preferences_out(row)


@router.delete("/connection", response_model=CalendarPreferencesOut)
async def delete_connection(
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(deps.get_user),
):
    row = await calendar_users.disconnect_calendar(session, user)
    return _preferences_out(row)
