from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from interview_scheduling.core.config import settings
from interview_scheduling.core.exceptions import NotFound, SchedulingValidationError
from interview_scheduling.core.timezones import (
    WorkingHours,
    coerce_working_hours,
    default_working_hours,
    dump_working_hours,
    is_valid_timezone,
    parse_working_hours,
)
from interview_scheduling.models.calendar_user import CalendarUser
from interview_scheduling.schemas.user import UserContext
from interview_scheduling.services.calendar_port import CalendarProvider

logger = logging.getLogger("sched.calendar_users")


def working_hours_for(user: CalendarUser) -> list[WorkingHours]:
    return parse_working_hours(user.working_hours_json) or default_working_hours()


def timezone_for(user: CalendarUser) -> str:
    return user.timezone or settings.default_timezone or "UTC"


async def load_users(session: AsyncSession, user_ids: Sequence[str]) -> list[CalendarUser]:
    """Load users in the order given. Any unknown id is a NotFound."""
    wanted = list(dict.fromkeys(str(uid) for uid in user_ids))
    if not wanted:
        return []
    rows = (await session.execute(select(CalendarUser).where(CalendarUser.user_id.in_(wanted)))).scalars().all()
    by_id = {row.user_id: row for row in rows}
    missing = [uid for uid in wanted if uid not in by_id]
    if missing:
        raise NotFound(f"User not found: {', '.join(missing)}", details={"user_ids": missing})
    return [by_id[uid] for uid in wanted]


async def get_or_create_user(session: AsyncSession, user: UserContext) -> CalendarUser:
    row = await session.get(CalendarUser, user.user_id)
    if row:
        return row
    now = datetime.utcnow()
    row = CalendarUser(
        user_id=user.user_id,
        email=str(user.email),
        full_name=user.full_name,
        timezone=settings.default_timezone or "UTC",
        created_at=now,
        updated_at=now,
    )
    session.add(row)
    await session.flush()
    return row


async def update_working_hours(
    session: AsyncSession, user: UserContext, working_hours: Iterable[Any]
) -> CalendarUser:
    hours = [coerce_working_hours(item) for item in working_hours]
    if not hours:
        raise SchedulingValidationError("At least one working hours entry is required")
    row = await get_or_create_user(session, user)
    row.working_hours_json = dump_working_hours(hours)
    row.updated_at = datetime.utcnow()
    await session.commit()
    logger.info("working_hours_updated", extra={"user_id": row.user_id, "windows": len(hours)})
    return row


async def update_timezone(session: AsyncSession, user: UserContext, tz: str) -> CalendarUser:
    tz = (tz or "").strip()
    if not is_valid_timezone(tz):
        raise SchedulingValidationError(f"Unknown timezone: {tz}")
    row = await get_or_create_user(session, user)
    row.timezone = tz
    row.updated_at = datetime.utcnow()
    await session.commit()
    logger.info("timezone_updated", extra={"user_id": row.user_id, "timezone": tz})
    return row


async def connect_calendar(
    session: AsyncSession, user: UserContext, provider: str, credentials: dict[str, Any]
) -> CalendarUser:
    try:
        provider = CalendarProvider(provider).value
    except ValueError as exc:
        raise SchedulingValidationError(f"Unsupported calendar provider: {provider}") from exc
    if not credentials:
        raise SchedulingValidationError("Calendar credentials are required")
    row = await get_or_create_user(session, user)
    row.calendar_provider = provider
    row.calendar_credentials_json = json.dumps(credentials, separators=(",", ":"))
    row.updated_at = datetime.utcnow()
    await session.commit()
    logger.info("calendar_connected", extra={"user_id": row.user_id, "provider": provider})
    return row


async def disconnect_calendar(session: AsyncSession, user: UserContext) -> CalendarUser:
    row = await get_or_create_user(session, user)
    row.calendar_provider = None
    row.calendar_credentials_json = None
    row.updated_at = datetime.utcnow()
    await session.commit()
    logger.info("calendar_disconnected", extra={"user_id": row.user_id})
    return row
