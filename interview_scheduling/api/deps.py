from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from interview_scheduling.core.auth import get_current_user
from interview_scheduling.db.session import get_session
from interview_scheduling.schemas.user import UserContext
from interview_scheduling.services.availability import AvailabilityService
from interview_scheduling.services.calendar_port import CalendarRegistry
from interview_scheduling.services.calendar_registry import default_registry
from interview_scheduling.services.scheduling_links import SchedulingLinkService


async def get_db_session() -> AsyncSession:
    async for session in get_session():
        yield session


async def get_user(user: UserContext = Depends(get_current_user)) -> UserContext:
    return user


def get_calendar_registry() -> CalendarRegistry:
    return default_registry()


def get_availability_service(
    session: AsyncSession = Depends(get_db_session),
    registry: CalendarRegistry = Depends(get_calendar_registry),
) -> AvailabilityService:
    return AvailabilityService(session, registry)


def get_scheduling_link_service(
    session: AsyncSession = Depends(get_db_session),
    registry: CalendarRegistry = Depends(get_calendar_registry),
) -> SchedulingLinkService:
    return SchedulingLinkService(session, registry)
