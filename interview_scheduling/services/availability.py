"""
Availability aggregation across interviewers.

Per-user work (provider read, free-time derivation, working-hours clipping)
runs concurrently in one anyio task group. The first failing or timed-out
provider call cancels its siblings and surfaces as UpstreamUnavailable, so a
partial result is never returned.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import anyio
from sqlalchemy.ext.asyncio import AsyncSession

from interview_scheduling.core.config import settings
from interview_scheduling.core.datetime_utils import ensure_utc
from interview_scheduling.core.exceptions import SchedulingError, SchedulingValidationError, UpstreamUnavailable
from interview_scheduling.core.intervals import (
    BROWSE_STRIDE_MINUTES,
    TimeInterval,
    clip_to_working_hours,
    discretize,
    drop_shorter_than,
    free_intervals,
    intersect_all,
)
from interview_scheduling.core.timezones import get_zone, slot_display
from interview_scheduling.models.calendar_user import CalendarUser
from interview_scheduling.services.calendar_port import CalendarProviderError, CalendarRegistry
from interview_scheduling.services.calendar_users import load_users, timezone_for, working_hours_for

logger = logging.getLogger("sched.availability")

T = TypeVar("T")


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    display_start: str
    display_end: str
    timezone: str


@dataclass
class UserAvailability:
    user_id: str
    timezone: str
    free: list[TimeInterval]


@dataclass
class UserConflict:
    user_id: str
    has_conflict: bool


def present_slots(intervals: Sequence[TimeInterval], tz: str) -> list[Slot]:
    zone = get_zone(tz)
    out: list[Slot] = []
    for interval in intervals:
        display_start, display_end = slot_display(interval.start, interval.end, zone)
        out.append(Slot(interval.start, interval.end, display_start, display_end, zone.key))
    return out


def _window(start: datetime, end: datetime) -> TimeInterval:
    start = ensure_utc(start)
    end = ensure_utc(end)
    if start >= end:
        raise SchedulingValidationError("Start date must be before end date")
    return TimeInterval(start, end)


def _without_ignored(busy: Sequence[TimeInterval], ignore: TimeInterval | None) -> list[TimeInterval]:
    if ignore is None:
        return list(busy)
    return [block for block in busy if not ignore.contains(block)]


class AvailabilityService:
    def __init__(
        self,
        session: AsyncSession,
        registry: CalendarRegistry,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        self.session = session
        self.registry = registry
        self.timeout_seconds = timeout_seconds or settings.calendar_request_timeout_seconds

    async def _provider_call(self, user: CalendarUser, method: str, *args: Any) -> Any:
        adapter = self.registry.for_provider(user.calendar_provider)
        try:
            with anyio.fail_after(self.timeout_seconds):
                return await getattr(adapter, method)(user.calendar_credentials, *args)
        except TimeoutError as exc:
            logger.warning("calendar_timeout", extra={"user_id": user.user_id, "call": method})
            raise UpstreamUnavailable(
                f"Calendar provider timed out for user {user.user_id}",
                details={"user_id": user.user_id},
            ) from exc
        except CalendarProviderError as exc:
            logger.warning("calendar_unavailable", extra={"user_id": user.user_id, "call": method, "error": str(exc)})
            raise UpstreamUnavailable(
                f"Calendar provider unavailable for user {user.user_id}",
                details={"user_id": user.user_id},
            ) from exc

    async def _fan_out(self, users: Sequence[CalendarUser], fn: Callable[[CalendarUser], Awaitable[T]]) -> list[T]:
        results: list[Any] = [None] * len(users)
        failures: list[SchedulingError] = []

        async def run(index: int, user: CalendarUser) -> None:
            try:
                results[index] = await fn(user)
            except SchedulingError as exc:
                failures.append(exc)
                tg.cancel_scope.cancel()

        async with anyio.create_task_group() as tg:
            for index, user in enumerate(users):
                tg.start_soon(run, index, user)

        if failures:
            raise failures[0]
        return results

    async def _busy(self, user: CalendarUser, window: TimeInterval) -> list[TimeInterval]:
        return await self._provider_call(user, "fetch_busy", window.start, window.end)

    async def _free_for_user(
        self, user: CalendarUser, window: TimeInterval, ignore: TimeInterval | None = None
    ) -> list[TimeInterval]:
        busy = _without_ignored(await self._busy(user, window), ignore)
        free = free_intervals(busy, window.start, window.end)
        return clip_to_working_hours(free, working_hours_for(user), timezone_for(user))

    async def _calendar_users(self, user_ids: Sequence[str]) -> list[CalendarUser]:
        if not user_ids:
            raise SchedulingValidationError("At least one user is required")
        users = await load_users(self.session, user_ids)
        without = [user.user_id for user in users if not user.has_calendar]
        if without:
            raise SchedulingValidationError(
                f"User has not connected a calendar: {', '.join(without)}",
                details={"user_ids": without},
            )
        return users

    async def user_availability(self, user_id: str, start: datetime, end: datetime) -> UserAvailability:
        window = _window(start, end)
        (user,) = await self._calendar_users([user_id])
        free = await self._free_for_user(user, window)
        return UserAvailability(user_id=user.user_id, timezone=timezone_for(user), free=free)

    async def common_availability(
        self,
        user_ids: Sequence[str],
        start: datetime,
        end: datetime,
        duration_minutes: int,
        *,
        ignore: TimeInterval | None = None,
    ) -> list[TimeInterval]:
        if duration_minutes <= 0:
            raise SchedulingValidationError("Duration must be positive")
        window = _window(start, end)
        users = await self._calendar_users(user_ids)

        per_user = await self._fan_out(users, lambda user: self._free_for_user(user, window, ignore))
        common = drop_shorter_than(intersect_all(per_user), duration_minutes)
        logger.info(
            "common_availability_computed",
            extra={"users": len(users), "intervals": len(common), "duration_minutes": duration_minutes},
        )
        return common

    async def generate_slots(
        self,
        user_ids: Sequence[str],
        start: datetime,
        end: datetime,
        duration_minutes: int,
        target_timezone: str | None = None,
        *,
        stride_minutes: int = BROWSE_STRIDE_MINUTES,
    ) -> list[Slot]:
        tz = target_timezone or "UTC"
        get_zone(tz)
        common = await self.common_availability(user_ids, start, end, duration_minutes)
        return present_slots(discretize(common, duration_minutes, stride_minutes), tz)

    async def _user_conflict(
        self, user: CalendarUser, window: TimeInterval, ignore: TimeInterval | None
    ) -> bool:
        if ignore is None:
            return bool(await self._provider_call(user, "has_conflict", window.start, window.end))
        busy = _without_ignored(await self._busy(user, window), ignore)
        return any(block.overlaps(window) for block in busy)

    async def conflicts_for_users(
        self,
        user_ids: Sequence[str],
        start: datetime,
        end: datetime,
        *,
        ignore: TimeInterval | None = None,
    ) -> list[UserConflict]:
        window = _window(start, end)
        users = await load_users(self.session, user_ids)
        # No connected calendar means nothing can conflict.
        connected = [user for user in users if user.has_calendar]
        flags = await self._fan_out(connected, lambda user: self._user_conflict(user, window, ignore))
        by_user = {user.user_id: flag for user, flag in zip(connected, flags)}
        return [UserConflict(user.user_id, by_user.get(user.user_id, False)) for user in users]

    async def has_conflict_any_of(
        self,
        user_ids: Sequence[str],
        start: datetime,
        end: datetime,
        *,
        ignore: TimeInterval | None = None,
    ) -> bool:
        conflicts = await self.conflicts_for_users(user_ids, start, end, ignore=ignore)
        return any(item.has_conflict for item in conflicts)


def slot_window(start: datetime, duration_minutes: int) -> TimeInterval:
    start = ensure_utc(start)
    return TimeInterval(start, start + timedelta(minutes=duration_minutes))
