"""
Remote calendar writes for booked interviews.

Writes happen after the booking transaction has committed and never undo it:
a failed write for one interviewer is logged, queued in operation_retry and
skipped, and the remaining interviewers are still attempted.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Sequence

import anyio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from interview_scheduling.core.config import settings
from interview_scheduling.core.datetime_utils import from_utc_naive
from interview_scheduling.core.exceptions import SchedulingError
from interview_scheduling.models.application import Application
from interview_scheduling.models.calendar_user import CalendarUser
from interview_scheduling.models.interview import STATUS_SCHEDULED, Interview
from interview_scheduling.models.interview_calendar_event import InterviewCalendarEvent
from interview_scheduling.models.operation_retry import OperationRetry
from interview_scheduling.models.scheduling_link import SchedulingLink
from interview_scheduling.services.calendar_port import CalendarProviderError, CalendarRegistry, EventDetails
from interview_scheduling.services.calendar_users import timezone_for
from interview_scheduling.services.operation_queue import (
    OP_CALENDAR_CREATE_EVENT,
    OP_CALENDAR_DELETE_EVENT,
    OP_CALENDAR_UPDATE_EVENT,
    enqueue_operation,
)

logger = logging.getLogger("sched.calendar")

_SYNC_ERRORS = (CalendarProviderError, TimeoutError, SchedulingError)


def build_event_details(
    interview: Interview,
    application: Application | None,
    attendees: Sequence[str],
    tz: str,
) -> EventDetails:
    start = from_utc_naive(interview.scheduled_at)
    end = start + timedelta(minutes=interview.duration_minutes)
    candidate = application.candidate_full_name if application else "Candidate"
    job_title = application.job_title if application else ""

    lines = [
        f"Candidate: {candidate}",
        f"Position: {job_title}" if job_title else None,
        f"Duration: {interview.duration_minutes} minutes",
        f"Location: {interview.location_type}",
        f"Meeting link: {interview.meeting_link}" if interview.meeting_link else None,
    ]
    summary = f"Interview: {candidate}"
    if job_title:
        summary = f"{summary} - {job_title}"

    return EventDetails(
        summary=summary,
        start=start,
        end=end,
        attendees=[email for email in dict.fromkeys(attendees) if email],
        description="\n".join(line for line in lines if line),
        location=interview.meeting_link,
        timezone=tz,
        include_video_conference=interview.location_type == "video" and not interview.meeting_link,
    )


class CalendarSync:
    def __init__(self, session: AsyncSession, registry: CalendarRegistry, *, timeout_seconds: float | None = None) -> None:
        self.session = session
        self.registry = registry
        self.timeout_seconds = timeout_seconds or settings.calendar_request_timeout_seconds

    async def _interviewers(self, user_ids: Sequence[str]) -> list[CalendarUser]:
        if not user_ids:
            return []
        rows = (
            await self.session.execute(select(CalendarUser).where(CalendarUser.user_id.in_(list(user_ids))))
        ).scalars().all()
        by_id = {row.user_id: row for row in rows}
        return [by_id[uid] for uid in user_ids if uid in by_id]

    async def _event_row(self, interview_id: int, user_id: str) -> InterviewCalendarEvent | None:
        return (
            await self.session.execute(
                select(InterviewCalendarEvent).where(
                    InterviewCalendarEvent.interview_id == interview_id,
                    InterviewCalendarEvent.user_id == user_id,
                )
            )
        ).scalars().first()

    async def sync_user_event(
        self,
        interview: Interview,
        application: Application | None,
        user: CalendarUser,
        attendees: Sequence[str],
    ) -> None:
        """Create or update one interviewer's event. Raises on provider failure."""
        adapter = self.registry.for_provider(user.calendar_provider)
        details = build_event_details(interview, application, attendees, timezone_for(user))
        row = await self._event_row(interview.interview_id, user.user_id)

        with anyio.fail_after(self.timeout_seconds):
            if row:
                ref = await adapter.update_event(user.calendar_credentials, row.event_id, details)
            else:
                ref = await adapter.create_event(user.calendar_credentials, details)

        now = datetime.utcnow()
        if row:
            row.event_id = ref.event_id or row.event_id
            row.meeting_link = ref.meeting_link or row.meeting_link
            row.updated_at = now
        elif ref.event_id:
            self.session.add(
                InterviewCalendarEvent(
                    interview_id=interview.interview_id,
                    user_id=user.user_id,
                    provider=user.calendar_provider,
                    event_id=ref.event_id,
                    meeting_link=ref.meeting_link,
                    created_at=now,
                    updated_at=now,
                )
            )
        if ref.meeting_link and not interview.meeting_link:
            interview.meeting_link = ref.meeting_link
            interview.updated_at = now
        await self.session.flush()

    async def remove_user_event(self, user: CalendarUser, row: InterviewCalendarEvent) -> None:
        adapter = self.registry.for_provider(row.provider or user.calendar_provider)
        with anyio.fail_after(self.timeout_seconds):
            await adapter.delete_event(user.calendar_credentials, row.event_id)
        await self.session.delete(row)
        await self.session.flush()

    async def push_interview(
        self,
        interview: Interview,
        link: SchedulingLink,
        application: Application | None,
        *,
        operation_type: str = OP_CALENDAR_CREATE_EVENT,
    ) -> int:
        """Best-effort write for every connected interviewer. Returns the number of failures."""
        users = await self._interviewers(link.interviewer_ids)
        attendees = [application.candidate_email if application else None] + [user.email for user in users]
        failures = 0
        for user in users:
            if not user.has_calendar:
                continue
            try:
                await self.sync_user_event(interview, application, user, attendees)
            except _SYNC_ERRORS as exc:
                failures += 1
                logger.error(
                    "calendar_event_write_failed",
                    extra={"interview_id": interview.interview_id, "user_id": user.user_id, "error": str(exc)},
                )
                await enqueue_operation(
                    self.session,
                    operation_type=operation_type,
                    interview_id=interview.interview_id,
                    user_id=user.user_id,
                    payload={"scheduled_at": interview.scheduled_at.isoformat()},
                )
        await self.session.commit()
        return failures

    async def remove_interview_events(self, interview_id: int) -> int:
        rows = (
            await self.session.execute(
                select(InterviewCalendarEvent).where(InterviewCalendarEvent.interview_id == interview_id)
            )
        ).scalars().all()
        failures = 0
        for row in rows:
            user = await self.session.get(CalendarUser, row.user_id)
            if user is None or not user.has_calendar:
                # Credentials are gone; the remote event cannot be reached any more.
                await self.session.delete(row)
                continue
            try:
                await self.remove_user_event(user, row)
            except _SYNC_ERRORS as exc:
                failures += 1
                logger.error(
                    "calendar_event_delete_failed",
                    extra={"interview_id": interview_id, "user_id": row.user_id, "error": str(exc)},
                )
                await enqueue_operation(
                    self.session,
                    operation_type=OP_CALENDAR_DELETE_EVENT,
                    interview_id=interview_id,
                    user_id=row.user_id,
                    payload={"event_id": row.event_id, "provider": row.provider},
                )
        await self.session.commit()
        return failures


async def execute_calendar_operation(
    session: AsyncSession,
    operation: OperationRetry,
    *,
    registry: CalendarRegistry,
) -> None:
    """Replay one queued calendar write. Raises so the queue can back off."""
    sync = CalendarSync(session, registry)
    op_type = (operation.operation_type or "").strip().lower()
    if operation.interview_id is None or not operation.user_id:
        raise ValueError(f"{op_type}: missing interview_id or user_id")

    user = await session.get(CalendarUser, operation.user_id)

    if op_type in (OP_CALENDAR_CREATE_EVENT, OP_CALENDAR_UPDATE_EVENT):
        interview = await session.get(Interview, operation.interview_id)
        # Cancelled meanwhile, or the interviewer disconnected: nothing left to write.
        if interview is None or interview.status != STATUS_SCHEDULED:
            return
        if user is None or not user.has_calendar:
            return
        application = await session.get(Application, interview.application_id)
        link = (
            await session.execute(select(SchedulingLink).where(SchedulingLink.interview_id == interview.interview_id))
        ).scalars().first()
        interviewers = await sync._interviewers(link.interviewer_ids) if link else [user]
        attendees = [application.candidate_email if application else None] + [item.email for item in interviewers]
        await sync.sync_user_event(interview, application, user, attendees)
        return

    if op_type == OP_CALENDAR_DELETE_EVENT:
        row = await sync._event_row(operation.interview_id, operation.user_id)
        if row is None:
            return
        if user is None or not user.has_calendar:
            await session.delete(row)
            return
        await sync.remove_user_event(user, row)
        return

    raise ValueError(f"Unsupported operation_type: {op_type}")
