from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import anyio
import requests

from interview_scheduling.core.config import settings
from interview_scheduling.core.datetime_utils import ensure_utc
from interview_scheduling.core.intervals import TimeInterval
from interview_scheduling.services.calendar_port import (
    CalendarPort,
    CalendarProvider,
    CalendarProviderError,
    Credentials,
    EventDetails,
    EventRef,
    busy_block,
)

logger = logging.getLogger("sched.calendar.microsoft")

BUSY_STATUSES = {"busy", "tentative", "oof"}
GRAPH_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _graph_url(path: str) -> str:
    return f"{settings.microsoft_graph_url.rstrip('/')}/{path.lstrip('/')}"


def _headers(credentials: Credentials) -> dict[str, str]:
    token = credentials.get("access_token")
    if not token:
        raise CalendarProviderError(CalendarProvider.MICROSOFT.value, "missing access_token")
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
        # Ask Graph to return event times in UTC.
        "Prefer": 'outlook.timezone="UTC"',
    }


def _graph_time(value: datetime) -> dict[str, str]:
    # Graph takes a wall-clock dateTime plus a zone name; always send UTC.
    return {"dateTime": ensure_utc(value).strftime(GRAPH_DATETIME_FORMAT), "timeZone": "UTC"}


def parse_graph_datetime(value: str) -> datetime:
    """Graph returns 7 fractional digits and no offset, e.g. 2025-03-04T14:00:00.0000000."""
    raw = value.strip().rstrip("Z")
    main, _, fraction = raw.partition(".")
    parsed = datetime.strptime(main, GRAPH_DATETIME_FORMAT)
    if fraction:
        parsed = parsed.replace(microsecond=int(fraction[:6].ljust(6, "0")))
    return parsed.replace(tzinfo=timezone.utc)


def _event_body(details: EventDetails) -> dict[str, Any]:
    body: dict[str, Any] = {
        "subject": details.summary,
        "body": {"contentType": "text", "content": details.description or ""},
        "start": _graph_time(details.start),
        "end": _graph_time(details.end),
        "attendees": [
            {"emailAddress": {"address": email}, "type": "required"} for email in details.attendees if email
        ],
    }
    if details.location:
        body["location"] = {"displayName": details.location}
    return body


def _meeting_link(event: dict[str, Any]) -> str | None:
    meeting = event.get("onlineMeeting") or {}
    return meeting.get("joinUrl")


def _request(method: str, path: str, credentials: Credentials, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    response = requests.request(
        method,
        _graph_url(path),
        json=payload,
        headers=_headers(credentials),
        timeout=settings.calendar_request_timeout_seconds,
    )
    if method == "DELETE" and response.status_code == 404:
        return {}
    response.raise_for_status()
    if not response.content:
        return {}
    return response.json()


def get_schedule(credentials: Credentials, start: datetime, end: datetime) -> list[TimeInterval]:
    payload = {
        "schedules": [credentials.get("email") or "me"],
        "startTime": _graph_time(start),
        "endTime": _graph_time(end),
        "availabilityViewInterval": 30,
    }
    data = _request("POST", "/me/calendar/getSchedule", credentials, payload)
    schedules = data.get("value") or [{}]
    busy: list[TimeInterval] = []
    for item in schedules[0].get("scheduleItems") or []:
        if item.get("status") not in BUSY_STATUSES:
            continue
        block = busy_block(
            parse_graph_datetime(item["start"]["dateTime"]),
            parse_graph_datetime(item["end"]["dateTime"]),
        )
        if block is not None:
            busy.append(block)
    return busy


def post_graph_event(credentials: Credentials, details: EventDetails) -> EventRef:
    body = _event_body(details)
    if details.include_video_conference:
        body["isOnlineMeeting"] = True
        body["onlineMeetingProvider"] = "teamsForBusiness"
    event = _request("POST", "/me/calendar/events", credentials, body)
    return EventRef(event_id=event.get("id"), meeting_link=_meeting_link(event), status="created")


def patch_graph_event(credentials: Credentials, event_id: str, details: EventDetails) -> EventRef:
    event = _request("PATCH", f"/me/calendar/events/{event_id}", credentials, _event_body(details))
    return EventRef(event_id=event.get("id") or event_id, meeting_link=_meeting_link(event), status="updated")


def delete_graph_event(credentials: Credentials, event_id: str) -> None:
    _request("DELETE", f"/me/calendar/events/{event_id}", credentials)


class MicrosoftCalendarAdapter(CalendarPort):
    provider = CalendarProvider.MICROSOFT

    async def _run(self, fn, *args):
        try:
            return await anyio.to_thread.run_sync(fn, *args, abandon_on_cancel=True)
        except (requests.RequestException, KeyError, ValueError) as exc:
            logger.warning("graph_calendar_call_failed", extra={"call": fn.__name__, "error": str(exc)})
            raise CalendarProviderError(self.provider.value, str(exc)) from exc

    async def fetch_busy(self, credentials: Credentials, start: datetime, end: datetime) -> list[TimeInterval]:
        if not settings.enable_calendar:
            return []
        return await self._run(get_schedule, credentials, start, end)

    async def create_event(self, credentials: Credentials, details: EventDetails) -> EventRef:
        if not settings.enable_calendar:
            return EventRef(event_id=None, status="skipped")
        return await self._run(post_graph_event, credentials, details)

    async def update_event(self, credentials: Credentials, event_id: str, details: EventDetails) -> EventRef:
        if not settings.enable_calendar:
            return EventRef(event_id=event_id, status="skipped")
        return await self._run(patch_graph_event, credentials, event_id, details)

    async def delete_event(self, credentials: Credentials, event_id: str) -> None:
        if not settings.enable_calendar:
            return
        await self._run(delete_graph_event, credentials, event_id)
