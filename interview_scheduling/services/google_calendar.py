from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import uuid4

import anyio
import google.auth
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials as UserCredentials
from google.oauth2.service_account import Credentials as ServiceAccountCredentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from interview_scheduling.core.config import settings
from interview_scheduling.core.datetime_utils import ensure_utc, parse_iso
from interview_scheduling.core.intervals import TimeInterval
from interview_scheduling.core.paths import resolve_repo_path
from interview_scheduling.services.calendar_port import (
    CalendarPort,
    CalendarProvider,
    CalendarProviderError,
    Credentials,
    EventDetails,
    EventRef,
    busy_block,
)

logger = logging.getLogger("sched.calendar.google")

SCOPES = ["https://www.googleapis.com/auth/calendar"]

# Remote, credential and malformed-response failures.
_REMOTE_ERRORS = (HttpError, GoogleAuthError, httplib2.HttpLib2Error, OSError, KeyError, ValueError)


def _build_credentials(credentials: Credentials):
    # Per-user OAuth tokens take precedence; otherwise fall back to a
    # service account (optionally impersonating the user) or ADC.
    access_token = credentials.get("access_token")
    refresh_token = credentials.get("refresh_token")
    if access_token or refresh_token:
        return UserCredentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=settings.google_token_uri,
            client_id=settings.google_client_id or None,
            client_secret=settings.google_client_secret or None,
            scopes=SCOPES,
        )

    service_account_path = settings.google_application_credentials
    if service_account_path:
        creds = ServiceAccountCredentials.from_service_account_file(
            str(resolve_repo_path(service_account_path)), scopes=SCOPES
        )
        subject = credentials.get("subject_email")
        if subject:
            creds = creds.with_subject(subject)
        return creds

    creds, _ = google.auth.default(scopes=SCOPES)
    return creds


def _calendar_client(credentials: Credentials):
    # build() takes either credentials or http; the socket timeout needs http.
    http = AuthorizedHttp(
        _build_credentials(credentials),
        http=httplib2.Http(timeout=settings.calendar_request_timeout_seconds),
    )
    return build("calendar", "v3", http=http, cache_discovery=False)


def _calendar_id(credentials: Credentials) -> str:
    return str(credentials.get("calendar_id") or settings.calendar_id or "primary")


def _find_meeting_link(event: dict[str, Any]) -> str | None:
    link = event.get("hangoutLink")
    if link:
        return link
    conference = event.get("conferenceData") or {}
    for entry in conference.get("entryPoints", []) or []:
        if entry.get("entryPointType") == "video":
            return entry.get("uri")
    return None


def _event_body(details: EventDetails) -> dict[str, Any]:
    body: dict[str, Any] = {
        "summary": details.summary,
        "description": details.description or "",
        "start": {"dateTime": ensure_utc(details.start).isoformat(), "timeZone": details.timezone or "UTC"},
        "end": {"dateTime": ensure_utc(details.end).isoformat(), "timeZone": details.timezone or "UTC"},
        "attendees": [{"email": email} for email in details.attendees if email],
    }
    if details.location:
        body["location"] = details.location
    return body


def query_busy(credentials: Credentials, start: datetime, end: datetime) -> list[TimeInterval]:
    calendar_id = _calendar_id(credentials)
    body = {
        "timeMin": ensure_utc(start).isoformat(),
        "timeMax": ensure_utc(end).isoformat(),
        "timeZone": "UTC",
        "items": [{"id": calendar_id}],
    }
    service = _calendar_client(credentials)
    resp = service.freebusy().query(body=body).execute()
    calendar = (resp.get("calendars") or {}).get(calendar_id) or {}
    if calendar.get("errors"):
        reason = calendar["errors"][0].get("reason") or "unknown"
        raise CalendarProviderError(CalendarProvider.GOOGLE.value, f"freebusy error: {reason}")

    busy: list[TimeInterval] = []
    for item in calendar.get("busy") or []:
        block = busy_block(parse_iso(item["start"]), parse_iso(item["end"]))
        if block is not None:
            busy.append(block)
    return busy


def insert_event(credentials: Credentials, details: EventDetails) -> EventRef:
    body = _event_body(details)
    if details.include_video_conference:
        body["conferenceData"] = {
            "createRequest": {
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
                "requestId": uuid4().hex,
            }
        }
    service = _calendar_client(credentials)
    event = (
        service.events()
        .insert(
            calendarId=_calendar_id(credentials),
            body=body,
            conferenceDataVersion=1,
            sendUpdates="all",
        )
        .execute()
    )
    return EventRef(event_id=event.get("id"), meeting_link=_find_meeting_link(event), status="created")


def patch_event(credentials: Credentials, event_id: str, details: EventDetails) -> EventRef:
    service = _calendar_client(credentials)
    event = (
        service.events()
        .patch(
            calendarId=_calendar_id(credentials),
            eventId=event_id,
            body=_event_body(details),
            sendUpdates="all",
        )
        .execute()
    )
    return EventRef(event_id=event.get("id") or event_id, meeting_link=_find_meeting_link(event), status="updated")


def remove_event(credentials: Credentials, event_id: str) -> None:
    service = _calendar_client(credentials)
    try:
        service.events().delete(
            calendarId=_calendar_id(credentials),
            eventId=event_id,
            sendUpdates="all",
        ).execute()
    except HttpError as exc:
        # Already gone on the remote side.
        if getattr(exc.resp, "status", None) in (404, 410):
            return
        raise


class GoogleCalendarAdapter(CalendarPort):
    provider = CalendarProvider.GOOGLE

    async def _run(self, fn, *args):
        try:
            return await anyio.to_thread.run_sync(fn, *args, abandon_on_cancel=True)
        except _REMOTE_ERRORS as exc:
            logger.warning("google_calendar_call_failed", extra={"call": fn.__name__, "error": str(exc)})
            raise CalendarProviderError(self.provider.value, str(exc)) from exc

    async def fetch_busy(self, credentials: Credentials, start: datetime, end: datetime) -> list[TimeInterval]:
        if not settings.enable_calendar:
            return []
        return await self._run(query_busy, credentials, start, end)

    async def create_event(self, credentials: Credentials, details: EventDetails) -> EventRef:
        if not settings.enable_calendar:
            return EventRef(event_id=None, status="skipped")
        return await self._run(insert_event, credentials, details)

    async def update_event(self, credentials: Credentials, event_id: str, details: EventDetails) -> EventRef:
        if not settings.enable_calendar:
            return EventRef(event_id=event_id, status="skipped")
        return await self._run(patch_event, credentials, event_id, details)

    async def delete_event(self, credentials: Credentials, event_id: str) -> None:
        if not settings.enable_calendar:
            return
        await self._run(remove_event, credentials, event_id)
