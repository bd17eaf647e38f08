"""
Provider-neutral calendar interface.

Availability and booking code only ever talks to a CalendarPort. Each adapter
translates to one remote API and reports every remote failure as
CalendarProviderError so callers can map it to a single upstream error.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from interview_scheduling.core.datetime_utils import ensure_utc
from interview_scheduling.core.exceptions import SchedulingValidationError
from interview_scheduling.core.intervals import TimeInterval

Credentials = Mapping[str, Any]


class CalendarProvider(str, Enum):
    GOOGLE = "google"
    MICROSOFT = "microsoft"


class CalendarProviderError(Exception):
    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


@dataclass
class EventDetails:
    summary: str
    start: datetime
    end: datetime
    attendees: list[str] = field(default_factory=list)
    description: str = ""
    location: str | None = None
    timezone: str = "UTC"
    # Ask the provider to attach a video meeting (Meet / Teams).
    include_video_conference: bool = False


@dataclass
class EventRef:
    event_id: str | None
    meeting_link: str | None = None
    status: str = "created"


def busy_block(start: datetime, end: datetime) -> TimeInterval | None:
    """Build a busy interval from provider data, skipping empty or inverted blocks."""
    start = ensure_utc(start)
    end = ensure_utc(end)
    if start >= end:
        return None
    return TimeInterval(start, end)


class CalendarPort(ABC):
    provider: CalendarProvider

    @abstractmethod
    async def fetch_busy(self, credentials: Credentials, start: datetime, end: datetime) -> list[TimeInterval]:
        """Busy blocks intersecting [start, end)."""

    async def has_conflict(self, credentials: Credentials, start: datetime, end: datetime) -> bool:
        window = TimeInterval(ensure_utc(start), ensure_utc(end))
        busy = await self.fetch_busy(credentials, window.start, window.end)
        return any(block.overlaps(window) for block in busy)

    @abstractmethod
    async def create_event(self, credentials: Credentials, details: EventDetails) -> EventRef:
        ...

    @abstractmethod
    async def update_event(self, credentials: Credentials, event_id: str, details: EventDetails) -> EventRef:
        ...

    @abstractmethod
    async def delete_event(self, credentials: Credentials, event_id: str) -> None:
        ...


class CalendarRegistry:
    def __init__(self, adapters: Mapping[str, CalendarPort]) -> None:
        self._adapters = {str(getattr(key, "value", key)).lower(): adapter for key, adapter in adapters.items()}

    def for_provider(self, provider: str | None) -> CalendarPort:
        key = (provider or "").strip().lower()
        adapter = self._adapters.get(key)
        if adapter is None:
            raise SchedulingValidationError(f"Unsupported calendar provider: {provider}")
        return adapter

    def providers(self) -> list[str]:
        return sorted(self._adapters)
