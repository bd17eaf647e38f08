from functools import lru_cache

from interview_scheduling.services.calendar_port import CalendarProvider, CalendarRegistry
from interview_scheduling.services.google_calendar import GoogleCalendarAdapter
from interview_scheduling.services.microsoft_calendar import MicrosoftCalendarAdapter


@lru_cache
def default_registry() -> CalendarRegistry:
    return CalendarRegistry(
        {
            CalendarProvider.GOOGLE: GoogleCalendarAdapter(),
            CalendarProvider.MICROSOFT: MicrosoftCalendarAdapter(),
        }
    )
