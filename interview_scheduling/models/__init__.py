from interview_scheduling.db.base import Base
from interview_scheduling.models.application import Application
from interview_scheduling.models.calendar_user import CalendarUser
from interview_scheduling.models.interview import Interview
from interview_scheduling.models.interview_calendar_event import InterviewCalendarEvent
from interview_scheduling.models.operation_retry import OperationRetry
from interview_scheduling.models.scheduling_link import SchedulingLink

__all__ = [
    "Base",
    "Application",
    "CalendarUser",
    "Interview",
    "InterviewCalendarEvent",
    "OperationRetry",
    "SchedulingLink",
]
