from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from interview_scheduling.core.config import settings
from interview_scheduling.jobs.tasks import run_operation_retries


def start_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_operation_retries,
        IntervalTrigger(minutes=max(settings.operation_retry_interval_minutes, 1)),
        id="operation_retries",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    return scheduler
