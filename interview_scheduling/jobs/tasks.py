from __future__ import annotations

import logging
from functools import partial

from interview_scheduling.db.session import SessionLocal
from interview_scheduling.services.calendar_registry import default_registry
from interview_scheduling.services.calendar_sync import execute_calendar_operation
from interview_scheduling.services.operation_queue import process_due_operations

logger = logging.getLogger("sched.jobs")


async def run_operation_retries() -> None:
    handler = partial(execute_calendar_operation, registry=default_registry())
    async with SessionLocal() as session:
        summary = await process_due_operations(session, handler, limit=50)
    if summary["picked"]:
        logger.info("operation_retries_processed", extra=summary)
