"""
Durable retry queue for remote calendar writes.

Entries move pending -> processing -> succeeded, or back to failed with an
exponential back-off until `max_attempts` is reached, after which they are
parked as dead for manual inspection.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from interview_scheduling.models.operation_retry import OperationRetry

logger = logging.getLogger("sched.operation_queue")

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_FAILED = "failed"
STATUS_SUCCEEDED = "succeeded"
STATUS_DEAD = "dead"

OPEN_STATUSES = (STATUS_PENDING, STATUS_FAILED)

DEFAULT_MAX_ATTEMPTS = 5
BASE_RETRY_SECONDS = 5 * 60
MAX_RETRY_SECONDS = 6 * 60 * 60
MAX_ERROR_LENGTH = 2000

OP_CALENDAR_CREATE_EVENT = "calendar_create_event"
OP_CALENDAR_UPDATE_EVENT = "calendar_update_event"
OP_CALENDAR_DELETE_EVENT = "calendar_delete_event"

OperationHandler = Callable[[AsyncSession, OperationRetry], Awaitable[None]]


def retry_delay_seconds(attempt_number: int) -> int:
    """Back-off after the given failed attempt (1-based): 5 min, 10 min, 20 min ... capped at 6 h."""
    exponent = max(int(attempt_number), 1) - 1
    return min(BASE_RETRY_SECONDS * 2**exponent, MAX_RETRY_SECONDS)


def _encode(payload: dict[str, Any] | None) -> str:
    return json.dumps(payload or {}, ensure_ascii=False, separators=(",", ":"))


async def _open_entry(
    session: AsyncSession, operation_type: str, interview_id: int | None, user_id: str | None
) -> OperationRetry | None:
    stmt = select(OperationRetry).where(
        OperationRetry.operation_type == operation_type,
        OperationRetry.interview_id == interview_id,
        OperationRetry.user_id == user_id,
        OperationRetry.status.in_(OPEN_STATUSES),
    )
    return (await session.execute(stmt)).scalars().first()


async def enqueue_operation(
    session: AsyncSession,
    *,
    operation_type: str,
    payload: dict[str, Any] | None = None,
    interview_id: int | None = None,
    user_id: str | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> OperationRetry:
    """Queue a write, or refresh the open entry for the same interview and user. Flushes, never commits."""
    kind = (operation_type or "").strip().lower()
    if not kind:
        raise ValueError("operation_type is required")

    now = datetime.utcnow()
    entry = await _open_entry(session, kind, interview_id, user_id)
    if entry is not None:
        entry.payload_json = _encode(payload)
        entry.next_retry_at = now
        entry.updated_at = now
        await session.flush()
        return entry

    entry = OperationRetry(
        operation_type=kind,
        status=STATUS_PENDING,
        interview_id=interview_id,
        user_id=user_id,
        payload_json=_encode(payload),
        attempts=0,
        max_attempts=max_attempts if max_attempts >= 1 else DEFAULT_MAX_ATTEMPTS,
        next_retry_at=now,
        created_at=now,
        updated_at=now,
    )
    session.add(entry)
    await session.flush()
    logger.info(
        "operation_retry_enqueued",
        extra={"operation_type": kind, "interview_id": interview_id, "user_id": user_id},
    )
    return entry


async def _due_entries(session: AsyncSession, now: datetime, limit: int) -> list[OperationRetry]:
    stmt = (
        select(OperationRetry)
        .where(
            OperationRetry.status.in_(OPEN_STATUSES),
            OperationRetry.next_retry_at <= now,
            OperationRetry.attempts < OperationRetry.max_attempts,
        )
        .order_by(OperationRetry.next_retry_at, OperationRetry.operation_retry_id)
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())


def _record_success(entry: OperationRetry) -> None:
    finished = datetime.utcnow()
    entry.attempts += 1
    entry.status = STATUS_SUCCEEDED
    entry.last_error = None
    entry.completed_at = finished
    entry.updated_at = finished


def _record_failure(entry: OperationRetry, exc: Exception) -> str:
    failed_at = datetime.utcnow()
    entry.attempts += 1
    entry.last_error = str(exc)[:MAX_ERROR_LENGTH]
    entry.updated_at = failed_at
    if entry.attempts >= entry.max_attempts:
        entry.status = STATUS_DEAD
        entry.completed_at = failed_at
    else:
        entry.status = STATUS_FAILED
        entry.next_retry_at = failed_at + timedelta(seconds=retry_delay_seconds(entry.attempts))
    return entry.status


async def process_due_operations(
    session: AsyncSession,
    handler: OperationHandler,
    *,
    limit: int = 50,
) -> dict[str, int]:
    entries = await _due_entries(session, datetime.utcnow(), limit)
    summary = {"picked": len(entries), "succeeded": 0, "failed": 0, "dead": 0}

    for entry in entries:
        entry.status = STATUS_PROCESSING
        entry.updated_at = datetime.utcnow()
        await session.flush()

        try:
            await handler(session, entry)
        except Exception as exc:  # noqa: BLE001
            outcome = _record_failure(entry, exc)
            summary[outcome] += 1
            logger.warning(
                "operation_retry_failed",
                extra={
                    "operation_retry_id": entry.operation_retry_id,
                    "operation_type": entry.operation_type,
                    "attempts": entry.attempts,
                    "status": outcome,
                    "error": entry.last_error,
                },
            )
        else:
            _record_success(entry)
            summary["succeeded"] += 1
        # Each entry commits on its own.
        await session.commit()

    return summary
