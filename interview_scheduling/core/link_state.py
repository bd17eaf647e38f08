from __future__ import annotations

from datetime import datetime

from interview_scheduling.core.datetime_utils import ensure_utc


# Derived link states. Only `used` is stored; expiry is evaluated at read time.
UNUSED = "unused"
BOOKED = "booked"
EXPIRED = "expired"


# Token-scoped actions. Rescheduling leaves a link booked, cancelling makes it
# unused again.
VIEW = "view"
LIST_SLOTS = "list_slots"
BOOK = "book"
ISSUE_RESCHEDULE_TOKEN = "issue_reschedule_token"
RESCHEDULE = "reschedule"
CANCEL = "cancel"

ALLOWED_ACTIONS: dict[str, frozenset[str]] = {
    UNUSED: frozenset({VIEW, LIST_SLOTS, BOOK}),
    BOOKED: frozenset({ISSUE_RESCHEDULE_TOKEN, RESCHEDULE, CANCEL}),
    EXPIRED: frozenset(),
}


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
    if expires_at is None:
        return False
    return ensure_utc(now) > ensure_utc(expires_at)


def is_consistent(used: bool, interview_id: int | None) -> bool:
    return bool(used) == (interview_id is not None)


def derive_state(*, used: bool, expires_at: datetime | None, now: datetime) -> str:
    if is_expired(expires_at, now):
        return EXPIRED
    return BOOKED if used else UNUSED


def can_perform(state: str, action: str) -> bool:
    return action in ALLOWED_ACTIONS.get(state, frozenset())
