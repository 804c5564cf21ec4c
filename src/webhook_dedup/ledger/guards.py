"""
Guard predicates for conditional writes.

A guard receives the record as currently persisted (or None when there is no
row) and returns True when the write may proceed. Stores evaluate guards
atomically with the write; see ``RecordStore.conditional_replace``.
"""

from datetime import datetime
from typing import Callable, Optional

from .models import EventLockRecord, EventStatus

Guard = Callable[[Optional[EventLockRecord]], bool]


def record_exists() -> Guard:
    def _guard(current: Optional[EventLockRecord]) -> bool:
        return current is not None

    return _guard


def status_is(expected: EventStatus) -> Guard:
    def _guard(current: Optional[EventLockRecord]) -> bool:
        return current is not None and current.status == expected

    return _guard


def takeover_allowed(read_status: EventStatus, lease_cutoff: datetime) -> Guard:
    """Stored status still matches what the caller read, and the row is either
    FAILED or holds a lease that started before ``lease_cutoff``."""

    def _guard(current: Optional[EventLockRecord]) -> bool:
        if current is None or current.status != read_status:
            return False
        if current.status == EventStatus.FAILED:
            return True
        return current.processing_started_at < lease_cutoff

    return _guard


def holds_lease(started_at: datetime) -> Guard:
    """Row is still PROCESSING under the lease that began at ``started_at``.

    A takeover rewrites processing_started_at, so a holder whose lease was
    taken over no longer matches.
    """

    def _guard(current: Optional[EventLockRecord]) -> bool:
        return (
            current is not None
            and current.status == EventStatus.PROCESSING
            and current.processing_started_at == started_at
        )

    return _guard
