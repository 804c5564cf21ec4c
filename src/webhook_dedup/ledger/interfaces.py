from datetime import datetime
from typing import Iterator, Optional, Protocol

from .guards import Guard
from .models import EventLockRecord


class RecordStore(Protocol):
    """
    Persistence boundary for event lock records.

    Guarantees:
    - create_if_absent is atomic per event_id
    - conditional_replace evaluates its guard against the persisted row and
      writes in one atomic step
    - reads are strongly consistent
    - a record passed to conditional_replace that carries an etag is only
      written if the persisted row still has that etag

    Predicate failures are reported as False, never raised. Infrastructure
    failures raise StoreUnavailable. No retries happen here.
    """

    def create_if_absent(self, record: EventLockRecord) -> bool:
        ...

    def conditional_replace(self, record: EventLockRecord, guard: Guard) -> bool:
        ...

    def get(self, event_id: str) -> Optional[EventLockRecord]:
        ...

    def delete(self, event_id: str, etag: Optional[str] = None) -> bool:
        """Remove the row. With an etag, only if the row is unchanged since it was read."""
        ...

    def iter_records(
        self,
        expiring_before: Optional[datetime] = None,
        started_since: Optional[datetime] = None,
    ) -> Iterator[EventLockRecord]:
        ...
