from dataclasses import replace
from datetime import datetime
import threading
from typing import Dict, Iterator, List, Optional

from .guards import Guard
from .interfaces import RecordStore
from .models import EventLockRecord


class MemoryRecordStore(RecordStore):
    """
    In-process record store for tests and local runs.

    A single lock serialises every mutation so guards and writes are atomic
    across threads, the same contract the table backend gets from etags.
    """

    def __init__(self) -> None:
        self._records: Dict[str, EventLockRecord] = {}
        self._lock = threading.Lock()

    def create_if_absent(self, record: EventLockRecord) -> bool:
        with self._lock:
            if record.event_id in self._records:
                return False
            self._records[record.event_id] = replace(record, etag="1")
            return True

    def conditional_replace(self, record: EventLockRecord, guard: Guard) -> bool:
        with self._lock:
            current = self._records.get(record.event_id)
            if record.etag is not None and (current is None or current.etag != record.etag):
                return False
            if not guard(self._snapshot(current)):
                return False
            next_etag = str(int(current.etag or "0") + 1) if current else "1"
            self._records[record.event_id] = replace(record, etag=next_etag)
            return True

    def get(self, event_id: str) -> Optional[EventLockRecord]:
        with self._lock:
            return self._snapshot(self._records.get(event_id))

    def delete(self, event_id: str, etag: Optional[str] = None) -> bool:
        with self._lock:
            current = self._records.get(event_id)
            if current is None:
                return False
            if etag is not None and current.etag != etag:
                return False
            del self._records[event_id]
            return True

    def iter_records(
        self,
        expiring_before: Optional[datetime] = None,
        started_since: Optional[datetime] = None,
    ) -> Iterator[EventLockRecord]:
        with self._lock:
            records: List[EventLockRecord] = [replace(record) for record in self._records.values()]
        for record in records:
            if expiring_before is not None and record.ttl_expiry > expiring_before:
                continue
            if started_since is not None and record.processing_started_at < started_since:
                continue
            yield record

    @staticmethod
    def _snapshot(record: Optional[EventLockRecord]) -> Optional[EventLockRecord]:
        return replace(record) if record is not None else None
