from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from webhook_dedup.config.settings import DedupSettings
from webhook_dedup.ledger.interfaces import RecordStore
from webhook_dedup.ledger.models import EventLockRecord, EventStatus
from webhook_dedup.shared.logging import get_logger, log_event

logger = get_logger("webhook_dedup.sweeper")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RetentionSweeper:
    """Deletes records whose retention horizon has passed.

    Runs out-of-band from request handling. A PROCESSING record with a live
    lease is never deleted, whatever its ttl_expiry says.
    """

    def __init__(
        self,
        store: RecordStore,
        settings: Optional[DedupSettings] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._store = store
        self._settings = settings or DedupSettings()
        self._lease = timedelta(milliseconds=self._settings.lease_duration_ms)
        self._clock = clock

    def sweep(self, retention_cutoff: datetime) -> int:
        now = self._clock()
        deleted = 0
        skipped = 0
        for record in self._store.iter_records(expiring_before=retention_cutoff):
            if record.ttl_expiry > retention_cutoff:
                continue
            if self._lease_alive(record, now):
                skipped += 1
                continue
            # the row may have been taken over since the scan
            if self._store.delete(record.event_id, etag=record.etag):
                deleted += 1
            else:
                skipped += 1
        log_event(
            logger,
            "sweep.completed",
            retention_cutoff=retention_cutoff.isoformat(),
            deleted=deleted,
            skipped=skipped,
        )
        return deleted

    def sweep_expired(self) -> int:
        return self.sweep(self._clock())

    def _lease_alive(self, record: EventLockRecord, now: datetime) -> bool:
        return record.status == EventStatus.PROCESSING and now - record.processing_started_at <= self._lease
