from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from typing import Any, Callable, Optional

from webhook_dedup.config.settings import DedupSettings
from webhook_dedup.ledger.guards import holds_lease, record_exists, status_is, takeover_allowed
from webhook_dedup.ledger.interfaces import RecordStore
from webhook_dedup.ledger.models import EventLockRecord, EventStatus
from webhook_dedup.shared.logging import get_logger, log_event

logger = get_logger("webhook_dedup.coordinator")

Clock = Callable[[], datetime]

_MARK_FAILED_ATTEMPTS = 3


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DenialReason(str, Enum):
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    IN_FLIGHT = "IN_FLIGHT"
    RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"
    CONTENTION = "CONTENTION"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class LockResult:
    """
    Outcome of LockCoordinator.acquire().

    A denial is an expected result, never an error. Store outages are raised
    as StoreUnavailable instead of being folded into this type.
    """

    acquired: bool
    reason: Optional[DenialReason] = None
    existing_record: Optional[EventLockRecord] = None
    lease_started_at: Optional[datetime] = None

    @property
    def denied(self) -> bool:
        return not self.acquired

    @classmethod
    def granted(cls, lease_started_at: datetime) -> "LockResult":
        return cls(acquired=True, lease_started_at=lease_started_at)

    @classmethod
    def deny(cls, reason: DenialReason, existing: Optional[EventLockRecord]) -> "LockResult":
        return cls(acquired=False, reason=reason, existing_record=existing)


class LockCoordinator:
    """
    Per-event lock coordination over a shared RecordStore.

    Guarantees:
    - At most one invocation holds the lock for an event_id at a time
    - COMPLETED events are never handed out again
    - Abandoned PROCESSING locks are taken over once their lease expires
    - FAILED events are retried until max_retries failures are recorded

    Does NOT:
    - Block or poll while another invocation holds the lock
    - Renew leases
    - Retry store outages
    """

    def __init__(
        self,
        store: RecordStore,
        settings: Optional[DedupSettings] = None,
        clock: Clock = _now,
    ) -> None:
        self._store = store
        self._settings = settings or DedupSettings()
        self._clock = clock

    @property
    def settings(self) -> DedupSettings:
        return self._settings

    @property
    def lease(self) -> timedelta:
        return timedelta(milliseconds=self._settings.lease_duration_ms)

    def acquire(
        self,
        event_id: str,
        event_type: str,
        source: str,
        signature: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> LockResult:
        now = self._clock()
        existing = self._store.get(event_id)

        if existing is None:
            record = EventLockRecord(
                event_id=event_id,
                event_type=event_type,
                status=EventStatus.PROCESSING,
                processing_started_at=now,
                ttl_expiry=self._ttl_expiry(now),
                source=source,
                retry_count=0,
                correlation_id=correlation_id,
                signature=signature,
            )
            if self._store.create_if_absent(record):
                log_event(
                    logger,
                    "lock.acquired",
                    event_id=event_id,
                    event_type=event_type,
                    source=source,
                    correlation_id=correlation_id,
                    retry_count=0,
                )
                return LockResult.granted(now)

            # Lost the create race; judge the winner's row like any other.
            existing = self._store.get(event_id)
            if existing is None:
                return self._denied(DenialReason.CONTENTION, event_id, None, correlation_id)

        return self._acquire_existing(existing, now, event_type, source, signature, correlation_id)

    def mark_completed(
        self,
        event_id: str,
        result: Optional[Any] = None,
        lease_started_at: Optional[datetime] = None,
    ) -> bool:
        """Move the event to COMPLETED.

        Pass ``LockResult.lease_started_at`` to reject the call when the lease
        was taken over by another invocation in the meantime.
        """
        now = self._clock()
        guard = self._holder_guard(lease_started_at)
        current = self._store.get(event_id)
        if not guard(current):
            self._log_rejected("lock.complete_rejected", event_id, current)
            return False

        # updated keeps the read's etag, so a takeover after the read wins
        updated = replace(
            current,
            status=EventStatus.COMPLETED,
            processing_completed_at=now,
            result=result,
            error=None,
        )
        if not self._store.conditional_replace(updated, guard):
            self._log_rejected("lock.complete_rejected", event_id, self._store.get(event_id))
            return False

        log_event(
            logger,
            "lock.completed",
            event_id=event_id,
            correlation_id=current.correlation_id,
            duration_ms=_duration_ms(current.processing_started_at, now),
        )
        return True

    def mark_failed(
        self,
        event_id: str,
        error_message: str,
        lease_started_at: Optional[datetime] = None,
    ) -> bool:
        guard = record_exists() if lease_started_at is None else holds_lease(lease_started_at)
        for _ in range(_MARK_FAILED_ATTEMPTS):
            now = self._clock()
            current = self._store.get(event_id)
            if not guard(current):
                self._log_rejected("lock.fail_rejected", event_id, current)
                return False

            updated = replace(
                current,
                status=EventStatus.FAILED,
                processing_completed_at=now,
                retry_count=current.retry_count + 1,
                error=error_message,
                result=None,
            )
            # updated keeps the read's etag so the increment cannot be lost
            if self._store.conditional_replace(updated, guard):
                log_event(
                    logger,
                    "lock.failed",
                    level=logging.WARNING,
                    event_id=event_id,
                    correlation_id=current.correlation_id,
                    retry_count=updated.retry_count,
                    retries_exhausted=updated.retry_count >= self._settings.max_retries,
                    error=error_message,
                )
                return True

        self._log_rejected("lock.fail_rejected", event_id, self._store.get(event_id))
        return False

    def get_record(self, event_id: str) -> Optional[EventLockRecord]:
        return self._store.get(event_id)

    def is_processed(self, event_id: str) -> bool:
        record = self._store.get(event_id)
        return record is not None and record.status == EventStatus.COMPLETED

    # ---------- helpers ----------

    def _acquire_existing(
        self,
        existing: EventLockRecord,
        now: datetime,
        event_type: str,
        source: str,
        signature: Optional[str],
        correlation_id: Optional[str],
    ) -> LockResult:
        event_id = existing.event_id

        if existing.status == EventStatus.COMPLETED:
            return self._denied(DenialReason.ALREADY_COMPLETED, event_id, existing, correlation_id)

        if existing.status == EventStatus.SKIPPED:
            return self._denied(DenialReason.SKIPPED, event_id, existing, correlation_id)

        if existing.status == EventStatus.FAILED and existing.retry_count >= self._settings.max_retries:
            return self._denied(DenialReason.RETRIES_EXHAUSTED, event_id, existing, correlation_id)

        stale = False
        if existing.status == EventStatus.PROCESSING:
            if now - existing.processing_started_at <= self.lease:
                return self._denied(DenialReason.IN_FLIGHT, event_id, existing, correlation_id)
            stale = True
            log_event(
                logger,
                "lock.stale_takeover",
                level=logging.WARNING,
                event_id=event_id,
                correlation_id=correlation_id,
                held_ms=_duration_ms(existing.processing_started_at, now),
            )

        takeover = replace(
            existing,
            event_type=event_type,
            status=EventStatus.PROCESSING,
            processing_started_at=now,
            processing_completed_at=None,
            result=None,
            ttl_expiry=self._ttl_expiry(now),
            source=source,
            correlation_id=correlation_id,
            signature=signature,
        )
        # takeover keeps the read's etag: a FAILED row re-failed since the
        # read would otherwise pass the status check and lose its increment
        guard = takeover_allowed(existing.status, now - self.lease)
        if not self._store.conditional_replace(takeover, guard):
            return self._denied(DenialReason.CONTENTION, event_id, self._store.get(event_id), correlation_id)

        log_event(
            logger,
            "lock.acquired",
            event_id=event_id,
            event_type=event_type,
            source=source,
            correlation_id=correlation_id,
            retry_count=existing.retry_count,
            takeover="stale" if stale else "retry",
        )
        return LockResult.granted(now)

    def _denied(
        self,
        reason: DenialReason,
        event_id: str,
        existing: Optional[EventLockRecord],
        correlation_id: Optional[str],
    ) -> LockResult:
        log_event(
            logger,
            "lock.denied",
            event_id=event_id,
            reason=reason.value,
            status=existing.status.value if existing else None,
            retry_count=existing.retry_count if existing else None,
            correlation_id=correlation_id,
        )
        return LockResult.deny(reason, existing)

    @staticmethod
    def _holder_guard(lease_started_at: Optional[datetime]):
        if lease_started_at is None:
            return status_is(EventStatus.PROCESSING)
        return holds_lease(lease_started_at)

    def _ttl_expiry(self, now: datetime) -> datetime:
        return now + timedelta(days=self._settings.retention_days)

    @staticmethod
    def _log_rejected(message: str, event_id: str, current: Optional[EventLockRecord]) -> None:
        log_event(
            logger,
            message,
            event_id=event_id,
            status=current.status.value if current else None,
        )


def _duration_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)
