from datetime import datetime, timedelta, timezone

from webhook_dedup.config.settings import DedupSettings
from webhook_dedup.coordinator.lock import LockCoordinator
from webhook_dedup.coordinator.sweeper import RetentionSweeper
from webhook_dedup.ledger.memory_store import MemoryRecordStore
from webhook_dedup.ledger.models import EventLockRecord, EventStatus

NOW = datetime(2024, 6, 1, 0, 0, tzinfo=timezone.utc)


def _record(event_id: str, status: EventStatus, started_ago: timedelta, ttl_from_now: timedelta) -> EventLockRecord:
    return EventLockRecord(
        event_id=event_id,
        event_type="payout.paid",
        status=status,
        processing_started_at=NOW - started_ago,
        ttl_expiry=NOW + ttl_from_now,
        source="stripe",
    )


def _sweeper(store: MemoryRecordStore) -> RetentionSweeper:
    return RetentionSweeper(store, DedupSettings(lease_duration_ms=30000), clock=lambda: NOW)


def test_sweep_deletes_expired_records_only():
    store = MemoryRecordStore()
    store.create_if_absent(_record("expired", EventStatus.COMPLETED, timedelta(days=31), timedelta(days=-1)))
    store.create_if_absent(_record("fresh", EventStatus.COMPLETED, timedelta(days=1), timedelta(days=29)))
    store.create_if_absent(_record("failed_old", EventStatus.FAILED, timedelta(days=40), timedelta(days=-10)))

    deleted = _sweeper(store).sweep(NOW)

    assert deleted == 2
    assert store.get("expired") is None
    assert store.get("failed_old") is None
    assert store.get("fresh") is not None


def test_sweep_never_deletes_live_lease():
    store = MemoryRecordStore()
    # ttl already behind the cutoff, but the lease started 5 seconds ago
    store.create_if_absent(_record("live", EventStatus.PROCESSING, timedelta(seconds=5), timedelta(days=-1)))
    store.create_if_absent(_record("abandoned", EventStatus.PROCESSING, timedelta(days=31), timedelta(days=-1)))

    deleted = _sweeper(store).sweep(NOW)

    assert deleted == 1
    assert store.get("live") is not None
    assert store.get("abandoned") is None


def test_sweep_respects_explicit_cutoff():
    store = MemoryRecordStore()
    store.create_if_absent(_record("soon", EventStatus.COMPLETED, timedelta(days=25), timedelta(days=5)))

    sweeper = _sweeper(store)
    assert sweeper.sweep(NOW) == 0
    assert sweeper.sweep(NOW + timedelta(days=6)) == 1


def test_sweep_expired_uses_clock():
    store = MemoryRecordStore()
    store.create_if_absent(_record("expired", EventStatus.COMPLETED, timedelta(days=31), timedelta(seconds=-1)))
    assert _sweeper(store).sweep_expired() == 1


def test_sweep_keeps_row_taken_over_after_scan():
    store = MemoryRecordStore()
    store.create_if_absent(_record("retried", EventStatus.FAILED, timedelta(days=31), timedelta(days=-1)))
    coordinator = LockCoordinator(store, DedupSettings(lease_duration_ms=30000), clock=lambda: NOW)
    original_iter = store.iter_records

    def racing_iter(**filters):
        scanned = list(original_iter(**filters))
        # a redelivery retries the event before the sweeper deletes it
        assert coordinator.acquire("retried", "payout.paid", "stripe").acquired
        return iter(scanned)

    store.iter_records = racing_iter
    deleted = _sweeper(store).sweep(NOW)

    assert deleted == 0
    record = store.get("retried")
    assert record.status == EventStatus.PROCESSING
    assert record.ttl_expiry == NOW + timedelta(days=30)
