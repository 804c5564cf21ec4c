from dataclasses import replace
from datetime import datetime, timedelta, timezone

from webhook_dedup.ledger.guards import record_exists, status_is
from webhook_dedup.ledger.memory_store import MemoryRecordStore
from webhook_dedup.ledger.models import EventLockRecord, EventStatus

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _record(event_id: str = "evt_1", status: EventStatus = EventStatus.PROCESSING, ttl_days: int = 30) -> EventLockRecord:
    return EventLockRecord(
        event_id=event_id,
        event_type="charge.succeeded",
        status=status,
        processing_started_at=NOW,
        ttl_expiry=NOW + timedelta(days=ttl_days),
        source="stripe",
    )


def test_create_if_absent_is_unique_per_event_id():
    store = MemoryRecordStore()
    assert store.create_if_absent(_record()) is True
    assert store.create_if_absent(_record()) is False
    assert store.get("evt_1").etag == "1"


def test_conditional_replace_respects_guard():
    store = MemoryRecordStore()
    store.create_if_absent(_record())

    completed = replace(_record(), status=EventStatus.COMPLETED)
    assert store.conditional_replace(completed, status_is(EventStatus.FAILED)) is False
    assert store.get("evt_1").status == EventStatus.PROCESSING

    assert store.conditional_replace(completed, status_is(EventStatus.PROCESSING)) is True
    stored = store.get("evt_1")
    assert stored.status == EventStatus.COMPLETED
    assert stored.etag == "2"


def test_conditional_replace_rejects_stale_etag():
    store = MemoryRecordStore()
    store.create_if_absent(_record())
    read = store.get("evt_1")

    store.conditional_replace(replace(read, retry_count=1, etag=None), record_exists())
    assert store.conditional_replace(replace(read, retry_count=5), record_exists()) is False
    assert store.get("evt_1").retry_count == 1


def test_conditional_replace_missing_row_fails_exists_guard():
    store = MemoryRecordStore()
    assert store.conditional_replace(_record(), record_exists()) is False
    assert store.get("evt_1") is None


def test_get_returns_copy():
    store = MemoryRecordStore()
    store.create_if_absent(_record())
    snapshot = store.get("evt_1")
    snapshot.status = EventStatus.FAILED
    assert store.get("evt_1").status == EventStatus.PROCESSING


def test_iter_records_filters_and_delete():
    store = MemoryRecordStore()
    store.create_if_absent(_record("old", ttl_days=1))
    store.create_if_absent(_record("new", ttl_days=60))

    expiring = [record.event_id for record in store.iter_records(expiring_before=NOW + timedelta(days=2))]
    assert expiring == ["old"]

    store.delete("old")
    store.delete("missing")
    assert store.get("old") is None
    assert [record.event_id for record in store.iter_records()] == ["new"]


def test_delete_with_stale_etag_is_rejected():
    store = MemoryRecordStore()
    store.create_if_absent(_record())
    scanned = store.get("evt_1")
    store.conditional_replace(replace(scanned, status=EventStatus.FAILED), record_exists())

    assert store.delete("evt_1", etag=scanned.etag) is False
    assert store.get("evt_1").status == EventStatus.FAILED
    assert store.delete("evt_1", etag=store.get("evt_1").etag) is True
    assert store.delete("evt_1") is False
