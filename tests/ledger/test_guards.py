from datetime import datetime, timedelta, timezone

from webhook_dedup.ledger.guards import holds_lease, record_exists, status_is, takeover_allowed
from webhook_dedup.ledger.models import EventLockRecord, EventStatus

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _record(status: EventStatus, started_ago_seconds: int = 0) -> EventLockRecord:
    started = NOW - timedelta(seconds=started_ago_seconds)
    return EventLockRecord(
        event_id="evt_1",
        event_type="payment_intent.succeeded",
        status=status,
        processing_started_at=started,
        ttl_expiry=started + timedelta(days=30),
        source="stripe",
    )


def test_record_exists():
    guard = record_exists()
    assert guard(_record(EventStatus.FAILED)) is True
    assert guard(None) is False


def test_status_is_matches_only_expected_status():
    guard = status_is(EventStatus.PROCESSING)
    assert guard(_record(EventStatus.PROCESSING)) is True
    assert guard(_record(EventStatus.COMPLETED)) is False
    assert guard(None) is False


def test_takeover_allows_failed_record_regardless_of_age():
    guard = takeover_allowed(EventStatus.FAILED, NOW - timedelta(seconds=30))
    assert guard(_record(EventStatus.FAILED, started_ago_seconds=1)) is True


def test_takeover_requires_expired_lease_for_processing():
    cutoff = NOW - timedelta(seconds=30)
    guard = takeover_allowed(EventStatus.PROCESSING, cutoff)
    assert guard(_record(EventStatus.PROCESSING, started_ago_seconds=31)) is True
    assert guard(_record(EventStatus.PROCESSING, started_ago_seconds=30)) is False
    assert guard(_record(EventStatus.PROCESSING, started_ago_seconds=5)) is False


def test_takeover_rejects_when_status_changed_since_read():
    guard = takeover_allowed(EventStatus.FAILED, NOW)
    assert guard(_record(EventStatus.PROCESSING, started_ago_seconds=120)) is False
    assert guard(_record(EventStatus.COMPLETED)) is False
    assert guard(None) is False


def test_holds_lease_requires_same_lease_start():
    mine = _record(EventStatus.PROCESSING, started_ago_seconds=45)
    guard = holds_lease(mine.processing_started_at)
    assert guard(mine) is True
    assert guard(_record(EventStatus.PROCESSING)) is False
    assert guard(_record(EventStatus.FAILED, started_ago_seconds=45)) is False
    assert guard(None) is False
