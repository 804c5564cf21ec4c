from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from webhook_dedup.ledger.interfaces import RecordStore
from webhook_dedup.ledger.models import EventStatus


@dataclass(frozen=True)
class ProcessingStatistics:
    total: int
    completed: int
    failed: int
    processing: int
    skipped: int
    average_processing_time_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def collect_statistics(
    store: RecordStore,
    window: timedelta = timedelta(days=1),
    now: Optional[datetime] = None,
) -> ProcessingStatistics:
    """Summarise records whose processing started inside ``window``.

    The average only covers records that reached COMPLETED or FAILED.
    """
    since = (now or datetime.now(timezone.utc)) - window
    counts = {status: 0 for status in EventStatus}
    durations: List[float] = []
    for record in store.iter_records(started_since=since):
        counts[record.status] += 1
        if record.processing_completed_at is not None:
            elapsed = record.processing_completed_at - record.processing_started_at
            durations.append(elapsed.total_seconds() * 1000)

    average = sum(durations) / len(durations) if durations else 0.0
    return ProcessingStatistics(
        total=sum(counts.values()),
        completed=counts[EventStatus.COMPLETED],
        failed=counts[EventStatus.FAILED],
        processing=counts[EventStatus.PROCESSING],
        skipped=counts[EventStatus.SKIPPED],
        average_processing_time_ms=round(average, 2),
    )
