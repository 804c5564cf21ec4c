from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class EventStatus(str, Enum):
    """
    Lifecycle of an event lock record.

    State transitions:
        PROCESSING -> COMPLETED | FAILED
        FAILED -> PROCESSING (retry takeover, below max retries)
        PROCESSING -> PROCESSING (stale lease takeover)
    """

    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


@dataclass
class EventLockRecord:
    event_id: str
    event_type: str
    status: EventStatus
    processing_started_at: datetime
    ttl_expiry: datetime
    source: str
    retry_count: int = 0
    processing_completed_at: Optional[datetime] = None
    result: Optional[Any] = None
    error: Optional[str] = None
    correlation_id: Optional[str] = None
    signature: Optional[str] = None
    etag: Optional[str] = None
