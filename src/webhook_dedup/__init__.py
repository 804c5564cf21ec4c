"""
Webhook event deduplication and distributed-lock coordination.

Public API surface for the webhook_dedup package.
"""

from .config.settings import DedupSettings
from .coordinator.lock import DenialReason, LockCoordinator, LockResult
from .coordinator.sweeper import RetentionSweeper
from .errors import DedupError, SignatureInvalid, StoreUnavailable
from .ledger.models import EventLockRecord, EventStatus
from .validation.signature import verify_signature

__all__ = [
    "DedupSettings",
    "DedupError",
    "DenialReason",
    "EventLockRecord",
    "EventStatus",
    "LockCoordinator",
    "LockResult",
    "RetentionSweeper",
    "SignatureInvalid",
    "StoreUnavailable",
    "verify_signature",
]

__version__ = "0.1.0"
