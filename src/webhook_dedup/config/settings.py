from dataclasses import dataclass
import os
from typing import Optional, Tuple


def _secrets_from_env(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class DedupSettings:
    lease_duration_ms: int = 30000
    max_retries: int = 3
    retention_days: int = 30
    signature_tolerance_seconds: int = 300
    storage_backend: str = "memory"
    table_connection_string: Optional[str] = None
    table_name: str = "ProcessedWebhooks"
    webhook_secrets: Tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> "DedupSettings":
        settings = cls(
            lease_duration_ms=int(os.getenv("WEBHOOK_DEDUP_LEASE_MS", "30000")),
            max_retries=int(os.getenv("WEBHOOK_DEDUP_MAX_RETRIES", "3")),
            retention_days=int(os.getenv("WEBHOOK_DEDUP_RETENTION_DAYS", "30")),
            signature_tolerance_seconds=int(os.getenv("WEBHOOK_DEDUP_SIGNATURE_TOLERANCE", "300")),
            storage_backend=os.getenv("WEBHOOK_DEDUP_STORAGE_BACKEND", "memory"),
            table_connection_string=os.getenv("WEBHOOK_DEDUP_TABLE_CONNECTION"),
            table_name=os.getenv("WEBHOOK_DEDUP_TABLE", "ProcessedWebhooks"),
            webhook_secrets=_secrets_from_env(os.getenv("WEBHOOK_DEDUP_SECRETS")),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.lease_duration_ms <= 0:
            raise ValueError("lease_duration_ms must be positive")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.retention_days < 1:
            raise ValueError("retention_days must be at least 1")
        # The sweeper must never race a live lease.
        if self.retention_days * 86_400_000 <= self.lease_duration_ms:
            raise ValueError("retention horizon must be larger than the lease duration")
        if self.signature_tolerance_seconds <= 0:
            raise ValueError("signature_tolerance_seconds must be positive")
