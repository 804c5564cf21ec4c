from webhook_dedup.config.settings import DedupSettings

from .interfaces import RecordStore
from .memory_store import MemoryRecordStore
from .table_storage import TableRecordStore


def build_store(settings: DedupSettings) -> RecordStore:
    if settings.storage_backend == "memory":
        return MemoryRecordStore()

    if settings.storage_backend != "table":
        raise RuntimeError(f"Unsupported storage backend: {settings.storage_backend}")

    if not settings.table_connection_string:
        raise RuntimeError("WEBHOOK_DEDUP_TABLE_CONNECTION is required for table storage")

    return TableRecordStore.from_connection_string(settings.table_connection_string, settings.table_name)
