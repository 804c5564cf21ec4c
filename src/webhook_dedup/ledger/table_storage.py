import json
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from azure.core import MatchConditions
from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.data.tables import TableClient, TableServiceClient, UpdateMode

from ..errors import StoreUnavailable
from .guards import Guard
from .interfaces import RecordStore
from .models import EventLockRecord, EventStatus


class TableStorageError(StoreUnavailable):
    pass


def _record_entity(record: EventLockRecord) -> Dict[str, Any]:
    return {
        "PartitionKey": record.event_id,
        "RowKey": record.event_id,
        "event_type": record.event_type,
        "status": record.status.value,
        "processing_started_at": record.processing_started_at,
        "processing_completed_at": record.processing_completed_at,
        "retry_count": record.retry_count,
        "result": json.dumps(record.result) if record.result is not None else None,
        "error": record.error,
        "ttl_expiry": record.ttl_expiry,
        "correlation_id": record.correlation_id,
        "source": record.source,
        "signature": record.signature,
    }


def _entity_etag(entity: Dict[str, Any]) -> Optional[str]:
    metadata = getattr(entity, "metadata", None) or {}
    return metadata.get("etag") or entity.get("odata.etag")


def _record_from_entity(entity: Dict[str, Any]) -> EventLockRecord:
    raw_result = entity.get("result")
    return EventLockRecord(
        event_id=entity["RowKey"],
        event_type=entity.get("event_type", ""),
        status=EventStatus(entity["status"]),
        processing_started_at=entity["processing_started_at"],
        processing_completed_at=entity.get("processing_completed_at"),
        retry_count=int(entity.get("retry_count", 0)),
        result=json.loads(raw_result) if raw_result is not None else None,
        error=entity.get("error"),
        ttl_expiry=entity["ttl_expiry"],
        correlation_id=entity.get("correlation_id"),
        source=entity.get("source", ""),
        signature=entity.get("signature"),
        etag=_entity_etag(entity),
    )


class TableRecordStore(RecordStore):
    """
    Azure Table Storage backend.

    Point reads on a single table are strongly consistent, and every write
    after a read carries that read's etag with If-Match, so a guard evaluated
    on the read holds at the moment the write lands or the write is refused.
    """

    def __init__(self, table_client: TableClient) -> None:
        self._table = table_client

    @classmethod
    def from_connection_string(cls, connection_string: str, table_name: str) -> "TableRecordStore":
        try:
            service = TableServiceClient.from_connection_string(connection_string)
            table = service.create_table_if_not_exists(table_name)
        except ValueError as exc:
            raise TableStorageError(f"invalid table connection string: {exc}") from exc
        except AzureError as exc:
            raise TableStorageError(f"unable to open table {table_name}: {exc}") from exc
        return cls(table)

    def create_if_absent(self, record: EventLockRecord) -> bool:
        try:
            self._table.create_entity(_record_entity(record))
        except ResourceExistsError:
            return False
        except AzureError as exc:
            raise StoreUnavailable(f"create failed for {record.event_id}: {exc}") from exc
        return True

    def conditional_replace(self, record: EventLockRecord, guard: Guard) -> bool:
        current = self._read(record.event_id)
        if record.etag is not None and (current is None or current.etag != record.etag):
            return False
        if not guard(current):
            return False
        if current is None:
            return self.create_if_absent(record)
        try:
            self._table.update_entity(
                _record_entity(record),
                mode=UpdateMode.REPLACE,
                etag=current.etag,
                match_condition=MatchConditions.IfNotModified,
            )
        except (ResourceModifiedError, ResourceNotFoundError):
            return False
        except HttpResponseError as exc:
            if exc.status_code == 412:
                return False
            raise StoreUnavailable(f"replace failed for {record.event_id}: {exc}") from exc
        except AzureError as exc:
            raise StoreUnavailable(f"replace failed for {record.event_id}: {exc}") from exc
        return True

    def get(self, event_id: str) -> Optional[EventLockRecord]:
        return self._read(event_id)

    def delete(self, event_id: str, etag: Optional[str] = None) -> bool:
        try:
            if etag is None:
                self._table.delete_entity(partition_key=event_id, row_key=event_id)
            else:
                self._table.delete_entity(
                    partition_key=event_id,
                    row_key=event_id,
                    etag=etag,
                    match_condition=MatchConditions.IfNotModified,
                )
        except (ResourceModifiedError, ResourceNotFoundError):
            return False
        except HttpResponseError as exc:
            if exc.status_code == 412:
                return False
            raise StoreUnavailable(f"delete failed for {event_id}: {exc}") from exc
        except AzureError as exc:
            raise StoreUnavailable(f"delete failed for {event_id}: {exc}") from exc
        return True

    def iter_records(
        self,
        expiring_before: Optional[datetime] = None,
        started_since: Optional[datetime] = None,
    ) -> Iterator[EventLockRecord]:
        clauses: List[str] = []
        parameters: Dict[str, Any] = {}
        if expiring_before is not None:
            clauses.append("ttl_expiry le @expiring_before")
            parameters["expiring_before"] = expiring_before
        if started_since is not None:
            clauses.append("processing_started_at ge @started_since")
            parameters["started_since"] = started_since
        try:
            if clauses:
                entities = self._table.query_entities(" and ".join(clauses), parameters=parameters)
            else:
                entities = self._table.list_entities()
            for entity in entities:
                yield _record_from_entity(entity)
        except AzureError as exc:
            raise StoreUnavailable(f"scan failed: {exc}") from exc

    def _read(self, event_id: str) -> Optional[EventLockRecord]:
        try:
            entity = self._table.get_entity(partition_key=event_id, row_key=event_id)
        except ResourceNotFoundError:
            return None
        except AzureError as exc:
            raise StoreUnavailable(f"read failed for {event_id}: {exc}") from exc
        return _record_from_entity(entity)
