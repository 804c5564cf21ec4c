from datetime import timedelta
import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from webhook_dedup.config.settings import DedupSettings
from webhook_dedup.coordinator.lock import LockCoordinator
from webhook_dedup.coordinator.stats import collect_statistics
from webhook_dedup.errors import SignatureInvalid, StoreUnavailable
from webhook_dedup.ledger.interfaces import RecordStore
from webhook_dedup.ledger.models import EventLockRecord, EventStatus
from webhook_dedup.ledger.stores import build_store
from webhook_dedup.shared.logging import get_logger, log_event
from webhook_dedup.validation.signature import require_valid_signature

EventHandler = Callable[[Dict[str, Any]], Any]


def _record_payload(record: EventLockRecord) -> Dict[str, Any]:
    return {
        "eventId": record.event_id,
        "eventType": record.event_type,
        "status": record.status.value,
        "retryCount": record.retry_count,
        "processingStartedAt": record.processing_started_at.isoformat(),
        "processingCompletedAt": (
            record.processing_completed_at.isoformat() if record.processing_completed_at else None
        ),
        "result": record.result,
        "error": record.error,
        "source": record.source,
        "correlationId": record.correlation_id,
    }


def _result_snapshot(result: Any) -> Tuple[Any, bool]:
    # business work already ran, so an unstorable result completes with a marker
    try:
        json.dumps(result)
    except (TypeError, ValueError):
        return {"unserializable": True, "type": type(result).__name__}, False
    return result, True


def _parse_event(body: bytes) -> Dict[str, Any]:
    try:
        event = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail="invalid event body") from exc
    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise HTTPException(status_code=400, detail="event id and type are required")
    return event


def create_app(
    handlers: Optional[Dict[str, EventHandler]] = None,
    settings: Optional[DedupSettings] = None,
    store: Optional[RecordStore] = None,
) -> FastAPI:
    app = FastAPI(title="Webhook Dedup")
    logger = get_logger("webhook_dedup.api")

    settings = settings or DedupSettings.from_env()
    store = store if store is not None else build_store(settings)
    coordinator = LockCoordinator(store, settings)
    event_handlers = dict(handlers or {})
    app.state.settings = settings
    app.state.store = store
    app.state.coordinator = coordinator
    app.state.handlers = event_handlers

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable(_request: Request, exc: StoreUnavailable):
        log_event(logger, "store.unavailable", level=logging.ERROR, error=str(exc))
        return JSONResponse(status_code=503, content={"detail": "lock store unavailable"})

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/v1/webhooks/{source}")
    async def receive_webhook(
        source: str,
        request: Request,
        stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
        x_correlation_id: Optional[str] = Header(None, alias="X-Correlation-Id"),
    ):
        correlation_id = x_correlation_id or str(uuid4())
        body = await request.body()

        try:
            require_valid_signature(
                body,
                stripe_signature,
                settings.webhook_secrets,
                settings.signature_tolerance_seconds,
            )
        except SignatureInvalid as exc:
            log_event(logger, "signature.rejected", source=source, correlation_id=correlation_id, reason=str(exc))
            raise HTTPException(status_code=400, detail="invalid signature") from exc

        event = _parse_event(body)
        event_id = str(event["id"])
        event_type = str(event["type"])

        lock = coordinator.acquire(
            event_id,
            event_type,
            source,
            signature=stripe_signature,
            correlation_id=correlation_id,
        )
        if lock.denied:
            existing = lock.existing_record
            content: Dict[str, Any] = {
                "received": True,
                "deduplicated": True,
                "eventId": event_id,
                "reason": lock.reason.value if lock.reason else None,
                "status": existing.status.value if existing else None,
            }
            if existing is not None and existing.status == EventStatus.COMPLETED:
                content["result"] = existing.result
            return JSONResponse(status_code=200, content=content)

        handler = event_handlers.get(event_type)
        try:
            if handler is None:
                log_event(logger, "webhook.unhandled", event_id=event_id, event_type=event_type)
                result = {"unhandled": True, "type": event_type}
            else:
                result = handler(event)
        except Exception as exc:
            coordinator.mark_failed(
                event_id,
                str(exc) or exc.__class__.__name__,
                lease_started_at=lock.lease_started_at,
            )
            log_event(
                logger,
                "webhook.handler_failed",
                level=logging.ERROR,
                event_id=event_id,
                event_type=event_type,
                correlation_id=correlation_id,
                error=str(exc),
            )
            return JSONResponse(
                status_code=500,
                content={"received": True, "eventId": event_id, "error": "event processing failed"},
            )

        result, serializable = _result_snapshot(result)
        if not serializable:
            log_event(
                logger,
                "webhook.result_unserializable",
                level=logging.WARNING,
                event_id=event_id,
                event_type=event_type,
                correlation_id=correlation_id,
            )

        completed = coordinator.mark_completed(event_id, result, lease_started_at=lock.lease_started_at)
        if not completed:
            log_event(
                logger,
                "webhook.lock_lost",
                level=logging.WARNING,
                event_id=event_id,
                event_type=event_type,
                correlation_id=correlation_id,
            )
        return JSONResponse(
            status_code=200,
            content={
                "received": True,
                "deduplicated": False,
                "completed": completed,
                "lockLost": not completed,
                "eventId": event_id,
                "eventType": event_type,
                "result": result,
            },
        )

    @app.get("/v1/webhooks/events/{event_id}")
    async def get_event(event_id: str):
        record = coordinator.get_record(event_id)
        if record is None:
            raise HTTPException(status_code=404, detail="event not found")
        return _record_payload(record)

    @app.get("/v1/webhooks/stats")
    async def get_stats(window_seconds: int = 86400):
        if window_seconds <= 0:
            raise HTTPException(status_code=400, detail="window_seconds must be positive")
        stats = collect_statistics(store, timedelta(seconds=window_seconds))
        return stats.to_dict()

    return app
