"""ManyChat webhook route - External Request payloads from flows."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from inboxly.domain.errors import MalformedPayload, StorePersistenceFailure
from inboxly.domain.ingestion import ingest_payload
from inboxly.infra.store import MessageStore
from inboxly.observability.correlation import get_correlation_id
from inboxly.observability.logging import get_logger
from inboxly.observability.redaction import safe_log_context

from ..deps import get_account_lookup, get_store

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)


@router.post("/manychat")
async def manychat_webhook(
    request: Request,
    store: MessageStore = Depends(get_store),
    account_lookup=Depends(get_account_lookup),
) -> dict[str, Any]:
    """Receive a message forwarded by a ManyChat flow.

    Returns:
        200 {"success": true, "status": ...}.
        400 on malformed payload (e.g. missing subscriber_id).
    """
    correlation_id = get_correlation_id()

    try:
        payload: Any = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid json")

    try:
        summary = ingest_payload(store, "manychat", payload, account_lookup)
    except MalformedPayload as e:
        logger.warning(
            "manychat payload rejected",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        raise HTTPException(status_code=400, detail=str(e))
    except StorePersistenceFailure:
        logger.exception(
            "manychat event not persisted",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=500, detail="storage unavailable")

    if summary.ingested:
        result = summary.ingested[0]
        return {
            "success": True,
            "status": "processed",
            "conversation_id": result.conversation.id,
            "matched_by": result.matched_by,
        }
    if summary.duplicates:
        return {"success": True, "status": "duplicate"}
    return {"success": True, "status": "ignored"}
