"""Z-API webhook route - WhatsApp gateway events."""

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


@router.post("/zapi")
async def zapi_webhook(
    request: Request,
    store: MessageStore = Depends(get_store),
    account_lookup=Depends(get_account_lookup),
) -> dict[str, Any]:
    """Receive a Z-API event (message or status callback).

    Returns:
        200 {"status": "processed" | "duplicate" | "ignored", ...}.
        400 on malformed payload.
    """
    correlation_id = get_correlation_id()

    try:
        payload: Any = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid json")

    try:
        summary = ingest_payload(store, "zapi", payload, account_lookup)
    except MalformedPayload as e:
        logger.warning(
            "zapi payload rejected",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        raise HTTPException(status_code=400, detail=str(e))
    except StorePersistenceFailure:
        logger.exception(
            "zapi event not persisted",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=500, detail="storage unavailable")

    logger.info(
        "zapi webhook processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                ingested=len(summary.ingested),
                duplicates=summary.duplicates,
                unowned=summary.unowned,
                status_updates=summary.status_updates,
            )
        },
    )

    if summary.ingested:
        return {
            "status": "processed",
            "conversation_id": summary.ingested[0].conversation.id,
            "message_id": summary.ingested[0].message.id,
        }
    if summary.duplicates:
        return {"status": "duplicate"}
    if summary.status_updates:
        return {"status": "processed", "status_updates": summary.status_updates}
    return {"status": "ignored"}
