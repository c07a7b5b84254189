"""Meta webhook routes - Instagram Direct and Messenger.

IMPORTANT: POST always answers 200. Meta retries aggressively on non-2xx
responses, and a retry of an event that failed for a non-transient reason
would fail again.
"""

import os
from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Request, Response

from inboxly.channels.meta_adapter import (
    SignatureVerificationError,
    verify_handshake,
    verify_signature,
)
from inboxly.domain.errors import MalformedPayload
from inboxly.domain.ingestion import ingest_payload
from inboxly.infra.store import MessageStore
from inboxly.observability.correlation import get_correlation_id
from inboxly.observability.logging import get_logger
from inboxly.observability.redaction import safe_log_context

from ..deps import get_account_lookup, get_store

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)


@router.get("/meta")
async def meta_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
) -> Response:
    """Subscription handshake: echo hub.challenge when the verify token matches.

    Returns:
        200 with hub.challenge if valid.
        403 if invalid.
    """
    expected_token = os.environ.get("META_VERIFY_TOKEN", "")
    challenge = verify_handshake(hub_mode, hub_verify_token, hub_challenge, expected_token)

    if challenge is not None:
        logger.info(
            "meta webhook verification successful",
            extra={"extra_fields": safe_log_context(hub_mode=hub_mode)},
        )
        return Response(status_code=200, content=challenge)

    logger.warning(
        "meta webhook verification failed",
        extra={
            "extra_fields": safe_log_context(
                hub_mode=hub_mode or "missing",
                token_configured=bool(expected_token),
            )
        },
    )
    return Response(status_code=403, content="verification failed")


@router.post("/meta")
async def meta_webhook(
    request: Request,
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
    store: MessageStore = Depends(get_store),
    account_lookup=Depends(get_account_lookup),
) -> Response:
    """Receive Instagram / Messenger events.

    Returns:
        200 "duplicate" when every message was already recorded, else 200 "ok".
    """
    correlation_id = get_correlation_id()

    body_bytes = await request.body()

    # Signature is enforced whenever META_APP_SECRET is configured
    app_secret = os.environ.get("META_APP_SECRET", "")
    if app_secret:
        try:
            verify_signature(body_bytes, x_hub_signature_256 or "", app_secret)
        except SignatureVerificationError as e:
            logger.warning(
                "meta signature verification failed",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
            )
            return Response(status_code=200, content="ok")

    try:
        payload: Any = await request.json()
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content="ok")

    try:
        summary = ingest_payload(store, "meta", payload, account_lookup)
    except MalformedPayload as e:
        logger.warning(
            "meta payload rejected",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        return Response(status_code=200, content="ok")
    except Exception:
        # Rolled back; still 200 so Meta does not retry
        logger.exception(
            "meta webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content="ok")

    logger.info(
        "meta webhook processed",
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
    if summary.all_duplicates:
        return Response(status_code=200, content="duplicate")
    return Response(status_code=200, content="ok")
