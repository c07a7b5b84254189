"""Conversation endpoints: send a reply, send to a raw phone, mark read.

Callers authenticate with a Bearer JWT; conversations of other accounts are
reported as not found.
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, ConfigDict

from inboxly.api.auth import CallerContext, get_caller
from inboxly.domain.delivery import DeliveryResult, send, send_to_address
from inboxly.domain.errors import ConversationNotFound, DeliveryFailed, StorePersistenceFailure
from inboxly.domain.models import MessageType, OutboundContent
from inboxly.infra.store import MessageStore
from inboxly.observability.correlation import get_correlation_id
from inboxly.observability.logging import get_logger
from inboxly.observability.redaction import safe_log_context

from ..deps import get_store

router = APIRouter(tags=["conversations"])

logger = get_logger(__name__)


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["text", "audio", "image", "document", "video"] = "text"
    text: str = ""
    base64_data: str | None = None
    url: str | None = None
    filename: str | None = None
    is_automated_reply: bool = False


class SendToAddressRequest(SendMessageRequest):
    phone: str


def _to_content(body: SendMessageRequest) -> OutboundContent:
    try:
        return OutboundContent(
            type=MessageType(body.type),
            text=body.text,
            base64_data=body.base64_data,
            url=body.url,
            filename=body.filename,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _result_to_dict(result: DeliveryResult) -> dict[str, Any]:
    return {
        "conversation_id": result.conversation_id,
        "message_id": result.message.id if result.message else None,
        "transport": result.transport,
        "provider_message_id": result.provider_message_id,
        "recorded": result.recorded,
        "attempts": [
            {"transport": a.transport, "ok": a.ok, "provider_status": a.provider_status}
            for a in result.attempts
        ],
    }


def _delivery_failed(e: DeliveryFailed, conversation_id: str | None) -> HTTPException:
    logger.warning(
        "send failed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                conversation_id=conversation_id,
                attempts=len(e.attempts),
            )
        },
    )
    return HTTPException(status_code=500, detail=e.reason)


@router.post("/conversations/{conversation_id}/messages")
def send_message(
    body: SendMessageRequest,
    conversation_id: str = Path(..., description="Conversation ID"),
    caller: CallerContext = Depends(get_caller),
    store: MessageStore = Depends(get_store),
) -> dict[str, Any]:
    """Deliver a reply through the conversation's fallback chain.

    Returns:
        200 with the delivery result.
        404 unknown conversation, 400 invalid body, 500 delivery failed.
    """
    content = _to_content(body)
    try:
        result = send(
            store,
            conversation_id,
            content,
            is_automated_reply=body.is_automated_reply,
            account_id=caller.account_id,
        )
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except DeliveryFailed as e:
        raise _delivery_failed(e, conversation_id)
    except StorePersistenceFailure:
        logger.exception(
            "conversation lookup failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    conversation_id=conversation_id,
                )
            },
        )
        raise HTTPException(status_code=500, detail="Conversation could not be loaded")

    return _result_to_dict(result)


@router.post("/messages")
def send_message_to_address(
    body: SendToAddressRequest,
    caller: CallerContext = Depends(get_caller),
    store: MessageStore = Depends(get_store),
) -> dict[str, Any]:
    """Send to a raw phone address (WhatsApp), creating its conversation if needed."""
    content = _to_content(body)
    try:
        result = send_to_address(
            store,
            caller.account_id,
            body.phone,
            content,
            is_automated_reply=body.is_automated_reply,
        )
    except DeliveryFailed as e:
        raise _delivery_failed(e, None)
    except StorePersistenceFailure:
        logger.exception(
            "conversation for address not created",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        raise HTTPException(status_code=500, detail="Conversation could not be created")

    return _result_to_dict(result)


@router.post("/conversations/{conversation_id}/read")
def mark_conversation_read(
    conversation_id: str = Path(..., description="Conversation ID"),
    caller: CallerContext = Depends(get_caller),
    store: MessageStore = Depends(get_store),
) -> dict[str, Any]:
    """Reset the unread counter."""
    try:
        conversation = store.get_conversation(conversation_id)
        if conversation is None or conversation.account_id != caller.account_id:
            raise HTTPException(status_code=404, detail="Conversation not found")
        store.mark_read(conversation_id)
    except StorePersistenceFailure:
        logger.exception(
            "mark read failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    conversation_id=conversation_id,
                )
            },
        )
        raise HTTPException(status_code=500, detail="Conversation could not be updated")

    return {"conversation_id": conversation_id, "unread_count": 0}
