"""Meta Graph Send API transport (Instagram Direct and Messenger).

Security: NEVER log recipient ids, tokens or text. Only hashes and lengths.
"""

from __future__ import annotations

import os
from typing import Any

from inboxly.domain.errors import TransportFailure
from inboxly.domain.models import MessageType, OutboundContent
from inboxly.observability.logging import get_logger
from inboxly.observability.redaction import hash_identifier

from .base import NOT_CONFIGURED, UNADDRESSABLE, TransportReceipt, do_request

logger = get_logger(__name__)

NAME = "meta_graph"

DEFAULT_API_VERSION = "v18.0"
GRAPH_BASE_URL = "https://graph.facebook.com"

_ATTACHMENT_TYPES = {
    MessageType.IMAGE: "image",
    MessageType.VIDEO: "video",
    MessageType.AUDIO: "audio",
    MessageType.DOCUMENT: "file",
}


def _api_version() -> str:
    return os.environ.get("META_GRAPH_API_VERSION", DEFAULT_API_VERSION)


def build_message(content: OutboundContent) -> dict[str, Any]:
    if content.type == MessageType.TEXT:
        return {"text": content.text}
    if not content.url:
        raise TransportFailure(NAME, "media requires a public URL", kind=UNADDRESSABLE)
    return {
        "attachment": {
            "type": _ATTACHMENT_TYPES[content.type],
            "payload": {"url": content.url, "is_reusable": True},
        }
    }


def send_message(
    *,
    recipient_id: str,
    page_access_token: str | None,
    content: OutboundContent,
) -> TransportReceipt:
    """Send a message via POST /{version}/me/messages.

    Raises:
        TransportFailure: Missing token or recipient, HTTP error, timeout,
            or an ``error`` object in the response.
    """
    if not page_access_token:
        raise TransportFailure(NAME, "page access token not configured", kind=NOT_CONFIGURED)
    if not recipient_id:
        raise TransportFailure(NAME, "recipient has no channel id", kind=UNADDRESSABLE)

    payload = {
        "recipient": {"id": recipient_id},
        "message": build_message(content),
        "messaging_type": "RESPONSE",
    }
    status, body = do_request(
        NAME,
        f"{GRAPH_BASE_URL}/{_api_version()}/me/messages",
        payload=payload,
        headers={
            "Authorization": f"Bearer {page_access_token}",
            "Content-Type": "application/json",
        },
    )
    error = body.get("error")
    if error:
        detail = error.get("message") if isinstance(error, dict) else str(error)
        raise TransportFailure(NAME, detail or "Meta API error", provider_status=status)

    logger.info(
        "meta graph message sent",
        extra={
            "extra_fields": {
                "recipient_hash": hash_identifier(recipient_id),
                "type": content.type.value,
                "text_len": len(content.text),
            }
        },
    )
    message_id = body.get("message_id")
    return TransportReceipt(NAME, str(message_id) if message_id else None, status)
