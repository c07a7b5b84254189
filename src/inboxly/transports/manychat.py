"""ManyChat transport - sendContent and subscriber lookup.

Security: NEVER log subscriber ids or text. Only hashes and lengths.
"""

from __future__ import annotations

import os
import urllib.parse

from inboxly.domain.errors import TransportFailure
from inboxly.domain.models import Channel, MessageType, OutboundContent
from inboxly.observability.logging import get_logger
from inboxly.observability.redaction import hash_identifier

from .base import NOT_CONFIGURED, UNADDRESSABLE, TransportReceipt, do_request, sanitize_error

logger = get_logger(__name__)

NAME = "manychat"

DEFAULT_BASE_URL = "https://api.manychat.com"
DEFAULT_LOOKUP_FIELD = "ig_id"

_MEDIA_TYPES = {
    MessageType.IMAGE: "image",
    MessageType.VIDEO: "video",
    MessageType.AUDIO: "audio",
    MessageType.DOCUMENT: "file",
}


def _get_config() -> dict[str, str]:
    """Get ManyChat config from environment.

    Required env vars:
    - MANYCHAT_API_KEY: API token (Bearer)

    Optional:
    - MANYCHAT_BASE_URL: default https://api.manychat.com
    - MANYCHAT_LOOKUP_FIELD: system field matched against the native id (default ig_id)
    """
    api_key = os.environ.get("MANYCHAT_API_KEY", "")
    if not api_key:
        raise RuntimeError("Missing ManyChat config: MANYCHAT_API_KEY")

    return {
        "api_key": api_key,
        "base_url": os.environ.get("MANYCHAT_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        "lookup_field": os.environ.get("MANYCHAT_LOOKUP_FIELD", DEFAULT_LOOKUP_FIELD),
    }


def _config() -> dict[str, str]:
    try:
        return _get_config()
    except RuntimeError as exc:
        raise TransportFailure(NAME, str(exc), kind=NOT_CONFIGURED) from exc


def _headers(config: dict[str, str]) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {config['api_key']}",
        "Content-Type": "application/json",
    }


def _error_message(body: dict) -> str:
    details = body.get("details")
    if isinstance(details, dict):
        messages = details.get("messages")
        if isinstance(messages, list) and messages:
            first = messages[0]
            text = first.get("message") if isinstance(first, dict) else first
            if text:
                return sanitize_error(str(text))
    return sanitize_error(str(body.get("message") or "ManyChat error"))


def build_message(content: OutboundContent) -> dict[str, str]:
    """ManyChat v2 message block for the content."""
    if content.type == MessageType.TEXT:
        return {"type": "text", "text": content.text}
    if not content.url:
        raise TransportFailure(NAME, "media requires a public URL", kind=UNADDRESSABLE)
    return {"type": _MEDIA_TYPES[content.type], "url": content.url}


def send_content(*, subscriber_id: str, channel: Channel, content: OutboundContent) -> TransportReceipt:
    """Send a message to a subscriber via /fb/sending/sendContent.

    Raises:
        TransportFailure: Not configured, invalid subscriber id, HTTP error,
            timeout, or ``status == "error"`` in the response.
    """
    config = _config()
    if not str(subscriber_id).isdigit():
        raise TransportFailure(NAME, "invalid subscriber id", kind=UNADDRESSABLE)

    payload = {
        "subscriber_id": int(subscriber_id),
        "data": {
            "version": "v2",
            "content": {
                "type": "facebook" if channel == Channel.FACEBOOK else "instagram",
                "messages": [build_message(content)],
            },
        },
    }

    status, body = do_request(
        NAME,
        f"{config['base_url']}/fb/sending/sendContent",
        payload=payload,
        headers=_headers(config),
    )
    if body.get("status") == "error":
        raise TransportFailure(NAME, _error_message(body), provider_status=status)

    logger.info(
        "manychat message sent",
        extra={
            "extra_fields": {
                "subscriber_hash": hash_identifier(str(subscriber_id)),
                "type": content.type.value,
                "text_len": len(content.text),
            }
        },
    )
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    message_id = data.get("message_id") or data.get("mid")
    return TransportReceipt(NAME, str(message_id) if message_id else None, body.get("status") or status)


def find_subscriber(native_id: str) -> str | None:
    """Look up a subscriber id by the contact's channel-native id.

    Returns:
        The subscriber id, or None if ManyChat has no such subscriber.

    Raises:
        TransportFailure: Not configured, HTTP error or timeout.
    """
    config = _config()
    query = urllib.parse.urlencode({config["lookup_field"]: native_id})
    _, body = do_request(
        NAME,
        f"{config['base_url']}/fb/subscriber/findBySystemField?{query}",
        method="GET",
        headers=_headers(config),
    )
    if body.get("status") == "error":
        return None

    data = body.get("data")
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict) and data.get("id"):
        return str(data["id"])
    return None
