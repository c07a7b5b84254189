"""Z-API transport - WhatsApp send endpoints.

Security: NEVER log phone numbers or text. Only hashes and lengths.
"""

from __future__ import annotations

import os
from typing import Any

from inboxly.domain.errors import TransportFailure
from inboxly.domain.models import MessageType, OutboundContent
from inboxly.domain.phone import normalize_phone
from inboxly.observability.logging import get_logger
from inboxly.observability.redaction import hash_identifier

from .base import NOT_CONFIGURED, UNADDRESSABLE, TransportReceipt, do_request

logger = get_logger(__name__)

NAME = "zapi"

DEFAULT_BASE_URL = "https://api.z-api.io"

_MEDIA_MIME = {
    MessageType.AUDIO: "audio/mpeg",
    MessageType.IMAGE: "image/jpeg",
    MessageType.VIDEO: "video/mp4",
    MessageType.DOCUMENT: "application/pdf",
}


def _get_config() -> dict[str, str]:
    """Get Z-API config from environment.

    Required env vars:
    - ZAPI_INSTANCE_ID: Instance id
    - ZAPI_TOKEN: Instance token

    Optional:
    - ZAPI_CLIENT_TOKEN: Account security token (Client-Token header)
    - ZAPI_BASE_URL: default https://api.z-api.io
    """
    instance_id = os.environ.get("ZAPI_INSTANCE_ID", "")
    token = os.environ.get("ZAPI_TOKEN", "")
    if not instance_id or not token:
        raise RuntimeError("Missing Z-API config: ZAPI_INSTANCE_ID, ZAPI_TOKEN")

    return {
        "instance_id": instance_id,
        "token": token,
        "client_token": os.environ.get("ZAPI_CLIENT_TOKEN", ""),
        "base_url": os.environ.get("ZAPI_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
    }


def _media_ref(content: OutboundContent) -> str:
    """URL or data URI for a media payload."""
    if content.url:
        return content.url
    return f"data:{_MEDIA_MIME[content.type]};base64,{content.base64_data}"


def _extension(filename: str | None) -> str:
    if filename and "." in filename:
        return filename.rsplit(".", 1)[1].lower()
    return "pdf"


def build_request(phone: str, content: OutboundContent) -> tuple[str, dict[str, Any]]:
    """Return (endpoint path, JSON body) for the content type."""
    if content.type == MessageType.TEXT:
        return "send-text", {"phone": phone, "message": content.text}
    if content.type == MessageType.AUDIO:
        return "send-audio", {"phone": phone, "audio": _media_ref(content)}
    if content.type == MessageType.IMAGE:
        return "send-image", {"phone": phone, "image": _media_ref(content), "caption": content.text}
    if content.type == MessageType.VIDEO:
        return "send-video", {"phone": phone, "video": _media_ref(content), "caption": content.text}
    body = {"phone": phone, "document": _media_ref(content)}
    if content.filename:
        body["fileName"] = content.filename
    return f"send-document/{_extension(content.filename)}", body


def send_message(*, phone: str, content: OutboundContent) -> TransportReceipt:
    """Send a message to a WhatsApp phone address.

    The phone is normalized to digits with the country code before sending.

    Raises:
        TransportFailure: Not configured, empty phone, HTTP error, timeout,
            or an ``error`` field in the response.
    """
    try:
        config = _get_config()
    except RuntimeError as exc:
        raise TransportFailure(NAME, str(exc), kind=NOT_CONFIGURED) from exc

    normalized = normalize_phone(phone)
    if not normalized:
        raise TransportFailure(NAME, "recipient has no phone number", kind=UNADDRESSABLE)

    path, payload = build_request(normalized, content)
    headers = {"Content-Type": "application/json"}
    if config["client_token"]:
        headers["Client-Token"] = config["client_token"]

    status, body = do_request(
        NAME,
        f"{config['base_url']}/instances/{config['instance_id']}/token/{config['token']}/{path}",
        payload=payload,
        headers=headers,
    )
    if body.get("error"):
        raise TransportFailure(NAME, str(body.get("message") or body["error"]), provider_status=status)

    logger.info(
        "zapi message sent",
        extra={
            "extra_fields": {
                "to_hash": hash_identifier(normalized),
                "type": content.type.value,
                "text_len": len(content.text),
            }
        },
    )
    message_id = body.get("messageId") or body.get("zapiMessageId") or body.get("id")
    return TransportReceipt(NAME, str(message_id) if message_id else None, status)
