"""Meta Graph adapter - Instagram Direct and Messenger webhooks.

Handles signature verification, the subscription handshake, and
normalization of ``messaging`` events into InboundEvent / StatusUpdate.

Payload structure:
{
  "object": "instagram" | "page",
  "entry": [{
    "id": "<page or instagram business id>",
    "time": 1700000000000,
    "messaging": [{
      "sender": {"id": "<igsid/psid>"},
      "recipient": {"id": "<page id>"},
      "timestamp": 1700000000000,
      "message": {"mid": "...", "text": "...", "is_echo": false,
                  "attachments": [{"type": "image", "payload": {"url": "..."}}]}
    }]
  }]
}
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any

from inboxly.domain.errors import MalformedPayload
from inboxly.domain.models import Channel, DeliveryStatus, MessageType, placeholder_for
from inboxly.infra.time import from_epoch, utc_now

from .models import InboundEvent, StatusUpdate

SOURCE = "meta"

OBJECT_CHANNELS: dict[str, Channel] = {
    "instagram": Channel.INSTAGRAM,
    "page": Channel.FACEBOOK,
}

LEGACY_PREFIXES: dict[Channel, str] = {
    Channel.INSTAGRAM: "ig_",
    Channel.FACEBOOK: "fb_",
}

ATTACHMENT_TYPES: dict[str, MessageType] = {
    "image": MessageType.IMAGE,
    "video": MessageType.VIDEO,
    "audio": MessageType.AUDIO,
    "file": MessageType.DOCUMENT,
}


class SignatureVerificationError(Exception):
    """Raised when HMAC signature verification fails."""


def verify_signature(payload_bytes: bytes, signature_header: str, app_secret: str) -> None:
    """Verify Meta webhook signature (HMAC-SHA256, ``sha256=<hex>``).

    Raises:
        SignatureVerificationError: If signature is invalid or missing.
    """
    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    if not signature_header.startswith("sha256="):
        raise SignatureVerificationError("invalid signature format")

    computed_sig = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(computed_sig, signature_header[len("sha256="):]):
        raise SignatureVerificationError("signature mismatch")


def verify_handshake(
    mode: str | None, token: str | None, challenge: str | None, expected_token: str
) -> str | None:
    """Return the challenge to echo, or None if the handshake must be refused."""
    if mode != "subscribe" or not expected_token or challenge is None:
        return None
    if not hmac.compare_digest((token or "").encode(), expected_token.encode()):
        return None
    return challenge


def legacy_id_for(channel: Channel, native_id: str) -> str:
    """Legacy display id for a Meta sender ("ig_<igsid>" / "fb_<psid>")."""
    return f"{LEGACY_PREFIXES.get(channel, '')}{native_id}"


def _channel_for(payload: Any) -> Channel:
    if not isinstance(payload, dict):
        raise MalformedPayload("payload is not an object")
    channel = OBJECT_CHANNELS.get(payload.get("object", ""))
    if channel is None:
        raise MalformedPayload("unsupported object type")
    if not isinstance(payload.get("entry", []), list):
        raise MalformedPayload("entry is not a list")
    return channel


def _iter_messaging(payload: dict[str, Any]):
    for entry in payload.get("entry") or []:
        if not isinstance(entry, dict):
            raise MalformedPayload("entry item is not an object")
        page_id = str(entry["id"]) if entry.get("id") else None
        for item in entry.get("messaging") or []:
            if isinstance(item, dict):
                yield page_id, item


def _classify(message: dict[str, Any]) -> tuple[MessageType, str, str | None]:
    """Return (type, content, attachment_url) for a Meta message object."""
    text = (message.get("text") or "").strip()
    attachments = message.get("attachments") or []
    if not attachments:
        return MessageType.TEXT, text, None

    attachment = attachments[0] if isinstance(attachments[0], dict) else {}
    raw_type = str(attachment.get("type", ""))
    url = (attachment.get("payload") or {}).get("url")
    message_type = ATTACHMENT_TYPES.get(raw_type)
    if message_type is None:
        # share, story_mention, fallback: keep as text
        return MessageType.TEXT, text or f"[{raw_type or 'attachment'}]", url
    return message_type, text or placeholder_for(message_type), url


def normalize(payload: Any) -> list[InboundEvent]:
    """Normalize a Meta webhook into inbound events.

    Echoes (``is_echo`` or sender == page) and non-message events (delivery,
    read, reactions) produce no InboundEvent.

    Raises:
        MalformedPayload: Unknown object type or a message without a sender.
    """
    channel = _channel_for(payload)
    events: list[InboundEvent] = []

    for page_id, item in _iter_messaging(payload):
        message = item.get("message")
        if not isinstance(message, dict):
            continue

        sender_id = str((item.get("sender") or {}).get("id") or "")
        if not sender_id:
            raise MalformedPayload("message without sender id")

        recipient_id = str((item.get("recipient") or {}).get("id") or "")
        if message.get("is_echo") or sender_id == page_id:
            continue

        message_type, content, attachment_url = _classify(message)
        if not content:
            continue

        events.append(
            InboundEvent(
                channel=channel,
                source=SOURCE,
                page_id=page_id or recipient_id or None,
                sender_id=sender_id,
                legacy_display_id=legacy_id_for(channel, sender_id),
                content=content,
                message_type=message_type,
                timestamp=from_epoch(item.get("timestamp")) or utc_now(),
                attachment_url=attachment_url,
                provider_message_id=message.get("mid") or None,
            )
        )

    return events


def extract_status_updates(payload: Any) -> list[StatusUpdate]:
    """Extract ``delivery`` and ``read`` callbacks carrying message ids."""
    channel = _channel_for(payload)
    updates: list[StatusUpdate] = []

    for page_id, item in _iter_messaging(payload):
        delivery = item.get("delivery")
        if isinstance(delivery, dict):
            for mid in delivery.get("mids") or []:
                if mid:
                    updates.append(StatusUpdate(channel, page_id, str(mid), DeliveryStatus.DELIVERED))

        read = item.get("read")
        if isinstance(read, dict) and read.get("mid"):
            updates.append(StatusUpdate(channel, page_id, str(read["mid"]), DeliveryStatus.READ))

    return updates
