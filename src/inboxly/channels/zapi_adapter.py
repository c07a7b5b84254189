"""Z-API adapter - WhatsApp gateway webhooks.

Z-API posts one event per request. Received messages carry
``type == "ReceivedCallback"``; status changes carry
``type == "MessageStatusCallback"`` with a list of message ids.
"""

from __future__ import annotations

from typing import Any

from inboxly.domain.errors import MalformedPayload
from inboxly.domain.models import Channel, MessageType, placeholder_for
from inboxly.domain.phone import normalize_phone
from inboxly.infra.time import from_epoch, utc_now

from .models import InboundEvent, StatusUpdate
from .names import first_clean_name
from .status import normalize_delivery_status

SOURCE = "zapi"

RECEIVED_CALLBACK = "ReceivedCallback"
STATUS_CALLBACK = "MessageStatusCallback"

_JID_SUFFIXES = ("@c.us", "@s.whatsapp.net")

# payload key -> (type, url keys, caption keys)
_MEDIA_FIELDS: list[tuple[str, MessageType, tuple[str, ...], tuple[str, ...]]] = [
    ("image", MessageType.IMAGE, ("imageUrl", "url"), ("caption",)),
    ("video", MessageType.VIDEO, ("videoUrl", "url"), ("caption",)),
    ("audio", MessageType.AUDIO, ("audioUrl", "url"), ()),
    ("ptt", MessageType.AUDIO, ("pttUrl", "audioUrl", "url"), ()),
    ("document", MessageType.DOCUMENT, ("documentUrl", "url"), ("caption", "title", "fileName")),
]


def _require_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise MalformedPayload("payload is not an object")
    return payload


def _event_type(payload: dict[str, Any]) -> str:
    return str(payload.get("type") or payload.get("event") or "")


def _is_group(payload: dict[str, Any]) -> bool:
    if payload.get("isGroup"):
        return True
    for key in ("chatId", "phone"):
        value = payload.get(key)
        if isinstance(value, str) and "@g.us" in value:
            return True
    return False


def _sender_phone(payload: dict[str, Any]) -> str:
    raw = payload.get("phone") or payload.get("from") or ""
    if not isinstance(raw, str):
        raw = str(raw)
    for suffix in _JID_SUFFIXES:
        raw = raw.replace(suffix, "")
    return raw.strip()


def _text_body(payload: dict[str, Any]) -> str:
    text = payload.get("text")
    if isinstance(text, dict):
        body = text.get("message") or ""
    else:
        body = payload.get("body") or payload.get("message") or ""
    return body.strip() if isinstance(body, str) else ""


def _media(payload: dict[str, Any]) -> tuple[MessageType, str, str | None] | None:
    """Return (type, caption, url) for the first media field present."""
    for key, message_type, url_keys, caption_keys in _MEDIA_FIELDS:
        media = payload.get(key)
        if media is None:
            continue
        if isinstance(media, str):
            return message_type, "", media
        if not isinstance(media, dict):
            return message_type, "", None
        url = next((media[k] for k in url_keys if media.get(k)), None)
        caption = next((str(media[k]).strip() for k in caption_keys if media.get(k)), "")
        return message_type, caption, url
    return None


def _display_name(payload: dict[str, Any]) -> str | None:
    """pushName/notifyName > contactName > senderName > name."""
    contact = payload.get("contact") if isinstance(payload.get("contact"), dict) else {}
    return first_clean_name(
        payload.get("pushName"),
        payload.get("notifyName"),
        payload.get("contactName"),
        contact.get("name"),
        payload.get("senderName"),
        payload.get("name"),
    )


def normalize(payload: Any) -> list[InboundEvent]:
    """Normalize a Z-API webhook into at most one inbound event.

    Returns an empty list for echoes (``fromMe``), group chats, status
    callbacks and events without content (reactions, presence).

    Raises:
        MalformedPayload: Received message without a sender phone.
    """
    payload = _require_object(payload)

    event_type = _event_type(payload)
    if event_type == STATUS_CALLBACK:
        return []
    if event_type and event_type != RECEIVED_CALLBACK:
        return []
    if payload.get("fromMe") is True or _is_group(payload):
        return []

    phone = normalize_phone(_sender_phone(payload))
    if not phone:
        raise MalformedPayload("missing sender phone")

    text = _text_body(payload)
    media = _media(payload)
    if media is not None:
        message_type, caption, attachment_url = media
        content = text or caption or placeholder_for(message_type)
    else:
        message_type, attachment_url = MessageType.TEXT, None
        content = text
    if not content:
        return []

    message_id = payload.get("messageId")
    if not message_id and isinstance(payload.get("id"), dict):
        message_id = payload["id"].get("id")

    photo = payload.get("photo") or payload.get("profilePicUrl") or payload.get("senderPhoto")

    return [
        InboundEvent(
            channel=Channel.WHATSAPP,
            source=SOURCE,
            page_id=str(payload["instanceId"]) if payload.get("instanceId") else None,
            sender_id=phone,
            legacy_display_id=phone,
            content=content,
            message_type=message_type,
            timestamp=from_epoch(payload.get("momment") or payload.get("moment")) or utc_now(),
            display_name_hint=_display_name(payload),
            profile_image_url=photo or None,
            attachment_url=attachment_url,
            provider_message_id=str(message_id) if message_id else None,
        )
    ]


def extract_status_updates(payload: Any) -> list[StatusUpdate]:
    """Extract ``MessageStatusCallback`` updates (one per message id)."""
    payload = _require_object(payload)
    if _event_type(payload) != STATUS_CALLBACK:
        return []

    status = normalize_delivery_status(payload.get("status"))
    if status is None:
        return []

    ids = payload.get("ids")
    if not isinstance(ids, list):
        ids = [payload.get("messageId")]

    page_id = str(payload["instanceId"]) if payload.get("instanceId") else None
    return [
        StatusUpdate(Channel.WHATSAPP, page_id, str(message_id), status)
        for message_id in ids
        if message_id
    ]
