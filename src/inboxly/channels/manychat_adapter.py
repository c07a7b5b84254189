"""ManyChat adapter - External Request payloads from ManyChat flows.

The flow posts a flat JSON document built from ManyChat variables:
{
  "subscriber_id": "123456789",
  "page_id": "987654321",
  "channel": "instagram" | "facebook",
  "ig_id": "<instagram scoped id, optional>",
  "name": "{{full_name}}",
  "ig_username": "{{ig_username}}",
  "profile_pic": "https://...",
  "message": "{{last_input_text}}",
  "message_id": "<optional>",
  "attachment_url": "<optional>",
  "attachment_type": "image" | "video" | "audio" | "file"
}

Unresolved template variables arrive literally ("{{ig_username}}") and are
treated as absent.
"""

from __future__ import annotations

from typing import Any

from inboxly.domain.errors import MalformedPayload
from inboxly.domain.models import Channel, MessageType, placeholder_for
from inboxly.infra.time import from_epoch, utc_now

from .meta_adapter import ATTACHMENT_TYPES, legacy_id_for
from .models import InboundEvent
from .names import clean_handle, clean_name, is_template_variable

SOURCE = "manychat"

SUBSCRIBER_LEGACY_PREFIX = "mc_"


def _str_field(payload: dict[str, Any], *keys: str) -> str:
    """First non-empty, non-template string value among ``keys``."""
    for key in keys:
        value = payload.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text and not is_template_variable(text):
            return text
    return ""


def _channel(payload: dict[str, Any]) -> Channel:
    raw = _str_field(payload, "channel", "platform").lower()
    return Channel.FACEBOOK if raw in ("facebook", "messenger", "fb") else Channel.INSTAGRAM


def normalize(payload: Any) -> list[InboundEvent]:
    """Normalize a ManyChat payload into at most one inbound event.

    Raises:
        MalformedPayload: Missing subscriber_id.
    """
    if not isinstance(payload, dict):
        raise MalformedPayload("payload is not an object")

    subscriber_id = _str_field(payload, "subscriber_id")
    if not subscriber_id:
        raise MalformedPayload("subscriber_id is required")

    if payload.get("is_echo") or payload.get("from_page"):
        return []

    channel = _channel(payload)
    native_id = _str_field(payload, "ig_id", "user_id", "psid")

    text = _str_field(payload, "message", "last_input_text", "text")
    attachment_url = _str_field(payload, "attachment_url") or None
    message_type = MessageType.TEXT
    if attachment_url:
        message_type = ATTACHMENT_TYPES.get(
            _str_field(payload, "attachment_type").lower(), MessageType.DOCUMENT
        )
    content = text or (placeholder_for(message_type) if attachment_url else "")
    if not content:
        return []

    if native_id:
        legacy_display_id = legacy_id_for(channel, native_id)
    else:
        legacy_display_id = f"{SUBSCRIBER_LEGACY_PREFIX}{subscriber_id}"

    return [
        InboundEvent(
            channel=channel,
            source=SOURCE,
            page_id=_str_field(payload, "page_id") or None,
            sender_id=native_id,
            legacy_display_id=legacy_display_id,
            content=content,
            message_type=message_type,
            timestamp=from_epoch(payload.get("timestamp")) or utc_now(),
            subscriber_id=subscriber_id,
            display_name_hint=clean_name(_str_field(payload, "name", "full_name")),
            alternate_handle=clean_handle(_str_field(payload, "ig_username", "username")),
            profile_image_url=_str_field(payload, "profile_pic", "profile_pic_url") or None,
            attachment_url=attachment_url,
            provider_message_id=_str_field(payload, "message_id", "mid") or None,
        )
    ]
