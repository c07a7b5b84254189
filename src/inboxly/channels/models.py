"""Normalized webhook types.

Adapters turn provider payloads into these; nothing downstream of the
normalizer reads provider-specific fields.

PII: sender ids, names and content are personal data. Never log them raw.
"""

from dataclasses import dataclass
from datetime import datetime

from inboxly.domain.models import Channel, DeliveryStatus, MessageType


@dataclass(frozen=True)
class InboundEvent:
    """One inbound message from a contact."""

    channel: Channel
    source: str  # adapter that produced the event: "meta", "zapi", "manychat"
    page_id: str | None
    sender_id: str  # channel-native id; empty when the provider only gave a subscriber id
    legacy_display_id: str
    content: str
    message_type: MessageType
    timestamp: datetime
    subscriber_id: str | None = None
    display_name_hint: str | None = None
    alternate_handle: str | None = None
    profile_image_url: str | None = None
    attachment_url: str | None = None
    provider_message_id: str | None = None


@dataclass(frozen=True)
class StatusUpdate:
    """Provider delivery-status callback for an outbound message."""

    channel: Channel
    page_id: str | None
    provider_message_id: str
    status: DeliveryStatus
