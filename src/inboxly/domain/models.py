"""Canonical conversation and message types shared by every component.

Provider payloads never travel past the channel adapters; everything below
them speaks in these types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Channel(str, Enum):
    """Messaging surface a conversation lives on."""

    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    OTHER = "other"


# Channels that are addressed through Meta Graph / ManyChat
DIRECT_MESSAGE_CHANNELS = frozenset({Channel.INSTAGRAM, Channel.FACEBOOK})


class Direction(str, Enum):
    FROM_CONTACT = "from-contact"
    FROM_ACCOUNT = "from-account"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    DOCUMENT = "document"
    VIDEO = "video"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    RECEIVED = "received"


# Forward-only status transitions. Inbound rows stay "received".
STATUS_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.SENT: frozenset(
        {DeliveryStatus.DELIVERED, DeliveryStatus.READ, DeliveryStatus.FAILED}
    ),
    DeliveryStatus.DELIVERED: frozenset({DeliveryStatus.READ}),
    DeliveryStatus.READ: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
    DeliveryStatus.RECEIVED: frozenset(),
}


def can_transition(current: DeliveryStatus, new: DeliveryStatus) -> bool:
    """Return True if a message may move from ``current`` to ``new``."""
    return new in STATUS_TRANSITIONS.get(current, frozenset())


def allowed_predecessors(new: DeliveryStatus) -> list[DeliveryStatus]:
    """Statuses from which ``new`` is reachable in one step."""
    return [status for status, targets in STATUS_TRANSITIONS.items() if new in targets]


ATTACHMENT_PLACEHOLDERS: dict[MessageType, str] = {
    MessageType.IMAGE: "[image]",
    MessageType.AUDIO: "[audio]",
    MessageType.DOCUMENT: "[document]",
    MessageType.VIDEO: "[video]",
}


def placeholder_for(message_type: MessageType) -> str:
    """Bracketed stand-in used when an attachment arrives without text."""
    return ATTACHMENT_PLACEHOLDERS.get(message_type, "[message]")


@dataclass(frozen=True)
class Conversation:
    """One contact on one channel, owned by one account."""

    id: str
    account_id: str
    channel: Channel
    legacy_display_id: str
    channel_native_id: str | None = None
    subscriber_platform_id: str | None = None
    display_name: str | None = None
    profile_image_url: str | None = None
    last_message_at: datetime | None = None
    unread_count: int = 0

    @property
    def has_identity(self) -> bool:
        """True once any stable identifier is attached."""
        return bool(self.channel_native_id or self.subscriber_platform_id)


@dataclass(frozen=True)
class NewConversation:
    """Fields needed to create a conversation."""

    account_id: str
    channel: Channel
    legacy_display_id: str
    channel_native_id: str | None = None
    subscriber_platform_id: str | None = None
    display_name: str | None = None
    profile_image_url: str | None = None
    last_message_at: datetime | None = None


@dataclass(frozen=True)
class Message:
    """A persisted message. Immutable except for delivery status."""

    id: str
    conversation_id: str
    account_id: str
    direction: Direction
    type: MessageType
    content: str
    status: DeliveryStatus
    channel: Channel
    created_at: datetime
    provider_message_id: str | None = None
    attachment_url: str | None = None
    is_automated_reply: bool = False


@dataclass(frozen=True)
class NewMessage:
    """Fields needed to record a message."""

    conversation_id: str
    account_id: str
    direction: Direction
    type: MessageType
    content: str
    status: DeliveryStatus
    channel: Channel
    created_at: datetime
    provider_message_id: str | None = None
    attachment_url: str | None = None
    is_automated_reply: bool = False


@dataclass(frozen=True)
class OutboundContent:
    """Reply to deliver. Text messages need ``text``; media needs a URL or base64 data."""

    type: MessageType = MessageType.TEXT
    text: str = ""
    base64_data: str | None = None
    url: str | None = None
    filename: str | None = None

    def __post_init__(self) -> None:
        if self.type == MessageType.TEXT:
            if not self.text.strip():
                raise ValueError("text message requires text")
        elif not (self.url or self.base64_data):
            raise ValueError(f"{self.type.value} message requires url or base64_data")

    @property
    def stored_content(self) -> str:
        """Non-empty content recorded for the outbound message."""
        return self.text.strip() or placeholder_for(self.type)
