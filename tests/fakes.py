"""In-memory MessageStore with the same uniqueness rules as the SQL schema."""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timedelta

from inboxly.domain.errors import StorePersistenceFailure
from inboxly.domain.models import (
    Channel,
    Conversation,
    DeliveryStatus,
    Direction,
    Message,
    NewConversation,
    NewMessage,
    can_transition,
)


class InMemoryStore:
    def __init__(self) -> None:
        self.conversations: dict[str, Conversation] = {}
        self.messages: list[Message] = []
        self._ids = itertools.count(1)
        self.fail_record_outbound = False

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    # ── conversations ────────────────────────────────────────────────────────

    def add_conversation(self, **fields) -> Conversation:
        """Seed a conversation directly (test setup)."""
        fields.setdefault("id", self._next_id("conv"))
        conversation = Conversation(**fields)
        self.conversations[conversation.id] = conversation
        return conversation

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self.conversations.get(conversation_id)

    def find_by_native_id(
        self, account_id: str, channel: Channel, channel_native_id: str
    ) -> Conversation | None:
        return next(
            (
                c
                for c in self.conversations.values()
                if c.account_id == account_id
                and c.channel == channel
                and c.channel_native_id == channel_native_id
            ),
            None,
        )

    def find_by_subscriber_id(
        self, account_id: str, subscriber_platform_id: str
    ) -> Conversation | None:
        return next(
            (
                c
                for c in self.conversations.values()
                if c.account_id == account_id and c.subscriber_platform_id == subscriber_platform_id
            ),
            None,
        )

    def find_by_legacy_id(self, account_id: str, legacy_display_id: str) -> Conversation | None:
        return next(
            (
                c
                for c in self.conversations.values()
                if c.account_id == account_id and c.legacy_display_id == legacy_display_id
            ),
            None,
        )

    def list_unidentified(self, account_id: str, channel: Channel) -> list[Conversation]:
        return [
            c
            for c in self.conversations.values()
            if c.account_id == account_id and c.channel == channel and c.channel_native_id is None
        ]

    def create_conversation(self, new: NewConversation) -> tuple[Conversation, bool]:
        for existing in (
            new.channel_native_id
            and self.find_by_native_id(new.account_id, new.channel, new.channel_native_id),
            new.subscriber_platform_id
            and self.find_by_subscriber_id(new.account_id, new.subscriber_platform_id),
            self.find_by_legacy_id(new.account_id, new.legacy_display_id),
        ):
            if existing:
                return existing, False

        conversation = self.add_conversation(
            account_id=new.account_id,
            channel=new.channel,
            legacy_display_id=new.legacy_display_id,
            channel_native_id=new.channel_native_id,
            subscriber_platform_id=new.subscriber_platform_id,
            display_name=new.display_name,
            profile_image_url=new.profile_image_url,
            last_message_at=new.last_message_at,
        )
        return conversation, True

    def backfill_native_id(self, conversation_id: str, channel_native_id: str) -> bool:
        conversation = self.conversations[conversation_id]
        if conversation.channel_native_id is not None:
            return False
        if self.find_by_native_id(conversation.account_id, conversation.channel, channel_native_id):
            return False
        self.conversations[conversation_id] = replace(conversation, channel_native_id=channel_native_id)
        return True

    def backfill_subscriber_id(self, conversation_id: str, subscriber_platform_id: str) -> bool:
        conversation = self.conversations[conversation_id]
        if conversation.subscriber_platform_id is not None:
            return False
        if self.find_by_subscriber_id(conversation.account_id, subscriber_platform_id):
            return False
        self.conversations[conversation_id] = replace(
            conversation, subscriber_platform_id=subscriber_platform_id
        )
        return True

    def update_profile(
        self,
        conversation_id: str,
        *,
        display_name: str | None = None,
        profile_image_url: str | None = None,
    ) -> None:
        conversation = self.conversations[conversation_id]
        self.conversations[conversation_id] = replace(
            conversation,
            display_name=display_name or conversation.display_name,
            profile_image_url=profile_image_url or conversation.profile_image_url,
        )

    def _touch(self, conversation_id: str, at: datetime, unread_delta: int) -> None:
        conversation = self.conversations[conversation_id]
        last = conversation.last_message_at
        self.conversations[conversation_id] = replace(
            conversation,
            last_message_at=at if last is None or at > last else last,
            unread_count=conversation.unread_count + unread_delta,
        )

    def mark_read(self, conversation_id: str) -> bool:
        if conversation_id not in self.conversations:
            return False
        self.conversations[conversation_id] = replace(
            self.conversations[conversation_id], unread_count=0
        )
        return True

    def list_conversations(
        self, account_id: str, channel: Channel | None = None
    ) -> list[Conversation]:
        return [
            c
            for c in self.conversations.values()
            if c.account_id == account_id and (channel is None or c.channel == channel)
        ]

    # ── messages ─────────────────────────────────────────────────────────────

    def _build(self, new: NewMessage) -> Message:
        return Message(
            id=self._next_id("msg"),
            conversation_id=new.conversation_id,
            account_id=new.account_id,
            direction=new.direction,
            type=new.type,
            content=new.content,
            status=new.status,
            channel=new.channel,
            created_at=new.created_at,
            provider_message_id=new.provider_message_id,
            attachment_url=new.attachment_url,
            is_automated_reply=new.is_automated_reply,
        )

    def record_inbound(self, new: NewMessage) -> Message | None:
        if new.provider_message_id and any(
            m.conversation_id == new.conversation_id
            and m.direction == Direction.FROM_CONTACT
            and m.provider_message_id == new.provider_message_id
            for m in self.messages
        ):
            return None
        message = self._build(new)
        self.messages.append(message)
        self._touch(new.conversation_id, new.created_at, 1)
        return message

    def find_recent_inbound(
        self, conversation_id: str, content: str, at: datetime, window_seconds: int
    ) -> Message | None:
        window = timedelta(seconds=window_seconds)
        return next(
            (
                m
                for m in reversed(self.messages)
                if m.conversation_id == conversation_id
                and m.direction == Direction.FROM_CONTACT
                and m.content == content
                and abs(m.created_at - at) <= window
            ),
            None,
        )

    def record_outbound(self, new: NewMessage) -> Message:
        if self.fail_record_outbound:
            raise StorePersistenceFailure("record_outbound")
        message = self._build(new)
        self.messages.append(message)
        self._touch(new.conversation_id, new.created_at, 0)
        return message

    def add_message(self, **fields) -> Message:
        """Seed a message directly (test setup)."""
        fields.setdefault("id", self._next_id("msg"))
        fields.setdefault("status", DeliveryStatus.RECEIVED)
        message = Message(**fields)
        self.messages.append(message)
        return message

    def advance_status(
        self, account_id: str, provider_message_id: str, status: DeliveryStatus
    ) -> int:
        updated = 0
        for index, message in enumerate(self.messages):
            if (
                message.account_id == account_id
                and message.provider_message_id == provider_message_id
                and message.direction == Direction.FROM_ACCOUNT
                and can_transition(message.status, status)
            ):
                self.messages[index] = replace(message, status=status)
                updated += 1
        return updated

    def list_messages(self, account_id: str, start: datetime, end: datetime) -> list[Message]:
        return sorted(
            (m for m in self.messages if m.account_id == account_id and start <= m.created_at <= end),
            key=lambda m: (m.created_at, m.id),
        )

    def messages_for(self, conversation_id: str) -> list[Message]:
        return [m for m in self.messages if m.conversation_id == conversation_id]
