"""Message store facade.

The domain layer (identity resolver, ingestion, delivery router, analytics)
talks to a MessageStore. PgMessageStore is the PostgreSQL implementation:
each method runs in its own short transaction using the repositories.
Tests substitute an in-memory implementation.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Protocol

import psycopg2
from psycopg2 import errors as pg_errors

from inboxly.domain.errors import StorePersistenceFailure
from inboxly.domain.models import (
    Channel,
    Conversation,
    DeliveryStatus,
    Message,
    NewConversation,
    NewMessage,
    allowed_predecessors,
)
from inboxly.observability.logging import get_logger

from .db import txn
from .repositories import conversations_repository as conversations
from .repositories import messages_repository as messages

logger = get_logger(__name__)


@contextmanager
def _reading(operation: str) -> Iterator:
    """Read-only transaction whose driver errors surface as StorePersistenceFailure."""
    try:
        with txn() as cur:
            yield cur
    except psycopg2.Error as exc:
        raise StorePersistenceFailure(operation) from exc


class MessageStore(Protocol):
    """Persistence operations used by the domain layer."""

    def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    def find_by_native_id(
        self, account_id: str, channel: Channel, channel_native_id: str
    ) -> Conversation | None: ...

    def find_by_subscriber_id(
        self, account_id: str, subscriber_platform_id: str
    ) -> Conversation | None: ...

    def find_by_legacy_id(self, account_id: str, legacy_display_id: str) -> Conversation | None: ...

    def list_unidentified(self, account_id: str, channel: Channel) -> list[Conversation]: ...

    def create_conversation(self, new: NewConversation) -> tuple[Conversation, bool]: ...

    def backfill_native_id(self, conversation_id: str, channel_native_id: str) -> bool: ...

    def backfill_subscriber_id(self, conversation_id: str, subscriber_platform_id: str) -> bool: ...

    def update_profile(
        self,
        conversation_id: str,
        *,
        display_name: str | None = None,
        profile_image_url: str | None = None,
    ) -> None: ...

    def record_inbound(self, new: NewMessage) -> Message | None: ...

    def find_recent_inbound(
        self, conversation_id: str, content: str, at: datetime, window_seconds: int
    ) -> Message | None: ...

    def record_outbound(self, new: NewMessage) -> Message: ...

    def mark_read(self, conversation_id: str) -> bool: ...

    def advance_status(
        self, account_id: str, provider_message_id: str, status: DeliveryStatus
    ) -> int: ...

    def list_conversations(
        self, account_id: str, channel: Channel | None = None
    ) -> list[Conversation]: ...

    def list_messages(self, account_id: str, start: datetime, end: datetime) -> list[Message]: ...


class PgMessageStore:
    """MessageStore backed by PostgreSQL."""

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with _reading("get_conversation") as cur:
            return conversations.get_conversation(cur, conversation_id)

    def find_by_native_id(
        self, account_id: str, channel: Channel, channel_native_id: str
    ) -> Conversation | None:
        with _reading("find_by_native_id") as cur:
            return conversations.find_by_native_id(
                cur, account_id=account_id, channel=channel, channel_native_id=channel_native_id
            )

    def find_by_subscriber_id(
        self, account_id: str, subscriber_platform_id: str
    ) -> Conversation | None:
        with _reading("find_by_subscriber_id") as cur:
            return conversations.find_by_subscriber_id(
                cur, account_id=account_id, subscriber_platform_id=subscriber_platform_id
            )

    def find_by_legacy_id(self, account_id: str, legacy_display_id: str) -> Conversation | None:
        with _reading("find_by_legacy_id") as cur:
            return conversations.find_by_legacy_id(
                cur, account_id=account_id, legacy_display_id=legacy_display_id
            )

    def list_unidentified(self, account_id: str, channel: Channel) -> list[Conversation]:
        with _reading("list_unidentified") as cur:
            return conversations.list_without_native_id(cur, account_id=account_id, channel=channel)

    def create_conversation(self, new: NewConversation) -> tuple[Conversation, bool]:
        """Insert-or-fetch.

        Returns:
            Tuple of (conversation, created). When a unique index rejected the
            insert, the existing row is returned with created=False.
        """
        try:
            with txn() as cur:
                created = conversations.insert_conversation(cur, new)
                if created is not None:
                    return created, True
                existing = self._find_conflicting(cur, new)
        except psycopg2.Error as exc:
            raise StorePersistenceFailure("create_conversation") from exc

        if existing is None:
            raise StorePersistenceFailure(
                "create_conversation", {"reason": "conflict without existing row"}
            )
        return existing, False

    @staticmethod
    def _find_conflicting(cur, new: NewConversation) -> Conversation | None:
        if new.channel_native_id:
            found = conversations.find_by_native_id(
                cur,
                account_id=new.account_id,
                channel=new.channel,
                channel_native_id=new.channel_native_id,
            )
            if found:
                return found
        if new.subscriber_platform_id:
            found = conversations.find_by_subscriber_id(
                cur,
                account_id=new.account_id,
                subscriber_platform_id=new.subscriber_platform_id,
            )
            if found:
                return found
        return conversations.find_by_legacy_id(
            cur, account_id=new.account_id, legacy_display_id=new.legacy_display_id
        )

    def backfill_native_id(self, conversation_id: str, channel_native_id: str) -> bool:
        """Returns False if already set or another conversation owns the id."""
        try:
            with txn() as cur:
                return conversations.backfill_native_id(cur, conversation_id, channel_native_id)
        except pg_errors.UniqueViolation:
            logger.info(
                "native id already owned by another conversation",
                extra={"extra_fields": {"conversation_id": conversation_id}},
            )
            return False
        except psycopg2.Error as exc:
            raise StorePersistenceFailure("backfill_native_id") from exc

    def backfill_subscriber_id(self, conversation_id: str, subscriber_platform_id: str) -> bool:
        try:
            with txn() as cur:
                return conversations.backfill_subscriber_id(
                    cur, conversation_id, subscriber_platform_id
                )
        except pg_errors.UniqueViolation:
            logger.info(
                "subscriber id already owned by another conversation",
                extra={"extra_fields": {"conversation_id": conversation_id}},
            )
            return False
        except psycopg2.Error as exc:
            raise StorePersistenceFailure("backfill_subscriber_id") from exc

    def update_profile(
        self,
        conversation_id: str,
        *,
        display_name: str | None = None,
        profile_image_url: str | None = None,
    ) -> None:
        try:
            with txn() as cur:
                conversations.update_profile(
                    cur,
                    conversation_id,
                    display_name=display_name,
                    profile_image_url=profile_image_url,
                )
        except psycopg2.Error as exc:
            raise StorePersistenceFailure("update_profile") from exc

    def record_inbound(self, new: NewMessage) -> Message | None:
        """Insert the message and bump the unread counter in one transaction.

        Returns None (and leaves the counter alone) for a duplicate provider id.
        """
        try:
            with txn() as cur:
                message = messages.insert_inbound(cur, new)
                if message is not None:
                    conversations.touch_inbound(cur, new.conversation_id, new.created_at)
                return message
        except psycopg2.Error as exc:
            raise StorePersistenceFailure("record_inbound") from exc

    def find_recent_inbound(
        self, conversation_id: str, content: str, at: datetime, window_seconds: int
    ) -> Message | None:
        with _reading("find_recent_inbound") as cur:
            return messages.find_recent_inbound(
                cur,
                conversation_id=conversation_id,
                content=content,
                at=at,
                window_seconds=window_seconds,
            )

    def record_outbound(self, new: NewMessage) -> Message:
        try:
            with txn() as cur:
                message = messages.insert_outbound(cur, new)
                conversations.touch_outbound(cur, new.conversation_id, new.created_at)
                return message
        except psycopg2.Error as exc:
            raise StorePersistenceFailure("record_outbound") from exc

    def mark_read(self, conversation_id: str) -> bool:
        try:
            with txn() as cur:
                return conversations.reset_unread(cur, conversation_id)
        except psycopg2.Error as exc:
            raise StorePersistenceFailure("mark_read") from exc

    def advance_status(
        self, account_id: str, provider_message_id: str, status: DeliveryStatus
    ) -> int:
        try:
            with txn() as cur:
                return messages.advance_status(
                    cur,
                    account_id=account_id,
                    provider_message_id=provider_message_id,
                    status=status,
                    from_statuses=allowed_predecessors(status),
                )
        except psycopg2.Error as exc:
            raise StorePersistenceFailure("advance_status") from exc

    def list_conversations(
        self, account_id: str, channel: Channel | None = None
    ) -> list[Conversation]:
        with _reading("list_conversations") as cur:
            return conversations.list_conversations(cur, account_id=account_id, channel=channel)

    def list_messages(self, account_id: str, start: datetime, end: datetime) -> list[Message]:
        with _reading("list_messages") as cur:
            return messages.list_messages(cur, account_id=account_id, start=start, end=end)
