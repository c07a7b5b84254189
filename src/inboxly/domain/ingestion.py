"""Inbound ingestion - persist normalized events and status callbacks.

Flow per event: owning account (registry) -> identity resolver -> dedup ->
insert message + bump unread counter (one transaction in the store).

Dedup:
  - With a provider message id: the store's unique index makes the insert a
    no-op for a repeat, reported as DuplicateEvent.
  - Without one: an inbound with the same content within DEDUP_WINDOW_SECONDS
    of the event timestamp in the same conversation is a duplicate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from inboxly.channels import normalizer
from inboxly.channels.models import InboundEvent, StatusUpdate
from inboxly.domain.errors import DuplicateEvent, NoOwningAccount
from inboxly.domain.identity import resolve_event
from inboxly.domain.models import (
    Channel,
    Conversation,
    DeliveryStatus,
    Direction,
    Message,
    NewMessage,
)
from inboxly.observability.logging import get_logger
from inboxly.observability.redaction import hash_identifier

if TYPE_CHECKING:
    from inboxly.infra.store import MessageStore

logger = get_logger(__name__)

DEDUP_WINDOW_SECONDS = 60

AccountLookup = Callable[[Channel, str | None], str]


@dataclass(frozen=True)
class IngestResult:
    conversation: Conversation
    message: Message
    created_conversation: bool
    matched_by: str


@dataclass
class IngestSummary:
    """Outcome of one webhook request."""

    ingested: list[IngestResult] = field(default_factory=list)
    duplicates: int = 0
    unowned: int = 0
    status_updates: int = 0

    @property
    def all_duplicates(self) -> bool:
        return self.duplicates > 0 and not self.ingested


def ingest_event(store: MessageStore, account_id: str, event: InboundEvent) -> IngestResult:
    """Resolve the conversation and record one inbound message.

    Raises:
        DuplicateEvent: The event was already recorded.
        StorePersistenceFailure: The store rejected the write.
    """
    resolution = resolve_event(store, account_id, event)
    conversation = resolution.conversation

    if not event.provider_message_id:
        existing = store.find_recent_inbound(
            conversation.id, event.content, event.timestamp, DEDUP_WINDOW_SECONDS
        )
        if existing is not None:
            raise DuplicateEvent(conversation.id)

    message = store.record_inbound(
        NewMessage(
            conversation_id=conversation.id,
            account_id=account_id,
            direction=Direction.FROM_CONTACT,
            type=event.message_type,
            content=event.content,
            status=DeliveryStatus.RECEIVED,
            channel=conversation.channel,
            created_at=event.timestamp,
            provider_message_id=event.provider_message_id,
            attachment_url=event.attachment_url,
        )
    )
    if message is None:
        raise DuplicateEvent(conversation.id, event.provider_message_id)

    logger.info(
        "inbound message recorded",
        extra={
            "extra_fields": {
                "conversation_id": conversation.id,
                "message_id": message.id,
                "channel": conversation.channel.value,
                "source": event.source,
                "type": event.message_type.value,
                "sender_hash": hash_identifier(event.sender_id or event.legacy_display_id),
                "content_len": len(event.content),
            }
        },
    )
    return IngestResult(
        conversation=conversation,
        message=message,
        created_conversation=resolution.created,
        matched_by=resolution.matched_by,
    )


def apply_status_update(store: MessageStore, account_id: str, update: StatusUpdate) -> bool:
    """Advance an outbound message's status. Returns False for ignored transitions."""
    updated = store.advance_status(account_id, update.provider_message_id, update.status)
    if not updated:
        logger.debug(
            "status transition ignored",
            extra={
                "extra_fields": {
                    "provider_message_id_hash": hash_identifier(update.provider_message_id),
                    "status": update.status.value,
                }
            },
        )
    return updated > 0


def ingest_payload(
    store: MessageStore,
    channel_tag: str,
    payload: Any,
    account_lookup: AccountLookup,
) -> IngestSummary:
    """Normalize a webhook payload and ingest every event in it.

    Events whose page has no registered account are dropped and counted, never
    retried. Duplicates are counted as successes.

    Raises:
        MalformedPayload: The adapter rejected the payload.
        StorePersistenceFailure: The store rejected a write.
    """
    events = normalizer.normalize(channel_tag, payload)
    updates = normalizer.extract_status_updates(channel_tag, payload)
    summary = IngestSummary()

    for event in events:
        try:
            account_id = account_lookup(event.channel, event.page_id)
        except NoOwningAccount as exc:
            summary.unowned += 1
            logger.warning(
                "no owning account, event dropped",
                extra={
                    "extra_fields": {
                        "channel": exc.channel,
                        "page_hash": hash_identifier(exc.page_id),
                    }
                },
            )
            continue

        try:
            summary.ingested.append(ingest_event(store, account_id, event))
        except DuplicateEvent as exc:
            summary.duplicates += 1
            logger.info(
                "duplicate inbound event",
                extra={"extra_fields": {"conversation_id": exc.conversation_id}},
            )

    for update in updates:
        try:
            account_id = account_lookup(update.channel, update.page_id)
        except NoOwningAccount:
            summary.unowned += 1
            continue
        if apply_status_update(store, account_id, update):
            summary.status_updates += 1

    return summary
