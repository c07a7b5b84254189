"""Delivery router - send a reply through the channel's fallback chain.

Chains (first success wins, each transport tried at most once):
  instagram / facebook: manychat -> meta_graph
  whatsapp:             zapi
  email / other:        none

The provider call happens before the outbound message is persisted. A store
failure after a successful send is a reconciliation gap: it is logged and the
result comes back with recorded=False. The send is never repeated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Mapping

from inboxly.domain.errors import (
    ConversationNotFound,
    DeliveryFailed,
    StorePersistenceFailure,
    TransportFailure,
)
from inboxly.domain.identity import resolve
from inboxly.domain.models import (
    Channel,
    Conversation,
    DeliveryStatus,
    Direction,
    Message,
    NewMessage,
    OutboundContent,
)
from inboxly.domain.phone import normalize_phone
from inboxly.infra.channel_registry import get_page_access_token
from inboxly.infra.time import utc_now
from inboxly.observability.logging import get_logger
from inboxly.observability.redaction import hash_identifier
from inboxly.transports import manychat, meta_graph, zapi
from inboxly.transports.base import NOT_CONFIGURED, UNADDRESSABLE, TransportReceipt

if TYPE_CHECKING:
    from inboxly.infra.store import MessageStore

logger = get_logger(__name__)

Transport = Callable[["MessageStore", Conversation, OutboundContent], TransportReceipt]

CHAINS: dict[Channel, tuple[str, ...]] = {
    Channel.INSTAGRAM: (manychat.NAME, meta_graph.NAME),
    Channel.FACEBOOK: (manychat.NAME, meta_graph.NAME),
    Channel.WHATSAPP: (zapi.NAME,),
    Channel.EMAIL: (),
    Channel.OTHER: (),
}

REASON_NO_TRANSPORT = "This channel has no outbound delivery configured."
REASON_TIMEOUT = "The messaging provider did not respond in time. Please try again."
REASON_WINDOW = (
    "This contact can only be messaged within 24 hours of their last message. "
    "Wait for the contact to write again."
)
REASON_NOT_CONFIGURED = "Outbound messaging is not configured for this channel."
REASON_UNADDRESSABLE = "The recipient cannot be reached on this channel."
REASON_GENERIC = "The message could not be delivered."

_WINDOW_MARKERS = ("24", "window", "outside")


@dataclass(frozen=True)
class TransportAttempt:
    transport: str
    ok: bool
    provider_status: int | str | None = None
    provider_message_id: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class DeliveryResult:
    conversation_id: str
    transport: str
    provider_message_id: str | None
    message: Message | None
    attempts: list[TransportAttempt] = field(default_factory=list)
    recorded: bool = True


def _send_manychat(
    store: MessageStore, conversation: Conversation, content: OutboundContent
) -> TransportReceipt:
    subscriber_id = conversation.subscriber_platform_id
    if not subscriber_id:
        if not conversation.channel_native_id:
            raise TransportFailure(manychat.NAME, "no subscriber id", kind=UNADDRESSABLE)
        subscriber_id = manychat.find_subscriber(conversation.channel_native_id)
        if not subscriber_id:
            raise TransportFailure(manychat.NAME, "subscriber not found", kind=UNADDRESSABLE)
        # Keep the id so later sends skip the lookup
        try:
            store.backfill_subscriber_id(conversation.id, subscriber_id)
        except StorePersistenceFailure:
            logger.warning(
                "subscriber id lookup not persisted",
                extra={"extra_fields": {"conversation_id": conversation.id}},
            )

    return manychat.send_content(
        subscriber_id=subscriber_id, channel=conversation.channel, content=content
    )


def _send_meta_graph(
    store: MessageStore, conversation: Conversation, content: OutboundContent
) -> TransportReceipt:
    try:
        page_access_token = get_page_access_token(conversation.account_id, conversation.channel)
    except (StorePersistenceFailure, RuntimeError) as exc:
        raise TransportFailure(
            meta_graph.NAME, "page access token lookup failed", kind=NOT_CONFIGURED
        ) from exc

    return meta_graph.send_message(
        recipient_id=conversation.channel_native_id or "",
        page_access_token=page_access_token,
        content=content,
    )


def _send_zapi(
    store: MessageStore, conversation: Conversation, content: OutboundContent
) -> TransportReceipt:
    return zapi.send_message(phone=conversation.legacy_display_id, content=content)


DEFAULT_TRANSPORTS: dict[str, Transport] = {
    manychat.NAME: _send_manychat,
    meta_graph.NAME: _send_meta_graph,
    zapi.NAME: _send_zapi,
}


def failure_reason(failure: TransportFailure | None) -> str:
    """Human-readable sentence for the last failure of a chain."""
    if failure is None:
        return REASON_NO_TRANSPORT
    if failure.timeout or failure.kind == "timeout":
        return REASON_TIMEOUT
    detail = failure.detail.lower()
    if any(marker in detail for marker in _WINDOW_MARKERS):
        return REASON_WINDOW
    if failure.kind == NOT_CONFIGURED:
        return REASON_NOT_CONFIGURED
    if failure.kind == UNADDRESSABLE:
        return REASON_UNADDRESSABLE
    return REASON_GENERIC


def _record(
    store: MessageStore,
    conversation: Conversation,
    content: OutboundContent,
    receipt: TransportReceipt,
    is_automated_reply: bool,
) -> Message | None:
    try:
        return store.record_outbound(
            NewMessage(
                conversation_id=conversation.id,
                account_id=conversation.account_id,
                direction=Direction.FROM_ACCOUNT,
                type=content.type,
                content=content.stored_content,
                status=DeliveryStatus.SENT,
                channel=conversation.channel,
                created_at=utc_now(),
                provider_message_id=receipt.provider_message_id,
                attachment_url=content.url,
                is_automated_reply=is_automated_reply,
            )
        )
    except StorePersistenceFailure:
        logger.exception(
            "reconciliation gap: message sent but not recorded",
            extra={
                "extra_fields": {
                    "conversation_id": conversation.id,
                    "transport": receipt.transport,
                    "provider_message_id": receipt.provider_message_id,
                }
            },
        )
        return None


def deliver(
    store: MessageStore,
    conversation: Conversation,
    content: OutboundContent,
    *,
    transports: Mapping[str, Transport] | None = None,
    is_automated_reply: bool = False,
) -> DeliveryResult:
    """Walk the conversation's fallback chain until one transport succeeds.

    Raises:
        DeliveryFailed: The chain is empty or every transport failed.
    """
    registry = transports if transports is not None else DEFAULT_TRANSPORTS
    attempts: list[TransportAttempt] = []
    last_failure: TransportFailure | None = None

    for name in CHAINS.get(conversation.channel, ()):
        transport = registry.get(name)
        if transport is None:
            last_failure = TransportFailure(name, "transport not available", kind=NOT_CONFIGURED)
            attempts.append(TransportAttempt(name, ok=False, detail=last_failure.detail))
            continue

        try:
            receipt = transport(store, conversation, content)
        except TransportFailure as exc:
            last_failure = exc
            attempts.append(
                TransportAttempt(
                    name, ok=False, provider_status=exc.provider_status, detail=exc.detail
                )
            )
            logger.warning(
                "transport failed, trying next",
                extra={
                    "extra_fields": {
                        "conversation_id": conversation.id,
                        "transport": name,
                        "kind": exc.kind,
                        "provider_status": exc.provider_status,
                    }
                },
            )
            continue

        attempts.append(
            TransportAttempt(
                name,
                ok=True,
                provider_status=receipt.provider_status,
                provider_message_id=receipt.provider_message_id,
            )
        )
        message = _record(store, conversation, content, receipt, is_automated_reply)
        logger.info(
            "message delivered",
            extra={
                "extra_fields": {
                    "conversation_id": conversation.id,
                    "transport": name,
                    "attempts": len(attempts),
                    "recorded": message is not None,
                }
            },
        )
        return DeliveryResult(
            conversation_id=conversation.id,
            transport=name,
            provider_message_id=receipt.provider_message_id,
            message=message,
            attempts=attempts,
            recorded=message is not None,
        )

    reason = failure_reason(last_failure)
    logger.warning(
        "delivery failed",
        extra={
            "extra_fields": {
                "conversation_id": conversation.id,
                "channel": conversation.channel.value,
                "attempts": len(attempts),
                "detail": last_failure.detail if last_failure else None,
            }
        },
    )
    raise DeliveryFailed(
        reason,
        detail=last_failure.detail if last_failure else "channel has no outbound transport",
        attempts=attempts,
    )


def send(
    store: MessageStore,
    conversation_id: str,
    content: OutboundContent,
    *,
    transports: Mapping[str, Transport] | None = None,
    is_automated_reply: bool = False,
    account_id: str | None = None,
) -> DeliveryResult:
    """Send a reply to an existing conversation.

    Args:
        account_id: When given, conversations of other accounts are treated
            as not found.

    Raises:
        ConversationNotFound: Unknown id (or another account's conversation).
        DeliveryFailed: Every transport failed.
    """
    conversation = store.get_conversation(conversation_id)
    if conversation is None or (account_id is not None and conversation.account_id != account_id):
        raise ConversationNotFound(conversation_id)
    return deliver(
        store,
        conversation,
        content,
        transports=transports,
        is_automated_reply=is_automated_reply,
    )


def send_to_address(
    store: MessageStore,
    account_id: str,
    phone: str,
    content: OutboundContent,
    *,
    transports: Mapping[str, Transport] | None = None,
    is_automated_reply: bool = False,
) -> DeliveryResult:
    """Send to a raw phone address, creating its WhatsApp conversation if needed.

    Raises:
        DeliveryFailed: Empty address or every transport failed.
    """
    normalized = normalize_phone(phone)
    if not normalized:
        raise DeliveryFailed(REASON_UNADDRESSABLE, detail="empty phone address")

    resolution = resolve(
        store,
        account_id,
        Channel.WHATSAPP,
        normalized,
        normalized,
        None,
    )
    logger.info(
        "send to address",
        extra={
            "extra_fields": {
                "to_hash": hash_identifier(normalized),
                "conversation_id": resolution.conversation.id,
                "created": resolution.created,
            }
        },
    )
    return deliver(
        store,
        resolution.conversation,
        content,
        transports=transports,
        is_automated_reply=is_automated_reply,
    )
