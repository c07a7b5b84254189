"""Error taxonomy for ingestion, identity resolution and delivery.

Adapters and the resolver raise and let the HTTP handler choose a response
code. The delivery router absorbs TransportFailure across its fallback chain
and raises DeliveryFailed only once every transport has failed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from inboxly.domain.delivery import TransportAttempt


class InboxError(Exception):
    """Base class for all domain errors."""


class MalformedPayload(InboxError):
    """Webhook body is missing required fields or cannot be parsed."""


class NoOwningAccount(InboxError):
    """No account is registered for the channel/page. Configuration gap, never retried."""

    def __init__(self, channel: str, page_id: str | None) -> None:
        super().__init__(f"no owning account for channel={channel}")
        self.channel = channel
        self.page_id = page_id


class DuplicateEvent(InboxError):
    """Inbound event was already recorded. Treated as success."""

    def __init__(self, conversation_id: str, provider_message_id: str | None = None) -> None:
        super().__init__("duplicate inbound event")
        self.conversation_id = conversation_id
        self.provider_message_id = provider_message_id


class ConversationNotFound(InboxError):
    """Conversation id does not exist (or belongs to another account)."""


class TransportFailure(InboxError):
    """One provider call failed. Triggers the next transport in the chain.

    ``kind`` is one of: "error", "timeout", "not_configured", "unaddressable".
    """

    def __init__(
        self,
        transport: str,
        detail: str,
        *,
        provider_status: int | str | None = None,
        timeout: bool = False,
        kind: str | None = None,
    ) -> None:
        super().__init__(f"{transport}: {detail}")
        self.transport = transport
        self.detail = detail
        self.provider_status = provider_status
        self.timeout = timeout
        self.kind = kind or ("timeout" if timeout else "error")


class DeliveryFailed(InboxError):
    """Every transport in the fallback chain failed.

    ``detail`` holds the last provider error for logs. ``reason`` is the
    human-readable sentence shown to the invoking feature.
    """

    def __init__(
        self,
        reason: str,
        *,
        detail: str = "",
        attempts: list["TransportAttempt"] | None = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.detail = detail
        self.attempts = attempts or []


class StorePersistenceFailure(InboxError):
    """The store rejected a read or write. External side effects may already have happened."""

    def __init__(self, operation: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(f"store operation failed: {operation}")
        self.operation = operation
        self.context = context or {}
