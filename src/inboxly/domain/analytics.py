"""Analytics engine - per-channel engagement and response latency.

Response-time pairing is one-to-many: each inbound message pairs with the
earliest outbound message strictly after it in the same conversation, so one
reply can answer several inbound messages ("time until any reply appeared").
Inbound messages with no later outbound produce no sample.

Attribution: message counts use each message's own channel; conversation
counts, unread totals and response samples use the conversation's channel.
"""

from __future__ import annotations

from bisect import bisect_right
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from inboxly.domain.models import Channel, Conversation, Direction, Message
from inboxly.infra.time import utc_now
from inboxly.observability.logging import get_logger

if TYPE_CHECKING:
    from inboxly.infra.store import MessageStore

logger = get_logger(__name__)

DEFAULT_WINDOW_DAYS = 30


@dataclass
class ChannelMetrics:
    channel: Channel
    total_conversations: int = 0
    total_messages: int = 0
    messages_received: int = 0
    messages_sent: int = 0
    automated_replies: int = 0
    unread_count: int = 0
    response_samples: list[float] = field(default_factory=list, repr=False)
    last_message_at: datetime | None = None

    @property
    def sample_count(self) -> int:
        return len(self.response_samples)

    @property
    def avg_response_time_ms(self) -> float | None:
        if not self.response_samples:
            return None
        return sum(self.response_samples) / len(self.response_samples)

    @property
    def is_empty(self) -> bool:
        return self.total_conversations == 0 and self.total_messages == 0

    def to_dict(self) -> dict:
        return {
            "channel": self.channel.value,
            "total_conversations": self.total_conversations,
            "total_messages": self.total_messages,
            "messages_received": self.messages_received,
            "messages_sent": self.messages_sent,
            "automated_replies": self.automated_replies,
            "unread_count": self.unread_count,
            "avg_response_time_ms": self.avg_response_time_ms,
            "response_sample_count": self.sample_count,
            "last_message_at": self.last_message_at.isoformat() if self.last_message_at else None,
        }


@dataclass(frozen=True)
class Metrics:
    start: datetime
    end: datetime
    channels: list[ChannelMetrics]

    @property
    def total_conversations(self) -> int:
        return sum(c.total_conversations for c in self.channels)

    @property
    def total_messages(self) -> int:
        return sum(c.total_messages for c in self.channels)

    @property
    def messages_received(self) -> int:
        return sum(c.messages_received for c in self.channels)

    @property
    def messages_sent(self) -> int:
        return sum(c.messages_sent for c in self.channels)

    @property
    def automated_replies(self) -> int:
        return sum(c.automated_replies for c in self.channels)

    @property
    def unread_count(self) -> int:
        return sum(c.unread_count for c in self.channels)

    @property
    def sample_count(self) -> int:
        return sum(c.sample_count for c in self.channels)

    @property
    def avg_response_time_ms(self) -> float | None:
        samples = [s for c in self.channels for s in c.response_samples]
        if not samples:
            return None
        return sum(samples) / len(samples)

    def for_channel(self, channel: Channel) -> ChannelMetrics | None:
        return next((c for c in self.channels if c.channel == channel), None)

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "channels": [c.to_dict() for c in self.channels],
            "totals": {
                "total_conversations": self.total_conversations,
                "total_messages": self.total_messages,
                "messages_received": self.messages_received,
                "messages_sent": self.messages_sent,
                "automated_replies": self.automated_replies,
                "unread_count": self.unread_count,
                "avg_response_time_ms": self.avg_response_time_ms,
                "response_sample_count": self.sample_count,
            },
        }


def response_samples_ms(messages: list[Message]) -> list[float]:
    """Response-time samples (ms) for one conversation's messages."""
    ordered = sorted(messages, key=lambda m: (m.created_at, m.id))
    outbound_times = [m.created_at for m in ordered if m.direction == Direction.FROM_ACCOUNT]

    samples = []
    for message in ordered:
        if message.direction != Direction.FROM_CONTACT:
            continue
        # earliest outbound strictly later than this inbound
        index = bisect_right(outbound_times, message.created_at)
        if index < len(outbound_times):
            delta = outbound_times[index] - message.created_at
            samples.append(delta.total_seconds() * 1000.0)
    return samples


def _later(current: datetime | None, candidate: datetime | None) -> datetime | None:
    if candidate is None:
        return current
    if current is None or candidate > current:
        return candidate
    return current


def aggregate(
    conversations: list[Conversation],
    messages: list[Message],
    *,
    start: datetime,
    end: datetime,
    channel: Channel | None = None,
) -> Metrics:
    """Compute metrics from already-loaded rows (no I/O)."""
    by_channel: dict[Channel, ChannelMetrics] = {}

    def bucket(ch: Channel) -> ChannelMetrics:
        if ch not in by_channel:
            by_channel[ch] = ChannelMetrics(channel=ch)
        return by_channel[ch]

    conversation_channels: dict[str, Channel] = {}
    for conversation in conversations:
        if channel is not None and conversation.channel != channel:
            continue
        conversation_channels[conversation.id] = conversation.channel
        metrics = bucket(conversation.channel)
        metrics.total_conversations += 1
        metrics.unread_count += conversation.unread_count
        metrics.last_message_at = _later(metrics.last_message_at, conversation.last_message_at)

    per_conversation: dict[str, list[Message]] = defaultdict(list)
    for message in messages:
        if not (start <= message.created_at <= end):
            continue
        if message.conversation_id not in conversation_channels:
            continue
        per_conversation[message.conversation_id].append(message)

        metrics = bucket(message.channel)
        metrics.total_messages += 1
        if message.direction == Direction.FROM_CONTACT:
            metrics.messages_received += 1
        else:
            metrics.messages_sent += 1
            if message.is_automated_reply:
                metrics.automated_replies += 1
        metrics.last_message_at = _later(metrics.last_message_at, message.created_at)

    for conversation_id, conversation_messages in per_conversation.items():
        samples = response_samples_ms(conversation_messages)
        if samples:
            bucket(conversation_channels[conversation_id]).response_samples.extend(samples)

    ordered = [
        by_channel[ch] for ch in Channel if ch in by_channel and not by_channel[ch].is_empty
    ]
    return Metrics(start=start, end=end, channels=ordered)


def compute_metrics(
    store: MessageStore,
    account_id: str,
    channel: Channel | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Metrics:
    """Per-channel metrics for an account over [start, end].

    Defaults to the last DEFAULT_WINDOW_DAYS days ending now. Both bounds are
    inclusive. Read-only.
    """
    end = end or utc_now()
    start = start or (end - timedelta(days=DEFAULT_WINDOW_DAYS))
    if start > end:
        raise ValueError("start must not be after end")

    conversations = store.list_conversations(account_id, channel)
    messages = store.list_messages(account_id, start, end)
    metrics = aggregate(conversations, messages, start=start, end=end, channel=channel)

    logger.info(
        "metrics computed",
        extra={
            "extra_fields": {
                "channel": channel.value if channel else None,
                "conversations": metrics.total_conversations,
                "messages": metrics.total_messages,
                "samples": metrics.sample_count,
            }
        },
    )
    return metrics
