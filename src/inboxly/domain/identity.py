"""Identity resolver - map a channel sender to its conversation.

Resolution strategy
───────────────────
Given the identifiers an inbound event carries, first match wins:

  1. Exact (account_id, channel, channel_native_id), when the native id is known.
  1b. Exact (account_id, subscriber_platform_id), when a subscriber id is known.
  2. Exact (account_id, legacy_display_id).
  3. Heuristic: among the account's conversations on the same channel whose
     native id is still unknown, score each by substring containment of the
     display-name hint / alternate handle in the conversation's display name
     or legacy id (see match_score). The best score >= MIN_MATCH_SCORE wins;
     ties go to the most recent last_message_at, then the lowest id. When
     nothing scores and the pool is a single conversation with no identity at
     all, that conversation is taken.
  4. Create (insert-or-fetch, so a lost race re-attaches to the winner).

Step 3 never runs on phone-addressed channels (WhatsApp): there the legacy id
is the phone number itself, so only an exact match may claim a conversation.

Matches from steps 1b-3 backfill the missing identifiers exactly once. If the
native id turns out to be owned by another conversation, that owner wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from inboxly.channels.names import is_placeholder_name
from inboxly.domain.models import Channel, Conversation, NewConversation
from inboxly.observability.logging import get_logger
from inboxly.observability.redaction import hash_identifier

if TYPE_CHECKING:
    from inboxly.channels.models import InboundEvent
    from inboxly.infra.store import MessageStore

logger = get_logger(__name__)

# Minimum fraction of a field a probe must cover to count as a match.
MIN_MATCH_SCORE = 0.5

# Probes shorter than this match too much to be meaningful.
MIN_PROBE_LENGTH = 3

# The legacy id is the delivery address on these channels.
PHONE_ADDRESSED_CHANNELS = frozenset({Channel.WHATSAPP})

MATCHED_BY_NATIVE_ID = "native_id"
MATCHED_BY_SUBSCRIBER_ID = "subscriber_id"
MATCHED_BY_LEGACY_ID = "legacy_id"
MATCHED_BY_HEURISTIC = "heuristic"
MATCHED_BY_SOLE_CANDIDATE = "sole_candidate"
MATCHED_BY_CREATED = "created"


@dataclass(frozen=True)
class Resolution:
    conversation: Conversation
    created: bool
    matched_by: str


def _normalize_token(value: str | None) -> str:
    if not value:
        return ""
    return value.strip().lower().lstrip("@").strip()


def _probes(*values: str | None) -> list[str]:
    probes = []
    for value in values:
        token = _normalize_token(value)
        if len(token) >= MIN_PROBE_LENGTH and token not in probes:
            probes.append(token)
    return probes


def match_score(probes: Iterable[str], conversation: Conversation) -> float:
    """Score a candidate conversation against normalized probes.

    For every (probe, field) pair where the probe is a substring of the field,
    the score is len(probe) / len(field); the result is the maximum over all
    pairs, in [0, 1]. Fields are the display name and the legacy id.
    """
    fields = [
        token
        for token in (
            _normalize_token(conversation.display_name),
            _normalize_token(conversation.legacy_display_id),
        )
        if token
    ]
    best = 0.0
    for probe in probes:
        for field in fields:
            if probe in field:
                best = max(best, len(probe) / len(field))
    return best


def _recency_key(conversation: Conversation) -> float:
    # Missing timestamps sort after every real one.
    at = conversation.last_message_at
    return -at.timestamp() if at is not None else float("inf")


def select_candidate(
    candidates: list[Conversation],
    *,
    display_name_hint: str | None,
    alternate_handle: str | None,
) -> tuple[Conversation, str] | None:
    """Pick the heuristic match among identity-less candidates, if any.

    Returns:
        Tuple of (conversation, matched_by) or None to create a new one.
    """
    probes = _probes(display_name_hint, alternate_handle)

    scored = []
    if probes:
        for candidate in candidates:
            score = match_score(probes, candidate)
            if score >= MIN_MATCH_SCORE:
                scored.append((score, candidate))

    if scored:
        scored.sort(key=lambda pair: (-pair[0], _recency_key(pair[1]), pair[1].id))
        return scored[0][1], MATCHED_BY_HEURISTIC

    if len(candidates) == 1 and not candidates[0].has_identity:
        return candidates[0], MATCHED_BY_SOLE_CANDIDATE

    return None


def _attach_identity(
    store: MessageStore,
    conversation: Conversation,
    *,
    channel_native_id: str | None,
    subscriber_id: str | None,
) -> Conversation:
    """Backfill missing identifiers. Returns the conversation that owns the native id."""
    changed = False

    if channel_native_id and conversation.channel_native_id is None:
        if store.backfill_native_id(conversation.id, channel_native_id):
            changed = True
        else:
            owner = store.find_by_native_id(
                conversation.account_id, conversation.channel, channel_native_id
            )
            if owner is not None and owner.id != conversation.id:
                logger.info(
                    "native id owned by another conversation, using owner",
                    extra={
                        "extra_fields": {
                            "conversation_id": conversation.id,
                            "owner_id": owner.id,
                        }
                    },
                )
                return owner

    if subscriber_id and conversation.subscriber_platform_id is None:
        if store.backfill_subscriber_id(conversation.id, subscriber_id):
            changed = True

    if changed:
        logger.info(
            "identity backfilled",
            extra={"extra_fields": {"conversation_id": conversation.id}},
        )
        return store.get_conversation(conversation.id) or conversation
    return conversation


def _enrich_profile(
    store: MessageStore,
    conversation: Conversation,
    *,
    display_name: str | None,
    profile_image_url: str | None,
) -> Conversation:
    """Replace a placeholder display name and fill a missing profile image."""
    new_name = None
    if display_name and is_placeholder_name(conversation.display_name):
        new_name = display_name
    new_image = None
    if profile_image_url and not conversation.profile_image_url:
        new_image = profile_image_url

    if new_name is None and new_image is None:
        return conversation

    store.update_profile(conversation.id, display_name=new_name, profile_image_url=new_image)
    return store.get_conversation(conversation.id) or conversation


def resolve(
    store: MessageStore,
    account_id: str,
    channel: Channel,
    channel_native_id: str | None,
    legacy_display_id: str,
    display_name_hint: str | None,
    *,
    subscriber_id: str | None = None,
    alternate_handle: str | None = None,
    profile_image_url: str | None = None,
    last_message_at: datetime | None = None,
) -> Resolution:
    """Find or create the conversation for a sender.

    Args:
        store: Message store.
        account_id: Owning account (already resolved by the channel registry).
        channel: Channel the event arrived on.
        channel_native_id: Provider's stable sender id. Empty/None if unknown.
        legacy_display_id: Human-ish identifier (phone digits, ig_<id>, mc_<id>).
        display_name_hint: Sanitized contact name, if any.
        subscriber_id: Subscriber-automation platform id, if any.
        alternate_handle: Secondary handle (e.g. Instagram username), if any.
        profile_image_url: Contact picture URL, if any.
        last_message_at: Timestamp to seed a created conversation with.

    Returns:
        Resolution(conversation, created, matched_by).
    """
    native_id = channel_native_id or None
    display_name = display_name_hint or alternate_handle

    def _found(conversation: Conversation, matched_by: str) -> Resolution:
        conversation = _attach_identity(
            store, conversation, channel_native_id=native_id, subscriber_id=subscriber_id
        )
        conversation = _enrich_profile(
            store,
            conversation,
            display_name=display_name,
            profile_image_url=profile_image_url,
        )
        logger.info(
            "conversation resolved",
            extra={
                "extra_fields": {
                    "conversation_id": conversation.id,
                    "channel": channel.value,
                    "matched_by": matched_by,
                }
            },
        )
        return Resolution(conversation=conversation, created=False, matched_by=matched_by)

    # ── Step 1: exact native id ───────────────────────────────────────────────
    if native_id:
        found = store.find_by_native_id(account_id, channel, native_id)
        if found is not None:
            return _found(found, MATCHED_BY_NATIVE_ID)

    # ── Step 1b: exact subscriber-platform id ─────────────────────────────────
    if subscriber_id:
        found = store.find_by_subscriber_id(account_id, subscriber_id)
        if found is not None:
            return _found(found, MATCHED_BY_SUBSCRIBER_ID)

    # ── Step 2: exact legacy display id ───────────────────────────────────────
    found = store.find_by_legacy_id(account_id, legacy_display_id)
    if found is not None:
        return _found(found, MATCHED_BY_LEGACY_ID)

    # ── Step 3: heuristic over identity-less conversations ────────────────────
    if channel not in PHONE_ADDRESSED_CHANNELS:
        candidates = [
            candidate
            for candidate in store.list_unidentified(account_id, channel)
            if not (
                subscriber_id
                and candidate.subscriber_platform_id
                and candidate.subscriber_platform_id != subscriber_id
            )
        ]
        picked = select_candidate(
            candidates,
            display_name_hint=display_name_hint,
            alternate_handle=alternate_handle,
        )
        if picked is not None:
            return _found(*picked)

    # ── Step 4: create ────────────────────────────────────────────────────────
    conversation, created = store.create_conversation(
        NewConversation(
            account_id=account_id,
            channel=channel,
            legacy_display_id=legacy_display_id,
            channel_native_id=native_id,
            subscriber_platform_id=subscriber_id,
            display_name=display_name,
            profile_image_url=profile_image_url,
            last_message_at=last_message_at,
        )
    )
    if not created:
        return _found(conversation, MATCHED_BY_NATIVE_ID if native_id else MATCHED_BY_LEGACY_ID)

    logger.info(
        "conversation created",
        extra={
            "extra_fields": {
                "conversation_id": conversation.id,
                "channel": channel.value,
                "legacy_hash": hash_identifier(legacy_display_id),
            }
        },
    )
    return Resolution(conversation=conversation, created=True, matched_by=MATCHED_BY_CREATED)


def resolve_event(store: MessageStore, account_id: str, event: InboundEvent) -> Resolution:
    """Resolve the conversation for a normalized inbound event."""
    return resolve(
        store,
        account_id,
        event.channel,
        event.sender_id,
        event.legacy_display_id,
        event.display_name_hint,
        subscriber_id=event.subscriber_id,
        alternate_handle=event.alternate_handle,
        profile_image_url=event.profile_image_url,
        last_message_at=event.timestamp,
    )
