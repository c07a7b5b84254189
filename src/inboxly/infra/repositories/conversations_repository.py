"""Conversations repository - identity lookups and counters.

Uses raw SQL with psycopg2 (no ORM).

Uniqueness is enforced by the schema, not by this module:
  - (account_id, channel, channel_native_id) when the native id is set
  - (account_id, legacy_display_id)
  - (account_id, subscriber_platform_id) when set

Inserts use ON CONFLICT DO NOTHING and re-read the winning row, so two
concurrent first messages from one sender converge on a single conversation.
The caller runs every function inside a transaction (with txn() as cur:).
"""

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from inboxly.domain.models import Channel, Conversation, NewConversation

CONVERSATION_COLUMNS = """
    id, account_id, channel, legacy_display_id, channel_native_id,
    subscriber_platform_id, display_name, profile_image_url,
    last_message_at, unread_count
"""


def row_to_conversation(row: tuple[Any, ...]) -> Conversation:
    """Map a row selected with CONVERSATION_COLUMNS."""
    return Conversation(
        id=str(row[0]),
        account_id=str(row[1]),
        channel=Channel(row[2]),
        legacy_display_id=row[3],
        channel_native_id=row[4],
        subscriber_platform_id=row[5],
        display_name=row[6],
        profile_image_url=row[7],
        last_message_at=row[8],
        unread_count=row[9] or 0,
    )


def _fetch_one(cur: PgCursor, where: str, params: tuple[Any, ...]) -> Conversation | None:
    cur.execute(f"SELECT {CONVERSATION_COLUMNS} FROM conversations WHERE {where}", params)
    row = cur.fetchone()
    return row_to_conversation(row) if row else None


def get_conversation(cur: PgCursor, conversation_id: str) -> Conversation | None:
    return _fetch_one(cur, "id = %s", (conversation_id,))


def find_by_native_id(
    cur: PgCursor, *, account_id: str, channel: Channel, channel_native_id: str
) -> Conversation | None:
    return _fetch_one(
        cur,
        "account_id = %s AND channel = %s AND channel_native_id = %s",
        (account_id, channel.value, channel_native_id),
    )


def find_by_subscriber_id(
    cur: PgCursor, *, account_id: str, subscriber_platform_id: str
) -> Conversation | None:
    return _fetch_one(
        cur,
        "account_id = %s AND subscriber_platform_id = %s",
        (account_id, subscriber_platform_id),
    )


def find_by_legacy_id(
    cur: PgCursor, *, account_id: str, legacy_display_id: str
) -> Conversation | None:
    return _fetch_one(
        cur,
        "account_id = %s AND legacy_display_id = %s",
        (account_id, legacy_display_id),
    )


def list_without_native_id(
    cur: PgCursor, *, account_id: str, channel: Channel
) -> list[Conversation]:
    """Heuristic candidates: same account and channel, native id still unknown."""
    cur.execute(
        f"""
        SELECT {CONVERSATION_COLUMNS} FROM conversations
        WHERE account_id = %s AND channel = %s AND channel_native_id IS NULL
        ORDER BY last_message_at DESC NULLS LAST, id
        """,
        (account_id, channel.value),
    )
    return [row_to_conversation(row) for row in cur.fetchall()]


def list_conversations(
    cur: PgCursor, *, account_id: str, channel: Channel | None = None
) -> list[Conversation]:
    if channel is None:
        cur.execute(
            f"SELECT {CONVERSATION_COLUMNS} FROM conversations WHERE account_id = %s ORDER BY id",
            (account_id,),
        )
    else:
        cur.execute(
            f"""
            SELECT {CONVERSATION_COLUMNS} FROM conversations
            WHERE account_id = %s AND channel = %s
            ORDER BY id
            """,
            (account_id, channel.value),
        )
    return [row_to_conversation(row) for row in cur.fetchall()]


def insert_conversation(cur: PgCursor, new: NewConversation) -> Conversation | None:
    """Insert a conversation.

    Returns:
        The created conversation, or None when a unique index rejected the
        row (a concurrent insert won). The caller then re-reads the winner.
    """
    cur.execute(
        f"""
        INSERT INTO conversations (
            account_id, channel, legacy_display_id, channel_native_id,
            subscriber_platform_id, display_name, profile_image_url,
            last_message_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT DO NOTHING
        RETURNING {CONVERSATION_COLUMNS}
        """,
        (
            new.account_id,
            new.channel.value,
            new.legacy_display_id,
            new.channel_native_id,
            new.subscriber_platform_id,
            new.display_name,
            new.profile_image_url,
            new.last_message_at,
        ),
    )
    row = cur.fetchone()
    return row_to_conversation(row) if row else None


def backfill_native_id(cur: PgCursor, conversation_id: str, channel_native_id: str) -> bool:
    """Set the native id if still NULL. Returns True if the row changed."""
    cur.execute(
        """
        UPDATE conversations
        SET channel_native_id = %s, updated_at = now()
        WHERE id = %s AND channel_native_id IS NULL
        """,
        (channel_native_id, conversation_id),
    )
    return cur.rowcount > 0


def backfill_subscriber_id(
    cur: PgCursor, conversation_id: str, subscriber_platform_id: str
) -> bool:
    """Set the subscriber-platform id if still NULL. Returns True if the row changed."""
    cur.execute(
        """
        UPDATE conversations
        SET subscriber_platform_id = %s, updated_at = now()
        WHERE id = %s AND subscriber_platform_id IS NULL
        """,
        (subscriber_platform_id, conversation_id),
    )
    return cur.rowcount > 0


def update_profile(
    cur: PgCursor,
    conversation_id: str,
    *,
    display_name: str | None = None,
    profile_image_url: str | None = None,
) -> None:
    cur.execute(
        """
        UPDATE conversations
        SET display_name      = COALESCE(%s, display_name),
            profile_image_url = COALESCE(%s, profile_image_url),
            updated_at        = now()
        WHERE id = %s
        """,
        (display_name, profile_image_url, conversation_id),
    )


def touch_inbound(cur: PgCursor, conversation_id: str, at: datetime) -> None:
    """Bump last_message_at and increment the unread counter atomically."""
    cur.execute(
        """
        UPDATE conversations
        SET unread_count    = unread_count + 1,
            last_message_at = GREATEST(COALESCE(last_message_at, %s), %s),
            updated_at      = now()
        WHERE id = %s
        """,
        (at, at, conversation_id),
    )


def touch_outbound(cur: PgCursor, conversation_id: str, at: datetime) -> None:
    """Bump last_message_at without touching the unread counter."""
    cur.execute(
        """
        UPDATE conversations
        SET last_message_at = GREATEST(COALESCE(last_message_at, %s), %s),
            updated_at      = now()
        WHERE id = %s
        """,
        (at, at, conversation_id),
    )


def reset_unread(cur: PgCursor, conversation_id: str) -> bool:
    cur.execute(
        """
        UPDATE conversations
        SET unread_count = 0, updated_at = now()
        WHERE id = %s
        """,
        (conversation_id,),
    )
    return cur.rowcount > 0
