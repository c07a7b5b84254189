"""Messages repository - append-only message log with forward-only status.

Uses raw SQL with psycopg2 (no ORM).
"""

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from inboxly.domain.models import (
    Channel,
    DeliveryStatus,
    Direction,
    Message,
    MessageType,
    NewMessage,
)

MESSAGE_COLUMNS = """
    id, conversation_id, account_id, direction, type, content, status,
    channel, created_at, provider_message_id, attachment_url,
    is_automated_reply
"""


def row_to_message(row: tuple[Any, ...]) -> Message:
    """Map a row selected with MESSAGE_COLUMNS."""
    return Message(
        id=str(row[0]),
        conversation_id=str(row[1]),
        account_id=str(row[2]),
        direction=Direction(row[3]),
        type=MessageType(row[4]),
        content=row[5],
        status=DeliveryStatus(row[6]),
        channel=Channel(row[7]),
        created_at=row[8],
        provider_message_id=row[9],
        attachment_url=row[10],
        is_automated_reply=bool(row[11]),
    )


def _params(new: NewMessage) -> tuple[Any, ...]:
    return (
        new.conversation_id,
        new.account_id,
        new.direction.value,
        new.type.value,
        new.content,
        new.status.value,
        new.channel.value,
        new.created_at,
        new.provider_message_id,
        new.attachment_url,
        new.is_automated_reply,
    )


def insert_inbound(cur: PgCursor, new: NewMessage) -> Message | None:
    """Insert an inbound message, idempotent on the provider message id.

    Returns:
        The inserted message, or None if the same provider id was already
        recorded for this conversation.
    """
    cur.execute(
        f"""
        INSERT INTO messages (
            conversation_id, account_id, direction, type, content, status,
            channel, created_at, provider_message_id, attachment_url,
            is_automated_reply
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (conversation_id, provider_message_id)
        WHERE direction = 'from-contact' AND provider_message_id IS NOT NULL
        DO NOTHING
        RETURNING {MESSAGE_COLUMNS}
        """,
        _params(new),
    )
    row = cur.fetchone()
    return row_to_message(row) if row else None


def insert_outbound(cur: PgCursor, new: NewMessage) -> Message:
    cur.execute(
        f"""
        INSERT INTO messages (
            conversation_id, account_id, direction, type, content, status,
            channel, created_at, provider_message_id, attachment_url,
            is_automated_reply
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING {MESSAGE_COLUMNS}
        """,
        _params(new),
    )
    return row_to_message(cur.fetchone())


def find_recent_inbound(
    cur: PgCursor,
    *,
    conversation_id: str,
    content: str,
    at: datetime,
    window_seconds: int,
) -> Message | None:
    """Find an inbound message with the same content within +/- window_seconds of ``at``."""
    cur.execute(
        f"""
        SELECT {MESSAGE_COLUMNS} FROM messages
        WHERE conversation_id = %s
          AND direction = 'from-contact'
          AND content = %s
          AND created_at BETWEEN %s - make_interval(secs => %s)
                             AND %s + make_interval(secs => %s)
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (conversation_id, content, at, window_seconds, at, window_seconds),
    )
    row = cur.fetchone()
    return row_to_message(row) if row else None


def advance_status(
    cur: PgCursor,
    *,
    account_id: str,
    provider_message_id: str,
    status: DeliveryStatus,
    from_statuses: list[DeliveryStatus],
) -> int:
    """Move outbound messages forward to ``status``.

    Only rows currently in one of ``from_statuses`` change, so stale or
    out-of-order callbacks are no-ops.

    Returns:
        Number of rows updated.
    """
    if not from_statuses:
        return 0
    cur.execute(
        """
        UPDATE messages
        SET status = %s
        WHERE account_id = %s
          AND provider_message_id = %s
          AND direction = 'from-account'
          AND status = ANY(%s)
        """,
        (status.value, account_id, provider_message_id, [s.value for s in from_statuses]),
    )
    return cur.rowcount


def list_messages(
    cur: PgCursor, *, account_id: str, start: datetime, end: datetime
) -> list[Message]:
    """Messages for an account with start <= created_at <= end, oldest first."""
    cur.execute(
        f"""
        SELECT {MESSAGE_COLUMNS} FROM messages
        WHERE account_id = %s AND created_at >= %s AND created_at <= %s
        ORDER BY created_at, id
        """,
        (account_id, start, end),
    )
    return [row_to_message(row) for row in cur.fetchall()]
