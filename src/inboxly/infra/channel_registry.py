"""Channel account registry.

Maps (channel, page_id) to the owning account. A page is the recipient
identity a provider reports on inbound events: Meta page / Instagram business
id, Z-API instance id, or ManyChat page id.

Lookups fail closed: an unregistered page raises NoOwningAccount so events are
never attributed to a default account.
"""

from __future__ import annotations

from dataclasses import dataclass

import psycopg2

from inboxly.domain.errors import NoOwningAccount, StorePersistenceFailure
from inboxly.domain.models import Channel

from .db import fetchone, txn


@dataclass(frozen=True)
class ChannelAccount:
    """Registry row for one connected page."""

    account_id: str
    channel: Channel
    page_id: str
    access_token: str | None = None


def resolve_owning_account(channel: Channel, page_id: str | None) -> str:
    """Return the account that owns ``page_id`` on ``channel``.

    Raises:
        NoOwningAccount: If page_id is empty or no active row matches.
        StorePersistenceFailure: The registry could not be read.
    """
    if not page_id:
        raise NoOwningAccount(channel.value, page_id)

    try:
        with txn() as cur:
            row = fetchone(
                cur,
                """
                SELECT account_id FROM channel_accounts
                WHERE channel = %s AND page_id = %s AND is_active
                """,
                (channel.value, page_id),
            )
    except psycopg2.Error as exc:
        raise StorePersistenceFailure("resolve_owning_account") from exc
    if row is None:
        raise NoOwningAccount(channel.value, page_id)
    return str(row[0])


def get_channel_account(account_id: str, channel: Channel) -> ChannelAccount | None:
    """Load the active page registered for an account on a channel."""
    try:
        with txn() as cur:
            row = fetchone(
                cur,
                """
                SELECT account_id, channel, page_id, access_token
                FROM channel_accounts
                WHERE account_id = %s AND channel = %s AND is_active
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (account_id, channel.value),
            )
    except psycopg2.Error as exc:
        raise StorePersistenceFailure("get_channel_account") from exc
    if row is None:
        return None
    return ChannelAccount(
        account_id=str(row[0]),
        channel=Channel(row[1]),
        page_id=row[2],
        access_token=row[3],
    )


def get_page_access_token(account_id: str, channel: Channel) -> str | None:
    """Page access token used for Meta Graph sends, if configured."""
    account = get_channel_account(account_id, channel)
    return account.access_token if account else None
