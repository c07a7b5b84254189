"""Shared FastAPI dependencies (overridable in tests)."""

from __future__ import annotations

from inboxly.infra.channel_registry import resolve_owning_account
from inboxly.infra.store import MessageStore, PgMessageStore

_store = PgMessageStore()


def get_store() -> MessageStore:
    """Message store for request handlers."""
    return _store


def get_account_lookup():
    """(channel, page_id) -> account_id, failing closed with NoOwningAccount."""
    return resolve_owning_account
