"""PgMessageStore against a migrated PostgreSQL database.

Run `alembic upgrade head` against DATABASE_URL first.
"""

import os
import uuid

import pytest

from inboxly.channels.models import InboundEvent
from inboxly.domain.errors import DuplicateEvent
from inboxly.domain.identity import resolve
from inboxly.domain.ingestion import ingest_event
from inboxly.domain.models import Channel, DeliveryStatus, Direction, MessageType, NewMessage

from .helpers import at

DATABASE_URL = os.environ.get("DATABASE_URL")

pytestmark = pytest.mark.skipif(
    not DATABASE_URL,
    reason="DATABASE_URL not set - skipping PostgreSQL store tests",
)


@pytest.fixture
def pg_store():
    from inboxly.infra.store import PgMessageStore

    return PgMessageStore()


@pytest.fixture
def account_id() -> str:
    return f"acct-{uuid.uuid4()}"


def _event(phone: str, provider_message_id: str | None = "wamid.pg.1", seconds: float = 0):
    return InboundEvent(
        channel=Channel.WHATSAPP,
        source="zapi",
        page_id="INST-PG",
        sender_id=phone,
        legacy_display_id=phone,
        content="Oi",
        message_type=MessageType.TEXT,
        timestamp=at(seconds),
        provider_message_id=provider_message_id,
    )


def test_inbound_is_idempotent(pg_store, account_id):
    first = ingest_event(pg_store, account_id, _event("5511900000001"))

    with pytest.raises(DuplicateEvent):
        ingest_event(pg_store, account_id, _event("5511900000001"))

    conversation = pg_store.get_conversation(first.conversation.id)
    assert conversation.unread_count == 1
    assert conversation.last_message_at == at(0)


def test_create_is_insert_or_fetch(pg_store, account_id):
    first = resolve(pg_store, account_id, Channel.INSTAGRAM, "IGSID_PG", "ig_IGSID_PG", None)
    second = resolve(pg_store, account_id, Channel.INSTAGRAM, "IGSID_PG", "ig_IGSID_PG", None)

    assert first.created is True
    assert second.created is False
    assert second.conversation.id == first.conversation.id


def test_backfill_only_once(pg_store, account_id):
    created = resolve(pg_store, account_id, Channel.WHATSAPP, None, "5511900000002", None)

    assert pg_store.backfill_native_id(created.conversation.id, "5511900000002") is True
    assert pg_store.backfill_native_id(created.conversation.id, "other") is False
    assert pg_store.get_conversation(created.conversation.id).channel_native_id == "5511900000002"


def test_status_only_moves_forward(pg_store, account_id):
    conversation = resolve(pg_store, account_id, Channel.WHATSAPP, None, "5511900000003", None).conversation
    pg_store.record_outbound(
        NewMessage(
            conversation_id=conversation.id,
            account_id=account_id,
            direction=Direction.FROM_ACCOUNT,
            type=MessageType.TEXT,
            content="Olá!",
            status=DeliveryStatus.SENT,
            channel=Channel.WHATSAPP,
            created_at=at(5),
            provider_message_id="OUT-PG-1",
        )
    )

    assert pg_store.advance_status(account_id, "OUT-PG-1", DeliveryStatus.READ) == 1
    assert pg_store.advance_status(account_id, "OUT-PG-1", DeliveryStatus.DELIVERED) == 0

    messages = pg_store.list_messages(account_id, at(0), at(60))
    assert [m.status for m in messages] == [DeliveryStatus.READ]
