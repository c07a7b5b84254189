"""End-to-end: inbound message, reply, metrics."""

import os
from unittest.mock import MagicMock, patch

from inboxly.domain.analytics import compute_metrics
from inboxly.domain.delivery import send
from inboxly.domain.ingestion import ingest_payload
from inboxly.domain.models import Channel, Direction, OutboundContent
from inboxly.transports.base import TransportReceipt

from .helpers import at

ACCOUNT = "acct-1"


def test_inbound_reply_and_metrics(store):
    payload = {
        "type": "ReceivedCallback",
        "instanceId": "INST-1",
        "messageId": "3EB0IN",
        "phone": "5511987654321",
        "momment": 1772366400000,
        "senderName": "Maria",
        "text": {"message": "Oi"},
    }

    with patch.dict(os.environ, {"PHONE_COUNTRY_CODE": "55"}):
        summary = ingest_payload(store, "zapi", payload, lambda channel, page_id: ACCOUNT)

    conversation = summary.ingested[0].conversation
    assert conversation.channel == Channel.WHATSAPP
    assert store.get_conversation(conversation.id).unread_count == 1
    assert store.get_conversation(conversation.id).display_name == "Maria"

    zapi = MagicMock(return_value=TransportReceipt("zapi", "3EB0OUT", 200))
    with patch("inboxly.domain.delivery.utc_now", return_value=at(15)):
        result = send(store, conversation.id, OutboundContent(text="Olá!"), transports={"zapi": zapi})

    assert result.recorded is True
    messages = store.messages_for(conversation.id)
    assert [m.direction for m in messages] == [Direction.FROM_CONTACT, Direction.FROM_ACCOUNT]
    assert store.get_conversation(conversation.id).unread_count == 1

    metrics = compute_metrics(store, ACCOUNT, start=at(-3600), end=at(3600))

    assert metrics.total_conversations == 1
    assert metrics.total_messages == 2
    assert metrics.sample_count == 1
    assert metrics.avg_response_time_ms == 15000.0
