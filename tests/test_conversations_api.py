"""Tests for the authenticated send / read / analytics endpoints."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from inboxly.api.deps import get_store
from inboxly.api.factory import create_app
from inboxly.domain.errors import StorePersistenceFailure
from inboxly.domain.models import Channel, Direction, MessageType
from inboxly.transports.base import TransportReceipt

from .helpers import _create_jwks, _create_token, _generate_rsa_keypair, at, oidc_env

ACCOUNT = "acct-1"


@pytest.fixture(scope="module")
def rsa_keypair():
    return _generate_rsa_keypair()


@pytest.fixture
def client(store, rsa_keypair):
    _, public_key = rsa_keypair
    app = create_app(role="api")
    app.dependency_overrides[get_store] = lambda: store
    with patch.dict(os.environ, oidc_env()), \
         patch("inboxly.api.auth._fetch_jwks", return_value=_create_jwks(public_key)):
        yield TestClient(app)


@pytest.fixture
def auth_headers(rsa_keypair):
    private_key, _ = rsa_keypair
    return {"Authorization": f"Bearer {_create_token(private_key)}"}


@pytest.fixture
def conversation(store):
    return store.add_conversation(
        account_id=ACCOUNT,
        channel=Channel.WHATSAPP,
        legacy_display_id="5511987654321",
        channel_native_id="5511987654321",
        unread_count=3,
    )


def _zapi_ok(message_id: str = "3EB0"):
    return patch(
        "inboxly.domain.delivery.zapi.send_message",
        return_value=TransportReceipt("zapi", message_id, 200),
    )


class TestAuth:
    def test_missing_token_is_401(self, client, conversation):
        response = client.post(f"/conversations/{conversation.id}/messages", json={"text": "Olá!"})
        assert response.status_code == 401

    def test_garbage_token_is_401(self, client, conversation):
        response = client.post(
            f"/conversations/{conversation.id}/messages",
            json={"text": "Olá!"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    def test_expired_token_is_401(self, client, conversation, rsa_keypair):
        private_key, _ = rsa_keypair
        token = _create_token(private_key, exp=1)
        response = client.post(
            f"/conversations/{conversation.id}/messages",
            json={"text": "Olá!"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 401

    def test_subject_used_when_account_claim_missing(self, client, store, rsa_keypair):
        private_key, _ = rsa_keypair
        owned = store.add_conversation(
            account_id="user-123", channel=Channel.WHATSAPP, legacy_display_id="5511900000000"
        )
        token = _create_token(private_key, account_id=None)

        response = client.post(
            f"/conversations/{owned.id}/read", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 200


class TestSendMessage:
    def test_sends_and_records(self, client, store, conversation, auth_headers):
        with _zapi_ok():
            response = client.post(
                f"/conversations/{conversation.id}/messages",
                json={"text": "Olá!"},
                headers=auth_headers,
            )

        assert response.status_code == 200
        data = response.json()
        assert data["transport"] == "zapi"
        assert data["provider_message_id"] == "3EB0"
        assert data["recorded"] is True
        assert data["attempts"] == [{"transport": "zapi", "ok": True, "provider_status": 200}]
        assert store.messages[0].direction == Direction.FROM_ACCOUNT
        assert data["message_id"] == store.messages[0].id

    def test_unknown_conversation_is_404(self, client, auth_headers):
        response = client.post("/conversations/nope/messages", json={"text": "Olá!"}, headers=auth_headers)
        assert response.status_code == 404

    def test_other_account_is_404(self, client, store, auth_headers):
        foreign = store.add_conversation(
            account_id="acct-2", channel=Channel.WHATSAPP, legacy_display_id="5511900000000"
        )
        response = client.post(f"/conversations/{foreign.id}/messages", json={"text": "Olá!"}, headers=auth_headers)
        assert response.status_code == 404

    def test_empty_text_is_400(self, client, conversation, auth_headers):
        response = client.post(
            f"/conversations/{conversation.id}/messages", json={"text": " "}, headers=auth_headers
        )
        assert response.status_code == 400

    def test_unknown_field_is_422(self, client, conversation, auth_headers):
        response = client.post(
            f"/conversations/{conversation.id}/messages",
            json={"text": "Olá!", "priority": "high"},
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_delivery_failure_is_500_with_reason(self, client, store, conversation, auth_headers):
        with patch.dict(os.environ, {"ZAPI_INSTANCE_ID": "", "ZAPI_TOKEN": ""}):
            response = client.post(
                f"/conversations/{conversation.id}/messages",
                json={"text": "Olá!"},
                headers=auth_headers,
            )

        assert response.status_code == 500
        assert response.json()["detail"] == "Outbound messaging is not configured for this channel."
        assert store.messages == []

    def test_media_by_url(self, client, store, conversation, auth_headers):
        with _zapi_ok() as zapi_send:
            response = client.post(
                f"/conversations/{conversation.id}/messages",
                json={"type": "image", "url": "https://cdn/a.jpg"},
                headers=auth_headers,
            )

        assert response.status_code == 200
        assert zapi_send.call_args.kwargs["content"].type == MessageType.IMAGE
        assert store.messages[0].content == "[image]"


class TestSendToAddress:
    def test_creates_conversation(self, client, store, auth_headers):
        with _zapi_ok(), patch.dict(os.environ, {"PHONE_COUNTRY_CODE": "55"}):
            response = client.post(
                "/messages",
                json={"phone": "(11) 91234-5678", "text": "Olá!"},
                headers=auth_headers,
            )

        assert response.status_code == 200
        conversation = store.get_conversation(response.json()["conversation_id"])
        assert conversation.account_id == ACCOUNT
        assert conversation.legacy_display_id == "5511912345678"

    def test_empty_phone_is_500_unaddressable(self, client, auth_headers):
        response = client.post("/messages", json={"phone": "", "text": "Olá!"}, headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["detail"] == "The recipient cannot be reached on this channel."


class TestMarkRead:
    def test_resets_unread(self, client, store, conversation, auth_headers):
        response = client.post(f"/conversations/{conversation.id}/read", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"conversation_id": conversation.id, "unread_count": 0}
        assert store.get_conversation(conversation.id).unread_count == 0

    def test_store_failure_is_500(self, client, store, conversation, auth_headers):
        with patch.object(store, "mark_read", side_effect=StorePersistenceFailure("mark_read")):
            response = client.post(f"/conversations/{conversation.id}/read", headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["detail"] == "Conversation could not be updated"

    def test_unknown_conversation_is_404(self, client, auth_headers):
        response = client.post("/conversations/missing/read", headers=auth_headers)
        assert response.status_code == 404


class TestAnalytics:
    def test_metrics(self, client, store, conversation, auth_headers):
        store.add_message(
            conversation_id=conversation.id,
            account_id=ACCOUNT,
            direction=Direction.FROM_CONTACT,
            type=MessageType.TEXT,
            content="Oi",
            channel=Channel.WHATSAPP,
            created_at=at(0),
        )

        response = client.get(
            "/analytics/channels",
            params={"start": at(-60).isoformat(), "end": at(60).isoformat()},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["totals"]["total_messages"] == 1
        assert data["channels"][0]["channel"] == "whatsapp"
        assert data["channels"][0]["unread_count"] == 3

    def test_inverted_range_is_400(self, client, auth_headers):
        response = client.get(
            "/analytics/channels",
            params={"start": at(60).isoformat(), "end": at(0).isoformat()},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_requires_auth(self, client):
        assert client.get("/analytics/channels").status_code == 401
