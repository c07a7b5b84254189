"""Tests for the provider webhook routes."""

import hashlib
import hmac
import json
import os
from unittest.mock import patch

import psycopg2
import pytest
from fastapi.testclient import TestClient

from inboxly.api.deps import get_account_lookup, get_store
from inboxly.api.factory import create_app
from inboxly.domain.errors import NoOwningAccount, StorePersistenceFailure

ACCOUNT = "acct-1"


def _lookup(channel, page_id):
    if page_id == "UNKNOWN":
        raise NoOwningAccount(channel.value, page_id)
    return ACCOUNT


@pytest.fixture
def client(store):
    app = create_app(role="webhooks")
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_account_lookup] = lambda: _lookup
    with patch.dict(os.environ, {"PHONE_COUNTRY_CODE": "55"}):
        yield TestClient(app)


def _zapi(**overrides) -> dict:
    payload = {
        "type": "ReceivedCallback",
        "instanceId": "INST-1",
        "messageId": "3EB0A",
        "phone": "5511987654321",
        "momment": 1772366400000,
        "text": {"message": "Oi"},
    }
    payload.update(overrides)
    return payload


def _meta(mid: str = "m_1", page_id: str = "PAGE-1") -> dict:
    return {
        "object": "instagram",
        "entry": [
            {
                "id": page_id,
                "messaging": [
                    {
                        "sender": {"id": "IGSID_1"},
                        "recipient": {"id": page_id},
                        "timestamp": 1772366400000,
                        "message": {"mid": mid, "text": "Oi"},
                    }
                ],
            }
        ],
    }


class TestZapiWebhook:
    def test_processed(self, client, store):
        response = client.post("/webhooks/zapi", json=_zapi())

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "processed"
        assert data["conversation_id"] in store.conversations
        assert len(store.messages) == 1

    def test_replay_is_duplicate(self, client, store):
        client.post("/webhooks/zapi", json=_zapi())
        response = client.post("/webhooks/zapi", json=_zapi())

        assert response.status_code == 200
        assert response.json() == {"status": "duplicate"}
        assert len(store.messages) == 1

    def test_from_me_ignored(self, client, store):
        response = client.post("/webhooks/zapi", json=_zapi(fromMe=True))

        assert response.json() == {"status": "ignored"}
        assert store.messages == []

    def test_unowned_instance_ignored(self, client, store):
        response = client.post("/webhooks/zapi", json=_zapi(instanceId="UNKNOWN"))

        assert response.status_code == 200
        assert response.json() == {"status": "ignored"}
        assert store.conversations == {}

    def test_missing_phone_is_400(self, client):
        payload = _zapi()
        del payload["phone"]

        response = client.post("/webhooks/zapi", json=payload)

        assert response.status_code == 400

    def test_invalid_json_is_400(self, client):
        response = client.post(
            "/webhooks/zapi", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_store_failure_is_500(self, client, store):
        with patch.object(store, "record_inbound", side_effect=StorePersistenceFailure("record_inbound")):
            response = client.post("/webhooks/zapi", json=_zapi())

        assert response.status_code == 500


class TestManyChatWebhook:
    def _payload(self, **overrides) -> dict:
        payload = {
            "subscriber_id": "123456789",
            "page_id": "PAGE-1",
            "channel": "instagram",
            "name": "Maria Silva",
            "message": "Oi",
            "message_id": "mc-in-1",
        }
        payload.update(overrides)
        return payload

    def test_processed(self, client, store):
        response = client.post("/webhooks/manychat", json=self._payload())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "processed"
        assert data["matched_by"] == "created"
        conversation = store.get_conversation(data["conversation_id"])
        assert conversation.subscriber_platform_id == "123456789"
        assert conversation.legacy_display_id == "mc_123456789"

    def test_duplicate(self, client):
        client.post("/webhooks/manychat", json=self._payload())
        response = client.post("/webhooks/manychat", json=self._payload())

        assert response.json() == {"success": True, "status": "duplicate"}

    def test_missing_subscriber_is_400(self, client):
        response = client.post("/webhooks/manychat", json=self._payload(subscriber_id=""))
        assert response.status_code == 400


class TestMetaWebhook:
    def test_handshake(self, client):
        with patch.dict(os.environ, {"META_VERIFY_TOKEN": "verify-me"}):
            ok = client.get(
                "/webhooks/meta",
                params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "42"},
            )
            refused = client.get(
                "/webhooks/meta",
                params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "42"},
            )

        assert ok.status_code == 200
        assert ok.text == "42"
        assert refused.status_code == 403

    def test_message_ingested(self, client, store):
        with patch.dict(os.environ, {"META_APP_SECRET": ""}):
            response = client.post("/webhooks/meta", json=_meta())

        assert response.status_code == 200
        assert response.text == "ok"
        assert len(store.messages) == 1

    def test_replay_answers_duplicate(self, client, store):
        with patch.dict(os.environ, {"META_APP_SECRET": ""}):
            client.post("/webhooks/meta", json=_meta())
            response = client.post("/webhooks/meta", json=_meta())

        assert response.status_code == 200
        assert response.text == "duplicate"
        assert len(store.messages) == 1

    def test_malformed_still_200(self, client, store):
        with patch.dict(os.environ, {"META_APP_SECRET": ""}):
            response = client.post("/webhooks/meta", json={"object": "unknown"})

        assert response.status_code == 200
        assert store.messages == []

    def test_signature_enforced_when_secret_set(self, client, store):
        body = json.dumps(_meta()).encode()
        signature = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()

        with patch.dict(os.environ, {"META_APP_SECRET": "app-secret"}):
            bad = client.post(
                "/webhooks/meta",
                content=body,
                headers={"Content-Type": "application/json", "X-Hub-Signature-256": "sha256=00"},
            )
            assert store.messages == []
            good = client.post(
                "/webhooks/meta",
                content=body,
                headers={"Content-Type": "application/json", "X-Hub-Signature-256": signature},
            )

        assert bad.status_code == 200
        assert good.status_code == 200
        assert len(store.messages) == 1

    def test_database_error_still_200(self, client, store):
        with patch.dict(os.environ, {"META_APP_SECRET": ""}), \
             patch.object(store, "find_by_native_id", side_effect=psycopg2.OperationalError("down")):
            response = client.post("/webhooks/meta", json=_meta())

        assert response.status_code == 200
        assert response.text == "ok"
        assert store.messages == []

    def test_registry_unavailable_still_200(self, client, store):
        def _broken_lookup(channel, page_id):
            raise RuntimeError("DATABASE_URL environment variable not set")

        client.app.dependency_overrides[get_account_lookup] = lambda: _broken_lookup
        with patch.dict(os.environ, {"META_APP_SECRET": ""}):
            response = client.post("/webhooks/meta", json=_meta())

        assert response.status_code == 200
        assert store.messages == []
