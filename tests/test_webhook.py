"""Tests for the webhook application (FastAPI TestClient)"""

import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from config import SyncConfig
from crmsync.cli.runner import SyncRunner
from crmsync.schema.models import TargetRef
from crmsync.webhook import create_app, verify_signature


SECRET = "shared-secret"


@pytest.fixture
def runner(app_config, store, registry):
    runner = SyncRunner(app_config, store, registry)
    runner.import_config("7", {
        "two_way_sync": True,
        "mappings": [{
            "key": "contact",
            "target": {"system": "crm", "module": "Contacts"},
            "fields": [["email", "Email"], ["name", "Last_Name"]],
        }],
    })
    return runner


@pytest.fixture
def client(runner):
    return TestClient(create_app(runner))


@pytest.fixture
def signed_client(runner):
    return TestClient(create_app(runner, SyncConfig(webhook_secret=SECRET)))


def sign(body: bytes) -> str:
    return hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()


def event(**overrides):
    data = {"operation": "create", "module": "Contacts", "id": "900", "Email": "z@b.com", "Last_Name": "Zed"}
    data.update(overrides)
    return json.dumps(data).encode()


class TestWebhook:

    def test_create_event_applied(self, client, runner):
        response = client.post("/sync/webhook", content=event())

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["state"] == "applied"
        link = runner.links.find(TargetRef.crm("Contacts"), "900")
        assert runner.records.get("7", link.record_id).record.fields == {"email": "z@b.com", "name": "Zed"}

    def test_module_key_with_system(self, client, runner):
        runner.import_config("8", {
            "two_way_sync": True,
            "mappings": [{"key": "ticket", "target": {"system": "desk", "module": "tickets"},
                          "fields": [["subject", "Subject"]]}],
        })

        response = client.post("/sync/webhook", content=event(module="desk/tickets", subject="Help"))

        assert response.status_code == 200
        link = runner.links.find(TargetRef.desk("tickets"), "900")
        assert link.source_id == "8"

    def test_unlinked_delete(self, client):
        response = client.post("/sync/webhook", content=event(operation="delete", id="nope"))

        assert response.status_code == 200
        assert response.json()["state"] == "unlinked"

    def test_invalid_json(self, client):
        response = client.post("/sync/webhook", content=b"{not json")
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_missing_id(self, client):
        body = json.dumps({"operation": "update", "module": "Contacts"}).encode()
        assert client.post("/sync/webhook", content=body).status_code == 400

    def test_unknown_system(self, client):
        assert client.post("/sync/webhook", content=event(module="erp/Orders")).status_code == 400

    def test_unsupported_operation(self, client):
        response = client.post("/sync/webhook", content=event(operation="merge"))
        assert response.status_code == 400
        assert response.json()["state"] == "rejected"


class TestSignature:

    def test_valid_signature(self, signed_client):
        body = event()
        response = signed_client.post("/sync/webhook", content=body, headers={"X-Sync-Signature": sign(body)})
        assert response.status_code == 200

    def test_bad_signature(self, signed_client, runner):
        response = signed_client.post("/sync/webhook", content=event(), headers={"X-Sync-Signature": "0" * 64})

        assert response.status_code == 403
        assert response.json()["success"] is False
        assert runner.links.find(TargetRef.crm("Contacts"), "900") is None

    def test_signature_of_other_body(self, signed_client):
        response = signed_client.post(
            "/sync/webhook", content=event(), headers={"X-Sync-Signature": sign(event(id="901"))}
        )
        assert response.status_code == 403

    def test_header_optional_by_default(self, signed_client):
        assert signed_client.post("/sync/webhook", content=event()).status_code == 200

    def test_required_signature(self, runner):
        client = TestClient(create_app(runner, SyncConfig(webhook_secret=SECRET, require_signature=True)))
        assert client.post("/sync/webhook", content=event()).status_code == 403

    def test_verify_signature(self):
        assert verify_signature(b"abc", sign(b"abc").upper(), SECRET)
        assert not verify_signature(b"abc", "zz", SECRET)


class TestManualRun:

    def test_run_returns_counts(self, client, crm_client):
        crm_client.modified["Contacts"] = [{"id": "900", "Email": "z@b.com", "Last_Name": "Zed"}]

        response = client.post("/sync/run/7")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["processed"] == 1
        assert data["created"] == 1

    def test_unknown_source(self, client):
        assert client.post("/sync/run/404").status_code == 404
