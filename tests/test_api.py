"""
HTTP front door tests.
"""

import pytest
from datetime import timedelta
from fastapi.testclient import TestClient
from unittest.mock import patch

from reddog.api.main import create_app
from reddog.core.errors import TransientStorageError

from conftest import dataset_body


@pytest.fixture
def client(services):
    return TestClient(create_app(services, start_heartbeat=False))


@pytest.fixture
def account(client):
    response = client.post("/accounts", json={"account_id": "u1", "email": "u1@example.com", "name": "Farmer"})
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def approval_id(client):
    response = client.post("/approvals", json=dataset_body())
    assert response.status_code == 201
    return response.json()["approval_id"]


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db_health"] is True
        assert data["billing"]["fail_policy"] == "closed"
        assert data["approvals"]["pending"] == 0
        assert data["approvals"]["unstored"] == 0

    def test_lifespan_starts_and_stops_sweep(self, services):
        with TestClient(create_app(services)) as client:
            assert client.get("/health").status_code == 200
        assert services.heartbeat.running is False


class TestAccountsAndCredits:

    def test_create_account(self, account):
        assert account["balance"] == 1000
        assert account["plan"] == "starter"

    def test_duplicate_account_conflict(self, client, account):
        response = client.post("/accounts", json={"account_id": "u1", "email": "u1@example.com"})
        assert response.status_code == 409
        assert response.json()["error_type"] == "ACCOUNT_EXISTS"

    def test_invalid_plan_rejected(self, client):
        response = client.post("/accounts", json={"account_id": "u2", "email": "u2@example.com", "plan": "gold"})
        assert response.status_code == 422

    def test_get_balance(self, client, account):
        data = client.get("/credits/u1").json()
        assert data["balance"] == 1000
        assert data["status"] == "active"

    def test_balance_missing_account(self, client):
        response = client.get("/credits/ghost")
        assert response.status_code == 404
        assert response.json() == {
            "error_type": "NOT_FOUND",
            "message": "Account not found: ghost",
            "retryable": False,
            "details": {"account_id": "ghost"},
        }

    def test_storage_unavailable_is_retryable(self, client, services):
        with patch.object(services.ledger.store, "get_account", side_effect=TransientStorageError("locked")):
            response = client.get("/credits/u1")
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"
        assert response.json()["retryable"] is True

    def test_check_funds(self, client, account):
        data = client.post("/credits/u1/check", json={"operation": "export_data"}).json()
        assert data["allowed"] is True
        assert data["required"] == 5

        data = client.post("/credits/u1/check", json={"amount": 5000}).json()
        assert data["allowed"] is False
        assert data["reason"] == "insufficient_credits"
        assert data["suggestion"]

    def test_check_funds_needs_operation_or_amount(self, client, account):
        assert client.post("/credits/u1/check", json={}).status_code == 400

    def test_consume(self, client, account):
        response = client.post("/credits/u1/consume", json={"operation": "farm_query", "metadata": {"q": "soil"}})
        assert response.status_code == 200
        assert response.json()["remaining_balance"] == 998
        assert client.get("/credits/u1").json()["balance"] == 998

    def test_consume_insufficient(self, client, account):
        response = client.post("/credits/u1/consume", json={"operation": "api_call", "amount": 1001})
        assert response.status_code == 402
        assert response.json()["details"] == {"required": 1001, "available": 1000}

    def test_consume_inactive(self, client, account):
        assert client.patch("/accounts/u1/status", json={"status": "suspended"}).status_code == 200
        response = client.post("/credits/u1/consume", json={"operation": "api_call"})
        assert response.status_code == 403

    def test_consume_unknown_operation(self, client, account):
        response = client.post("/credits/u1/consume", json={"operation": "teleport"})
        assert response.status_code == 400

    def test_add_credits(self, client, account):
        response = client.post("/credits/u1/add", json={"credits": 250, "source": "stripe_payment"})
        assert response.json()["new_balance"] == 1250

    def test_add_credit_package(self, client, account):
        response = client.post("/credits/u1/add", json={"package_usd": 500})
        assert response.json()["added"] == 650

    def test_add_credits_needs_exactly_one_amount(self, client, account):
        assert client.post("/credits/u1/add", json={}).status_code == 400
        assert client.post("/credits/u1/add", json={"credits": 5, "package_usd": 100}).status_code == 400

    def test_add_credits_missing_account(self, client):
        assert client.post("/credits/ghost/add", json={"credits": 5}).status_code == 404


class TestBilling:

    def test_pricing(self, client):
        data = client.get("/billing/pricing").json()
        assert data["operations"]["farm_query"] == 2

    def test_summary(self, client, account):
        client.post("/credits/u1/consume", json={"operation": "api_call"})
        data = client.get("/billing/u1", params={"limit": 5}).json()

        assert data["account"]["balance"] == 999
        assert [t["amount"] for t in data["transactions"]] == [-1, 1000]

    def test_summary_missing(self, client):
        assert client.get("/billing/ghost").status_code == 404


class TestApprovals:

    def test_enqueue(self, client):
        data = client.post("/approvals", json=dataset_body(recordCount=12)).json()
        assert data["approval_id"].startswith("approval-")
        assert data["record_count"] == 12

    def test_enqueue_validation(self, client):
        body = dataset_body()
        body["provider"] = "  "
        assert client.post("/approvals", json=body).status_code == 422

    def test_list_pending_and_get(self, client, approval_id):
        data = client.get("/approvals/pending", params={"provider": "john-deere"}).json()
        assert data["count"] == 1
        assert data["pending"][0]["approval_id"] == approval_id

        assert client.get("/approvals/pending", params={"data_type": "soil"}).json()["count"] == 0

        view = client.get(f"/approvals/{approval_id}").json()
        assert view["status"] == "pending"
        assert view["record_count"] == 3

    def test_get_unknown(self, client):
        response = client.get("/approvals/approval-nope")
        assert response.status_code == 404
        assert response.json()["error_type"] == "NOT_FOUND"

    def test_approve_then_conflict(self, client, services, approval_id):
        response = client.post(f"/approvals/{approval_id}/approve", json={"actor": "alice"})
        assert response.status_code == 200
        data = response.json()
        assert data["request_id"] == "req-001"
        assert data["location"].startswith("john-deere/field-boundaries/")
        assert services.bridge.messages("data-approval-result")[0]["status"] == "approved"

        again = client.post(f"/approvals/{approval_id}/approve", json={"actor": "alice"})
        assert again.status_code == 409
        assert again.json()["details"]["status"] == "approved"

    def test_deny(self, client, approval_id):
        response = client.post(f"/approvals/{approval_id}/deny", json={"actor": "bob", "reason": "stale"})
        assert response.status_code == 200
        assert response.json()["reason"] == "stale"
        assert client.get(f"/approvals/{approval_id}").json()["status"] == "denied"

    def test_approve_expired(self, client, clock, approval_id):
        clock.advance(hours=25)
        response = client.post(f"/approvals/{approval_id}/approve", json={"actor": "alice"})
        assert response.status_code == 410

    def test_decision_requires_actor(self, client, approval_id):
        assert client.post(f"/approvals/{approval_id}/approve", json={"actor": ""}).status_code == 422

    def test_sweep(self, client, clock, approval_id):
        clock.advance(hours=24)
        data = client.post("/approvals/sweep").json()
        assert data == {"expired": 1, "pending": 0}

    def test_enqueue_rejects_path_unsafe_names(self, client):
        assert client.post("/approvals", json=dataset_body(provider="../../x")).status_code == 422
        assert client.post("/approvals", json=dataset_body(requestId="a/b")).status_code == 422


class TestPayloadStorage:

    def test_failed_store_is_held_then_stored(self, client, services, approval_id):
        with patch.object(services.payload_store, "write", side_effect=OSError("disk full")):
            response = client.post(f"/approvals/{approval_id}/approve", json={"actor": "alice"})
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"
        error = response.json()
        assert error["error_type"] == "PAYLOAD_STORE_FAILED"
        assert error["details"] == {"approval_id": approval_id, "status": "approved", "stored": False}
        assert services.bridge.messages("data-approval-result") == []
        assert client.get("/health").json()["approvals"]["unstored"] == 1

        assert client.post(f"/approvals/{approval_id}/approve", json={"actor": "alice"}).status_code == 409

        stored = client.post(f"/approvals/{approval_id}/store")
        assert stored.status_code == 200
        assert stored.json()["location"].startswith("john-deere/field-boundaries/req-001_")
        assert services.bridge.messages("data-approval-result")[0]["status"] == "approved"
        assert client.get("/health").json()["approvals"]["unstored"] == 0

        assert client.post(f"/approvals/{approval_id}/store").status_code == 404

    def test_list_payloads(self, client, clock, approval_id):
        location = client.post(f"/approvals/{approval_id}/approve", json={"actor": "alice"}).json()["location"]

        data = client.get("/payloads", params={"provider": "john-deere"}).json()
        assert data["count"] == 1
        assert data["payloads"][0]["location"] == location
        assert data["payloads"][0]["request_id"] == "req-001"

        later = (clock.now + timedelta(minutes=1)).isoformat()
        assert client.get("/payloads", params={"since": later}).json()["count"] == 0

    def test_list_payloads_rejects_unsafe_filter(self, client):
        response = client.get("/payloads", params={"provider": "../secrets"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "INVALID_REQUEST"
