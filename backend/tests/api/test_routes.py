import json
from types import SimpleNamespace

import jwt
import pytest
from fastapi.testclient import TestClient

from budgee.api import admin as admin_api
from budgee.api import plaid as plaid_api
from budgee.config import settings
from budgee.database.models import Transaction
from budgee.main import app
from budgee.services.webhook_verifier import WebhookVerificationError

from conftest import TEST_ACCOUNTS, make_transaction


def auth(user_id="user-1", **claims):
    token = jwt.encode({"sub": user_id, **claims}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db_engine, cache):
    return TestClient(app)


@pytest.fixture
def queued(monkeypatch):
    jobs = []

    def fake_enqueue(item_id, trigger="manual", user_id=None):
        jobs.append({"item_id": item_id, "trigger": trigger, "user_id": user_id})
        return SimpleNamespace(id=f"job-{len(jobs)}")

    monkeypatch.setattr(plaid_api, "enqueue_plaid_sync_job", fake_enqueue)
    return jobs


@pytest.fixture
def stored_transaction(session, gateway, item):
    gateway.save_transactions(item, [make_transaction("T1", amount=42.0, merchant_name="Blue Bottle Coffee")])
    gateway.commit()
    return session.query(Transaction).filter(Transaction.transaction_id == "T1").one()


class FakePlaid:
    def __init__(self, plaid_item_id="plaid-item-9"):
        self.plaid_item_id = plaid_item_id
        self.removed = []

    def _is_enabled(self):
        return True

    def create_link_token(self, user_id):
        return {"link_token": f"link-sandbox-{user_id}", "expiration": "2024-01-01T00:00:00"}

    def exchange_public_token(self, public_token):
        return {"access_token": "access-sandbox-9", "item_id": self.plaid_item_id}

    def get_item_metadata(self, access_token):
        return {"institution_id": "ins_9", "institution_name": "Tattersall Federal"}

    def get_accounts(self, access_token):
        return {"accounts": TEST_ACCOUNTS}

    def remove_item(self, access_token):
        self.removed.append(access_token)
        return True


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_requests_without_token_are_rejected(client, user):
    assert client.get("/api/plaid/items").status_code == 401
    assert client.get("/api/plaid/items", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.get("/api/plaid/items", headers=auth("ghost")).status_code == 401


def test_link_token(client, user, monkeypatch):
    monkeypatch.setattr(plaid_api, "plaid_client", FakePlaid())
    response = client.post("/api/plaid/link-token", headers=auth())
    assert response.status_code == 200
    assert response.json()["link_token"] == "link-sandbox-user-1"


def test_link_token_requires_plaid_configuration(client, user):
    assert client.post("/api/plaid/link-token", headers=auth()).status_code == 503


def test_exchange_token_stores_item_and_queues_sync(client, user, queued, monkeypatch):
    monkeypatch.setattr(plaid_api, "plaid_client", FakePlaid())

    response = client.post("/api/plaid/exchange-token", json={"public_token": "public-1"}, headers=auth())

    assert response.status_code == 201
    body = response.json()
    assert body["institution_name"] == "Tattersall Federal"
    assert body["accounts_saved"] == 3
    assert body["job_id"] == "job-1"
    assert queued == [{"item_id": body["id"], "trigger": "link", "user_id": "user-1"}]

    items = client.get("/api/plaid/items", headers=auth()).json()
    assert [entry["item_id"] for entry in items] == ["plaid-item-9"]
    assert "access_token" not in items[0]


def test_exchange_token_for_item_of_another_user_conflicts(client, item, other_user, queued, monkeypatch):
    monkeypatch.setattr(plaid_api, "plaid_client", FakePlaid(plaid_item_id="plaid-item-1"))
    response = client.post("/api/plaid/exchange-token", json={"public_token": "p"}, headers=auth("user-2"))
    assert response.status_code == 409
    assert queued == []


def test_item_accounts_are_owner_only(client, item, other_user):
    mine = client.get(f"/api/plaid/items/{item.id}/accounts", headers=auth())
    assert mine.status_code == 200
    assert {acc["account_id"] for acc in mine.json()} == {"acc-checking", "acc-card", "acc-brokerage"}
    assert client.get(f"/api/plaid/items/{item.id}/accounts", headers=auth("user-2")).status_code == 404


def test_unlink_item(client, item, monkeypatch):
    fake = FakePlaid()
    monkeypatch.setattr(plaid_api, "plaid_client", fake)

    assert client.delete(f"/api/plaid/items/{item.id}", headers=auth()).status_code == 204
    assert fake.removed == ["access-sandbox-1"]
    assert client.get("/api/plaid/items", headers=auth()).json() == []


def test_manual_sync_is_queued(client, item, other_user, queued):
    response = client.post(f"/api/plaid/sync/{item.id}", headers=auth())
    assert response.status_code == 202
    assert response.json() == {"job_id": "job-1", "status": "queued"}
    assert queued[0]["trigger"] == "manual"

    assert client.post(f"/api/plaid/sync/{item.id}", headers=auth("user-2")).status_code == 404


def test_sync_status_is_owner_only(client, user, other_user, monkeypatch):
    monkeypatch.setattr(
        plaid_api, "get_job_info",
        lambda job_id: {"job_id": job_id, "status": "finished", "meta": {"user_id": "user-1"}},
    )
    assert client.get("/api/plaid/sync-status/job-1", headers=auth()).json()["status"] == "finished"
    assert client.get("/api/plaid/sync-status/job-1", headers=auth("user-2")).status_code == 403

    def missing(job_id):
        raise LookupError(job_id)

    monkeypatch.setattr(plaid_api, "get_job_info", missing)
    assert client.get("/api/plaid/sync-status/job-9", headers=auth()).status_code == 404


class StubVerifier:
    def __init__(self, accept=True):
        self.accept = accept
        self.bodies = []

    def verify(self, body, signed_jwt):
        self.bodies.append((body, signed_jwt))
        if not self.accept:
            raise WebhookVerificationError("bad signature")
        return {}


def _webhook(client, payload, header="signed"):
    return client.post(
        "/api/plaid/webhook",
        content=payload if isinstance(payload, bytes) else json.dumps(payload).encode(),
        headers={"Plaid-Verification": header, "Content-Type": "application/json"},
    )


def test_webhook_queues_sync_for_known_item(client, item, queued, monkeypatch):
    verifier = StubVerifier()
    monkeypatch.setattr(plaid_api, "webhook_verifier", verifier)

    response = _webhook(client, {
        "webhook_type": "TRANSACTIONS",
        "webhook_code": "SYNC_UPDATES_AVAILABLE",
        "item_id": "plaid-item-1",
    })

    assert response.status_code == 200
    assert response.json() == {"received": True, "job_id": "job-1"}
    assert queued == [{"item_id": item.id, "trigger": "webhook", "user_id": "user-1"}]
    assert verifier.bodies[0][1] == "signed"


def test_webhook_ignores_other_codes_and_unknown_items(client, item, queued, monkeypatch):
    monkeypatch.setattr(plaid_api, "webhook_verifier", StubVerifier())

    assert _webhook(client, {"webhook_type": "ITEM", "webhook_code": "ERROR", "item_id": "plaid-item-1"}).json() == {
        "received": True, "job_id": None,
    }
    assert _webhook(client, {
        "webhook_type": "TRANSACTIONS", "webhook_code": "SYNC_UPDATES_AVAILABLE", "item_id": "unknown",
    }).status_code == 200
    assert queued == []


def test_webhook_with_bad_signature_is_rejected(client, item, queued, monkeypatch):
    monkeypatch.setattr(plaid_api, "webhook_verifier", StubVerifier(accept=False))
    response = _webhook(client, {"webhook_type": "TRANSACTIONS", "webhook_code": "SYNC_UPDATES_AVAILABLE"})
    assert response.status_code == 401
    assert queued == []


def test_webhook_body_must_be_json(client, db_engine, monkeypatch):
    monkeypatch.setattr(plaid_api, "webhook_verifier", StubVerifier())
    assert _webhook(client, b"not json").status_code == 400


def test_account_transactions_are_owner_only(client, stored_transaction, other_user):
    account_id = stored_transaction.account_id
    response = client.get(f"/api/transactions/account/{account_id}", headers=auth())
    assert response.status_code == 200
    assert [txn["transaction_id"] for txn in response.json()] == ["T1"]
    assert client.get(f"/api/transactions/account/{account_id}", headers=auth("user-2")).status_code == 404


def test_edit_transaction_reclassifies(client, stored_transaction):
    response = client.put(
        f"/api/transactions/{stored_transaction.id}",
        json={"amount": -42.0, "merchant_name": "Refund"},
        headers=auth(),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["merchant_name"] == "Refund"
    assert (body["expense"], body["income"]) == (False, True)

    fetched = client.get(f"/api/transactions/{stored_transaction.id}", headers=auth()).json()
    assert fetched["amount"] == -42.0


def test_recategorize_and_delete_transaction(client, stored_transaction, other_user):
    path = f"/api/transactions/{stored_transaction.id}"
    assert client.post(f"{path}/recategorize", headers=auth()).json()["expense"] is True
    assert client.post(f"{path}/recategorize", headers=auth("user-2")).status_code == 404
    assert client.delete(path, headers=auth("user-2")).status_code == 404
    assert client.delete(path, headers=auth()).status_code == 204
    assert client.get(path, headers=auth()).status_code == 404


def test_rule_lifecycle_and_apply(client, stored_transaction):
    created = client.post("/api/rules", json={
        "name": "Coffee",
        "conditions": {"field": "merchant_name", "op": "contains", "value": "coffee"},
        "personal_finance_category": "DINING",
    }, headers=auth())
    assert created.status_code == 201
    rule_id = created.json()["id"]

    applied = client.post("/api/rules/apply", headers=auth()).json()
    assert applied["changed"] == 1
    assert client.get(f"/api/transactions/{stored_transaction.id}", headers=auth()).json()["primary_category"] == "DINING"

    renamed = client.put(f"/api/rules/{rule_id}", json={"name": "Cafes"}, headers=auth())
    assert renamed.json()["name"] == "Cafes"
    assert [rule["id"] for rule in client.get("/api/rules", headers=auth()).json()] == [rule_id]
    assert client.delete(f"/api/rules/{rule_id}", headers=auth()).status_code == 204
    assert client.get(f"/api/rules/{rule_id}", headers=auth()).status_code == 404


def test_malformed_rule_conditions_are_rejected(client, user):
    response = client.post("/api/rules", json={
        "name": "Broken",
        "conditions": {"and": {"field": "name"}},
        "personal_finance_category": "DINING",
    }, headers=auth())
    assert response.status_code == 422
    assert client.get("/api/rules", headers=auth()).json() == []


def test_admin_routes_require_super_admin(client, user):
    assert client.post("/api/admin/recategorize", headers=auth()).status_code == 403
    assert client.post("/api/admin/cache/items/clear", headers=auth(super_admin=False)).status_code == 403


def test_admin_recategorize_and_cache_clear(client, stored_transaction):
    admin = auth(super_admin=True)
    assert client.post("/api/admin/recategorize", headers=admin).json() == {"changed": 0}
    assert client.post("/api/admin/cache/transactions/clear", headers=admin).json() == {"cleared": "transactions"}
    assert client.post("/api/admin/cache/budgets/clear", headers=admin).status_code == 400


def test_admin_daily_sync_is_one_off(client, user, monkeypatch):
    calls = []

    def fake_enqueue(delay=None, reschedule=True):
        calls.append(reschedule)
        return SimpleNamespace(id="daily-1")

    monkeypatch.setattr(admin_api, "enqueue_daily_sync_job", fake_enqueue)
    response = client.post("/api/admin/daily-sync", headers=auth(super_admin=True))
    assert response.status_code == 202
    assert response.json() == {"job_id": "daily-1", "status": "queued"}
    assert calls == [False]
