"""
test_api.py - HTTP surface over the ledger engine
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from profitra.main import create_app
from tests.helpers import fund


@pytest.fixture
def client(settings, database, clock):
    app = create_app(settings, database=database, clock=clock)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def app_engine(client):
    return client.app.state.engine


def _as(account, role="user"):
    return {"X-Account-Id": str(account.id), "X-Account-Role": role}


@pytest.fixture
def user(app_engine):
    return app_engine.open_account(email="bob@example.com", name="Bob")


@pytest.fixture
def boss(app_engine):
    return app_engine.open_account(email="root@example.com", name="Root", is_admin=True)


def test_health_endpoints(client):
    assert client.get("/health").json() == {"status": "ok"}
    ready = client.get("/ready").json()
    assert ready["status"] == "ok"
    assert {c["name"] for c in ready["checks"]} >= {"env:DATABASE_URL", "db:select1"}


def test_deposit_round_trip(client, user, boss):
    r = client.post("/api/deposits", json={"amount": "200", "currency": "USDT"}, headers=_as(user))
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    deposit = body["data"]
    assert deposit["status"] == "pending"
    assert Decimal(deposit["amount"]) == Decimal("200")

    r = client.post(
        f"/api/admin/deposits/{deposit['id']}/resolve",
        json={"status": "approved", "transaction_hash": "0xabc"},
        headers=_as(boss, "admin"),
    )
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "confirmed"

    r = client.post(
        f"/api/admin/deposits/{deposit['id']}/resolve",
        json={"status": "confirmed"},
        headers=_as(boss, "admin"),
    )
    assert r.status_code == 409
    assert r.json()["error"] == "already_processed"

    listed = client.get("/api/deposits", headers=_as(user)).json()["data"]
    assert [d["id"] for d in listed] == [deposit["id"]]


def test_admin_routes_need_admin_role(client, user):
    assert client.get("/api/admin/deposits", headers=_as(user)).status_code == 403
    assert client.get("/api/admin/deposits").status_code == 401


def test_error_mapping(client, user, boss):
    r = client.post("/api/deposits", json={"amount": "10", "currency": "ETH"}, headers=_as(user))
    assert r.status_code == 422
    assert r.json()["error"] == "validation_error"

    r = client.post("/api/withdrawals", json={"amount": "50", "currency": "USDT", "wallet": "T"}, headers=_as(user))
    assert r.status_code == 400
    assert r.json()["error"] == "insufficient_funds"

    r = client.post("/api/admin/withdrawals/404/resolve", json={"status": "rejected"}, headers=_as(boss, "admin"))
    assert r.status_code == 404


def test_investment_flow(client, app_engine, clock, user, boss):
    fund(app_engine, user.id, 1000, boss.id)
    r = client.post(
        "/api/admin/plans",
        json={"name": "Starter", "min_amount": "100", "max_amount": "10000", "roi": "10", "duration_hours": 1},
        headers=_as(boss, "admin"),
    )
    assert r.status_code == 201
    plan_id = r.json()["data"]["id"]

    assert [p["name"] for p in client.get("/api/plans").json()["data"]] == ["Starter"]

    r = client.post("/api/investments", json={"plan_id": plan_id, "amount": "500"}, headers=_as(user))
    assert r.status_code == 201
    view = r.json()["data"]
    assert Decimal(view["total_return"]) == Decimal("550")
    assert view["time_remaining"] == 3600
    assert view["progress_percentage"] == 0

    # another investor cannot see it
    assert client.get(f"/api/investments/{view['id']}", headers=_as(boss)).status_code == 404

    clock.advance(hours=1)
    sweep = client.post("/api/admin/sweep", headers=_as(boss, "admin")).json()["data"]
    assert sweep["paid"] == 1
    assert Decimal(sweep["total_paid"]) == Decimal("550")

    detail = client.get(f"/api/investments/{view['id']}", headers=_as(user)).json()["data"]
    assert detail["status"] == "completed"

    plans = client.get("/api/admin/plans", headers=_as(boss, "admin")).json()
    assert plans["data"][0]["investment_count"] == 1
    assert client.delete(f"/api/admin/plans/{plan_id}", headers=_as(boss, "admin")).status_code == 422


def test_withdrawal_and_transactions(client, app_engine, user, boss):
    fund(app_engine, user.id, 100, boss.id)

    r = client.post("/api/withdrawals", json={"amount": "80", "currency": "BTC", "wallet": "bc1q"}, headers=_as(user))
    assert r.status_code == 201
    wid = r.json()["data"]["id"]

    r = client.post(f"/api/admin/withdrawals/{wid}/resolve", json={"status": "rejected"}, headers=_as(boss, "admin"))
    assert r.json()["data"]["status"] == "rejected"
    assert app_engine.get_account(user.id).balance == Decimal("100")

    page = client.get("/api/transactions", params={"type": "withdrawal"}, headers=_as(user)).json()
    assert page["total"] == 1
    assert page["limit"] == 10
    entry = page["items"][0]
    assert entry["status"] == "failed"
    assert Decimal(entry["balance_after"]) == Decimal("100")

    everything = client.get(
        "/api/admin/transactions",
        params={"account_id": user.id},
        headers=_as(boss, "admin"),
    ).json()
    assert everything["total"] == 2

    assert client.get("/api/transactions", params={"type": "bonus"}, headers=_as(user)).status_code == 422
