from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from auth import issue_session_token
from database import Base
from main import app, current_user_id, get_db, get_provider, get_today
from models import Account, Transaction
from plaid_client import ProviderAccount, ProviderTransaction

TODAY = date(2025, 3, 18)


class FakeProvider:
    def create_link_token(self, user_id: str) -> str:
        return f"link-sandbox-{user_id}"

    def exchange_public_token(self, public_token: str) -> tuple[str, str]:
        return "access-sandbox-1", "item-1"

    def fetch_accounts(self, access_token: str) -> list[ProviderAccount]:
        return [ProviderAccount("acc-1", "Checking", "depository", "checking")]

    def fetch_transactions(self, access_token, start, end):
        return [
            ProviderTransaction(
                transaction_id="tx-1",
                account_id="acc-1",
                date=date(2025, 3, 17),
                amount="18.50",
                merchant_name="Taqueria",
                category_primary="FOOD_AND_DRINK",
            )
        ]


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    def _get_db():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_today] = lambda: TODAY
    app.dependency_overrides[get_provider] = FakeProvider
    yield engine
    app.dependency_overrides.clear()


@pytest.fixture()
def client(engine):
    return TestClient(app, headers={"Authorization": f"Bearer {issue_session_token('alice')}"})


def _seed_shared_scenario(engine) -> dict[str, int]:
    with Session(engine) as session:
        joint = Account(
            user_id="alice", provider_account_id="joint", name="Joint", is_shared_source=True
        )
        personal = Account(user_id="alice", provider_account_id="personal", name="Personal")
        session.add_all([joint, personal])
        session.flush()
        rows = [
            (joint, "j1", 5_000, "GROCERY", False),
            (joint, "j2", 4_000, "RESTAURANTS", False),
            (joint, "j3", 3_000, "GROCERY", False),
            (personal, "p1", 4_000, "TRAVEL", True),
            (personal, "p2", 2_500, "SHOPPING", False),
        ]
        ids = {}
        for account, ref, cents, category, shared in rows:
            txn = Transaction(
                user_id="alice",
                account_id=account.id,
                provider_transaction_id=ref,
                date=date(2025, 3, 10),
                amount_cents=cents,
                normalized_category=category,
                is_shared=shared,
            )
            session.add(txn)
            session.flush()
            ids[ref] = txn.id
        ids["joint"] = joint.id
        session.commit()
        return ids


def test_requests_without_a_session_are_rejected(engine) -> None:
    anonymous = TestClient(app)
    assert anonymous.get("/api/spend-summary").status_code == 401
    bad = anonymous.get(
        "/api/budgets", headers={"Authorization": "Bearer not-a-token"}
    )
    assert bad.status_code == 401


def test_session_cookie_is_accepted(engine) -> None:
    cookie_client = TestClient(app, cookies={"session": issue_session_token("alice")})
    assert cookie_client.get("/api/budgets").json() == {"budgets": []}


def test_health_reports_database(client) -> None:
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["database_reachable"] is True


def test_shared_only_summary(client, engine) -> None:
    _seed_shared_scenario(engine)

    body = client.get("/api/spend-summary", params={"shared_only": "true"}).json()
    assert body["period"] == "current_month"
    assert body["start_date"] == "2025-03-01"
    assert body["end_date"] == "2025-04-01"
    assert body["total_amount"] == 160.0
    assert body["transaction_count"] == 4
    assert "SHOPPING" not in body["category_labels"]

    everything = client.get("/api/spend-summary").json()
    assert everything["total_amount"] == 185.0


def test_account_drilldown_includes_transactions(client, engine) -> None:
    ids = _seed_shared_scenario(engine)

    body = client.get(
        "/api/spend-summary", params={"account_id": ids["joint"]}
    ).json()
    assert len(body["accounts"]) == 1
    assert len(body["accounts"][0]["transactions"]) == 3


def test_unsupported_period_is_a_bad_request(client) -> None:
    resp = client.get("/api/spend-summary", params={"period": "last_year"})
    assert resp.status_code == 400


def test_budget_lifecycle(client, engine) -> None:
    _seed_shared_scenario(engine)

    created = client.post(
        "/api/budgets", json={"category": "GROCERY", "amount": "60.00", "max_visits": 3}
    )
    assert created.status_code == 200
    budget = created.json()["budget"]
    assert budget["amount"] == 60.0

    status = client.get(f"/api/budgets/{budget['id']}/status").json()
    assert status["month_to_date_spend"] == 80.0
    assert status["remaining_amount"] == -20.0
    assert status["visit_count"] == 2
    assert status["remaining_visits"] == 1
    assert status["is_over_budget"] is True

    assert client.get("/api/budgets/999/status").status_code == 404
    assert client.post(
        "/api/budgets", json={"category": "GROCERY", "amount": "0"}
    ).status_code == 400

    gone = client.delete("/api/budgets", params={"category": "GROCERY"}).json()
    assert gone == {"success": True, "deleted": True}
    again = client.delete("/api/budgets", params={"category": "GROCERY"}).json()
    assert again == {"success": True, "deleted": False}


def test_patch_transaction_returns_delta(client, engine) -> None:
    ids = _seed_shared_scenario(engine)

    resp = client.patch(
        f"/api/transactions/{ids['j2']}", json={"normalized_category": " Date Night "}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["transaction"]["normalized_category"] == "Date Night"
    assert body["delta"]["category"] == "Date Night"
    assert body["delta"]["previous_category"] == "RESTAURANTS"
    assert body["delta"]["amount"] == 40.0

    assert client.patch(
        f"/api/transactions/{ids['j2']}", json={"normalized_category": None}
    ).status_code == 400
    assert client.patch(
        f"/api/transactions/{ids['j2']}", json={"normalized_category": "   "}
    ).status_code == 400
    assert client.patch(f"/api/transactions/{ids['j2']}", json={}).status_code == 400
    assert client.patch(
        f"/api/transactions/{ids['j2']}", json={"amount": 1}
    ).status_code == 422
    assert client.patch(
        "/api/transactions/9999", json={"is_shared": True}
    ).status_code == 404


def test_category_views(client, engine) -> None:
    _seed_shared_scenario(engine)

    monthly = client.get(
        "/api/category-transactions", params={"category": "GROCERY"}
    ).json()
    assert [t["amount"] for t in monthly["transactions"]] == [30.0, 50.0]
    assert "TRAVEL" in monthly["all_categories"]

    february = client.get(
        "/api/category-transactions",
        params={"category": "GROCERY", "month": 1, "year": 2025},
    ).json()
    assert february["start_date"] == "2025-02-01"
    assert february["transactions"] == []

    assert client.get("/api/category-transactions").status_code == 400

    trend = client.get("/api/category-trend", params={"category": "GROCERY"}).json()
    assert trend["start_date"] == "2025-01-01"
    assert trend["end_date"] == "2025-04-01"
    assert [p["month"] for p in trend["monthly_spending"]] == ["Jan", "Feb", "Mar"]
    assert trend["monthly_spending"][-1]["amount"] == 80.0
    assert trend["budget_limit"] is None


def test_shared_transactions_and_resync(client, engine) -> None:
    ids = _seed_shared_scenario(engine)

    shared = client.get("/api/shared/transactions").json()
    assert len(shared["transactions"]) == 4
    assert client.get(
        "/api/shared/transactions", params={"period": "current_week"}
    ).status_code == 400

    assert client.post("/api/shared/resync").json() == {"transactions_synced": 3}

    patched = client.patch(
        f"/api/accounts/{ids['joint']}", json={"is_shared_source": False}
    ).json()
    assert patched["account"]["is_shared_source"] is False


def test_link_and_sync_through_provider(client) -> None:
    assert client.post("/api/plaid/create-link-token").json() == {
        "link_token": "link-sandbox-alice"
    }
    linked = client.post(
        "/api/plaid/exchange-public-token",
        json={"public_token": "public-1", "institution": {"name": "Test Bank"}},
    )
    assert linked.json() == {"success": True}

    result = client.post("/api/plaid/sync").json()
    assert result["transactions_created"] == 1
    assert result["errors"] == []

    accounts = client.get("/api/accounts").json()["accounts"]
    assert [a["name"] for a in accounts] == ["Checking"]
    overview = client.get("/api/budget-overview").json()
    assert overview["categories"][0]["category"] == "RESTAURANTS"
    assert overview["categories"][0]["spend_week"] == 18.5
