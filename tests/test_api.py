from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


def make_client() -> TestClient:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def _category(client, name):
    resp = client.post("/api/categories", json={"name": name})
    assert resp.status_code == 201
    return resp.json()["id"]


def _transaction(client, category_id, day, amount_cents, type):
    resp = client.post(
        "/api/transactions",
        json={
            "date": day,
            "description": f"{type} {amount_cents}",
            "amount_cents": amount_cents,
            "type": type,
            "category_id": category_id,
        },
    )
    assert resp.status_code == 201
    return resp.json()


def _june_budget(client, category_id, amount_cents=10_000):
    resp = client.post(
        "/api/budgets",
        json={
            "category_id": category_id,
            "amount_cents": amount_cents,
            "start_date": "2024-06-01",
            "end_date": "2024-06-30",
        },
    )
    assert resp.status_code == 200
    return resp.json()


def test_error_responses_carry_codes() -> None:
    client = make_client()
    food = _category(client, "Food")
    salary = _category(client, "Salary")
    budget = _june_budget(client, food)
    income = _transaction(client, salary, "2024-06-01", 500, "income")
    expense = _transaction(client, food, "2024-06-02", 900, "expense")

    resp = client.post(
        "/api/budget-allocations",
        json={
            "budget_id": budget["id"],
            "transaction_id": income["id"],
            "amount_cents": 600,
        },
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "insufficient_funds"

    resp = client.post(
        "/api/budget-allocations",
        json={
            "budget_id": budget["id"],
            "transaction_id": expense["id"],
            "amount_cents": 100,
        },
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "type_mismatch"

    resp = client.get("/api/budgets/999")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"

    resp = client.post(
        "/api/budgets",
        json={
            "category_id": food,
            "amount_cents": 10_000,
            "start_date": "2024-06-30",
            "end_date": "2024-06-01",
        },
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"

    resp = client.get("/api/dashboard", params={"period": "fortnight"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_allocation_roundtrip() -> None:
    client = make_client()
    food = _category(client, "Food")
    salary = _category(client, "Salary")
    budget = _june_budget(client, food)
    income = _transaction(client, salary, "2024-06-01", 50_000, "income")

    resp = client.post(
        "/api/budget-allocations",
        json={
            "budget_id": budget["id"],
            "transaction_id": income["id"],
            "amount_cents": 20_000,
        },
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["category_name"] == "Food"
    assert created["transaction_date"] == "2024-06-01"

    listed = client.get("/api/budget-allocations", params={"budget_id": budget["id"]})
    assert [a["id"] for a in listed.json()] == [created["id"]]

    assert client.delete(f"/api/budget-allocations/{created['id']}").status_code == 204
    assert client.get(f"/api/transactions/{income['id']}").status_code == 200


def test_spending_reports_overspend_and_delete_removes_transaction() -> None:
    client = make_client()
    food = _category(client, "Food")
    budget = _june_budget(client, food)
    feast = _transaction(client, food, "2024-06-10", 15_000, "expense")

    resp = client.get(f"/api/budget-spending/by-transaction/{feast['id']}")
    assert resp.status_code == 200
    assert resp.json() is None

    resp = client.post(
        "/api/budget-spending",
        json={
            "budget_id": budget["id"],
            "transaction_id": feast["id"],
            "amount_cents": 15_000,
        },
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["overspent"] is True
    assert body["budget_remaining_cents"] == -5_000

    found = client.get(f"/api/budget-spending/by-transaction/{feast['id']}").json()
    assert found["id"] == body["id"]

    assert client.delete(f"/api/budget-spending/{body['id']}").status_code == 204
    assert client.get(f"/api/transactions/{feast['id']}").status_code == 404


def test_budget_endpoints_report_metrics() -> None:
    client = make_client()
    food = _category(client, "Food")
    budget = _june_budget(client, food, amount_cents=40_000)
    _transaction(client, food, "2024-06-05", 10_000, "expense")

    again = _june_budget(client, food, amount_cents=50_000)
    assert again["id"] == budget["id"]

    listed = client.get(
        "/api/budgets", params={"start": "2024-06-01", "end": "2024-06-30"}
    ).json()
    assert len(listed) == 1
    assert listed[0]["spent_cents"] == 10_000
    assert listed[0]["percentage"] == 20

    found = client.get(
        f"/api/budgets/by-category/{food}", params={"date": "2024-06-15"}
    ).json()
    assert found["id"] == budget["id"]
    missing = client.get(
        f"/api/budgets/by-category/{food}", params={"date": "2024-07-01"}
    )
    assert missing.json() is None


def test_dashboard_endpoint() -> None:
    client = make_client()
    salary = _category(client, "Salary")
    food = _category(client, "Food")
    _transaction(client, salary, "2024-05-15", 100_000, "income")
    _transaction(client, salary, "2024-06-15", 120_000, "income")
    _transaction(client, food, "2024-06-16", 30_000, "expense")

    resp = client.get(
        "/api/dashboard", params={"start": "2024-06-01", "end": "2024-06-30"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["period"]["start"] == "2024-06-01"
    assert body["previous_period"]["start"] == "2024-05-02"
    assert body["income"]["change"] == 20.0
    assert body["balance"]["value_cents"] == 90_000
    assert body["categories"][0]["name"] == "Food"
    assert [m["label"] for m in body["monthly"]] == ["Jun"]
    assert len(body["recent"]) == 2


def test_reconcile_endpoint_returns_counts() -> None:
    client = make_client()
    resp = client.post("/api/maintenance/reconcile")
    assert resp.status_code == 200
    assert resp.json() == {
        "relinked": 0,
        "removed_spending": 0,
        "removed_allocations": 0,
    }
