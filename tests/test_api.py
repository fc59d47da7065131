import pytest

pytest.importorskip("httpx")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db
from models import User


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        app.dependency_overrides.clear()
        engine.dispose()


@pytest.fixture()
def client(db_session):
    return TestClient(app)


def _add_bill(client, **overrides) -> dict:
    body = {
        "user_id": "u1",
        "name": "Rent",
        "amount_cents": 80_000,
        "start_date": "2025-01-01",
        "payment_day": 1,
        "duration_months": 2,
        "payment_method": "bank",
    }
    body.update(overrides)
    resp = client.post("/bills/add", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["success"] is True


def test_bill_lifecycle_over_http(client):
    bill = _add_bill(client)
    assert bill["icon"] == "💳"

    resp = client.post(
        "/bills/pay",
        json={
            "user_id": "u1",
            "bill_id": bill["id"],
            "year_month": "2025-01",
            "payment_date": "2025-01-02",
        },
    )
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["success"] is True
    assert payload["data"]["remaining_payments"] == 1

    resp = client.get("/balances/monthly", params={"user_id": "u1"})
    rows = {row["period"]: row for row in resp.json()["data"]}
    assert rows["2025-01"]["expense_bank_cents"] == 80_000
    assert rows["2025-01"]["bill_bank_cents"] == 0
    assert rows["2025-02"]["bank_cents"] == -160_000

    resp = client.get(
        "/bills/payment-status", params={"bill_id": bill["id"], "user_id": "u1"}
    )
    assert resp.json()["data"]["paid_payments"] == 1

    resp = client.get("/bills", params={"user_id": "u1", "date": "2025-02-15"})
    assert [item["paid"] for item in resp.json()["data"]] == [False]

    resp = client.post(
        "/bills/update",
        json={"user_id": "u1", "bill_id": bill["id"], "duration_months": 3},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["duration_months"] == 3

    resp = client.post("/bills/delete", json={"user_id": "u1", "bill_id": bill["id"]})
    assert resp.status_code == 200
    assert client.get("/bills", params={"user_id": "u1"}).json()["data"] == []


def test_bills_accepts_period_with_date(client):
    bill = _add_bill(client)

    resp = client.get(
        "/bills", params={"user_id": "u1", "period": "month", "date": "2025-01-20"}
    )
    assert resp.status_code == 200
    items = resp.json()["data"]
    assert [item["id"] for item in items] == [bill["id"]]
    assert items[0]["year_month"] == "2025-01"

    resp = client.get("/bills", params={"user_id": "u1", "period": "month"})
    assert resp.status_code == 400


def test_bill_errors_map_to_status_codes(client):
    bill = _add_bill(client)
    pay = {"user_id": "u1", "bill_id": bill["id"], "year_month": "2025-01"}

    assert client.post("/bills/pay", json=pay).status_code == 200
    resp = client.post("/bills/pay", json=pay)
    assert resp.status_code == 400
    assert "already paid" in resp.json()["detail"]

    resp = client.post("/bills/pay", json={**pay, "year_month": "2025-06"})
    assert resp.status_code == 404

    resp = client.post("/bills/pay", json={**pay, "year_month": "2025-13"})
    assert resp.status_code == 422

    resp = client.post("/bills/delete", json={"user_id": "u1", "bill_id": 999})
    assert resp.status_code == 404

    resp = client.post(
        "/bills/add",
        json={
            "user_id": "u1",
            "name": "X",
            "amount_cents": -5,
            "start_date": "2025-01-01",
        },
    )
    assert resp.status_code == 422


def test_transactions_over_http(client):
    resp = client.post(
        "/incomes/add",
        json={
            "user_id": "u1",
            "amount_cents": 3_000,
            "date": "2025-03-03",
            "payment_method": "cash",
        },
    )
    assert resp.status_code == 200
    income_id = resp.json()["data"]["id"]

    resp = client.get("/balances/annual", params={"user_id": "u1"})
    assert resp.json()["data"][0]["cash_cents"] == 3_000

    resp = client.post(
        "/transactions/delete",
        json={"user_id": "u1", "transaction_id": income_id, "type": "income"},
    )
    assert resp.status_code == 200
    assert "annual" in resp.json()["data"]["reversed"]

    resp = client.post(
        "/transactions/delete",
        json={"user_id": "u1", "transaction_id": income_id, "type": "income"},
    )
    assert resp.status_code == 404

    resp = client.post(
        "/transactions/delete",
        json={"user_id": "u1", "transaction_id": 1, "type": "loan"},
    )
    assert resp.status_code == 400

    resp = client.get("/balances/fortnightly", params={"user_id": "u1"})
    assert resp.status_code == 422


def test_user_locale_endpoints(client, db_session):
    db_session.add(User(id="u1", email="u1@example.com"))
    db_session.commit()

    resp = client.get("/user_locale/get", params={"user_id": "u1"})
    assert resp.json()["data"]["locale"] == "en"

    resp = client.post("/user_locale/set", json={"user_id": "u1", "locale": "DE"})
    assert resp.status_code == 200
    assert resp.json()["data"]["locale"] == "de"

    resp = client.get("/user_locale/get", params={"user_id": "u1"})
    assert resp.json()["data"]["locale"] == "de"

    resp = client.post("/user_locale/set", json={"user_id": "ghost", "locale": "fr"})
    assert resp.status_code == 404


def test_admin_reconcile(client):
    _add_bill(client)

    resp = client.post("/admin/reconcile", params={"user_id": "u1"})

    assert resp.status_code == 200
    reports = resp.json()["data"]
    assert reports == [
        {"granularity": "monthly", "start": "2025-01", "processed": 2, "failed": []}
    ]
