import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
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
    yield TestClient(app)
    app.dependency_overrides.clear()


def _signup(client, email="ada@example.com") -> dict:
    resp = client.post("/api/users", json={"name": "Ada", "email": email})
    assert resp.status_code == 201
    user = resp.json()
    return {"X-User-Id": str(user["id"])}


def _by_name(items, name):
    return next(item for item in items if item["name"] == name)


def test_missing_or_unknown_user_is_unauthorized(client):
    assert client.get("/api/accounts").status_code == 401
    resp = client.get("/api/accounts", headers={"X-User-Id": "42"})
    assert resp.status_code == 401
    assert resp.json()["detail"]["kind"] == "unauthorized"


def test_disabled_user_is_forbidden(client):
    headers = _signup(client)
    assert client.post("/api/users/me/disable", headers=headers).status_code == 200
    resp = client.get("/api/accounts", headers=headers)
    assert resp.status_code == 403


def test_operation_flow_updates_balances(client):
    headers = _signup(client)
    accounts = client.get("/api/accounts", headers=headers).json()
    assert len(accounts) == 4
    cash = _by_name(accounts, "Cash")
    food = _by_name(client.get("/api/categories", headers=headers).json(), "Food")
    groceries = food["subcategories"][0]

    resp = client.post(
        "/api/operations",
        headers=headers,
        json={
            "date": "2024-03-05",
            "title": "Groceries",
            "account_id": cash["id"],
            "total_amount_cents": 2500,
            "allocation": [
                {
                    "category_id": food["id"],
                    "sub_category_id": groceries["id"],
                    "amount_cents": 2500,
                }
            ],
        },
    )
    assert resp.status_code == 201
    operation = resp.json()
    assert operation["category_type"] == "expense"

    cash_after = client.get(f"/api/accounts/{cash['id']}", headers=headers).json()
    assert cash_after["balance_cents"] == -2500

    listed = client.get("/api/operations?period=all", headers=headers).json()
    assert [item["id"] for item in listed["items"]] == [operation["id"]]

    resp = client.delete(f"/api/accounts/{cash['id']}", headers=headers)
    assert resp.status_code == 409

    resp = client.delete(f"/api/operations/{operation['id']}", headers=headers)
    assert resp.status_code == 204
    cash_final = client.get(f"/api/accounts/{cash['id']}", headers=headers).json()
    assert cash_final["balance_cents"] == 0


def test_validation_errors_map_to_bad_request(client):
    headers = _signup(client)
    cash = _by_name(client.get("/api/accounts", headers=headers).json(), "Cash")
    food = _by_name(client.get("/api/categories", headers=headers).json(), "Food")

    resp = client.post(
        "/api/operations",
        headers=headers,
        json={
            "date": "2024-03-05",
            "title": "Groceries",
            "account_id": cash["id"],
            "total_amount_cents": 2500,
            "allocation": [{"category_id": food["id"], "amount_cents": 2499}],
        },
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["kind"] == "validation"

    resp = client.post(
        "/api/operations",
        headers=headers,
        json={
            "date": "2024-03-05",
            "title": "Nothing",
            "account_id": cash["id"],
            "total_amount_cents": 0,
        },
    )
    assert resp.status_code == 400
    assert resp.json()["kind"] == "validation"


def test_not_found_is_404(client):
    headers = _signup(client)
    resp = client.get("/api/bills/999", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["detail"]["message"] == "Bill not found"


def test_other_users_cannot_see_my_accounts(client):
    mine = _signup(client)
    theirs = _signup(client, email="bob@example.com")
    cash = _by_name(client.get("/api/accounts", headers=mine).json(), "Cash")
    resp = client.get(f"/api/accounts/{cash['id']}", headers=theirs)
    assert resp.status_code == 404


def test_template_draft_with_zero_total_is_bad_request(client):
    headers = _signup(client)
    cash = _by_name(client.get("/api/accounts", headers=headers).json(), "Cash")
    rent = _by_name(client.get("/api/categories", headers=headers).json(), "Rent")
    resp = client.post(
        "/api/templates",
        headers=headers,
        json={
            "title": "Rent",
            "account_id": cash["id"],
            "total_amount_cents": 120000,
            "allocation": [{"category_id": rent["id"], "amount_cents": 120000}],
        },
    )
    assert resp.status_code == 201
    template_id = resp.json()["id"]

    resp = client.get(
        f"/api/templates/{template_id}/operation?total_amount_cents=0",
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["kind"] == "validation"

    resp = client.get(
        f"/api/templates/{template_id}/operation?total_amount_cents=60000",
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["allocation"][0]["amount_cents"] == 60000
