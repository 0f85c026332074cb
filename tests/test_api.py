import logging
import os
import sqlite3
import sys
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from stockledger.core.config import settings
from stockledger.core.security import issue_token_pair
from stockledger.core.stock import INTEGER_MAX
from stockledger.crud.products import create_product
from stockledger.crud.users import create_user
from stockledger.db.session import build_engine, get_db, init_db
from stockledger.db.unit_of_work import UnitOfWork
from stockledger.main import app
from stockledger.models.user import ROLE_ADMIN


@pytest.fixture()
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'api.db'}")
    init_db(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield factory
    finally:
        app.dependency_overrides.pop(get_db, None)
        engine.dispose()


@pytest.fixture()
def seeded(session_factory):
    db = session_factory()
    try:
        admin = create_user(db, {"username": "boss", "role": ROLE_ADMIN})
        clerk = create_user(db, {"username": "clerk"})
        with UnitOfWork(db) as uow:
            widget = create_product(
                uow,
                {"sku": "W-1", "name": "Widget", "category": "Parts", "stock": 50, "threshold": 10, "price": Decimal("2.50")},
                admin,
            )
        return {"admin": admin.id, "clerk": clerk.id, "widget": widget.id}
    finally:
        db.close()


@pytest.fixture()
def impatient_db(tmp_path, session_factory):
    """Serve requests from an engine that gives up on the write lock after 0.3s."""

    engine = build_engine(f"sqlite:///{tmp_path / 'api.db'}", lock_wait_seconds=0.3)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield tmp_path / "api.db"
    finally:
        engine.dispose()


@pytest.fixture()
def client():
    return TestClient(app)


def _auth(user_id):
    return {"Authorization": f"Bearer {issue_token_pair(user_id).access_token}"}


def _update(client, seeded, action, quantity, **extra):
    body = {"productId": seeded["widget"], "action": action, "quantity": quantity}
    body.update(extra)
    return client.post("/api/v1/inventory/update", json=body, headers=_auth(seeded["clerk"]))


def test_stock_update_scenario(client, seeded):
    response = _update(client, seeded, "Add", 20, notes="Restock")
    assert response.status_code == 200
    body = response.json()
    assert body["previousStock"] == 50
    assert body["newStock"] == 70
    assert body["action"] == "Add"
    assert body["product"]["sku"] == "W-1"
    assert body["user"]["username"] == "clerk"

    rejected = _update(client, seeded, "Remove", 80)
    assert rejected.status_code == 400
    assert rejected.json() == {
        "code": "insufficient_stock",
        "message": "Insufficient stock",
        "currentStock": 70,
        "requestedQuantity": 80,
    }

    updated = _update(client, seeded, "Update", 5)
    assert updated.status_code == 200
    assert (updated.json()["previousStock"], updated.json()["newStock"]) == (70, 5)

    product = client.get(f"/api/v1/products/{seeded['widget']}", headers=_auth(seeded["clerk"])).json()
    assert product["stock"] == 5
    assert product["status"] == "LowStock"


@pytest.mark.parametrize(
    "action,quantity,code",
    [
        ("add", 1, "invalid_action"),
        (None, 1, "invalid_action"),
        ("Add", 0, "invalid_quantity"),
        ("Remove", -3, "invalid_quantity"),
        ("Add", True, "invalid_quantity"),
        ("Add", 2.5, "invalid_quantity"),
    ],
)
def test_stock_update_rejects_bad_input(client, seeded, action, quantity, code):
    response = _update(client, seeded, action, quantity)
    assert response.status_code == 400
    assert response.json()["code"] == code


def test_stock_update_unknown_product(client, seeded):
    response = client.post(
        "/api/v1/inventory/update",
        json={"productId": 999, "action": "Add", "quantity": 1},
        headers=_auth(seeded["clerk"]),
    )
    assert response.status_code == 404
    assert response.json()["code"] == "product_not_found"


def test_stock_update_requires_token(client, seeded):
    response = client.post("/api/v1/inventory/update", json={"productId": 1, "action": "Add", "quantity": 1})
    assert response.status_code == 401
    assert response.json()["code"] == "http_error"


def test_stock_update_timeout_maps_to_503(client, seeded, monkeypatch):
    monkeypatch.setattr(settings, "STOCK_TXN_TIMEOUT_SECONDS", 0.0)
    response = _update(client, seeded, "Add", 1)
    assert response.status_code == 503
    assert response.json()["code"] == "transaction_timeout"
    assert response.headers["Retry-After"] == "1"
    monkeypatch.undo()

    product = client.get(f"/api/v1/products/{seeded['widget']}", headers=_auth(seeded["clerk"])).json()
    assert product["stock"] == 50


def test_held_write_lock_times_out_stock_update(client, seeded, impatient_db):
    holder = sqlite3.connect(str(impatient_db), isolation_level=None)
    holder.execute("BEGIN IMMEDIATE")
    try:
        response = _update(client, seeded, "Add", 1)
        assert response.status_code == 503
        assert response.json()["code"] == "transaction_timeout"
        assert response.headers["Retry-After"] == "1"

        renamed = client.put(
            f"/api/v1/products/{seeded['widget']}",
            json={"name": "Gadget"},
            headers=_auth(seeded["admin"]),
        )
        assert renamed.status_code == 503
        assert renamed.json()["code"] == "transaction_timeout"

        # Reads do not queue behind the writer.
        stats = client.get("/api/v1/inventory/stats", headers=_auth(seeded["clerk"]))
        assert stats.status_code == 200
    finally:
        holder.execute("ROLLBACK")
        holder.close()

    product = client.get(f"/api/v1/products/{seeded['widget']}", headers=_auth(seeded["clerk"])).json()
    assert (product["stock"], product["name"]) == (50, "Widget")
    assert _update(client, seeded, "Add", 1).status_code == 200


def test_storage_failures_outside_services_return_503(client, seeded, monkeypatch):
    def broken(db):
        raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    monkeypatch.setattr("stockledger.routers.api_inventory.list_low_stock", broken)
    response = client.get("/api/v1/inventory/low-stock", headers=_auth(seeded["clerk"]))
    assert response.status_code == 503
    assert response.json()["code"] == "storage_unavailable"


def test_oversized_numbers_are_rejected_before_storage(client, seeded):
    huge = _update(client, seeded, "Add", 2**63)
    assert huge.status_code == 400
    assert huge.json()["code"] == "invalid_quantity"

    overflow = _update(client, seeded, "Add", INTEGER_MAX)
    assert overflow.status_code == 400
    assert overflow.json()["code"] == "invalid_quantity"

    headers = _auth(seeded["clerk"])
    page = client.get("/api/v1/inventory/logs", params={"page": "99999999999999999999"}, headers=headers)
    assert page.status_code == 422
    unknown = client.post(
        "/api/v1/inventory/update",
        json={"productId": 2**63, "action": "Add", "quantity": 1},
        headers=headers,
    )
    assert unknown.status_code == 422
    assert client.get("/api/v1/products/99999999999999999999", headers=headers).status_code == 422

    product = client.get(f"/api/v1/products/{seeded['widget']}", headers=headers).json()
    assert product["stock"] == 50


def test_logs_are_paged_newest_first(client, seeded):
    _update(client, seeded, "Add", 1)
    _update(client, seeded, "Remove", 2)
    response = client.get(
        "/api/v1/inventory/logs",
        params={"productId": seeded["widget"], "limit": 2},
        headers=_auth(seeded["clerk"]),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert body["pages"] == 2
    assert body["page"] == 1
    assert [log["action"] for log in body["logs"]] == ["Remove", "Add"]

    filtered = client.get(
        "/api/v1/inventory/logs",
        params={"action": "Remove", "userId": seeded["clerk"]},
        headers=_auth(seeded["clerk"]),
    ).json()
    assert filtered["total"] == 1


def test_logs_reject_bad_dates(client, seeded):
    response = client.get(
        "/api/v1/inventory/logs",
        params={"startDate": "not-a-date"},
        headers=_auth(seeded["clerk"]),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_filter"


def test_low_stock_and_stats(client, seeded):
    _update(client, seeded, "Update", 4)

    low = client.get("/api/v1/inventory/low-stock", headers=_auth(seeded["clerk"])).json()
    assert [item["sku"] for item in low] == ["W-1"]
    assert low[0]["ratio"] == pytest.approx(0.4)
    assert low[0]["status"] == "LowStock"

    stats = client.get("/api/v1/inventory/stats", headers=_auth(seeded["clerk"])).json()
    assert stats["totalProducts"] == 1
    assert stats["stockValue"] == pytest.approx(10.0)
    assert stats["lowStockCount"] == 1
    assert stats["outOfStockCount"] == 0
    assert stats["recentActivity"][0]["action"] == "Update"


def test_ledger_audit_endpoint(client, seeded):
    _update(client, seeded, "Remove", 5)
    audit = client.get(
        f"/api/v1/inventory/products/{seeded['widget']}/audit",
        headers=_auth(seeded["clerk"]),
    ).json()
    assert audit["consistent"] is True
    assert audit["entryCount"] == 2
    assert audit["replayedStock"] == 45


def test_product_writes_are_admin_only(client, seeded):
    payload = {"sku": "N-1", "name": "Nut", "category": "Parts", "stock": 7}
    forbidden = client.post("/api/v1/products", json=payload, headers=_auth(seeded["clerk"]))
    assert forbidden.status_code == 403

    created = client.post("/api/v1/products", json=payload, headers=_auth(seeded["admin"]))
    assert created.status_code == 201
    product = created.json()
    assert product["stock"] == 7
    assert product["threshold"] == settings.DEFAULT_LOW_STOCK_THRESHOLD

    duplicate = client.post("/api/v1/products", json=payload, headers=_auth(seeded["admin"]))
    assert duplicate.status_code == 409

    logs = client.get(
        "/api/v1/inventory/logs",
        params={"productId": product["id"]},
        headers=_auth(seeded["admin"]),
    ).json()
    assert logs["logs"][0]["notes"] == "Initial stock"


def test_product_update_and_archive(client, seeded):
    url = f"/api/v1/products/{seeded['widget']}"
    updated = client.put(url, json={"name": "Gadget", "stock": 999}, headers=_auth(seeded["admin"]))
    assert updated.status_code == 200
    assert updated.json()["name"] == "Gadget"
    assert updated.json()["stock"] == 50

    deleted = client.delete(url, headers=_auth(seeded["admin"]))
    assert deleted.status_code == 200
    assert client.get(url, headers=_auth(seeded["admin"])).status_code == 404
    assert client.get("/api/v1/products", headers=_auth(seeded["admin"])).json() == []

    moved = _update(client, seeded, "Add", 1)
    assert moved.status_code == 404


def test_product_listing_and_categories(client, seeded):
    headers = _auth(seeded["clerk"])
    listed = client.get("/api/v1/products", params={"search": "widg"}, headers=headers).json()
    assert [item["sku"] for item in listed] == ["W-1"]
    assert listed[0]["price"] == 2.5
    assert client.get("/api/v1/products/categories", headers=headers).json() == ["Parts"]
    bad_sort = client.get("/api/v1/products", params={"sortBy": "secret"}, headers=headers)
    assert bad_sort.status_code == 400


def test_reports_require_admin(client, seeded):
    assert client.get("/api/v1/reports/inventory-value", headers=_auth(seeded["clerk"])).status_code == 403

    value = client.get("/api/v1/reports/inventory-value", headers=_auth(seeded["admin"])).json()
    assert value["totalValue"] == pytest.approx(125.0)
    assert value["categoryValues"][0]["category"] == "Parts"

    movement = client.get(
        "/api/v1/reports/stock-movement",
        params={"startDate": "2000-01-01"},
        headers=_auth(seeded["admin"]),
    ).json()
    assert movement["movementByAction"][0]["action"] == "Add"
    assert movement["topActiveUsers"][0]["username"] == "boss"

    low = client.get("/api/v1/reports/low-stock", headers=_auth(seeded["admin"])).json()
    assert low == {"lowStockProducts": []}


def test_token_exchange_and_refresh(client, seeded, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret-key")

    denied = client.post("/api/v1/auth/token", json={"apiKey": "wrong", "username": "clerk"})
    assert denied.status_code == 401
    unknown = client.post("/api/v1/auth/token", json={"apiKey": "secret-key", "username": "ghost"})
    assert unknown.status_code == 401

    issued = client.post("/api/v1/auth/token", json={"apiKey": "secret-key", "username": "clerk"})
    assert issued.status_code == 200
    tokens = issued.json()
    assert tokens["role"] == "staff"
    assert tokens["tokenType"] == "bearer"
    refreshed = client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
    assert refreshed.status_code == 200

    access = refreshed.json()["accessToken"]
    response = client.get("/api/v1/inventory/stats", headers={"Authorization": f"Bearer {access}"})
    assert response.status_code == 200

    # A refresh token is not an access token.
    wrong_type = client.get(
        "/api/v1/inventory/stats",
        headers={"Authorization": f"Bearer {tokens['refreshToken']}"},
    )
    assert wrong_type.status_code == 401


def test_health_and_request_id(client):
    response = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert response.headers["X-Request-ID"] == "abc-123"


def test_actor_resolution_is_logged(client, seeded, caplog):
    with caplog.at_level(logging.INFO):
        response = client.get("/api/v1/inventory/stats", headers=_auth(seeded["clerk"]))
    assert response.status_code == 200
    assert response.headers["X-Response-Time"].endswith("ms")
    resolved = [record for record in caplog.records if record.getMessage() == "request.actor_resolved"]
    assert len(resolved) == 1
    assert resolved[0].extra_data == {"method": "GET", "path": "/api/v1/inventory/stats", "role": "staff"}
    completed = [record for record in caplog.records if record.getMessage() == "request.completed"]
    assert completed[0].extra_data["status"] == 200


def test_schema_validation_uses_error_envelope(client, seeded):
    response = client.post(
        "/api/v1/inventory/update",
        json={"productId": "x", "action": "Add", "quantity": 1},
        headers=_auth(seeded["clerk"]),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"
