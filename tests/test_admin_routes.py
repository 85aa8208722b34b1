"""Admin API tests: login, vendors, catalog, orders, withdrawals, transactions, settings."""

import os
import sqlite3
import tempfile
from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="admin_routes_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name
os.environ["JWT_SECRET"] = "test-secret-key-for-admin-routes"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "admin123"

import bundlepay.database as _db_mod
from bundlepay.database import drop_all, get_db, init_db
from bundlepay.main import app
from bundlepay.models.schemas import OrderStatus
from bundlepay.repositories import Store
from bundlepay.services.auth import ROLE_VENDOR, create_token
from bundlepay.services.paystack_client import PaystackClientError


@pytest.fixture(autouse=True)
def _setup_db(monkeypatch):
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    monkeypatch.setenv("ADMIN_USERNAME", "admin")
    monkeypatch.setenv("ADMIN_PASSWORD", "admin123")
    monkeypatch.delenv("PAYSTACK_SECRET_KEY", raising=False)
    monkeypatch.delenv("WITHDRAWAL_POOLING", raising=False)
    conn = sqlite3.connect(_tmp.name)
    drop_all(conn)
    conn.close()
    init_db()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def headers(client):
    resp = client.post("/api/admin/auth/login", json={"username": "admin", "password": "admin123"})
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def shop():
    store = Store(get_db())
    try:
        vendor_id = store.vendors.insert("Shop", "shop@example.com", "0241111111", "h", "v-shop")
        bundle_id = store.bundles.insert("1GB MTN", "MTN", "1GB", Decimal("20.00"))
        store.commit()
    finally:
        store.close()
    return {"id": vendor_id, "bundle": bundle_id}


def _order(shop, amount="25.00", status=OrderStatus.PENDING):
    store = Store(get_db())
    try:
        order_id = store.orders.insert(shop["id"], shop["bundle"], "0241234567", Decimal(amount), status=status)
        store.commit()
        return order_id
    finally:
        store.close()


class TestLogin:

    def test_success(self, client):
        resp = client.post("/api/admin/auth/login", json={"username": "admin", "password": "admin123"})
        assert resp.status_code == 200
        assert resp.json()["code"] == 1
        assert resp.json()["token"]

    def test_wrong_password(self, client):
        resp = client.post("/api/admin/auth/login", json={"username": "admin", "password": "nope"})
        assert resp.status_code == 401
        assert resp.json() == {"code": -1, "msg": "Invalid username or password"}

    def test_routes_require_admin(self, client):
        assert client.get("/api/admin/bundles").status_code == 401
        vendor_token = create_token("v@example.com", 1, ROLE_VENDOR)
        resp = client.get("/api/admin/bundles", headers={"Authorization": f"Bearer {vendor_token}"})
        assert resp.status_code == 403


class TestVendors:

    def test_list_and_approve(self, client, headers, shop):
        pending = client.get("/api/admin/vendors", headers=headers, params={"approved": False}).json()
        assert pending["total"] == 1

        resp = client.post(f"/api/admin/vendors/{shop['id']}/approve", headers=headers, json={"approved": True})
        assert resp.status_code == 200
        assert resp.json()["vendor"]["approved"] is True

        pending = client.get("/api/admin/vendors", headers=headers, params={"approved": False}).json()
        assert pending["total"] == 0

    def test_approve_unknown_vendor(self, client, headers):
        resp = client.post("/api/admin/vendors/999/approve", headers=headers, json={"approved": True})
        assert resp.status_code == 404

    def test_set_vendor_prices(self, client, headers, shop):
        resp = client.put(f"/api/admin/vendors/{shop['id']}/prices", headers=headers,
                          json={"prices": [{"bundleId": shop["bundle"], "price": "22.00"}]})
        assert resp.status_code == 200
        assert resp.json()["results"][0]["price"] == "22.00"


class TestBundles:

    def test_create_list_update(self, client, headers):
        resp = client.post("/api/admin/bundles", headers=headers, json={
            "name": "2GB Voda", "network": "Vodafone", "dataAmount": "2GB", "basePrice": "35.5",
        })
        assert resp.status_code == 201
        bundle = resp.json()["bundle"]
        assert bundle["base_price"] == "35.50"

        resp = client.put(f"/api/admin/bundles/{bundle['id']}", headers=headers, json={"basePrice": "36"})
        assert resp.json()["bundle"]["base_price"] == "36.00"
        assert resp.json()["bundle"]["name"] == "2GB Voda"

        listing = client.get("/api/admin/bundles", headers=headers).json()
        assert [b["id"] for b in listing["bundles"]] == [bundle["id"]]

    def test_negative_base_price(self, client, headers):
        resp = client.post("/api/admin/bundles", headers=headers, json={
            "name": "Bad", "network": "MTN", "dataAmount": "1GB", "basePrice": "-1",
        })
        assert resp.status_code == 400

    def test_update_unknown(self, client, headers):
        assert client.put("/api/admin/bundles/999", headers=headers, json={"name": "X"}).status_code == 404

    def test_delete(self, client, headers, shop):
        assert client.delete(f"/api/admin/bundles/{shop['bundle']}", headers=headers).status_code == 200
        assert client.delete(f"/api/admin/bundles/{shop['bundle']}", headers=headers).status_code == 404

    def test_delete_with_orders_conflicts(self, client, headers, shop):
        _order(shop)
        resp = client.delete(f"/api/admin/bundles/{shop['bundle']}", headers=headers)
        assert resp.status_code == 409


class TestOrders:

    def test_complete_pending_order(self, client, headers, shop):
        order_id = _order(shop)
        resp = client.put(f"/api/admin/orders/{order_id}/status", headers=headers, json={"status": "complete"})
        assert resp.status_code == 200
        assert resp.json()["order"]["status"] == "complete"

    @pytest.mark.parametrize("target", ["pending", "cancelled"])
    def test_complete_order_is_final(self, client, headers, shop, target):
        order_id = _order(shop, status=OrderStatus.COMPLETE)
        resp = client.put(f"/api/admin/orders/{order_id}/status", headers=headers, json={"status": target})
        assert resp.status_code == 409

    def test_unknown_status(self, client, headers, shop):
        order_id = _order(shop)
        resp = client.put(f"/api/admin/orders/{order_id}/status", headers=headers, json={"status": "shipped"})
        assert resp.status_code == 400

    def test_list_filters(self, client, headers, shop):
        _order(shop)
        _order(shop, status=OrderStatus.COMPLETE)
        data = client.get("/api/admin/orders", headers=headers, params={"status": "complete"}).json()
        assert data["total"] == 1
        data = client.get("/api/admin/orders", headers=headers, params={"vendor_id": shop["id"]}).json()
        assert data["total"] == 2


class TestWithdrawals:

    def _withdrawal(self, shop, amount="3.00"):
        from bundlepay.services.withdrawal_ledger import WithdrawalLedger
        return WithdrawalLedger().request_withdrawal(shop["id"], amount, "0551234567")

    def test_approve_then_reject_conflicts(self, client, headers, shop):
        _order(shop, status=OrderStatus.COMPLETE)
        w = self._withdrawal(shop)

        resp = client.put(f"/api/withdrawals/{w['id']}/approve", headers=headers, json={"status": "approved"})
        assert resp.status_code == 200
        assert resp.json()["withdrawal"]["status"] == "approved"

        resp = client.put(f"/api/withdrawals/{w['id']}/approve", headers=headers, json={"status": "rejected"})
        assert resp.status_code == 409

    def test_bad_decision(self, client, headers, shop):
        _order(shop, status=OrderStatus.COMPLETE)
        w = self._withdrawal(shop)
        resp = client.put(f"/api/withdrawals/{w['id']}/approve", headers=headers, json={"status": "maybe"})
        assert resp.status_code == 400

    def test_unknown_withdrawal(self, client, headers):
        resp = client.put("/api/withdrawals/999/approve", headers=headers, json={"status": "approved"})
        assert resp.status_code == 404

    def test_list(self, client, headers, shop):
        _order(shop, status=OrderStatus.COMPLETE)
        self._withdrawal(shop)
        data = client.get("/api/admin/withdrawals", headers=headers, params={"status": "pending"}).json()
        assert data["total"] == 1
        assert data["withdrawals"][0]["vendor_name"] == "Shop"


class TestTransactions:

    def _pending(self, shop, reference="ref-admin"):
        store = Store(get_db())
        try:
            store.vendors.set_approved(shop["id"], True)
            store.transactions.insert(reference, Decimal("20.00"), vendor_id=shop["id"], bundle_id=shop["bundle"],
                                      customer_phone="0241234567")
            store.commit()
        finally:
            store.close()
        return reference

    def test_list(self, client, headers, shop):
        self._pending(shop)
        data = client.get("/api/admin/transactions", headers=headers, params={"status": "pending"}).json()
        assert data["total"] == 1

    def test_manual_verify_settles(self, client, headers, shop):
        reference = self._pending(shop)
        with patch("bundlepay.services.settlement.PaystackClient") as mock_cls:
            mock_cls.return_value.verify_transaction.return_value = {
                "reference": reference,
                "status": "success",
                "amount": Decimal("20.00"),
                "metadata": {"bundleId": shop["bundle"], "customerPhone": "0241234567", "vendorId": shop["id"]},
            }
            resp = client.post(f"/api/admin/transactions/{reference}/verify", headers=headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "success"
        assert data["transaction"]["status"] == "success"
        assert data["transaction"]["order_id"] == data["order"]["id"]

    def test_manual_verify_gateway_down(self, client, headers, shop):
        reference = self._pending(shop)
        with patch("bundlepay.services.settlement.PaystackClient") as mock_cls:
            mock_cls.return_value.verify_transaction.side_effect = PaystackClientError("Network error", None)
            resp = client.post(f"/api/admin/transactions/{reference}/verify", headers=headers)
        assert resp.status_code == 502

    def test_manual_verify_unknown(self, client, headers):
        assert client.post("/api/admin/transactions/nope/verify", headers=headers).status_code == 404


class TestSettings:

    def test_defaults(self, client, headers):
        data = client.get("/api/admin/settings", headers=headers).json()
        assert data["gateway_status"] == {"status": "unconfigured", "source": None}
        assert data["withdrawal_policy"] == "own"

    def test_save_gateway_secret(self, client, headers):
        with patch("bundlepay.services.paystack_client.PaystackClient.verify_connectivity", return_value=True):
            resp = client.post("/api/admin/settings/gateway", headers=headers, json={"secret_key": "sk_test_new"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "verified"

        data = client.get("/api/admin/settings", headers=headers).json()
        assert data["gateway_status"] == {"status": "verified", "source": "database"}

    def test_empty_gateway_secret(self, client, headers):
        resp = client.post("/api/admin/settings/gateway", headers=headers, json={"secret_key": "  "})
        assert resp.status_code == 400

    def test_withdrawal_policy(self, client, headers):
        resp = client.post("/api/admin/settings/withdrawal-policy", headers=headers, json={"policy": "pooled"})
        assert resp.json()["withdrawal_policy"] == "pooled"
        resp = client.post("/api/admin/settings/withdrawal-policy", headers=headers, json={"policy": "shared"})
        assert resp.status_code == 400
