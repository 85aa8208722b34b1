"""Public storefront routes under /api/vendors tests."""

import os
import sqlite3
import tempfile
from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="storefront_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name

import bundlepay.database as _db_mod
from bundlepay.database import drop_all, get_db, init_db
from bundlepay.main import app
from bundlepay.repositories import Store
from bundlepay.services.paystack_client import PaystackClientError


@pytest.fixture(autouse=True)
def _setup_db(monkeypatch):
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    monkeypatch.setenv("APP_URL", "https://shop.example.test")
    conn = sqlite3.connect(_tmp.name)
    drop_all(conn)
    conn.close()
    init_db()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def gateway():
    with patch("bundlepay.services.settlement.PaystackClient") as mock_cls:
        gw = mock_cls.return_value
        gw.initialize_transaction.return_value = {
            "authorization_url": "https://checkout.paystack.com/xyz",
            "access_code": "xyz",
            "reference": "ignored",
        }
        yield gw


@pytest.fixture
def shop():
    store = Store(get_db())
    try:
        vendor_id = store.vendors.insert("Shop", "shop@example.com", "0241111111", "h", "v-shop", approved=True)
        store.vendors.insert(
            "Kiosk", "kiosk@example.com", "0242222222", "h", "v-kiosk", approved=True, parent_vendor_id=vendor_id,
        )
        store.vendors.insert("Waiting", "w@example.com", "0243333333", "h", "v-waiting")
        small = store.bundles.insert("1GB MTN", "MTN", "1GB", Decimal("20.00"))
        large = store.bundles.insert("5GB MTN", "MTN", "5GB", Decimal("80.00"))
        store.prices.upsert(vendor_id, small, Decimal("25.00"))
        store.commit()
    finally:
        store.close()
    return {"id": vendor_id, "small": small, "large": large}


def _pay(client, link, bundle_id, phone="024-123-4567", email="buyer@example.com"):
    return client.post(f"/api/vendors/{link}/pay", json={
        "bundleId": bundle_id, "customerPhone": phone, "customerEmail": email,
    })


class TestCatalog:

    def test_vendor_by_link(self, client, shop):
        resp = client.get("/api/vendors/link/v-shop")
        assert resp.status_code == 200
        data = resp.json()
        assert data["vendor"]["name"] == "Shop"
        prices = {b["id"]: b["price"] for b in data["bundles"]}
        assert prices == {shop["small"]: "25.00", shop["large"]: "80.00"}

    def test_unknown_link(self, client, shop):
        resp = client.get("/api/vendors/link/v-nobody")
        assert resp.status_code == 404
        assert resp.json()["code"] == -1

    def test_sub_vendor_bundles_show_parent_prices(self, client, shop):
        data = client.get("/api/vendors/v-kiosk/bundles").json()
        prices = {b["id"]: b["price"] for b in data["bundles"]}
        assert prices[shop["small"]] == "25.00"


class TestPay:

    def test_opens_checkout(self, client, gateway, shop):
        resp = _pay(client, "v-shop", shop["small"])
        assert resp.status_code == 200
        data = resp.json()
        assert data["authorization_url"] == "https://checkout.paystack.com/xyz"
        assert data["amount"] == "25.00"
        assert data["reference"].startswith("BP-")

        kwargs = gateway.initialize_transaction.call_args.kwargs
        assert kwargs["callback_url"] == "https://shop.example.test/api/vendors/v-shop/verify-payment"
        assert kwargs["metadata"]["customerPhone"] == "0241234567"

    def test_unapproved_vendor(self, client, gateway, shop):
        assert _pay(client, "v-waiting", shop["small"]).status_code == 403
        gateway.initialize_transaction.assert_not_called()

    def test_invalid_phone(self, client, gateway, shop):
        resp = _pay(client, "v-shop", shop["small"], phone="12345")
        assert resp.status_code == 400

    def test_gateway_failure(self, client, gateway, shop):
        gateway.initialize_transaction.side_effect = PaystackClientError("Invalid API key", 401)
        resp = _pay(client, "v-shop", shop["small"])
        assert resp.status_code == 502
        assert "Invalid API key" in resp.json()["msg"]


class TestGuestOrder:

    def test_creates_pending_order_at_storefront_price(self, client, shop):
        resp = client.post("/api/vendors/v-kiosk/orders", json={
            "bundleId": shop["small"], "customerPhone": "0551234567",
        })
        assert resp.status_code == 201
        order = resp.json()["order"]
        assert order["status"] == "pending"
        assert order["amount_paid"] == "25.00"
        assert order["vendor_id"] == shop["id"]
        assert order["sub_vendor_id"] is not None

    def test_unknown_bundle(self, client, shop):
        resp = client.post("/api/vendors/v-shop/orders", json={"bundleId": 999, "customerPhone": "0551234567"})
        assert resp.status_code == 404


class TestVerifyPayment:

    def test_settles_on_return(self, client, gateway, shop):
        reference = _pay(client, "v-shop", shop["small"]).json()["reference"]
        gateway.verify_transaction.return_value = {
            "reference": reference,
            "status": "success",
            "amount": Decimal("25.00"),
            "metadata": {"bundleId": shop["small"], "customerPhone": "0241234567", "vendorId": shop["id"]},
        }

        resp = client.get("/api/vendors/v-shop/verify-payment", params={"reference": reference})
        assert resp.status_code == 200
        assert resp.json()["status"] == "success"
        assert resp.json()["msg"] == "Payment verified successfully"
        assert "message" not in resp.json()

        again = client.get("/api/vendors/v-shop/verify-payment", params={"reference": reference})
        assert again.json()["replayed"] is True
        assert gateway.verify_transaction.call_count == 1

    def test_unknown_reference(self, client, gateway, shop):
        resp = client.get("/api/vendors/v-shop/verify-payment", params={"reference": "nope"})
        assert resp.status_code == 404

    def test_checkout_still_in_progress(self, client, gateway, shop):
        reference = _pay(client, "v-shop", shop["small"]).json()["reference"]
        gateway.verify_transaction.return_value = {
            "reference": reference,
            "status": "ongoing",
            "amount": Decimal("25.00"),
            "metadata": {"bundleId": shop["small"], "customerPhone": "0241234567", "vendorId": shop["id"]},
        }

        resp = client.get("/api/vendors/v-shop/verify-payment", params={"reference": reference})
        assert resp.status_code == 200
        data = resp.json()
        assert data["code"] == 1
        assert data["status"] == "pending"
        assert data["msg"] == "Payment not completed yet"

        store = Store(get_db())
        try:
            tx = store.transactions.get(reference)
        finally:
            store.close()
        assert tx.status == "pending"
        assert tx.order_id is None
