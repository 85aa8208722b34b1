"""Pricing resolver tests."""

import os
import sqlite3
import tempfile
from decimal import Decimal

import pytest

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="pricing_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name

import bundlepay.database as _db_mod
from bundlepay.database import drop_all, get_db, init_db
from bundlepay.errors import Forbidden, NotFoundError, ValidationError
from bundlepay.models.schemas import DataBundle, Order
from bundlepay.repositories import Store
from bundlepay.services.pricing import PricingResolver, order_profit


@pytest.fixture(autouse=True)
def _setup_db():
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    conn = sqlite3.connect(_tmp.name)
    drop_all(conn)
    conn.close()
    init_db()
    yield


@pytest.fixture
def resolver():
    return PricingResolver()


@pytest.fixture
def catalog():
    """One approved parent, one sub-vendor, one other vendor, two bundles."""
    store = Store(get_db())
    try:
        parent = store.vendors.insert("Parent", "p@example.com", "0241111111", "h", "v-parent", approved=True)
        sub = store.vendors.insert(
            "Sub", "s@example.com", "0242222222", "h", "v-sub", approved=True, parent_vendor_id=parent,
        )
        other = store.vendors.insert("Other", "o@example.com", "0243333333", "h", "v-other", approved=True)
        small = store.bundles.insert("1GB MTN", "MTN", "1GB", Decimal("20.00"))
        large = store.bundles.insert("5GB MTN", "MTN", "5GB", Decimal("80.00"))
        store.commit()
    finally:
        store.close()
    return {"parent": parent, "sub": sub, "other": other, "small": small, "large": large}


class TestResolvePrice:

    def test_base_price_without_override(self, resolver, catalog):
        assert resolver.resolve_price(catalog["parent"], catalog["small"]) == Decimal("20.00")

    def test_override_wins(self, resolver, catalog):
        resolver.set_price(catalog["parent"], catalog["small"], "25.00")
        assert resolver.resolve_price(catalog["parent"], catalog["small"]) == Decimal("25.00")

    def test_override_is_per_vendor(self, resolver, catalog):
        resolver.set_price(catalog["parent"], catalog["small"], "25.00")
        assert resolver.resolve_price(catalog["other"], catalog["small"]) == Decimal("20.00")

    def test_sub_vendor_uses_parent_catalog(self, resolver, catalog):
        resolver.set_price(catalog["parent"], catalog["small"], "26.50")
        assert resolver.resolve_price(catalog["sub"], catalog["small"]) == Decimal("26.50")

    def test_unknown_bundle(self, resolver, catalog):
        with pytest.raises(NotFoundError, match="Data bundle not found"):
            resolver.resolve_price(catalog["parent"], 9999)

    def test_unknown_vendor(self, resolver, catalog):
        with pytest.raises(NotFoundError, match="Vendor not found"):
            resolver.resolve_price(9999, catalog["small"])

    def test_stale_override_falls_back_to_base(self, resolver, catalog):
        """Base price raised above an existing override: the floor still holds."""
        resolver.set_price(catalog["parent"], catalog["small"], "22.00")
        store = Store(get_db())
        try:
            store.bundles.update(catalog["small"], base_price=Decimal("24.00"))
            store.commit()
        finally:
            store.close()
        assert resolver.resolve_price(catalog["parent"], catalog["small"]) == Decimal("24.00")

    def test_resolution_is_never_below_base(self, resolver, catalog):
        for price in ("20.00", "20.01", "99.99"):
            resolver.set_price(catalog["parent"], catalog["small"], price)
            assert resolver.resolve_price(catalog["parent"], catalog["small"]) >= Decimal("20.00")


class TestSetPrice:

    def test_below_base_rejected(self, resolver, catalog):
        with pytest.raises(ValidationError, match="cannot be less than base price 20.00"):
            resolver.set_price(catalog["parent"], catalog["small"], "19.99")
        # Nothing written
        assert resolver.resolve_price(catalog["parent"], catalog["small"]) == Decimal("20.00")

    def test_equal_to_base_allowed(self, resolver, catalog):
        assert resolver.set_price(catalog["parent"], catalog["small"], 20) == Decimal("20.00")

    def test_malformed_price(self, resolver, catalog):
        with pytest.raises(ValidationError, match="Invalid price"):
            resolver.set_price(catalog["parent"], catalog["small"], "abc")

    def test_sub_vendor_cannot_set_prices(self, resolver, catalog):
        with pytest.raises(Forbidden):
            resolver.set_price(catalog["sub"], catalog["small"], "30.00")

    def test_last_write_wins(self, resolver, catalog):
        resolver.set_price(catalog["parent"], catalog["small"], "25.00")
        resolver.set_price(catalog["parent"], catalog["small"], "23.00")
        assert resolver.resolve_price(catalog["parent"], catalog["small"]) == Decimal("23.00")


class TestSetPrices:

    def test_batch_with_partial_failure(self, resolver, catalog):
        results, has_errors = resolver.set_prices(catalog["parent"], [
            {"bundle_id": catalog["small"], "price": Decimal("25.00")},
            {"bundle_id": catalog["large"], "price": Decimal("70.00")},
            {"bundle_id": 9999, "price": Decimal("10.00")},
        ])
        assert has_errors
        assert results[0] == {"bundle_id": catalog["small"], "price": "25.00"}
        assert "cannot be less than base price" in results[1]["error"]
        assert results[2] == {"bundle_id": 9999, "error": "Data bundle not found"}
        # The valid item was still applied
        assert resolver.resolve_price(catalog["parent"], catalog["small"]) == Decimal("25.00")

    def test_batch_all_ok(self, resolver, catalog):
        results, has_errors = resolver.set_prices(catalog["parent"], [
            {"bundle_id": catalog["large"], "price": "85"},
        ])
        assert not has_errors
        assert results == [{"bundle_id": catalog["large"], "price": "85.00"}]

    def test_batch_for_sub_vendor_forbidden(self, resolver, catalog):
        with pytest.raises(Forbidden):
            resolver.set_prices(catalog["sub"], [{"bundle_id": catalog["small"], "price": "30"}])


class TestStorefrontCatalog:

    def test_lists_every_bundle_with_resolved_price(self, resolver, catalog):
        resolver.set_price(catalog["parent"], catalog["small"], "25.00")
        view = resolver.storefront_catalog("v-parent")
        assert view["vendor"] == {"name": "Parent", "vendor_link": "v-parent"}
        prices = {b["id"]: b["price"] for b in view["bundles"]}
        assert prices == {catalog["small"]: "25.00", catalog["large"]: "80.00"}

    def test_sub_vendor_storefront_shows_parent_prices(self, resolver, catalog):
        resolver.set_price(catalog["parent"], catalog["small"], "25.00")
        view = resolver.storefront_catalog("v-sub")
        prices = {b["id"]: b["price"] for b in view["bundles"]}
        assert prices[catalog["small"]] == "25.00"

    def test_stale_override_flagged(self, resolver, catalog):
        resolver.set_price(catalog["parent"], catalog["small"], "22.00")
        store = Store(get_db())
        try:
            store.bundles.update(catalog["small"], base_price=Decimal("30.00"))
            store.commit()
        finally:
            store.close()
        view = resolver.storefront_catalog("v-parent")
        small = next(b for b in view["bundles"] if b["id"] == catalog["small"])
        assert small["price"] == "30.00"
        assert small["stale_override"] is True

    def test_unknown_link(self, resolver, catalog):
        with pytest.raises(NotFoundError):
            resolver.storefront_catalog("v-nope")


def test_order_profit_is_measured_against_base_price():
    bundle = DataBundle(id=1, name="1GB", network="MTN", data_amount="1GB", base_price=Decimal("20.00"))
    order = Order(id=1, vendor_id=1, bundle_id=1, customer_phone="0241234567", amount_paid=Decimal("25.00"))
    assert order_profit(order, bundle) == Decimal("5.00")
