"""
Pricing resolver: effective sale price of a bundle for a storefront, and
the write-time floor check for vendor price overrides.

Resolution reads current catalog state only; nothing is cached between
calls, so the settlement path can resolve once when building the payment
intent and again when validating the confirmation.
"""

import logging
from decimal import Decimal

from bundlepay.database import get_db
from bundlepay.errors import Forbidden, NotFoundError, ValidationError
from bundlepay.models.schemas import DataBundle, Order, Vendor, VendorPrice
from bundlepay.repositories import ConnectionFactory, Store
from bundlepay.services.money import to_money

logger = logging.getLogger(__name__)


def order_profit(order: Order, bundle: DataBundle) -> Decimal:
    """Profit on one order, always measured against the bundle's base price."""
    return to_money(order.amount_paid - bundle.base_price)


def resolve_price_in(store: Store, vendor: Vendor | int, bundle_id: int) -> Decimal:
    """
    Resolve the sale price inside an already-open Store.

    Sub-vendors share their parent's catalog, so the parent's override
    applies to them.

    Raises:
        NotFoundError: bundle (or vendor, when given by id) missing.
    """
    if not isinstance(vendor, Vendor):
        vendor_row = store.vendors.get(vendor)
        if vendor_row is None:
            raise NotFoundError("Vendor not found")
        vendor = vendor_row

    bundle = store.bundles.get(bundle_id)
    if bundle is None:
        raise NotFoundError("Data bundle not found")

    override = store.prices.get(vendor.catalog_owner_id, bundle.id)
    return effective_price(bundle, override)


def effective_price(bundle: DataBundle, override: VendorPrice | None) -> Decimal:
    """Override when present and not below the floor, otherwise the base price."""
    if override is not None and override.price >= bundle.base_price:
        return override.price
    return bundle.base_price


def check_price_floor(bundle: DataBundle, price: Decimal) -> None:
    """
    Raises:
        ValidationError: price below the bundle's base price.
    """
    if price < bundle.base_price:
        raise ValidationError(
            f"Price for '{bundle.name}' cannot be less than base price {bundle.base_price}"
        )


class PricingResolver:
    """Effective price lookup and vendor price overrides."""

    def __init__(self, connect: ConnectionFactory = get_db):
        self._connect = connect

    def resolve_price(self, vendor_id: int, bundle_id: int) -> Decimal:
        """
        Override price for (vendor, bundle) if one exists, else the base price.

        Raises:
            NotFoundError: vendor or bundle missing.
        """
        store = Store(self._connect())
        try:
            return resolve_price_in(store, vendor_id, bundle_id)
        finally:
            store.close()

    def set_price(self, vendor_id: int, bundle_id: int, price) -> Decimal:
        """
        Upsert a vendor's override for one bundle.

        Returns:
            The stored, normalised price.

        Raises:
            ValidationError: malformed price or price < basePrice.
            NotFoundError: vendor or bundle missing.
            Forbidden: vendor is a sub-vendor (it sells from its parent's catalog).
        """
        try:
            amount = to_money(price)
        except ValueError:
            raise ValidationError("Invalid price")

        store = Store(self._connect())
        try:
            vendor = store.vendors.get(vendor_id)
            if vendor is None:
                raise NotFoundError("Vendor not found")
            if vendor.is_sub_vendor:
                raise Forbidden("Sub-vendors use their parent vendor's prices")

            bundle = store.bundles.get(bundle_id)
            if bundle is None:
                raise NotFoundError("Data bundle not found")

            check_price_floor(bundle, amount)

            store.prices.upsert(vendor.id, bundle.id, amount)
            store.commit()
            logger.info(
                "Vendor price updated: vendor_id=%d, bundle_id=%d, price=%s",
                vendor.id, bundle.id, amount,
            )
            return amount
        except Exception:
            store.rollback()
            raise
        finally:
            store.close()

    def set_prices(self, vendor_id: int, items: list[dict]) -> tuple[list[dict], bool]:
        """
        Apply a batch of {bundle_id, price} overrides one by one.

        Returns:
            (results, has_errors) where each result is either
            {"bundle_id", "price"} or {"bundle_id", "error"}.

        Raises:
            NotFoundError / Forbidden: the vendor itself is missing or a sub-vendor.
        """
        store = Store(self._connect())
        try:
            vendor = store.vendors.get(vendor_id)
        finally:
            store.close()
        if vendor is None:
            raise NotFoundError("Vendor not found")
        if vendor.is_sub_vendor:
            raise Forbidden("Sub-vendors use their parent vendor's prices")

        results = []
        for item in items:
            bundle_id = item.get("bundle_id")
            try:
                stored = self.set_price(vendor_id, bundle_id, item.get("price"))
                results.append({"bundle_id": bundle_id, "price": str(stored)})
            except (ValidationError, NotFoundError) as e:
                results.append({"bundle_id": bundle_id, "error": e.message})
        has_errors = any("error" in r for r in results)
        return results, has_errors

    def storefront_catalog(self, vendor_link: str) -> dict:
        """
        All bundles with the price this storefront sells them at.

        Raises:
            NotFoundError: no vendor with this link.
        """
        store = Store(self._connect())
        try:
            vendor = store.vendors.get_by_link(vendor_link)
            if vendor is None:
                raise NotFoundError("Vendor not found")

            overrides = store.prices.list_for_vendor(vendor.catalog_owner_id)
            bundles = []
            for bundle in store.bundles.list():
                override = overrides.get(bundle.id)
                price = effective_price(bundle, override)
                bundles.append({
                    "id": bundle.id,
                    "name": bundle.name,
                    "network": bundle.network,
                    "data_amount": bundle.data_amount,
                    "price": str(price),
                    # basePrice was raised above an older override
                    "stale_override": bool(override and override.price < bundle.base_price),
                })
            return {
                "vendor": {"name": vendor.name, "vendor_link": vendor.vendor_link},
                "bundles": bundles,
            }
        finally:
            store.close()
