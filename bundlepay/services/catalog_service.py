"""Admin-managed bundle catalog."""

import logging

from bundlepay.database import get_db
from bundlepay.errors import Conflict, NotFoundError, ValidationError
from bundlepay.repositories import ConnectionFactory, Store
from bundlepay.services.money import ZERO, to_money

logger = logging.getLogger(__name__)


def _parse_base_price(value):
    try:
        price = to_money(value)
    except ValueError:
        raise ValidationError("Invalid base price")
    if price < ZERO:
        raise ValidationError("Base price cannot be negative")
    return price


def _require_text(value, field):
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required")
    return value


class CatalogService:
    """Bundle CRUD. Deleting a bundle also removes its vendor price overrides."""

    def __init__(self, connect: ConnectionFactory = get_db):
        self._connect = connect

    def list_bundles(self) -> list[dict]:
        store = Store(self._connect())
        try:
            return [b.to_dict() for b in store.bundles.list()]
        finally:
            store.close()

    def create_bundle(self, name: str, network: str, data_amount: str, base_price) -> dict:
        name = _require_text(name, "Name")
        network = _require_text(network, "Network")
        data_amount = _require_text(data_amount, "Data amount")
        price = _parse_base_price(base_price)

        store = Store(self._connect())
        try:
            bundle_id = store.bundles.insert(name, network, data_amount, price)
            store.commit()
            bundle = store.bundles.get(bundle_id)
        finally:
            store.close()
        logger.info("Bundle created: id=%d, name=%s, base_price=%s", bundle.id, bundle.name, bundle.base_price)
        return bundle.to_dict()

    def update_bundle(
        self,
        bundle_id: int,
        name: str | None = None,
        network: str | None = None,
        data_amount: str | None = None,
        base_price=None,
    ) -> dict:
        """
        Partial update. Raising base_price above an existing override is
        allowed; the resolver falls back to the base price for such overrides.

        Raises:
            ValidationError: empty text field or bad price.
            NotFoundError: no such bundle.
        """
        fields = {
            "name": _require_text(name, "Name") if name is not None else None,
            "network": _require_text(network, "Network") if network is not None else None,
            "data_amount": _require_text(data_amount, "Data amount") if data_amount is not None else None,
            "base_price": _parse_base_price(base_price) if base_price is not None else None,
        }

        store = Store(self._connect())
        try:
            if store.bundles.update(bundle_id, **fields) == 0:
                raise NotFoundError("Data bundle not found")
            store.commit()
            bundle = store.bundles.get(bundle_id)
        finally:
            store.close()
        logger.info("Bundle updated: id=%d", bundle_id)
        return bundle.to_dict()

    def delete_bundle(self, bundle_id: int) -> None:
        """
        Raises:
            NotFoundError: no such bundle.
            Conflict: orders reference the bundle.
        """
        store = Store(self._connect())
        try:
            if store.bundles.get(bundle_id) is None:
                raise NotFoundError("Data bundle not found")
            if store.orders.count_for_bundle(bundle_id) > 0:
                raise Conflict("Cannot delete a bundle that has orders")
            store.bundles.delete(bundle_id)
            store.commit()
        finally:
            store.close()
        logger.info("Bundle deleted: id=%d", bundle_id)
