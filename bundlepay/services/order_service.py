"""
Order service: guest checkout, admin status transitions, listings.

Orders created here bypass the payment gateway (status pending); paid
orders are only ever created by the settlement engine.
"""

import logging

from bundlepay.database import get_db
from bundlepay.errors import Forbidden, InvalidState, NotFoundError, ValidationError
from bundlepay.models.schemas import OrderStatus
from bundlepay.repositories import ConnectionFactory, Store
from bundlepay.services.money import to_money
from bundlepay.services.notifications import NotificationHub, hub, notify_order_created
from bundlepay.services.phone import is_valid_phone, normalize_phone
from bundlepay.services.pricing import resolve_price_in

logger = logging.getLogger(__name__)

# from_status -> allowed targets
ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: (OrderStatus.COMPLETE, OrderStatus.CANCELLED),
}


def _serialize(row: dict) -> dict:
    amount = to_money(row["amount_paid"])
    base = to_money(row["bundle_base_price"])
    return {
        "id": row["id"],
        "vendor_id": row["vendor_id"],
        "sub_vendor_id": row["sub_vendor_id"],
        "bundle_id": row["bundle_id"],
        "bundle_name": row["bundle_name"],
        "network": row["bundle_network"],
        "customer_phone": row["customer_phone"],
        "amount_paid": str(amount),
        "profit": str(to_money(amount - base)),
        "status": row["status"],
        "created_at": row["created_at"],
    }


class OrderService:

    def __init__(self, connect: ConnectionFactory = get_db, notifier: NotificationHub = hub):
        self._connect = connect
        self._notifier = notifier

    def create_guest_order(self, vendor_link: str, bundle_id: int, customer_phone: str) -> dict:
        """
        Record a pending order at the storefront's current price.

        Raises:
            Forbidden: vendor missing or not approved.
            NotFoundError: bundle missing.
            ValidationError: bad phone number.
        """
        if not is_valid_phone(customer_phone):
            raise ValidationError("Please enter a valid Ghanaian phone number (10 digits)")
        phone = normalize_phone(customer_phone)

        store = Store(self._connect())
        try:
            seller = store.vendors.get_by_link(vendor_link)
            if seller is None or not seller.approved:
                raise Forbidden("Vendor not found or not approved")
            bundle = store.bundles.get(bundle_id)
            if bundle is None:
                raise NotFoundError("Data bundle not found")

            price = resolve_price_in(store, seller, bundle.id)
            owner_id = seller.catalog_owner_id
            sub_vendor_id = seller.id if seller.is_sub_vendor else None

            order_id = store.orders.insert(
                vendor_id=owner_id,
                sub_vendor_id=sub_vendor_id,
                bundle_id=bundle.id,
                customer_phone=phone,
                amount_paid=price,
            )
            store.commit()
            order = store.orders.get(order_id)
        finally:
            store.close()

        logger.info("Guest order created: id=%d, vendor_id=%d, amount=%s", order_id, owner_id, price)
        notify_order_created(self._notifier, owner_id, order_id, price, phone, sub_vendor_id)
        return order.to_dict()

    def update_status(self, order_id: int, status: str) -> dict:
        """
        Raises:
            ValidationError: unknown status.
            NotFoundError: no such order.
            InvalidState: transition not allowed from the current status.
        """
        if status not in OrderStatus.ALL:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(OrderStatus.ALL)}")

        store = Store(self._connect())
        try:
            order = store.orders.get(order_id)
            if order is None:
                raise NotFoundError("Order not found")
            if status not in ALLOWED_TRANSITIONS.get(order.status, ()):
                raise InvalidState(f"Cannot change order status from {order.status} to {status}")
            if store.orders.transition(order_id, order.status, status) != 1:
                raise InvalidState("Order status changed concurrently")
            store.commit()
            order = store.orders.get(order_id)
        finally:
            store.close()
        logger.info("Order %d -> %s", order_id, status)
        return order.to_dict()

    def list_orders(
        self,
        vendor_id: int | None = None,
        status: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        if status and status not in OrderStatus.ALL:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(OrderStatus.ALL)}")
        store = Store(self._connect())
        try:
            rows, total = store.orders.list(
                vendor_id=vendor_id,
                status=status,
                start_date=start_date,
                end_date=end_date,
                limit=limit,
                offset=(page - 1) * limit,
            )
        finally:
            store.close()
        return {
            "orders": [_serialize(r) for r in rows],
            "total": total,
            "page": page,
            "pages": (total + limit - 1) // limit if limit else 0,
        }
