"""
Notification fan-out: fire-and-forget events to a user channel (vendor id)
or a role channel ("admin").

Session transport (websocket rooms) lives outside this module and
subscribes callbacks per channel. emit() never raises into the caller.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

logger = logging.getLogger(__name__)

ADMIN_CHANNEL = "admin"

Subscriber = Callable[[str, dict], None]


class NotificationHub:
    """In-process channel registry."""

    def __init__(self):
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def subscribe(self, channel, callback: Subscriber) -> None:
        self._subscribers[str(channel)].append(callback)

    def unsubscribe(self, channel, callback: Subscriber) -> None:
        subscribers = self._subscribers.get(str(channel), [])
        if callback in subscribers:
            subscribers.remove(callback)

    def emit(self, channel, event: dict) -> None:
        """Deliver to every subscriber of the channel; no acknowledgement."""
        channel = str(channel)
        payload = dict(event)
        payload["timestamp"] = datetime.now(timezone.utc).isoformat()

        subscribers = list(self._subscribers.get(channel, []))
        logger.debug(
            "Notification %s -> %s (%d subscriber(s))",
            payload.get("type"), channel, len(subscribers),
        )
        for callback in subscribers:
            try:
                callback(channel, payload)
            except Exception:
                logger.exception("Notification subscriber failed on channel %s", channel)


hub = NotificationHub()


# ── Event helpers ─────────────────────────────────────────


def notify_order_created(
    notifier: NotificationHub,
    vendor_id: int,
    order_id: int,
    amount: Decimal,
    customer_phone: str,
    sub_vendor_id: int | None = None,
) -> None:
    event = {
        "type": "order_created",
        "title": "New Order Received",
        "message": f"New order #{order_id} for {customer_phone}",
        "order_id": order_id,
        "amount": str(amount),
        "customer_phone": customer_phone,
        "vendor_id": vendor_id,
    }
    notifier.emit(vendor_id, event)
    if sub_vendor_id is not None:
        notifier.emit(sub_vendor_id, event)
    notifier.emit(ADMIN_CHANNEL, event)


def notify_withdrawal_requested(
    notifier: NotificationHub,
    vendor_id: int,
    vendor_name: str,
    withdrawal_id: int,
    amount: Decimal,
) -> None:
    notifier.emit(ADMIN_CHANNEL, {
        "type": "new_withdrawal",
        "message": f"New withdrawal request of {amount} from {vendor_name}",
        "withdrawal_id": withdrawal_id,
        "amount": str(amount),
        "vendor_id": vendor_id,
    })


def notify_withdrawal_processed(
    notifier: NotificationHub,
    vendor_id: int,
    vendor_name: str,
    withdrawal_id: int,
    amount: Decimal,
    status: str,
    processed_at: str | None,
) -> None:
    notifier.emit(vendor_id, {
        "type": "withdrawal_status",
        "withdrawal_id": withdrawal_id,
        "status": status,
        "amount": str(amount),
        "message": f"Your withdrawal request for {amount} has been {status}",
        "processed_at": processed_at,
    })
    notifier.emit(ADMIN_CHANNEL, {
        "type": "withdrawal_processed",
        "title": f"Withdrawal {status.capitalize()}",
        "message": f"{vendor_name}'s withdrawal request for {amount} has been {status}",
        "withdrawal_id": withdrawal_id,
        "vendor_id": vendor_id,
        "amount": str(amount),
        "status": status,
    })
