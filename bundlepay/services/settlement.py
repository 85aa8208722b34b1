"""
Settlement engine: turns a storefront purchase into a hosted payment, and
a gateway confirmation into exactly one Order plus a profit accrual.

Per-reference state machine (payment_transactions.status):

    NO_RECORD -> pending -> success | failed     (terminal)

A checkout the gateway still reports as in progress leaves the row pending;
only a final gateway status (or an unknown reference this service opened)
fails it.

Guarantees:
- The webhook signature is checked before any row is read or written.
- A pending row exists before the gateway is consulted, so an
  interrupted delivery leaves something to re-verify.
- The amount is never taken from the callback body: the gateway's
  verify endpoint is authoritative, and the price is re-resolved from
  the current catalog before anything is committed.
- The final commit runs under BEGIN IMMEDIATE and only flips a row that
  is still pending, so concurrent deliveries of one reference commit at
  most one Order.
"""

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from bundlepay.database import get_db
from bundlepay.errors import (
    Forbidden,
    NotFoundError,
    Unauthorized,
    UpstreamError,
    ValidationError,
)
from bundlepay.models.schemas import PaymentTransaction, TransactionStatus
from bundlepay.repositories import ConnectionFactory, Store
from bundlepay.services.money import from_minor_units, to_money
from bundlepay.services.notifications import NotificationHub, hub, notify_order_created
from bundlepay.services.paystack_client import (
    FAILED_STATUSES,
    SUCCESS_STATUS,
    PaystackClient,
    PaystackClientError,
)
from bundlepay.services.phone import is_valid_phone, normalize_phone
from bundlepay.services.platform_config import get_gateway_secret, get_gateway_settings
from bundlepay.services.pricing import resolve_price_in
from bundlepay.services.sign import verify_signature

logger = logging.getLogger(__name__)

CHARGE_SUCCESS_EVENT = "charge.success"
REQUIRED_METADATA = ("bundleId", "customerPhone", "vendorId")

# Result kinds
RESULT_SUCCESS = "success"
RESULT_FAILED = "failed"
RESULT_IGNORED = "ignored"
RESULT_PENDING = "pending"

# Failure reasons (stored on the transaction)
REASON_AMOUNT_MISMATCH = "Transaction amount mismatch"
REASON_NOT_SUCCESSFUL = "Transaction verification failed"
REASON_BAD_METADATA = "Invalid transaction metadata"
REASON_INTENT_MISMATCH = "Transaction metadata does not match payment intent"
REASON_BUNDLE_MISSING = "Data bundle not found"
REASON_VENDOR_MISSING = "Vendor not found"
REASON_PRICE_MISMATCH = "Payment amount does not match bundle price"
REASON_REFERENCE_NOT_FOUND = "Transaction reference not found"

MSG_VERIFIED = "Payment verified successfully"
MSG_NOT_COMPLETED = "Payment not completed yet"


@dataclass
class SettlementResult:
    """Outcome of one settlement attempt for a reference."""

    reference: str | None
    outcome: str
    reason: str | None = None
    order: dict | None = None
    replayed: bool = False
    failure_status: int = 400
    extra: dict = field(default_factory=dict)

    @property
    def http_status(self) -> int:
        # Replays and ignored events are acknowledged; only a first-time
        # business rejection answers 4xx.
        if self.outcome == RESULT_FAILED and not self.replayed:
            return self.failure_status
        return 200

    def to_content(self) -> dict:
        content = {
            "code": 1 if self.outcome != RESULT_FAILED else -1,
            "status": self.outcome,
            "reference": self.reference,
        }
        if self.replayed:
            content["replayed"] = True
        if self.reason:
            content["msg"] = self.reason
        elif self.outcome == RESULT_SUCCESS and not self.replayed:
            content["msg"] = MSG_VERIFIED
        if self.order:
            content["order"] = self.order
        return content


class _Rejection(Exception):
    """Internal: a validation step failed with a business reason."""

    def __init__(self, reason: str, status: int = 400):
        super().__init__(reason)
        self.reason = reason
        self.status = status


def _default_gateway() -> PaystackClient:
    settings = get_gateway_settings()
    return PaystackClient(settings["secret_key"], settings["base_url"], settings["timeout"])


class SettlementEngine:
    """Payment initiation, confirmation handling and re-verification."""

    def __init__(
        self,
        connect: ConnectionFactory = get_db,
        gateway: PaystackClient | None = None,
        notifier: NotificationHub = hub,
        secret_provider: Callable[[], str] = get_gateway_secret,
    ):
        """
        Args:
            connect: connection factory for the persistent store.
            gateway: payment gateway adapter; built from current settings per call when omitted.
            notifier: fan-out for "order created" events.
            secret_provider: returns the key webhook signatures are checked against.
        """
        self._connect = connect
        self._gateway = gateway
        self._notifier = notifier
        self._secret_provider = secret_provider

    def _get_gateway(self) -> PaystackClient:
        return self._gateway if self._gateway is not None else _default_gateway()

    # ── Initiation ─────────────────────────────────────────

    def initiate_payment(
        self,
        vendor_link: str,
        bundle_id: int,
        customer_phone: str,
        customer_email: str,
    ) -> dict:
        """
        Price the purchase, record a pending transaction and open a hosted
        checkout. No Order is created here.

        Returns:
            {"authorization_url", "reference", "amount"}

        Raises:
            Forbidden: vendor missing or not approved.
            NotFoundError: bundle missing.
            ValidationError: bad phone or email.
            UpstreamError: gateway failed; the pending row is kept for re-verification.
        """
        store = Store(self._connect())
        try:
            vendor = store.vendors.get_by_link(vendor_link)
            if vendor is None or not vendor.approved:
                raise Forbidden("Vendor not found or not approved")

            bundle = store.bundles.get(bundle_id)
            if bundle is None:
                raise NotFoundError("Data bundle not found")

            if not is_valid_phone(customer_phone):
                raise ValidationError("Please enter a valid Ghanaian phone number (10 digits)")
            phone = normalize_phone(customer_phone)

            email = (customer_email or "").strip()
            if "@" not in email:
                raise ValidationError("A valid customer email is required")

            amount = resolve_price_in(store, vendor, bundle.id)

            reference = f"BP-{uuid.uuid4().hex}"
            store.transactions.insert(
                reference=reference,
                amount=amount,
                vendor_id=vendor.id,
                sub_vendor_id=vendor.id if vendor.is_sub_vendor else None,
                bundle_id=bundle.id,
                customer_phone=phone,
                customer_email=email,
            )
            store.commit()
        finally:
            store.close()

        settings = get_gateway_settings()
        callback_url = f"{settings['app_url']}/api/vendors/{vendor_link}/verify-payment"
        metadata = {
            "bundleId": bundle.id,
            "customerPhone": phone,
            "vendorId": vendor.id,
        }

        try:
            result = self._get_gateway().initialize_transaction(
                email=email,
                amount=amount,
                callback_url=callback_url,
                metadata=metadata,
                reference=reference,
            )
        except PaystackClientError as e:
            logger.error("Payment initialisation failed (reference=%s): %s", reference, e)
            raise UpstreamError(f"Error initializing payment: {e}")

        logger.info(
            "Payment initiated: reference=%s, vendor_id=%d, bundle_id=%d, amount=%s",
            reference, vendor.id, bundle.id, amount,
        )
        return {
            "authorization_url": result["authorization_url"],
            "reference": reference,
            "amount": str(amount),
        }

    # ── Webhook ────────────────────────────────────────────

    def handle_confirmation(self, raw_body: bytes, signature: str | None) -> SettlementResult:
        """
        Process one gateway webhook delivery.

        Raises:
            Unauthorized: signature mismatch (nothing read or written).
            ValidationError: signed payload is not a usable event.
            UpstreamError: verify call failed; the delivery should be retried.
        """
        if not verify_signature(raw_body, self._secret_provider(), signature):
            logger.warning("Rejected webhook with invalid signature")
            raise Unauthorized("Invalid signature")

        try:
            event = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
            raise ValidationError("Malformed webhook payload")
        if not isinstance(event, dict):
            raise ValidationError("Malformed webhook payload")

        if event.get("event") != CHARGE_SUCCESS_EVENT:
            logger.info("Ignoring webhook event %r", event.get("event"))
            return SettlementResult(reference=None, outcome=RESULT_IGNORED)

        data = event.get("data") or {}
        reference = data.get("reference")
        if not reference or not isinstance(reference, str):
            raise ValidationError("Webhook event has no transaction reference")

        event_amount = None
        if data.get("amount") is not None:
            try:
                event_amount = from_minor_units(data["amount"])
            except (ValueError, TypeError):
                raise ValidationError("Webhook event amount is not a number")

        return self.settle_reference(reference, event_amount=event_amount)

    # ── Settlement by reference ────────────────────────────

    def settle_reference(self, reference: str, event_amount: Decimal | None = None) -> SettlementResult:
        """
        Drive one reference to a terminal state, or report the terminal state
        it already reached.

        Args:
            reference: gateway transaction reference.
            event_amount: amount from the webhook body, used only to open a
                record for a reference this service never initiated.

        Raises:
            NotFoundError: no record for the reference and no event amount to open one.
            UpstreamError: verify call failed; the transaction stays pending.
        """
        tx = self._open_transaction(reference, event_amount)
        if tx.is_terminal:
            logger.info("Reference %s already %s; not reprocessing", reference, tx.status)
            return self._replay_result(tx)

        self._mark_checked(reference)
        try:
            verified = self._get_gateway().verify_transaction(reference)
        except PaystackClientError as e:
            if e.http_status == 404 and tx.vendor_id is not None:
                # Initialisation never reached the gateway
                return self._fail(reference, REASON_REFERENCE_NOT_FOUND, 404)
            logger.error("Verify-by-reference failed (reference=%s): %s", reference, e)
            raise UpstreamError(f"Could not verify transaction with the payment gateway: {e}")

        gateway_status = verified.get("status")
        if gateway_status != SUCCESS_STATUS and gateway_status not in FAILED_STATUSES:
            logger.info("Reference %s is %r at the gateway; leaving it pending", reference, gateway_status)
            return SettlementResult(reference=reference, outcome=RESULT_PENDING, reason=MSG_NOT_COMPLETED)

        try:
            plan = self._validate(tx, verified)
        except _Rejection as r:
            return self._fail(reference, r.reason, r.status)

        return self._commit(tx, plan)

    def _open_transaction(self, reference: str, event_amount: Decimal | None) -> PaymentTransaction:
        """Fetch the record for reference, inserting a pending one if absent."""
        store = Store(self._connect())
        try:
            tx = store.transactions.get(reference)
            if tx is not None:
                return tx
            if event_amount is None:
                raise NotFoundError("Unknown payment reference")
            try:
                store.transactions.insert(reference=reference, amount=event_amount)
                store.commit()
            except sqlite3.IntegrityError:
                # A concurrent delivery inserted it first
                store.rollback()
            tx = store.transactions.get(reference)
            return tx
        finally:
            store.close()

    def _mark_checked(self, reference: str) -> None:
        store = Store(self._connect())
        try:
            store.transactions.mark_checked(reference)
            store.commit()
        finally:
            store.close()

    def _validate(self, tx: PaymentTransaction, verified: dict) -> dict:
        """
        The five settlement checks, in order. Returns what _commit needs.

        Raises:
            _Rejection: first failing check.
        """
        verified_amount = to_money(verified.get("amount"))

        # 1. amount agrees with what was recorded for this reference
        if verified_amount != tx.amount:
            raise _Rejection(REASON_AMOUNT_MISMATCH)

        # 2. the gateway says the charge succeeded (in-progress statuses never get here)
        if verified.get("status") != SUCCESS_STATUS:
            raise _Rejection(REASON_NOT_SUCCESSFUL)

        # 3. metadata is complete (and matches the intent we recorded, if any)
        metadata = verified.get("metadata") or {}
        if any(not metadata.get(key) for key in REQUIRED_METADATA):
            raise _Rejection(REASON_BAD_METADATA)
        try:
            bundle_id = int(metadata["bundleId"])
            vendor_id = int(metadata["vendorId"])
        except (TypeError, ValueError):
            raise _Rejection(REASON_BAD_METADATA)
        customer_phone = normalize_phone(str(metadata["customerPhone"]))
        if not is_valid_phone(customer_phone):
            raise _Rejection(REASON_BAD_METADATA)
        if (tx.vendor_id is not None and tx.vendor_id != vendor_id) or \
                (tx.bundle_id is not None and tx.bundle_id != bundle_id):
            raise _Rejection(REASON_INTENT_MISMATCH)

        store = Store(self._connect())
        try:
            # 4. bundle still exists
            bundle = store.bundles.get(bundle_id)
            if bundle is None:
                raise _Rejection(REASON_BUNDLE_MISSING, status=404)

            vendor = store.vendors.get(vendor_id)
            if vendor is None:
                raise _Rejection(REASON_VENDOR_MISSING, status=404)

            # 5. current price still equals what was paid
            expected = resolve_price_in(store, vendor, bundle.id)
            if expected != verified_amount:
                raise _Rejection(REASON_PRICE_MISMATCH)
        finally:
            store.close()

        if vendor.is_sub_vendor:
            owner_id, sub_vendor_id = vendor.parent_vendor_id, vendor.id
        else:
            owner_id, sub_vendor_id = vendor.id, None

        return {
            "amount": verified_amount,
            "bundle": bundle,
            "seller_id": vendor.id,
            "owner_id": owner_id,
            "sub_vendor_id": sub_vendor_id,
            "customer_phone": customer_phone,
        }

    def _commit(self, tx: PaymentTransaction, plan: dict) -> SettlementResult:
        """Order + profit + transaction success, atomically and at most once."""
        store = Store(self._connect())
        try:
            store.begin_immediate()

            current = store.transactions.get(tx.reference)
            if current is None or current.is_terminal:
                store.rollback()
                return self._replay_result(current or tx)

            amount = plan["amount"]
            bundle = plan["bundle"]
            order_id = store.orders.insert(
                vendor_id=plan["owner_id"],
                sub_vendor_id=plan["sub_vendor_id"],
                bundle_id=bundle.id,
                customer_phone=plan["customer_phone"],
                amount_paid=amount,
            )
            profit = to_money(amount - bundle.base_price)
            store.vendors.add_profit(plan["seller_id"], profit)

            if store.transactions.mark_success(tx.reference, order_id) != 1:
                store.rollback()
                return self._replay_result(store.transactions.get(tx.reference) or tx)

            store.commit()
            order = store.orders.get(order_id)
        except Exception:
            store.rollback()
            raise
        finally:
            store.close()

        logger.info(
            "Settled reference=%s: order_id=%d, vendor_id=%d, amount=%s, profit=%s",
            tx.reference, order_id, plan["owner_id"], amount, profit,
        )
        notify_order_created(
            self._notifier,
            vendor_id=plan["owner_id"],
            order_id=order_id,
            amount=amount,
            customer_phone=plan["customer_phone"],
            sub_vendor_id=plan["sub_vendor_id"],
        )
        return SettlementResult(
            reference=tx.reference,
            outcome=RESULT_SUCCESS,
            order=order.to_dict() if order else {"id": order_id},
        )

    def _fail(self, reference: str, reason: str, status: int) -> SettlementResult:
        store = Store(self._connect())
        try:
            updated = store.transactions.mark_failed(reference, reason)
            store.commit()
            if updated == 0:
                # Another delivery reached a terminal state first
                current = store.transactions.get(reference)
                if current is not None and current.is_terminal:
                    return self._replay_result(current)
        finally:
            store.close()

        logger.warning("Settlement rejected (reference=%s): %s", reference, reason)
        return SettlementResult(
            reference=reference,
            outcome=RESULT_FAILED,
            reason=reason,
            failure_status=status,
        )

    def _replay_result(self, tx: PaymentTransaction) -> SettlementResult:
        order = None
        if tx.status == TransactionStatus.SUCCESS and tx.order_id is not None:
            store = Store(self._connect())
            try:
                row = store.orders.get(tx.order_id)
                order = row.to_dict() if row else {"id": tx.order_id}
            finally:
                store.close()
        return SettlementResult(
            reference=tx.reference,
            outcome=RESULT_SUCCESS if tx.status == TransactionStatus.SUCCESS else RESULT_FAILED,
            reason=tx.failure_reason,
            order=order,
            replayed=True,
        )

    # ── Recovery ───────────────────────────────────────────

    def reconcile_pending(self, older_than_minutes: int = 5, limit: int = 50) -> list[SettlementResult]:
        """
        Re-verify pending transactions older than the cutoff, least recently
        checked first. Gateway failures are logged and the row stays pending,
        behind the rows not yet tried, for the next pass.
        """
        cutoff = (datetime.now() - timedelta(minutes=older_than_minutes)).strftime(
            "%Y-%m-%d %H:%M:%S"
        )
        store = Store(self._connect())
        try:
            references = store.transactions.stale_pending_references(cutoff, limit)
        finally:
            store.close()

        results = []
        for reference in references:
            try:
                results.append(self.settle_reference(reference))
            except UpstreamError as e:
                logger.warning("Reconciliation deferred (reference=%s): %s", reference, e)
        return results

    # ── Queries ────────────────────────────────────────────

    def get_transaction(self, reference: str) -> PaymentTransaction:
        """
        Raises:
            NotFoundError: unknown reference.
        """
        store = Store(self._connect())
        try:
            tx = store.transactions.get(reference)
        finally:
            store.close()
        if tx is None:
            raise NotFoundError("Unknown payment reference")
        return tx

    def list_transactions(self, status: str | None = None, page: int = 1, per_page: int = 20) -> dict:
        if status and status not in (TransactionStatus.PENDING,) + TransactionStatus.TERMINAL:
            raise ValidationError(f"Unknown transaction status '{status}'")
        store = Store(self._connect())
        try:
            rows, total = store.transactions.list(status, per_page, (page - 1) * per_page)
        finally:
            store.close()
        return {
            "transactions": [t.to_dict() for t in rows],
            "total": total,
            "page": page,
            "per_page": per_page,
        }
