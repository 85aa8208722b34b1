"""
Withdrawal ledger: live balance computation and the payout request state
machine.

    pending -> approved | rejected    (terminal, immutable)

The balance is never stored. It is recomputed from committed rows on
every call:

    totalProfit    = sum(amountPaid - basePrice) over complete orders the
                     vendor owns or sold as a sub-vendor
    totalWithdrawn = sum(amountRequested) over approved withdrawals in scope
    available      = totalProfit - totalWithdrawn

Which approved withdrawals are "in scope" depends on the pooling policy
(see platform_config.get_withdrawal_policy):

    own     only the vendor's own withdrawals
    pooled  a top-level vendor also counts its sub-vendors' withdrawals,
            and a sub-vendor's request must also fit its parent's balance
"""

import logging
from decimal import Decimal
from typing import Callable

from bundlepay.database import get_db
from bundlepay.errors import (
    InsufficientBalance,
    InvalidState,
    NotFoundError,
    ValidationError,
)
from bundlepay.models.schemas import Vendor, WithdrawalStatus
from bundlepay.repositories import ConnectionFactory, Store
from bundlepay.services.money import ZERO, to_money
from bundlepay.services.notifications import (
    NotificationHub,
    hub,
    notify_withdrawal_processed,
    notify_withdrawal_requested,
)
from bundlepay.services.phone import is_valid_phone, normalize_phone
from bundlepay.services.platform_config import POOLING_POOLED, get_withdrawal_policy

logger = logging.getLogger(__name__)


def _total_profit(store: Store, vendor: Vendor) -> Decimal:
    rows = store.orders.profit_rows(vendor.id)
    return sum((to_money(paid - base) for paid, base in rows), ZERO)


def _withdrawal_scope(store: Store, vendor: Vendor, policy: str) -> list[int]:
    if policy == POOLING_POOLED and not vendor.is_sub_vendor:
        return [vendor.id] + store.vendors.sub_vendor_ids(vendor.id)
    return [vendor.id]


def _total_withdrawn(store: Store, vendor: Vendor, policy: str, status: str = WithdrawalStatus.APPROVED) -> Decimal:
    amounts = store.withdrawals.amounts(_withdrawal_scope(store, vendor, policy), status)
    return sum(amounts, ZERO)


def available_balance_in(store: Store, vendor: Vendor, policy: str) -> Decimal:
    """Balance of one vendor computed inside an already-open Store."""
    return to_money(_total_profit(store, vendor) - _total_withdrawn(store, vendor, policy))


def _check_fits(store: Store, vendor: Vendor, amount: Decimal, policy: str) -> None:
    """
    Raises:
        InsufficientBalance: amount exceeds the vendor's balance, or under
            the pooled policy the parent's pooled balance.
    """
    available = available_balance_in(store, vendor, policy)
    if amount > available:
        raise InsufficientBalance(available)

    if policy == POOLING_POOLED and vendor.is_sub_vendor:
        parent = store.vendors.get(vendor.parent_vendor_id)
        if parent is not None:
            pooled = available_balance_in(store, parent, policy)
            if amount > pooled:
                raise InsufficientBalance(
                    min(available, pooled),
                    "Insufficient balance in the parent vendor's pool",
                )


class WithdrawalLedger:
    """Balance queries and withdrawal transitions."""

    def __init__(
        self,
        connect: ConnectionFactory = get_db,
        notifier: NotificationHub = hub,
        policy_provider: Callable[[], str] = get_withdrawal_policy,
    ):
        self._connect = connect
        self._notifier = notifier
        self._policy_provider = policy_provider

    def _load_vendor(self, store: Store, vendor_id: int) -> Vendor:
        vendor = store.vendors.get(vendor_id)
        if vendor is None:
            raise NotFoundError("Vendor not found")
        return vendor

    # ── Balance ────────────────────────────────────────────

    def compute_available_balance(self, vendor_id: int) -> Decimal:
        """
        Raises:
            NotFoundError: vendor missing.
        """
        store = Store(self._connect())
        try:
            vendor = self._load_vendor(store, vendor_id)
            return available_balance_in(store, vendor, self._policy_provider())
        finally:
            store.close()

    def balance_summary(self, vendor_id: int) -> dict:
        """
        Returns:
            {"totalProfit", "totalWithdrawn", "availableBalance", "pendingWithdrawals"}
            as 2-decimal strings.
        """
        policy = self._policy_provider()
        store = Store(self._connect())
        try:
            vendor = self._load_vendor(store, vendor_id)
            total_profit = _total_profit(store, vendor)
            total_withdrawn = _total_withdrawn(store, vendor, policy)
            pending = sum(store.withdrawals.amounts([vendor.id], WithdrawalStatus.PENDING), ZERO)
        finally:
            store.close()

        return {
            "totalProfit": str(to_money(total_profit)),
            "totalWithdrawn": str(to_money(total_withdrawn)),
            "availableBalance": str(to_money(total_profit - total_withdrawn)),
            "pendingWithdrawals": str(to_money(pending)),
        }

    # ── Transitions ────────────────────────────────────────

    def request_withdrawal(self, vendor_id: int, amount_requested, mobile_money_number: str) -> dict:
        """
        Open a pending payout request. Nothing is reserved: several pending
        requests may jointly exceed the balance, which approval re-checks.

        Raises:
            ValidationError: amount not > 0 or invalid payout number.
            NotFoundError: vendor missing.
            InsufficientBalance: amount exceeds the computed balance (no row created).
        """
        try:
            amount = to_money(amount_requested)
        except ValueError:
            raise ValidationError("Invalid withdrawal amount")
        if amount <= ZERO:
            raise ValidationError("Withdrawal amount must be greater than zero")

        if not mobile_money_number or not is_valid_phone(mobile_money_number):
            raise ValidationError("A valid mobile money number is required")
        payout_number = normalize_phone(mobile_money_number)

        policy = self._policy_provider()
        store = Store(self._connect())
        try:
            vendor = self._load_vendor(store, vendor_id)
            _check_fits(store, vendor, amount, policy)

            withdrawal_id = store.withdrawals.insert(vendor.id, amount, payout_number)
            store.commit()
            withdrawal = store.withdrawals.get(withdrawal_id)
        except Exception:
            store.rollback()
            raise
        finally:
            store.close()

        logger.info(
            "Withdrawal requested: id=%d, vendor_id=%d, amount=%s",
            withdrawal_id, vendor.id, amount,
        )
        notify_withdrawal_requested(self._notifier, vendor.id, vendor.name, withdrawal_id, amount)
        return withdrawal.to_dict()

    def process_withdrawal(self, withdrawal_id: int, decision: str) -> dict:
        """
        Admin decision on a pending withdrawal.

        Approval re-validates the amount against the live balance under the
        write lock, so two approvals cannot both spend the same balance.
        Rejection needs no compensating credit: unapproved requests never
        entered the balance.

        Raises:
            ValidationError: decision not approved/rejected.
            NotFoundError: no such withdrawal.
            InvalidState: withdrawal already approved or rejected.
            InsufficientBalance: approval no longer covered by the balance.
        """
        if decision not in WithdrawalStatus.DECISIONS:
            raise ValidationError("Invalid status. Must be either 'approved' or 'rejected'")

        policy = self._policy_provider()
        store = Store(self._connect())
        try:
            store.begin_immediate()

            withdrawal = store.withdrawals.get(withdrawal_id)
            if withdrawal is None:
                raise NotFoundError("Withdrawal not found")
            if withdrawal.status != WithdrawalStatus.PENDING:
                raise InvalidState(f"Withdrawal has already been {withdrawal.status}")

            vendor = self._load_vendor(store, withdrawal.vendor_id)
            if decision == WithdrawalStatus.APPROVED:
                _check_fits(store, vendor, withdrawal.amount_requested, policy)

            if store.withdrawals.decide(withdrawal.id, decision) != 1:
                raise InvalidState("Withdrawal has already been processed")
            store.commit()
            processed = store.withdrawals.get(withdrawal.id)
        except Exception:
            store.rollback()
            raise
        finally:
            store.close()

        logger.info(
            "Withdrawal %s: id=%d, vendor_id=%d, amount=%s",
            decision, processed.id, vendor.id, processed.amount_requested,
        )
        notify_withdrawal_processed(
            self._notifier,
            vendor_id=vendor.id,
            vendor_name=vendor.name,
            withdrawal_id=processed.id,
            amount=processed.amount_requested,
            status=decision,
            processed_at=processed.processed_at,
        )
        return processed.to_dict()

    # ── Queries ────────────────────────────────────────────

    def list_withdrawals(
        self,
        vendor_id: int | None = None,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        if status and status not in (WithdrawalStatus.PENDING,) + WithdrawalStatus.DECISIONS:
            raise ValidationError(f"Unknown withdrawal status '{status}'")
        store = Store(self._connect())
        try:
            rows, total = store.withdrawals.list(vendor_id, status, limit, (page - 1) * limit)
            names = {}
            items = []
            for w in rows:
                if w.vendor_id not in names:
                    v = store.vendors.get(w.vendor_id)
                    names[w.vendor_id] = v.name if v else None
                item = w.to_dict()
                item["vendor_name"] = names[w.vendor_id]
                items.append(item)
        finally:
            store.close()
        return {
            "withdrawals": items,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": (total + limit - 1) // limit if limit else 0,
        }
