"""
Per-entity repositories over a single sqlite3 connection.

Services open one Store per operation, passing in the connection
factory they were built with, and close it in ``finally``. Nothing here
commits on its own; the caller decides the transaction boundary.
"""

import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from bundlepay.models.schemas import (
    DataBundle,
    Order,
    OrderStatus,
    PaymentTransaction,
    TransactionStatus,
    Vendor,
    VendorPrice,
    Withdrawal,
    WithdrawalStatus,
)

ConnectionFactory = Callable[[], sqlite3.Connection]


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


# ── Vendors ───────────────────────────────────────────────


class VendorRepository:

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @staticmethod
    def _row_to_vendor(row) -> Vendor:
        return Vendor(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            password_hash=row["password_hash"],
            vendor_link=row["vendor_link"],
            approved=bool(row["approved"]),
            parent_vendor_id=row["parent_vendor_id"],
            profit=_money(row["profit"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get(self, vendor_id: int) -> Optional[Vendor]:
        row = self.conn.execute(
            "SELECT * FROM vendors WHERE id = ?", (vendor_id,)
        ).fetchone()
        return self._row_to_vendor(row) if row else None

    def get_by_link(self, vendor_link: str) -> Optional[Vendor]:
        row = self.conn.execute(
            "SELECT * FROM vendors WHERE vendor_link = ?", (vendor_link,)
        ).fetchone()
        return self._row_to_vendor(row) if row else None

    def get_by_email(self, email: str) -> Optional[Vendor]:
        row = self.conn.execute(
            "SELECT * FROM vendors WHERE email = ?", (email,)
        ).fetchone()
        return self._row_to_vendor(row) if row else None

    def phone_taken(self, phone: str, exclude_id: int | None = None) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM vendors WHERE phone = ? AND id != ?",
            (phone, exclude_id or 0),
        ).fetchone()
        return row is not None

    def insert(
        self,
        name: str,
        email: str,
        phone: str,
        password_hash: str,
        vendor_link: str,
        approved: bool = False,
        parent_vendor_id: int | None = None,
    ) -> int:
        now = _now()
        cursor = self.conn.execute(
            """INSERT INTO vendors
               (name, email, phone, password_hash, vendor_link, approved,
                parent_vendor_id, profit, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, '0.00', ?, ?)""",
            (name, email, phone, password_hash, vendor_link,
             1 if approved else 0, parent_vendor_id, now, now),
        )
        return cursor.lastrowid

    def update_profile(self, vendor_id: int, name: str | None, phone: str | None) -> None:
        fields, params = [], []
        if name is not None:
            fields.append("name = ?")
            params.append(name)
        if phone is not None:
            fields.append("phone = ?")
            params.append(phone)
        if not fields:
            return
        fields.append("updated_at = ?")
        params.extend([_now(), vendor_id])
        self.conn.execute(
            f"UPDATE vendors SET {', '.join(fields)} WHERE id = ?", params
        )

    def set_approved(self, vendor_id: int, approved: bool) -> int:
        cursor = self.conn.execute(
            "UPDATE vendors SET approved = ?, updated_at = ? WHERE id = ?",
            (1 if approved else 0, _now(), vendor_id),
        )
        return cursor.rowcount

    def add_profit(self, vendor_id: int, amount: Decimal) -> None:
        """Read-modify-write; callers hold a write transaction."""
        row = self.conn.execute(
            "SELECT profit FROM vendors WHERE id = ?", (vendor_id,)
        ).fetchone()
        if not row:
            return
        new_profit = _money(row["profit"]) + amount
        self.conn.execute(
            "UPDATE vendors SET profit = ?, updated_at = ? WHERE id = ?",
            (str(new_profit), _now(), vendor_id),
        )

    def sub_vendor_ids(self, parent_id: int) -> list[int]:
        rows = self.conn.execute(
            "SELECT id FROM vendors WHERE parent_vendor_id = ?", (parent_id,)
        ).fetchall()
        return [r["id"] for r in rows]

    def list(
        self,
        parent_id: int | None = None,
        approved: bool | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Vendor], int]:
        conditions, params = [], []
        if parent_id is not None:
            conditions.append("parent_vendor_id = ?")
            params.append(parent_id)
        if approved is not None:
            conditions.append("approved = ?")
            params.append(1 if approved else 0)
        where_clause = " AND ".join(conditions) if conditions else "1=1"

        total = self.conn.execute(
            f"SELECT COUNT(*) AS cnt FROM vendors WHERE {where_clause}", params
        ).fetchone()["cnt"]
        rows = self.conn.execute(
            f"""SELECT * FROM vendors WHERE {where_clause}
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
            params + [limit, offset],
        ).fetchall()
        return [self._row_to_vendor(r) for r in rows], total


# ── Catalog ───────────────────────────────────────────────


class BundleRepository:

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @staticmethod
    def _row_to_bundle(row) -> DataBundle:
        return DataBundle(
            id=row["id"],
            name=row["name"],
            network=row["network"],
            data_amount=row["data_amount"],
            base_price=_money(row["base_price"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get(self, bundle_id: int) -> Optional[DataBundle]:
        row = self.conn.execute(
            "SELECT * FROM data_bundles WHERE id = ?", (bundle_id,)
        ).fetchone()
        return self._row_to_bundle(row) if row else None

    def list(self) -> list[DataBundle]:
        rows = self.conn.execute(
            "SELECT * FROM data_bundles ORDER BY network ASC, id ASC"
        ).fetchall()
        return [self._row_to_bundle(r) for r in rows]

    def insert(self, name: str, network: str, data_amount: str, base_price: Decimal) -> int:
        now = _now()
        cursor = self.conn.execute(
            """INSERT INTO data_bundles
               (name, network, data_amount, base_price, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (name, network, data_amount, str(base_price), now, now),
        )
        return cursor.lastrowid

    def update(self, bundle_id: int, **fields) -> int:
        columns, params = [], []
        for column in ("name", "network", "data_amount", "base_price"):
            if fields.get(column) is not None:
                columns.append(f"{column} = ?")
                params.append(str(fields[column]))
        if not columns:
            return 1 if self.get(bundle_id) else 0
        columns.append("updated_at = ?")
        params.extend([_now(), bundle_id])
        cursor = self.conn.execute(
            f"UPDATE data_bundles SET {', '.join(columns)} WHERE id = ?", params
        )
        return cursor.rowcount

    def delete(self, bundle_id: int) -> int:
        self.conn.execute("DELETE FROM vendor_prices WHERE bundle_id = ?", (bundle_id,))
        cursor = self.conn.execute("DELETE FROM data_bundles WHERE id = ?", (bundle_id,))
        return cursor.rowcount


class VendorPriceRepository:

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @staticmethod
    def _row_to_price(row) -> VendorPrice:
        return VendorPrice(
            id=row["id"],
            vendor_id=row["vendor_id"],
            bundle_id=row["bundle_id"],
            price=_money(row["price"]),
            updated_at=row["updated_at"],
        )

    def get(self, vendor_id: int, bundle_id: int) -> Optional[VendorPrice]:
        row = self.conn.execute(
            "SELECT * FROM vendor_prices WHERE vendor_id = ? AND bundle_id = ?",
            (vendor_id, bundle_id),
        ).fetchone()
        return self._row_to_price(row) if row else None

    def list_for_vendor(self, vendor_id: int) -> dict[int, VendorPrice]:
        rows = self.conn.execute(
            "SELECT * FROM vendor_prices WHERE vendor_id = ?", (vendor_id,)
        ).fetchall()
        return {r["bundle_id"]: self._row_to_price(r) for r in rows}

    def upsert(self, vendor_id: int, bundle_id: int, price: Decimal) -> None:
        """Last write wins; the compound unique index keeps one row per pair."""
        self.conn.execute(
            """INSERT INTO vendor_prices (vendor_id, bundle_id, price, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(vendor_id, bundle_id)
               DO UPDATE SET price = excluded.price, updated_at = excluded.updated_at""",
            (vendor_id, bundle_id, str(price), _now()),
        )


# ── Orders ────────────────────────────────────────────────


class OrderRepository:

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @staticmethod
    def _row_to_order(row) -> Order:
        return Order(
            id=row["id"],
            vendor_id=row["vendor_id"],
            sub_vendor_id=row["sub_vendor_id"],
            bundle_id=row["bundle_id"],
            customer_phone=row["customer_phone"],
            amount_paid=_money(row["amount_paid"]),
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get(self, order_id: int) -> Optional[Order]:
        row = self.conn.execute(
            "SELECT * FROM orders WHERE id = ?", (order_id,)
        ).fetchone()
        return self._row_to_order(row) if row else None

    def insert(
        self,
        vendor_id: int,
        bundle_id: int,
        customer_phone: str,
        amount_paid: Decimal,
        sub_vendor_id: int | None = None,
        status: str = OrderStatus.PENDING,
    ) -> int:
        now = _now()
        cursor = self.conn.execute(
            """INSERT INTO orders
               (vendor_id, sub_vendor_id, bundle_id, customer_phone,
                amount_paid, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (vendor_id, sub_vendor_id, bundle_id, customer_phone,
             str(amount_paid), status, now, now),
        )
        return cursor.lastrowid

    def transition(self, order_id: int, from_status: str, to_status: str) -> int:
        """Conditional status change; returns 0 when the row was not in from_status."""
        cursor = self.conn.execute(
            "UPDATE orders SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (to_status, _now(), order_id, from_status),
        )
        return cursor.rowcount

    def count_for_bundle(self, bundle_id: int) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) AS cnt FROM orders WHERE bundle_id = ?", (bundle_id,)
        ).fetchone()["cnt"]

    def profit_rows(self, vendor_id: int, include_sub_vendor_sales: bool = True) -> list[tuple[Decimal, Decimal]]:
        """
        (amount_paid, base_price) for every complete order the vendor owns
        or sold as a sub-vendor.
        """
        if include_sub_vendor_sales:
            where = "(o.vendor_id = ? OR o.sub_vendor_id = ?)"
            params = (vendor_id, vendor_id, OrderStatus.COMPLETE)
        else:
            where = "o.vendor_id = ?"
            params = (vendor_id, OrderStatus.COMPLETE)
        rows = self.conn.execute(
            f"""SELECT o.amount_paid, b.base_price
                FROM orders o
                JOIN data_bundles b ON b.id = o.bundle_id
                WHERE {where} AND o.status = ?""",
            params,
        ).fetchall()
        return [(_money(r["amount_paid"]), _money(r["base_price"])) for r in rows]

    def list(
        self,
        vendor_id: int | None = None,
        status: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[dict], int]:
        conditions, params = [], []
        if vendor_id is not None:
            conditions.append("(o.vendor_id = ? OR o.sub_vendor_id = ?)")
            params.extend([vendor_id, vendor_id])
        if status:
            conditions.append("o.status = ?")
            params.append(status)
        if start_date:
            conditions.append("o.created_at >= ?")
            params.append(f"{start_date} 00:00:00")
        if end_date:
            conditions.append("o.created_at <= ?")
            params.append(f"{end_date} 23:59:59")
        where_clause = " AND ".join(conditions) if conditions else "1=1"

        total = self.conn.execute(
            f"SELECT COUNT(*) AS cnt FROM orders o WHERE {where_clause}", params
        ).fetchone()["cnt"]
        rows = self.conn.execute(
            f"""SELECT o.*, b.name AS bundle_name, b.network AS bundle_network,
                       b.base_price AS bundle_base_price
                FROM orders o
                JOIN data_bundles b ON b.id = o.bundle_id
                WHERE {where_clause}
                ORDER BY o.created_at DESC, o.id DESC
                LIMIT ? OFFSET ?""",
            params + [limit, offset],
        ).fetchall()
        return [dict(r) for r in rows], total


# ── Payment transactions ──────────────────────────────────


class PaymentTransactionRepository:

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @staticmethod
    def _row_to_transaction(row) -> PaymentTransaction:
        return PaymentTransaction(
            id=row["id"],
            reference=row["reference"],
            amount=_money(row["amount"]),
            status=row["status"],
            order_id=row["order_id"],
            vendor_id=row["vendor_id"],
            sub_vendor_id=row["sub_vendor_id"],
            bundle_id=row["bundle_id"],
            customer_phone=row["customer_phone"],
            customer_email=row["customer_email"],
            failure_reason=row["failure_reason"],
            paid_at=row["paid_at"],
            last_checked_at=row["last_checked_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get(self, reference: str) -> Optional[PaymentTransaction]:
        row = self.conn.execute(
            "SELECT * FROM payment_transactions WHERE reference = ?", (reference,)
        ).fetchone()
        return self._row_to_transaction(row) if row else None

    def insert(
        self,
        reference: str,
        amount: Decimal,
        vendor_id: int | None = None,
        sub_vendor_id: int | None = None,
        bundle_id: int | None = None,
        customer_phone: str | None = None,
        customer_email: str | None = None,
    ) -> None:
        """
        Raises:
            sqlite3.IntegrityError: reference already recorded.
        """
        now = _now()
        self.conn.execute(
            """INSERT INTO payment_transactions
               (reference, amount, status, vendor_id, sub_vendor_id, bundle_id,
                customer_phone, customer_email, created_at, updated_at)
               VALUES (?, ?, 'pending', ?, ?, ?, ?, ?, ?, ?)""",
            (reference, str(amount), vendor_id, sub_vendor_id, bundle_id,
             customer_phone, customer_email, now, now),
        )

    def mark_failed(self, reference: str, reason: str) -> int:
        cursor = self.conn.execute(
            """UPDATE payment_transactions
               SET status = 'failed', failure_reason = ?, updated_at = ?
               WHERE reference = ? AND status = 'pending'""",
            (reason, _now(), reference),
        )
        return cursor.rowcount

    def mark_success(self, reference: str, order_id: int) -> int:
        now = _now()
        cursor = self.conn.execute(
            """UPDATE payment_transactions
               SET status = 'success', order_id = ?, paid_at = ?, updated_at = ?
               WHERE reference = ? AND status = 'pending'""",
            (order_id, now, now, reference),
        )
        return cursor.rowcount

    def mark_checked(self, reference: str) -> None:
        self.conn.execute(
            "UPDATE payment_transactions SET last_checked_at = ? WHERE reference = ?",
            (_now(), reference),
        )

    def stale_pending_references(self, cutoff: str, limit: int) -> list[str]:
        """Pending references created before cutoff, never-checked first, then least recently checked."""
        rows = self.conn.execute(
            """SELECT reference FROM payment_transactions
               WHERE status = ? AND created_at < ?
               ORDER BY last_checked_at IS NOT NULL, last_checked_at ASC, created_at ASC, id ASC
               LIMIT ?""",
            (TransactionStatus.PENDING, cutoff, limit),
        ).fetchall()
        return [r["reference"] for r in rows]

    def list(self, status: str | None = None, limit: int = 20, offset: int = 0) -> tuple[list[PaymentTransaction], int]:
        where_clause, params = "1=1", []
        if status:
            where_clause, params = "status = ?", [status]
        total = self.conn.execute(
            f"SELECT COUNT(*) AS cnt FROM payment_transactions WHERE {where_clause}", params
        ).fetchone()["cnt"]
        rows = self.conn.execute(
            f"""SELECT * FROM payment_transactions WHERE {where_clause}
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
            params + [limit, offset],
        ).fetchall()
        return [self._row_to_transaction(r) for r in rows], total


# ── Withdrawals ───────────────────────────────────────────


class WithdrawalRepository:

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @staticmethod
    def _row_to_withdrawal(row) -> Withdrawal:
        return Withdrawal(
            id=row["id"],
            vendor_id=row["vendor_id"],
            amount_requested=_money(row["amount_requested"]),
            mobile_money_number=row["mobile_money_number"],
            status=row["status"],
            requested_at=row["requested_at"],
            processed_at=row["processed_at"],
        )

    def get(self, withdrawal_id: int) -> Optional[Withdrawal]:
        row = self.conn.execute(
            "SELECT * FROM withdrawals WHERE id = ?", (withdrawal_id,)
        ).fetchone()
        return self._row_to_withdrawal(row) if row else None

    def insert(self, vendor_id: int, amount: Decimal, mobile_money_number: str) -> int:
        cursor = self.conn.execute(
            """INSERT INTO withdrawals
               (vendor_id, amount_requested, mobile_money_number, status, requested_at)
               VALUES (?, ?, ?, 'pending', ?)""",
            (vendor_id, str(amount), mobile_money_number, _now()),
        )
        return cursor.lastrowid

    def amounts(self, vendor_ids: list[int], status: str) -> list[Decimal]:
        if not vendor_ids:
            return []
        placeholders = ",".join("?" for _ in vendor_ids)
        rows = self.conn.execute(
            f"""SELECT amount_requested FROM withdrawals
                WHERE vendor_id IN ({placeholders}) AND status = ?""",
            list(vendor_ids) + [status],
        ).fetchall()
        return [_money(r["amount_requested"]) for r in rows]

    def decide(self, withdrawal_id: int, status: str) -> int:
        """Conditional pending -> decision; returns 0 if the row was not pending."""
        cursor = self.conn.execute(
            """UPDATE withdrawals SET status = ?, processed_at = ?
               WHERE id = ? AND status = ?""",
            (status, _now(), withdrawal_id, WithdrawalStatus.PENDING),
        )
        return cursor.rowcount

    def list(
        self,
        vendor_id: int | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Withdrawal], int]:
        conditions, params = [], []
        if vendor_id is not None:
            conditions.append("vendor_id = ?")
            params.append(vendor_id)
        if status:
            conditions.append("status = ?")
            params.append(status)
        where_clause = " AND ".join(conditions) if conditions else "1=1"
        total = self.conn.execute(
            f"SELECT COUNT(*) AS cnt FROM withdrawals WHERE {where_clause}", params
        ).fetchone()["cnt"]
        rows = self.conn.execute(
            f"""SELECT * FROM withdrawals WHERE {where_clause}
                ORDER BY requested_at DESC, id DESC LIMIT ? OFFSET ?""",
            params + [limit, offset],
        ).fetchall()
        return [self._row_to_withdrawal(r) for r in rows], total


# ── Store ─────────────────────────────────────────────────


class Store:
    """All repositories bound to one connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.vendors = VendorRepository(conn)
        self.bundles = BundleRepository(conn)
        self.prices = VendorPriceRepository(conn)
        self.orders = OrderRepository(conn)
        self.transactions = PaymentTransactionRepository(conn)
        self.withdrawals = WithdrawalRepository(conn)

    def begin_immediate(self) -> None:
        """Take the SQLite write lock up front so check-then-write is atomic."""
        if self.conn.in_transaction:
            self.conn.commit()
        self.conn.execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    def close(self) -> None:
        self.conn.close()
