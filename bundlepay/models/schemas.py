"""
Record types shared across modules.
Plain dataclasses, no ORM.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


class OrderStatus:
    PENDING = "pending"
    COMPLETE = "complete"
    CANCELLED = "cancelled"

    ALL = (PENDING, COMPLETE, CANCELLED)


class TransactionStatus:
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    TERMINAL = (SUCCESS, FAILED)


class WithdrawalStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    DECISIONS = (APPROVED, REJECTED)


@dataclass
class Admin:
    id: int
    username: str
    password_hash: str
    created_at: Optional[str] = None


@dataclass
class Vendor:
    id: int
    name: str
    email: str
    phone: str
    password_hash: str
    vendor_link: str
    approved: bool = False
    parent_vendor_id: Optional[int] = None
    profit: Decimal = Decimal("0.00")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_sub_vendor(self) -> bool:
        return self.parent_vendor_id is not None

    @property
    def catalog_owner_id(self) -> int:
        """Sub-vendors sell from their parent's catalog."""
        return self.parent_vendor_id if self.parent_vendor_id is not None else self.id

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "vendor_link": self.vendor_link,
            "approved": self.approved,
            "parent_vendor_id": self.parent_vendor_id,
            "profit": str(self.profit),
            "created_at": self.created_at,
        }


@dataclass
class DataBundle:
    id: int
    name: str
    network: str
    data_amount: str
    base_price: Decimal
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "network": self.network,
            "data_amount": self.data_amount,
            "base_price": str(self.base_price),
        }


@dataclass
class VendorPrice:
    id: int
    vendor_id: int
    bundle_id: int
    price: Decimal
    updated_at: Optional[str] = None


@dataclass
class Order:
    id: int
    vendor_id: int
    bundle_id: int
    customer_phone: str
    amount_paid: Decimal
    sub_vendor_id: Optional[int] = None
    status: str = OrderStatus.PENDING
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "sub_vendor_id": self.sub_vendor_id,
            "bundle_id": self.bundle_id,
            "customer_phone": self.customer_phone,
            "amount_paid": str(self.amount_paid),
            "status": self.status,
            "created_at": self.created_at,
        }


@dataclass
class PaymentTransaction:
    id: int
    reference: str
    amount: Decimal
    status: str = TransactionStatus.PENDING
    order_id: Optional[int] = None
    vendor_id: Optional[int] = None
    sub_vendor_id: Optional[int] = None
    bundle_id: Optional[int] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[str] = None
    last_checked_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TransactionStatus.TERMINAL

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "amount": str(self.amount),
            "status": self.status,
            "order_id": self.order_id,
            "vendor_id": self.vendor_id,
            "bundle_id": self.bundle_id,
            "customer_phone": self.customer_phone,
            "failure_reason": self.failure_reason,
            "paid_at": self.paid_at,
            "created_at": self.created_at,
        }


@dataclass
class Withdrawal:
    id: int
    vendor_id: int
    amount_requested: Decimal
    mobile_money_number: str
    status: str = WithdrawalStatus.PENDING
    requested_at: Optional[str] = None
    processed_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "amount_requested": str(self.amount_requested),
            "mobile_money_number": self.mobile_money_number,
            "status": self.status,
            "requested_at": self.requested_at,
            "processed_at": self.processed_at,
        }
