"""Vendor account service: registration, login, profile, sub-vendors, approval."""

import logging
import re
import sqlite3
import uuid

from bundlepay.database import get_db
from bundlepay.errors import Conflict, Forbidden, NotFoundError, Unauthorized, ValidationError
from bundlepay.models.schemas import Vendor
from bundlepay.repositories import ConnectionFactory, Store
from bundlepay.services.auth import ROLE_VENDOR, create_token, hash_password, verify_password
from bundlepay.services.phone import is_valid_phone, normalize_phone

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _generate_link() -> str:
    return f"v-{uuid.uuid4()}"


def _validate_name(name: str) -> str:
    name = (name or "").strip()
    if len(name) < 2:
        raise ValidationError("Name must be at least 2 characters long")
    return name


def _validate_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("Please provide a valid email address")
    return email


def _validate_phone(phone: str) -> str:
    if not is_valid_phone(phone):
        raise ValidationError("Please enter a valid Ghanaian phone number (10 digits)")
    return normalize_phone(phone)


def _validate_password(password: str) -> None:
    password = password or ""
    if len(password) < 6:
        raise ValidationError("Password must be at least 6 characters long")
    if not re.search(r"[A-Za-z]", password) or not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one letter and one number")


class VendorService:
    """Vendor accounts and the two-level vendor tree."""

    def __init__(self, connect: ConnectionFactory = get_db):
        self._connect = connect

    def _create(
        self,
        name: str,
        email: str,
        phone: str,
        password: str,
        approved: bool,
        parent_vendor_id: int | None,
    ) -> Vendor:
        name = _validate_name(name)
        email = _validate_email(email)
        phone = _validate_phone(phone)
        _validate_password(password)

        store = Store(self._connect())
        try:
            if store.vendors.get_by_email(email):
                raise Conflict("Email already registered")
            if store.vendors.phone_taken(phone):
                raise Conflict("Phone number already registered")

            vendor_id = store.vendors.insert(
                name=name,
                email=email,
                phone=phone,
                password_hash=hash_password(password),
                vendor_link=_generate_link(),
                approved=approved,
                parent_vendor_id=parent_vendor_id,
            )
            store.commit()
            return store.vendors.get(vendor_id)
        except sqlite3.IntegrityError as e:
            # Concurrent registration with the same email
            store.rollback()
            raise Conflict("Email already registered") from e
        finally:
            store.close()

    def register(self, name: str, email: str, phone: str, password: str) -> dict:
        """
        Create an unapproved top-level vendor.

        Returns:
            {"vendor": public fields, "token": vendor JWT}

        Raises:
            ValidationError: malformed field.
            Conflict: email or phone already registered.
        """
        vendor = self._create(name, email, phone, password, approved=False, parent_vendor_id=None)
        logger.info("Vendor registered: id=%d, email=%s", vendor.id, vendor.email)
        return {
            "vendor": vendor.public_dict(),
            "token": create_token(vendor.email, vendor.id, ROLE_VENDOR),
        }

    def login(self, email: str, password: str) -> dict:
        """
        Raises:
            Unauthorized: unknown email or wrong password.
        """
        store = Store(self._connect())
        try:
            vendor = store.vendors.get_by_email((email or "").strip().lower())
        finally:
            store.close()
        if vendor is None or not verify_password(password or "", vendor.password_hash):
            raise Unauthorized("Invalid email or password")
        return {
            "vendor": vendor.public_dict(),
            "token": create_token(vendor.email, vendor.id, ROLE_VENDOR),
        }

    def get_vendor(self, vendor_id: int) -> Vendor:
        store = Store(self._connect())
        try:
            vendor = store.vendors.get(vendor_id)
        finally:
            store.close()
        if vendor is None:
            raise NotFoundError("Vendor not found")
        return vendor

    def get_profile(self, vendor_id: int) -> dict:
        return self.get_vendor(vendor_id).public_dict()

    def get_public(self, vendor_link: str) -> dict:
        store = Store(self._connect())
        try:
            vendor = store.vendors.get_by_link(vendor_link)
        finally:
            store.close()
        if vendor is None:
            raise NotFoundError("Vendor not found")
        return {"name": vendor.name, "vendor_link": vendor.vendor_link, "approved": vendor.approved}

    def update_profile(self, vendor_id: int, name: str | None = None, phone: str | None = None) -> dict:
        """
        Raises:
            ValidationError: malformed name/phone.
            Conflict: phone used by another vendor.
            NotFoundError: vendor missing.
        """
        if name is not None:
            name = _validate_name(name)
        if phone is not None:
            phone = _validate_phone(phone)

        store = Store(self._connect())
        try:
            if store.vendors.get(vendor_id) is None:
                raise NotFoundError("Vendor not found")
            if phone is not None and store.vendors.phone_taken(phone, exclude_id=vendor_id):
                raise Conflict("Phone number already registered")
            store.vendors.update_profile(vendor_id, name, phone)
            store.commit()
            return store.vendors.get(vendor_id).public_dict()
        finally:
            store.close()

    # ── Sub-vendors ────────────────────────────────────────

    def create_sub_vendor(self, parent_id: int, name: str, email: str, phone: str, password: str) -> dict:
        """
        Create an auto-approved sub-vendor under an approved top-level vendor.

        Raises:
            Forbidden: parent unapproved or itself a sub-vendor.
        """
        parent = self.get_vendor(parent_id)
        if not parent.approved:
            raise Forbidden("Your account must be approved before adding sub-vendors")
        if parent.is_sub_vendor:
            raise Forbidden("Sub-vendors cannot create sub-vendors")

        sub = self._create(name, email, phone, password, approved=True, parent_vendor_id=parent.id)
        logger.info("Sub-vendor created: id=%d, parent_id=%d", sub.id, parent.id)
        return sub.public_dict()

    def list_sub_vendors(
        self,
        parent_id: int,
        approved: bool | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        return self._paginate(parent_id=parent_id, approved=approved, page=page, limit=limit, key="subVendors")

    # ── Admin ──────────────────────────────────────────────

    def list_vendors(self, approved: bool | None = None, page: int = 1, limit: int = 20) -> dict:
        return self._paginate(parent_id=None, approved=approved, page=page, limit=limit, key="vendors")

    def set_approval(self, vendor_id: int, approved: bool) -> dict:
        store = Store(self._connect())
        try:
            if store.vendors.set_approved(vendor_id, approved) == 0:
                raise NotFoundError("Vendor not found")
            store.commit()
            vendor = store.vendors.get(vendor_id)
        finally:
            store.close()
        logger.info("Vendor %d %s", vendor_id, "approved" if approved else "unapproved")
        return vendor.public_dict()

    def _paginate(self, parent_id, approved, page, limit, key) -> dict:
        store = Store(self._connect())
        try:
            vendors, total = store.vendors.list(
                parent_id=parent_id, approved=approved, limit=limit, offset=(page - 1) * limit,
            )
        finally:
            store.close()
        return {
            key: [v.public_dict() for v in vendors],
            "total": total,
            "page": page,
            "pages": (total + limit - 1) // limit if limit else 0,
        }
