"""
Vendor account routes: registration/login and the authenticated /me area
(profile, sub-vendors, orders, profit, withdrawals, prices).
"""

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bundlepay.errors import Forbidden
from bundlepay.models.schemas import Vendor
from bundlepay.services.auth import get_current_vendor
from bundlepay.services.order_service import OrderService
from bundlepay.services.pricing import PricingResolver
from bundlepay.services.vendor_service import VendorService
from bundlepay.services.withdrawal_ledger import WithdrawalLedger

router = APIRouter(prefix="/api/vendors")


class RegisterRequest(BaseModel):
    name: str
    email: str
    phone: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdateRequest(BaseModel):
    name: str | None = None
    phone: str | None = None


class WithdrawalRequest(BaseModel):
    amountRequested: Decimal
    mobileMoneyNumber: str


class PriceItem(BaseModel):
    bundleId: int
    price: Decimal


class PricesRequest(BaseModel):
    prices: list[PriceItem]


def get_current_vendor_record(user: dict = Depends(get_current_vendor)) -> Vendor:
    return VendorService().get_vendor(user["id"])


def get_approved_vendor(vendor: Vendor = Depends(get_current_vendor_record)) -> Vendor:
    """Vendor role, and the account has been approved by an admin."""
    if not vendor.approved:
        raise Forbidden("Your account is pending approval")
    return vendor


# ── Public ────────────────────────────────────────────────


@router.post("/register")
async def register(body: RegisterRequest):
    result = VendorService().register(body.name, body.email, body.phone, body.password)
    return JSONResponse(
        status_code=201,
        content={
            "code": 1,
            "msg": "Registration successful. Your account is pending approval.",
            **result,
        },
    )


@router.post("/login")
async def login(body: LoginRequest):
    result = VendorService().login(body.email, body.password)
    return JSONResponse(content={"code": 1, **result})


# ── Profile ───────────────────────────────────────────────


@router.get("/me")
async def get_profile(vendor: Vendor = Depends(get_current_vendor_record)):
    return JSONResponse(content={"code": 1, "vendor": vendor.public_dict()})


@router.put("/me")
async def update_profile(body: ProfileUpdateRequest, vendor: Vendor = Depends(get_current_vendor_record)):
    updated = VendorService().update_profile(vendor.id, body.name, body.phone)
    return JSONResponse(content={"code": 1, "vendor": updated})


# ── Sub-vendors ───────────────────────────────────────────


@router.get("/me/subvendors")
async def list_sub_vendors(
    vendor: Vendor = Depends(get_approved_vendor),
    approved: bool | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    result = VendorService().list_sub_vendors(vendor.id, approved, page, limit)
    return JSONResponse(content={"code": 1, **result})


@router.post("/me/subvendors")
async def create_sub_vendor(body: RegisterRequest, vendor: Vendor = Depends(get_approved_vendor)):
    sub = VendorService().create_sub_vendor(vendor.id, body.name, body.email, body.phone, body.password)
    return JSONResponse(
        status_code=201,
        content={"code": 1, "msg": "Sub-vendor created successfully", "subVendor": sub},
    )


# ── Orders and money ──────────────────────────────────────


@router.get("/me/orders")
async def my_orders(
    vendor: Vendor = Depends(get_approved_vendor),
    status: str | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    result = OrderService().list_orders(
        vendor_id=vendor.id,
        status=status,
        start_date=start_date.isoformat() if start_date else None,
        end_date=end_date.isoformat() if end_date else None,
        page=page,
        limit=limit,
    )
    return JSONResponse(content={"code": 1, **result})


@router.get("/me/profit")
async def my_profit(vendor: Vendor = Depends(get_approved_vendor)):
    summary = WithdrawalLedger().balance_summary(vendor.id)
    return JSONResponse(content={"code": 1, "lifetimeProfit": str(vendor.profit), **summary})


@router.get("/me/withdrawals")
async def my_withdrawals(
    vendor: Vendor = Depends(get_approved_vendor),
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    result = WithdrawalLedger().list_withdrawals(vendor_id=vendor.id, status=status, page=page, limit=limit)
    return JSONResponse(content={"code": 1, **result})


@router.post("/me/withdrawals")
async def request_withdrawal(body: WithdrawalRequest, vendor: Vendor = Depends(get_approved_vendor)):
    withdrawal = WithdrawalLedger().request_withdrawal(
        vendor.id, body.amountRequested, body.mobileMoneyNumber
    )
    return JSONResponse(
        status_code=201,
        content={"code": 1, "msg": "Withdrawal request submitted", "withdrawal": withdrawal},
    )


@router.put("/me/prices")
async def update_prices(body: PricesRequest, vendor: Vendor = Depends(get_approved_vendor)):
    """Batch price update; answers 400 with per-item results if any item failed."""
    items = [{"bundle_id": p.bundleId, "price": p.price} for p in body.prices]
    results, has_errors = PricingResolver().set_prices(vendor.id, items)
    if has_errors:
        return JSONResponse(
            status_code=400,
            content={"code": -1, "msg": "Some prices could not be updated", "results": results},
        )
    return JSONResponse(content={"code": 1, "results": results})
