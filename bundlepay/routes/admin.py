"""
Admin routes: login, vendor approval, catalog, orders, withdrawals,
payment transactions and platform settings.
"""

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bundlepay.services.auth import authenticate_admin, get_current_admin
from bundlepay.services.catalog_service import CatalogService
from bundlepay.services.order_service import OrderService
from bundlepay.services.platform_config import (
    PlatformConfigError,
    get_gateway_status,
    get_withdrawal_policy,
    save_gateway_secret,
    set_withdrawal_policy,
)
from bundlepay.services.pricing import PricingResolver
from bundlepay.services.settlement import SettlementEngine
from bundlepay.services.vendor_service import VendorService
from bundlepay.services.withdrawal_ledger import WithdrawalLedger

router = APIRouter(prefix="/api/admin")


class LoginRequest(BaseModel):
    username: str
    password: str


@router.post("/auth/login")
async def login(body: LoginRequest):
    """Admin login. Returns {code: 1, token: "..."}."""
    token = authenticate_admin(body.username, body.password)
    return JSONResponse(content={"code": 1, "token": token})


# ── Vendors ───────────────────────────────────────────────


class ApprovalRequest(BaseModel):
    approved: bool = True


class PriceItem(BaseModel):
    bundleId: int
    price: Decimal


class PricesRequest(BaseModel):
    prices: list[PriceItem]


@router.get("/vendors")
async def vendor_list(
    admin: dict = Depends(get_current_admin),
    approved: bool | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    result = VendorService().list_vendors(approved, page, limit)
    return JSONResponse(content={"code": 1, **result})


@router.post("/vendors/{vendor_id}/approve")
async def approve_vendor(vendor_id: int, body: ApprovalRequest, admin: dict = Depends(get_current_admin)):
    vendor = VendorService().set_approval(vendor_id, body.approved)
    msg = "Vendor approved" if body.approved else "Vendor approval revoked"
    return JSONResponse(content={"code": 1, "msg": msg, "vendor": vendor})


@router.put("/vendors/{vendor_id}/prices")
async def set_vendor_prices(vendor_id: int, body: PricesRequest, admin: dict = Depends(get_current_admin)):
    items = [{"bundle_id": p.bundleId, "price": p.price} for p in body.prices]
    results, has_errors = PricingResolver().set_prices(vendor_id, items)
    if has_errors:
        return JSONResponse(
            status_code=400,
            content={"code": -1, "msg": "Some prices could not be updated", "results": results},
        )
    return JSONResponse(content={"code": 1, "results": results})


# ── Catalog ───────────────────────────────────────────────


class CreateBundleRequest(BaseModel):
    name: str
    network: str
    dataAmount: str
    basePrice: Decimal


class UpdateBundleRequest(BaseModel):
    name: str | None = None
    network: str | None = None
    dataAmount: str | None = None
    basePrice: Decimal | None = None


@router.get("/bundles")
async def bundle_list(admin: dict = Depends(get_current_admin)):
    return JSONResponse(content={"code": 1, "bundles": CatalogService().list_bundles()})


@router.post("/bundles")
async def create_bundle(body: CreateBundleRequest, admin: dict = Depends(get_current_admin)):
    bundle = CatalogService().create_bundle(body.name, body.network, body.dataAmount, body.basePrice)
    return JSONResponse(status_code=201, content={"code": 1, "bundle": bundle})


@router.put("/bundles/{bundle_id}")
async def update_bundle(bundle_id: int, body: UpdateBundleRequest, admin: dict = Depends(get_current_admin)):
    bundle = CatalogService().update_bundle(
        bundle_id,
        name=body.name,
        network=body.network,
        data_amount=body.dataAmount,
        base_price=body.basePrice,
    )
    return JSONResponse(content={"code": 1, "bundle": bundle})


@router.delete("/bundles/{bundle_id}")
async def delete_bundle(bundle_id: int, admin: dict = Depends(get_current_admin)):
    CatalogService().delete_bundle(bundle_id)
    return JSONResponse(content={"code": 1, "msg": "Bundle deleted"})


# ── Orders ────────────────────────────────────────────────


class OrderStatusRequest(BaseModel):
    status: str


@router.get("/orders")
async def order_list(
    admin: dict = Depends(get_current_admin),
    vendor_id: int | None = Query(None),
    status: str | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """Order list with filters and pagination."""
    result = OrderService().list_orders(
        vendor_id=vendor_id,
        status=status,
        start_date=start_date.isoformat() if start_date else None,
        end_date=end_date.isoformat() if end_date else None,
        page=page,
        limit=per_page,
    )
    return JSONResponse(content={"code": 1, **result})


@router.put("/orders/{order_id}/status")
async def update_order_status(order_id: int, body: OrderStatusRequest, admin: dict = Depends(get_current_admin)):
    order = OrderService().update_status(order_id, body.status)
    return JSONResponse(content={"code": 1, "order": order})


# ── Withdrawals ───────────────────────────────────────────


@router.get("/withdrawals")
async def withdrawal_list(
    admin: dict = Depends(get_current_admin),
    status: str | None = Query(None),
    vendor_id: int | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    result = WithdrawalLedger().list_withdrawals(vendor_id=vendor_id, status=status, page=page, limit=limit)
    return JSONResponse(content={"code": 1, **result})


# ── Payment transactions ──────────────────────────────────


@router.get("/transactions")
async def transaction_list(
    admin: dict = Depends(get_current_admin),
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    result = SettlementEngine().list_transactions(status, page, per_page)
    return JSONResponse(content={"code": 1, **result})


@router.post("/transactions/{reference}/verify")
async def verify_transaction(reference: str, admin: dict = Depends(get_current_admin)):
    """Manually re-drive settlement for one reference (recovery for stuck pending rows)."""
    engine = SettlementEngine()
    result = engine.settle_reference(reference)
    transaction = engine.get_transaction(reference)
    return JSONResponse(
        status_code=result.http_status,
        content={**result.to_content(), "transaction": transaction.to_dict()},
    )


# ── Settings ──────────────────────────────────────────────


class GatewaySecretRequest(BaseModel):
    secret_key: str


class WithdrawalPolicyRequest(BaseModel):
    policy: str


@router.get("/settings")
async def settings_page(admin: dict = Depends(get_current_admin)):
    return JSONResponse(content={
        "code": 1,
        "gateway_status": get_gateway_status(),
        "withdrawal_policy": get_withdrawal_policy(),
    })


@router.post("/settings/gateway")
async def save_gateway_settings(body: GatewaySecretRequest, admin: dict = Depends(get_current_admin)):
    try:
        result = save_gateway_secret(body.secret_key)
    except PlatformConfigError as e:
        return JSONResponse(status_code=400, content={"code": -1, "msg": str(e)})
    return JSONResponse(content={"code": 1, **result})


@router.post("/settings/withdrawal-policy")
async def save_withdrawal_policy(body: WithdrawalPolicyRequest, admin: dict = Depends(get_current_admin)):
    try:
        set_withdrawal_policy(body.policy)
    except PlatformConfigError as e:
        return JSONResponse(status_code=400, content={"code": -1, "msg": str(e)})
    return JSONResponse(content={"code": 1, "withdrawal_policy": get_withdrawal_policy()})
