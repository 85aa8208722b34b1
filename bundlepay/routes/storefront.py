"""
Public storefront routes: vendor lookup by link, priced catalog, hosted
payment initiation, guest checkout, and the customer return path.
"""

import logging

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bundlepay.services.order_service import OrderService
from bundlepay.services.pricing import PricingResolver
from bundlepay.services.settlement import SettlementEngine
from bundlepay.services.vendor_service import VendorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vendors")


class PayRequest(BaseModel):
    bundleId: int
    customerPhone: str
    customerEmail: str


class GuestOrderRequest(BaseModel):
    bundleId: int
    customerPhone: str


@router.get("/link/{vendor_link}")
async def vendor_by_link(vendor_link: str):
    """Public vendor card plus the bundles it sells, with resolved prices."""
    vendor = VendorService().get_public(vendor_link)
    catalog = PricingResolver().storefront_catalog(vendor_link)
    return JSONResponse(content={"code": 1, "vendor": vendor, "bundles": catalog["bundles"]})


@router.get("/{vendor_link}/bundles")
async def storefront_bundles(vendor_link: str):
    catalog = PricingResolver().storefront_catalog(vendor_link)
    return JSONResponse(content={"code": 1, **catalog})


@router.post("/{vendor_link}/pay")
async def initiate_payment(vendor_link: str, body: PayRequest):
    """
    Open a hosted checkout for one bundle.

    Returns the gateway's authorization URL and our transaction reference;
    the order itself is only created once the payment is confirmed.
    """
    result = SettlementEngine().initiate_payment(
        vendor_link=vendor_link,
        bundle_id=body.bundleId,
        customer_phone=body.customerPhone,
        customer_email=body.customerEmail,
    )
    return JSONResponse(content={"code": 1, **result})


@router.post("/{vendor_link}/orders")
async def create_guest_order(vendor_link: str, body: GuestOrderRequest):
    order = OrderService().create_guest_order(vendor_link, body.bundleId, body.customerPhone)
    return JSONResponse(
        status_code=201,
        content={"code": 1, "msg": "Order created successfully", "order": order},
    )


@router.get("/{vendor_link}/verify-payment")
async def verify_payment(vendor_link: str, reference: str = Query(..., min_length=1)):
    """Gateway callback URL: re-drive settlement for the returned reference."""
    result = SettlementEngine().settle_reference(reference)
    return JSONResponse(status_code=result.http_status, content=result.to_content())
