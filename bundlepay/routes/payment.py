"""
Payment gateway webhook: POST /api/payments/verify

The raw body is handed to the settlement engine untouched; the signature
covers the exact bytes the gateway sent.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from bundlepay.services.settlement import SettlementEngine
from bundlepay.services.sign import SIGNATURE_HEADER

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments")


@router.post("/verify")
async def payment_webhook(request: Request):
    """
    Status codes:
        200  settled, already processed, or ignored event type
        400  permanently invalid event (amount/metadata/price mismatch)
        401  bad signature
        404  bundle or vendor no longer exists
        502  gateway verify call failed; the delivery should be retried
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    result = SettlementEngine().handle_confirmation(raw_body, signature)
    return JSONResponse(status_code=result.http_status, content=result.to_content())
