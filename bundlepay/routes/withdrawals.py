"""Admin decision on a withdrawal: PUT /api/withdrawals/{id}/approve"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bundlepay.services.auth import get_current_admin
from bundlepay.services.withdrawal_ledger import WithdrawalLedger

router = APIRouter(prefix="/api/withdrawals")


class WithdrawalDecisionRequest(BaseModel):
    status: str


@router.put("/{withdrawal_id}/approve")
async def process_withdrawal(
    withdrawal_id: int,
    body: WithdrawalDecisionRequest,
    admin: dict = Depends(get_current_admin),
):
    """Body {status: "approved" | "rejected"}."""
    withdrawal = WithdrawalLedger().process_withdrawal(withdrawal_id, body.status)
    return JSONResponse(content={
        "code": 1,
        "msg": f"Withdrawal {body.status} successfully",
        "withdrawal": withdrawal,
    })
