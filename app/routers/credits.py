from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.core.exceptions import InsufficientCreditsError, LedgerInconsistencyError
from app.deps import AuthUser, get_current_user
from app.services import credits as credits_service

router = APIRouter()


class DeductRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=200)


@router.get("/balance")
async def credits_balance(user: AuthUser = Depends(get_current_user)):
    """Return current credit balance."""
    balance = await credits_service.get_balance(user.id)
    return {"credits": balance, "user_id": user.id}


@router.post("/deduct")
async def credits_deduct(body: DeductRequest, user: AuthUser = Depends(get_current_user)):
    """Spend credits outside the operation pipeline; 402 when the balance is short."""
    result = await credits_service.settle(user.id, body.amount, body.reason, reference_type="manual")
    if not result.success:
        if result.error == credits_service.INSUFFICIENT_CREDITS:
            raise InsufficientCreditsError(body.amount, result.remaining)
        raise LedgerInconsistencyError(details={"compensated": result.compensated})
    return {"success": True, "remaining_credits": result.remaining}


@router.get("/ledger")
async def credits_ledger(
    user: AuthUser = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return ledger entries for current user (newest first)."""
    entries = await credits_service.list_transactions(user.id, limit=limit, offset=offset)
    out = [
        {
            "id": str(e.id),
            "amount": e.amount,
            "balance_after": e.balance_after,
            "reason": e.reason,
            "reference_type": e.reference_type,
            "reference_id": e.reference_id,
            "created_at": e.created_at.isoformat(),
        }
        for e in entries
    ]
    return {"entries": out, "limit": limit, "offset": offset}
