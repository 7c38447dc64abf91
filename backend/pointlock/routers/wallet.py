"""Wallet endpoints: weekly allowance status and claim, transaction history."""

from typing import List

from fastapi import APIRouter, Depends, Query

from pointlock.models.wallet import AllowanceResult, AllowanceStatusResponse, TransactionResponse
from pointlock.routers.deps import get_current_user_id
from pointlock.services import allowance_service, wallet_service

router = APIRouter(prefix="/api/wallet", tags=["wallet"])


@router.get("/allowance", response_model=AllowanceStatusResponse)
async def get_allowance_status(user_id: str = Depends(get_current_user_id)):
    return await allowance_service.check_allowance_eligibility(user_id)


@router.post("/allowance/claim", response_model=AllowanceResult)
async def claim_allowance(
    dry_run: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
):
    """Claim this week's allowance. Repeating the call returns the original claim."""
    return await allowance_service.credit_allowance(user_id, dry_run=dry_run)


@router.get("/transactions", response_model=List[TransactionResponse])
async def get_transactions(
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
):
    rows = await wallet_service.get_wallet_transactions(user_id, limit=limit, skip=skip)
    return [wallet_service.transaction_to_response(r) for r in rows]
