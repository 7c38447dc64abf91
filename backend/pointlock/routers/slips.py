"""Slips API: draft lifecycle, locking and offline-draft revalidation."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from pointlock.errors import SLIP_NOT_FOUND, NotFoundError
from pointlock.models.slip import (
    CreateSlipRequest,
    SlipStatus,
    UpdateSlipRequest,
    ValidateDraftRequest,
    ValidateDraftResponse,
)
from pointlock.routers.deps import get_current_user_id
from pointlock.services import slip_service

router = APIRouter(prefix="/api/slips", tags=["slips"])


def _pick_dicts(picks) -> list[dict]:
    return [p.model_dump(mode="json") for p in picks]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_slip(
    body: CreateSlipRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Create a draft slip. All costs and point values are computed server-side."""
    return await slip_service.create_slip(
        user_id=user_id,
        picks=_pick_dicts(body.picks),
        stake=body.stake,
        name=body.name,
    )


@router.get("")
async def list_slips(
    status_filter: Optional[List[SlipStatus]] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = Query("-created_at", pattern="^-?(created_at|updated_at)$"),
    user_id: str = Depends(get_current_user_id),
):
    return await slip_service.get_user_slips(
        user_id,
        statuses=[s.value for s in status_filter] if status_filter else None,
        page=page,
        limit=limit,
        sort=sort,
    )


@router.post("/validate-draft", response_model=ValidateDraftResponse)
async def validate_draft(
    body: ValidateDraftRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Re-check cached draft picks against current events and odds. Never mutates."""
    results = await slip_service.validate_draft_picks(_pick_dicts(body.picks))
    return {"picks": results, "all_valid": all(r["is_valid"] for r in results)}


@router.get("/{slip_id}")
async def get_slip(slip_id: str, user_id: str = Depends(get_current_user_id)):
    slip = await slip_service.get_slip_by_id(slip_id, user_id)
    if not slip:
        raise NotFoundError(f"Slip with ID {slip_id} not found.", SLIP_NOT_FOUND)
    return slip


@router.patch("/{slip_id}")
async def update_slip(
    slip_id: str,
    body: UpdateSlipRequest,
    user_id: str = Depends(get_current_user_id),
):
    return await slip_service.update_slip(
        slip_id,
        user_id,
        add_picks=_pick_dicts(body.add_picks),
        remove_pick_ids=body.remove_pick_ids,
        stake=body.stake,
        name=body.name,
    )


@router.post("/{slip_id}/lock")
async def lock_slip(slip_id: str, user_id: str = Depends(get_current_user_id)):
    """Lock a draft: re-price from odds, enforce minimum spend, move to PENDING."""
    return await slip_service.lock_slip(slip_id, user_id)


@router.delete("/{slip_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slip(slip_id: str, user_id: str = Depends(get_current_user_id)):
    await slip_service.delete_slip(slip_id, user_id)
