"""
Pledge intake API Routes
"""

import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from pledge_engine.api.deps import get_store, http_error
from pledge_engine.domain.exceptions import PledgeEngineError
from pledge_engine.domain.models import Pledge, PledgeSide, PledgeStatus
from pledge_engine.infrastructure.db.store import PledgeStore
from pledge_engine.services.pledge_service import PledgeService
from pledge_engine.utils.time import to_iso

logger = logging.getLogger(__name__)

router = APIRouter()


class PledgeRequest(BaseModel):
    user_id: str = Field(..., examples=["user-42"])
    demat_account_id: str = Field(..., examples=["1208160000012345"])
    side: PledgeSide
    qty: int = Field(..., examples=[10])
    price_target: Decimal = Field(..., examples=[3450.50])


class PledgeResponse(BaseModel):
    id: int
    session_id: int
    user_id: str
    stock_symbol: str
    side: PledgeSide
    qty: int
    price_target: Optional[float]
    status: PledgeStatus
    convenience_fee_amount: float
    convenience_fee_paid: bool
    admin_notes: Optional[str]
    created_at: Optional[str]


def to_response(pledge: Pledge) -> PledgeResponse:
    return PledgeResponse(
        id=pledge.id,
        session_id=pledge.session_id,
        user_id=pledge.user_id,
        stock_symbol=pledge.stock_symbol,
        side=pledge.side,
        qty=pledge.qty,
        price_target=float(pledge.price_target) if pledge.price_target is not None else None,
        status=pledge.status,
        convenience_fee_amount=float(pledge.convenience_fee_amount),
        convenience_fee_paid=pledge.convenience_fee_paid,
        admin_notes=pledge.admin_notes,
        created_at=to_iso(pledge.created_at),
    )


@router.post("/{session_id}/pledges", response_model=PledgeResponse, status_code=201)
async def submit_pledge(
    session_id: int,
    payload: PledgeRequest,
    store: PledgeStore = Depends(get_store),
):
    logger.info(f"📥 Pledge request | session={session_id} | {payload.side.value} {payload.qty}")
    try:
        pledge = await PledgeService(store).submit_pledge(
            session_id=session_id,
            user_id=payload.user_id,
            demat_account_id=payload.demat_account_id,
            side=payload.side,
            qty=payload.qty,
            price_target=payload.price_target,
        )
    except PledgeEngineError as exc:
        logger.warning(f"⚠️ Pledge rejected: {exc}")
        raise http_error(exc)
    return to_response(pledge)


@router.get("/{session_id}/pledges", response_model=List[PledgeResponse])
async def list_pledges(
    session_id: int,
    status: Optional[PledgeStatus] = Query(None),
    store: PledgeStore = Depends(get_store),
):
    pledges = await PledgeService(store).list_pledges(session_id, status=status)
    return [to_response(p) for p in pledges]
