"""
Pledge Session API Routes
Draft management and lifecycle moves (execution lives in executions.py)
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from pledge_engine.api.deps import get_actor, get_store, http_error
from pledge_engine.domain.exceptions import PledgeEngineError
from pledge_engine.domain.models import (
    Actor,
    ExecutionRule,
    FeeType,
    PledgeSession,
    SessionMode,
    SessionStatus,
)
from pledge_engine.infrastructure.db.store import PledgeStore
from pledge_engine.services.session_service import SessionService
from pledge_engine.utils.time import to_iso

logger = logging.getLogger(__name__)

router = APIRouter()


# -------------------------------------------------------------------
# Request / response models
# -------------------------------------------------------------------

class SessionCreateRequest(BaseModel):
    stock_symbol: str = Field(..., examples=["TCS"])
    stock_name: str = Field(..., examples=["Tata Consultancy Services"])
    description: Optional[str] = None
    session_mode: SessionMode
    execution_rule: ExecutionRule
    allow_amo: bool = True
    convenience_fee_type: FeeType = FeeType.FLAT
    convenience_fee_amount: Decimal = Decimal("0")
    min_qty: int = 1
    max_qty: Optional[int] = None
    capacity: Optional[int] = None
    stock_price: Optional[Decimal] = None
    commission_rate: Optional[Decimal] = Field(None, description="Platform commission in percent")
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None


class SessionUpdateRequest(BaseModel):
    stock_symbol: Optional[str] = None
    stock_name: Optional[str] = None
    description: Optional[str] = None
    session_mode: Optional[SessionMode] = None
    execution_rule: Optional[ExecutionRule] = None
    allow_amo: Optional[bool] = None
    convenience_fee_type: Optional[FeeType] = None
    convenience_fee_amount: Optional[Decimal] = None
    min_qty: Optional[int] = None
    max_qty: Optional[int] = None
    capacity: Optional[int] = None
    stock_price: Optional[Decimal] = None
    commission_rate: Optional[Decimal] = None
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None
    admin_notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class CloneRequest(BaseModel):
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None


class SessionResponse(BaseModel):
    id: int
    stock_symbol: str
    stock_name: str
    description: Optional[str]
    session_mode: SessionMode
    execution_rule: ExecutionRule
    status: SessionStatus
    allow_amo: bool
    convenience_fee_type: FeeType
    convenience_fee_amount: float
    min_qty: int
    max_qty: Optional[int]
    capacity: Optional[int]
    stock_price: Optional[float]
    commission_rate: Optional[float]
    session_start: Optional[str]
    session_end: Optional[str]
    total_pledges: int
    total_pledge_value: float
    buy_pledges_count: int
    sell_pledges_count: int
    buy_pledges_value: float
    sell_pledges_value: float
    last_executed_at: Optional[str]
    admin_notes: Optional[str]


def _float_or_none(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def to_response(session: PledgeSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        stock_symbol=session.stock_symbol,
        stock_name=session.stock_name,
        description=session.description,
        session_mode=session.session_mode,
        execution_rule=session.execution_rule,
        status=session.status,
        allow_amo=session.allow_amo,
        convenience_fee_type=session.convenience_fee_type,
        convenience_fee_amount=float(session.convenience_fee_amount),
        min_qty=session.min_qty,
        max_qty=session.max_qty,
        capacity=session.capacity,
        stock_price=_float_or_none(session.stock_price),
        commission_rate=_float_or_none(session.commission_rate),
        session_start=to_iso(session.session_start),
        session_end=to_iso(session.session_end),
        total_pledges=session.total_pledges,
        total_pledge_value=float(session.total_pledge_value),
        buy_pledges_count=session.buy_pledges_count,
        sell_pledges_count=session.sell_pledges_count,
        buy_pledges_value=float(session.buy_pledges_value),
        sell_pledges_value=float(session.sell_pledges_value),
        last_executed_at=to_iso(session.last_executed_at),
        admin_notes=session.admin_notes,
    )


# -------------------------------------------------------------------
# Routes
# -------------------------------------------------------------------

@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    payload: SessionCreateRequest,
    store: PledgeStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    try:
        session = await SessionService(store).create_draft(actor, **payload.model_dump())
    except PledgeEngineError as exc:
        raise http_error(exc)
    return to_response(session)


@router.get("", response_model=List[SessionResponse])
async def list_sessions(
    request: Request,
    status: Optional[SessionStatus] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    store: PledgeStore = Depends(get_store),
):
    sessions = await SessionService(store).list_sessions(status=status, limit=limit)

    # Refresh the operator board unless an optimistic change is in flight
    board = getattr(request.app.state, "board", None)
    if board is not None and status is None and limit is None and not board.pending:
        board.replace_all(sessions)

    return [to_response(s) for s in sessions]


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: int, store: PledgeStore = Depends(get_store)):
    try:
        session = await SessionService(store).get(session_id)
    except PledgeEngineError as exc:
        raise http_error(exc)
    return to_response(session)


@router.patch("/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: int,
    payload: SessionUpdateRequest,
    store: PledgeStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    try:
        session = await SessionService(store).update_draft(
            session_id, actor, **payload.model_dump(exclude_unset=True)
        )
    except PledgeEngineError as exc:
        raise http_error(exc)
    return to_response(session)


@router.delete("/{session_id}", response_model=SessionResponse)
async def delete_session(
    session_id: int,
    store: PledgeStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    try:
        session = await SessionService(store).delete(session_id, actor)
    except PledgeEngineError as exc:
        raise http_error(exc)
    return to_response(session)


@router.post("/{session_id}/activate", response_model=SessionResponse)
async def activate_session(
    session_id: int,
    store: PledgeStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    try:
        session = await SessionService(store).activate(session_id, actor)
    except PledgeEngineError as exc:
        raise http_error(exc)
    return to_response(session)


@router.post("/{session_id}/close", response_model=SessionResponse)
async def close_session(
    session_id: int,
    store: PledgeStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    try:
        session = await SessionService(store).close(session_id, actor)
    except PledgeEngineError as exc:
        raise http_error(exc)
    return to_response(session)


@router.post("/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(
    session_id: int,
    payload: Optional[CancelRequest] = None,
    store: PledgeStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    reason = payload.reason if payload else None
    try:
        session = await SessionService(store).cancel(session_id, actor, reason=reason)
    except PledgeEngineError as exc:
        raise http_error(exc)
    return to_response(session)


@router.post("/{session_id}/clone", response_model=SessionResponse, status_code=201)
async def clone_session(
    session_id: int,
    payload: Optional[CloneRequest] = None,
    store: PledgeStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    overrides = payload.model_dump(exclude_none=True) if payload else {}
    try:
        session = await SessionService(store).clone(session_id, actor, **overrides)
    except PledgeEngineError as exc:
        raise http_error(exc)
    return to_response(session)


@router.post("/{session_id}/recalculate", response_model=SessionResponse)
async def recalculate_session_stats(
    session_id: int,
    store: PledgeStore = Depends(get_store),
    actor: Actor = Depends(get_actor),
):
    try:
        session = await SessionService(store).recalculate_stats(session_id, actor)
    except PledgeEngineError as exc:
        raise http_error(exc)
    return to_response(session)
