"""
Execution API Routes
Manual trigger (preview + confirmed execute) and the execution ledger
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from pledge_engine.api.deps import get_actor, get_manual_trigger, get_store, http_error
from pledge_engine.domain.exceptions import PledgeEngineError
from pledge_engine.domain.models import (
    Actor,
    ExecutionRecord,
    ExecutionStatus,
    PledgeSide,
    SessionStatus,
)
from pledge_engine.infrastructure.db.store import PledgeStore
from pledge_engine.services.manual_trigger import ConfirmationPrompt, ManualTrigger
from pledge_engine.services.notification_service import format_batch_summary
from pledge_engine.utils.time import to_iso

logger = logging.getLogger(__name__)

router = APIRouter()


class PreviewResponse(BaseModel):
    session_id: int
    stock_symbol: str
    side: PledgeSide
    current_status: SessionStatus
    eligible_count: int
    title: str
    message: str


class ExecuteRequest(BaseModel):
    # Must match the side shown in the preview
    confirm_side: PledgeSide


class ExecuteResponse(BaseModel):
    session_id: int
    phase: PledgeSide
    previous_status: SessionStatus
    final_status: SessionStatus
    eligible_count: int
    success_count: int
    fail_count: int
    skipped_count: int
    message: str


class ExecutionRecordResponse(BaseModel):
    id: int
    pledge_id: int
    session_id: int
    user_id: str
    stock_symbol: str
    side: PledgeSide
    pledged_qty: int
    executed_qty: int
    executed_price: Optional[float]
    total_execution_value: float
    platform_commission: float
    commission_rate: float
    net_amount: float
    status: ExecutionStatus
    error_message: Optional[str]
    buy_execution_id: Optional[int]
    executed_at: Optional[str]
    settlement_date: Optional[str]


def _preview_response(prompt: ConfirmationPrompt) -> PreviewResponse:
    return PreviewResponse(
        session_id=prompt.session_id,
        stock_symbol=prompt.stock_symbol,
        side=prompt.side,
        current_status=prompt.current_status,
        eligible_count=prompt.eligible_count,
        title=prompt.title,
        message=prompt.message,
    )


def _record_response(record: ExecutionRecord) -> ExecutionRecordResponse:
    return ExecutionRecordResponse(
        id=record.id,
        pledge_id=record.pledge_id,
        session_id=record.session_id,
        user_id=record.user_id,
        stock_symbol=record.stock_symbol,
        side=record.side,
        pledged_qty=record.pledged_qty,
        executed_qty=record.executed_qty,
        executed_price=float(record.executed_price) if record.executed_price is not None else None,
        total_execution_value=float(record.total_execution_value),
        platform_commission=float(record.platform_commission),
        commission_rate=float(record.commission_rate),
        net_amount=float(record.net_amount),
        status=record.status,
        error_message=record.error_message,
        buy_execution_id=record.buy_execution_id,
        executed_at=to_iso(record.executed_at),
        settlement_date=record.settlement_date.isoformat() if record.settlement_date else None,
    )


@router.get("/{session_id}/execution-preview", response_model=PreviewResponse)
async def execution_preview(
    session_id: int,
    trigger: ManualTrigger = Depends(get_manual_trigger),
):
    try:
        prompt = await trigger.preview(session_id)
    except PledgeEngineError as exc:
        raise http_error(exc)
    return _preview_response(prompt)


@router.post("/{session_id}/execute", response_model=ExecuteResponse)
async def execute_session(
    session_id: int,
    payload: ExecuteRequest,
    trigger: ManualTrigger = Depends(get_manual_trigger),
    actor: Actor = Depends(get_actor),
):
    logger.info(f"📥 Manual execution request | session={session_id} | side={payload.confirm_side.value}")

    async def confirm(prompt: ConfirmationPrompt) -> bool:
        return prompt.side == payload.confirm_side

    try:
        outcome = await trigger.execute_session(session_id, actor, confirm)
    except PledgeEngineError as exc:
        raise http_error(exc)

    if outcome is None:
        raise HTTPException(
            status_code=409,
            detail="confirm_side does not match the phase this session is ready for",
        )

    result = outcome.result
    return ExecuteResponse(
        session_id=session_id,
        phase=result.phase,
        previous_status=outcome.previous_status,
        final_status=outcome.final_status,
        eligible_count=result.eligible_count,
        success_count=result.success_count,
        fail_count=result.fail_count,
        skipped_count=result.skipped_count,
        message=format_batch_summary(outcome.session, result),
    )


@router.get("/{session_id}/executions", response_model=List[ExecutionRecordResponse])
async def list_execution_records(
    session_id: int,
    side: Optional[PledgeSide] = Query(None),
    status: Optional[ExecutionStatus] = Query(None),
    store: PledgeStore = Depends(get_store),
):
    criteria = {"session_id": session_id}
    if side is not None:
        criteria["side"] = side
    if status is not None:
        criteria["status"] = status
    records = await store.executions.filter(order_by="executed_at", **criteria)
    return [_record_response(r) for r in records]
