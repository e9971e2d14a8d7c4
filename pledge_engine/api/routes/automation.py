"""
Automated Execution API Routes
Enable / disable the timer-driven trigger, inspect or force a tick
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from pledge_engine.api.deps import get_auto_engine
from pledge_engine.scheduler.auto_execution import AutoExecutionEngine, TickReport
from pledge_engine.utils.time import to_iso

logger = logging.getLogger(__name__)

router = APIRouter()


class TickReportResponse(BaseModel):
    started_at: Optional[str]
    ran: bool
    reason: Optional[str]
    due_session_ids: List[int]
    executed_session_ids: List[int]
    skipped_session_ids: List[int]
    errors: Dict[int, str]
    error: Optional[str]


class AutomationStatus(BaseModel):
    enabled: bool
    running: bool
    executing: bool
    interval_seconds: int
    last_tick: Optional[TickReportResponse]


def _tick_response(report: Optional[TickReport]) -> Optional[TickReportResponse]:
    if report is None:
        return None
    return TickReportResponse(
        started_at=to_iso(report.started_at),
        ran=report.ran,
        reason=report.reason,
        due_session_ids=report.due_session_ids,
        executed_session_ids=report.executed_session_ids,
        skipped_session_ids=report.skipped_session_ids,
        errors=report.errors,
        error=report.error,
    )


def _status(engine: AutoExecutionEngine) -> AutomationStatus:
    return AutomationStatus(
        enabled=engine.enabled,
        running=engine.running,
        executing=engine.is_executing,
        interval_seconds=engine.interval_seconds,
        last_tick=_tick_response(engine.last_report),
    )


@router.get("", response_model=AutomationStatus)
async def automation_status(engine: AutoExecutionEngine = Depends(get_auto_engine)):
    return _status(engine)


@router.post("/enable", response_model=AutomationStatus)
async def enable_automation(engine: AutoExecutionEngine = Depends(get_auto_engine)):
    engine.enable()
    logger.info("🤖 Automated execution enabled via API")
    return _status(engine)


@router.post("/disable", response_model=AutomationStatus)
async def disable_automation(engine: AutoExecutionEngine = Depends(get_auto_engine)):
    engine.disable()
    logger.info("⏸️ Automated execution disabled via API")
    return _status(engine)


@router.post("/run", response_model=TickReportResponse)
async def run_tick(engine: AutoExecutionEngine = Depends(get_auto_engine)):
    """Run one tick now (honours the enabled flag and the re-entrancy guard)"""
    report = await engine.check_and_execute_sessions()
    return _tick_response(report)
