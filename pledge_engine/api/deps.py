"""
Shared FastAPI dependencies and error mapping for the admin routes.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pledge_engine.domain.exceptions import (
    ConcurrentExecutionError,
    ExecutionAbortedError,
    InvalidTransitionError,
    PledgeEngineError,
    PledgeValidationError,
    SessionNotFoundError,
    SessionValidationError,
)
from pledge_engine.domain.models import Actor, ActorRole
from pledge_engine.infrastructure.db.database import get_db
from pledge_engine.infrastructure.db.store import PledgeStore

logger = logging.getLogger(__name__)


async def get_store(db: AsyncSession = Depends(get_db)) -> PledgeStore:
    return PledgeStore(db)


def get_actor(x_actor_id: Optional[str] = Header(default=None)) -> Actor:
    """Operator identity for the audit trail (no authentication here)"""
    return Actor(id=x_actor_id or "admin", role=ActorRole.ADMIN)


def get_manual_trigger(request: Request):
    return request.app.state.manual_trigger


def get_auto_engine(request: Request):
    return request.app.state.auto_engine


def http_error(exc: PledgeEngineError) -> HTTPException:
    if isinstance(exc, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, ConcurrentExecutionError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (PledgeValidationError, SessionValidationError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ExecutionAbortedError):
        logger.error(f"Execution aborted: {exc}")
        return HTTPException(status_code=500, detail=f"Execution aborted: {exc}")
    logger.error(f"Unhandled engine error: {exc}")
    return HTTPException(status_code=500, detail=str(exc))
