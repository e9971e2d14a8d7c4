"""
Audit Log API Routes (read-only)
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from pledge_engine.api.deps import get_store
from pledge_engine.domain.models import ActorRole
from pledge_engine.infrastructure.db.store import PledgeStore
from pledge_engine.utils.time import to_iso

router = APIRouter()


class AuditLogResponse(BaseModel):
    id: int
    actor_id: str
    actor_role: ActorRole
    action: str
    target_type: str
    target_session_id: Optional[int]
    target_pledge_id: Optional[int]
    payload: Dict[str, Any]
    success: bool
    created_at: Optional[str]


@router.get("", response_model=List[AuditLogResponse])
async def list_audit_log(
    session_id: Optional[int] = Query(None),
    pledge_id: Optional[int] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    store: PledgeStore = Depends(get_store),
):
    """Most recent entries first"""
    criteria = {}
    if session_id is not None:
        criteria["target_session_id"] = session_id
    if pledge_id is not None:
        criteria["target_pledge_id"] = pledge_id
    if action:
        criteria["action"] = action

    entries = await store.audit.filter(order_by="-created_at", limit=limit, **criteria)
    return [
        AuditLogResponse(
            id=e.id,
            actor_id=e.actor_id,
            actor_role=e.actor_role,
            action=e.action,
            target_type=e.target_type,
            target_session_id=e.target_session_id,
            target_pledge_id=e.target_pledge_id,
            payload=e.payload,
            success=e.success,
            created_at=to_iso(e.created_at),
        )
        for e in entries
    ]
