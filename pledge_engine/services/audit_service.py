"""
Audit trail writer for pledge engine actions.

Audit appends are best-effort: a failed append is logged with the full
entry so it can be replayed, but never turns a completed execution into a
failed one.
"""

import logging
from enum import Enum
from typing import Any, Optional

from pledge_engine.domain.models import Actor, AuditLogEntry
from pledge_engine.infrastructure.db.repositories.audit_repository import AuditLogRepository

logger = logging.getLogger(__name__)


# Actions
BUY_EXECUTION_COMPLETED = "buy_execution_completed"
BUY_EXECUTION_FAILED = "buy_execution_failed"
SELL_EXECUTION_COMPLETED = "sell_execution_completed"
SELL_EXECUTION_FAILED = "sell_execution_failed"
SELL_EXECUTION_SKIPPED = "sell_execution_skipped"
EXECUTION_PHASE_FAILED = "execution_phase_failed"
SESSION_CREATED = "session_created"
SESSION_UPDATED = "session_updated"
SESSION_CLONED = "session_cloned"
SESSION_DELETED = "session_deleted"
SESSION_STATUS_CHANGED = "session_status_changed"
SESSION_STATS_RECALCULATED = "session_stats_recalculated"
PLEDGE_CREATED = "pledge_created"


def execution_action(side: str, outcome: str) -> str:
    """e.g. execution_action('buy', 'completed') -> 'buy_execution_completed'"""
    return f"{side}_execution_{outcome}"


class AuditService:
    """Append entries to the pledge audit log"""

    def __init__(self, repository: AuditLogRepository):
        self.repository = repository

    async def record(
        self,
        actor: Actor,
        action: str,
        *,
        success: bool = True,
        session_id: Optional[int] = None,
        pledge_id: Optional[int] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        target_type = "pledge" if pledge_id is not None else "session"
        fields = dict(
            actor_id=actor.id,
            actor_role=actor.role,
            action=action,
            target_type=target_type,
            target_session_id=session_id,
            target_pledge_id=pledge_id,
            payload=_jsonable(payload or {}),
            success=success,
        )
        try:
            return await self.repository.create(**fields)
        except Exception as exc:
            logger.error(f"Audit append failed ({action}): {exc} | entry={fields}")
            return None


def _jsonable(value: Any) -> Any:
    """Decimals/datetimes/enums to JSON-safe primitives"""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
