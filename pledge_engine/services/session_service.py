"""
SERVICE — PLEDGE SESSION LIFECYCLE

• Draft creation / editing / cloning
• Status moves through the state machine (compare-and-set)
• Logical delete
• Rollup recalculation from pledges

Execution itself lives in execution_service.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pledge_engine.domain.exceptions import (
    InvalidTransitionError,
    SessionNotFoundError,
    SessionValidationError,
)
from pledge_engine.domain.models import (
    Actor,
    ExecutionRule,
    FeeType,
    PledgeSession,
    SessionMode,
    SessionStatus,
)
from pledge_engine.domain.services import state_machine
from pledge_engine.domain.services.commission import compute_session_stats, money, to_decimal
from pledge_engine.infrastructure.db.store import PledgeStore
from pledge_engine.services import audit_service
from pledge_engine.services.audit_service import AuditService
from pledge_engine.utils.time import now_ist_naive, to_ist_naive

logger = logging.getLogger(__name__)


# Fields an operator may set on a draft
EDITABLE_FIELDS = frozenset({
    "stock_symbol",
    "stock_name",
    "description",
    "session_mode",
    "execution_rule",
    "allow_amo",
    "convenience_fee_type",
    "convenience_fee_amount",
    "min_qty",
    "max_qty",
    "capacity",
    "stock_price",
    "commission_rate",
    "session_start",
    "session_end",
    "admin_notes",
})

# May be cleared (set to None) on a draft
NULLABLE_FIELDS = frozenset({
    "description",
    "max_qty",
    "capacity",
    "stock_price",
    "commission_rate",
    "session_start",
    "session_end",
    "admin_notes",
})

# Copied by clone(); rollups and execution history are not
CLONED_FIELDS = EDITABLE_FIELDS - {"admin_notes"}

_ROLLUP_RESET = {
    "total_pledges": 0,
    "total_pledge_value": Decimal("0"),
    "buy_pledges_count": 0,
    "sell_pledges_count": 0,
    "buy_pledges_value": Decimal("0"),
    "sell_pledges_value": Decimal("0"),
}


def _validate_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reject unknown fields, normalize enum/decimal/datetime inputs.
    """
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise SessionValidationError(f"Unknown or read-only session fields: {', '.join(sorted(unknown))}")

    out = dict(fields)

    if "stock_symbol" in out:
        symbol = (out["stock_symbol"] or "").strip().upper()
        if not symbol:
            raise SessionValidationError("stock_symbol is required")
        out["stock_symbol"] = symbol

    if "stock_name" in out and not (out["stock_name"] or "").strip():
        raise SessionValidationError("stock_name is required")

    try:
        if "session_mode" in out:
            out["session_mode"] = SessionMode(out["session_mode"])
        if "execution_rule" in out:
            out["execution_rule"] = ExecutionRule(out["execution_rule"])
        if "convenience_fee_type" in out:
            out["convenience_fee_type"] = FeeType(out["convenience_fee_type"])
    except ValueError as exc:
        raise SessionValidationError(str(exc)) from exc

    for name in ("session_start", "session_end"):
        if out.get(name) is not None:
            out[name] = to_ist_naive(out[name])

    for name in ("convenience_fee_amount", "stock_price", "commission_rate"):
        if out.get(name) is not None:
            value = to_decimal(out[name])
            if value < 0:
                raise SessionValidationError(f"{name} cannot be negative")
            out[name] = value

    return out


def _check_constraints(merged: Dict[str, Any]) -> None:
    min_qty = merged.get("min_qty")
    if min_qty is None:
        min_qty = 1
    max_qty = merged.get("max_qty")
    capacity = merged.get("capacity")

    if min_qty < 1:
        raise SessionValidationError("min_qty must be at least 1")
    if max_qty is not None and max_qty < min_qty:
        raise SessionValidationError("max_qty cannot be less than min_qty")
    if capacity is not None and capacity < 1:
        raise SessionValidationError("capacity must be at least 1")

    start: Optional[datetime] = merged.get("session_start")
    end: Optional[datetime] = merged.get("session_end")
    if start and end and end <= start:
        raise SessionValidationError("session_end must be after session_start")

    if merged.get("execution_rule") == ExecutionRule.SESSION_END and end is None:
        raise SessionValidationError("session_end is required for execution_rule 'session_end'")


class SessionService:
    """Session lifecycle operations (everything except execution)"""

    def __init__(self, store: PledgeStore, clock=now_ist_naive):
        self.store = store
        self.clock = clock
        self.audit = AuditService(store.audit)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, session_id: int) -> PledgeSession:
        session = await self.store.sessions.get(session_id)
        if session is None or session.is_deleted:
            raise SessionNotFoundError(session_id)
        return session

    async def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        limit: Optional[int] = None,
    ) -> List[PledgeSession]:
        return await self.store.sessions.list_visible(status=status, limit=limit)

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    async def create_draft(self, actor: Actor, **fields: Any) -> PledgeSession:
        fields = _validate_fields(fields)
        for required in ("stock_symbol", "stock_name", "session_mode", "execution_rule"):
            if fields.get(required) is None:
                raise SessionValidationError(f"{required} is required")

        merged = {"min_qty": 1, "allow_amo": True, "convenience_fee_type": FeeType.FLAT}
        merged.update({k: v for k, v in fields.items() if v is not None})
        _check_constraints(merged)

        session = await self.store.sessions.create(status=SessionStatus.DRAFT, **merged)
        logger.info(f"🆕 Draft session {session.id} created for {session.stock_symbol}")

        await self.audit.record(
            actor,
            audit_service.SESSION_CREATED,
            session_id=session.id,
            payload={"stock_symbol": session.stock_symbol, "session_mode": session.session_mode},
        )
        return session

    async def update_draft(self, session_id: int, actor: Actor, **fields: Any) -> PledgeSession:
        session = await self.get(session_id)
        if session.status != SessionStatus.DRAFT:
            raise InvalidTransitionError(
                session.status.value,
                reason=f"Only draft sessions can be edited (session is '{session.status.value}')",
            )

        fields = {k: v for k, v in fields.items() if v is not None or k in NULLABLE_FIELDS}
        fields = _validate_fields(fields)
        merged = {name: getattr(session, name) for name in EDITABLE_FIELDS}
        merged.update(fields)
        _check_constraints(merged)

        updated = await self.store.sessions.update(session_id, **fields)
        await self.audit.record(
            actor,
            audit_service.SESSION_UPDATED,
            session_id=session_id,
            payload={"fields": sorted(fields)},
        )
        return updated

    async def clone(self, session_id: int, actor: Actor, **overrides: Any) -> PledgeSession:
        """
        New draft with the source's configuration. Rollups start at zero and
        execution history is not carried over.
        """
        source = await self.get(session_id)
        fields = {name: getattr(source, name) for name in CLONED_FIELDS}
        fields.update(_validate_fields(overrides))
        _check_constraints(fields)

        clone = await self.store.sessions.create(
            status=SessionStatus.DRAFT,
            last_executed_at=None,
            **_ROLLUP_RESET,
            **fields,
        )
        logger.info(f"📋 Session {source.id} cloned into draft {clone.id}")

        await self.audit.record(
            actor,
            audit_service.SESSION_CLONED,
            session_id=clone.id,
            payload={"source_session_id": source.id},
        )
        return clone

    # ------------------------------------------------------------------
    # Status moves
    # ------------------------------------------------------------------

    async def activate(self, session_id: int, actor: Actor) -> PledgeSession:
        session = await self.get(session_id)
        if session.session_end is not None and session.has_ended(self.clock()):
            raise SessionValidationError(f"Session {session_id} end time has already passed")
        return await self._transition(session, SessionStatus.ACTIVE, actor)

    async def close(self, session_id: int, actor: Actor) -> PledgeSession:
        session = await self.get(session_id)
        return await self._transition(session, SessionStatus.CLOSED, actor)

    async def cancel(self, session_id: int, actor: Actor, reason: Optional[str] = None) -> PledgeSession:
        session = await self.get(session_id)
        extra = {"admin_notes": reason} if reason else {}
        return await self._transition(session, SessionStatus.CANCELLED, actor, **extra)

    async def delete(self, session_id: int, actor: Actor) -> PledgeSession:
        """Logical delete; the row and its history stay"""
        session = await self.get(session_id)
        if session.status not in state_machine.DELETABLE_STATUSES:
            raise InvalidTransitionError(
                session.status.value,
                reason=f"Session in status '{session.status.value}' cannot be deleted",
            )

        deleted = await self.store.sessions.update(session_id, is_deleted=True)
        logger.info(f"🗑️ Session {session_id} deleted")
        await self.audit.record(
            actor,
            audit_service.SESSION_DELETED,
            session_id=session_id,
            payload={"status": session.status},
        )
        return deleted

    # ------------------------------------------------------------------
    # Rollups
    # ------------------------------------------------------------------

    async def recalculate_stats(self, session_id: int, actor: Actor) -> PledgeSession:
        """Rebuild rollup counters from ready_for_execution/executed pledges"""
        await self.get(session_id)
        pledges = await self.store.pledges.filter(session_id=session_id)
        stats = compute_session_stats(pledges)

        updated = await self.store.sessions.update(session_id, **stats)
        await self.audit.record(
            actor,
            audit_service.SESSION_STATS_RECALCULATED,
            session_id=session_id,
            payload={
                "total_pledges": stats["total_pledges"],
                "total_pledge_value": money(stats["total_pledge_value"]),
            },
        )
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        session: PledgeSession,
        target: SessionStatus,
        actor: Actor,
        **fields: Any,
    ) -> PledgeSession:
        state_machine.assert_transition(session.status, target)

        won = await self.store.sessions.compare_and_set_status(
            session.id,
            expected=session.status,
            new_status=target,
            **fields,
        )
        if not won:
            current = await self.get(session.id)
            raise InvalidTransitionError(
                current.status.value,
                target.value,
                reason="status changed concurrently",
            )

        logger.info(f"Session {session.id}: {session.status.value} -> {target.value}")
        await self.audit.record(
            actor,
            audit_service.SESSION_STATUS_CHANGED,
            session_id=session.id,
            payload={"from": session.status, "to": target},
        )
        return await self.get(session.id)
