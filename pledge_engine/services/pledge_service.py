"""
Pledge intake.

A pledge is accepted only while its session is active and open, within
the session's quantity bounds and capacity, and on a side the session
mode trades. Payment confirmation happens outside the engine, so accepted
pledges go straight to ready_for_execution.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from pledge_engine.domain.exceptions import PledgeValidationError, SessionNotFoundError
from pledge_engine.domain.models import (
    Actor,
    ActorRole,
    Pledge,
    PledgeSide,
    PledgeStatus,
    SessionMode,
    SessionStatus,
)
from pledge_engine.domain.services.commission import (
    ROLLUP_STATUSES,
    compute_session_stats,
    convenience_fee,
    money,
    to_decimal,
)
from pledge_engine.infrastructure.db.store import PledgeStore
from pledge_engine.services import audit_service
from pledge_engine.services.audit_service import AuditService
from pledge_engine.utils.time import now_ist_naive

logger = logging.getLogger(__name__)


ALLOWED_SIDES = {
    SessionMode.BUY_ONLY: frozenset({PledgeSide.BUY}),
    SessionMode.SELL_ONLY: frozenset({PledgeSide.SELL}),
    SessionMode.BUY_SELL_CYCLE: frozenset({PledgeSide.BUY}),
}


class PledgeService:
    def __init__(self, store: PledgeStore, clock=now_ist_naive):
        self.store = store
        self.clock = clock
        self.audit = AuditService(store.audit)

    async def list_pledges(
        self,
        session_id: int,
        status: Optional[PledgeStatus] = None,
    ) -> List[Pledge]:
        criteria = {"session_id": session_id}
        if status is not None:
            criteria["status"] = PledgeStatus(status)
        return await self.store.pledges.filter(**criteria)

    async def submit_pledge(
        self,
        session_id: int,
        user_id: str,
        demat_account_id: str,
        side: PledgeSide,
        qty: int,
        price_target: Decimal,
        actor: Optional[Actor] = None,
    ) -> Pledge:
        """
        Validate and create a pledge.

        Raises:
            SessionNotFoundError: unknown or deleted session
            PledgeValidationError: any intake rule violated
        """
        session = await self.store.sessions.get(session_id)
        if session is None or session.is_deleted:
            raise SessionNotFoundError(session_id)

        if session.status != SessionStatus.ACTIVE:
            raise PledgeValidationError(
                f"Session {session_id} is not accepting pledges (status '{session.status.value}')"
            )
        now = self.clock()
        if not session.has_started(now):
            raise PledgeValidationError(f"Session {session_id} has not opened yet")
        if session.has_ended(now):
            raise PledgeValidationError(f"Session {session_id} has ended")

        if not user_id or not demat_account_id:
            raise PledgeValidationError("user_id and demat_account_id are required")

        try:
            side = PledgeSide(side)
        except ValueError as exc:
            raise PledgeValidationError(str(exc)) from exc

        if side not in ALLOWED_SIDES[session.session_mode]:
            raise PledgeValidationError(
                f"{side.value} pledges are not allowed in a {session.session_mode.value} session"
            )

        if qty < session.min_qty:
            raise PledgeValidationError(f"Minimum quantity is {session.min_qty}")
        if session.max_qty is not None and qty > session.max_qty:
            raise PledgeValidationError(f"Maximum quantity is {session.max_qty}")

        price = to_decimal(price_target)
        if price <= 0:
            raise PledgeValidationError("price_target must be greater than 0")

        if session.capacity is not None:
            taken = await self.store.pledges.count_for_session(session_id, ROLLUP_STATUSES)
            if taken >= session.capacity:
                raise PledgeValidationError(f"Session {session_id} is full ({session.capacity} pledges)")

        fee = convenience_fee(session, qty, price)

        pledge = await self.store.pledges.create(
            session_id=session_id,
            user_id=user_id,
            demat_account_id=demat_account_id,
            stock_symbol=session.stock_symbol,
            side=side,
            qty=qty,
            price_target=money(price),
            status=PledgeStatus.READY_FOR_EXECUTION,
            convenience_fee_amount=fee,
            convenience_fee_paid=True,
        )
        logger.info(
            f"📝 Pledge {pledge.id} accepted: {side.value} {qty} {session.stock_symbol} "
            f"@ {pledge.price_target} (session {session_id})"
        )

        await self.audit.record(
            actor or Actor(id=user_id, role=ActorRole.USER),
            audit_service.PLEDGE_CREATED,
            session_id=session_id,
            pledge_id=pledge.id,
            payload={
                "side": side,
                "qty": qty,
                "price_target": pledge.price_target,
                "convenience_fee_amount": fee,
            },
        )

        # Keep session rollups current
        pledges = await self.store.pledges.filter(session_id=session_id)
        await self.store.sessions.update(session_id, **compute_session_stats(pledges))
        return pledge
