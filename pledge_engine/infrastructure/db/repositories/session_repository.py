"""
Pledge Session Repository
CRUD plus the conditional status write used as the execution lock
"""

from typing import Any, Iterable, Optional, Union

from sqlalchemy import update

from pledge_engine.domain.models import PledgeSession, SessionStatus
from pledge_engine.infrastructure.db.models import PledgeSessionModel
from pledge_engine.infrastructure.db.repositories.base import MutableEntityRepository, as_decimal, as_decimal_or_none
from pledge_engine.utils.time import now_ist_naive


class PledgeSessionRepository(MutableEntityRepository[PledgeSessionModel, PledgeSession]):
    """Repository for PledgeSession"""

    model = PledgeSessionModel

    async def compare_and_set_status(
        self,
        session_id: int,
        expected: Union[SessionStatus, Iterable[SessionStatus]],
        new_status: SessionStatus,
        **fields: Any,
    ) -> bool:
        """
        Atomically move a session to new_status only if its current status
        is expected (update-if-status-equals).

        Returns:
            True if this call won the write, False if the status had already
            changed underneath us
        """
        if isinstance(expected, SessionStatus):
            expected_statuses = [expected]
        else:
            expected_statuses = list(expected)

        for name in fields:
            self._column(name)

        stmt = (
            update(PledgeSessionModel)
            .where(
                PledgeSessionModel.id == session_id,
                PledgeSessionModel.status.in_(expected_statuses),
            )
            .values(status=new_status, updated_at=now_ist_naive(), **fields)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self._commit()
        return result.rowcount == 1

    async def list_visible(
        self,
        status: Optional[SessionStatus] = None,
        order_by: Optional[str] = "-created_at",
        limit: Optional[int] = None,
    ) -> list[PledgeSession]:
        """Sessions not logically deleted"""
        criteria: dict[str, Any] = {"is_deleted": False}
        if status is not None:
            criteria["status"] = status
        return await self.filter(order_by=order_by, limit=limit, **criteria)

    @staticmethod
    def _to_domain(model: PledgeSessionModel) -> PledgeSession:
        """Convert database model to domain entity"""
        return PledgeSession(
            id=model.id,
            stock_symbol=model.stock_symbol,
            stock_name=model.stock_name,
            description=model.description,
            session_mode=model.session_mode,
            execution_rule=model.execution_rule,
            status=model.status,
            session_start=model.session_start,
            session_end=model.session_end,
            allow_amo=bool(model.allow_amo),
            convenience_fee_type=model.convenience_fee_type,
            convenience_fee_amount=as_decimal(model.convenience_fee_amount),
            min_qty=model.min_qty if model.min_qty is not None else 1,
            max_qty=model.max_qty,
            capacity=model.capacity,
            stock_price=as_decimal_or_none(model.stock_price),
            commission_rate=as_decimal_or_none(model.commission_rate),
            total_pledges=model.total_pledges or 0,
            total_pledge_value=as_decimal(model.total_pledge_value),
            buy_pledges_count=model.buy_pledges_count or 0,
            sell_pledges_count=model.sell_pledges_count or 0,
            buy_pledges_value=as_decimal(model.buy_pledges_value),
            sell_pledges_value=as_decimal(model.sell_pledges_value),
            last_executed_at=model.last_executed_at,
            admin_notes=model.admin_notes,
            is_deleted=bool(model.is_deleted),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
