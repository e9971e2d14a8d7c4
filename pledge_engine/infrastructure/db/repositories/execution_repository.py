"""
Execution Record Repository
Insert-only ledger - no update, no delete
"""

from typing import Dict, Set

from pledge_engine.domain.models import ExecutionRecord, ExecutionStatus, PledgeSide
from pledge_engine.infrastructure.db.models import PledgeExecutionRecordModel
from pledge_engine.infrastructure.db.repositories.base import EntityRepository, as_decimal, as_decimal_or_none


class ExecutionRecordRepository(EntityRepository[PledgeExecutionRecordModel, ExecutionRecord]):
    """Repository for ExecutionRecord"""

    model = PledgeExecutionRecordModel

    async def completed_by_pledge(self, session_id: int, side: PledgeSide) -> Dict[int, ExecutionRecord]:
        """
        Completed records of one side for a session, keyed by pledge id.
        The earliest record wins if a pledge somehow has several.
        """
        records = await self.filter(
            order_by="executed_at",
            session_id=session_id,
            side=side,
            status=ExecutionStatus.COMPLETED,
        )
        by_pledge: Dict[int, ExecutionRecord] = {}
        for record in records:
            by_pledge.setdefault(record.pledge_id, record)
        return by_pledge

    async def executed_pledge_ids(self, session_id: int, side: PledgeSide) -> Set[int]:
        return set(await self.completed_by_pledge(session_id, side))

    @staticmethod
    def _to_domain(model: PledgeExecutionRecordModel) -> ExecutionRecord:
        """Convert database model to domain entity"""
        return ExecutionRecord(
            id=model.id,
            pledge_id=model.pledge_id,
            session_id=model.session_id,
            user_id=model.user_id,
            demat_account_id=model.demat_account_id,
            stock_symbol=model.stock_symbol,
            side=model.side,
            pledged_qty=model.pledged_qty,
            executed_qty=model.executed_qty,
            executed_price=as_decimal_or_none(model.executed_price),
            total_execution_value=as_decimal(model.total_execution_value),
            platform_commission=as_decimal(model.platform_commission),
            commission_rate=as_decimal(model.commission_rate),
            net_amount=as_decimal(model.net_amount),
            status=model.status,
            error_message=model.error_message,
            buy_execution_id=model.buy_execution_id,
            executed_at=model.executed_at,
            settlement_date=model.settlement_date,
        )
