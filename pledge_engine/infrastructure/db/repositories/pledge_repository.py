"""
Pledge Repository
"""

from typing import Iterable

from sqlalchemy import func, select

from pledge_engine.domain.models import Pledge, PledgeStatus
from pledge_engine.infrastructure.db.models import PledgeModel
from pledge_engine.infrastructure.db.repositories.base import MutableEntityRepository, as_decimal, as_decimal_or_none


class PledgeRepository(MutableEntityRepository[PledgeModel, Pledge]):
    """Repository for Pledge"""

    model = PledgeModel

    async def count_for_session(self, session_id: int, statuses: Iterable[PledgeStatus]) -> int:
        result = await self.session.execute(
            select(func.count(PledgeModel.id))
            .where(
                PledgeModel.session_id == session_id,
                PledgeModel.status.in_(list(statuses)),
            )
        )
        return int(result.scalar() or 0)

    @staticmethod
    def _to_domain(model: PledgeModel) -> Pledge:
        """Convert database model to domain entity"""
        return Pledge(
            id=model.id,
            session_id=model.session_id,
            user_id=model.user_id,
            demat_account_id=model.demat_account_id,
            stock_symbol=model.stock_symbol,
            side=model.side,
            qty=model.qty,
            price_target=as_decimal_or_none(model.price_target),
            status=model.status,
            convenience_fee_amount=as_decimal(model.convenience_fee_amount),
            convenience_fee_paid=bool(model.convenience_fee_paid),
            admin_notes=model.admin_notes,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
