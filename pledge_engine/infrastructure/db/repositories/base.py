"""
Entity Store Client - generic repository
list / filter / get / create (+ update / delete for mutable record types)

Every write commits immediately: a failed write on one record must not
poison writes on the next one.
"""

from decimal import Decimal
from typing import Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pledge_engine.infrastructure.db.database import Base

M = TypeVar("M", bound=Base)
D = TypeVar("D")


class RecordNotFoundError(LookupError):
    pass


class EntityRepository(Generic[M, D]):
    """Read + create operations over one record type"""

    model: Type[M]

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, record_id: int) -> Optional[D]:
        model = await self._get_model(record_id)
        return self._to_domain(model) if model else None

    async def list(self, order_by: Optional[str] = None, limit: Optional[int] = None) -> List[D]:
        """
        List all records

        Args:
            order_by: column name, '-' prefix for descending (e.g. '-executed_at')
            limit: max rows
        """
        return await self.filter(order_by=order_by, limit=limit)

    async def filter(
        self,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        **criteria: Any,
    ) -> List[D]:
        """
        Equality filter; a list/tuple/set value matches any of its members.
        """
        stmt = select(self.model)
        for name, value in criteria.items():
            column = self._column(name)
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(column.in_(list(value)))
            else:
                stmt = stmt.where(column == value)

        stmt = stmt.order_by(*self._order_by(order_by))
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return [self._to_domain(m) for m in result.scalars().all()]

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def create(self, **fields: Any) -> D:
        model = self.model(**fields)
        self.session.add(model)
        await self._commit()
        return self._to_domain(model)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get_model(self, record_id: int) -> Optional[M]:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.id == record_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    def _column(self, name: str):
        try:
            return getattr(self.model, name)
        except AttributeError:
            raise ValueError(f"{self.model.__tablename__} has no column '{name}'") from None

    def _order_by(self, order_by: Optional[str]) -> Sequence:
        if not order_by:
            return [self.model.id]
        if order_by.startswith("-"):
            return [self._column(order_by[1:]).desc(), self.model.id.desc()]
        return [self._column(order_by), self.model.id]

    @staticmethod
    def _to_domain(model: M) -> D:
        raise NotImplementedError


class MutableEntityRepository(EntityRepository[M, D]):
    """Adds update / delete"""

    async def update(self, record_id: int, **fields: Any) -> D:
        model = await self._get_model(record_id)
        if model is None:
            raise RecordNotFoundError(f"{self.model.__tablename__} {record_id} not found")

        for name, value in fields.items():
            self._column(name)
            setattr(model, name, value)

        await self._commit()
        return self._to_domain(model)

    async def delete(self, record_id: int) -> None:
        model = await self._get_model(record_id)
        if model is None:
            raise RecordNotFoundError(f"{self.model.__tablename__} {record_id} not found")
        await self.session.delete(model)
        await self._commit()


def as_decimal(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


def as_decimal_or_none(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None
