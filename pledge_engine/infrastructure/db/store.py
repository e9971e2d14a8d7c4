"""
Pledge store: the four record-type repositories sharing one DB session.
"""

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pledge_engine.infrastructure.db.database import init_engine
from pledge_engine.infrastructure.db.repositories.audit_repository import AuditLogRepository
from pledge_engine.infrastructure.db.repositories.execution_repository import ExecutionRecordRepository
from pledge_engine.infrastructure.db.repositories.pledge_repository import PledgeRepository
from pledge_engine.infrastructure.db.repositories.session_repository import PledgeSessionRepository


class PledgeStore:
    """Entity store client for Session, Pledge, ExecutionRecord and AuditLog"""

    def __init__(self, session: AsyncSession):
        self.db = session
        self.sessions = PledgeSessionRepository(session)
        self.pledges = PledgeRepository(session)
        self.executions = ExecutionRecordRepository(session)
        self.audit = AuditLogRepository(session)


StoreFactory = Callable[[], AsyncContextManager[PledgeStore]]


def store_factory(session_factory: Optional[async_sessionmaker] = None) -> StoreFactory:
    """
    Build a factory that opens a fresh store (own DB session) per use.

    Each trigger invocation gets its own session; an AsyncSession must not
    be shared between concurrently running tasks.
    """

    @asynccontextmanager
    async def open_store() -> AsyncIterator[PledgeStore]:
        factory = session_factory or init_engine()
        async with factory() as session:
            yield PledgeStore(session)

    return open_store
