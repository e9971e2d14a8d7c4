from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator, List, Tuple

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pledge_engine.domain.models import (
    ExecutionRule,
    PledgeSide,
    PledgeStatus,
    SessionMode,
    SessionStatus,
)
from pledge_engine.domain.services.pricing import SellPriceResolver
from pledge_engine.infrastructure.db.database import Base, get_db
from pledge_engine.infrastructure.db import models  # noqa: F401
from pledge_engine.infrastructure.db.store import PledgeStore, store_factory
from pledge_engine.main import create_app
from pledge_engine.services.execution_service import ExecutionConfig
from pledge_engine.services.notification_service import NotificationService


# Session windows in tests are evaluated against this instant
NOW = datetime(2026, 3, 2, 15, 30)


class RecordingSender:
    """Stands in for Telegram delivery"""

    def __init__(self):
        self.messages: List[Tuple[str, str, str]] = []

    async def __call__(self, tier: str, title: str, body: str) -> bool:
        self.messages.append((tier, title, body))
        return True

    @property
    def bodies(self) -> List[str]:
        return [body for _, _, body in self.messages]


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
async def db_engine(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
def open_store(session_factory):
    return store_factory(session_factory)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def store(db_session) -> PledgeStore:
    return PledgeStore(db_session)


@pytest.fixture()
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture()
def notifier(sender) -> NotificationService:
    return NotificationService(sender=sender)


@pytest.fixture()
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def exec_config(sleeper) -> ExecutionConfig:
    return ExecutionConfig(
        pacing_seconds=0.1,
        default_commission_rate=Decimal("0"),
        settlement_days=2,
        sell_price_resolver=SellPriceResolver(),
        sleep=sleeper,
        clock=lambda: NOW,
    )


class Seeder:
    """Creates sessions and pledges directly through the repositories"""

    def __init__(self, open_store):
        self.open_store = open_store

    async def session(self, **overrides):
        fields = dict(
            stock_symbol="TCS",
            stock_name="Tata Consultancy Services",
            session_mode=SessionMode.BUY_ONLY,
            execution_rule=ExecutionRule.SESSION_END,
            status=SessionStatus.ACTIVE,
            session_start=NOW - timedelta(days=1),
            session_end=NOW - timedelta(minutes=5),
            stock_price=Decimal("3500.00"),
        )
        fields.update(overrides)
        async with self.open_store() as store:
            return await store.sessions.create(**fields)

    async def pledge(self, session, **overrides):
        fields = dict(
            session_id=session.id,
            user_id="user-1",
            demat_account_id="1208160000012345",
            stock_symbol=session.stock_symbol,
            side=PledgeSide.BUY,
            qty=10,
            price_target=Decimal("3450.50"),
            status=PledgeStatus.READY_FOR_EXECUTION,
        )
        fields.update(overrides)
        async with self.open_store() as store:
            return await store.pledges.create(**fields)

    async def pledges(self, session, count: int, **overrides):
        created = []
        for i in range(count):
            created.append(await self.pledge(session, user_id=f"user-{i + 1}", **overrides))
        return created


@pytest.fixture()
def seed(open_store) -> Seeder:
    return Seeder(open_store)


@pytest.fixture()
async def app(db_session, open_store, notifier, exec_config) -> FastAPI:
    app = create_app(
        open_store=open_store,
        notifier=notifier,
        config=exec_config,
        auto_enabled=False,
    )

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.auto_engine.clock = lambda: NOW
    return app


@pytest.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
