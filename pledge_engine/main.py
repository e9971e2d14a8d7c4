"""
FastAPI Main Application
Pledge session lifecycle & execution engine with the automated trigger
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pledge_engine.api.routes import audit, automation, executions, health, pledges, sessions
from pledge_engine.config import settings
from pledge_engine.core.logging import setup_logging
from pledge_engine.domain.services.optimistic_cache import OptimisticCache
from pledge_engine.infrastructure.db.database import close_db, init_db
from pledge_engine.infrastructure.db.store import StoreFactory, store_factory
from pledge_engine.scheduler.auto_execution import AutoExecutionEngine
from pledge_engine.services.execution_service import ExecutionConfig, SessionLockRegistry
from pledge_engine.services.manual_trigger import ManualTrigger
from pledge_engine.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager
    Handles startup and shutdown of the database and the automated trigger
    """
    setup_logging(settings.LOG_LEVEL)

    logger.info("=" * 60)
    logger.info("🚀 Starting Pledge Engine")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    engine: AutoExecutionEngine = app.state.auto_engine
    if engine.enabled:
        try:
            engine.start()
        except Exception as e:
            logger.error(f"❌ Failed to start automated execution engine: {e}")
    else:
        logger.info("⏰ Automated execution disabled")

    logger.info(f"   ✅ API Server: http://{settings.API_HOST}:{settings.API_PORT}")
    logger.info(f"   ✅ Sell price policy: {settings.SELL_PRICE_POLICY}")
    logger.info(f"   ✅ Telegram: {'Enabled' if settings.TELEGRAM_ENABLED else 'Disabled'}")

    yield

    logger.info("🛑 Shutting down Pledge Engine...")
    engine.shutdown()
    await close_db()
    logger.info("👋 Pledge Engine shutdown complete")


def create_app(
    open_store: Optional[StoreFactory] = None,
    notifier: Optional[NotificationService] = None,
    config: Optional[ExecutionConfig] = None,
    auto_enabled: Optional[bool] = None,
) -> FastAPI:
    app = FastAPI(
        title="Pledge Engine",
        description="Pledge session lifecycle and batch execution",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    open_store = open_store or store_factory()
    notifier = notifier or NotificationService()
    locks = SessionLockRegistry()

    app.state.board = OptimisticCache(name="session")
    app.state.notifier = notifier
    app.state.manual_trigger = ManualTrigger(
        open_store,
        board=app.state.board,
        notifier=notifier,
        config=config,
        locks=locks,
    )
    app.state.auto_engine = AutoExecutionEngine(
        open_store,
        notifier=notifier,
        config=config,
        locks=locks,
        enabled=auto_enabled,
    )

    app.include_router(health.router, tags=["health"])
    app.include_router(sessions.router, prefix="/api/v1/sessions", tags=["sessions"])
    app.include_router(pledges.router, prefix="/api/v1/sessions", tags=["pledges"])
    app.include_router(executions.router, prefix="/api/v1/sessions", tags=["executions"])
    app.include_router(audit.router, prefix="/api/v1/audit", tags=["audit"])
    app.include_router(automation.router, prefix="/api/v1/automation", tags=["automation"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pledge_engine.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
