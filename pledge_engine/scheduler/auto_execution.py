"""
Automated Execution Engine
Periodically executes sessions whose execution window has closed

• Only active sessions with execution_rule=session_end are picked up
• Only the entry phase runs here; sell legs are operator-triggered
• One tick at a time: a tick that finds the previous one still running
  returns immediately
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pledge_engine.config import settings
from pledge_engine.domain.exceptions import ConcurrentExecutionError
from pledge_engine.domain.models import Actor, ActorRole, ExecutionRule, SessionStatus
from pledge_engine.infrastructure.db.store import StoreFactory
from pledge_engine.services.execution_service import (
    ExecutionConfig,
    FailurePolicy,
    SessionExecutionService,
    SessionLockRegistry,
)
from pledge_engine.services.notification_service import NotificationService
from pledge_engine.utils.time import now_ist_naive

logger = logging.getLogger(__name__)

JOB_ID = "auto_execute_sessions"


@dataclass
class TickReport:
    """What one tick of the engine did"""
    started_at: datetime
    ran: bool = True
    reason: Optional[str] = None
    due_session_ids: List[int] = field(default_factory=list)
    executed_session_ids: List[int] = field(default_factory=list)
    skipped_session_ids: List[int] = field(default_factory=list)
    errors: Dict[int, str] = field(default_factory=dict)
    error: Optional[str] = None


class AutoExecutionEngine:
    """
    Timer-driven trigger (APScheduler interval job).
    """

    def __init__(
        self,
        open_store: StoreFactory,
        notifier: Optional[NotificationService] = None,
        config: Optional[ExecutionConfig] = None,
        locks: Optional[SessionLockRegistry] = None,
        interval_seconds: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock=now_ist_naive,
    ):
        self.open_store = open_store
        self.notifier = notifier or NotificationService()
        self.config = config
        self.locks = locks
        self.interval_seconds = interval_seconds or settings.AUTO_EXECUTION_INTERVAL_SECONDS
        self.enabled = settings.AUTO_EXECUTION_ENABLED if enabled is None else enabled
        self.clock = clock
        self.actor = Actor(id=settings.SYSTEM_ACTOR_ID, role=ActorRole.SYSTEM)

        self.timezone = pytz.timezone(settings.TIMEZONE)
        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self.last_report: Optional[TickReport] = None
        self._executing = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.scheduler.running and self.scheduler.get_job(JOB_ID) is not None

    @property
    def is_executing(self) -> bool:
        return self._executing

    def start(self) -> None:
        """Register the interval job (first run immediately) and start"""
        if self.scheduler.get_job(JOB_ID) is None:
            self.scheduler.add_job(
                self.check_and_execute_sessions,
                trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=self.timezone),
                id=JOB_ID,
                name="Automated session execution",
                next_run_time=datetime.now(self.timezone),
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"🤖 Automated execution engine started (every {self.interval_seconds}s)")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("🛑 Automated execution engine stopped")

    def enable(self) -> None:
        self.enabled = True
        self.start()

    def disable(self) -> None:
        self.enabled = False
        if self.scheduler.get_job(JOB_ID) is not None:
            self.scheduler.remove_job(JOB_ID)
        logger.info("⏸️ Automated execution engine disabled")

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def check_and_execute_sessions(self) -> TickReport:
        now = self.clock()

        if not self.enabled:
            return TickReport(started_at=now, ran=False, reason="disabled")

        if self._executing:
            logger.info("⏭️ Previous automated execution tick still running, skipping")
            return TickReport(started_at=now, ran=False, reason="busy")

        self._executing = True
        report = TickReport(started_at=now)
        try:
            async with self.open_store() as store:
                candidates = await store.sessions.filter(
                    status=SessionStatus.ACTIVE,
                    execution_rule=ExecutionRule.SESSION_END,
                    is_deleted=False,
                )

            due = [s for s in candidates if s.has_ended(now)]
            report.due_session_ids = [s.id for s in due]
            if due:
                logger.info(f"🔄 {len(due)} session(s) due for automated execution")

            for session in due:
                await self._execute_one(session.id, session.stock_symbol, report)

        except Exception as exc:
            logger.error(f"❌ Error in automated execution engine: {exc}")
            report.error = str(exc)
            await self.notifier.engine_error(str(exc))
        finally:
            self._executing = False

        self.last_report = report
        return report

    async def _execute_one(self, session_id: int, stock_symbol: str, report: TickReport) -> None:
        logger.info(f"🤖 Auto-executing session {session_id} ({stock_symbol})")
        try:
            async with self.open_store() as store:
                executor = SessionExecutionService(
                    store,
                    config=self.config,
                    notifier=self.notifier,
                    locks=self.locks,
                )
                await executor.run_phase(
                    session_id,
                    self.actor,
                    FailurePolicy.FORCE_COMPLETE,
                    only_from=[SessionStatus.ACTIVE],
                )
            report.executed_session_ids.append(session_id)
        except ConcurrentExecutionError as exc:
            logger.info(f"⏭️ Session {session_id} skipped: {exc}")
            report.skipped_session_ids.append(session_id)
        except Exception as exc:
            logger.error(f"❌ Failed to execute session {session_id}: {exc}")
            report.errors[session_id] = str(exc)
            await self.notifier.execution_failed(session_id, stock_symbol, str(exc))
