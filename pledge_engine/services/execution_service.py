"""
SERVICE — PLEDGE EXECUTION ENGINE

• Execution Batch Processor: executes every eligible pledge of one phase
• Session Execution Service: claims the session, runs the phase, advances
  the session through the state machine, reports the summary

RULES:
✅ Session status is claimed (compare-and-set) before any pledge is touched
✅ No pledge failure aborts the batch
✅ Every attempt yields exactly one ExecutionRecord (completed or failed)
✅ An in-flight status never outlives a single trigger invocation
❌ No batching of store writes; pledges are executed one at a time
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from pledge_engine.config import settings
from pledge_engine.domain.exceptions import (
    ConcurrentExecutionError,
    ExecutionAbortedError,
    SessionNotFoundError,
)
from pledge_engine.domain.models import (
    Actor,
    BatchResult,
    ExecutionRecord,
    ExecutionStatus,
    Pledge,
    PledgeSession,
    PledgeSide,
    PledgeStatus,
    SessionStatus,
)
from pledge_engine.domain.services import state_machine
from pledge_engine.domain.services.commission import (
    money,
    net_amount,
    platform_commission,
    resolve_commission_rate,
    to_decimal,
)
from pledge_engine.domain.services.pricing import SellPriceResolver, resolve_buy_price
from pledge_engine.infrastructure.db.store import PledgeStore
from pledge_engine.services import audit_service
from pledge_engine.services.audit_service import AuditService
from pledge_engine.services.notification_service import NotificationService
from pledge_engine.utils.time import now_ist_naive, settlement_date

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]


@dataclass
class ExecutionConfig:
    """Tunables for the batch processor (injectable for deterministic tests)"""
    pacing_seconds: float = 0.1
    default_commission_rate: Decimal = Decimal("0")
    settlement_days: int = 2
    sell_price_resolver: SellPriceResolver = field(default_factory=SellPriceResolver)
    sleep: Sleep = asyncio.sleep
    clock: Clock = now_ist_naive

    @classmethod
    def from_settings(cls, **overrides) -> "ExecutionConfig":
        values = dict(
            pacing_seconds=settings.EXECUTION_PACING_SECONDS,
            default_commission_rate=to_decimal(settings.DEFAULT_COMMISSION_RATE),
            settlement_days=settings.SETTLEMENT_DAYS,
            sell_price_resolver=SellPriceResolver(
                policy=settings.SELL_PRICE_POLICY,
                max_drift_pct=settings.SIMULATED_SELL_MAX_DRIFT_PCT,
            ),
        )
        values.update(overrides)
        return cls(**values)


class FailurePolicy(str, Enum):
    """What to do with a claimed session when its phase aborts"""
    FORCE_COMPLETE = "force_complete"  # automated path
    REVERT = "revert"                  # manual path


@dataclass(frozen=True)
class ExecutionOutcome:
    session: PledgeSession
    result: BatchResult
    previous_status: SessionStatus
    final_status: SessionStatus


class SessionLockRegistry:
    """
    Per-process locks keyed by session id.

    The sell phase leaves the session in awaiting_sell_execution while it
    runs, so the status alone cannot exclude a second trigger in the same
    process.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def lock_for(self, session_id: int) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock


# ======================================================================
# Execution Batch Processor
# ======================================================================

class ExecutionBatchProcessor:
    """
    execute(session, phase) -> BatchResult

    Selection failures raise ExecutionAbortedError (nothing was touched).
    Per-pledge failures are recorded and the batch moves on.
    """

    def __init__(self, store: PledgeStore, config: Optional[ExecutionConfig] = None):
        self.store = store
        self.config = config or ExecutionConfig.from_settings()
        self.audit = AuditService(store.audit)

    async def execute(self, session: PledgeSession, phase: PledgeSide, actor: Actor) -> BatchResult:
        phase = PledgeSide(phase)
        if state_machine.is_closing_phase(session, phase):
            return await self._execute_sell_phase(session, actor)
        return await self._execute_entry_phase(session, phase, actor)

    async def select_entry_pledges(self, session_id: int) -> List[Pledge]:
        """Eligible pledges for the entry phase"""
        return await self.store.pledges.filter(
            session_id=session_id,
            status=PledgeStatus.READY_FOR_EXECUTION,
        )

    # ------------------------------------------------------------------
    # Entry phase (buy, or sell for sell_only sessions)
    # ------------------------------------------------------------------

    async def _execute_entry_phase(self, session: PledgeSession, phase: PledgeSide, actor: Actor) -> BatchResult:
        try:
            pledges = await self.select_entry_pledges(session.id)
        except Exception as exc:
            raise ExecutionAbortedError(f"Failed to fetch pledges for session {session.id}: {exc}") from exc

        logger.info(
            f"📊 Found {len(pledges)} pledges ready for {phase.value.upper()} execution in session {session.id}"
        )

        rate = resolve_commission_rate(session, self.config.default_commission_rate)
        success = fail = 0
        execution_ids: List[int] = []

        for index, pledge in enumerate(pledges):
            if index > 0:
                await self._pace()

            record = await self._execute_entry(session, pledge, rate, actor)
            if record is not None:
                success += 1
                execution_ids.append(record.id)
            else:
                fail += 1

        return BatchResult(
            session_id=session.id,
            phase=phase,
            eligible_count=len(pledges),
            success_count=success,
            fail_count=fail,
            execution_ids=tuple(execution_ids),
        )

    async def _execute_entry(
        self,
        session: PledgeSession,
        pledge: Pledge,
        rate: Decimal,
        actor: Actor,
    ) -> Optional[ExecutionRecord]:
        """
        Fill one pledge on its own side at its entry price.
        Returns None on failure (already recorded).
        """
        side = PledgeSide(pledge.side)
        try:
            price = resolve_buy_price(session, pledge)
            value = money(Decimal(pledge.qty) * price)
            commission = platform_commission(value, rate)
            executed_at = self.config.clock()

            record = await self.store.executions.create(
                pledge_id=pledge.id,
                session_id=session.id,
                user_id=pledge.user_id,
                demat_account_id=pledge.demat_account_id,
                stock_symbol=pledge.stock_symbol,
                side=side,
                pledged_qty=pledge.qty,
                executed_qty=pledge.qty,
                executed_price=price,
                total_execution_value=value,
                platform_commission=commission,
                commission_rate=rate,
                net_amount=net_amount(side, value, commission),
                status=ExecutionStatus.COMPLETED,
                executed_at=executed_at,
                settlement_date=settlement_date(executed_at, self.config.settlement_days),
            )

            await self.store.pledges.update(pledge.id, status=PledgeStatus.EXECUTED)

            await self.audit.record(
                actor,
                audit_service.execution_action(side.value, "completed"),
                session_id=session.id,
                pledge_id=pledge.id,
                payload={
                    "execution_record_id": record.id,
                    "executed_qty": pledge.qty,
                    "executed_price": price,
                    "platform_commission": commission,
                },
            )
            logger.info(f"✅ Executed {side.value.upper()} pledge {pledge.id} for session {session.id}")
            return record

        except Exception as exc:
            logger.error(f"❌ Failed to execute {side.value.upper()} for pledge {pledge.id}: {exc}")
            await self._record_failure(session, pledge, side, actor, exc, mark_pledge=True)
            return None

    # ------------------------------------------------------------------
    # Sell phase
    # ------------------------------------------------------------------

    async def _execute_sell_phase(self, session: PledgeSession, actor: Actor) -> BatchResult:
        try:
            pledges = await self.store.pledges.filter(
                session_id=session.id,
                status=PledgeStatus.EXECUTED,
            )
            buys = await self.store.executions.completed_by_pledge(session.id, PledgeSide.BUY)
            already_sold = await self.store.executions.executed_pledge_ids(session.id, PledgeSide.SELL)
        except Exception as exc:
            raise ExecutionAbortedError(f"Failed to fetch sell positions for session {session.id}: {exc}") from exc

        pledges = [p for p in pledges if p.id not in already_sold]
        logger.info(f"📊 Found {len(pledges)} positions for SELL execution in session {session.id}")

        rate = resolve_commission_rate(session, self.config.default_commission_rate)
        success = fail = skipped = 0
        execution_ids: List[int] = []
        attempted = 0

        for pledge in pledges:
            buy_record = buys.get(pledge.id)
            if buy_record is None:
                logger.warning(
                    f"No corresponding BUY execution record found for pledge {pledge.id}. Skipping SELL."
                )
                skipped += 1
                await self.audit.record(
                    actor,
                    audit_service.SELL_EXECUTION_SKIPPED,
                    success=False,
                    session_id=session.id,
                    pledge_id=pledge.id,
                    payload={"reason": "No corresponding BUY execution record found"},
                )
                continue

            if attempted > 0:
                await self._pace()
            attempted += 1

            record = await self._execute_exit(session, pledge, buy_record, rate, actor)
            if record is not None:
                success += 1
                execution_ids.append(record.id)
            else:
                fail += 1

        return BatchResult(
            session_id=session.id,
            phase=PledgeSide.SELL,
            eligible_count=len(pledges),
            success_count=success,
            fail_count=fail,
            skipped_count=skipped,
            execution_ids=tuple(execution_ids),
        )

    async def _execute_exit(
        self,
        session: PledgeSession,
        pledge: Pledge,
        buy_record: ExecutionRecord,
        rate: Decimal,
        actor: Actor,
    ) -> Optional[ExecutionRecord]:
        try:
            price = self.config.sell_price_resolver.resolve(session, pledge, buy_record)
            qty = buy_record.executed_qty or pledge.qty
            value = money(Decimal(qty) * price)
            commission = platform_commission(value, rate)
            executed_at = self.config.clock()

            record = await self.store.executions.create(
                pledge_id=pledge.id,
                session_id=session.id,
                user_id=pledge.user_id,
                demat_account_id=pledge.demat_account_id,
                stock_symbol=session.stock_symbol,
                side=PledgeSide.SELL,
                pledged_qty=pledge.qty,
                executed_qty=qty,
                executed_price=price,
                total_execution_value=value,
                platform_commission=commission,
                commission_rate=rate,
                net_amount=net_amount(PledgeSide.SELL, value, commission),
                status=ExecutionStatus.COMPLETED,
                buy_execution_id=buy_record.id,
                executed_at=executed_at,
                settlement_date=settlement_date(executed_at, self.config.settlement_days),
            )

            await self.audit.record(
                actor,
                audit_service.SELL_EXECUTION_COMPLETED,
                session_id=session.id,
                pledge_id=pledge.id,
                payload={
                    "execution_record_id": record.id,
                    "buy_execution_id": buy_record.id,
                    "executed_qty": qty,
                    "executed_price": price,
                    "sell_price_policy": self.config.sell_price_resolver.policy.value,
                },
            )
            logger.info(f"✅ Executed SELL for pledge {pledge.id} in session {session.id}")
            return record

        except Exception as exc:
            logger.error(f"❌ Failed to execute SELL for pledge {pledge.id}: {exc}")
            await self._record_failure(
                session, pledge, PledgeSide.SELL, actor, exc,
                mark_pledge=True, buy_execution_id=buy_record.id,
            )
            return None

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    async def _record_failure(
        self,
        session: PledgeSession,
        pledge: Pledge,
        side: PledgeSide,
        actor: Actor,
        error: Exception,
        mark_pledge: bool,
        buy_execution_id: Optional[int] = None,
    ) -> None:
        """
        Failed ExecutionRecord + pledge marked failed + failure audit entry.
        Each step is attempted even if an earlier one fails.
        """
        message = str(error) or type(error).__name__
        executed_at = self.config.clock()

        try:
            await self.store.executions.create(
                pledge_id=pledge.id,
                session_id=session.id,
                user_id=pledge.user_id,
                demat_account_id=pledge.demat_account_id,
                stock_symbol=pledge.stock_symbol,
                side=side,
                pledged_qty=pledge.qty,
                executed_qty=0,
                executed_price=None,
                total_execution_value=Decimal("0"),
                platform_commission=Decimal("0"),
                commission_rate=Decimal("0"),
                net_amount=Decimal("0"),
                status=ExecutionStatus.FAILED,
                error_message=message,
                buy_execution_id=buy_execution_id,
                executed_at=executed_at,
            )
        except Exception as exc:
            logger.error(f"Could not write failed execution record for pledge {pledge.id}: {exc}")

        if mark_pledge:
            try:
                await self.store.pledges.update(
                    pledge.id,
                    status=PledgeStatus.FAILED,
                    admin_notes=f"{side.value.capitalize()} execution failed: {message}",
                )
            except Exception as exc:
                logger.error(f"Could not mark pledge {pledge.id} as failed: {exc}")

        await self.audit.record(
            actor,
            audit_service.execution_action(side.value, "failed"),
            success=False,
            session_id=session.id,
            pledge_id=pledge.id,
            payload={"error": message},
        )

    async def _pace(self) -> None:
        if self.config.pacing_seconds > 0:
            await self.config.sleep(self.config.pacing_seconds)


# ======================================================================
# Session Execution Service
# ======================================================================

class SessionExecutionService:
    """
    Drives one phase of one session:
    claim -> batch -> advance -> notify
    """

    def __init__(
        self,
        store: PledgeStore,
        config: Optional[ExecutionConfig] = None,
        notifier: Optional[NotificationService] = None,
        locks: Optional[SessionLockRegistry] = None,
    ):
        self.store = store
        self.config = config or ExecutionConfig.from_settings()
        self.notifier = notifier or NotificationService()
        self.locks = locks or _default_locks
        self.processor = ExecutionBatchProcessor(store, self.config)
        self.audit = AuditService(store.audit)

    async def run_phase(
        self,
        session_id: int,
        actor: Actor,
        failure_policy: FailurePolicy = FailurePolicy.FORCE_COMPLETE,
        only_from: Optional[Iterable[SessionStatus]] = None,
    ) -> ExecutionOutcome:
        """
        Execute the phase implied by the session's current status.

        Args:
            session_id: Session to execute
            actor: Who triggered it (audit)
            failure_policy: Handling of an aborted phase after the claim
            only_from: Statuses the caller expects; anything else is treated
                as another trigger having moved the session

        Raises:
            SessionNotFoundError, InvalidTransitionError,
            ConcurrentExecutionError, ExecutionAbortedError
        """
        session = await self.store.sessions.get(session_id)
        if session is None or session.is_deleted:
            raise SessionNotFoundError(session_id)

        if only_from is not None and session.status not in set(only_from):
            raise ConcurrentExecutionError(
                f"Session {session_id} is now '{session.status.value}', not executing it"
            )

        phase = state_machine.phase_for_session(session)
        if state_machine.is_closing_phase(session, phase):
            return await self._run_closing(session, actor, failure_policy)

        previous = session.status
        session = await self.claim(session, actor)
        return await self._run_entry(session, phase, previous, actor, failure_policy)

    async def claim(self, session: PledgeSession, actor: Actor) -> PledgeSession:
        """
        Move the session to executing via compare-and-set.
        Raises ConcurrentExecutionError if another trigger got there first.
        """
        state_machine.assert_transition(session.status, SessionStatus.EXECUTING)
        now = self.config.clock()
        won = await self.store.sessions.compare_and_set_status(
            session.id,
            expected=session.status,
            new_status=SessionStatus.EXECUTING,
            last_executed_at=now,
        )
        if not won:
            raise ConcurrentExecutionError(
                f"Session {session.id} left '{session.status.value}' before it could be claimed"
            )

        await self._audit_status(actor, session.id, session.status, SessionStatus.EXECUTING)
        logger.info(f"🔒 Session {session.id} ({session.stock_symbol}) claimed for execution")
        return replace(session, status=SessionStatus.EXECUTING, last_executed_at=now)

    # ------------------------------------------------------------------

    async def _run_entry(
        self,
        session: PledgeSession,
        phase: PledgeSide,
        previous: SessionStatus,
        actor: Actor,
        failure_policy: FailurePolicy,
    ) -> ExecutionOutcome:
        try:
            result = await self.processor.execute(session, phase, actor)
        except Exception as exc:
            await self._handle_phase_failure(session, previous, actor, exc, failure_policy)
            raise _as_aborted(exc) from exc

        return await self._finish(session, previous, result, actor, failure_policy)

    async def _run_closing(
        self,
        session: PledgeSession,
        actor: Actor,
        failure_policy: FailurePolicy,
    ) -> ExecutionOutcome:
        lock = self.locks.lock_for(session.id)
        if lock.locked():
            raise ConcurrentExecutionError(f"Sell phase already running for session {session.id}")

        async with lock:
            # Re-read under the lock; another trigger may have finished it
            current = await self.store.sessions.get(session.id)
            if current is None or current.status != SessionStatus.AWAITING_SELL_EXECUTION:
                status = current.status.value if current else "missing"
                raise ConcurrentExecutionError(
                    f"Session {session.id} is '{status}', sell phase no longer pending"
                )

            try:
                result = await self.processor.execute(current, PledgeSide.SELL, actor)
            except Exception as exc:
                await self._handle_phase_failure(
                    current, SessionStatus.AWAITING_SELL_EXECUTION, actor, exc, failure_policy
                )
                raise _as_aborted(exc) from exc

            return await self._finish(current, SessionStatus.AWAITING_SELL_EXECUTION, result, actor, failure_policy)

    async def _finish(
        self,
        session: PledgeSession,
        previous: SessionStatus,
        result: BatchResult,
        actor: Actor,
        failure_policy: FailurePolicy,
    ) -> ExecutionOutcome:
        next_status = state_machine.status_after_phase(session, result.phase, result.eligible_count)
        state_machine.assert_transition(session.status, next_status)

        try:
            won = await self.store.sessions.compare_and_set_status(
                session.id,
                expected=session.status,
                new_status=next_status,
                last_executed_at=self.config.clock(),
            )
        except Exception as exc:
            won = await self._retry_finish(session, previous, next_status, actor, exc, failure_policy)

        if won:
            await self._audit_status(
                actor, session.id, session.status, next_status,
                payload={
                    "phase": result.phase.value,
                    "success_count": result.success_count,
                    "fail_count": result.fail_count,
                    "skipped_count": result.skipped_count,
                },
            )
            logger.info(f"✅ Session {session.id} moved to {next_status.value}")
        else:
            logger.warning(
                f"Session {session.id} changed status during execution; "
                f"not moving it to {next_status.value}"
            )

        final = await self.store.sessions.get(session.id) or replace(session, status=next_status)
        await self.notifier.batch_summary(final, result)

        return ExecutionOutcome(
            session=final,
            result=result,
            previous_status=previous,
            final_status=final.status,
        )

    async def _retry_finish(
        self,
        session: PledgeSession,
        previous: SessionStatus,
        next_status: SessionStatus,
        actor: Actor,
        error: Exception,
        failure_policy: FailurePolicy,
    ) -> bool:
        """
        The batch already ran but its closing status write failed.
        Write the same status once more; if that fails too, settle the
        session through the failure policy and abort.
        """
        message = str(error) or type(error).__name__
        logger.warning(f"Status update for session {session.id} failed after the batch ran: {message}; retrying")

        try:
            return await self.store.sessions.compare_and_set_status(
                session.id,
                expected=session.status,
                new_status=next_status,
                last_executed_at=self.config.clock(),
                admin_notes=f"Status update retried after error: {message}",
            )
        except Exception as exc:
            await self._handle_phase_failure(session, previous, actor, exc, failure_policy)
            raise _as_aborted(exc) from exc

    async def _handle_phase_failure(
        self,
        session: PledgeSession,
        previous: SessionStatus,
        actor: Actor,
        error: Exception,
        failure_policy: FailurePolicy,
    ) -> None:
        """
        Never leave a session in executing after a failed phase.
        """
        message = str(error) or type(error).__name__
        logger.error(f"❌ Execution phase failed for session {session.id}: {message}")

        await self.audit.record(
            actor,
            audit_service.EXECUTION_PHASE_FAILED,
            success=False,
            session_id=session.id,
            payload={"error": message, "status": session.status.value, "policy": failure_policy.value},
        )

        try:
            if failure_policy == FailurePolicy.FORCE_COMPLETE:
                target = SessionStatus.COMPLETED
                won = await self.store.sessions.compare_and_set_status(
                    session.id,
                    expected=session.status,
                    new_status=target,
                    last_executed_at=self.config.clock(),
                    admin_notes=f"Execution failed: {message}",
                )
            elif session.status != previous:
                # Undo the provisional claim
                target = previous
                won = await self.store.sessions.compare_and_set_status(
                    session.id,
                    expected=session.status,
                    new_status=target,
                    admin_notes=f"Execution failed, reverted: {message}",
                )
            else:
                return

            if won:
                await self._audit_status(actor, session.id, session.status, target)
            else:
                logger.warning(
                    f"Session {session.id} left '{session.status.value}' before it could be "
                    f"settled to {target.value}"
                )
        except Exception as exc:
            logger.error(f"Failed to settle session {session.id} status after execution error: {exc}")

    async def _audit_status(
        self,
        actor: Actor,
        session_id: int,
        old: SessionStatus,
        new: SessionStatus,
        payload: Optional[dict] = None,
    ) -> None:
        await self.audit.record(
            actor,
            audit_service.SESSION_STATUS_CHANGED,
            session_id=session_id,
            payload={"from": SessionStatus(old).value, "to": SessionStatus(new).value, **(payload or {})},
        )


def _as_aborted(exc: Exception) -> ExecutionAbortedError:
    if isinstance(exc, ExecutionAbortedError):
        return exc
    return ExecutionAbortedError(str(exc) or type(exc).__name__)


_default_locks = SessionLockRegistry()
