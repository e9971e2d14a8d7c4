"""
Manual (operator-driven) execution trigger.

The operator is shown a confirmation naming the side about to execute;
only an explicit yes starts the phase. The operator's session board is
updated optimistically and rolled back if the trigger fails.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from pledge_engine.domain.exceptions import SessionNotFoundError
from pledge_engine.domain.models import Actor, PledgeSession, PledgeSide, PledgeStatus, SessionStatus
from pledge_engine.domain.services import state_machine
from pledge_engine.domain.services.optimistic_cache import OptimisticCache
from pledge_engine.infrastructure.db.store import StoreFactory
from pledge_engine.services.execution_service import (
    ExecutionConfig,
    ExecutionOutcome,
    FailurePolicy,
    SessionExecutionService,
    SessionLockRegistry,
)
from pledge_engine.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmationPrompt:
    """What the operator must agree to before a phase runs"""
    session_id: int
    stock_symbol: str
    side: PledgeSide
    current_status: SessionStatus
    eligible_count: int
    title: str
    message: str


Confirm = Callable[[ConfirmationPrompt], Awaitable[bool]]


def build_prompt(session: PledgeSession, side: PledgeSide, eligible_count: int) -> ConfirmationPrompt:
    side_label = side.value.upper()
    return ConfirmationPrompt(
        session_id=session.id,
        stock_symbol=session.stock_symbol,
        side=side,
        current_status=session.status,
        eligible_count=eligible_count,
        title=f"Execute {side_label} Orders?",
        message=(
            f"This will execute {eligible_count} {side_label} pledge(s) for "
            f"{session.stock_symbol} in session #{session.id}. Continue?"
        ),
    )


class ManualTrigger:
    def __init__(
        self,
        open_store: StoreFactory,
        board: Optional[OptimisticCache] = None,
        notifier: Optional[NotificationService] = None,
        config: Optional[ExecutionConfig] = None,
        locks: Optional[SessionLockRegistry] = None,
    ):
        self.open_store = open_store
        self.board = board if board is not None else OptimisticCache(name="session")
        self.notifier = notifier or NotificationService()
        self.config = config
        self.locks = locks

    async def preview(self, session_id: int) -> ConfirmationPrompt:
        """
        Build the confirmation for the phase the session is ready for.

        Raises:
            SessionNotFoundError
            InvalidTransitionError: status allows no execution
        """
        async with self.open_store() as store:
            session = await store.sessions.get(session_id)
            if session is None or session.is_deleted:
                raise SessionNotFoundError(session_id)

            side = state_machine.phase_for_session(session)
            if state_machine.is_closing_phase(session, side):
                eligible = await store.pledges.count_for_session(session_id, [PledgeStatus.EXECUTED])
            else:
                eligible = await store.pledges.count_for_session(session_id, [PledgeStatus.READY_FOR_EXECUTION])

        return build_prompt(session, side, eligible)

    async def execute_session(
        self,
        session_id: int,
        actor: Actor,
        confirm: Confirm,
    ) -> Optional[ExecutionOutcome]:
        """
        Confirm, then run one phase of a session.

        Returns:
            ExecutionOutcome, or None when the operator declined
        """
        prompt = await self.preview(session_id)

        if not await confirm(prompt):
            logger.info(f"Execution of session {session_id} declined by {actor.id}")
            return None

        on_board = self.board.get(session_id) is not None
        if on_board:
            self.board.apply(
                session_id,
                {"status": SessionStatus.EXECUTING}
                if prompt.current_status != SessionStatus.AWAITING_SELL_EXECUTION
                else {},
                message=f"Executing {prompt.side.value.upper()} orders for {prompt.stock_symbol}...",
            )

        try:
            async with self.open_store() as store:
                executor = SessionExecutionService(
                    store,
                    config=self.config,
                    notifier=self.notifier,
                    locks=self.locks,
                )
                outcome = await executor.run_phase(
                    session_id,
                    actor,
                    FailurePolicy.REVERT,
                    # The confirmed side only holds for the status it was derived from
                    only_from=[prompt.current_status],
                )
        except Exception as exc:
            logger.error(f"❌ Manual execution of session {session_id} failed: {exc}")
            if on_board:
                self.board.rollback(session_id, error_message=f"Failed to execute session: {exc}")
            await self.notifier.execution_failed(session_id, prompt.stock_symbol, str(exc))
            raise

        if on_board:
            self.board.confirm(session_id, fresh=outcome.session)

        logger.info(
            f"✅ Manual {outcome.result.phase.value.upper()} execution finished for session {session_id}: "
            f"{outcome.previous_status.value} -> {outcome.final_status.value}"
        )
        return outcome
