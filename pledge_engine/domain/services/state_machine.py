"""
SESSION STATE MACHINE

Legal states of a pledge session and the edges a trigger may take.

    draft -> active -> {closed | executing}
    closed -> executing
    executing -> {completed | awaiting_sell_execution}
    awaiting_sell_execution -> completed
    any non-terminal -> cancelled

RULES:
❌ No persistence, no I/O
✅ Every status write in the engine goes through assert_transition
"""

from typing import FrozenSet, Mapping

from pledge_engine.domain.exceptions import InvalidTransitionError
from pledge_engine.domain.models import PledgeSession, PledgeSide, SessionMode, SessionStatus


S = SessionStatus

TRANSITIONS: Mapping[SessionStatus, FrozenSet[SessionStatus]] = {
    S.DRAFT: frozenset({S.ACTIVE, S.CANCELLED}),
    S.ACTIVE: frozenset({S.CLOSED, S.EXECUTING, S.CANCELLED}),
    S.CLOSED: frozenset({S.EXECUTING, S.CANCELLED}),
    S.EXECUTING: frozenset({S.COMPLETED, S.AWAITING_SELL_EXECUTION, S.CANCELLED}),
    S.AWAITING_SELL_EXECUTION: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED})

# Logical delete only from draft or terminal states
DELETABLE_STATUSES = frozenset({S.DRAFT}) | TERMINAL_STATUSES


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return SessionStatus(target) in TRANSITIONS[SessionStatus(current)]


def assert_transition(current: SessionStatus, target: SessionStatus) -> None:
    """
    Raise InvalidTransitionError unless current -> target is an edge.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(SessionStatus(current).value, SessionStatus(target).value)


def phase_for_status(status: SessionStatus) -> PledgeSide:
    """
    Derive the execution phase from the session status.

    active/closed run the buy (entry) phase, awaiting_sell_execution runs
    the sell phase of a buy_sell_cycle.
    """
    status = SessionStatus(status)
    if status in (S.ACTIVE, S.CLOSED):
        return PledgeSide.BUY
    if status == S.AWAITING_SELL_EXECUTION:
        return PledgeSide.SELL
    raise InvalidTransitionError(
        status.value,
        reason=f"Session in status '{status.value}' cannot be executed",
    )


def phase_for_session(session: PledgeSession) -> PledgeSide:
    """
    Phase a trigger would run now. sell_only sessions trade their entry
    phase on the sell side.
    """
    phase = phase_for_status(session.status)
    if phase == PledgeSide.BUY and session.session_mode == SessionMode.SELL_ONLY:
        return PledgeSide.SELL
    return phase


def is_closing_phase(session: PledgeSession, phase: PledgeSide) -> bool:
    """True for the sell leg of a buy_sell_cycle (matched against buy fills)"""
    return (
        PledgeSide(phase) == PledgeSide.SELL
        and session.session_mode == SessionMode.BUY_SELL_CYCLE
    )


def status_after_phase(session: PledgeSession, phase: PledgeSide, eligible_count: int) -> SessionStatus:
    """
    Next status once a phase batch has finished.

    Individual pledge failures do not change the outcome; only the number
    of eligible pledges matters for a buy_sell_cycle buy phase.
    """
    if PledgeSide(phase) == PledgeSide.SELL:
        return S.COMPLETED

    if session.session_mode == SessionMode.BUY_SELL_CYCLE and eligible_count > 0:
        return S.AWAITING_SELL_EXECUTION

    return S.COMPLETED
