"""
Integration tests for the batch processor and session execution service
"""

from datetime import date
from decimal import Decimal

import pytest

from pledge_engine.domain.exceptions import (
    ConcurrentExecutionError,
    ExecutionAbortedError,
    InvalidTransitionError,
)
from pledge_engine.domain.models import (
    Actor,
    ActorRole,
    ExecutionStatus,
    PledgeSide,
    PledgeStatus,
    SessionMode,
    SessionStatus,
)
from pledge_engine.services.execution_service import (
    ExecutionBatchProcessor,
    FailurePolicy,
    SessionExecutionService,
)

ADMIN = Actor("admin-1", ActorRole.ADMIN)

pytestmark = pytest.mark.integration


@pytest.fixture
def run(open_store, exec_config, notifier):
    """Run one phase against a fresh store"""

    async def _run(session_id, **kwargs):
        async with open_store() as store:
            service = SessionExecutionService(store, exec_config, notifier)
            return await service.run_phase(session_id, ADMIN, **kwargs)

    return _run


async def test_buy_only_session_executes_all_ready_pledges(seed, run, open_store, sender):
    session = await seed.session()
    pledges = await seed.pledges(session, 3)

    outcome = await run(session.id)

    assert outcome.previous_status == SessionStatus.ACTIVE
    assert outcome.final_status == SessionStatus.COMPLETED
    assert outcome.result.phase == PledgeSide.BUY
    assert (outcome.result.eligible_count, outcome.result.success_count, outcome.result.fail_count) == (3, 3, 0)

    async with open_store() as store:
        records = await store.executions.filter(session_id=session.id)
        assert len(records) == 3
        assert all(r.status == ExecutionStatus.COMPLETED for r in records)
        assert all(r.side == PledgeSide.BUY for r in records)
        assert {r.pledge_id for r in records} == {p.id for p in pledges}

        for pledge in pledges:
            assert (await store.pledges.get(pledge.id)).status == PledgeStatus.EXECUTED

        stored = await store.sessions.get(session.id)
        assert stored.status == SessionStatus.COMPLETED
        assert stored.last_executed_at is not None

    assert "Executed 3 buy orders for TCS." in sender.bodies


async def test_fill_values_commission_and_settlement(seed, run, open_store):
    session = await seed.session(commission_rate=Decimal("0.5"))
    pledge = await seed.pledge(session)

    await run(session.id)

    async with open_store() as store:
        [record] = await store.executions.filter(pledge_id=pledge.id)

    assert record.executed_qty == 10
    assert record.pledged_qty == 10
    assert record.executed_price == Decimal("3450.50")
    assert record.total_execution_value == Decimal("34505.00")
    assert record.commission_rate == Decimal("0.500")
    assert record.platform_commission == Decimal("172.53")
    assert record.net_amount == Decimal("34677.53")
    assert record.settlement_date == date(2026, 3, 4)


async def test_missing_price_target_uses_session_reference(seed, run, open_store):
    session = await seed.session(stock_price=Decimal("3500.00"))
    pledge = await seed.pledge(session, price_target=None)

    await run(session.id)

    async with open_store() as store:
        [record] = await store.executions.filter(pledge_id=pledge.id)
    assert record.executed_price == Decimal("3500.00")


async def test_one_failing_pledge_does_not_abort_batch(seed, open_store, exec_config, notifier, sender):
    session = await seed.session()
    pledges = await seed.pledges(session, 5)
    broken = pledges[2]

    async with open_store() as store:
        original_create = store.executions.create

        async def flaky_create(**fields):
            if fields["pledge_id"] == broken.id and fields["status"] == ExecutionStatus.COMPLETED:
                raise RuntimeError("exchange rejected order")
            return await original_create(**fields)

        store.executions.create = flaky_create
        outcome = await SessionExecutionService(store, exec_config, notifier).run_phase(session.id, ADMIN)

    assert (outcome.result.success_count, outcome.result.fail_count) == (4, 1)
    assert outcome.final_status == SessionStatus.COMPLETED

    async with open_store() as store:
        failed = await store.executions.filter(session_id=session.id, status=ExecutionStatus.FAILED)
        assert len(failed) == 1
        assert failed[0].pledge_id == broken.id
        assert failed[0].executed_qty == 0
        assert failed[0].error_message == "exchange rejected order"

        assert len(await store.executions.filter(session_id=session.id, status=ExecutionStatus.COMPLETED)) == 4

        marked = await store.pledges.get(broken.id)
        assert marked.status == PledgeStatus.FAILED
        assert "exchange rejected order" in marked.admin_notes

        audit = await store.audit.filter(target_pledge_id=broken.id, action="buy_execution_failed")
        assert len(audit) == 1
        assert audit[0].success is False

    assert "Executed 4 buy orders for TCS. 1 failed." in sender.bodies


async def test_every_attempt_yields_exactly_one_record(seed, run, open_store):
    session = await seed.session()
    pledges = await seed.pledges(session, 4)
    # Not eligible: never attempted
    await seed.pledge(session, status=PledgeStatus.PENDING)
    await seed.pledge(session, status=PledgeStatus.FAILED)

    await run(session.id)

    async with open_store() as store:
        for pledge in pledges:
            records = await store.executions.filter(pledge_id=pledge.id)
            assert len(records) == 1
        assert len(await store.executions.filter(session_id=session.id)) == 4


async def test_completed_session_cannot_run_again(seed, run, open_store):
    session = await seed.session()
    await seed.pledges(session, 2)

    await run(session.id)
    with pytest.raises(InvalidTransitionError):
        await run(session.id)

    async with open_store() as store:
        assert len(await store.executions.filter(session_id=session.id)) == 2


async def test_selection_is_stable_until_pledges_change(seed, open_store, exec_config):
    session = await seed.session()
    await seed.pledges(session, 3)

    async with open_store() as store:
        processor = ExecutionBatchProcessor(store, exec_config)
        first = await processor.select_entry_pledges(session.id)
        second = await processor.select_entry_pledges(session.id)

    assert [p.id for p in first] == [p.id for p in second]


async def test_pacing_between_attempts_only(seed, run, sleeper):
    session = await seed.session()
    await seed.pledges(session, 3)

    await run(session.id)

    assert sleeper.calls == [0.1, 0.1]


async def test_zero_eligible_buy_only_completes(seed, run, sender):
    session = await seed.session()

    outcome = await run(session.id)

    assert outcome.final_status == SessionStatus.COMPLETED
    assert outcome.result.eligible_count == 0
    assert "No pledges ready for BUY execution in session TCS." in sender.bodies


async def test_buy_sell_cycle_runs_both_legs(seed, run, open_store):
    session = await seed.session(session_mode=SessionMode.BUY_SELL_CYCLE, stock_price=Decimal("3600.00"))
    pledges = await seed.pledges(session, 2)

    buy = await run(session.id)
    assert buy.final_status == SessionStatus.AWAITING_SELL_EXECUTION
    assert buy.result.phase == PledgeSide.BUY

    sell = await run(session.id)
    assert sell.previous_status == SessionStatus.AWAITING_SELL_EXECUTION
    assert sell.final_status == SessionStatus.COMPLETED
    assert sell.result.phase == PledgeSide.SELL
    assert sell.result.success_count == 2

    async with open_store() as store:
        buys = await store.executions.completed_by_pledge(session.id, PledgeSide.BUY)
        sells = await store.executions.filter(session_id=session.id, side=PledgeSide.SELL)

    assert len(sells) == 2
    for record in sells:
        assert record.buy_execution_id == buys[record.pledge_id].id
        assert record.executed_price == Decimal("3600.00")
        assert record.executed_qty == 10
    assert {r.pledge_id for r in sells} == {p.id for p in pledges}


async def test_cycle_with_nothing_to_buy_completes_directly(seed, run):
    session = await seed.session(session_mode=SessionMode.BUY_SELL_CYCLE)

    outcome = await run(session.id)

    assert outcome.final_status == SessionStatus.COMPLETED


async def test_sell_skipped_without_buy_record(seed, run, open_store):
    session = await seed.session(
        session_mode=SessionMode.BUY_SELL_CYCLE,
        status=SessionStatus.AWAITING_SELL_EXECUTION,
    )
    orphan = await seed.pledge(session, status=PledgeStatus.EXECUTED)

    outcome = await run(session.id)

    assert outcome.result.skipped_count == 1
    assert outcome.result.success_count == 0
    assert outcome.final_status == SessionStatus.COMPLETED

    async with open_store() as store:
        assert await store.executions.filter(session_id=session.id) == []
        [entry] = await store.audit.filter(action="sell_execution_skipped")
        assert entry.target_pledge_id == orphan.id
        assert entry.success is False


async def test_sell_leg_never_repeats_a_sold_position(seed, open_store, exec_config, notifier):
    session = await seed.session(session_mode=SessionMode.BUY_SELL_CYCLE)
    await seed.pledges(session, 2)

    async with open_store() as store:
        service = SessionExecutionService(store, exec_config, notifier)
        await service.run_phase(session.id, ADMIN)
        await service.run_phase(session.id, ADMIN)

        # Force the session back and run the sell leg again
        await store.sessions.update(session.id, status=SessionStatus.AWAITING_SELL_EXECUTION)
        again = await service.run_phase(session.id, ADMIN)

        assert again.result.eligible_count == 0
        assert len(await store.executions.filter(session_id=session.id, side=PledgeSide.SELL)) == 2


async def test_sell_only_session_fills_sell_pledges(seed, run, open_store):
    session = await seed.session(session_mode=SessionMode.SELL_ONLY)
    pledge = await seed.pledge(session, side=PledgeSide.SELL)

    outcome = await run(session.id)

    assert outcome.result.phase == PledgeSide.SELL
    assert outcome.final_status == SessionStatus.COMPLETED

    async with open_store() as store:
        [record] = await store.executions.filter(pledge_id=pledge.id)
    assert record.side == PledgeSide.SELL
    assert record.buy_execution_id is None
    # Credited value, no commission configured
    assert record.net_amount == record.total_execution_value


async def test_claim_loses_to_another_trigger(seed, open_store, exec_config, notifier):
    session = await seed.session()

    async with open_store() as store:
        stale = await store.sessions.get(session.id)
        await store.sessions.compare_and_set_status(
            session.id, expected=SessionStatus.ACTIVE, new_status=SessionStatus.EXECUTING,
        )

        service = SessionExecutionService(store, exec_config, notifier)
        with pytest.raises(ConcurrentExecutionError):
            await service.claim(stale, ADMIN)


async def test_only_from_rejects_unexpected_status(seed, run):
    session = await seed.session(status=SessionStatus.CLOSED)

    with pytest.raises(ConcurrentExecutionError):
        await run(session.id, only_from=[SessionStatus.ACTIVE])


@pytest.mark.parametrize(
    "policy, expected_status",
    [
        (FailurePolicy.FORCE_COMPLETE, SessionStatus.COMPLETED),
        (FailurePolicy.REVERT, SessionStatus.ACTIVE),
    ],
)
async def test_aborted_phase_never_leaves_session_executing(
    seed, open_store, exec_config, notifier, policy, expected_status
):
    session = await seed.session()
    await seed.pledges(session, 2)

    async with open_store() as store:
        async def broken_filter(**criteria):
            raise RuntimeError("database unavailable")

        store.pledges.filter = broken_filter
        service = SessionExecutionService(store, exec_config, notifier)
        with pytest.raises(ExecutionAbortedError):
            await service.run_phase(session.id, ADMIN, failure_policy=policy)

    async with open_store() as store:
        stored = await store.sessions.get(session.id)
        assert stored.status == expected_status
        assert "database unavailable" in stored.admin_notes
        assert await store.executions.filter(session_id=session.id) == []
        assert len(await store.audit.filter(action="execution_phase_failed")) == 1


@pytest.mark.parametrize(
    "policy, expected_status",
    [
        (FailurePolicy.FORCE_COMPLETE, SessionStatus.COMPLETED),
        (FailurePolicy.REVERT, SessionStatus.ACTIVE),
    ],
)
async def test_unwritable_final_status_never_leaves_session_executing(
    seed, open_store, exec_config, notifier, policy, expected_status
):
    session = await seed.session()
    await seed.pledges(session, 2)
    writes = []

    async with open_store() as store:
        real = store.sessions.compare_and_set_status

        async def compare_and_set_status(*args, **kwargs):
            writes.append(kwargs["new_status"])
            # The closing write and its retry both fail
            if len(writes) in (2, 3):
                raise ConnectionError("store unavailable")
            return await real(*args, **kwargs)

        store.sessions.compare_and_set_status = compare_and_set_status
        service = SessionExecutionService(store, exec_config, notifier)
        with pytest.raises(ExecutionAbortedError, match="store unavailable"):
            await service.run_phase(session.id, ADMIN, failure_policy=policy)

    assert writes[:3] == [SessionStatus.EXECUTING, SessionStatus.COMPLETED, SessionStatus.COMPLETED]
    async with open_store() as store:
        stored = await store.sessions.get(session.id)
        assert stored.status == expected_status
        assert "store unavailable" in stored.admin_notes
        assert len(await store.executions.filter(session_id=session.id)) == 2


async def test_lost_settle_write_is_not_audited(seed, open_store, exec_config, notifier):
    session = await seed.session()
    await seed.pledges(session, 2)

    async with open_store() as store:
        real = store.sessions.compare_and_set_status

        async def broken_filter(**criteria):
            # Another trigger finishes the session while this phase fails
            await real(session.id, expected=SessionStatus.EXECUTING, new_status=SessionStatus.COMPLETED)
            raise RuntimeError("database unavailable")

        store.pledges.filter = broken_filter
        service = SessionExecutionService(store, exec_config, notifier)
        with pytest.raises(ExecutionAbortedError):
            await service.run_phase(session.id, ADMIN, failure_policy=FailurePolicy.REVERT)

        entries = await store.audit.filter(
            order_by="id", target_session_id=session.id, action="session_status_changed",
        )

    moves = [(e.payload["from"], e.payload["to"]) for e in entries]
    assert moves == [("active", "executing")]
    async with open_store() as store:
        assert (await store.sessions.get(session.id)).status == SessionStatus.COMPLETED


async def test_status_changes_are_audited(seed, run, open_store):
    session = await seed.session()
    await seed.pledge(session)

    await run(session.id)

    async with open_store() as store:
        entries = await store.audit.filter(
            order_by="id", target_session_id=session.id, action="session_status_changed",
        )

    moves = [(e.payload["from"], e.payload["to"]) for e in entries]
    assert moves == [("active", "executing"), ("executing", "completed")]
    assert all(e.actor_id == "admin-1" for e in entries)
