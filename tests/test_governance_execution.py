"""
Tally & Execution Engine Test Suite

Coverage:
  - tally(): quorum / threshold arithmetic on a 1000-token staked supply
  - TallyEngine.finalize: status, deposit bookkeeping, same-block batch
  - prepare_execution: timelock, expiration window, ordering, running guard
  - record_execution / expire: host-confirmed tail of the lifecycle
"""

import os
import sys
from decimal import Decimal

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from stakegov.governance.config import GovernanceState, PollConfigSnapshot
from stakegov.governance.execution import (
    QUORUM_NOT_REACHED,
    THRESHOLD_NOT_REACHED,
    ExecutionWindowClosedError,
    ExpireHeightNotReachedError,
    PollExecutionError,
    PollNotPassedError,
    TallyEngine,
    TimelockNotExpiredError,
    tally,
)
from stakegov.governance.polls import (
    EmptyProposalError,
    ExecuteMsg,
    Poll,
    PollLifecycleError,
    PollStatus,
)
from stakegov.tokens.ledger import StakingLedger


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

EVE = "0xPQ" + "E5" * 32
GOV = "stakegov_governance"


def make_poll(yes="0", no="0", abstain="0", supply="1000", quorum="0.3",
              threshold="0.5", timelock=0, expiration=100, refund=False,
              msgs=None, deposit="100") -> Poll:
    """Poll ending at height 11 with the given running totals."""
    return Poll(
        id=1,
        creator=EVE,
        deposit=Decimal(deposit),
        title="Test poll",
        description="Test description",
        start_height=1,
        end_height=11,
        staked_supply=Decimal(supply),
        config=PollConfigSnapshot(
            quorum=Decimal(quorum),
            threshold=Decimal(threshold),
            timelock_period=timelock,
            expiration_period=expiration,
            refund_expired_deposit=refund,
            config_version=1,
        ),
        execute_msgs=msgs or [],
        yes_votes=Decimal(yes),
        no_votes=Decimal(no),
        abstain_votes=Decimal(abstain),
    )


async def make_engine(escrow="100"):
    """Engine whose escrow account holds *escrow* tokens."""
    ledger = StakingLedger()
    engine = TallyEngine(ledger, GOV)
    if Decimal(escrow) > 0:
        await ledger.mint(engine.escrow_address, Decimal(escrow))
    return engine, ledger


def state_with_deposit(amount="100") -> GovernanceState:
    return GovernanceState(poll_count=1, total_deposit=Decimal(amount))


# ══════════════════════════════════════════════════════════════════════
#  TALLY ARITHMETIC
# ══════════════════════════════════════════════════════════════════════


class TestTally:
    """Staked supply 1000, quorum 30%, threshold 50%."""

    def test_passed(self):
        outcome = tally(make_poll(yes="200", no="100"))
        assert outcome.status == PollStatus.PASSED
        assert outcome.quorum_reached
        assert outcome.deposit_refunded
        assert outcome.reason == ""

    def test_rejected(self):
        outcome = tally(make_poll(yes="100", no="200"))
        assert outcome.status == PollStatus.REJECTED
        assert outcome.reason == THRESHOLD_NOT_REACHED
        assert not outcome.deposit_refunded

    def test_expired_quorum_not_reached(self):
        outcome = tally(make_poll(yes="100", no="100"))
        assert outcome.status == PollStatus.EXPIRED
        assert outcome.reason == QUORUM_NOT_REACHED
        assert not outcome.quorum_reached
        assert not outcome.deposit_refunded

    def test_all_abstain_rejected(self):
        outcome = tally(make_poll(abstain="300"))
        assert outcome.quorum_reached
        assert outcome.status == PollStatus.REJECTED
        assert outcome.approval_rate == Decimal("0")

    def test_quorum_exactly_met(self):
        assert tally(make_poll(yes="300")).status == PollStatus.PASSED

    def test_quorum_just_missed(self):
        assert tally(make_poll(yes="299")).status == PollStatus.EXPIRED

    def test_threshold_tie_passes(self):
        assert tally(make_poll(yes="150", no="150")).status == PollStatus.PASSED

    def test_abstain_counts_toward_quorum_only(self):
        outcome = tally(make_poll(yes="60", no="40", abstain="200"))
        assert outcome.quorum_reached
        assert outcome.approval_rate == Decimal("0.6")
        assert outcome.status == PollStatus.PASSED

    def test_zero_supply_never_reaches_quorum(self):
        outcome = tally(make_poll(yes="10", supply="0"))
        assert outcome.status == PollStatus.EXPIRED

    def test_refund_expired_policy(self):
        outcome = tally(make_poll(yes="1", refund=True))
        assert outcome.status == PollStatus.EXPIRED
        assert outcome.deposit_refunded

    def test_tally_does_not_mutate(self):
        p = make_poll(yes="200", no="100")
        tally(p)
        assert p.status == PollStatus.IN_PROGRESS

    def test_outcome_to_dict(self):
        d = tally(make_poll(yes="200", no="100")).to_dict()
        assert d["status"] == "PASSED"
        assert d["totalVotes"] == "300"
        assert d["batch"] is None


# ══════════════════════════════════════════════════════════════════════
#  FINALIZE
# ══════════════════════════════════════════════════════════════════════


class TestFinalize:

    @pytest.mark.asyncio
    async def test_pass_refunds_deposit(self):
        engine, ledger = await make_engine()
        poll, state = make_poll(yes="200", no="100"), state_with_deposit()
        outcome = await engine.finalize(poll, state, now=11)
        await engine.settle_deposit(poll, outcome)
        assert poll.status == PollStatus.PASSED
        assert poll.finalized_height == 11
        assert ledger.balance_of(EVE) == Decimal("100")
        assert ledger.balance_of(engine.escrow_address) == Decimal("0")
        assert ledger.balance_of(GOV) == Decimal("0")
        assert state.total_deposit == Decimal("0")
        assert state.total_forfeited == Decimal("0")

    @pytest.mark.asyncio
    async def test_reject_forfeits_deposit(self):
        engine, ledger = await make_engine()
        poll, state = make_poll(yes="100", no="200"), state_with_deposit()
        outcome = await engine.finalize(poll, state, now=11)
        await engine.settle_deposit(poll, outcome)
        assert poll.status == PollStatus.REJECTED
        assert poll.rejected_reason == THRESHOLD_NOT_REACHED
        assert ledger.balance_of(EVE) == Decimal("0")
        assert ledger.balance_of(GOV) == Decimal("100")
        assert ledger.balance_of(engine.escrow_address) == Decimal("0")
        assert state.total_deposit == Decimal("0")
        assert state.total_forfeited == Decimal("100")

    @pytest.mark.asyncio
    async def test_expire_forfeits_by_default(self):
        engine, _ = await make_engine()
        poll, state = make_poll(yes="10"), state_with_deposit()
        await engine.finalize(poll, state, now=11)
        assert poll.status == PollStatus.EXPIRED
        assert state.total_forfeited == Decimal("100")

    @pytest.mark.asyncio
    async def test_batch_returned_without_timelock(self):
        engine, _ = await make_engine()
        msgs = [ExecuteMsg(2, "c", b"second"), ExecuteMsg(1, "c", b"first")]
        poll = make_poll(yes="400", msgs=msgs)
        outcome = await engine.finalize(poll, state_with_deposit(), now=11)
        assert outcome.batch is not None
        assert [m.msg for m in outcome.batch.messages] == [b"first", b"second"]
        assert poll.status == PollStatus.PASSED

    @pytest.mark.asyncio
    async def test_no_batch_with_timelock(self):
        engine, _ = await make_engine()
        poll = make_poll(yes="400", timelock=5, msgs=[ExecuteMsg(1, "c", b"x")])
        outcome = await engine.finalize(poll, state_with_deposit(), now=11)
        assert outcome.batch is None

    @pytest.mark.asyncio
    async def test_late_end_poll_passes_without_batch(self):
        engine, _ = await make_engine()
        poll = make_poll(yes="400", expiration=20, msgs=[ExecuteMsg(1, "c", b"x")])
        outcome = await engine.finalize(poll, state_with_deposit(), now=40)
        assert poll.status == PollStatus.PASSED
        assert outcome.batch is None
        engine.expire(poll, now=40)
        assert poll.status == PollStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_no_batch_for_sentiment_poll(self):
        engine, _ = await make_engine()
        poll = make_poll(yes="400")
        outcome = await engine.finalize(poll, state_with_deposit(), now=11)
        assert outcome.passed
        assert outcome.batch is None

    @pytest.mark.asyncio
    async def test_zero_deposit_settles_without_transfer(self):
        engine, ledger = await make_engine(escrow="0")
        poll = make_poll(yes="400", deposit="0")
        outcome = await engine.finalize(poll, GovernanceState(), now=11)
        await engine.settle_deposit(poll, outcome)
        assert ledger.events == []


# ══════════════════════════════════════════════════════════════════════
#  EXECUTION WINDOW
# ══════════════════════════════════════════════════════════════════════


class TestPrepareExecution:

    def _passed(self, timelock=5, expiration=20, msgs=None):
        poll = make_poll(
            yes="400", timelock=timelock, expiration=expiration,
            msgs=msgs if msgs is not None else [ExecuteMsg(1, "c", b"x")],
        )
        poll.mark_passed(11)
        return poll

    def test_not_passed(self):
        engine = TallyEngine(StakingLedger(), GOV)
        with pytest.raises(PollNotPassedError, match="Poll is not in passed status"):
            engine.prepare_execution(make_poll(), now=50)

    def test_timelock_not_expired(self):
        engine = TallyEngine(StakingLedger(), GOV)
        with pytest.raises(TimelockNotExpiredError, match="Timelock period has not expired"):
            engine.prepare_execution(self._passed(), now=15)

    def test_ready_at_eta(self):
        engine = TallyEngine(StakingLedger(), GOV)
        batch = engine.prepare_execution(self._passed(), now=16)
        assert batch.poll_id == 1
        assert len(batch) == 1

    def test_last_block_of_window(self):
        engine = TallyEngine(StakingLedger(), GOV)
        assert len(engine.prepare_execution(self._passed(), now=35)) == 1

    def test_window_closed(self):
        engine = TallyEngine(StakingLedger(), GOV)
        with pytest.raises(ExecutionWindowClosedError):
            engine.prepare_execution(self._passed(), now=36)

    def test_nothing_to_execute(self):
        engine = TallyEngine(StakingLedger(), GOV)
        with pytest.raises(EmptyProposalError):
            engine.prepare_execution(self._passed(msgs=[]), now=16)

    def test_escrow_is_apart_from_treasury(self):
        engine = TallyEngine(StakingLedger(), GOV)
        assert engine.escrow_address == GOV + ".escrow"

    def test_refused_while_running(self):
        engine = TallyEngine(StakingLedger(), GOV)
        poll = self._passed()
        engine.begin_execution(poll.id)
        with pytest.raises(PollLifecycleError, match="already being executed"):
            engine.prepare_execution(poll, now=16)
        engine.end_execution(poll.id)
        assert len(engine.prepare_execution(poll, now=16)) == 1

    def test_status_checked_before_running_guard(self):
        engine = TallyEngine(StakingLedger(), GOV)
        poll = make_poll()
        engine.begin_execution(poll.id)
        with pytest.raises(PollNotPassedError):
            engine.prepare_execution(poll, now=16)


class TestRecordExecution:

    def _passed(self):
        poll = make_poll(yes="400", msgs=[ExecuteMsg(1, "c", b"x")])
        poll.mark_passed(11)
        return poll

    def test_success(self):
        engine = TallyEngine(StakingLedger(), GOV)
        poll = self._passed()
        engine.record_execution(poll, True, now=11)
        assert poll.status == PollStatus.EXECUTED

    def test_failure(self):
        engine = TallyEngine(StakingLedger(), GOV)
        poll = self._passed()
        engine.record_execution(poll, False, now=11, error="out of gas", failed_index=0)
        assert poll.status == PollStatus.EXECUTION_FAILED
        assert poll.execution_error == "out of gas"
        assert poll.failed_msg_index == 0

    def test_never_retried(self):
        engine = TallyEngine(StakingLedger(), GOV)
        poll = self._passed()
        engine.record_execution(poll, False, now=11, error="boom", failed_index=0)
        with pytest.raises(PollNotPassedError):
            engine.record_execution(poll, True, now=12)
        with pytest.raises(PollNotPassedError):
            engine.prepare_execution(poll, now=12)

    def test_execution_error_message(self):
        err = PollExecutionError(3, 1, "InsufficientBalanceError: low")
        assert err.poll_id == 3
        assert err.failed_index == 1
        assert "Poll #3" in str(err)


class TestExpire:

    def _passed(self):
        poll = make_poll(yes="400", timelock=5, expiration=20, msgs=[ExecuteMsg(1, "c", b"x")])
        poll.mark_passed(11)
        return poll

    def test_expire_before_window_closes(self):
        engine = TallyEngine(StakingLedger(), GOV)
        with pytest.raises(ExpireHeightNotReachedError, match="Expire height has not been reached"):
            engine.expire(self._passed(), now=35)

    def test_expire_after_window(self):
        engine = TallyEngine(StakingLedger(), GOV)
        poll = self._passed()
        engine.expire(poll, now=36)
        assert poll.status == PollStatus.EXPIRED

    def test_expire_requires_passed(self):
        engine = TallyEngine(StakingLedger(), GOV)
        with pytest.raises(PollNotPassedError):
            engine.expire(make_poll(), now=500)
