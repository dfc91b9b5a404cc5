"""
Tally & Execution Engine

Implements:
  - tally: quorum and threshold arithmetic over a poll's running totals
  - TallyEngine.finalize: records the outcome and settles the deposit
  - ExecutionBatch: ordered messages of a passed poll handed to the host
  - record_execution / expire: the host-confirmed tail of the lifecycle
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from ..constants import GOVERNANCE_ESCROW_SUFFIX
from ..exceptions import GovernanceError
from ..logger import get_logger
from .config import GovernanceState
from .polls import EmptyProposalError, ExecuteMsg, Poll, PollLifecycleError, PollStatus

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  EXCEPTIONS
# ══════════════════════════════════════════════════════════════════════

class PollNotPassedError(GovernanceError):
    """Execution or expiry attempted on a poll that is not PASSED."""


class TimelockNotExpiredError(GovernanceError):
    """Execution attempted before end_height + timelock_period."""


class ExecutionWindowClosedError(GovernanceError):
    """Execution attempted after the expiration window closed."""


class ExpireHeightNotReachedError(GovernanceError):
    """Expiry attempted while the poll can still be executed."""


class PollExecutionError(GovernanceError):
    """
    A message of a passed poll failed when the host ran it.

    Raised after EXECUTION_FAILED has been committed, so the failure is
    recorded even though the call reports an error.
    """

    def __init__(self, poll_id: int, failed_index: Optional[int], reason: str):
        self.poll_id = poll_id
        self.failed_index = failed_index
        self.reason = reason
        super().__init__(
            f"Poll #{poll_id} execution failed at message {failed_index}: {reason}"
        )


# ══════════════════════════════════════════════════════════════════════
#  OUTCOME TYPES
# ══════════════════════════════════════════════════════════════════════

QUORUM_NOT_REACHED = "Quorum not reached"
THRESHOLD_NOT_REACHED = "Threshold not reached"


@dataclass(frozen=True)
class ExecutionBatch:
    """Messages of one passed poll, sorted by order, for the host to run."""
    poll_id: int
    messages: List[ExecuteMsg] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.messages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pollId": self.poll_id,
            "messages": [m.to_dict() for m in self.messages],
        }


@dataclass
class TallyOutcome:
    """Result of finalizing one poll."""
    poll_id: int
    status: PollStatus
    yes_votes: Decimal
    no_votes: Decimal
    abstain_votes: Decimal
    staked_supply: Decimal
    quorum_reached: bool
    approval_rate: Decimal
    reason: str = ""
    deposit_refunded: bool = False
    batch: Optional[ExecutionBatch] = None

    @property
    def total_votes(self) -> Decimal:
        return self.yes_votes + self.no_votes + self.abstain_votes

    @property
    def passed(self) -> bool:
        return self.status == PollStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pollId": self.poll_id,
            "status": self.status.name,
            "yesVotes": str(self.yes_votes),
            "noVotes": str(self.no_votes),
            "abstainVotes": str(self.abstain_votes),
            "totalVotes": str(self.total_votes),
            "stakedSupply": str(self.staked_supply),
            "quorumReached": self.quorum_reached,
            "approvalRate": str(self.approval_rate),
            "reason": self.reason,
            "depositRefunded": self.deposit_refunded,
            "batch": self.batch.to_dict() if self.batch is not None else None,
        }


# ══════════════════════════════════════════════════════════════════════
#  TALLY
# ══════════════════════════════════════════════════════════════════════

def tally(poll: Poll) -> TallyOutcome:
    """
    Decide a poll's outcome from its running totals.

    Pure function; the poll is not modified.
    """
    total = poll.total_votes
    supply = poll.staked_supply
    decisive = poll.yes_votes + poll.no_votes
    approval = poll.yes_votes / decisive if decisive > 0 else Decimal("0")

    quorum_reached = supply > 0 and total / supply >= poll.config.quorum

    if not quorum_reached:
        status = PollStatus.EXPIRED
        reason = QUORUM_NOT_REACHED
        refund = poll.config.refund_expired_deposit
    elif decisive > 0 and approval >= poll.config.threshold:
        status = PollStatus.PASSED
        reason = ""
        refund = True
    else:
        # Includes the all-abstain case: quorum met, nothing decisive
        status = PollStatus.REJECTED
        reason = THRESHOLD_NOT_REACHED
        refund = False

    return TallyOutcome(
        poll_id=poll.id,
        status=status,
        yes_votes=poll.yes_votes,
        no_votes=poll.no_votes,
        abstain_votes=poll.abstain_votes,
        staked_supply=supply,
        quorum_reached=quorum_reached,
        approval_rate=approval,
        reason=reason,
        deposit_refunded=refund,
    )


# ══════════════════════════════════════════════════════════════════════
#  ENGINE
# ══════════════════════════════════════════════════════════════════════

class TallyEngine:
    """
    Applies tally outcomes and guards the execution window.

    The engine never runs messages itself; it hands an ExecutionBatch to
    the host and waits for record_execution. Deposits are held in
    escrow_address, apart from the treasury.
    """

    def __init__(self, ledger, governance_address: str):
        """
        Args:
            ledger:             Token ledger holding escrowed deposits
            governance_address: Treasury account; forfeited deposits land here
        """
        self._ledger = ledger
        self.governance_address = governance_address
        self.escrow_address = f"{governance_address}{GOVERNANCE_ESCROW_SUFFIX}"
        self._in_flight: Set[int] = set()

    # ── Finalize ──────────────────────────────────────────────────────

    async def finalize(self, poll: Poll, state: GovernanceState, now: int) -> TallyOutcome:
        """Tally *poll*, move it to its outcome and update deposit totals."""
        outcome = tally(poll)

        if outcome.status == PollStatus.PASSED:
            poll.mark_passed(now)
        elif outcome.status == PollStatus.REJECTED:
            poll.mark_rejected(outcome.reason, now)
        else:
            poll.mark_expired(outcome.reason, now)

        state.total_deposit -= poll.deposit
        if not outcome.deposit_refunded:
            state.total_forfeited += poll.deposit

        if (
            outcome.passed
            and poll.config.timelock_period == 0
            and poll.execute_msgs
            and now < poll.expiration_height
        ):
            outcome.batch = self.prepare_execution(poll, now)

        logger.info(
            f"Poll #{poll.id} tallied: {outcome.status.name} "
            f"(yes={outcome.yes_votes}, no={outcome.no_votes}, "
            f"abstain={outcome.abstain_votes}, supply={outcome.staked_supply})"
        )
        return outcome

    async def settle_deposit(self, poll: Poll, outcome: TallyOutcome):
        """Release the escrowed deposit to the creator, or to the treasury if forfeited."""
        if poll.deposit <= 0:
            return
        if outcome.deposit_refunded:
            await self._ledger.transfer(self.escrow_address, poll.creator, poll.deposit)
            logger.info(f"Poll #{poll.id} deposit {poll.deposit} refunded to {poll.creator}")
        else:
            await self._ledger.transfer(self.escrow_address, self.governance_address, poll.deposit)
            logger.warning(
                f"Poll #{poll.id} deposit {poll.deposit} forfeited "
                f"({outcome.status.name}: {outcome.reason})"
            )

    # ── Execution ─────────────────────────────────────────────────────

    def prepare_execution(self, poll: Poll, now: int) -> ExecutionBatch:
        """
        Return the batch for a passed poll inside its execution window.

        Raises:
            PollNotPassedError, TimelockNotExpiredError,
            ExecutionWindowClosedError, EmptyProposalError, PollLifecycleError
        """
        if poll.status != PollStatus.PASSED:
            raise PollNotPassedError("Poll is not in passed status")
        if poll.id in self._in_flight:
            raise PollLifecycleError(f"Poll #{poll.id} is already being executed")
        if now < poll.execution_eta:
            raise TimelockNotExpiredError("Timelock period has not expired")
        if now >= poll.expiration_height:
            raise ExecutionWindowClosedError("Execution window has closed")
        if not poll.execute_msgs:
            raise EmptyProposalError("Poll has no execute data")
        return ExecutionBatch(poll_id=poll.id, messages=poll.sorted_execute_msgs())

    def begin_execution(self, poll_id: int):
        """Mark a released batch as running until end_execution."""
        self._in_flight.add(poll_id)

    def end_execution(self, poll_id: int):
        self._in_flight.discard(poll_id)

    def record_execution(
        self,
        poll: Poll,
        success: bool,
        now: int,
        error: Optional[str] = None,
        failed_index: Optional[int] = None,
    ):
        """Record the host's result for a batch. Never retried."""
        if poll.status != PollStatus.PASSED:
            raise PollNotPassedError("Poll is not in passed status")
        if success:
            poll.mark_executed(now)
        else:
            poll.mark_execution_failed(error or "unknown error", failed_index, now)
            logger.warning(
                f"Poll #{poll.id} EXECUTION_FAILED at message {failed_index}: {error}"
            )

    def expire(self, poll: Poll, now: int):
        """Move a passed poll that was never executed to EXPIRED."""
        if poll.status != PollStatus.PASSED:
            raise PollNotPassedError("Poll is not in passed status")
        if now < poll.expiration_height:
            raise ExpireHeightNotReachedError("Expire height has not been reached")
        poll.mark_expired("Passed poll was not executed in time", now)
        logger.warning(f"Poll #{poll.id} EXPIRED without execution at height {now}")
