"""
Poll Registry

Defines the poll lifecycle states, the Poll record that tracks a proposal
from creation to execution, and the registry that creates, loads and
finalizes polls against the persisted store.
"""

import base64
from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..constants import (
    DEFAULT_QUERY_LIMIT,
    MAX_DESC_LENGTH,
    MAX_LINK_LENGTH,
    MAX_QUERY_LIMIT,
    MAX_TITLE_LENGTH,
    MIN_DESC_LENGTH,
    MIN_LINK_LENGTH,
    MIN_TITLE_LENGTH,
)
from ..exceptions import GovernanceError
from ..logger import get_logger
from .config import PollConfigSnapshot

if TYPE_CHECKING:
    from ..storage.base import GovernanceStore
    from .execution import TallyEngine, TallyOutcome
    from .snapshot import StakeSnapshotAccessor

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  EXCEPTIONS
# ══════════════════════════════════════════════════════════════════════

class InvalidPollError(GovernanceError):
    """Raised when poll metadata is invalid."""


class InsufficientDepositError(GovernanceError):
    """Raised when the creator deposits less than the configured minimum."""


class EmptyProposalError(GovernanceError):
    """Raised when a poll carries no messages and the policy requires some."""


class PollNotFoundError(GovernanceError):
    """Raised when no poll exists for an id."""


class PollNotInProgressError(GovernanceError):
    """Raised when a poll is no longer accepting votes or finalization."""


class AlreadyFinalizedError(PollNotInProgressError):
    """Raised when finalize is called on a poll that already has an outcome."""


class VotingStillOpenError(GovernanceError):
    """Raised when finalize is called before the poll's end height."""


class PollLifecycleError(GovernanceError):
    """Raised on illegal state transitions."""


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class PollStatus(IntEnum):
    """Lifecycle stage. Transitions only ever move to a higher value."""
    IN_PROGRESS = 0       # Voting window open (or closed but not yet ended)
    PASSED = 1            # Quorum and threshold met; messages not yet confirmed
    REJECTED = 2          # Quorum met, threshold not
    EXPIRED = 3           # Quorum not met, or passed but never executed in time
    EXECUTED = 4          # Host confirmed the whole batch ran
    EXECUTION_FAILED = 5  # Host reported a failed message; never retried


class OrderBy(IntEnum):
    ASC = 0
    DESC = 1


_VALID_TRANSITIONS: Dict[PollStatus, set] = {
    PollStatus.IN_PROGRESS: {PollStatus.PASSED, PollStatus.REJECTED, PollStatus.EXPIRED},
    PollStatus.PASSED: {PollStatus.EXECUTED, PollStatus.EXECUTION_FAILED, PollStatus.EXPIRED},
    # Terminal states
    PollStatus.REJECTED: set(),
    PollStatus.EXPIRED: set(),
    PollStatus.EXECUTED: set(),
    PollStatus.EXECUTION_FAILED: set(),
}


# ══════════════════════════════════════════════════════════════════════
#  EXECUTE MESSAGE
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ExecuteMsg:
    """
    One message a passed poll hands to the host.

    The payload is opaque to governance; only the host interprets it when
    dispatching to *contract*.
    """
    order: int
    contract: str
    msg: bytes

    def __post_init__(self):
        if not self.contract:
            raise InvalidPollError("Execute message target contract is required")
        if not isinstance(self.msg, (bytes, bytearray)):
            raise InvalidPollError("Execute message payload must be bytes")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order,
            "contract": self.contract,
            "msg": base64.b64encode(bytes(self.msg)).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecuteMsg":
        return cls(
            order=int(data["order"]),
            contract=data["contract"],
            msg=base64.b64decode(data["msg"]),
        )


# ══════════════════════════════════════════════════════════════════════
#  POLL
# ══════════════════════════════════════════════════════════════════════

@dataclass
class Poll:
    """
    On-chain governance poll.

    Fields:
        id:              Unique monotonic identifier (starts at 1)
        creator:         Address that created the poll and paid the deposit
        deposit:         Escrowed stake, returned on pass
        title:           Short title
        description:     Free-form rationale
        start_height:    Block height at creation
        end_height:      start_height + voting_period, never extended
        staked_supply:   Total staked supply at creation (quorum denominator)
        config:          Config snapshot the poll is tallied against
        link:            Optional URL
        execute_msgs:    Messages handed to the host on pass, as submitted
        status:          Current lifecycle stage
        yes/no/abstain:  Running vote totals
    """
    id: int
    creator: str
    deposit: Decimal
    title: str
    description: str
    start_height: int
    end_height: int
    staked_supply: Decimal
    config: PollConfigSnapshot
    link: Optional[str] = None
    execute_msgs: List[ExecuteMsg] = field(default_factory=list)
    status: PollStatus = PollStatus.IN_PROGRESS
    yes_votes: Decimal = field(default_factory=lambda: Decimal("0"))
    no_votes: Decimal = field(default_factory=lambda: Decimal("0"))
    abstain_votes: Decimal = field(default_factory=lambda: Decimal("0"))
    created_at: float = 0.0
    rejected_reason: str = ""
    finalized_height: Optional[int] = None
    executed_height: Optional[int] = None
    execution_error: Optional[str] = None
    failed_msg_index: Optional[int] = None
    _history: List[Dict[str, Any]] = field(default_factory=list, repr=False)

    def __post_init__(self):
        validate_poll_metadata(self.title, self.description, self.link)
        if not self.creator:
            raise InvalidPollError("Poll creator address is required")
        if self.end_height <= self.start_height:
            raise InvalidPollError("Poll must end after it starts")

    # ── Properties ────────────────────────────────────────────────────

    @property
    def total_votes(self) -> Decimal:
        return self.yes_votes + self.no_votes + self.abstain_votes

    @property
    def execution_eta(self) -> int:
        """Earliest height at which a passed poll may be executed."""
        return self.end_height + self.config.timelock_period

    @property
    def expiration_height(self) -> int:
        """Height from which an unexecuted passed poll may be expired."""
        return self.execution_eta + self.config.expiration_period

    @property
    def is_finalized(self) -> bool:
        return self.status != PollStatus.IN_PROGRESS

    @property
    def is_terminal(self) -> bool:
        return not _VALID_TRANSITIONS[self.status]

    def is_votable(self, height: int) -> bool:
        """Voting closes at end_height itself."""
        return self.status == PollStatus.IN_PROGRESS and height < self.end_height

    def sorted_execute_msgs(self) -> List[ExecuteMsg]:
        return sorted(self.execute_msgs, key=lambda m: m.order)

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    # ── State transitions ─────────────────────────────────────────────

    def transition_to(self, new_status: PollStatus, reason: str, height: int):
        """
        Advance the poll to *new_status*.

        Raises PollLifecycleError on invalid transitions.
        """
        allowed = _VALID_TRANSITIONS.get(self.status, set())
        if new_status not in allowed or new_status <= self.status:
            raise PollLifecycleError(
                f"Cannot transition poll #{self.id} from {self.status.name} → "
                f"{new_status.name}. Allowed: {[s.name for s in allowed]}"
            )
        old = self.status
        self._history.append({
            "from": old.name,
            "to": new_status.name,
            "reason": reason,
            "height": height,
        })
        self.status = new_status
        logger.info(f"Poll #{self.id} ({self.title}): {old.name} → {new_status.name} | {reason}")

    def mark_passed(self, height: int):
        self.finalized_height = height
        self.transition_to(PollStatus.PASSED, "Quorum and threshold met", height)

    def mark_rejected(self, reason: str, height: int):
        self.finalized_height = height
        self.rejected_reason = reason
        self.transition_to(PollStatus.REJECTED, reason, height)

    def mark_expired(self, reason: str, height: int):
        if self.status == PollStatus.IN_PROGRESS:
            self.finalized_height = height
            self.rejected_reason = reason
        self.transition_to(PollStatus.EXPIRED, reason, height)

    def mark_executed(self, height: int):
        self.executed_height = height
        self.transition_to(PollStatus.EXECUTED, "Host confirmed execution", height)

    def mark_execution_failed(self, error: str, failed_index: Optional[int], height: int):
        self.executed_height = height
        self.execution_error = error
        self.failed_msg_index = failed_index
        self.transition_to(PollStatus.EXECUTION_FAILED, f"Execution failed: {error}", height)

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "creator": self.creator,
            "deposit": str(self.deposit),
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "executeMsgs": [m.to_dict() for m in self.execute_msgs],
            "startHeight": self.start_height,
            "endHeight": self.end_height,
            "status": self.status.name,
            "yesVotes": str(self.yes_votes),
            "noVotes": str(self.no_votes),
            "abstainVotes": str(self.abstain_votes),
            "stakedSupply": str(self.staked_supply),
            "config": self.config.to_dict(),
            "createdAt": self.created_at,
            "rejectedReason": self.rejected_reason,
            "finalizedHeight": self.finalized_height,
            "executedHeight": self.executed_height,
            "executionError": self.execution_error,
            "failedMsgIndex": self.failed_msg_index,
            "history": self.history,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Poll":
        return cls(
            id=int(data["id"]),
            creator=data["creator"],
            deposit=Decimal(data["deposit"]),
            title=data["title"],
            description=data["description"],
            link=data.get("link"),
            execute_msgs=[ExecuteMsg.from_dict(m) for m in data.get("executeMsgs", [])],
            start_height=int(data["startHeight"]),
            end_height=int(data["endHeight"]),
            status=PollStatus[data["status"]],
            yes_votes=Decimal(data.get("yesVotes", "0")),
            no_votes=Decimal(data.get("noVotes", "0")),
            abstain_votes=Decimal(data.get("abstainVotes", "0")),
            staked_supply=Decimal(data["stakedSupply"]),
            config=PollConfigSnapshot.from_dict(data["config"]),
            created_at=float(data.get("createdAt", 0.0)),
            rejected_reason=data.get("rejectedReason", ""),
            finalized_height=data.get("finalizedHeight"),
            executed_height=data.get("executedHeight"),
            execution_error=data.get("executionError"),
            failed_msg_index=data.get("failedMsgIndex"),
            _history=list(data.get("history", [])),
        )

    def __repr__(self) -> str:
        return f"<Poll #{self.id} '{self.title}' status={self.status.name}>"


def validate_poll_metadata(title: str, description: str, link: Optional[str]):
    if len(title) < MIN_TITLE_LENGTH:
        raise InvalidPollError("Title too short")
    if len(title) > MAX_TITLE_LENGTH:
        raise InvalidPollError("Title too long")
    if len(description) < MIN_DESC_LENGTH:
        raise InvalidPollError("Description too short")
    if len(description) > MAX_DESC_LENGTH:
        raise InvalidPollError("Description too long")
    if link is not None:
        if len(link) < MIN_LINK_LENGTH:
            raise InvalidPollError("Link too short")
        if len(link) > MAX_LINK_LENGTH:
            raise InvalidPollError("Link too long")


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_QUERY_LIMIT
    return max(1, min(int(limit), MAX_QUERY_LIMIT))


# ══════════════════════════════════════════════════════════════════════
#  POLL REGISTRY
# ══════════════════════════════════════════════════════════════════════

class PollRegistry:
    """
    Durable mapping from poll id to Poll.

    Responsibilities:
        - Validate and create polls, escrowing the creator's deposit
        - Snapshot staked supply and config into each poll
        - Load, list and persist polls
        - Finalize a poll exactly once via the tally engine
    """

    def __init__(
        self,
        store: "GovernanceStore",
        snapshot: "StakeSnapshotAccessor",
        ledger,
        governance_address: str,
        engine: "TallyEngine",
    ):
        """
        Args:
            store:              Persisted Config/Polls/Votes tables
            snapshot:           Voting power and staked supply lookups
            ledger:             Token ledger used to escrow deposits
            governance_address: Governance contract account
            engine:             Tally & execution engine used by finalize
        """
        self._store = store
        self._snapshot = snapshot
        self._ledger = ledger
        self.governance_address = governance_address
        self._engine = engine

    # ── Create ────────────────────────────────────────────────────────

    async def create_poll(
        self,
        creator: str,
        deposit: Decimal,
        title: str,
        description: str,
        now: int,
        link: Optional[str] = None,
        execute_msgs: Optional[List[ExecuteMsg]] = None,
        created_at: float = 0.0,
    ) -> Poll:
        """
        Create a new IN_PROGRESS poll and escrow *deposit*.

        Raises:
            InsufficientDepositError, EmptyProposalError, InvalidPollError
        """
        config = await self._store.load_config()
        messages = list(execute_msgs or [])

        if deposit < config.proposal_deposit:
            raise InsufficientDepositError(
                f"Must deposit more than {config.proposal_deposit} token"
            )
        if not messages and config.require_execute_msgs:
            raise EmptyProposalError("Poll must carry at least one execute message")
        validate_poll_metadata(title, description, link)

        supply = await self._snapshot.total_staked_supply(now)

        state = await self._store.load_state()
        poll = Poll(
            id=state.next_poll_id(),
            creator=creator,
            deposit=deposit,
            title=title,
            description=description,
            link=link,
            execute_msgs=messages,
            start_height=now,
            end_height=now + config.voting_period,
            staked_supply=supply,
            config=config.snapshot(),
            created_at=created_at,
        )
        state.total_deposit += deposit

        await self._store.put_poll(poll)
        await self._store.save_state(state)

        # Move funds last so a failing transfer aborts before commit
        if deposit > 0:
            await self._ledger.transfer(creator, self._engine.escrow_address, deposit)

        logger.info(
            f"Poll #{poll.id} created by {creator}: '{title}' "
            f"(deposit={deposit}, end_height={poll.end_height}, "
            f"staked_supply={supply}, msgs={len(messages)})"
        )
        return poll

    # ── Lookup ────────────────────────────────────────────────────────

    async def get_poll(self, poll_id: int) -> Poll:
        poll = await self._store.get_poll(poll_id)
        if poll is None:
            raise PollNotFoundError("Poll does not exist")
        return poll

    async def list_polls(
        self,
        status: Optional[PollStatus] = None,
        start_after: Optional[int] = None,
        limit: Optional[int] = None,
        order_by: OrderBy = OrderBy.ASC,
    ) -> List[Poll]:
        return await self._store.list_polls(
            status=status,
            start_after=start_after,
            limit=clamp_limit(limit),
            descending=order_by == OrderBy.DESC,
        )

    async def save(self, poll: Poll):
        await self._store.put_poll(poll)

    # ── Finalize ──────────────────────────────────────────────────────

    async def finalize(self, poll_id: int, now: int) -> "TallyOutcome":
        """
        End voting on a poll and record its outcome.

        Raises:
            PollNotFoundError, AlreadyFinalizedError, VotingStillOpenError
        """
        poll = await self.get_poll(poll_id)
        if poll.status != PollStatus.IN_PROGRESS:
            raise AlreadyFinalizedError(
                f"Poll #{poll_id} already finalized (status={poll.status.name})"
            )
        if now < poll.end_height:
            raise VotingStillOpenError("Voting period has not expired")

        state = await self._store.load_state()
        outcome = await self._engine.finalize(poll, state, now)

        await self._store.put_poll(poll)
        await self._store.save_state(state)
        await self._engine.settle_deposit(poll, outcome)
        return outcome
