"""
Stake-Weighted Vote Ledger

Implements:
  - One vote per (poll, voter), never changed or withdrawn
  - Weight = voter's full staked balance at cast time, frozen afterwards
  - Yes / No / Abstain (abstain counts toward quorum only)
  - Running totals on the poll updated together with the vote record
  - Stake behind a vote stays locked until its poll is finalized
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from ..constants import GOVERNANCE_VOTE_ABSTAIN, GOVERNANCE_VOTE_NO, GOVERNANCE_VOTE_YES
from ..exceptions import GovernanceError
from ..logger import get_logger
from .polls import (
    OrderBy,
    PollNotFoundError,
    PollNotInProgressError,
    PollStatus,
    clamp_limit,
)

if TYPE_CHECKING:
    from ..storage.base import GovernanceStore
    from .polls import Poll, PollRegistry
    from .snapshot import StakeSnapshotAccessor

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  EXCEPTIONS
# ══════════════════════════════════════════════════════════════════════

class AlreadyVotedError(GovernanceError):
    """Voter already cast a vote on this poll."""


class NoVotingPowerError(GovernanceError):
    """Voter has no stake at cast time."""


class InvalidVoteOptionError(GovernanceError):
    """Vote option is not yes, no or abstain."""


# ══════════════════════════════════════════════════════════════════════
#  VOTE DATA
# ══════════════════════════════════════════════════════════════════════

class VoteOption(IntEnum):
    YES = GOVERNANCE_VOTE_YES
    NO = GOVERNANCE_VOTE_NO
    ABSTAIN = GOVERNANCE_VOTE_ABSTAIN

    @classmethod
    def parse(cls, value: Union["VoteOption", int, str]) -> "VoteOption":
        """Accept an enum member, its integer value or its name in any case."""
        if isinstance(value, cls):
            return value
        try:
            if isinstance(value, str):
                return cls[value.strip().upper()]
            if isinstance(value, int) and not isinstance(value, bool):
                return cls(value)
        except (KeyError, ValueError):
            pass
        raise InvalidVoteOptionError(f"Invalid vote option: {value!r}")

    @property
    def wire_name(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Vote:
    """An individual vote cast by a voter."""
    poll_id: int
    voter: str
    option: VoteOption
    weight: Decimal         # Staked balance at cast_height
    cast_height: int
    locked_until: int       # Poll end height

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pollId": self.poll_id,
            "voter": self.voter,
            "option": self.option.wire_name,
            "weight": str(self.weight),
            "castHeight": self.cast_height,
            "lockedUntil": self.locked_until,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Vote":
        return cls(
            poll_id=int(data["pollId"]),
            voter=data["voter"],
            option=VoteOption.parse(data["option"]),
            weight=Decimal(data["weight"]),
            cast_height=int(data["castHeight"]),
            locked_until=int(data["lockedUntil"]),
        )


def apply_vote(poll: "Poll", option: VoteOption, weight: Decimal):
    """Add *weight* to the poll's running total for *option*."""
    if option == VoteOption.YES:
        poll.yes_votes += weight
    elif option == VoteOption.NO:
        poll.no_votes += weight
    else:
        poll.abstain_votes += weight


# ══════════════════════════════════════════════════════════════════════
#  VOTE LEDGER
# ══════════════════════════════════════════════════════════════════════

class VoteLedger:
    """
    Records votes and keeps poll running totals in step.

    Responsibilities:
        - Reject votes on missing, closed or finalized polls
        - Enforce one vote per (poll, voter)
        - Freeze the voter's weight at cast time
        - Page through a poll's voters by address
    """

    def __init__(
        self,
        store: "GovernanceStore",
        registry: "PollRegistry",
        snapshot: "StakeSnapshotAccessor",
    ):
        self._store = store
        self._registry = registry
        self._snapshot = snapshot

    async def cast_vote(
        self,
        poll_id: int,
        voter: str,
        option: Union[VoteOption, int, str],
        now: int,
    ) -> Vote:
        """
        Cast a stake-weighted vote.

        Raises:
            PollNotFoundError, PollNotInProgressError, AlreadyVotedError,
            NoVotingPowerError, InvalidVoteOptionError
        """
        poll = await self._store.get_poll(poll_id)
        if poll is None:
            raise PollNotFoundError("Poll does not exist")
        if poll.status != PollStatus.IN_PROGRESS or not poll.is_votable(now):
            raise PollNotInProgressError("Poll is not in progress")

        existing = await self._store.get_vote(poll_id, voter)
        if existing is not None:
            raise AlreadyVotedError("User has already voted.")

        option = VoteOption.parse(option)

        weight = await self._snapshot.voting_power_of(voter, now)
        if weight <= 0:
            raise NoVotingPowerError("User does not have enough staked tokens.")

        vote = Vote(
            poll_id=poll_id,
            voter=voter,
            option=option,
            weight=weight,
            cast_height=now,
            locked_until=poll.end_height,
        )
        apply_vote(poll, option, weight)

        await self._store.put_vote(vote)
        await self._registry.save(poll)

        logger.info(
            f"Vote on Poll #{poll_id} by {voter}: {option.name} "
            f"(weight={weight}, yes={poll.yes_votes}, no={poll.no_votes}, "
            f"abstain={poll.abstain_votes})"
        )
        return vote

    async def get_vote(self, poll_id: int, voter: str) -> Optional[Vote]:
        return await self._store.get_vote(poll_id, voter)

    async def has_voted(self, poll_id: int, voter: str) -> bool:
        return await self._store.get_vote(poll_id, voter) is not None

    async def list_voters(
        self,
        poll_id: int,
        start_after: Optional[str] = None,
        limit: Optional[int] = None,
        order_by: OrderBy = OrderBy.ASC,
    ) -> List[Vote]:
        if await self._store.get_poll(poll_id) is None:
            raise PollNotFoundError("Poll does not exist")
        return await self._store.list_votes(
            poll_id,
            start_after=start_after,
            limit=clamp_limit(limit),
            descending=order_by == OrderBy.DESC,
        )

    # ── Vote locks ────────────────────────────────────────────────────

    async def locked_votes(self, voter: str) -> List[Vote]:
        """Votes by *voter* on polls that are still IN_PROGRESS."""
        locked = []
        for vote in await self._store.list_votes_by_voter(voter):
            poll = await self._store.get_poll(vote.poll_id)
            if poll is not None and poll.status == PollStatus.IN_PROGRESS:
                locked.append(vote)
        return locked

    async def locked_stake(self, voter: str) -> Decimal:
        """Stake *voter* may not withdraw: the largest weight among open votes."""
        votes = await self.locked_votes(voter)
        return max((v.weight for v in votes), default=Decimal("0"))
