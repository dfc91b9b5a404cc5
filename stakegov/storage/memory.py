"""
In-process governance store.

Rows are kept in their serialized form so callers always get fresh objects
back and a transaction can be rolled back by restoring a copy of the tables.
"""

import copy
from typing import Any, Dict, List, Optional, Tuple

from ..governance.config import GovernanceConfig, GovernanceState
from ..governance.polls import Poll, PollStatus
from ..governance.voting import Vote
from ..logger import get_logger
from .base import GovernanceStore

logger = get_logger(__name__)


class MemoryStore(GovernanceStore):
    """Dict-backed store for tests and single-process hosts."""

    def __init__(self):
        super().__init__()
        self._config: Optional[Dict[str, Any]] = None
        self._state: Optional[Dict[str, Any]] = None
        self._polls: Dict[int, Dict[str, Any]] = {}
        self._votes: Dict[Tuple[int, str], Dict[str, Any]] = {}
        self._saved: Optional[tuple] = None

    # ── Transactions ──────────────────────────────────────────────────

    def _tables(self) -> tuple:
        return (self._config, self._state, self._polls, self._votes)

    async def _begin(self):
        self._saved = copy.deepcopy(self._tables())

    async def _commit(self):
        self._saved = None

    async def _rollback(self):
        if self._saved is not None:
            self._config, self._state, self._polls, self._votes = self._saved
            self._saved = None
            logger.debug("Memory store transaction rolled back")

    # ── Config / State ────────────────────────────────────────────────

    async def get_config(self) -> Optional[GovernanceConfig]:
        if self._config is None:
            return None
        return GovernanceConfig.from_dict(self._config)

    async def save_config(self, config: GovernanceConfig):
        self._config = config.to_dict()

    async def load_state(self) -> GovernanceState:
        return GovernanceState.from_dict(self._state)

    async def save_state(self, state: GovernanceState):
        self._state = state.to_dict()

    # ── Polls ─────────────────────────────────────────────────────────

    async def get_poll(self, poll_id: int) -> Optional[Poll]:
        row = self._polls.get(poll_id)
        return Poll.from_dict(row) if row is not None else None

    async def put_poll(self, poll: Poll):
        self._polls[poll.id] = poll.to_dict()

    async def list_polls(
        self,
        status: Optional[PollStatus] = None,
        start_after: Optional[int] = None,
        limit: int = 10,
        descending: bool = False,
    ) -> List[Poll]:
        ids = sorted(self._polls, reverse=descending)
        if start_after is not None:
            ids = [i for i in ids if (i < start_after if descending else i > start_after)]
        rows = (self._polls[i] for i in ids)
        if status is not None:
            rows = (r for r in rows if r["status"] == status.name)
        result = []
        for row in rows:
            if len(result) >= limit:
                break
            result.append(Poll.from_dict(row))
        return result

    # ── Votes ─────────────────────────────────────────────────────────

    async def get_vote(self, poll_id: int, voter: str) -> Optional[Vote]:
        row = self._votes.get((poll_id, voter))
        return Vote.from_dict(row) if row is not None else None

    async def put_vote(self, vote: Vote):
        self._votes[(vote.poll_id, vote.voter)] = vote.to_dict()

    async def list_votes(
        self,
        poll_id: int,
        start_after: Optional[str] = None,
        limit: int = 10,
        descending: bool = False,
    ) -> List[Vote]:
        voters = sorted((v for p, v in self._votes if p == poll_id), reverse=descending)
        if start_after is not None:
            voters = [v for v in voters if (v < start_after if descending else v > start_after)]
        return [Vote.from_dict(self._votes[(poll_id, v)]) for v in voters[:limit]]

    async def list_votes_by_voter(self, voter: str) -> List[Vote]:
        keys = sorted(k for k in self._votes if k[1] == voter)
        return [Vote.from_dict(self._votes[k]) for k in keys]
