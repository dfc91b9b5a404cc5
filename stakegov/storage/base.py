"""
Governance store interface.

Three logical tables back the contract: Config (singleton, with the State
counters beside it), Polls keyed by id and Votes keyed by (poll id, voter).
Every contract call runs inside ``transaction()`` so a failing call leaves
nothing behind.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from ..exceptions import StorageError
from ..governance.config import GovernanceConfig, GovernanceState
from ..governance.polls import Poll, PollStatus
from ..governance.voting import Vote


class GovernanceStore(ABC):
    """Persisted Config / Polls / Votes tables."""

    def __init__(self):
        self._tx_depth = 0

    # ── Transactions ──────────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["GovernanceStore"]:
        """
        Run the enclosed writes atomically.

        Nested blocks join the outermost transaction; only the outermost
        block commits or rolls back.
        """
        outermost = self._tx_depth == 0
        if outermost:
            await self._begin()
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if outermost:
                await self._rollback()
            raise
        else:
            self._tx_depth -= 1
            if outermost:
                await self._commit()

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    @abstractmethod
    async def _begin(self):
        ...

    @abstractmethod
    async def _commit(self):
        ...

    @abstractmethod
    async def _rollback(self):
        ...

    # ── Config / State ────────────────────────────────────────────────

    async def load_config(self) -> GovernanceConfig:
        config = await self.get_config()
        if config is None:
            raise StorageError("Governance contract has not been instantiated")
        return config

    @abstractmethod
    async def get_config(self) -> Optional[GovernanceConfig]:
        ...

    @abstractmethod
    async def save_config(self, config: GovernanceConfig):
        ...

    @abstractmethod
    async def load_state(self) -> GovernanceState:
        ...

    @abstractmethod
    async def save_state(self, state: GovernanceState):
        ...

    # ── Polls ─────────────────────────────────────────────────────────

    @abstractmethod
    async def get_poll(self, poll_id: int) -> Optional[Poll]:
        ...

    @abstractmethod
    async def put_poll(self, poll: Poll):
        ...

    @abstractmethod
    async def list_polls(
        self,
        status: Optional[PollStatus] = None,
        start_after: Optional[int] = None,
        limit: int = 10,
        descending: bool = False,
    ) -> List[Poll]:
        ...

    # ── Votes ─────────────────────────────────────────────────────────

    @abstractmethod
    async def get_vote(self, poll_id: int, voter: str) -> Optional[Vote]:
        ...

    @abstractmethod
    async def put_vote(self, vote: Vote):
        ...

    @abstractmethod
    async def list_votes(
        self,
        poll_id: int,
        start_after: Optional[str] = None,
        limit: int = 10,
        descending: bool = False,
    ) -> List[Vote]:
        ...

    @abstractmethod
    async def list_votes_by_voter(self, voter: str) -> List[Vote]:
        """Every vote cast by *voter*, ordered by poll id."""
        ...

    async def close(self):
        pass
