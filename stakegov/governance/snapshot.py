"""
Stake Snapshot Accessor

Read-only view of the staking ledger used by the governance engine. Voting
power and staked supply are always read *as of* a block height so a poll's
quorum and each voter's weight are fixed by when they were taken.
"""

import inspect
from decimal import Decimal
from typing import Any, Callable

from ..exceptions import LedgerUnavailableError
from ..logger import get_logger

logger = get_logger(__name__)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class StakeSnapshotAccessor:
    """
    Wraps two ledger lookups behind a uniform async interface.

    Both callables may be sync or async. Any failure, or an answer that is
    not a non-negative number, surfaces as LedgerUnavailableError and is
    never treated as zero.
    """

    def __init__(
        self,
        get_voting_power: Callable[[str, int], Any],
        get_total_staked: Callable[[int], Any],
    ):
        self._get_voting_power = get_voting_power
        self._get_total_staked = get_total_staked

    @classmethod
    def from_ledger(cls, ledger) -> "StakeSnapshotAccessor":
        """Build an accessor over a StakingLedger's checkpointed stakes."""
        return cls(
            get_voting_power=lambda address, at: ledger.staked_of(address, at),
            get_total_staked=lambda at: ledger.total_staked(at),
        )

    async def voting_power_of(self, address: str, at: int) -> Decimal:
        try:
            raw = await _resolve(self._get_voting_power(address, at))
        except LedgerUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Voting power lookup failed for {address} at height {at}: {e}")
            raise LedgerUnavailableError(f"Staking ledger unavailable: {e}") from e
        return self._check(raw, f"voting power of {address}")

    async def total_staked_supply(self, at: int) -> Decimal:
        try:
            raw = await _resolve(self._get_total_staked(at))
        except LedgerUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Staked supply lookup failed at height {at}: {e}")
            raise LedgerUnavailableError(f"Staking ledger unavailable: {e}") from e
        return self._check(raw, "staked supply")

    @staticmethod
    def _check(raw: Any, what: str) -> Decimal:
        if raw is None or isinstance(raw, bool):
            raise LedgerUnavailableError(f"Staking ledger returned no {what}")
        try:
            value = raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except ArithmeticError as e:
            raise LedgerUnavailableError(f"Staking ledger returned malformed {what}: {raw!r}") from e
        if not value.is_finite() or value < 0:
            raise LedgerUnavailableError(f"Staking ledger returned invalid {what}: {raw!r}")
        return value
