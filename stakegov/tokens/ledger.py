"""
Staking Ledger

Reference token ledger the governance contract runs against:
  - Liquid balances with transfer / mint / burn
  - Staked balances checkpointed by block height, so voting power and
    staked supply can be read as of any height
  - JSON message handler so passed polls can move funds through the host
  - Undo-on-failure transactions and unstake guards for vote locks
"""

import json
import time
from bisect import bisect_right
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from ..exceptions import InvalidMessageError, StakeGovException
from ..logger import get_logger

logger = get_logger(__name__)

UnstakeGuard = Callable[[str], Awaitable[Decimal]]


# ══════════════════════════════════════════════════════════════════════
#  EXCEPTIONS
# ══════════════════════════════════════════════════════════════════════

class LedgerError(StakeGovException):
    """Base exception for ledger operations."""


class InsufficientBalanceError(LedgerError):
    """Raised when a liquid balance is too low."""


class InsufficientStakeError(LedgerError):
    """Raised when unstaking more than is staked."""


# ══════════════════════════════════════════════════════════════════════
#  EVENTS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LedgerEvent:
    """Emitted on every successful balance change."""
    kind: str                   # transfer | mint | burn | stake | unstake
    sender: Optional[str]
    recipient: Optional[str]
    amount: Decimal
    height: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.kind,
            "from": self.sender,
            "to": self.recipient,
            "amount": str(self.amount),
            "height": self.height,
            "timestamp": self.timestamp,
        }


def _amount(value: Any) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise LedgerError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite() or amount <= 0:
        raise LedgerError("Amount must be positive")
    return amount


# ══════════════════════════════════════════════════════════════════════
#  LEDGER
# ══════════════════════════════════════════════════════════════════════

class StakingLedger:
    """
    Fungible token with a staking side-ledger.

    Views:
        - balance_of(address) → Decimal
        - staked_of(address, at=None) → Decimal
        - total_staked(at=None) → Decimal

    Checkpoints are appended in height order; a stake change at height h
    is visible to reads at h and later.
    """

    def __init__(self, symbol: str = "GOV", address: str = "stakegov_token"):
        if not symbol:
            raise LedgerError("Token symbol cannot be empty")
        self.symbol = symbol
        self.address = address

        self._balances: Dict[str, Decimal] = {}
        self._stake_checkpoints: Dict[str, List[Tuple[int, Decimal]]] = {}
        self._supply_checkpoints: List[Tuple[int, Decimal]] = []
        self._total_supply = Decimal("0")
        self._events: List[LedgerEvent] = []
        self._unstake_guards: List[UnstakeGuard] = []
        self._tx_depth = 0

        logger.info(f"Staking ledger deployed: {symbol} at {address}")

    # ── Transactions ──────────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["StakingLedger"]:
        """
        Undo every balance and stake change made in the block if it raises.

        Nested blocks join the outermost one.
        """
        outermost = self._tx_depth == 0
        saved = self._save() if outermost else None
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if outermost:
                self._restore(saved)
                logger.debug("Ledger transaction rolled back")
            raise
        else:
            self._tx_depth -= 1

    def _save(self) -> tuple:
        return (
            dict(self._balances),
            {addr: list(cps) for addr, cps in self._stake_checkpoints.items()},
            list(self._supply_checkpoints),
            self._total_supply,
            len(self._events),
        )

    def _restore(self, saved: tuple):
        balances, stakes, supply, total, n_events = saved
        self._balances = balances
        self._stake_checkpoints = stakes
        self._supply_checkpoints = supply
        self._total_supply = total
        del self._events[n_events:]

    # ── Vote locks ────────────────────────────────────────────────────

    def add_unstake_guard(self, guard: UnstakeGuard):
        """Register a lookup of how much of an address's stake is locked."""
        self._unstake_guards.append(guard)

    async def locked_of(self, address: str) -> Decimal:
        locked = Decimal("0")
        for guard in self._unstake_guards:
            locked = max(locked, await guard(address))
        return locked

    # ── Read-only views ───────────────────────────────────────────────

    @property
    def total_supply(self) -> Decimal:
        return self._total_supply

    @property
    def events(self) -> List[LedgerEvent]:
        return list(self._events)

    def balance_of(self, address: str) -> Decimal:
        return self._balances.get(address, Decimal("0"))

    def staked_of(self, address: str, at: Optional[int] = None) -> Decimal:
        return self._value_at(self._stake_checkpoints.get(address, []), at)

    def total_staked(self, at: Optional[int] = None) -> Decimal:
        return self._value_at(self._supply_checkpoints, at)

    @staticmethod
    def _value_at(checkpoints: List[Tuple[int, Decimal]], at: Optional[int]) -> Decimal:
        if not checkpoints:
            return Decimal("0")
        if at is None:
            return checkpoints[-1][1]
        idx = bisect_right(checkpoints, at, key=lambda c: c[0])
        return checkpoints[idx - 1][1] if idx else Decimal("0")

    @staticmethod
    def _write_checkpoint(checkpoints: List[Tuple[int, Decimal]], height: int, value: Decimal):
        if checkpoints and height < checkpoints[-1][0]:
            raise LedgerError(
                f"Stake change at height {height} precedes last checkpoint {checkpoints[-1][0]}"
            )
        if checkpoints and checkpoints[-1][0] == height:
            checkpoints[-1] = (height, value)
        else:
            checkpoints.append((height, value))

    # ── Balance operations ────────────────────────────────────────────

    async def mint(self, recipient: str, amount: Decimal) -> LedgerEvent:
        amount = _amount(amount)
        self._balances[recipient] = self.balance_of(recipient) + amount
        self._total_supply += amount
        event = LedgerEvent("mint", None, recipient, amount)
        self._events.append(event)
        logger.debug(f"Mint: {recipient} +{amount} {self.symbol}")
        return event

    async def transfer(self, sender: str, recipient: str, amount: Decimal) -> LedgerEvent:
        amount = _amount(amount)
        if sender == recipient:
            raise LedgerError("Cannot transfer to self")

        bal = self.balance_of(sender)
        if bal < amount:
            raise InsufficientBalanceError(
                f"{sender} balance {bal} < transfer amount {amount}"
            )

        self._balances[sender] = bal - amount
        self._balances[recipient] = self.balance_of(recipient) + amount

        event = LedgerEvent("transfer", sender, recipient, amount)
        self._events.append(event)
        logger.debug(f"Transfer: {sender} → {recipient} {amount} {self.symbol}")
        return event

    async def burn(self, sender: str, amount: Decimal) -> LedgerEvent:
        amount = _amount(amount)
        bal = self.balance_of(sender)
        if bal < amount:
            raise InsufficientBalanceError(f"{sender} balance {bal} < burn amount {amount}")
        self._balances[sender] = bal - amount
        self._total_supply -= amount
        event = LedgerEvent("burn", sender, None, amount)
        self._events.append(event)
        logger.info(f"Burn: {sender} burned {amount} {self.symbol}")
        return event

    # ── Staking ───────────────────────────────────────────────────────

    async def stake(self, address: str, amount: Decimal, height: int) -> LedgerEvent:
        """Move liquid balance into stake, effective from *height*."""
        amount = _amount(amount)
        bal = self.balance_of(address)
        if bal < amount:
            raise InsufficientBalanceError(f"{address} balance {bal} < stake amount {amount}")

        checkpoints = self._stake_checkpoints.setdefault(address, [])
        self._write_checkpoint(checkpoints, height, self.staked_of(address) + amount)
        self._write_checkpoint(self._supply_checkpoints, height, self.total_staked() + amount)
        self._balances[address] = bal - amount

        event = LedgerEvent("stake", address, None, amount, height)
        self._events.append(event)
        logger.debug(f"Stake: {address} +{amount} {self.symbol} at height {height}")
        return event

    async def unstake(self, address: str, amount: Decimal, height: int) -> LedgerEvent:
        """
        Return staked tokens to the liquid balance, effective from *height*.

        Stake locked by votes on polls still in progress cannot be withdrawn.
        """
        amount = _amount(amount)
        staked = self.staked_of(address)
        if staked < amount:
            raise InsufficientStakeError(f"{address} staked {staked} < unstake amount {amount}")
        locked = await self.locked_of(address)
        if staked - amount < locked:
            raise InsufficientStakeError("User is trying to withdraw too many tokens.")

        self._write_checkpoint(self._stake_checkpoints[address], height, staked - amount)
        self._write_checkpoint(self._supply_checkpoints, height, self.total_staked() - amount)
        self._balances[address] = self.balance_of(address) + amount

        event = LedgerEvent("unstake", address, None, amount, height)
        self._events.append(event)
        logger.debug(f"Unstake: {address} -{amount} {self.symbol} at height {height}")
        return event

    # ── Message handler ───────────────────────────────────────────────

    async def handle_message(self, sender: str, payload: bytes) -> Dict[str, Any]:
        """
        Execute a JSON message sent by another contract.

        Supported: {"transfer": {"recipient", "amount"}}, {"burn": {"amount"}}.
        """
        try:
            data = json.loads(payload)
        except (TypeError, ValueError, UnicodeDecodeError) as e:
            raise InvalidMessageError(f"Ledger message is not JSON: {e}") from e
        if not isinstance(data, dict) or len(data) != 1:
            raise InvalidMessageError("Ledger message must have exactly one variant")

        (kind, body), = data.items()
        if not isinstance(body, dict):
            raise InvalidMessageError(f"Ledger message '{kind}' body must be an object")
        try:
            if kind == "transfer":
                event = await self.transfer(sender, body["recipient"], body["amount"])
            elif kind == "burn":
                event = await self.burn(sender, body["amount"])
            else:
                raise InvalidMessageError(f"Unknown ledger message: {kind}")
        except KeyError as e:
            raise InvalidMessageError(f"Ledger message '{kind}' missing field {e}") from e
        return event.to_dict()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "address": self.address,
            "totalSupply": str(self._total_supply),
            "totalStaked": str(self.total_staked()),
            "holders": len(self._balances),
        }

    def __repr__(self) -> str:
        return f"<StakingLedger {self.symbol} supply={self._total_supply}>"
