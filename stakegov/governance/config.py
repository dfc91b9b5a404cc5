"""
Governance Config Store

Holds the admin-mutable parameters of the governance contract and the
per-poll snapshot taken from them at creation time. A config is a value:
updates produce a new config with a bumped version, and polls keep the
snapshot they were created with.
"""

from dataclasses import asdict, dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ..constants import (
    GOVERNANCE_EXPIRATION_PERIOD,
    GOVERNANCE_PROPOSAL_DEPOSIT,
    GOVERNANCE_QUORUM,
    GOVERNANCE_REFUND_EXPIRED_DEPOSIT,
    GOVERNANCE_REQUIRE_EXECUTE_MSGS,
    GOVERNANCE_THRESHOLD,
    GOVERNANCE_TIMELOCK_PERIOD,
    GOVERNANCE_VOTING_PERIOD,
)
from ..exceptions import GovernanceError
from ..logger import get_logger

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  EXCEPTIONS
# ══════════════════════════════════════════════════════════════════════

class InvalidConfigError(GovernanceError):
    """Raised when a config value is out of range."""


class UnauthorizedError(GovernanceError):
    """Raised when a non-owner attempts an admin action."""


def _to_decimal(value: Any, name: str) -> Decimal:
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidConfigError(f"{name} is not a number: {value!r}") from e
    if not number.is_finite():
        raise InvalidConfigError(f"{name} must be a finite number: {value!r}")
    return number


# ══════════════════════════════════════════════════════════════════════
#  POLL SNAPSHOT
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PollConfigSnapshot:
    """Config values a single poll is tallied and executed against."""
    quorum: Decimal
    threshold: Decimal
    timelock_period: int
    expiration_period: int
    refund_expired_deposit: bool
    config_version: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quorum": str(self.quorum),
            "threshold": str(self.threshold),
            "timelockPeriod": self.timelock_period,
            "expirationPeriod": self.expiration_period,
            "refundExpiredDeposit": self.refund_expired_deposit,
            "configVersion": self.config_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PollConfigSnapshot":
        return cls(
            quorum=Decimal(data["quorum"]),
            threshold=Decimal(data["threshold"]),
            timelock_period=int(data["timelockPeriod"]),
            expiration_period=int(data["expirationPeriod"]),
            refund_expired_deposit=bool(data["refundExpiredDeposit"]),
            config_version=int(data["configVersion"]),
        )


# ══════════════════════════════════════════════════════════════════════
#  GOVERNANCE CONFIG
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GovernanceConfig:
    """
    Contract-wide governance parameters.

    Fields:
        owner:                  Address allowed to call UpdateConfig
        quorum:                 Fraction of staked supply that must vote (0, 1]
        threshold:              Fraction of yes over yes+no needed to pass (0, 1]
        voting_period:          Blocks a poll stays open
        timelock_period:        Blocks between poll end and earliest execution
        expiration_period:      Blocks after the timelock a passed poll may still run
        proposal_deposit:       Minimum deposit to create a poll
        require_execute_msgs:   Reject polls that carry no messages
        refund_expired_deposit: Refund deposits of polls that miss quorum
        version:                Bumped on every accepted update
    """
    owner: str
    quorum: Decimal = GOVERNANCE_QUORUM
    threshold: Decimal = GOVERNANCE_THRESHOLD
    voting_period: int = GOVERNANCE_VOTING_PERIOD
    timelock_period: int = GOVERNANCE_TIMELOCK_PERIOD
    expiration_period: int = GOVERNANCE_EXPIRATION_PERIOD
    proposal_deposit: Decimal = GOVERNANCE_PROPOSAL_DEPOSIT
    require_execute_msgs: bool = GOVERNANCE_REQUIRE_EXECUTE_MSGS
    refund_expired_deposit: bool = GOVERNANCE_REFUND_EXPIRED_DEPOSIT
    version: int = 1

    def __post_init__(self):
        # Normalise numeric inputs before validating
        object.__setattr__(self, "quorum", _to_decimal(self.quorum, "quorum"))
        object.__setattr__(self, "threshold", _to_decimal(self.threshold, "threshold"))
        object.__setattr__(
            self, "proposal_deposit", _to_decimal(self.proposal_deposit, "proposal_deposit")
        )
        self.validate()

    def validate(self):
        if not self.owner:
            raise InvalidConfigError("owner address is required")
        if not (Decimal("0") < self.quorum <= Decimal("1")):
            raise InvalidConfigError("quorum must be 0 to 1")
        if not (Decimal("0") < self.threshold <= Decimal("1")):
            raise InvalidConfigError("threshold must be 0 to 1")
        if self.voting_period <= 0:
            raise InvalidConfigError("voting_period must be positive")
        if self.timelock_period < 0:
            raise InvalidConfigError("timelock_period cannot be negative")
        if self.expiration_period <= 0:
            raise InvalidConfigError("expiration_period must be positive")
        if self.proposal_deposit < 0:
            raise InvalidConfigError("proposal_deposit cannot be negative")

    # ── Admin ─────────────────────────────────────────────────────────

    def require_owner(self, sender: str):
        if sender != self.owner:
            raise UnauthorizedError(f"{sender} is not the governance owner")

    def updated(self, sender: str, **changes) -> "GovernanceConfig":
        """
        Return a new config with *changes* applied and the version bumped.

        Only the owner may update; keys whose value is None are ignored so
        callers can pass a sparse UpdateConfig payload straight through.
        """
        self.require_owner(sender)
        unknown = set(changes) - set(self.__dataclass_fields__) - {"version"}
        if unknown:
            raise InvalidConfigError(f"Unknown config fields: {sorted(unknown)}")
        changes.pop("version", None)
        applied = {k: v for k, v in changes.items() if v is not None}
        new = replace(self, version=self.version + 1, **applied)
        logger.info(
            f"Governance config v{self.version} → v{new.version} "
            f"by {sender}: {sorted(applied)}"
        )
        return new

    def snapshot(self) -> PollConfigSnapshot:
        return PollConfigSnapshot(
            quorum=self.quorum,
            threshold=self.threshold,
            timelock_period=self.timelock_period,
            expiration_period=self.expiration_period,
            refund_expired_deposit=self.refund_expired_deposit,
            config_version=self.version,
        )

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("quorum", "threshold", "proposal_deposit"):
            data[key] = str(data[key])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GovernanceConfig":
        fields = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in fields})


@dataclass
class GovernanceState:
    """Contract-wide counters kept next to the config."""
    poll_count: int = 0
    total_deposit: Decimal = Decimal("0")
    total_forfeited: Decimal = Decimal("0")

    def next_poll_id(self) -> int:
        self.poll_count += 1
        return self.poll_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pollCount": self.poll_count,
            "totalDeposit": str(self.total_deposit),
            "totalForfeited": str(self.total_forfeited),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GovernanceState":
        if not data:
            return cls()
        return cls(
            poll_count=int(data.get("pollCount", 0)),
            total_deposit=Decimal(data.get("totalDeposit", "0")),
            total_forfeited=Decimal(data.get("totalForfeited", "0")),
        )
