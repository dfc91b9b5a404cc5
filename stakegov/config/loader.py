"""
StakeGov TOML Configuration Loader

Loads config.toml at startup with environment variable overrides.
Each [section] maps to a dataclass with from_dict / apply_env.

Environment variable mapping:
    [node] governance_address   → STAKEGOV_GOVERNANCE_ADDRESS
    [node] log_level            → STAKEGOV_LOG_LEVEL
    [database] type             → STAKEGOV_DB_TYPE
    [database.sqlite] path      → STAKEGOV_DB_PATH
    [governance] owner          → STAKEGOV_OWNER
    [governance] quorum         → STAKEGOV_QUORUM
    ...
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
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
    STAKEGOV_DB_PATH,
    STAKEGOV_GOVERNANCE_ADDRESS,
    parse_bool,
)
from ..exceptions import ConfigurationError
from ..governance.config import GovernanceConfig, InvalidConfigError

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_decimal(name: str, value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise ConfigurationError(f"{name} is not a number: {value!r}") from e


def _env_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} is not an integer: {value!r}") from e


def _env_bool(value: str) -> bool:
    parsed = parse_bool(value)
    if not isinstance(parsed, bool):
        raise ConfigurationError(f"Expected True/False, got {value!r}")
    return parsed


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------


@dataclass
class NodeSectionConfig:
    """[node] section."""
    governance_address: str = str(STAKEGOV_GOVERNANCE_ADDRESS)
    log_level: str = "INFO"
    start_height: int = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeSectionConfig":
        return cls(
            governance_address=data.get("governance_address", str(STAKEGOV_GOVERNANCE_ADDRESS)),
            log_level=data.get("log_level", "INFO"),
            start_height=data.get("start_height", 1),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("STAKEGOV_GOVERNANCE_ADDRESS"):
            self.governance_address = v
        if v := os.environ.get("STAKEGOV_LOG_LEVEL"):
            self.log_level = v


# -- Database -----------------------------------------------------------

@dataclass
class SQLiteConfig:
    """[database.sqlite]."""
    path: str = str(STAKEGOV_DB_PATH)
    wal_mode: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SQLiteConfig":
        return cls(
            path=data.get("path", str(STAKEGOV_DB_PATH)),
            wal_mode=data.get("wal_mode", True),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("STAKEGOV_DB_PATH"):
            self.path = v


@dataclass
class DatabaseConfig:
    """[database] section."""
    type: str = "sqlite"
    sqlite: SQLiteConfig = field(default_factory=SQLiteConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseConfig":
        return cls(
            type=data.get("type", "sqlite"),
            sqlite=SQLiteConfig.from_dict(data.get("sqlite", {})),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("STAKEGOV_DB_TYPE"):
            self.type = v
        self.sqlite.apply_env()


# -- Governance ---------------------------------------------------------

@dataclass
class GovernanceSectionConfig:
    """
    [governance] section: genesis parameters of the contract.

    An empty owner hands admin rights to the governance account itself,
    so config can only change through passed polls.
    """
    owner: str = ""
    quorum: Decimal = GOVERNANCE_QUORUM
    threshold: Decimal = GOVERNANCE_THRESHOLD
    voting_period: int = GOVERNANCE_VOTING_PERIOD
    timelock_period: int = GOVERNANCE_TIMELOCK_PERIOD
    expiration_period: int = GOVERNANCE_EXPIRATION_PERIOD
    proposal_deposit: Decimal = GOVERNANCE_PROPOSAL_DEPOSIT
    require_execute_msgs: bool = GOVERNANCE_REQUIRE_EXECUTE_MSGS
    refund_expired_deposit: bool = GOVERNANCE_REFUND_EXPIRED_DEPOSIT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GovernanceSectionConfig":
        return cls(
            owner=data.get("owner", ""),
            # TOML floats are read through str() so 0.3 stays 0.3
            quorum=Decimal(str(data.get("quorum", GOVERNANCE_QUORUM))),
            threshold=Decimal(str(data.get("threshold", GOVERNANCE_THRESHOLD))),
            voting_period=data.get("voting_period", GOVERNANCE_VOTING_PERIOD),
            timelock_period=data.get("timelock_period", GOVERNANCE_TIMELOCK_PERIOD),
            expiration_period=data.get("expiration_period", GOVERNANCE_EXPIRATION_PERIOD),
            proposal_deposit=Decimal(str(data.get("proposal_deposit", GOVERNANCE_PROPOSAL_DEPOSIT))),
            require_execute_msgs=data.get("require_execute_msgs", GOVERNANCE_REQUIRE_EXECUTE_MSGS),
            refund_expired_deposit=data.get(
                "refund_expired_deposit", GOVERNANCE_REFUND_EXPIRED_DEPOSIT
            ),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("STAKEGOV_OWNER"):
            self.owner = v
        if v := os.environ.get("STAKEGOV_QUORUM"):
            self.quorum = _env_decimal("STAKEGOV_QUORUM", v)
        if v := os.environ.get("STAKEGOV_THRESHOLD"):
            self.threshold = _env_decimal("STAKEGOV_THRESHOLD", v)
        if v := os.environ.get("STAKEGOV_VOTING_PERIOD"):
            self.voting_period = _env_int("STAKEGOV_VOTING_PERIOD", v)
        if v := os.environ.get("STAKEGOV_TIMELOCK_PERIOD"):
            self.timelock_period = _env_int("STAKEGOV_TIMELOCK_PERIOD", v)
        if v := os.environ.get("STAKEGOV_EXPIRATION_PERIOD"):
            self.expiration_period = _env_int("STAKEGOV_EXPIRATION_PERIOD", v)
        if v := os.environ.get("STAKEGOV_PROPOSAL_DEPOSIT"):
            self.proposal_deposit = _env_decimal("STAKEGOV_PROPOSAL_DEPOSIT", v)
        if v := os.environ.get("STAKEGOV_REQUIRE_EXECUTE_MSGS"):
            self.require_execute_msgs = _env_bool(v)
        if v := os.environ.get("STAKEGOV_REFUND_EXPIRED_DEPOSIT"):
            self.refund_expired_deposit = _env_bool(v)

    def to_governance_config(self, governance_address: str) -> GovernanceConfig:
        """Build the genesis GovernanceConfig; owner defaults to the contract."""
        return GovernanceConfig(
            owner=self.owner or governance_address,
            quorum=self.quorum,
            threshold=self.threshold,
            voting_period=self.voting_period,
            timelock_period=self.timelock_period,
            expiration_period=self.expiration_period,
            proposal_deposit=self.proposal_deposit,
            require_execute_msgs=bool(self.require_execute_msgs),
            refund_expired_deposit=bool(self.refund_expired_deposit),
        )


# -----------------------------------------------------------------------

@dataclass
class NodeConfig:
    """
    Unified host configuration.

    Loads every section of config.toml and applies environment variable
    overrides.
    """
    node: NodeSectionConfig = field(default_factory=NodeSectionConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    governance: GovernanceSectionConfig = field(default_factory=GovernanceSectionConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeConfig":
        """Create NodeConfig from a parsed TOML dict."""
        return cls(
            node=NodeSectionConfig.from_dict(data.get("node", {})),
            database=DatabaseConfig.from_dict(data.get("database", {})),
            governance=GovernanceSectionConfig.from_dict(data.get("governance", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "NodeConfig":
        """
        Load configuration from a TOML file.

        A missing file yields the defaults (with env overrides applied).
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        try:
            with open(path, "rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.node.apply_env()
        self.database.apply_env()
        self.governance.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        if not self.node.governance_address:
            raise ConfigurationError("governance_address must not be empty")
        if self.node.log_level not in _LOG_LEVELS:
            raise ConfigurationError(f"Invalid log_level: {self.node.log_level}")
        if self.node.start_height < 0:
            raise ConfigurationError("start_height must be >= 0")
        if self.database.type not in ("sqlite", "memory"):
            raise ConfigurationError("database type must be 'sqlite' or 'memory'")
        try:
            self.governance.to_governance_config(self.node.governance_address)
        except InvalidConfigError as e:
            raise ConfigurationError(f"[governance] {e}") from e
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, NOT for re-creating TOML)."""
        return {
            "node": {
                "governance_address": self.node.governance_address,
                "log_level": self.node.log_level,
                "start_height": self.node.start_height,
            },
            "database": {
                "type": self.database.type,
                "sqlite": {
                    "path": self.database.sqlite.path,
                    "wal_mode": self.database.sqlite.wal_mode,
                },
            },
            "governance": {
                "owner": self.governance.owner,
                "quorum": str(self.governance.quorum),
                "threshold": str(self.governance.threshold),
                "voting_period": self.governance.voting_period,
                "timelock_period": self.governance.timelock_period,
                "expiration_period": self.governance.expiration_period,
                "proposal_deposit": str(self.governance.proposal_deposit),
                "require_execute_msgs": bool(self.governance.require_execute_msgs),
                "refund_expired_deposit": bool(self.governance.refund_expired_deposit),
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> NodeConfig:
    """
    Load host configuration.

    Resolution order:
        1. Explicit *path* argument
        2. STAKEGOV_CONFIG env var
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("STAKEGOV_CONFIG", "config.toml")

    return NodeConfig.from_file(path)
