"""
Configuration Test Suite

Coverage:
  - config.toml loading, defaults and env overrides
  - NodeConfig.validate
  - GovernanceConfig validation and owner-gated updates
"""

import os
import sys
from decimal import Decimal

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from stakegov.config import NodeConfig, load_config
from stakegov.exceptions import ConfigurationError
from stakegov.governance.config import (
    GovernanceConfig,
    InvalidConfigError,
    UnauthorizedError,
)


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

OWNER = "0xPQ" + "00" * 32
ALICE = "0xPQ" + "A1" * 32

SAMPLE_TOML = """
[node]
governance_address = "gov_contract"
log_level = "DEBUG"
start_height = 100

[database]
type = "memory"

[database.sqlite]
path = "/tmp/gov.db"
wal_mode = false

[governance]
owner = "0xPQ0000"
quorum = 0.25
threshold = 0.6
voting_period = 50
timelock_period = 5
proposal_deposit = 250
refund_expired_deposit = true
"""

ENV_KEYS = (
    "STAKEGOV_CONFIG", "STAKEGOV_GOVERNANCE_ADDRESS", "STAKEGOV_LOG_LEVEL",
    "STAKEGOV_DB_TYPE", "STAKEGOV_DB_PATH", "STAKEGOV_OWNER",
    "STAKEGOV_QUORUM", "STAKEGOV_THRESHOLD", "STAKEGOV_VOTING_PERIOD",
    "STAKEGOV_TIMELOCK_PERIOD", "STAKEGOV_EXPIRATION_PERIOD",
    "STAKEGOV_PROPOSAL_DEPOSIT", "STAKEGOV_REQUIRE_EXECUTE_MSGS",
    "STAKEGOV_REFUND_EXPIRED_DEPOSIT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def write_config(tmp_path, text=SAMPLE_TOML) -> str:
    path = tmp_path / "config.toml"
    path.write_text(text)
    return str(path)


# ══════════════════════════════════════════════════════════════════════
#  LOADING
# ══════════════════════════════════════════════════════════════════════


class TestLoadConfig:

    def test_reads_sections(self, tmp_path, clean_env):
        cfg = load_config(write_config(tmp_path))
        assert cfg.node.governance_address == "gov_contract"
        assert cfg.node.log_level == "DEBUG"
        assert cfg.node.start_height == 100
        assert cfg.database.type == "memory"
        assert cfg.database.sqlite.wal_mode is False
        assert cfg.governance.quorum == Decimal("0.25")
        assert cfg.governance.threshold == Decimal("0.6")
        assert cfg.governance.proposal_deposit == Decimal("250")
        assert cfg.governance.refund_expired_deposit is True
        assert cfg.validate()

    def test_missing_file_uses_defaults(self, tmp_path, clean_env):
        cfg = load_config(str(tmp_path / "nope.toml"))
        assert cfg.database.type == "sqlite"
        assert cfg.governance.quorum == Decimal("0.30")
        assert cfg.node.start_height == 1

    def test_config_path_from_env(self, tmp_path, clean_env):
        clean_env.setenv("STAKEGOV_CONFIG", write_config(tmp_path))
        assert load_config().node.governance_address == "gov_contract"

    def test_invalid_toml(self, tmp_path, clean_env):
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            load_config(write_config(tmp_path, "[node\nbroken"))

    def test_env_overrides(self, tmp_path, clean_env):
        clean_env.setenv("STAKEGOV_QUORUM", "0.4")
        clean_env.setenv("STAKEGOV_VOTING_PERIOD", "7")
        clean_env.setenv("STAKEGOV_DB_TYPE", "sqlite")
        clean_env.setenv("STAKEGOV_DB_PATH", str(tmp_path / "env.db"))
        clean_env.setenv("STAKEGOV_REQUIRE_EXECUTE_MSGS", "true")
        cfg = load_config(write_config(tmp_path))
        assert cfg.governance.quorum == Decimal("0.4")
        assert cfg.governance.voting_period == 7
        assert cfg.governance.require_execute_msgs is True
        assert cfg.database.type == "sqlite"
        assert cfg.database.sqlite.path == str(tmp_path / "env.db")

    def test_env_bool_rejects_garbage(self, tmp_path, clean_env):
        clean_env.setenv("STAKEGOV_REFUND_EXPIRED_DEPOSIT", "sometimes")
        with pytest.raises(ConfigurationError):
            load_config(write_config(tmp_path))

    def test_env_number_rejects_garbage(self, tmp_path, clean_env):
        clean_env.setenv("STAKEGOV_QUORUM", "a third")
        with pytest.raises(ConfigurationError, match="STAKEGOV_QUORUM"):
            load_config(write_config(tmp_path))

    def test_data_dir_is_not_a_setting(self, tmp_path, clean_env):
        assert "data_dir" not in load_config(write_config(tmp_path)).to_dict()["node"]

    def test_genesis_owner_defaults_to_contract(self, clean_env):
        cfg = NodeConfig()
        genesis = cfg.governance.to_governance_config("gov_contract")
        assert genesis.owner == "gov_contract"
        assert genesis.version == 1

    def test_to_dict(self, tmp_path, clean_env):
        d = load_config(write_config(tmp_path)).to_dict()
        assert d["governance"]["quorum"] == "0.25"
        assert d["database"]["sqlite"]["path"] == "/tmp/gov.db"


class TestValidate:

    def test_bad_quorum(self, clean_env):
        cfg = NodeConfig.from_dict({"governance": {"quorum": 1.5}})
        with pytest.raises(ConfigurationError, match="quorum"):
            cfg.validate()

    def test_bad_database_type(self, clean_env):
        cfg = NodeConfig.from_dict({"database": {"type": "postgres"}})
        with pytest.raises(ConfigurationError, match="database type"):
            cfg.validate()

    def test_bad_log_level(self, clean_env):
        cfg = NodeConfig.from_dict({"node": {"log_level": "LOUD"}})
        with pytest.raises(ConfigurationError, match="log_level"):
            cfg.validate()

    def test_empty_governance_address(self, clean_env):
        cfg = NodeConfig.from_dict({"node": {"governance_address": ""}})
        with pytest.raises(ConfigurationError):
            cfg.validate()


# ══════════════════════════════════════════════════════════════════════
#  GOVERNANCE CONFIG
# ══════════════════════════════════════════════════════════════════════


class TestGovernanceConfig:

    def test_defaults(self):
        config = GovernanceConfig(owner=OWNER)
        assert config.quorum == Decimal("0.30")
        assert config.threshold == Decimal("0.50")
        assert config.version == 1

    def test_accepts_string_fractions(self):
        config = GovernanceConfig(owner=OWNER, quorum="0.1", threshold="1")
        assert config.quorum == Decimal("0.1")
        assert config.threshold == Decimal("1")

    def test_rejects_out_of_range(self):
        for kwargs in (
            {"quorum": Decimal("0")},
            {"quorum": Decimal("1.01")},
            {"threshold": Decimal("-0.5")},
            {"voting_period": 0},
            {"timelock_period": -1},
            {"expiration_period": 0},
            {"proposal_deposit": Decimal("-1")},
        ):
            with pytest.raises(InvalidConfigError):
                GovernanceConfig(owner=OWNER, **kwargs)

    def test_rejects_non_finite(self):
        for value in ("NaN", "Infinity", Decimal("-inf"), "sNaN"):
            with pytest.raises(InvalidConfigError, match="quorum"):
                GovernanceConfig(owner=OWNER, quorum=value)

    def test_owner_required(self):
        with pytest.raises(InvalidConfigError, match="owner"):
            GovernanceConfig(owner="")

    def test_update_bumps_version(self):
        config = GovernanceConfig(owner=OWNER)
        new = config.updated(OWNER, quorum=Decimal("0.2"), voting_period=None)
        assert new.quorum == Decimal("0.2")
        assert new.voting_period == config.voting_period
        assert new.version == 2
        assert config.version == 1

    def test_update_requires_owner(self):
        config = GovernanceConfig(owner=OWNER)
        with pytest.raises(UnauthorizedError):
            config.updated(ALICE, quorum=Decimal("0.2"))

    def test_update_transfers_ownership(self):
        config = GovernanceConfig(owner=OWNER).updated(OWNER, owner=ALICE)
        assert config.owner == ALICE
        with pytest.raises(UnauthorizedError):
            config.updated(OWNER, quorum=Decimal("0.2"))

    def test_update_rejects_unknown_field(self):
        config = GovernanceConfig(owner=OWNER)
        with pytest.raises(InvalidConfigError, match="Unknown config fields"):
            config.updated(OWNER, veto_power=True)

    def test_update_validates(self):
        config = GovernanceConfig(owner=OWNER)
        with pytest.raises(InvalidConfigError):
            config.updated(OWNER, threshold=Decimal("2"))

    def test_snapshot(self):
        config = GovernanceConfig(owner=OWNER, timelock_period=3, refund_expired_deposit=True)
        snap = config.snapshot()
        assert snap.timelock_period == 3
        assert snap.refund_expired_deposit is True
        assert snap.config_version == 1

    def test_dict_roundtrip(self):
        config = GovernanceConfig(owner=OWNER, quorum=Decimal("0.15"))
        assert GovernanceConfig.from_dict(config.to_dict()) == config
