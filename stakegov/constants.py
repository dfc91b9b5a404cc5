"""
StakeGov Constants

This module consolidates all global constants and environment configuration
used throughout the codebase. Constants are organized by category for easy
reference and maintenance.
"""
import ast
from decimal import Decimal
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

NODE_DEFAULTS = {
    'STAKEGOV_DB_PATH':                'data/stakegov.db',
    'STAKEGOV_GOVERNANCE_ADDRESS':     'stakegov_governance',
}

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# ==================================================================================
# GOVERNANCE DEFAULTS
# ==================================================================================
# Fractions are Decimals in (0, 1]; periods are measured in blocks.
GOVERNANCE_QUORUM = Decimal("0.30")
GOVERNANCE_THRESHOLD = Decimal("0.50")
GOVERNANCE_VOTING_PERIOD = 10_000
GOVERNANCE_TIMELOCK_PERIOD = 0
GOVERNANCE_EXPIRATION_PERIOD = 20_000
GOVERNANCE_PROPOSAL_DEPOSIT = Decimal("1000")
GOVERNANCE_REQUIRE_EXECUTE_MSGS = False
GOVERNANCE_REFUND_EXPIRED_DEPOSIT = False

# Poll deposits are held apart from the treasury in "<governance>.escrow"
GOVERNANCE_ESCROW_SUFFIX = ".escrow"

# Vote options
GOVERNANCE_VOTE_YES = 1
GOVERNANCE_VOTE_NO = 2
GOVERNANCE_VOTE_ABSTAIN = 3


# ==================================================================================
# POLL METADATA BOUNDS
# ==================================================================================
MIN_TITLE_LENGTH = 4
MAX_TITLE_LENGTH = 64
MIN_DESC_LENGTH = 4
MAX_DESC_LENGTH = 1024
MIN_LINK_LENGTH = 12
MAX_LINK_LENGTH = 128


# ==================================================================================
# QUERY PAGINATION
# ==================================================================================
DEFAULT_QUERY_LIMIT = 10
MAX_QUERY_LIMIT = 30


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = NODE_DEFAULTS | LOGGER_DEFAULTS
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Avoids exceptions by only calling ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v

for key, default_raw in DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
