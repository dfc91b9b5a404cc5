"""
StakeGov On-Chain Governance

Provides:
  - GovernanceConfig / PollConfigSnapshot / GovernanceState   (config.py)
  - StakeSnapshotAccessor                                      (snapshot.py)
  - PollStatus / ExecuteMsg / Poll / PollRegistry              (polls.py)
  - VoteOption / Vote / VoteLedger                             (voting.py)
  - tally / TallyEngine / ExecutionBatch / TallyOutcome        (execution.py)
  - GovernanceContract                                         (contract.py)
"""

from ..exceptions import GovernanceError
from .config import (
    GovernanceConfig,
    GovernanceState,
    InvalidConfigError,
    PollConfigSnapshot,
    UnauthorizedError,
)
from .snapshot import StakeSnapshotAccessor
from .polls import (
    AlreadyFinalizedError,
    EmptyProposalError,
    ExecuteMsg,
    InsufficientDepositError,
    InvalidPollError,
    OrderBy,
    Poll,
    PollLifecycleError,
    PollNotFoundError,
    PollNotInProgressError,
    PollRegistry,
    PollStatus,
    VotingStillOpenError,
)
from .voting import (
    AlreadyVotedError,
    InvalidVoteOptionError,
    NoVotingPowerError,
    Vote,
    VoteLedger,
    VoteOption,
)
from .execution import (
    ExecutionBatch,
    ExecutionWindowClosedError,
    ExpireHeightNotReachedError,
    PollExecutionError,
    PollNotPassedError,
    TallyEngine,
    TallyOutcome,
    TimelockNotExpiredError,
    tally,
)
from .contract import GovernanceContract

__all__ = [
    # Config
    "GovernanceConfig",
    "GovernanceError",
    "GovernanceState",
    "InvalidConfigError",
    "PollConfigSnapshot",
    "UnauthorizedError",
    # Snapshot
    "StakeSnapshotAccessor",
    # Polls
    "AlreadyFinalizedError",
    "EmptyProposalError",
    "ExecuteMsg",
    "InsufficientDepositError",
    "InvalidPollError",
    "OrderBy",
    "Poll",
    "PollLifecycleError",
    "PollNotFoundError",
    "PollNotInProgressError",
    "PollRegistry",
    "PollStatus",
    "VotingStillOpenError",
    # Voting
    "AlreadyVotedError",
    "InvalidVoteOptionError",
    "NoVotingPowerError",
    "Vote",
    "VoteLedger",
    "VoteOption",
    # Execution
    "ExecutionBatch",
    "ExecutionWindowClosedError",
    "ExpireHeightNotReachedError",
    "PollExecutionError",
    "PollNotPassedError",
    "TallyEngine",
    "TallyOutcome",
    "TimelockNotExpiredError",
    "tally",
    # Contract
    "GovernanceContract",
]
