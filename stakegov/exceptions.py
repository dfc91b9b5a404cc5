"""
StakeGov Exceptions

Base exception classes shared by the governance, storage and ledger layers.
Governance-specific errors live next to the code that raises them and derive
from GovernanceError.
"""


class StakeGovException(Exception):
    """Base exception for StakeGov."""
    pass


class GovernanceError(StakeGovException):
    """Validation or domain error; the failing call leaves no state behind."""
    pass


class InfrastructureError(StakeGovException):
    """A collaborator outside the contract failed; always fatal to the call."""
    pass


class LedgerUnavailableError(InfrastructureError):
    """The staking ledger could not be reached or answered with an error."""
    pass


class StorageError(InfrastructureError):
    """Persisted state could not be read or written."""
    pass


class InvalidMessageError(StakeGovException):
    """A message envelope could not be decoded."""
    pass


class ConfigurationError(StakeGovException):
    """Configuration error."""
    pass
