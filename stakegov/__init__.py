"""
StakeGov: stake-weighted on-chain poll governance

Core imports are lazily loaded. For direct module access, import from
submodules:

    from stakegov.governance import GovernanceContract, PollStatus
    from stakegov.storage import MemoryStore, SQLiteStore
    from stakegov.exceptions import GovernanceError
"""

# Lazy imports to avoid loading everything at package import
def __getattr__(name):
    """Lazy module loading."""
    if name == 'GovernanceContract':
        from .governance.contract import GovernanceContract
        return GovernanceContract
    elif name == 'Host':
        from .host import Host
        return Host
    elif name == 'load_config':
        from .config import load_config
        return load_config
    raise AttributeError(f"module 'stakegov' has no attribute {name!r}")

__all__ = ['GovernanceContract', 'Host', 'load_config']
