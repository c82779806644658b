"""govledger — version-controlled ledger for a distributed governance protocol."""

__version__ = "0.1.0"

from govledger.repository import (
    BackendError,
    CommitHash,
    HandleLostError,
    InvalidRepositoryError,
    NotFoundError,
    RawRepository,
    RepositoryContract,
    RepositoryError,
    ReservedState,
    SemanticCommit,
    UnknownError,
)
from govledger.settings import ConfigManager, Settings, configure_logging
from govledger.shell import run_command

__all__ = [
    "__version__",
    "BackendError",
    "CommitHash",
    "ConfigManager",
    "HandleLostError",
    "InvalidRepositoryError",
    "NotFoundError",
    "RawRepository",
    "RepositoryContract",
    "RepositoryError",
    "ReservedState",
    "SemanticCommit",
    "Settings",
    "UnknownError",
    "configure_logging",
    "run_command",
]
