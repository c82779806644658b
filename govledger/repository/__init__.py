"""Repository abstraction layer — the commit graph as a governance ledger.

An append-only, content-addressed store: accepted state transitions are
commits, branches mark heads of consensus, tags mark milestones.
"""

from govledger.repository.backend import GitBackend
from govledger.repository.contract import RepositoryContract
from govledger.repository.errors import (
    BackendError,
    HandleLostError,
    InvalidRepositoryError,
    NotFoundError,
    RepositoryError,
    UnknownError,
)
from govledger.repository.facade import RawRepository, get_executor
from govledger.repository.models import (
    CommitHash,
    GeneralDiff,
    NonReservedDiff,
    NoneDiff,
    RemoteDescriptor,
    RemoteTrackingBranch,
    ReservedDiff,
    SemanticCommit,
)
from govledger.repository.reserved import GenesisInfo, Member, ReservedState

__all__ = [
    "BackendError",
    "CommitHash",
    "GeneralDiff",
    "GenesisInfo",
    "GitBackend",
    "HandleLostError",
    "InvalidRepositoryError",
    "Member",
    "NonReservedDiff",
    "NoneDiff",
    "NotFoundError",
    "RawRepository",
    "RemoteDescriptor",
    "RemoteTrackingBranch",
    "RepositoryContract",
    "RepositoryError",
    "ReservedDiff",
    "ReservedState",
    "SemanticCommit",
    "UnknownError",
    "get_executor",
]
