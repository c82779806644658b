"""Error taxonomy shared by every repository operation.

Ordinary failures derive from :class:`RepositoryError` and are meant to be
caught and branched on.  :class:`HandleLostError` is deliberately outside
that hierarchy: it means the repository instance can no longer be used.
"""

from __future__ import annotations


class RepositoryError(Exception):
    """Base class for recoverable repository failures."""


class BackendError(RepositoryError):
    """The git backend reported a failure; the message is passed through."""


class NotFoundError(RepositoryError):
    """A named resource (branch, tag, remote, ref, commit) does not exist."""

    def __init__(self, resource: str) -> None:
        super().__init__(f"not found: {resource}")
        self.resource = resource


class InvalidRepositoryError(RepositoryError):
    """A structural assumption of the operation is violated.

    Raised, for example, when an ancestor walk meets a merge commit, when
    two commits have no merge base, or when a commit cannot be decoded as
    a semantic commit.
    """


class UnknownError(RepositoryError):
    """A host-process failure, such as failing to spawn a subprocess."""


class HandleLostError(RuntimeError):
    """The backend handle was lost; the repository instance is unusable."""
