"""Abstract RepositoryContract — the asynchronous operation surface.

Every operation may raise a :class:`~govledger.repository.errors.RepositoryError`
subclass.  Operations other than the lifecycle constructors act on an
already-open instance, and every mutation is persisted before it returns.
"""

from __future__ import annotations

import abc
from pathlib import Path

from govledger.repository.models import (
    Branch,
    CommitHash,
    RemoteDescriptor,
    RemoteTrackingBranch,
    SemanticCommit,
    Tag,
)
from govledger.repository.reserved import ReservedState


class RepositoryContract(abc.ABC):
    """Base class for repository implementations."""

    # -- Lifecycle ------------------------------------------------------------

    @classmethod
    @abc.abstractmethod
    async def init(
        cls,
        directory: str | Path,
        init_commit_message: str,
        init_commit_branch: Branch,
    ) -> RepositoryContract:
        """Create a repository from the working tree at *directory*.

        Fails if there is already a repository.
        """

    @classmethod
    @abc.abstractmethod
    async def open(cls, directory: str | Path) -> RepositoryContract:
        """Load an existing repository."""

    @classmethod
    @abc.abstractmethod
    async def clone(cls, directory: str | Path, url: str) -> RepositoryContract:
        """Clone an existing repository; fails if *url* has none."""

    @abc.abstractmethod
    async def retrieve_commit_hash(self, revision_selection: str) -> CommitHash:
        """Return the full hash for a revision expression such as ``HEAD~2``."""

    # -- Branches -------------------------------------------------------------

    @abc.abstractmethod
    async def list_branches(self) -> list[Branch]:
        """Return every local branch name."""

    @abc.abstractmethod
    async def create_branch(self, branch_name: Branch, commit_hash: CommitHash) -> None:
        """Create a branch on the commit."""

    @abc.abstractmethod
    async def locate_branch(self, branch: Branch) -> CommitHash:
        """Return the commit the branch points to."""

    @abc.abstractmethod
    async def get_branches(self, commit_hash: CommitHash) -> list[Branch]:
        """Return the branches pointing at the commit."""

    @abc.abstractmethod
    async def move_branch(self, branch: Branch, commit_hash: CommitHash) -> None:
        """Repoint an existing branch."""

    @abc.abstractmethod
    async def delete_branch(self, branch: Branch) -> None:
        """Delete the branch."""

    # -- Tags -----------------------------------------------------------------

    @abc.abstractmethod
    async def list_tags(self) -> list[Tag]:
        """Return every tag name."""

    @abc.abstractmethod
    async def create_tag(self, tag: Tag, commit_hash: CommitHash) -> None:
        """Create a tag on the commit."""

    @abc.abstractmethod
    async def locate_tag(self, tag: Tag) -> CommitHash:
        """Return the commit the tag points to."""

    @abc.abstractmethod
    async def get_tag(self, commit_hash: CommitHash) -> list[Tag]:
        """Return the tags on the commit."""

    @abc.abstractmethod
    async def remove_tag(self, tag: Tag) -> None:
        """Remove the tag."""

    # -- Commits --------------------------------------------------------------

    @abc.abstractmethod
    async def create_commit(
        self,
        commit_message: str,
        author_name: str,
        author_email: str,
        author_timestamp: int,
        diff: str | None = None,
    ) -> CommitHash:
        """Create a commit on the checked-out branch; committer is the author."""

    @abc.abstractmethod
    async def create_semantic_commit(self, commit: SemanticCommit) -> CommitHash:
        """Create a semantic commit; the diff must be ``none`` or ``reserved``."""

    @abc.abstractmethod
    async def read_semantic_commit(self, commit_hash: CommitHash) -> SemanticCommit:
        """Decode a commit created by :meth:`create_semantic_commit`."""

    @abc.abstractmethod
    async def run_garbage_collection(self) -> None:
        """Remove commits unreachable from any branch or tag."""

    # -- Working tree ---------------------------------------------------------

    @abc.abstractmethod
    async def checkout_clean(self) -> None:
        """Reset the working tree and remove untracked files."""

    @abc.abstractmethod
    async def checkout(self, branch: Branch) -> None:
        """Check out the branch."""

    @abc.abstractmethod
    async def checkout_detach(self, commit_hash: CommitHash) -> None:
        """Check out the commit with a detached ``HEAD``."""

    # -- Queries --------------------------------------------------------------

    @abc.abstractmethod
    async def get_head(self) -> CommitHash:
        """Return the commit at ``HEAD``."""

    @abc.abstractmethod
    async def get_initial_commit(self) -> CommitHash:
        """Return the root commit; fails if the repository is empty."""

    @abc.abstractmethod
    async def get_patch(self, commit_hash: CommitHash) -> str:
        """Return the commit as an e-mail style patch."""

    @abc.abstractmethod
    async def show_commit(self, commit_hash: CommitHash) -> str:
        """Return the commit header and diff as text."""

    @abc.abstractmethod
    async def list_ancestors(
        self, commit_hash: CommitHash, max_count: int | None = None
    ) -> list[CommitHash]:
        """Return ancestors nearest-first; fails on a merge commit."""

    @abc.abstractmethod
    async def query_commit_path(
        self, ancestor: CommitHash, descendant: CommitHash
    ) -> list[CommitHash]:
        """Return the commits after *ancestor* up to and including *descendant*.

        Fails if the two are equal or *ancestor* is not their merge base.
        """

    @abc.abstractmethod
    async def list_children(self, commit_hash: CommitHash) -> list[CommitHash]:
        """Return the direct children of the commit."""

    @abc.abstractmethod
    async def find_merge_base(
        self, commit_hash1: CommitHash, commit_hash2: CommitHash
    ) -> CommitHash:
        """Return the merge base of the two commits."""

    @abc.abstractmethod
    async def read_reserved_state(self) -> ReservedState:
        """Parse the reserved state from the checked-out working tree."""

    # -- Remotes --------------------------------------------------------------

    @abc.abstractmethod
    async def add_remote(self, remote_name: str, remote_url: str) -> None:
        """Add a remote."""

    @abc.abstractmethod
    async def remove_remote(self, remote_name: str) -> None:
        """Remove a remote."""

    @abc.abstractmethod
    async def fetch_all(self) -> None:
        """Fetch every remote."""

    @abc.abstractmethod
    async def push_option(
        self, remote_name: str, branch: Branch, option: str | None = None
    ) -> None:
        """Push the branch, passing *option* through as a push option."""

    @abc.abstractmethod
    async def list_remotes(self) -> list[RemoteDescriptor]:
        """Return every remote as ``(name, url)``."""

    @abc.abstractmethod
    async def list_remote_tracking_branches(self) -> list[RemoteTrackingBranch]:
        """Return every remote-tracking branch as ``(remote, branch, hash)``."""

    @abc.abstractmethod
    async def locate_remote_tracking_branch(
        self, remote_name: str, branch_name: str
    ) -> CommitHash:
        """Return the commit of a remote-tracking branch."""
