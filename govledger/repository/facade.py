"""RawRepository — asyncio facade serialising access to one GitBackend.

The backend handle lives in a single-owner slot guarded by an
:class:`asyncio.Lock`.  A call acquires the lock, takes the handle out of
the slot, runs the blocking operation on a worker thread, and puts the
handle back before releasing the lock.  Reads and writes go through the
same exclusive checkout; the backend is not safe for any concurrent use.

The checked-out work runs in a task shielded from the caller, so a
cancelled caller only loses the result: the operation still completes and
the handle is still returned to the slot.  Should that task itself be
cancelled (for instance while the event loop shuts down), the lock stays
held until the worker thread returns, and the handle is checked in then.

If the blocking operation dies with anything other than a
:class:`RepositoryError`, the handle is considered lost.  The instance is
then poisoned and every later call raises :class:`HandleLostError`.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import Path
from typing import Any

from govledger.config import DEFAULT_MAX_WORKERS, WORKER_THREAD_PREFIX
from govledger.repository.backend import GitBackend
from govledger.repository.contract import RepositoryContract
from govledger.repository.errors import HandleLostError, RepositoryError, UnknownError
from govledger.repository.models import (
    Branch,
    CommitHash,
    RemoteDescriptor,
    RemoteTrackingBranch,
    SemanticCommit,
    Tag,
)
from govledger.repository.reserved import ReservedState
from govledger.settings import ConfigManager, Settings

logger = logging.getLogger(__name__)

_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


def get_executor(max_workers: int | None = None) -> ThreadPoolExecutor:
    """Return the process-wide pool for blocking backend work.

    The pool is created on first use; *max_workers* only applies then.
    """
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=max_workers or DEFAULT_MAX_WORKERS,
                thread_name_prefix=WORKER_THREAD_PREFIX,
            )
            logger.debug(
                "Started blocking worker pool (%s threads)", max_workers or DEFAULT_MAX_WORKERS
            )
        return _executor


class _HandleSlot:
    """Holds the backend while it is checked in; empty while work is in flight."""

    def __init__(self, backend: GitBackend) -> None:
        self._backend: GitBackend | None = backend

    @property
    def is_empty(self) -> bool:
        return self._backend is None

    def take(self) -> GitBackend:
        if self._backend is None:
            raise HandleLostError("backend slot is empty")
        backend, self._backend = self._backend, None
        return backend

    def put(self, backend: GitBackend) -> None:
        if self._backend is not None:
            raise HandleLostError("backend slot is already occupied")
        self._backend = backend


def _invoke(backend: GitBackend, method: str, args: tuple[Any, ...]) -> Any:
    return getattr(backend, method)(*args)


def _observe(task: asyncio.Future) -> None:
    # Abandoned calls still finish; record their failure instead of
    # leaving it unretrieved.
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Repository operation failed: %r", task.exception())


class RawRepository(RepositoryContract):
    """Repository backed by the ``git`` executable.

    Parameters
    ----------
    backend:
        The handle this instance owns for its whole lifetime.
    executor:
        Pool for blocking work.  Defaults to :func:`get_executor`.
    """

    def __init__(self, backend: GitBackend, executor: Executor | None = None) -> None:
        self._slot = _HandleSlot(backend)
        self._lock = asyncio.Lock()
        self._executor = executor or get_executor(backend.settings.max_workers)
        self._lost: BaseException | None = None
        self.path = backend.path

    def __repr__(self) -> str:
        return f"RawRepository({str(self.path)!r})"

    @property
    def is_lost(self) -> bool:
        """True once the backend handle has been lost."""
        return self._lost is not None

    # -- Dispatch -------------------------------------------------------------

    async def _dispatch(self, method: str, *args: Any) -> Any:
        await self._lock.acquire()
        try:
            if self._lost is not None:
                raise HandleLostError(f"{self!r} is unusable") from self._lost
            backend = self._slot.take()
        except BaseException:
            self._lock.release()
            raise

        work = asyncio.ensure_future(self._run_checked_out(backend, method, args))
        work.add_done_callback(_observe)
        return await asyncio.shield(work)

    async def _run_checked_out(
        self, backend: GitBackend, method: str, args: tuple[Any, ...]
    ) -> Any:
        loop = asyncio.get_running_loop()
        try:
            future = loop.run_in_executor(
                self._executor, functools.partial(_invoke, backend, method, args)
            )
        except RuntimeError as exc:
            # Pool already shut down; the backend was never touched.
            self._slot.put(backend)
            self._lock.release()
            raise UnknownError(f"cannot schedule {method}: {exc}") from exc
        try:
            # asyncio.wait never cancels or raises from the future it waits on
            await asyncio.wait((future,))
        except asyncio.CancelledError:
            if future.done():
                self._check_in(backend, method, future)
            else:
                # The worker thread still holds the backend until it returns.
                future.add_done_callback(
                    functools.partial(self._check_in, backend, method)
                )
            raise

        self._check_in(backend, method, future)
        if future.cancelled():
            raise UnknownError(f"{method} was dropped by the worker pool before it ran")
        exc = future.exception()
        if exc is None:
            return future.result()
        if isinstance(exc, RepositoryError):
            raise exc
        raise HandleLostError(f"backend handle lost during {method}") from exc

    def _check_in(self, backend: GitBackend, method: str, future: asyncio.Future) -> None:
        """Settle a finished blocking call and release the lock.

        The handle goes back into the slot unless the call died with
        something other than a :class:`RepositoryError`.
        """
        try:
            exc = None if future.cancelled() else future.exception()
            if exc is None or isinstance(exc, RepositoryError):
                self._slot.put(backend)
            else:
                self._lost = exc
                logger.critical("Lost backend handle of %r during %s: %r", self, method, exc)
        finally:
            self._lock.release()

    # -- Lifecycle ------------------------------------------------------------

    @staticmethod
    async def _open_backend(
        settings: Settings | None,
        executor: Executor | None,
        factory: Any,
        directory: str | Path,
        *args: Any,
    ) -> tuple[GitBackend, Executor]:
        settings = settings or ConfigManager().load_settings(directory)
        executor = executor or get_executor(settings.max_workers)
        loop = asyncio.get_running_loop()
        backend = await loop.run_in_executor(
            executor, functools.partial(factory, directory, *args, settings=settings)
        )
        return backend, executor

    @classmethod
    async def init(
        cls,
        directory: str | Path,
        init_commit_message: str,
        init_commit_branch: Branch,
        *,
        settings: Settings | None = None,
        executor: Executor | None = None,
    ) -> RawRepository:
        backend, executor = await cls._open_backend(
            settings, executor, GitBackend.init, directory, init_commit_message, init_commit_branch
        )
        return cls(backend, executor)

    @classmethod
    async def open(
        cls,
        directory: str | Path,
        *,
        settings: Settings | None = None,
        executor: Executor | None = None,
    ) -> RawRepository:
        backend, executor = await cls._open_backend(settings, executor, GitBackend.open, directory)
        return cls(backend, executor)

    @classmethod
    async def clone(
        cls,
        directory: str | Path,
        url: str,
        *,
        settings: Settings | None = None,
        executor: Executor | None = None,
    ) -> RawRepository:
        backend, executor = await cls._open_backend(
            settings, executor, GitBackend.clone, directory, url
        )
        return cls(backend, executor)

    async def retrieve_commit_hash(self, revision_selection: str) -> CommitHash:
        return await self._dispatch("retrieve_commit_hash", revision_selection)

    # -- Branches -------------------------------------------------------------

    async def list_branches(self) -> list[Branch]:
        return await self._dispatch("list_branches")

    async def create_branch(self, branch_name: Branch, commit_hash: CommitHash) -> None:
        await self._dispatch("create_branch", branch_name, commit_hash)

    async def locate_branch(self, branch: Branch) -> CommitHash:
        return await self._dispatch("locate_branch", branch)

    async def get_branches(self, commit_hash: CommitHash) -> list[Branch]:
        return await self._dispatch("get_branches", commit_hash)

    async def move_branch(self, branch: Branch, commit_hash: CommitHash) -> None:
        await self._dispatch("move_branch", branch, commit_hash)

    async def delete_branch(self, branch: Branch) -> None:
        await self._dispatch("delete_branch", branch)

    # -- Tags -----------------------------------------------------------------

    async def list_tags(self) -> list[Tag]:
        return await self._dispatch("list_tags")

    async def create_tag(self, tag: Tag, commit_hash: CommitHash) -> None:
        await self._dispatch("create_tag", tag, commit_hash)

    async def locate_tag(self, tag: Tag) -> CommitHash:
        return await self._dispatch("locate_tag", tag)

    async def get_tag(self, commit_hash: CommitHash) -> list[Tag]:
        return await self._dispatch("get_tag", commit_hash)

    async def remove_tag(self, tag: Tag) -> None:
        await self._dispatch("remove_tag", tag)

    # -- Commits --------------------------------------------------------------

    async def create_commit(
        self,
        commit_message: str,
        author_name: str,
        author_email: str,
        author_timestamp: int,
        diff: str | None = None,
    ) -> CommitHash:
        return await self._dispatch(
            "create_commit", commit_message, author_name, author_email, author_timestamp, diff
        )

    async def create_semantic_commit(self, commit: SemanticCommit) -> CommitHash:
        return await self._dispatch("create_semantic_commit", commit)

    async def read_semantic_commit(self, commit_hash: CommitHash) -> SemanticCommit:
        return await self._dispatch("read_semantic_commit", commit_hash)

    async def run_garbage_collection(self) -> None:
        await self._dispatch("run_garbage_collection")

    # -- Working tree ---------------------------------------------------------

    async def checkout_clean(self) -> None:
        await self._dispatch("checkout_clean")

    async def checkout(self, branch: Branch) -> None:
        await self._dispatch("checkout", branch)

    async def checkout_detach(self, commit_hash: CommitHash) -> None:
        await self._dispatch("checkout_detach", commit_hash)

    # -- Queries --------------------------------------------------------------

    async def get_head(self) -> CommitHash:
        return await self._dispatch("get_head")

    async def get_initial_commit(self) -> CommitHash:
        return await self._dispatch("get_initial_commit")

    async def get_patch(self, commit_hash: CommitHash) -> str:
        return await self._dispatch("get_patch", commit_hash)

    async def show_commit(self, commit_hash: CommitHash) -> str:
        return await self._dispatch("show_commit", commit_hash)

    async def list_ancestors(
        self, commit_hash: CommitHash, max_count: int | None = None
    ) -> list[CommitHash]:
        return await self._dispatch("list_ancestors", commit_hash, max_count)

    async def query_commit_path(
        self, ancestor: CommitHash, descendant: CommitHash
    ) -> list[CommitHash]:
        return await self._dispatch("query_commit_path", ancestor, descendant)

    async def list_children(self, commit_hash: CommitHash) -> list[CommitHash]:
        return await self._dispatch("list_children", commit_hash)

    async def find_merge_base(
        self, commit_hash1: CommitHash, commit_hash2: CommitHash
    ) -> CommitHash:
        return await self._dispatch("find_merge_base", commit_hash1, commit_hash2)

    async def read_reserved_state(self) -> ReservedState:
        return await self._dispatch("read_reserved_state")

    # -- Remotes --------------------------------------------------------------

    async def add_remote(self, remote_name: str, remote_url: str) -> None:
        await self._dispatch("add_remote", remote_name, remote_url)

    async def remove_remote(self, remote_name: str) -> None:
        await self._dispatch("remove_remote", remote_name)

    async def fetch_all(self) -> None:
        await self._dispatch("fetch_all")

    async def push_option(
        self, remote_name: str, branch: Branch, option: str | None = None
    ) -> None:
        await self._dispatch("push_option", remote_name, branch, option)

    async def list_remotes(self) -> list[RemoteDescriptor]:
        return await self._dispatch("list_remotes")

    async def list_remote_tracking_branches(self) -> list[RemoteTrackingBranch]:
        return await self._dispatch("list_remote_tracking_branches")

    async def locate_remote_tracking_branch(
        self, remote_name: str, branch_name: str
    ) -> CommitHash:
        return await self._dispatch("locate_remote_tracking_branch", remote_name, branch_name)
