"""GitBackend — the blocking backend adapter over the ``git`` executable.

All git operations use :func:`subprocess.run`; no git binding library.
Every method blocks and none of them is safe to call concurrently on the
same instance; :class:`govledger.repository.facade.RawRepository` is the
only intended caller.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path

from pydantic import ValidationError

from govledger.config import RESERVED_DIR
from govledger.repository import semantic
from govledger.repository.errors import (
    BackendError,
    InvalidRepositoryError,
    NotFoundError,
    UnknownError,
)
from govledger.repository.models import (
    Branch,
    CommitHash,
    NoneDiff,
    RemoteDescriptor,
    RemoteTrackingBranch,
    ReservedDiff,
    SemanticCommit,
    Tag,
)
from govledger.repository.reserved import (
    ReservedState,
    read_reserved_state,
    write_reserved_state,
)
from govledger.settings import Settings

logger = logging.getLogger(__name__)

_AUTHOR_RE = re.compile(r"^author (?P<name>.*) <(?P<email>.*)> (?P<ts>-?\d+) (?P<tz>[+-]\d{4})$")


def _decode(data: bytes) -> str:
    # Undecodable bytes survive as lone surrogates; no newline translation.
    return data.decode("utf-8", "surrogateescape")


def _run_git(
    *args: str,
    cwd: str | Path | None = None,
    check: bool = True,
    input: str | None = None,
    env: dict[str, str] | None = None,
    binary: str = "git",
) -> subprocess.CompletedProcess[str]:
    """Execute a git command via subprocess and return the result.

    Output is captured as bytes and decoded as UTF-8 with
    ``surrogateescape``, so ``\\r`` and non-UTF-8 content come back as
    stored and text read here can be fed back through *input* unchanged.

    Parameters
    ----------
    *args:
        Arguments passed after ``git``.
    cwd:
        Working directory for the command.
    check:
        If *True*, raise :class:`BackendError` on non-zero exit.
    input:
        Text fed to the command's stdin.
    env:
        Extra environment variables layered over the current environment.
    """
    cmd = [binary, *args]
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        stdin = input.encode("utf-8", "surrogateescape") if input is not None else None
    except UnicodeEncodeError as exc:
        raise BackendError(f"git {' '.join(args)}: input is not encodable: {exc}") from exc
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            input=stdin,
            env={**os.environ, **env} if env else None,
        )
    except OSError as exc:
        raise UnknownError(f"failed to execute {binary}: {exc}") from exc
    except ValueError as exc:
        # NUL bytes or unencodable text in arguments or environment
        raise BackendError(f"git {' '.join(args)}: invalid argument: {exc}") from exc
    result.stdout = _decode(result.stdout)
    result.stderr = _decode(result.stderr)
    if check and result.returncode != 0:
        raise BackendError(
            f"git {' '.join(args)} failed (rc={result.returncode}): "
            f"{result.stderr.strip()}"
        )
    return result


def _identity_env(name: str, email: str, timestamp_ms: int) -> dict[str, str]:
    date = f"@{timestamp_ms // 1000} +0000"
    return {
        "GIT_AUTHOR_NAME": name,
        "GIT_AUTHOR_EMAIL": email,
        "GIT_AUTHOR_DATE": date,
        "GIT_COMMITTER_NAME": name,
        "GIT_COMMITTER_EMAIL": email,
        "GIT_COMMITTER_DATE": date,
    }


class GitBackend:
    """Blocking primitives over one on-disk repository.

    Parameters
    ----------
    path:
        Root of the working tree.
    settings:
        Runtime settings; defaults are used when omitted.
    """

    def __init__(self, path: str | Path, settings: Settings | None = None) -> None:
        self.path = Path(path).resolve()
        self.settings = settings or Settings()

    def __repr__(self) -> str:
        return f"GitBackend({str(self.path)!r})"

    def _git(
        self,
        *args: str,
        check: bool = True,
        input: str | None = None,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        return _run_git(
            *args,
            cwd=self.path,
            check=check,
            input=input,
            env=env,
            binary=self.settings.git_binary,
        )

    def _configure_identity(self) -> None:
        self._git("config", "user.name", self.settings.committer_name)
        self._git("config", "user.email", self.settings.committer_email)
        self._git("config", "commit.gpgsign", "false")
        self._git("config", "tag.gpgsign", "false")

    # -- Lifecycle ------------------------------------------------------------

    @classmethod
    def init(
        cls,
        directory: str | Path,
        init_commit_message: str,
        init_commit_branch: Branch,
        settings: Settings | None = None,
    ) -> GitBackend:
        """Create a repository whose first commit holds the current directory contents.

        Raises
        ------
        InvalidRepositoryError
            If a repository already exists at *directory*.
        """
        backend = cls(directory, settings)
        if (backend.path / ".git").exists():
            raise InvalidRepositoryError(f"there is an existing repository at {backend.path}")

        backend.path.mkdir(parents=True, exist_ok=True)
        backend._git("init")
        backend._git("symbolic-ref", "HEAD", f"refs/heads/{init_commit_branch}")
        backend._configure_identity()

        backend._git("add", "-A")
        tree = backend._git("write-tree").stdout.strip()
        env = {
            "GIT_AUTHOR_NAME": backend.settings.committer_name,
            "GIT_AUTHOR_EMAIL": backend.settings.committer_email,
            "GIT_COMMITTER_NAME": backend.settings.committer_name,
            "GIT_COMMITTER_EMAIL": backend.settings.committer_email,
        }
        commit = backend._git("commit-tree", tree, "-F", "-", input=init_commit_message, env=env)
        backend._git("update-ref", f"refs/heads/{init_commit_branch}", commit.stdout.strip())

        logger.info(
            "Initialised repository at %s on branch '%s'", backend.path, init_commit_branch
        )
        return backend

    @classmethod
    def open(cls, directory: str | Path, settings: Settings | None = None) -> GitBackend:
        """Load an existing repository rooted at *directory*."""
        backend = cls(directory, settings)
        if not backend.path.is_dir():
            raise NotFoundError(f"directory {backend.path}")

        result = backend._git("rev-parse", "--show-toplevel", check=False)
        if result.returncode != 0 or Path(result.stdout.strip()).resolve() != backend.path:
            raise InvalidRepositoryError(f"{backend.path} is not a repository root")

        logger.debug("Opened repository at %s", backend.path)
        return backend

    @classmethod
    def clone(
        cls,
        directory: str | Path,
        url: str,
        settings: Settings | None = None,
    ) -> GitBackend:
        """Clone *url* into *directory*."""
        settings = settings or Settings()
        target = Path(directory).resolve()
        _run_git("clone", "--", url, str(target), binary=settings.git_binary)

        backend = cls(target, settings)
        backend._configure_identity()
        logger.info("Cloned %s -> %s", url, target)
        return backend

    # -- Object and ref inspection -------------------------------------------

    def retrieve_commit_hash(self, revision_selection: str) -> CommitHash:
        """Resolve any revision expression to a full commit hash."""
        result = self._git(
            "rev-parse", "--verify", "--quiet", f"{revision_selection}^{{commit}}", check=False
        )
        if result.returncode != 0:
            raise NotFoundError(f"revision {revision_selection}")
        return CommitHash(result.stdout.strip())

    def _resolve_ref(self, ref: str) -> CommitHash | None:
        result = self._git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
        if result.returncode != 0:
            return None
        return CommitHash(result.stdout.strip())

    def _require_commit(self, commit_hash: str) -> CommitHash:
        """Return *commit_hash* as a :class:`CommitHash` if it names a commit object."""
        result = self._git("cat-file", "-t", str(commit_hash), check=False)
        if result.returncode != 0 or result.stdout.strip() != "commit":
            raise NotFoundError(f"commit {commit_hash}")
        return CommitHash(self._git("rev-parse", str(commit_hash)).stdout.strip())

    def _list_refs(self, namespace: str, points_at: str | None = None) -> list[str]:
        args = ["for-each-ref", "--format=%(refname)"]
        if points_at is not None:
            args.append(f"--points-at={points_at}")
        args.append(namespace)
        prefix = namespace.rstrip("/") + "/"
        lines = self._git(*args).stdout.splitlines()
        return [line[len(prefix):] for line in lines if line.startswith(prefix)]

    # -- Branches -------------------------------------------------------------

    def list_branches(self) -> list[Branch]:
        return self._list_refs("refs/heads")

    def create_branch(self, branch_name: Branch, commit_hash: CommitHash) -> None:
        commit = self._require_commit(commit_hash)
        if self._resolve_ref(f"refs/heads/{branch_name}") is not None:
            raise BackendError(f"branch '{branch_name}' already exists")
        self._git("branch", "--", branch_name, commit)
        logger.info("Created branch '%s' at %s", branch_name, commit.short)

    def locate_branch(self, branch: Branch) -> CommitHash:
        commit = self._resolve_ref(f"refs/heads/{branch}")
        if commit is None:
            raise NotFoundError(f"branch {branch}")
        return commit

    def get_branches(self, commit_hash: CommitHash) -> list[Branch]:
        commit = self._require_commit(commit_hash)
        return self._list_refs("refs/heads", points_at=commit)

    def move_branch(self, branch: Branch, commit_hash: CommitHash) -> None:
        self.locate_branch(branch)
        commit = self._require_commit(commit_hash)
        self._git("update-ref", f"refs/heads/{branch}", commit)
        logger.info("Moved branch '%s' to %s", branch, commit.short)

    def delete_branch(self, branch: Branch) -> None:
        self.locate_branch(branch)
        self._git("branch", "-D", "--", branch)
        logger.info("Deleted branch '%s'", branch)

    # -- Tags -----------------------------------------------------------------

    def list_tags(self) -> list[Tag]:
        return self._list_refs("refs/tags")

    def create_tag(self, tag: Tag, commit_hash: CommitHash) -> None:
        commit = self._require_commit(commit_hash)
        if self._resolve_ref(f"refs/tags/{tag}") is not None:
            raise BackendError(f"tag '{tag}' already exists")
        self._git("tag", "--", tag, commit)
        logger.info("Created tag '%s' at %s", tag, commit.short)

    def locate_tag(self, tag: Tag) -> CommitHash:
        commit = self._resolve_ref(f"refs/tags/{tag}")
        if commit is None:
            raise NotFoundError(f"tag {tag}")
        return commit

    def get_tag(self, commit_hash: CommitHash) -> list[Tag]:
        commit = self._require_commit(commit_hash)
        return self._list_refs("refs/tags", points_at=commit)

    def remove_tag(self, tag: Tag) -> None:
        self.locate_tag(tag)
        self._git("tag", "-d", tag)
        logger.info("Removed tag '%s'", tag)

    # -- Commits --------------------------------------------------------------

    def _commit_tree(self, tree: str, message: str, env: dict[str, str]) -> CommitHash:
        """Create a commit of *tree* on top of HEAD and advance HEAD to it."""
        head = self.get_head()
        result = self._git("commit-tree", tree, "-p", head, "-F", "-", input=message, env=env)
        commit = CommitHash(result.stdout.strip())
        self._git("update-ref", "-m", "govledger: commit", "HEAD", commit, head)
        return commit

    def create_commit(
        self,
        commit_message: str,
        author_name: str,
        author_email: str,
        author_timestamp: int,
        diff: str | None = None,
    ) -> CommitHash:
        """Append a commit to the checked-out branch; committer is the author.

        *diff* is an optional unified patch applied to both the index and
        the working tree.  Without it the commit keeps HEAD's tree.
        """
        if diff is not None:
            self._git("apply", "--index", "-", input=diff)
            tree = self._git("write-tree").stdout.strip()
        else:
            tree = self._git("rev-parse", "HEAD^{tree}").stdout.strip()

        env = _identity_env(author_name, author_email, author_timestamp)
        commit = self._commit_tree(tree, commit_message, env)
        logger.info("Created commit %s", commit.short)
        return commit

    def create_semantic_commit(self, commit: SemanticCommit) -> CommitHash:
        """Append *commit*; only ``none`` and ``reserved`` diffs are accepted."""
        message = semantic.encode_message(commit)

        if isinstance(commit.diff, ReservedDiff):
            try:
                write_reserved_state(self.path, commit.diff.state)
            except OSError as exc:
                raise BackendError(f"cannot write reserved state: {exc}") from exc
            self._git("add", "-A", "--", RESERVED_DIR)
            tree = self._git("write-tree").stdout.strip()
        else:
            tree = self._git("rev-parse", "HEAD^{tree}").stdout.strip()

        env = _identity_env(commit.author, semantic.author_email(commit.author), commit.timestamp)
        commit_hash = self._commit_tree(tree, message, env)
        logger.info("Created semantic commit %s (%s)", commit_hash.short, commit.diff.kind)
        return commit_hash

    def _read_commit(self, commit_hash: CommitHash) -> tuple[list[str], str]:
        """Return ``(header lines, message)`` of a raw commit object."""
        commit = self._require_commit(commit_hash)
        raw = self._git("cat-file", "commit", commit).stdout
        header, _, message = raw.partition("\n\n")
        return header.splitlines(), message

    def _changed_paths(self, commit_hash: CommitHash) -> list[str]:
        result = self._git(
            "diff-tree", "--root", "--no-commit-id", "--name-only", "-r", commit_hash
        )
        return [line for line in result.stdout.splitlines() if line]

    def _read_tree_files(self, commit_hash: CommitHash, directory: str) -> dict[str, str]:
        listing = self._git("ls-tree", "-r", "--name-only", commit_hash, "--", directory)
        files: dict[str, str] = {}
        for path in listing.stdout.splitlines():
            files[path] = self._git("cat-file", "blob", f"{commit_hash}:{path}").stdout
        return files

    def read_semantic_commit(self, commit_hash: CommitHash) -> SemanticCommit:
        """Decode a commit written by :meth:`create_semantic_commit`."""
        headers, message = self._read_commit(commit_hash)
        if sum(1 for line in headers if line.startswith("parent ")) > 1:
            raise InvalidRepositoryError(f"{commit_hash} is a merge commit")

        title, body, kind = semantic.decode_message(message)

        author = None
        for line in headers:
            author = _AUTHOR_RE.match(line)
            if author:
                break
        if author is None:
            raise InvalidRepositoryError(f"{commit_hash} has no parsable author")

        changed = self._changed_paths(commit_hash)
        if kind == "none":
            if changed:
                raise InvalidRepositoryError(
                    f"{commit_hash} is marked as having no diff but changes {len(changed)} paths"
                )
            diff = NoneDiff()
        else:
            outside = [p for p in changed if not p.startswith(f"{RESERVED_DIR}/")]
            if outside:
                raise InvalidRepositoryError(
                    f"{commit_hash} changes paths outside the reserved state: {outside[:3]}"
                )
            files = self._read_tree_files(commit_hash, RESERVED_DIR)
            diff = ReservedDiff(state=ReservedState.from_files(files))

        try:
            return SemanticCommit(
                title=title,
                body=body,
                diff=diff,
                author=author.group("name"),
                timestamp=int(author.group("ts")) * 1000,
            )
        except ValidationError as exc:
            raise InvalidRepositoryError(
                f"{commit_hash} is not a valid semantic commit: {exc}"
            ) from exc

    def run_garbage_collection(self) -> None:
        """Prune every object unreachable from a branch or tag."""
        self._git("reflog", "expire", "--expire=now", "--all")
        args = ["gc", "--prune=now", "--quiet"]
        if self.settings.gc_aggressive:
            args.append("--aggressive")
        self._git(*args)
        logger.info("Ran garbage collection on %s", self.path)

    # -- Working tree ---------------------------------------------------------

    def checkout_clean(self) -> None:
        self._git("reset", "--hard", "--quiet")
        self._git("clean", "-fd", "--quiet")

    def checkout(self, branch: Branch) -> None:
        self.locate_branch(branch)
        self._git("checkout", "--quiet", branch, "--")
        logger.info("Checked out branch '%s'", branch)

    def checkout_detach(self, commit_hash: CommitHash) -> None:
        commit = self._require_commit(commit_hash)
        self._git("checkout", "--quiet", "--detach", commit)
        logger.info("Checked out %s (detached)", commit.short)

    # -- Queries --------------------------------------------------------------

    def get_head(self) -> CommitHash:
        commit = self._resolve_ref("HEAD")
        if commit is None:
            raise NotFoundError("HEAD")
        return commit

    def get_initial_commit(self) -> CommitHash:
        """Return the root commit reachable from HEAD."""
        if self._resolve_ref("HEAD") is None:
            raise InvalidRepositoryError("the repository has no commits")
        roots = self._git("rev-list", "--max-parents=0", "HEAD").stdout.split()
        if len(roots) != 1:
            raise InvalidRepositoryError(f"expected one initial commit, found {len(roots)}")
        return CommitHash(roots[0])

    def get_patch(self, commit_hash: CommitHash) -> str:
        commit = self._require_commit(commit_hash)
        return self._git("format-patch", "--stdout", "-1", commit).stdout

    def show_commit(self, commit_hash: CommitHash) -> str:
        commit = self._require_commit(commit_hash)
        return self._git("show", "--no-color", "--format=fuller", commit).stdout

    def _parent_map(self, commit_hash: CommitHash) -> dict[str, list[str]]:
        result = self._git("rev-list", "--parents", commit_hash)
        parents: dict[str, list[str]] = {}
        for line in result.stdout.splitlines():
            commit, *rest = line.split()
            parents[commit] = rest
        return parents

    def _walk_ancestors(
        self,
        commit_hash: CommitHash,
        max_count: int | None = None,
        stop_at: CommitHash | None = None,
    ) -> list[CommitHash]:
        current = self._require_commit(commit_hash)
        parents = self._parent_map(current)
        ancestors: list[CommitHash] = []
        while max_count is None or len(ancestors) < max_count:
            current_parents = parents[current]
            if len(current_parents) > 1:
                raise InvalidRepositoryError(f"merge commit {current} in history")
            if not current_parents:
                break
            current = CommitHash(current_parents[0])
            ancestors.append(current)
            if current == stop_at:
                break
        return ancestors

    def list_ancestors(
        self, commit_hash: CommitHash, max_count: int | None = None
    ) -> list[CommitHash]:
        """Return ancestors nearest-first; the first entry is the direct parent.

        Raises
        ------
        InvalidRepositoryError
            If the walk meets a merge commit.
        """
        return self._walk_ancestors(commit_hash, max_count)

    def query_commit_path(
        self, ancestor: CommitHash, descendant: CommitHash
    ) -> list[CommitHash]:
        """Return commits after *ancestor* up to and including *descendant*."""
        ancestor = self._require_commit(ancestor)
        descendant = self._require_commit(descendant)
        if ancestor == descendant:
            raise InvalidRepositoryError("ancestor and descendant are the same commit")
        if self.find_merge_base(ancestor, descendant) != ancestor:
            raise InvalidRepositoryError(
                f"{ancestor.short} is not the merge base of {ancestor.short} and {descendant.short}"
            )

        walked = self._walk_ancestors(descendant, stop_at=ancestor)
        path = [descendant, *walked[:-1]]
        path.reverse()
        return path

    def list_children(self, commit_hash: CommitHash) -> list[CommitHash]:
        """Return direct children of *commit_hash* reachable from any ref."""
        commit = self._require_commit(commit_hash)
        result = self._git("rev-list", "--all", "--children")
        for line in result.stdout.splitlines():
            node, *children = line.split()
            if node == commit:
                return [CommitHash(c) for c in children]
        return []

    def find_merge_base(self, commit_hash1: CommitHash, commit_hash2: CommitHash) -> CommitHash:
        first = self._require_commit(commit_hash1)
        second = self._require_commit(commit_hash2)
        result = self._git("merge-base", first, second, check=False)
        if result.returncode == 1 and not result.stdout.strip():
            raise InvalidRepositoryError(f"no merge base between {first.short} and {second.short}")
        if result.returncode != 0:
            raise BackendError(f"git merge-base failed: {result.stderr.strip()}")
        return CommitHash(result.stdout.strip())

    def read_reserved_state(self) -> ReservedState:
        return read_reserved_state(self.path)

    # -- Remotes --------------------------------------------------------------

    def list_remotes(self) -> list[RemoteDescriptor]:
        names = self._git("remote").stdout.split()
        return [
            RemoteDescriptor(name, self._git("remote", "get-url", name).stdout.strip())
            for name in sorted(names)
        ]

    def _require_remote(self, remote_name: str) -> None:
        if remote_name not in self._git("remote").stdout.split():
            raise NotFoundError(f"remote {remote_name}")

    def add_remote(self, remote_name: str, remote_url: str) -> None:
        self._git("remote", "add", remote_name, remote_url)
        logger.info("Added remote '%s' (%s)", remote_name, remote_url)

    def remove_remote(self, remote_name: str) -> None:
        self._require_remote(remote_name)
        self._git("remote", "remove", remote_name)
        logger.info("Removed remote '%s'", remote_name)

    def fetch_all(self) -> None:
        self._git("fetch", "--all", "--quiet", f"--jobs={self.settings.fetch_jobs}")
        logger.info("Fetched all remotes of %s", self.path)

    def push_option(self, remote_name: str, branch: Branch, option: str | None = None) -> None:
        """Push *branch* to *remote_name*, passing *option* as a push option."""
        self._require_remote(remote_name)
        self.locate_branch(branch)
        args = ["push", "--quiet"]
        if option is not None:
            args.append(f"--push-option={option}")
        args += [remote_name, f"refs/heads/{branch}:refs/heads/{branch}"]
        self._git(*args)
        logger.info("Pushed '%s' to '%s'", branch, remote_name)

    def list_remote_tracking_branches(self) -> list[RemoteTrackingBranch]:
        remotes = sorted(self._git("remote").stdout.split(), key=len, reverse=True)
        result = self._git("for-each-ref", "--format=%(refname) %(objectname)", "refs/remotes")
        branches: list[RemoteTrackingBranch] = []
        for line in result.stdout.splitlines():
            refname, object_name = line.rsplit(" ", 1)
            short = refname[len("refs/remotes/"):]
            # Remote names may contain '/', so match the longest known remote
            for remote in remotes:
                if short.startswith(remote + "/"):
                    branch = short[len(remote) + 1:]
                    if branch != "HEAD":
                        branches.append(
                            RemoteTrackingBranch(remote, branch, CommitHash(object_name))
                        )
                    break
        return branches

    def locate_remote_tracking_branch(self, remote_name: str, branch_name: str) -> CommitHash:
        commit = self._resolve_ref(f"refs/remotes/{remote_name}/{branch_name}")
        if commit is None:
            raise NotFoundError(f"remote-tracking branch {remote_name}/{branch_name}")
        return commit
