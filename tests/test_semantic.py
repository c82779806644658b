"""Tests for semantic commits: the message codec and the git round-trip."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from govledger.repository import semantic
from govledger.repository.backend import GitBackend
from govledger.repository.errors import InvalidRepositoryError
from govledger.repository.models import (
    GeneralDiff,
    NoneDiff,
    NonReservedDiff,
    ReservedDiff,
    SemanticCommit,
)
from govledger.repository.reserved import GenesisInfo, Member, ReservedState
from govledger.settings import Settings

_SETTINGS = Settings(env="testing", gc_aggressive=False, max_workers=2)
_TS = 1_700_000_000_000

_PATCH = """\
diff --git a/notes.txt b/notes.txt
new file mode 100644
--- /dev/null
+++ b/notes.txt
@@ -0,0 +1 @@
+stray
"""


def _state(version: str = "0.1.0") -> ReservedState:
    return ReservedState(
        genesis_info=GenesisInfo(chain_name="testnet", genesis_block_hash="ab" * 32),
        members=[
            Member(
                name="bob",
                public_key="02bb",
                governance_voting_power=1,
                consensus_voting_power=1,
            ),
            Member(
                name="alice",
                public_key="02aa",
                governance_voting_power=2,
                consensus_voting_power=2,
                consensus_delegatee="bob",
            ),
        ],
        consensus_leader_order=["alice", "bob"],
        version=version,
    )


def _init(tmp_path: Path) -> GitBackend:
    return GitBackend.init(tmp_path / "repo", "genesis", "main", settings=_SETTINGS)


# ---------------------------------------------------------------------------
# Message codec
# ---------------------------------------------------------------------------


class TestMessageCodec:
    def test_encode_layout(self):
        commit = SemanticCommit(
            title="Add member", body="alice joins", author="alice", timestamp=_TS
        )
        assert semantic.encode_message(commit) == (
            "Add member\n\nalice joins\n\nSemantic-Diff: none\n"
        )

    @pytest.mark.parametrize(
        "body",
        ["", "one line", "para one\n\npara two", "trailing newline\n", "\n\nleading blanks"],
    )
    def test_decode_inverts_encode(self, body: str):
        commit = SemanticCommit(title="t", body=body, author="alice", timestamp=_TS)
        assert semantic.decode_message(semantic.encode_message(commit)) == ("t", body, "none")

    def test_decode_without_trailer(self):
        with pytest.raises(InvalidRepositoryError):
            semantic.decode_message("plain commit\n\nno trailer here\n")

    def test_decode_unknown_kind(self):
        with pytest.raises(InvalidRepositoryError):
            semantic.decode_message("t\n\nbody\n\nSemantic-Diff: general\n")

    def test_general_diffs_cannot_be_encoded(self):
        for diff in (GeneralDiff(hash="h"), NonReservedDiff(hash="h")):
            commit = SemanticCommit(title="t", diff=diff, author="alice", timestamp=_TS)
            with pytest.raises(InvalidRepositoryError):
                semantic.encode_message(commit)

    def test_multiline_title_rejected(self):
        with pytest.raises(ValidationError):
            SemanticCommit(title="two\nlines", author="alice", timestamp=_TS)

    def test_diff_from_dict(self):
        commit = SemanticCommit.model_validate(
            {"title": "t", "author": "alice", "timestamp": 0, "diff": {"kind": "none"}}
        )
        assert commit.diff == NoneDiff()


# ---------------------------------------------------------------------------
# Round trip through git
# ---------------------------------------------------------------------------


class TestSemanticCommits:
    @pytest.mark.parametrize(
        "body",
        ["line one\r\nline two", "bare\rreturn", "ends with crlf\r\n", "café ünïcode"],
    )
    def test_body_is_read_back_exactly(self, tmp_path: Path, body: str):
        backend = _init(tmp_path)
        commit = SemanticCommit(title="t", body=body, author="alice", timestamp=_TS)
        read = backend.read_semantic_commit(backend.create_semantic_commit(commit))
        assert read.body == body
        assert read == commit

    def test_none_diff_round_trip(self, tmp_path: Path):
        backend = _init(tmp_path)
        commit = SemanticCommit(
            title="Agenda item", body="Discuss the budget.", author="alice", timestamp=_TS
        )
        commit_hash = backend.create_semantic_commit(commit)

        assert backend.get_head() == commit_hash
        assert backend.read_semantic_commit(commit_hash) == commit

    def test_timestamp_is_truncated_to_seconds(self, tmp_path: Path):
        backend = _init(tmp_path)
        commit = SemanticCommit(title="t", author="alice", timestamp=1_700_000_000_999)
        read = backend.read_semantic_commit(backend.create_semantic_commit(commit))
        assert read.timestamp == 1_700_000_000_000

    def test_reserved_diff_round_trip(self, tmp_path: Path):
        backend = _init(tmp_path)
        state = _state()
        commit = SemanticCommit(
            title="Set up governance",
            diff=ReservedDiff(state=state),
            author="alice",
            timestamp=1_700_000_000_000,
        )
        commit_hash = backend.create_semantic_commit(commit)

        read = backend.read_semantic_commit(commit_hash)
        assert read == commit
        assert backend.read_reserved_state() == state
        assert (backend.path / "reserved" / "members" / "alice.json").is_file()

    def test_unchanged_reserved_state_still_reads_as_reserved(self, tmp_path: Path):
        backend = _init(tmp_path)
        diff = ReservedDiff(state=_state())
        backend.create_semantic_commit(
            SemanticCommit(title="first", diff=diff, author="alice", timestamp=_TS)
        )
        again = backend.create_semantic_commit(
            SemanticCommit(title="again", diff=diff, author="bob", timestamp=_TS)
        )
        read = backend.read_semantic_commit(again)
        assert read.diff == diff
        assert read.author == "bob"

    def test_reserved_state_replaces_previous(self, tmp_path: Path):
        backend = _init(tmp_path)
        backend.create_semantic_commit(
            SemanticCommit(
                title="v1", diff=ReservedDiff(state=_state()), author="alice", timestamp=_TS
            )
        )
        smaller = ReservedState(
            genesis_info=GenesisInfo(chain_name="testnet", genesis_block_hash="ab" * 32),
            members=[Member(name="alice", public_key="02aa")],
            consensus_leader_order=["alice"],
            version="0.2.0",
        )
        commit_hash = backend.create_semantic_commit(
            SemanticCommit(
                title="v2", diff=ReservedDiff(state=smaller), author="alice", timestamp=_TS
            )
        )

        assert backend.read_semantic_commit(commit_hash).diff.state == smaller
        assert not (backend.path / "reserved" / "members" / "bob.json").exists()

    def test_general_diff_rejected_without_commit(self, tmp_path: Path):
        backend = _init(tmp_path)
        head = backend.get_head()
        commit = SemanticCommit(
            title="t", diff=GeneralDiff(hash="deadbeef"), author="alice", timestamp=_TS
        )
        with pytest.raises(InvalidRepositoryError):
            backend.create_semantic_commit(commit)
        assert backend.get_head() == head

    def test_plain_commit_is_not_semantic(self, tmp_path: Path):
        backend = _init(tmp_path)
        with pytest.raises(InvalidRepositoryError):
            backend.read_semantic_commit(backend.get_head())
        plain = backend.create_commit("just a message", "alice", "a@x", _TS)
        with pytest.raises(InvalidRepositoryError):
            backend.read_semantic_commit(plain)

    def test_none_marked_commit_with_changes_rejected(self, tmp_path: Path):
        backend = _init(tmp_path)
        forged = backend.create_commit(
            "t\n\nbody\n\nSemantic-Diff: none\n", "alice", "a@x", _TS, _PATCH
        )
        with pytest.raises(InvalidRepositoryError):
            backend.read_semantic_commit(forged)

    def test_reserved_marked_commit_outside_reserved_rejected(self, tmp_path: Path):
        backend = _init(tmp_path)
        backend.create_semantic_commit(
            SemanticCommit(
                title="v1", diff=ReservedDiff(state=_state()), author="alice", timestamp=_TS
            )
        )
        forged = backend.create_commit(
            "t\n\nbody\n\nSemantic-Diff: reserved\n", "alice", "a@x", _TS, _PATCH
        )
        with pytest.raises(InvalidRepositoryError):
            backend.read_semantic_commit(forged)
