"""Value types of the commit graph and its semantic view."""

from __future__ import annotations

import re
from typing import Annotated, Literal, NamedTuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from govledger.repository.reserved import MemberName, ReservedState

# SHA-1 object names, or SHA-256 in repositories created with that format
_HASH_RE = re.compile(r"^(?:[0-9a-f]{40}|[0-9a-f]{64})$")

# Branch and tag names are plain strings resolved under refs/heads, refs/tags
Branch = str
Tag = str


class CommitHash(str):
    """Full hexadecimal object name of a commit.

    Behaves as an ordinary string; construction validates the format and
    normalises to lower case.
    """

    def __new__(cls, value: str) -> CommitHash:
        normalised = str(value).strip().lower()
        if not _HASH_RE.match(normalised):
            raise ValueError(f"not a full commit hash: {value!r}")
        return super().__new__(cls, normalised)

    def __repr__(self) -> str:
        return f"CommitHash({str(self)!r})"

    @property
    def short(self) -> str:
        return self[:7]


class RemoteDescriptor(NamedTuple):
    """A configured remote: ``(name, url)``."""

    name: str
    url: str


class RemoteTrackingBranch(NamedTuple):
    """A remote-tracking ref: ``(remote, branch, commit_hash)``."""

    remote: str
    branch: str
    commit_hash: CommitHash


# ---------------------------------------------------------------------------
# Diff variants
# ---------------------------------------------------------------------------


class NoneDiff(BaseModel):
    """The commit carries no content change."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["none"] = "none"


class ReservedDiff(BaseModel):
    """The commit replaces the reserved state."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["reserved"] = "reserved"
    state: ReservedState


class GeneralDiff(BaseModel):
    """Arbitrary content change, identified by the hash of its payload."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["general"] = "general"
    hash: str


class NonReservedDiff(BaseModel):
    """Content change confined to files outside the reserved state."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["non_reserved"] = "non_reserved"
    hash: str


Diff = Annotated[
    Union[NoneDiff, ReservedDiff, GeneralDiff, NonReservedDiff],
    Field(discriminator="kind"),
]

# Only these kinds may be written through the semantic path
SEMANTIC_DIFF_KINDS = ("none", "reserved")


class SemanticCommit(BaseModel):
    """A commit read as a governance action.

    ``author`` and ``timestamp`` describe the physical git commit only;
    they carry no protocol meaning.  ``timestamp`` is in milliseconds.
    """

    title: str
    body: str = ""
    diff: Diff = Field(default_factory=NoneDiff)
    author: MemberName
    timestamp: int

    @field_validator("title")
    @classmethod
    def _single_line(cls, value: str) -> str:
        if "\n" in value or "\r" in value:
            raise ValueError("title must be a single line")
        return value
