"""Semantic commit message codec.

A semantic commit message is stored verbatim as::

    <title>

    <body>

    Semantic-Diff: <kind>

The trailer records which diff variant was written, so that a commit
whose reserved state is byte-identical to its parent still decodes as
``reserved``.  Commits without the trailer are not semantic commits.
"""

from __future__ import annotations

from govledger.config import SEMANTIC_EMAIL_DOMAIN, SEMANTIC_TRAILER
from govledger.repository.errors import InvalidRepositoryError
from govledger.repository.models import SEMANTIC_DIFF_KINDS, SemanticCommit


def check_semantic_diff(commit: SemanticCommit) -> str:
    """Return the diff kind of *commit*, rejecting kinds that cannot be written."""
    kind = commit.diff.kind
    if kind not in SEMANTIC_DIFF_KINDS:
        raise InvalidRepositoryError(
            f"semantic commit diff must be one of {SEMANTIC_DIFF_KINDS}, got {kind!r}"
        )
    return kind


def encode_message(commit: SemanticCommit) -> str:
    kind = check_semantic_diff(commit)
    return f"{commit.title}\n\n{commit.body}\n\n{SEMANTIC_TRAILER}: {kind}\n"


def decode_message(message: str) -> tuple[str, str, str]:
    """Split a stored message into ``(title, body, diff kind)``.

    Raises
    ------
    InvalidRepositoryError
        If the message was not produced by :func:`encode_message`.
    """
    if message.endswith("\n"):
        message = message[:-1]

    content, sep, trailer = message.rpartition("\n\n")
    key, _, kind = trailer.partition(": ")
    if not sep or key != SEMANTIC_TRAILER:
        raise InvalidRepositoryError("not a semantic commit: trailer missing")
    if kind not in SEMANTIC_DIFF_KINDS:
        raise InvalidRepositoryError(f"not a semantic commit: unknown diff kind {kind!r}")

    title, sep, body = content.partition("\n\n")
    if not sep or "\n" in title:
        raise InvalidRepositoryError("not a semantic commit: malformed title")
    return title, body, kind


def author_email(member: str) -> str:
    return f"{member}@{SEMANTIC_EMAIL_DOMAIN}"
