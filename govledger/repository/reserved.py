"""ReservedState — membership and consensus parameters kept in the working tree.

Layout under the working tree root::

    reserved/
      genesis_info.json
      members/<name>.json
      consensus_leader_order.json
      version
"""

from __future__ import annotations

import json
import logging
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from govledger.config import (
    GENESIS_INFO_FILE,
    LEADER_ORDER_FILE,
    MEMBERS_DIR,
    RESERVED_DIR,
    VERSION_FILE,
)
from govledger.repository.errors import InvalidRepositoryError

logger = logging.getLogger(__name__)


def validate_member_name(value: str) -> str:
    """Member names double as git author names and file names."""
    if not value:
        raise ValueError("member name must not be empty")
    if any(c in value for c in "<>\n\r/\\") or value != value.strip():
        raise ValueError(f"invalid member name: {value!r}")
    return value


MemberName = Annotated[str, AfterValidator(validate_member_name)]


class GenesisInfo(BaseModel):
    """Identity of the chain this repository records."""

    chain_name: str
    genesis_block_hash: str
    genesis_timestamp: int = 0


class Member(BaseModel):
    """A governance member and its voting powers."""

    name: MemberName
    public_key: str
    governance_voting_power: int = Field(default=0, ge=0)
    consensus_voting_power: int = Field(default=0, ge=0)
    governance_delegatee: Optional[str] = None
    consensus_delegatee: Optional[str] = None


class ReservedState(BaseModel):
    """Structured configuration materialised under ``reserved/``."""

    genesis_info: GenesisInfo
    members: list[Member] = Field(default_factory=list)
    consensus_leader_order: list[str] = Field(default_factory=list)
    version: str

    @field_validator("members")
    @classmethod
    def _sort_members(cls, members: list[Member]) -> list[Member]:
        # Stored one file per member, so decode order is name order.
        return sorted(members, key=lambda m: m.name)

    @model_validator(mode="after")
    def _check_references(self) -> ReservedState:
        names = [m.name for m in self.members]
        if len(set(names)) != len(names):
            raise ValueError("duplicate member names")
        known = set(names)
        for leader in self.consensus_leader_order:
            if leader not in known:
                raise ValueError(f"leader {leader!r} is not a member")
        for member in self.members:
            for delegatee in (member.governance_delegatee, member.consensus_delegatee):
                if delegatee is not None and delegatee not in known:
                    raise ValueError(
                        f"member {member.name!r} delegates to unknown {delegatee!r}"
                    )
        return self

    def get_member(self, name: str) -> Member | None:
        for member in self.members:
            if member.name == name:
                return member
        return None

    def to_files(self) -> dict[str, str]:
        """Encode into ``{relative path: file content}`` below ``reserved/``."""
        files = {
            f"{RESERVED_DIR}/{GENESIS_INFO_FILE}": _dump(self.genesis_info.model_dump(mode="json")),
            f"{RESERVED_DIR}/{LEADER_ORDER_FILE}": _dump(self.consensus_leader_order),
            f"{RESERVED_DIR}/{VERSION_FILE}": self.version + "\n",
        }
        for member in self.members:
            files[f"{RESERVED_DIR}/{MEMBERS_DIR}/{member.name}.json"] = _dump(
                member.model_dump(mode="json")
            )
        return files

    @classmethod
    def from_files(cls, files: Mapping[str, str]) -> ReservedState:
        """Decode from ``{relative path: file content}``.

        Raises
        ------
        InvalidRepositoryError
            If a file is missing, unparsable, or the state is inconsistent.
        """
        prefix = f"{RESERVED_DIR}/"
        member_prefix = f"{RESERVED_DIR}/{MEMBERS_DIR}/"
        try:
            genesis = json.loads(files[prefix + GENESIS_INFO_FILE])
            leader_order = json.loads(files[prefix + LEADER_ORDER_FILE])
            version = files[prefix + VERSION_FILE].strip()
            members = [
                json.loads(content)
                for path, content in sorted(files.items())
                if path.startswith(member_prefix) and path.endswith(".json")
            ]
            return cls.model_validate(
                {
                    "genesis_info": genesis,
                    "members": members,
                    "consensus_leader_order": leader_order,
                    "version": version,
                }
            )
        except KeyError as exc:
            raise InvalidRepositoryError(f"reserved state is missing {exc.args[0]}") from exc
        except (json.JSONDecodeError, ValidationError) as exc:
            raise InvalidRepositoryError(f"malformed reserved state: {exc}") from exc


def _dump(data: object) -> str:
    return json.dumps(data, indent=2, sort_keys=True) + "\n"


def read_reserved_state(root: str | Path) -> ReservedState:
    """Parse the reserved state from the working tree at *root*."""
    root = Path(root)
    reserved_dir = root / RESERVED_DIR
    if not reserved_dir.is_dir():
        raise InvalidRepositoryError(f"no reserved state in {root}")

    files: dict[str, str] = {}
    for path in reserved_dir.rglob("*"):
        if path.is_file():
            rel = path.relative_to(root).as_posix()
            try:
                files[rel] = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise InvalidRepositoryError(f"cannot read {rel}: {exc}") from exc
    return ReservedState.from_files(files)


def write_reserved_state(root: str | Path, state: ReservedState) -> list[str]:
    """Replace ``reserved/`` under *root* with *state*.

    Returns the relative paths written.
    """
    root = Path(root)
    reserved_dir = root / RESERVED_DIR
    if reserved_dir.exists():
        shutil.rmtree(reserved_dir)

    files = state.to_files()
    for rel, content in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    logger.debug("Wrote %d reserved-state files under %s", len(files), reserved_dir)
    return sorted(files)
