from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


EntityKind = Literal["issue", "pull_request"]
EntityState = Literal["open", "closed", "merged"]


@dataclass(frozen=True)
class EntitySnapshot:
    """Read-only view of the issue or pull request that triggered a run."""

    kind: EntityKind
    number: int
    state: EntityState
    title: str
    body: str
    head_ref: str | None = None
    base_ref: str | None = None
    commit_count: int | None = None

    def __post_init__(self) -> None:
        if self.kind == "pull_request" and (not self.head_ref or not self.base_ref):
            raise ValueError(f"Pull request #{self.number} snapshot requires head and base refs")
        if self.kind == "issue" and self.state == "merged":
            raise ValueError(f"Issue #{self.number} cannot be in merged state")

    @property
    def is_pr(self) -> bool:
        return self.kind == "pull_request"

    @property
    def short_kind(self) -> str:
        return "pr" if self.is_pr else "issue"


@dataclass(frozen=True)
class BranchState:
    base_branch: str
    current_branch: str
    working_branch: str | None = None

    def __post_init__(self) -> None:
        if not self.base_branch:
            raise ValueError("base_branch must be non-empty")
        if not self.current_branch:
            raise ValueError("current_branch must be non-empty")
        if self.working_branch is not None and not self.working_branch:
            raise ValueError("working_branch must be non-empty when present")
