from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
import logging
import re
from typing import cast

from agentbranch.base_branch import resolve_base_branch
from agentbranch.branch_advisor import AdvisorContext, BranchAdvisor
from agentbranch.config import BranchConfig, RepoConfig
from agentbranch.git_ops import GitCheckout
from agentbranch.github_gateway import GitHubGateway
from agentbranch.models import BranchState, EntitySnapshot
from agentbranch.observability import log_event


LOGGER = logging.getLogger("agentbranch.branch_setup")
_INVALID_BRANCH_CHARS = re.compile(r"[^a-z0-9]+")
_MAX_COLLISION_SUFFIXES = 5


class BranchCollisionError(RuntimeError):
    pass


def sanitize_branch_name(name: str, *, max_length: int) -> str:
    """Lowercase, collapse anything outside ``[a-z0-9]`` into single hyphens, truncate.

    Idempotent: a sanitized name passes through unchanged.
    """
    if max_length < 1:
        raise ValueError("max_length must be >= 1")
    slug = _INVALID_BRANCH_CHARS.sub("-", name.strip().lower()).strip("-")
    return slug[:max_length].rstrip("-")


def format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y%m%d-%H%M")


def build_branch_name(
    *,
    prefix: str,
    entity_kind: str,
    entity_number: int,
    max_length: int,
    timestamp: str | None = None,
    suffix: str | None = None,
) -> str:
    identity = f"{entity_kind}-{entity_number}"
    lead = _INVALID_BRANCH_CHARS.sub("-", prefix.strip().lower()).lstrip("-")
    kept = sanitize_branch_name(
        "-".join(part for part in (identity, timestamp, suffix) if part),
        max_length=max_length,
    )
    # The prefix gives way first so "<kind>-<number>" and any retry tail stay distinct.
    room = max(max_length - len(kept), 0)
    return sanitize_branch_name(f"{lead[:room]}{kept}", max_length=max_length)


class BranchLifecycleManager:
    def __init__(
        self,
        *,
        repo: RepoConfig,
        config: BranchConfig,
        github: GitHubGateway,
        git: GitCheckout,
        advisor: BranchAdvisor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._config = config
        self._github = github
        self._git = git
        self._advisor = advisor
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def setup(self, entity: EntitySnapshot, *, event_name: str) -> BranchState:
        if entity.is_pr and entity.state == "open":
            return self._checkout_pull_request(entity)
        if entity.is_pr:
            log_event(
                LOGGER,
                "pr_not_open_creating_branch",
                pr_number=entity.number,
                state=entity.state,
            )
        return self._create_working_branch(entity, event_name=event_name)

    def _checkout_pull_request(self, entity: EntitySnapshot) -> BranchState:
        head_ref = cast(str, entity.head_ref)
        base_ref = cast(str, entity.base_ref)
        depth = max(entity.commit_count or 0, self._config.min_fetch_depth)
        self._git.fetch_branch(head_ref, depth=depth)
        self._git.checkout(head_ref)
        log_event(
            LOGGER,
            "pr_branch_checked_out",
            pr_number=entity.number,
            branch=head_ref,
            base_branch=base_ref,
            commit_count=entity.commit_count,
            fetch_depth=depth,
        )
        return BranchState(base_branch=base_ref, current_branch=head_ref)

    def _create_working_branch(self, entity: EntitySnapshot, *, event_name: str) -> BranchState:
        source_branch = resolve_base_branch(
            explicit=self._config.base_branch,
            guidance_prompt=self._config.base_branch_prompt,
            fetch_default_branch=self._github.get_default_branch,
            advisor=self._advisor,
            advisor_context=AdvisorContext(
                repository=self._repo.full_name,
                event_name=event_name,
                entity=entity,
            ),
        )
        # Raises RefNotFoundError when the source branch is missing on the remote.
        source_sha = self._github.get_ref(f"heads/{source_branch}")
        branch = self._choose_branch_name(entity)

        if self._config.use_commit_signing:
            log_event(
                LOGGER,
                "working_branch_deferred",
                entity_number=entity.number,
                branch=branch,
                base_branch=source_branch,
            )
            return BranchState(
                base_branch=source_branch,
                working_branch=branch,
                current_branch=source_branch,
            )

        self._git.fetch_branch(source_branch, depth=self._config.min_fetch_depth)
        self._git.create_branch(branch, start_point=source_sha)
        log_event(
            LOGGER,
            "working_branch_created",
            entity_number=entity.number,
            branch=branch,
            base_branch=source_branch,
            source_sha=source_sha,
        )
        return BranchState(
            base_branch=source_branch,
            working_branch=branch,
            current_branch=branch,
        )

    def _choose_branch_name(self, entity: EntitySnapshot) -> str:
        timestamp = (
            format_timestamp(self._clock()) if self._config.use_timestamp_suffix else None
        )
        candidate = self._branch_name(entity, timestamp=timestamp)
        policy = self._config.on_collision
        if policy == "ignore" or not self._github.branch_exists(candidate):
            return candidate

        log_event(
            LOGGER,
            "working_branch_collision",
            entity_number=entity.number,
            branch=candidate,
            policy=policy,
        )
        if policy == "fail":
            raise BranchCollisionError(f"Branch {candidate!r} already exists on the remote")

        stamp = timestamp or format_timestamp(self._clock())
        suffixes: list[str | None] = [None] if timestamp is None else []
        suffixes.extend(str(n) for n in range(2, 2 + _MAX_COLLISION_SUFFIXES))
        for suffix in suffixes:
            retry = self._branch_name(entity, timestamp=stamp, suffix=suffix)
            if retry != candidate and not self._github.branch_exists(retry):
                return retry
        raise BranchCollisionError(
            f"Could not find a free branch name for {entity.short_kind} #{entity.number}"
        )

    def _branch_name(
        self, entity: EntitySnapshot, *, timestamp: str | None, suffix: str | None = None
    ) -> str:
        return build_branch_name(
            prefix=self._config.prefix,
            entity_kind=entity.short_kind,
            entity_number=entity.number,
            max_length=self._config.max_length,
            timestamp=timestamp,
            suffix=suffix,
        )
