from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import logging

from agentbranch.branch_setup import BranchLifecycleManager
from agentbranch.config import AppConfig
from agentbranch.events import EventContext, EventDescriptor, normalize, parse_event_context
from agentbranch.github_gateway import GitHubGateway
from agentbranch.models import BranchState, EntitySnapshot
from agentbranch.observability import log_event


LOGGER = logging.getLogger("agentbranch.prepare")


@dataclass(frozen=True)
class PreparedRun:
    context: EventContext
    entity: EntitySnapshot
    branch: BranchState
    descriptor: EventDescriptor


def prepare_run(
    *,
    config: AppConfig,
    event_name: str,
    payload: Mapping[str, object],
    status_comment_id: str,
    github: GitHubGateway,
    branches: BranchLifecycleManager,
) -> PreparedRun:
    """Parse the event, set up the branch, then build the canonical descriptor.

    The descriptor is built last because issue events and issue comments need
    the branch names that setup produces.
    """
    context = parse_event_context(event_name, payload)
    entity = github.get_entity(context.entity_number, is_pr=context.is_pr)
    branch = branches.setup(entity, event_name=context.event_name)
    descriptor = normalize(
        context.event_name,
        payload,
        context.is_pr,
        repository=config.repo.full_name,
        status_comment_id=status_comment_id,
        trigger=config.trigger,
        branch=branch,
    )
    log_event(
        LOGGER,
        "run_prepared",
        event_name=context.event_name,
        entity_number=entity.number,
        base_branch=branch.base_branch,
        working_branch=branch.working_branch,
        current_branch=branch.current_branch,
    )
    return PreparedRun(context=context, entity=entity, branch=branch, descriptor=descriptor)
