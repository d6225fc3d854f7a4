from __future__ import annotations

from collections.abc import Callable
import logging

from agentbranch.branch_advisor import AdvisorContext, BranchAdvisor
from agentbranch.observability import log_event


LOGGER = logging.getLogger("agentbranch.base_branch")


def resolve_base_branch(
    *,
    explicit: str | None,
    guidance_prompt: str | None,
    fetch_default_branch: Callable[[], str],
    advisor: BranchAdvisor | None = None,
    advisor_context: AdvisorContext | None = None,
) -> str:
    """Pick the branch new work is created from.

    Order: explicit configuration, then an advisor suggestion driven by
    ``guidance_prompt``, then the repository default branch. The explicit
    value is trusted as-is; its existence is checked by the caller.
    """
    if explicit:
        log_event(LOGGER, "base_branch_resolved", source="explicit", branch=explicit)
        return explicit

    if guidance_prompt:
        if advisor is None or advisor_context is None:
            log_event(
                LOGGER,
                "base_branch_advisor_unavailable",
                has_advisor=advisor is not None,
                has_context=advisor_context is not None,
            )
        else:
            suggestion = advisor.suggest(advisor_context, guidance_prompt)
            if suggestion:
                log_event(LOGGER, "base_branch_resolved", source="advisor", branch=suggestion)
                return suggestion

    default_branch = fetch_default_branch()
    log_event(LOGGER, "base_branch_resolved", source="default", branch=default_branch)
    return default_branch
