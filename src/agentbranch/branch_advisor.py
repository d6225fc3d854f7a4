from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging

import anthropic

from agentbranch.config import OAUTH_TOKEN_ENV, AdvisorConfig
from agentbranch.github_gateway import GitHubGateway
from agentbranch.models import EntitySnapshot
from agentbranch.observability import log_event


LOGGER = logging.getLogger("agentbranch.branch_advisor")
_QUOTE_CHARS = "`'\""


class AdvisorDegradedError(RuntimeError):
    """No trustworthy suggestion could be produced; callers fall back."""


@dataclass(frozen=True)
class AdvisorContext:
    repository: str
    event_name: str
    entity: EntitySnapshot


class BranchAdvisor(ABC):
    def suggest(self, context: AdvisorContext, guidance: str) -> str | None:
        """Return a validated base branch name, or None when no suggestion can be trusted.

        Never raises: every failure is logged and converted to None.
        """
        try:
            branch = self._suggest(context, guidance)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "base_branch_advisor_degraded",
                entity_number=context.entity.number,
                error_type=type(exc).__name__,
                reason=str(exc),
            )
            return None
        log_event(
            LOGGER,
            "base_branch_advisor_suggested",
            entity_number=context.entity.number,
            branch=branch,
        )
        return branch

    @abstractmethod
    def _suggest(self, context: AdvisorContext, guidance: str) -> str:
        """Produce a branch name present in the live branch list, or raise."""


class AnthropicBranchAdvisor(BranchAdvisor):
    def __init__(
        self,
        *,
        github: GitHubGateway,
        config: AdvisorConfig,
        api_key: str | None,
        timeout_seconds: float = 30,
        client: anthropic.Anthropic | None = None,
    ) -> None:
        self._github = github
        self._config = config
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._client = client

    def _suggest(self, context: AdvisorContext, guidance: str) -> str:
        if self._client is None and not self._api_key:
            raise AdvisorDegradedError(
                f"No API key available (set {self._config.api_key_env} or {OAUTH_TOKEN_ENV})"
            )

        default_branch = self._github.get_default_branch()
        branches = self._github.list_branches()
        system_prompt, user_prompt = build_advisor_prompts(
            context=context,
            guidance=guidance,
            default_branch=default_branch,
            branches=branches,
        )
        candidate = _clean_candidate(self._complete(system_prompt, user_prompt))
        if not candidate:
            raise AdvisorDegradedError("Completion returned an empty branch name")
        if candidate not in branches:
            raise AdvisorDegradedError(
                f"Suggested branch {candidate!r} is not in the repository branch list"
            )
        return candidate

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        client = self._client
        if client is None:
            client = anthropic.Anthropic(
                api_key=self._api_key,
                timeout=self._timeout_seconds,
                max_retries=0,
            )
        response = client.messages.create(
            model=self._config.model,
            max_tokens=self._config.max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        for block in response.content:
            if getattr(block, "type", None) == "text":
                return str(getattr(block, "text", ""))
        return ""


def build_advisor_prompts(
    *,
    context: AdvisorContext,
    guidance: str,
    default_branch: str,
    branches: tuple[str, ...],
) -> tuple[str, str]:
    entity = context.entity
    entity_label = "Pull Request" if entity.is_pr else "Issue"
    entity_type = "pull_request" if entity.is_pr else "issue"
    system_prompt = f"""
You are a Git branch expert helping determine the appropriate base branch for a new feature branch.

{guidance.strip()}

Repository context:
- Repository: {context.repository}
- Default branch: {default_branch}
- Available branches: {", ".join(branches)}

Your task is to analyze the issue/PR context and determine the most appropriate base branch. Consider factors like:
- Branch naming conventions
- Development workflow patterns
- Feature vs hotfix branches
- Release branches
- The content and purpose of the issue/PR

Respond with ONLY the branch name, nothing else.
""".strip()
    user_prompt = f"""
{entity_label} #{entity.number}:
{entity.title}
{entity.body}

Based on the above {entity_type} details, which branch should be used as the base branch?
""".strip()
    return system_prompt, user_prompt


def _clean_candidate(text: str) -> str:
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    if not lines:
        return ""
    return lines[0].strip(_QUOTE_CHARS).strip()
