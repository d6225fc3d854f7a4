from __future__ import annotations

from types import SimpleNamespace

import pytest

from agentbranch.branch_advisor import (
    AdvisorContext,
    AnthropicBranchAdvisor,
    build_advisor_prompts,
)
from agentbranch.config import AdvisorConfig
from agentbranch.github_gateway import GitHubApiError
from agentbranch.models import EntitySnapshot
from agentbranch.observability import configure_logging


class FakeGitHub:
    def __init__(
        self,
        *,
        branches: tuple[str, ...] = ("main", "develop", "release-1.2"),
        fail: bool = False,
    ) -> None:
        self.branches = branches
        self.fail = fail

    def get_default_branch(self) -> str:
        return "main"

    def list_branches(self) -> tuple[str, ...]:
        if self.fail:
            raise GitHubApiError("GitHub API GET branches failed with status 502", status_code=502)
        return self.branches


class FakeMessages:
    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[dict[str, object]] = []

    def create(self, **kwargs: object) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.text)])


def _context() -> AdvisorContext:
    return AdvisorContext(
        repository="o/r",
        event_name="issues",
        entity=EntitySnapshot(
            kind="issue",
            number=9,
            state="open",
            title="Crash on release branch",
            body="Reproduces on 1.2 only",
        ),
    )


def _advisor(
    messages: FakeMessages, *, github: FakeGitHub | None = None
) -> AnthropicBranchAdvisor:
    return AnthropicBranchAdvisor(
        github=github or FakeGitHub(),  # type: ignore[arg-type]
        config=AdvisorConfig(),
        api_key="test-key",
        client=SimpleNamespace(messages=messages),  # type: ignore[arg-type]
    )


def test_suggest_returns_known_branch_and_sends_bounded_request() -> None:
    messages = FakeMessages(text="release-1.2\n")

    suggestion = _advisor(messages).suggest(_context(), "Hotfixes go to the release branch.")

    assert suggestion == "release-1.2"
    assert len(messages.calls) == 1
    call = messages.calls[0]
    assert call["max_tokens"] == 100
    assert call["model"] == AdvisorConfig().model
    system = call["system"]
    assert isinstance(system, str)
    assert "Hotfixes go to the release branch." in system
    assert "Available branches: main, develop, release-1.2" in system
    user_messages = call["messages"]
    assert isinstance(user_messages, list)
    assert "Issue #9:" in user_messages[0]["content"]
    assert "Crash on release branch" in user_messages[0]["content"]


def test_suggest_strips_quotes_from_candidate() -> None:
    assert _advisor(FakeMessages(text="`develop`")).suggest(_context(), "guide") == "develop"


def test_unknown_suggestion_is_discarded(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=True)

    suggestion = _advisor(FakeMessages(text="hotfix-9")).suggest(_context(), "guide")

    assert suggestion is None
    stderr = capsys.readouterr().err
    assert "event=base_branch_advisor_degraded" in stderr
    assert "error_type=AdvisorDegradedError" in stderr


def test_empty_suggestion_is_discarded() -> None:
    assert _advisor(FakeMessages(text="  \n")).suggest(_context(), "guide") is None


def test_transport_failure_becomes_none() -> None:
    messages = FakeMessages(error=RuntimeError("connection reset"))

    assert _advisor(messages).suggest(_context(), "guide") is None


def test_branch_list_failure_becomes_none() -> None:
    messages = FakeMessages(text="develop")

    suggestion = _advisor(messages, github=FakeGitHub(fail=True)).suggest(_context(), "guide")

    assert suggestion is None
    assert messages.calls == []


def test_missing_credentials_becomes_none_without_network() -> None:
    github = FakeGitHub(fail=True)
    advisor = AnthropicBranchAdvisor(
        github=github,  # type: ignore[arg-type]
        config=AdvisorConfig(),
        api_key=None,
    )

    assert advisor.suggest(_context(), "guide") is None


def test_build_advisor_prompts_for_pull_request() -> None:
    context = AdvisorContext(
        repository="o/r",
        event_name="pull_request",
        entity=EntitySnapshot(
            kind="pull_request",
            number=7,
            state="closed",
            title="Old work",
            body="",
            head_ref="feature",
            base_ref="main",
            commit_count=2,
        ),
    )

    system, user = build_advisor_prompts(
        context=context, guidance="  Use develop.  ", default_branch="main", branches=("main",)
    )

    assert "Use develop." in system
    assert "Default branch: main" in system
    assert system.endswith("Respond with ONLY the branch name, nothing else.")
    assert user.startswith("Pull Request #7:")
    assert "pull_request details" in user
