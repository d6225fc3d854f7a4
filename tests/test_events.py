from __future__ import annotations

from dataclasses import fields

import pytest

from agentbranch.config import TriggerConfig
from agentbranch.events import (
    CommonFields,
    GenericCommentEvent,
    IssueAssignedEvent,
    IssueLabeledEvent,
    IssueOpenedEvent,
    PullRequestEvent,
    ReviewCommentEvent,
    ReviewEvent,
    UnsupportedActionError,
    UnsupportedEventError,
    ValidationError,
    descriptor_to_dict,
    event_type_and_context,
    normalize,
    parse_event_context,
)
from agentbranch.models import BranchState


def _issue_branch(number: int = 101) -> BranchState:
    name = f"claude-issue-{number}"
    return BranchState(base_branch="main", working_branch=name, current_branch=name)


def _pr_branch() -> BranchState:
    return BranchState(base_branch="main", current_branch="feature-x")


def _issues_payload(action: str, number: int = 101) -> dict[str, object]:
    return {
        "action": action,
        "issue": {"number": number, "title": "Bug", "user": {"login": "reporter"}},
    }


def _review_comment_payload(body: str | None = "@claude tighten this") -> dict[str, object]:
    return {
        "action": "created",
        "pull_request": {"number": 42},
        "comment": {"id": 555, "body": body, "user": {"login": "reviewer"}},
    }


def _review_payload(body: str | None = "@claude please address") -> dict[str, object]:
    return {
        "action": "submitted",
        "pull_request": {"number": 42},
        "review": {"body": body, "user": {"login": "reviewer"}},
    }


def _issue_comment_payload(*, on_pr: bool, number: int = 5) -> dict[str, object]:
    issue: dict[str, object] = {"number": number, "user": {"login": "author"}}
    if on_pr:
        issue["pull_request"] = {"url": "https://api.github.com/repos/o/r/pulls/5"}
    return {
        "action": "created",
        "issue": issue,
        "comment": {"id": 777, "body": "@claude do it", "user": {"login": "commenter"}},
    }


def _normalize(
    event_name: str,
    payload: dict[str, object],
    entity_is_pr: bool,
    *,
    trigger: TriggerConfig | None = None,
    branch: BranchState | None = None,
):
    return normalize(
        event_name,
        payload,
        entity_is_pr,
        repository="o/r",
        status_comment_id="123",
        trigger=trigger or TriggerConfig(),
        branch=branch,
    )


def test_review_comment_event_normalizes() -> None:
    descriptor = _normalize(
        "pull_request_review_comment", _review_comment_payload(), True, branch=_pr_branch()
    )

    assert descriptor.event == ReviewCommentEvent(
        pr_number=42,
        comment_body="@claude tighten this",
        comment_id="555",
        working_branch=None,
        base_branch="main",
    )
    assert descriptor.common.trigger_username == "reviewer"
    assert descriptor.common.trigger_phrase == "@claude"
    assert descriptor.common.repository == "o/r"


def test_review_event_normalizes_without_branch() -> None:
    descriptor = _normalize("pull_request_review", _review_payload(), True)

    assert descriptor.event == ReviewEvent(pr_number=42, comment_body="@claude please address")
    assert descriptor.common.trigger_username == "reviewer"


@pytest.mark.parametrize("event_name", ["pull_request_review_comment", "pull_request_review"])
def test_review_events_require_pr_entity(event_name: str) -> None:
    payload = (
        _review_comment_payload()
        if event_name == "pull_request_review_comment"
        else _review_payload()
    )

    with pytest.raises(ValidationError) as excinfo:
        _normalize(event_name, payload, False)

    assert excinfo.value.field_name == "is_pr"
    assert excinfo.value.event_kind == event_name


@pytest.mark.parametrize("event_name", ["pull_request_review_comment", "pull_request_review"])
def test_review_events_require_body(event_name: str) -> None:
    payload = (
        _review_comment_payload(body="   ")
        if event_name == "pull_request_review_comment"
        else _review_payload(body=None)
    )

    with pytest.raises(ValidationError, match="comment_body is required"):
        _normalize(event_name, payload, True)


def test_review_comment_requires_pr_number() -> None:
    payload = _review_comment_payload()
    payload["pull_request"] = {}

    with pytest.raises(ValidationError) as excinfo:
        _normalize("pull_request_review_comment", payload, True)

    assert excinfo.value.field_name == "pr_number"


def test_issue_comment_on_pr_normalizes_without_branch() -> None:
    descriptor = _normalize("issue_comment", _issue_comment_payload(on_pr=True), True)

    assert descriptor.event == GenericCommentEvent(
        comment_id="777",
        comment_body="@claude do it",
        is_pr=True,
        pr_number=5,
    )
    assert descriptor.common.trigger_username == "commenter"


def test_issue_comment_on_issue_requires_branch_setup_first() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _normalize("issue_comment", _issue_comment_payload(on_pr=False), False)

    assert excinfo.value.field_name == "working_branch"
    assert excinfo.value.event_kind == "issue_comment"


def test_issue_comment_on_issue_normalizes_after_branch_setup() -> None:
    descriptor = _normalize(
        "issue_comment",
        _issue_comment_payload(on_pr=False),
        False,
        branch=_issue_branch(5),
    )

    assert descriptor.event == GenericCommentEvent(
        comment_id="777",
        comment_body="@claude do it",
        is_pr=False,
        issue_number=5,
        working_branch="claude-issue-5",
        base_branch="main",
    )
    assert descriptor.common.working_branch == "claude-issue-5"


@pytest.mark.parametrize("missing", ["id", "body"])
def test_issue_comment_requires_comment_fields(missing: str) -> None:
    payload = _issue_comment_payload(on_pr=True)
    comment = dict(payload["comment"])  # type: ignore[arg-type]
    del comment[missing]
    payload["comment"] = comment

    with pytest.raises(ValidationError) as excinfo:
        _normalize("issue_comment", payload, True)

    assert excinfo.value.field_name == f"comment_{missing}"


def test_generic_comment_variant_checks_issue_fields_in_order() -> None:
    with pytest.raises(ValidationError, match="base_branch"):
        GenericCommentEvent(
            comment_id="1",
            comment_body="b",
            is_pr=False,
            issue_number=3,
            working_branch="claude-issue-3",
        )
    with pytest.raises(ValidationError, match="issue_number"):
        GenericCommentEvent(
            comment_id="1",
            comment_body="b",
            is_pr=False,
            working_branch="claude-issue-3",
            base_branch="main",
        )


def test_issue_opened_normalizes() -> None:
    descriptor = _normalize("issues", _issues_payload("opened"), False, branch=_issue_branch())

    assert descriptor.event == IssueOpenedEvent(
        issue_number=101, base_branch="main", working_branch="claude-issue-101"
    )
    assert descriptor.common.trigger_username == "reporter"


def test_issue_labeled_requires_label_trigger() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _normalize("issues", _issues_payload("labeled"), False, branch=_issue_branch())

    assert excinfo.value.field_name == "label_trigger"

    descriptor = _normalize(
        "issues",
        _issues_payload("labeled"),
        False,
        trigger=TriggerConfig(label_trigger="claude"),
        branch=_issue_branch(),
    )
    assert descriptor.event == IssueLabeledEvent(
        issue_number=101,
        base_branch="main",
        working_branch="claude-issue-101",
        label_trigger="claude",
    )


def test_issue_assigned_without_trigger_or_direct_prompt_cites_assignee_trigger() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _normalize("issues", _issues_payload("assigned"), False, branch=_issue_branch())

    assert excinfo.value.field_name == "assignee_trigger"
    assert "assignee_trigger is required" in str(excinfo.value)


def test_issue_assigned_accepts_direct_prompt_instead_of_assignee() -> None:
    descriptor = _normalize(
        "issues",
        _issues_payload("assigned"),
        False,
        trigger=TriggerConfig(direct_prompt="Fix the flaky test"),
        branch=_issue_branch(),
    )

    assert isinstance(descriptor.event, IssueAssignedEvent)
    assert descriptor.event.assignee_trigger is None
    assert descriptor.common.direct_prompt == "Fix the flaky test"


def test_issue_event_rejects_unknown_action() -> None:
    with pytest.raises(UnsupportedActionError, match="closed"):
        _normalize("issues", _issues_payload("closed"), False, branch=_issue_branch())


@pytest.mark.parametrize(
    ("branch", "entity_is_pr", "payload", "missing"),
    [
        (_issue_branch(), False, {"issue": {"number": 101}}, "event_action"),
        (_issue_branch(), False, {"action": "opened", "issue": {}}, "issue_number"),
        (_issue_branch(), True, _issues_payload("opened"), "is_pr"),
        (None, False, _issues_payload("opened"), "base_branch"),
        (
            BranchState(base_branch="main", current_branch="main"),
            False,
            _issues_payload("opened"),
            "working_branch",
        ),
    ],
)
def test_issue_events_require_shared_fields(
    branch: BranchState | None,
    entity_is_pr: bool,
    payload: dict[str, object],
    missing: str,
) -> None:
    with pytest.raises(ValidationError) as excinfo:
        _normalize("issues", payload, entity_is_pr, branch=branch)

    assert excinfo.value.field_name == missing


def test_pull_request_event_carries_action_through() -> None:
    payload = {"action": "synchronize", "pull_request": {"number": 9}}

    descriptor = _normalize("pull_request", payload, True)

    assert descriptor.event == PullRequestEvent(pr_number=9, event_action="synchronize")
    assert descriptor.common.trigger_username is None


def test_pull_request_event_requires_pr_entity() -> None:
    with pytest.raises(ValidationError, match="is_pr"):
        _normalize("pull_request", {"action": "opened", "pull_request": {"number": 9}}, False)


def test_unknown_event_kind_is_rejected() -> None:
    with pytest.raises(UnsupportedEventError, match="Unsupported event type: push"):
        _normalize("push", {"ref": "refs/heads/main"}, False)


def test_variants_expose_only_their_fields() -> None:
    assert [f.name for f in fields(IssueOpenedEvent)] == [
        "issue_number",
        "base_branch",
        "working_branch",
    ]
    assert [f.name for f in fields(IssueLabeledEvent)] == [
        "issue_number",
        "base_branch",
        "working_branch",
        "label_trigger",
    ]
    assert "label_trigger" not in {f.name for f in fields(IssueAssignedEvent)}
    assert IssueLabeledEvent.event_name == "issues"
    assert IssueLabeledEvent.event_action == "labeled"


def test_common_fields_require_status_comment_id() -> None:
    with pytest.raises(ValidationError, match="status_comment_id"):
        CommonFields(repository="o/r", status_comment_id="", trigger_phrase="@claude")


def test_common_fields_carry_trigger_settings() -> None:
    trigger = TriggerConfig(
        phrase="@bot",
        custom_instructions="Be terse",
        allowed_tools=("Bash(npm test)",),
        disallowed_tools=("WebSearch",),
    )

    descriptor = _normalize("pull_request_review", _review_payload(), True, trigger=trigger)

    assert descriptor.common.trigger_phrase == "@bot"
    assert descriptor.common.custom_instructions == "Be terse"
    assert descriptor.common.allowed_tools == ("Bash(npm test)",)
    assert descriptor.common.disallowed_tools == ("WebSearch",)


@pytest.mark.parametrize(
    ("event_name", "payload", "is_pr", "trigger", "branch", "expected"),
    [
        (
            "pull_request_review_comment",
            _review_comment_payload(),
            True,
            TriggerConfig(),
            None,
            ("REVIEW_COMMENT", "PR review comment with '@claude'"),
        ),
        (
            "pull_request_review",
            _review_payload(),
            True,
            TriggerConfig(),
            None,
            ("PR_REVIEW", "PR review with '@claude'"),
        ),
        (
            "issue_comment",
            _issue_comment_payload(on_pr=True),
            True,
            TriggerConfig(),
            None,
            ("GENERAL_COMMENT", "issue comment with '@claude'"),
        ),
        (
            "issues",
            _issues_payload("opened"),
            False,
            TriggerConfig(),
            _issue_branch(),
            ("ISSUE_CREATED", "new issue with '@claude' in body"),
        ),
        (
            "issues",
            _issues_payload("labeled"),
            False,
            TriggerConfig(label_trigger="claude"),
            _issue_branch(),
            ("ISSUE_LABELED", "issue labeled with 'claude'"),
        ),
        (
            "issues",
            _issues_payload("assigned"),
            False,
            TriggerConfig(assignee_trigger="claude-bot"),
            _issue_branch(),
            ("ISSUE_ASSIGNED", "issue assigned to 'claude-bot'"),
        ),
        (
            "issues",
            _issues_payload("assigned"),
            False,
            TriggerConfig(direct_prompt="go"),
            _issue_branch(),
            ("ISSUE_ASSIGNED", "issue assigned event"),
        ),
        (
            "pull_request",
            {"action": "opened", "pull_request": {"number": 1}},
            True,
            TriggerConfig(),
            None,
            ("PULL_REQUEST", "pull request opened"),
        ),
        (
            "pull_request",
            {"pull_request": {"number": 1}},
            True,
            TriggerConfig(),
            None,
            ("PULL_REQUEST", "pull request event"),
        ),
    ],
)
def test_event_type_and_context_covers_every_variant(
    event_name: str,
    payload: dict[str, object],
    is_pr: bool,
    trigger: TriggerConfig,
    branch: BranchState | None,
    expected: tuple[str, str],
) -> None:
    descriptor = _normalize(event_name, payload, is_pr, trigger=trigger, branch=branch)

    assert event_type_and_context(descriptor) == expected


def test_descriptor_to_dict_drops_absent_fields() -> None:
    descriptor = _normalize(
        "issues",
        _issues_payload("labeled"),
        False,
        trigger=TriggerConfig(label_trigger="claude", allowed_tools=("Edit",)),
        branch=_issue_branch(),
    )

    data = descriptor_to_dict(descriptor)

    assert data == {
        "repository": "o/r",
        "status_comment_id": "123",
        "trigger_phrase": "@claude",
        "trigger_username": "reporter",
        "allowed_tools": ["Edit"],
        "working_branch": "claude-issue-101",
        "event_type": "ISSUE_LABELED",
        "trigger_context": "issue labeled with 'claude'",
        "event_data": {
            "event_name": "issues",
            "event_action": "labeled",
            "issue_number": 101,
            "base_branch": "main",
            "working_branch": "claude-issue-101",
            "label_trigger": "claude",
        },
    }


def test_parse_event_context_detects_pr_comments() -> None:
    context = parse_event_context("issue_comment", _issue_comment_payload(on_pr=True))

    assert context.event_name == "issue_comment"
    assert context.event_action == "created"
    assert context.entity_number == 5
    assert context.is_pr is True
    assert context.trigger_username == "commenter"


def test_parse_event_context_for_issue_and_pr_events() -> None:
    issue_context = parse_event_context("issues", _issues_payload("labeled", number=8))
    pr_context = parse_event_context("pull_request_review", _review_payload())

    assert (issue_context.entity_number, issue_context.is_pr) == (8, False)
    assert (pr_context.entity_number, pr_context.is_pr) == (42, True)


def test_parse_event_context_rejects_unknown_and_numberless_events() -> None:
    with pytest.raises(UnsupportedEventError):
        parse_event_context("workflow_dispatch", {})
    with pytest.raises(ValidationError, match="entity_number"):
        parse_event_context("issues", {"action": "opened", "issue": {"title": "x"}})


@pytest.mark.parametrize("action", ["closed", "edited", "reopened"])
def test_parse_event_context_rejects_unsupported_issue_actions(action: str) -> None:
    with pytest.raises(UnsupportedActionError) as exc_info:
        parse_event_context("issues", _issues_payload(action))

    assert exc_info.value.action == action


def test_parse_event_context_requires_issue_action() -> None:
    with pytest.raises(ValidationError) as exc_info:
        parse_event_context("issues", {"issue": {"number": 3}})

    assert (exc_info.value.field_name, exc_info.value.event_kind) == ("event_action", "issues")


@pytest.mark.parametrize(
    ("field_name", "overrides"),
    [
        ("repository", {"repository": ""}),
        ("status_comment_id", {"status_comment_id": " "}),
        ("trigger_phrase", {"trigger": TriggerConfig(phrase="")}),
    ],
)
def test_normalize_names_event_kind_for_missing_common_fields(
    field_name: str, overrides: dict[str, object]
) -> None:
    kwargs: dict[str, object] = {
        "repository": "o/r",
        "status_comment_id": "123",
        "trigger": TriggerConfig(),
    }
    kwargs.update(overrides)

    with pytest.raises(ValidationError) as exc_info:
        normalize("pull_request_review", _review_payload(), True, **kwargs)  # type: ignore[arg-type]

    assert exc_info.value.field_name == field_name
    assert exc_info.value.event_kind == "pull_request_review"
