"""Canonical event descriptors built from loosely-typed webhook payloads.

Every supported webhook event maps to exactly one frozen variant class. Each
variant checks its own required fields in ``__post_init__``, so a descriptor
either exists fully populated or is never constructed at all.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
import logging
from typing import ClassVar, Final, Literal, Union, assert_never, cast

from agentbranch.config import TriggerConfig
from agentbranch.models import BranchState
from agentbranch.observability import log_event


LOGGER = logging.getLogger("agentbranch.events")

EventName = Literal[
    "pull_request_review_comment",
    "pull_request_review",
    "issue_comment",
    "issues",
    "pull_request",
]
SUPPORTED_EVENTS: Final[tuple[EventName, ...]] = (
    "pull_request_review_comment",
    "pull_request_review",
    "issue_comment",
    "issues",
    "pull_request",
)
_PR_PAYLOAD_EVENTS: Final[frozenset[str]] = frozenset(
    {"pull_request_review_comment", "pull_request_review", "pull_request"}
)
_ISSUE_ACTIONS: Final[frozenset[str]] = frozenset({"opened", "labeled", "assigned"})


class EventError(ValueError):
    pass


class ValidationError(EventError):
    def __init__(self, field_name: str, event_kind: str) -> None:
        self.field_name = field_name
        self.event_kind = event_kind
        super().__init__(f"{field_name} is required for {event_kind} event")


class UnsupportedEventError(EventError):
    def __init__(self, event_name: str) -> None:
        self.event_name = event_name
        super().__init__(f"Unsupported event type: {event_name}")


class UnsupportedActionError(EventError):
    def __init__(self, event_name: str, action: str) -> None:
        self.event_name = event_name
        self.action = action
        super().__init__(f"Unsupported {event_name} action: {action}")


def _require_text(value: str | None, field_name: str, event_kind: str) -> None:
    if value is None or not value.strip():
        raise ValidationError(field_name, event_kind)


def _require_number(value: int | None, field_name: str, event_kind: str) -> None:
    if value is None or value < 1:
        raise ValidationError(field_name, event_kind)


@dataclass(frozen=True)
class EventContext:
    event_name: EventName
    event_action: str | None
    entity_number: int
    is_pr: bool
    trigger_username: str | None
    payload: Mapping[str, object] = field(repr=False, compare=False)


@dataclass(frozen=True)
class CommonFields:
    repository: str
    status_comment_id: str
    trigger_phrase: str
    trigger_username: str | None = None
    custom_instructions: str | None = None
    allowed_tools: tuple[str, ...] = ()
    disallowed_tools: tuple[str, ...] = ()
    direct_prompt: str | None = None
    working_branch: str | None = None

    def __post_init__(self) -> None:
        _require_text(self.repository, "repository", "any")
        _require_text(self.status_comment_id, "status_comment_id", "any")
        _require_text(self.trigger_phrase, "trigger_phrase", "any")


@dataclass(frozen=True)
class ReviewCommentEvent:
    event_name: ClassVar[EventName] = "pull_request_review_comment"

    pr_number: int
    comment_body: str
    comment_id: str | None = None
    working_branch: str | None = None
    base_branch: str | None = None

    def __post_init__(self) -> None:
        _require_number(self.pr_number, "pr_number", self.event_name)
        _require_text(self.comment_body, "comment_body", self.event_name)


@dataclass(frozen=True)
class ReviewEvent:
    event_name: ClassVar[EventName] = "pull_request_review"

    pr_number: int
    comment_body: str
    working_branch: str | None = None
    base_branch: str | None = None

    def __post_init__(self) -> None:
        _require_number(self.pr_number, "pr_number", self.event_name)
        _require_text(self.comment_body, "comment_body", self.event_name)


@dataclass(frozen=True)
class GenericCommentEvent:
    """A top-level comment on either a pull request or an issue.

    Issue comments need the branch the run created, so this variant can only
    be built once branch setup has finished.
    """

    event_name: ClassVar[EventName] = "issue_comment"

    comment_id: str
    comment_body: str
    is_pr: bool
    pr_number: int | None = None
    issue_number: int | None = None
    working_branch: str | None = None
    base_branch: str | None = None

    def __post_init__(self) -> None:
        _require_text(self.comment_id, "comment_id", self.event_name)
        _require_text(self.comment_body, "comment_body", self.event_name)
        if self.is_pr:
            _require_number(self.pr_number, "pr_number", self.event_name)
            return
        _require_text(self.working_branch, "working_branch", self.event_name)
        _require_text(self.base_branch, "base_branch", self.event_name)
        _require_number(self.issue_number, "issue_number", self.event_name)


def _require_issue_fields(
    event_kind: str, issue_number: int, base_branch: str, working_branch: str
) -> None:
    _require_number(issue_number, "issue_number", event_kind)
    _require_text(base_branch, "base_branch", event_kind)
    _require_text(working_branch, "working_branch", event_kind)


@dataclass(frozen=True)
class IssueOpenedEvent:
    event_name: ClassVar[EventName] = "issues"
    event_action: ClassVar[str] = "opened"

    issue_number: int
    base_branch: str
    working_branch: str

    def __post_init__(self) -> None:
        _require_issue_fields(
            "issues.opened", self.issue_number, self.base_branch, self.working_branch
        )


@dataclass(frozen=True)
class IssueLabeledEvent:
    event_name: ClassVar[EventName] = "issues"
    event_action: ClassVar[str] = "labeled"

    issue_number: int
    base_branch: str
    working_branch: str
    label_trigger: str

    def __post_init__(self) -> None:
        _require_issue_fields(
            "issues.labeled", self.issue_number, self.base_branch, self.working_branch
        )
        _require_text(self.label_trigger, "label_trigger", "issues.labeled")


@dataclass(frozen=True)
class IssueAssignedEvent:
    event_name: ClassVar[EventName] = "issues"
    event_action: ClassVar[str] = "assigned"

    issue_number: int
    base_branch: str
    working_branch: str
    assignee_trigger: str | None = None
    direct_prompt: str | None = None

    def __post_init__(self) -> None:
        _require_issue_fields(
            "issues.assigned", self.issue_number, self.base_branch, self.working_branch
        )
        if not (self.assignee_trigger or "").strip() and not (self.direct_prompt or "").strip():
            raise ValidationError("assignee_trigger", "issues.assigned")


@dataclass(frozen=True)
class PullRequestEvent:
    event_name: ClassVar[EventName] = "pull_request"

    pr_number: int
    event_action: str | None = None
    working_branch: str | None = None
    base_branch: str | None = None

    def __post_init__(self) -> None:
        _require_number(self.pr_number, "pr_number", self.event_name)


EventVariant = Union[
    ReviewCommentEvent,
    ReviewEvent,
    GenericCommentEvent,
    IssueOpenedEvent,
    IssueLabeledEvent,
    IssueAssignedEvent,
    PullRequestEvent,
]


@dataclass(frozen=True)
class EventDescriptor:
    common: CommonFields
    event: EventVariant


def parse_event_context(event_name: str, payload: Mapping[str, object]) -> EventContext:
    """Extract the entity number and kind from a raw webhook payload.

    Runs before any network or git work so unsupported events fail fast.
    """
    if event_name not in SUPPORTED_EVENTS:
        raise UnsupportedEventError(event_name)
    name = cast(EventName, event_name)

    if name in _PR_PAYLOAD_EVENTS:
        entity = _as_mapping(payload.get("pull_request"))
        is_pr = True
    else:
        entity = _as_mapping(payload.get("issue"))
        is_pr = entity is not None and entity.get("pull_request") is not None
    entity_number = _as_optional_int(entity.get("number")) if entity is not None else None
    if entity_number is None:
        raise ValidationError("entity_number", name)
    event_action = _as_optional_str(payload.get("action"))
    if name == "issues":
        if event_action is None:
            raise ValidationError("event_action", name)
        if event_action not in _ISSUE_ACTIONS:
            raise UnsupportedActionError(name, event_action)

    context = EventContext(
        event_name=name,
        event_action=event_action,
        entity_number=entity_number,
        is_pr=is_pr,
        trigger_username=_trigger_username(name, payload),
        payload=payload,
    )
    log_event(
        LOGGER,
        "event_context_parsed",
        event_name=context.event_name,
        event_action=context.event_action,
        entity_number=context.entity_number,
        is_pr=context.is_pr,
    )
    return context


def normalize(
    event_name: str,
    payload: Mapping[str, object],
    entity_is_pr: bool,
    *,
    repository: str,
    status_comment_id: str,
    trigger: TriggerConfig,
    branch: BranchState | None = None,
) -> EventDescriptor:
    """Validate a raw event into its canonical descriptor.

    ``branch`` carries the outcome of branch setup; issue events and issue
    comments cannot be normalized without it.
    """
    base_branch = branch.base_branch if branch is not None else None
    working_branch = branch.working_branch if branch is not None else None
    event_action = _as_optional_str(payload.get("action"))
    entity_number = _entity_number(event_name, payload)

    event: EventVariant
    if event_name == "pull_request_review_comment":
        comment = _as_mapping(payload.get("comment")) or {}
        _require_number(entity_number, "pr_number", event_name)
        if not entity_is_pr:
            raise ValidationError("is_pr", event_name)
        event = ReviewCommentEvent(
            pr_number=cast(int, entity_number),
            comment_id=_as_optional_str(comment.get("id")),
            comment_body=_as_optional_str(comment.get("body")) or "",
            working_branch=working_branch,
            base_branch=base_branch,
        )
    elif event_name == "pull_request_review":
        review = _as_mapping(payload.get("review")) or {}
        _require_number(entity_number, "pr_number", event_name)
        if not entity_is_pr:
            raise ValidationError("is_pr", event_name)
        event = ReviewEvent(
            pr_number=cast(int, entity_number),
            comment_body=_as_optional_str(review.get("body")) or "",
            working_branch=working_branch,
            base_branch=base_branch,
        )
    elif event_name == "issue_comment":
        comment = _as_mapping(payload.get("comment")) or {}
        event = GenericCommentEvent(
            comment_id=_as_optional_str(comment.get("id")) or "",
            comment_body=_as_optional_str(comment.get("body")) or "",
            is_pr=entity_is_pr,
            pr_number=entity_number if entity_is_pr else None,
            issue_number=None if entity_is_pr else entity_number,
            working_branch=working_branch,
            base_branch=base_branch,
        )
    elif event_name == "issues":
        event = _normalize_issue_event(
            event_action=event_action,
            issue_number=entity_number,
            entity_is_pr=entity_is_pr,
            base_branch=base_branch,
            working_branch=working_branch,
            trigger=trigger,
        )
    elif event_name == "pull_request":
        _require_number(entity_number, "pr_number", event_name)
        if not entity_is_pr:
            raise ValidationError("is_pr", event_name)
        event = PullRequestEvent(
            pr_number=cast(int, entity_number),
            event_action=event_action,
            working_branch=working_branch,
            base_branch=base_branch,
        )
    else:
        raise UnsupportedEventError(event_name)

    _require_text(repository, "repository", event_name)
    _require_text(status_comment_id, "status_comment_id", event_name)
    _require_text(trigger.phrase, "trigger_phrase", event_name)
    common = CommonFields(
        repository=repository,
        status_comment_id=status_comment_id,
        trigger_phrase=trigger.phrase,
        trigger_username=_trigger_username(event_name, payload),
        custom_instructions=trigger.custom_instructions,
        allowed_tools=trigger.allowed_tools,
        disallowed_tools=trigger.disallowed_tools,
        direct_prompt=trigger.direct_prompt,
        working_branch=working_branch,
    )
    descriptor = EventDescriptor(common=common, event=event)
    log_event(
        LOGGER,
        "descriptor_normalized",
        event_name=event_name,
        event_action=event_action,
        variant=type(event).__name__,
    )
    return descriptor


def _normalize_issue_event(
    *,
    event_action: str | None,
    issue_number: int | None,
    entity_is_pr: bool,
    base_branch: str | None,
    working_branch: str | None,
    trigger: TriggerConfig,
) -> EventVariant:
    _require_text(event_action, "event_action", "issues")
    _require_number(issue_number, "issue_number", "issues")
    if entity_is_pr:
        raise ValidationError("is_pr", "issues")
    _require_text(base_branch, "base_branch", "issues")
    _require_text(working_branch, "working_branch", "issues")
    number = cast(int, issue_number)
    base = cast(str, base_branch)
    working = cast(str, working_branch)

    if event_action == "assigned":
        return IssueAssignedEvent(
            issue_number=number,
            base_branch=base,
            working_branch=working,
            assignee_trigger=trigger.assignee_trigger,
            direct_prompt=trigger.direct_prompt,
        )
    if event_action == "labeled":
        return IssueLabeledEvent(
            issue_number=number,
            base_branch=base,
            working_branch=working,
            label_trigger=trigger.label_trigger or "",
        )
    if event_action == "opened":
        return IssueOpenedEvent(issue_number=number, base_branch=base, working_branch=working)
    raise UnsupportedActionError("issues", cast(str, event_action))


def event_type_and_context(descriptor: EventDescriptor) -> tuple[str, str]:
    phrase = descriptor.common.trigger_phrase
    event = descriptor.event
    if isinstance(event, ReviewCommentEvent):
        return "REVIEW_COMMENT", f"PR review comment with '{phrase}'"
    if isinstance(event, ReviewEvent):
        return "PR_REVIEW", f"PR review with '{phrase}'"
    if isinstance(event, GenericCommentEvent):
        return "GENERAL_COMMENT", f"issue comment with '{phrase}'"
    if isinstance(event, IssueOpenedEvent):
        return "ISSUE_CREATED", f"new issue with '{phrase}' in body"
    if isinstance(event, IssueLabeledEvent):
        return "ISSUE_LABELED", f"issue labeled with '{event.label_trigger}'"
    if isinstance(event, IssueAssignedEvent):
        if event.assignee_trigger:
            return "ISSUE_ASSIGNED", f"issue assigned to '{event.assignee_trigger}'"
        return "ISSUE_ASSIGNED", "issue assigned event"
    if isinstance(event, PullRequestEvent):
        if event.event_action:
            return "PULL_REQUEST", f"pull request {event.event_action}"
        return "PULL_REQUEST", "pull request event"
    assert_never(event)


def descriptor_to_dict(descriptor: EventDescriptor) -> dict[str, object]:
    event_type, trigger_context = event_type_and_context(descriptor)
    event_data: dict[str, object] = {"event_name": descriptor.event.event_name}
    action = getattr(descriptor.event, "event_action", None)
    if action:
        event_data["event_action"] = action
    event_data.update(_drop_empty(asdict(descriptor.event)))
    out = _drop_empty(asdict(descriptor.common))
    out["event_type"] = event_type
    out["trigger_context"] = trigger_context
    out["event_data"] = event_data
    return out


def _drop_empty(data: dict[str, object]) -> dict[str, object]:
    out: dict[str, object] = {}
    for key, value in data.items():
        if value is None or value == ():
            continue
        out[key] = list(value) if isinstance(value, tuple) else value
    return out


def _entity_number(event_name: str, payload: Mapping[str, object]) -> int | None:
    key = "pull_request" if event_name in _PR_PAYLOAD_EVENTS else "issue"
    entity = _as_mapping(payload.get(key))
    if entity is None:
        return None
    return _as_optional_int(entity.get("number"))


def _trigger_username(event_name: str, payload: Mapping[str, object]) -> str | None:
    if event_name in {"issue_comment", "pull_request_review_comment"}:
        source = _as_mapping(payload.get("comment"))
    elif event_name == "pull_request_review":
        source = _as_mapping(payload.get("review"))
    elif event_name == "issues":
        source = _as_mapping(payload.get("issue"))
    else:
        return None
    user = _as_mapping(source.get("user")) if source is not None else None
    if user is None:
        return None
    return _as_optional_str(user.get("login"))


def _as_mapping(value: object) -> Mapping[str, object] | None:
    if not isinstance(value, Mapping):
        return None
    return cast(Mapping[str, object], value)


def _as_optional_str(value: object) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, int):
        return str(value)
    return None


def _as_optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
