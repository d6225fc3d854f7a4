from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import tomllib
from typing import Literal, cast


CollisionPolicy = Literal["suffix", "fail", "ignore"]
_COLLISION_POLICIES: tuple[CollisionPolicy, ...] = ("suffix", "fail", "ignore")
DEFAULT_TRIGGER_PHRASE = "@claude"
DEFAULT_BRANCH_PREFIX = "claude-"
DEFAULT_ADVISOR_MODEL = "claude-haiku-4-5-20251001"
MAX_REQUEST_TIMEOUT_SECONDS = 30
# "issue-" plus a 7-digit number, "-YYYYMMDD-HHMM" and a "-N" collision suffix.
MIN_BRANCH_NAME_LENGTH = 30
OAUTH_TOKEN_ENV = "CLAUDE_CODE_OAUTH_TOKEN"


@dataclass(frozen=True)
class RepoConfig:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class BranchConfig:
    prefix: str = DEFAULT_BRANCH_PREFIX
    base_branch: str | None = None
    base_branch_prompt: str | None = None
    use_timestamp_suffix: bool = False
    use_commit_signing: bool = False
    max_length: int = 50
    min_fetch_depth: int = 20
    on_collision: CollisionPolicy = "suffix"


@dataclass(frozen=True)
class TriggerConfig:
    phrase: str = DEFAULT_TRIGGER_PHRASE
    assignee_trigger: str | None = None
    label_trigger: str | None = None
    custom_instructions: str | None = None
    direct_prompt: str | None = None
    allowed_tools: tuple[str, ...] = ()
    disallowed_tools: tuple[str, ...] = ()


@dataclass(frozen=True)
class AdvisorConfig:
    model: str = DEFAULT_ADVISOR_MODEL
    max_tokens: int = 100
    api_key_env: str = "ANTHROPIC_API_KEY"


@dataclass(frozen=True)
class RuntimeConfig:
    checkout_dir: Path = Path(".")
    request_timeout_seconds: int = MAX_REQUEST_TIMEOUT_SECONDS


@dataclass(frozen=True)
class AppConfig:
    repo: RepoConfig
    branch: BranchConfig
    trigger: TriggerConfig
    advisor: AdvisorConfig
    runtime: RuntimeConfig


class ConfigError(ValueError):
    pass


def load_config(path: Path) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    return parse_config(cast(dict[str, object], data))


def parse_config(data: dict[str, object]) -> AppConfig:
    repo_data = _require_table(data, "repo")
    branch_data = _optional_table(data, "branch") or {}
    trigger_data = _optional_table(data, "trigger") or {}
    advisor_data = _optional_table(data, "advisor") or {}
    runtime_data = _optional_table(data, "runtime") or {}

    repo = RepoConfig(
        owner=_require_str(repo_data, "owner"),
        name=_require_str(repo_data, "name"),
    )

    branch = BranchConfig(
        prefix=_str_with_default(branch_data, "prefix", DEFAULT_BRANCH_PREFIX),
        base_branch=_optional_str(branch_data, "base_branch"),
        base_branch_prompt=_optional_str(branch_data, "base_branch_prompt"),
        use_timestamp_suffix=_bool_with_default(branch_data, "use_timestamp_suffix", False),
        use_commit_signing=_bool_with_default(branch_data, "use_commit_signing", False),
        max_length=_int_with_default(branch_data, "max_length", 50),
        min_fetch_depth=_int_with_default(branch_data, "min_fetch_depth", 20),
        on_collision=_collision_policy_with_default(branch_data, "on_collision", "suffix"),
    )
    if branch.max_length < MIN_BRANCH_NAME_LENGTH:
        raise ConfigError(f"branch.max_length must be >= {MIN_BRANCH_NAME_LENGTH}")
    if branch.min_fetch_depth < 1:
        raise ConfigError("branch.min_fetch_depth must be >= 1")

    trigger = TriggerConfig(
        phrase=_str_with_default(trigger_data, "phrase", DEFAULT_TRIGGER_PHRASE),
        assignee_trigger=_optional_str(trigger_data, "assignee_trigger"),
        label_trigger=_optional_str(trigger_data, "label_trigger"),
        custom_instructions=_optional_str(trigger_data, "custom_instructions"),
        direct_prompt=_optional_str(trigger_data, "direct_prompt"),
        allowed_tools=_tuple_of_str(trigger_data, "allowed_tools"),
        disallowed_tools=_tuple_of_str(trigger_data, "disallowed_tools"),
    )

    advisor = AdvisorConfig(
        model=_str_with_default(advisor_data, "model", DEFAULT_ADVISOR_MODEL),
        max_tokens=_int_with_default(advisor_data, "max_tokens", 100),
        api_key_env=_str_with_default(advisor_data, "api_key_env", "ANTHROPIC_API_KEY"),
    )
    if advisor.max_tokens < 1:
        raise ConfigError("advisor.max_tokens must be >= 1")

    runtime = RuntimeConfig(
        checkout_dir=Path(_str_with_default(runtime_data, "checkout_dir", ".")).expanduser(),
        request_timeout_seconds=_int_with_default(
            runtime_data, "request_timeout_seconds", MAX_REQUEST_TIMEOUT_SECONDS
        ),
    )
    if not 1 <= runtime.request_timeout_seconds <= MAX_REQUEST_TIMEOUT_SECONDS:
        raise ConfigError(
            f"runtime.request_timeout_seconds must be between 1 and {MAX_REQUEST_TIMEOUT_SECONDS}"
        )

    return AppConfig(
        repo=repo,
        branch=branch,
        trigger=trigger,
        advisor=advisor,
        runtime=runtime,
    )


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    return _require_table(data, key)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _tuple_of_str(data: dict[str, object], key: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{key} must be a list of non-empty strings")
        stripped = item.strip()
        if stripped not in out:
            out.append(stripped)
    return tuple(out)


def _collision_policy_with_default(
    data: dict[str, object], key: str, default: CollisionPolicy
) -> CollisionPolicy:
    value = data.get(key, default)
    choices = ", ".join(_COLLISION_POLICIES)
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be one of: {choices}")
    normalized = value.strip().lower()
    if normalized not in _COLLISION_POLICIES:
        raise ConfigError(f"{key} must be one of: {choices}")
    return cast(CollisionPolicy, normalized)
