from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
import sys

from agentbranch.branch_advisor import AnthropicBranchAdvisor
from agentbranch.branch_setup import BranchCollisionError, BranchLifecycleManager
from agentbranch.config import OAUTH_TOKEN_ENV, AppConfig, ConfigError, load_config
from agentbranch.events import EventError, descriptor_to_dict, normalize, parse_event_context
from agentbranch.git_ops import GitCheckout
from agentbranch.github_gateway import GitHubApiError, GitHubGateway
from agentbranch.models import BranchState
from agentbranch.observability import configure_logging
from agentbranch.outputs import write_run_outputs
from agentbranch.prepare import prepare_run
from agentbranch.shell import CommandError


_FATAL_ERRORS = (ConfigError, EventError, GitHubApiError, BranchCollisionError, CommandError)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentbranch")
    subparsers = parser.add_subparsers(dest="command", required=True)

    prepare_parser = subparsers.add_parser(
        "prepare",
        help="Set up the working branch for an event and emit the canonical descriptor",
    )
    _add_event_arguments(prepare_parser)
    prepare_parser.add_argument(
        "--output-file",
        type=Path,
        default=_env_path("GITHUB_OUTPUT"),
        help="Step output file to append base_branch/working_branch to",
    )
    prepare_parser.add_argument(
        "--descriptor-out",
        type=Path,
        help="Write the descriptor JSON here instead of stdout",
    )

    normalize_parser = subparsers.add_parser(
        "normalize",
        help="Validate an event payload without touching git or the hosting API",
    )
    _add_event_arguments(normalize_parser)
    normalize_parser.add_argument("--base-branch", type=str)
    normalize_parser.add_argument("--working-branch", type=str)

    return parser


def _add_event_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=Path("agentbranch.toml"))
    parser.add_argument(
        "--event-name",
        default=os.environ.get("GITHUB_EVENT_NAME"),
        help="Webhook event name, e.g. issue_comment",
    )
    parser.add_argument(
        "--event-path",
        type=Path,
        default=_env_path("GITHUB_EVENT_PATH"),
        help="Path to the webhook payload JSON",
    )
    parser.add_argument(
        "--comment-id",
        required=True,
        help="Id of the status comment the agent keeps updated",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(bool(getattr(args, "verbose", False)))
    try:
        config = load_config(args.config)
        if args.command == "prepare":
            _cmd_prepare(config, args)
            return
        if args.command == "normalize":
            _cmd_normalize(config, args)
            return
    except _FATAL_ERRORS as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_prepare(config: AppConfig, args: argparse.Namespace) -> None:
    event_name = _require_event_name(args)
    payload = _load_event_payload(args.event_path)
    github = GitHubGateway(
        config.repo.owner,
        config.repo.name,
        timeout_seconds=config.runtime.request_timeout_seconds,
    )
    advisor = None
    if config.branch.base_branch_prompt:
        advisor = AnthropicBranchAdvisor(
            github=github,
            config=config.advisor,
            api_key=_advisor_api_key(config),
            timeout_seconds=config.runtime.request_timeout_seconds,
        )
    branches = BranchLifecycleManager(
        repo=config.repo,
        config=config.branch,
        github=github,
        git=GitCheckout(config.runtime.checkout_dir),
        advisor=advisor,
    )
    prepared = prepare_run(
        config=config,
        event_name=event_name,
        payload=payload,
        status_comment_id=str(args.comment_id),
        github=github,
        branches=branches,
    )
    if args.output_file is not None:
        write_run_outputs(args.output_file, prepared.branch)
    _emit_descriptor(descriptor_to_dict(prepared.descriptor), args.descriptor_out)


def _cmd_normalize(config: AppConfig, args: argparse.Namespace) -> None:
    event_name = _require_event_name(args)
    payload = _load_event_payload(args.event_path)
    context = parse_event_context(event_name, payload)
    branch = None
    if args.base_branch:
        branch = BranchState(
            base_branch=args.base_branch,
            working_branch=args.working_branch or None,
            current_branch=args.working_branch or args.base_branch,
        )
    descriptor = normalize(
        context.event_name,
        payload,
        context.is_pr,
        repository=config.repo.full_name,
        status_comment_id=str(args.comment_id),
        trigger=config.trigger,
        branch=branch,
    )
    _emit_descriptor(descriptor_to_dict(descriptor), None)


def _advisor_api_key(config: AppConfig) -> str | None:
    return os.environ.get(config.advisor.api_key_env) or os.environ.get(OAUTH_TOKEN_ENV)


def _require_event_name(args: argparse.Namespace) -> str:
    event_name = (args.event_name or "").strip()
    if not event_name:
        raise EventError("--event-name is required (or set GITHUB_EVENT_NAME)")
    return event_name


def _load_event_payload(path: Path | None) -> dict[str, object]:
    if path is None:
        raise EventError("--event-path is required (or set GITHUB_EVENT_PATH)")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise EventError(f"Could not read event payload from {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise EventError(f"Event payload in {path} must be a JSON object")
    return payload


def _emit_descriptor(data: dict[str, object], path: Path | None) -> None:
    text = json.dumps(data, indent=2, sort_keys=True)
    if path is None:
        print(text)
        return
    path.write_text(f"{text}\n", encoding="utf-8")


def _env_path(name: str) -> Path | None:
    value = os.environ.get(name)
    if not value:
        return None
    return Path(value)
