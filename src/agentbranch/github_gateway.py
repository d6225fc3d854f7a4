from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import cast
from urllib.parse import quote, urlencode

from agentbranch.models import EntitySnapshot, EntityState
from agentbranch.observability import log_event
from agentbranch.shell import run


LOGGER = logging.getLogger("agentbranch.github_gateway")
_PAGE_SIZE = 100


class GitHubApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RefNotFoundError(GitHubApiError):
    """The requested git ref does not exist on the remote."""

    def __init__(self, ref: str) -> None:
        super().__init__(f"Git ref not found on remote: {ref}", status_code=404)
        self.ref = ref


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    timeout_seconds: float = 30

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def get_default_branch(self) -> str:
        payload_obj = _as_object_dict(self._api_json("GET", f"/repos/{self.owner}/{self.name}"))
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for repository")
        default_branch = _as_string(payload_obj.get("default_branch"))
        if not default_branch:
            raise GitHubApiError("Unexpected GitHub response: missing default_branch")
        log_event(
            LOGGER,
            "github_read",
            endpoint="repository",
            default_branch=default_branch,
        )
        return default_branch

    def list_branches(self) -> tuple[str, ...]:
        names: list[str] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{self.owner}/{self.name}/branches?{query}"
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubApiError("Unexpected GitHub response: expected list for branches")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                name = item_obj.get("name")
                if isinstance(name, str) and name:
                    names.append(name)
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(LOGGER, "github_read", endpoint="branches", count=len(names))
        return tuple(names)

    def get_ref(self, ref: str) -> str:
        """Return the commit SHA that ``ref`` (e.g. ``heads/main``) points at."""
        path = f"/repos/{self.owner}/{self.name}/git/ref/{quote(ref, safe='/')}"
        try:
            payload = self._api_json("GET", path)
        except GitHubApiError as exc:
            if exc.status_code == 404:
                log_event(LOGGER, "github_ref_missing", ref=ref)
                raise RefNotFoundError(ref) from exc
            raise
        payload_obj = _as_object_dict(payload)
        target = _as_object_dict(payload_obj.get("object")) if payload_obj else None
        sha = _as_string(target.get("sha")) if target else ""
        if not sha:
            raise GitHubApiError(f"Unexpected GitHub response: missing sha for ref {ref}")
        log_event(LOGGER, "github_read", endpoint="ref", ref=ref, sha=sha)
        return sha

    def branch_exists(self, branch: str) -> bool:
        try:
            self.get_ref(f"heads/{branch}")
        except RefNotFoundError:
            return False
        return True

    def get_entity(self, number: int, *, is_pr: bool) -> EntitySnapshot:
        if is_pr:
            return self.get_pull_request(number)
        return self.get_issue(number)

    def get_issue(self, issue_number: int) -> EntitySnapshot:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for issue")
        state = _as_string(payload_obj.get("state")).strip().lower()
        snapshot = EntitySnapshot(
            kind="issue",
            number=_as_int(payload_obj.get("number"), field="number"),
            state="open" if state == "open" else "closed",
            title=_as_string(payload_obj.get("title")),
            body=_as_string(payload_obj.get("body")),
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue",
            issue_number=snapshot.number,
            state=snapshot.state,
        )
        return snapshot

    def get_pull_request(self, pr_number: int) -> EntitySnapshot:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for pull request")

        head = _as_object_dict(payload_obj.get("head"))
        base = _as_object_dict(payload_obj.get("base"))
        if head is None or base is None:
            raise GitHubApiError("Unexpected GitHub response: missing pull request head/base")

        snapshot = EntitySnapshot(
            kind="pull_request",
            number=_as_int(payload_obj.get("number"), field="number"),
            state=_pull_request_state(payload_obj),
            title=_as_string(payload_obj.get("title")),
            body=_as_string(payload_obj.get("body")),
            head_ref=_as_string(head.get("ref")),
            base_ref=_as_string(base.get("ref")),
            commit_count=_as_int(payload_obj.get("commits", 0), field="commits"),
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            pr_number=snapshot.number,
            state=snapshot.state,
            commit_count=snapshot.commit_count,
        )
        return snapshot

    def _api_json(self, method: str, path: str) -> object:
        method_upper = method.upper()
        cmd = ["gh", "api", "--method", method_upper, "--include", path]
        raw = run(cmd, check=False, timeout_seconds=self.timeout_seconds)
        try:
            status_code, _headers, body = _parse_http_response(raw)
        except GitHubApiError as exc:
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                error=str(exc),
                raw_preview=_preview_for_log(raw),
            )
            raise

        if status_code < 200 or status_code >= 300:
            message = body.strip() or "<empty>"
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                status_code=status_code,
            )
            raise GitHubApiError(
                f"GitHub API {method_upper} {path} failed with status {status_code}: "
                f"{_preview_for_log(message)}",
                status_code=status_code,
            )
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise GitHubApiError(f"GitHub API {method_upper} {path} returned invalid JSON") from exc


def _pull_request_state(payload_obj: dict[str, object]) -> EntityState:
    if payload_obj.get("merged") is True or payload_obj.get("merged_at"):
        return "merged"
    state = _as_string(payload_obj.get("state")).strip().lower()
    return "open" if state == "open" else "closed"


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    # Redirects and 100-continue produce several status blocks; the last one wins.
    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise GitHubApiError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubApiError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubApiError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubApiError(f"Unexpected GitHub response type for {field}")
