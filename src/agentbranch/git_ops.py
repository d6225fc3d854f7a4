from __future__ import annotations

from pathlib import Path
import logging

from agentbranch.observability import log_event
from agentbranch.shell import run


LOGGER = logging.getLogger("agentbranch.git_ops")


class GitCheckout:
    """Local git operations on the run's working copy."""

    def __init__(self, checkout_path: Path) -> None:
        self.checkout_path = checkout_path

    def fetch_branch(self, branch: str, *, depth: int) -> None:
        if depth < 1:
            raise ValueError("depth must be >= 1")
        log_event(
            LOGGER,
            "git_fetch_branch",
            checkout_path=str(self.checkout_path),
            branch=branch,
            depth=depth,
        )
        run(
            [
                "git",
                "-C",
                str(self.checkout_path),
                "fetch",
                "origin",
                f"--depth={depth}",
                branch,
            ]
        )

    def checkout(self, branch: str) -> None:
        log_event(
            LOGGER,
            "git_checkout",
            checkout_path=str(self.checkout_path),
            branch=branch,
        )
        run(["git", "-C", str(self.checkout_path), "checkout", branch])

    def create_branch(self, branch: str, *, start_point: str | None = None) -> None:
        log_event(
            LOGGER,
            "git_branch_create",
            checkout_path=str(self.checkout_path),
            branch=branch,
            start_point=start_point,
        )
        cmd = ["git", "-C", str(self.checkout_path), "checkout", "-b", branch]
        if start_point is not None:
            cmd.append(start_point)
        try:
            run(cmd)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "git_branch_create_failed",
                checkout_path=str(self.checkout_path),
                branch=branch,
                error_type=type(exc).__name__,
            )
            raise

