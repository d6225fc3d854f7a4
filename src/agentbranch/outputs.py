from __future__ import annotations

from pathlib import Path
import logging

from agentbranch.models import BranchState
from agentbranch.observability import log_event


LOGGER = logging.getLogger("agentbranch.outputs")
BASE_BRANCH_OUTPUT = "base_branch"
WORKING_BRANCH_OUTPUT = "working_branch"


def run_outputs(state: BranchState) -> dict[str, str]:
    outputs = {BASE_BRANCH_OUTPUT: state.base_branch}
    if state.working_branch is not None:
        outputs[WORKING_BRANCH_OUTPUT] = state.working_branch
    return outputs


def write_run_outputs(path: Path, state: BranchState) -> dict[str, str]:
    """Append ``name=value`` lines in the format workflow runners read step outputs from."""
    outputs = run_outputs(state)
    with path.open("a", encoding="utf-8") as fh:
        for name, value in outputs.items():
            if "\n" in value:
                raise ValueError(f"Output {name} must be a single line")
            fh.write(f"{name}={value}\n")
    log_event(
        LOGGER,
        "run_outputs_written",
        path=str(path),
        names=tuple(outputs),
    )
    return outputs
