from __future__ import annotations

from collections.abc import Iterator

import pytest

from agentbranch.observability import configure_logging


@pytest.fixture(autouse=True)
def quiet_agentbranch_logger() -> Iterator[None]:
    yield
    configure_logging(verbose=None)
