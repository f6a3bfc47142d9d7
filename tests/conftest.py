"""Shared fixtures for taskweave tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from taskweave.config import reset_config
from tests.utils import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def isolated_config(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> Iterator[None]:
    """Keep the user's config and TASKWEAVE_* variables out of tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path_factory.mktemp("xdg")))
    monkeypatch.delenv("TASKWEAVE_LOG", raising=False)
    monkeypatch.delenv("TASKWEAVE_WORKER_TIMEOUT", raising=False)
    reset_config()
    yield
    reset_config()
