"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeHost, make_agent_zip


@pytest.fixture
def host() -> FakeHost:
    """Return an eligible host with no agent installed."""
    return FakeHost()


@pytest.fixture
def agent_zip() -> bytes:
    """Return a minimal agent package archive."""
    return make_agent_zip()


@pytest.fixture
def work_root(tmp_path: Path) -> Path:
    """Return an empty directory for pipeline work directories."""
    root = tmp_path / "work"
    root.mkdir()
    return root
