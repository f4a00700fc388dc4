"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from devflow.sandbox.local import LocalSandboxProvider
from devflow.workflow.repository import WorkflowRepository


@pytest.fixture()
def repository(tmp_path: Path):
    repo = WorkflowRepository(tmp_path / "devflow.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def sandbox_provider(tmp_path: Path) -> LocalSandboxProvider:
    return LocalSandboxProvider(tmp_path / "sandboxes", command_timeout_seconds=30)
