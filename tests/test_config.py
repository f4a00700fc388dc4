from __future__ import annotations

from pathlib import Path

import allure
import pytest

from devflow.config import ModelSettings, SandboxSettings, Settings, WorkflowSettings

pytestmark = [
    allure.epic("Coding Agent"),
    allure.feature("Configuration"),
]


def test_defaults_are_valid() -> None:
    settings = Settings()

    settings.validate()
    assert settings.workflow.max_iterations == 15
    assert settings.workflow.history_limit == 5
    assert settings.sandbox.template == "devflow-nextjs-test-v7"
    assert settings.models.coding_model == "gpt-4.1"
    assert settings.models.summary_model == "gemini-2.0-flash"


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DEVFLOW_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("DEVFLOW_SANDBOX_BACKEND", " LOCAL ")
    monkeypatch.setenv("DEVFLOW_SANDBOX_LOCAL_ROOT", str(tmp_path / "boxes"))
    monkeypatch.setenv("DEVFLOW_SANDBOX_LOCAL_TEMPLATE_DIR", str(tmp_path / "templates"))
    monkeypatch.setenv("DEVFLOW_SANDBOX_PORT", "8080")
    monkeypatch.setenv("DEVFLOW_MAX_ITERATIONS", "4")
    monkeypatch.setenv("DEVFLOW_STEP_BACKOFF_SECONDS", "0.5")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-coding")
    monkeypatch.setenv("GEMINI_API_KEY", "gm-summary")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.sandbox.backend == "local"
    assert settings.sandbox.local_root == tmp_path / "boxes"
    assert settings.sandbox.local_template_dir == tmp_path / "templates"
    assert settings.sandbox.port == 8080
    assert settings.workflow.max_iterations == 4
    assert settings.workflow.step_backoff_seconds == 0.5
    assert settings.models.coding_api_key == "sk-coding"
    assert settings.models.summary_api_key == "gm-summary"
    settings.validate()


def test_explicit_db_path_wins_over_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DEVFLOW_DB_PATH", str(tmp_path / "env.db"))

    settings = Settings.from_env(db_path=tmp_path / "cli.db")

    assert settings.db_path == tmp_path / "cli.db"


def test_validate_rejects_unknown_backend() -> None:
    settings = Settings(sandbox=SandboxSettings(backend="docker"))

    with pytest.raises(ValueError, match="Unsupported DEVFLOW_SANDBOX_BACKEND"):
        settings.validate()


@pytest.mark.parametrize(
    ("workflow", "message"),
    [
        (WorkflowSettings(max_iterations=0), "DEVFLOW_MAX_ITERATIONS"),
        (WorkflowSettings(history_limit=-1), "DEVFLOW_HISTORY_LIMIT"),
        (WorkflowSettings(step_retries=-1), "DEVFLOW_STEP_RETRIES"),
        (WorkflowSettings(flow_retries=-1), "DEVFLOW_FLOW_RETRIES"),
    ],
)
def test_validate_rejects_bad_workflow_bounds(workflow: WorkflowSettings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        Settings(workflow=workflow).validate()


def test_validate_rejects_bad_port() -> None:
    with pytest.raises(ValueError, match="DEVFLOW_SANDBOX_PORT"):
        Settings(sandbox=SandboxSettings(port=0)).validate()


def test_validate_rejects_relative_model_url() -> None:
    settings = Settings(models=ModelSettings(summary_base_url="localhost:8000/v1"))

    with pytest.raises(ValueError, match="Invalid DEVFLOW_SUMMARY_BASE_URL"):
        settings.validate()
