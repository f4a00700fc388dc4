"""Runtime configuration for the coding-agent workflow."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

SUPPORTED_SANDBOX_BACKENDS = ("e2b", "local")


@dataclass(slots=True)
class SandboxSettings:
    """Sandbox provider settings."""

    backend: str = "e2b"
    template: str = "devflow-nextjs-test-v7"
    sandbox_timeout_seconds: int = 1_800
    command_timeout_seconds: int = 300
    port: int = 3000
    local_root: Path = Path(".devflow/sandboxes")
    local_template_dir: Path | None = None
    e2b_api_key: str = ""
    e2b_domain: str = ""


@dataclass(slots=True)
class ModelSettings:
    """Language model endpoints for the coding agent and the summary generators."""

    coding_model: str = "gpt-4.1"
    coding_temperature: float = 0.1
    coding_base_url: str = "https://api.openai.com/v1"
    coding_api_key: str = ""
    summary_model: str = "gemini-2.0-flash"
    summary_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    summary_api_key: str = ""
    timeout_seconds: float = 120.0
    max_retries: int = 2


@dataclass(slots=True)
class WorkflowSettings:
    """Agent loop bounds and durable step retry policy."""

    max_iterations: int = 15
    history_limit: int = 5
    step_retries: int = 3
    step_backoff_seconds: float = 2.0
    flow_retries: int = 1


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".devflow.db")
    sandbox: SandboxSettings = field(default_factory=SandboxSettings)
    models: ModelSettings = field(default_factory=ModelSettings)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        template_dir = os.getenv("DEVFLOW_SANDBOX_LOCAL_TEMPLATE_DIR", "").strip()
        return cls(
            db_path=db_path or Path(os.getenv("DEVFLOW_DB_PATH", ".devflow.db")),
            sandbox=SandboxSettings(
                backend=os.getenv("DEVFLOW_SANDBOX_BACKEND", "e2b").strip().lower(),
                template=os.getenv("DEVFLOW_SANDBOX_TEMPLATE", "devflow-nextjs-test-v7"),
                sandbox_timeout_seconds=int(
                    os.getenv("DEVFLOW_SANDBOX_TIMEOUT_SECONDS", "1800"),
                ),
                command_timeout_seconds=int(
                    os.getenv("DEVFLOW_SANDBOX_COMMAND_TIMEOUT_SECONDS", "300"),
                ),
                port=int(os.getenv("DEVFLOW_SANDBOX_PORT", "3000")),
                local_root=Path(os.getenv("DEVFLOW_SANDBOX_LOCAL_ROOT", ".devflow/sandboxes")),
                local_template_dir=Path(template_dir) if template_dir else None,
                e2b_api_key=os.getenv("E2B_API_KEY", ""),
                e2b_domain=os.getenv("E2B_DOMAIN", ""),
            ),
            models=ModelSettings(
                coding_model=os.getenv("DEVFLOW_CODING_MODEL", "gpt-4.1"),
                coding_temperature=float(os.getenv("DEVFLOW_CODING_TEMPERATURE", "0.1")),
                coding_base_url=os.getenv("DEVFLOW_CODING_BASE_URL", "https://api.openai.com/v1"),
                coding_api_key=os.getenv("OPENAI_API_KEY", ""),
                summary_model=os.getenv("DEVFLOW_SUMMARY_MODEL", "gemini-2.0-flash"),
                summary_base_url=os.getenv(
                    "DEVFLOW_SUMMARY_BASE_URL",
                    "https://generativelanguage.googleapis.com/v1beta/openai",
                ),
                summary_api_key=os.getenv("GEMINI_API_KEY", ""),
                timeout_seconds=float(os.getenv("DEVFLOW_MODEL_TIMEOUT_SECONDS", "120")),
                max_retries=int(os.getenv("DEVFLOW_MODEL_MAX_RETRIES", "2")),
            ),
            workflow=WorkflowSettings(
                max_iterations=int(os.getenv("DEVFLOW_MAX_ITERATIONS", "15")),
                history_limit=int(os.getenv("DEVFLOW_HISTORY_LIMIT", "5")),
                step_retries=int(os.getenv("DEVFLOW_STEP_RETRIES", "3")),
                step_backoff_seconds=float(os.getenv("DEVFLOW_STEP_BACKOFF_SECONDS", "2")),
                flow_retries=int(os.getenv("DEVFLOW_FLOW_RETRIES", "1")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the workflow cannot run with."""

        if self.sandbox.backend not in SUPPORTED_SANDBOX_BACKENDS:
            raise ValueError(
                f"Unsupported DEVFLOW_SANDBOX_BACKEND: {self.sandbox.backend!r}. "
                f"Expected one of: {', '.join(SUPPORTED_SANDBOX_BACKENDS)}.",
            )
        if not 0 < self.sandbox.port < 65_536:
            raise ValueError("DEVFLOW_SANDBOX_PORT must be between 1 and 65535.")
        if self.sandbox.command_timeout_seconds <= 0:
            raise ValueError("DEVFLOW_SANDBOX_COMMAND_TIMEOUT_SECONDS must be > 0.")
        if self.workflow.max_iterations <= 0:
            raise ValueError("DEVFLOW_MAX_ITERATIONS must be > 0.")
        if self.workflow.history_limit < 0:
            raise ValueError("DEVFLOW_HISTORY_LIMIT must be >= 0.")
        if self.workflow.step_retries < 0:
            raise ValueError("DEVFLOW_STEP_RETRIES must be >= 0.")
        if self.workflow.flow_retries < 0:
            raise ValueError("DEVFLOW_FLOW_RETRIES must be >= 0.")
        for name, value in (
            ("DEVFLOW_CODING_BASE_URL", self.models.coding_base_url),
            ("DEVFLOW_SUMMARY_BASE_URL", self.models.summary_base_url),
        ):
            _validate_base_url(name, value)


def _validate_base_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
