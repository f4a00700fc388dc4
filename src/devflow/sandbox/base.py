"""Sandbox provider interface and failure-containing helpers.

A sandbox is addressed only by its id. Connections are never cached across
steps: every tool call resolves the id back to a live connection, because the
process that created the sandbox may not be the one resuming the workflow.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]


class SandboxConnectionError(ConnectionError):
    """Raised when a sandbox id no longer resolves to a live environment."""


class SandboxIOError(OSError):
    """Raised when a sandbox file read or write fails."""


class SandboxCommandError(RuntimeError):
    """Command failure carrying whatever output was captured before it."""

    def __init__(
        self,
        message: str,
        *,
        stdout: str = "",
        stderr: str = "",
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


@dataclass(slots=True)
class CommandResult:
    """Completed command output."""

    stdout: str
    stderr: str
    exit_code: int = 0


@dataclass(slots=True)
class ExecResult:
    """Outcome of ``exec_command``; ``error`` is set instead of raising."""

    stdout: str
    stderr: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class SandboxConnection(Protocol):
    """Live connection to one sandbox."""

    def run_command(
        self,
        command: str,
        *,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> CommandResult:
        """Run a shell command, raising ``SandboxCommandError`` on failure."""

    def write_file(self, path: str, content: str) -> None:
        """Write a text file, raising ``SandboxIOError`` on failure."""

    def read_file(self, path: str) -> str:
        """Read a text file, raising ``SandboxIOError`` if missing."""

    def get_host(self, port: int) -> str:
        """Public host name routed to ``port`` inside the sandbox."""


@runtime_checkable
class SandboxProvider(Protocol):
    """Creates sandboxes and reconnects to them by id."""

    url_scheme: str

    def create(self, template: str) -> str:
        """Create a sandbox from ``template`` and return its id."""

    def connect(self, sandbox_id: str) -> SandboxConnection:
        """Resolve ``sandbox_id``, raising ``SandboxConnectionError`` if it is gone."""


@dataclass(frozen=True, slots=True)
class SandboxHandle:
    """Opaque, serializable reference to one sandbox."""

    sandbox_id: str

    def resolve(self, provider: SandboxProvider) -> SandboxConnection:
        return provider.connect(self.sandbox_id)


def exec_command(connection: SandboxConnection, command: str) -> ExecResult:
    """Run ``command`` and never raise; partial output is kept on failure."""

    buffers = {"stdout": "", "stderr": ""}

    def _on_stdout(data: str) -> None:
        buffers["stdout"] += data

    def _on_stderr(data: str) -> None:
        buffers["stderr"] += data

    try:
        result = connection.run_command(command, on_stdout=_on_stdout, on_stderr=_on_stderr)
    except SandboxCommandError as error:
        return ExecResult(
            stdout=buffers["stdout"] or error.stdout,
            stderr=buffers["stderr"] or error.stderr,
            error=str(error),
        )
    except Exception as error:  # noqa: BLE001
        logger.warning("Sandbox command raised unexpectedly: %s", error)
        return ExecResult(stdout=buffers["stdout"], stderr=buffers["stderr"], error=str(error))
    return ExecResult(stdout=result.stdout, stderr=result.stderr)


def public_url(connection: SandboxConnection, port: int, *, scheme: str = "https") -> str:
    """Build the externally reachable URL for ``port``."""

    return f"{scheme}://{connection.get_host(port)}"
