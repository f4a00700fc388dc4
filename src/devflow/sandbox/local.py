"""Directory-backed sandbox provider for local development and tests.

Each sandbox is a directory under ``root_dir``; commands run through the host
shell with the sandbox directory as working directory. This offers no
isolation at all and must not be pointed at untrusted prompts.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from uuid import uuid4

from devflow.sandbox.base import (
    CommandResult,
    OutputCallback,
    SandboxCommandError,
    SandboxConnectionError,
    SandboxIOError,
)

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT_SECONDS = 300


class LocalSandboxConnection:
    """Connection to one local sandbox directory."""

    def __init__(self, workdir: Path, *, command_timeout_seconds: int) -> None:
        self.workdir = workdir
        self.command_timeout_seconds = command_timeout_seconds

    def run_command(
        self,
        command: str,
        *,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> CommandResult:
        try:
            completed = subprocess.run(  # noqa: S602
                command,
                shell=True,
                cwd=self.workdir,
                capture_output=True,
                text=True,
                timeout=self.command_timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as error:
            stdout = _as_text(error.stdout)
            stderr = _as_text(error.stderr)
            _emit(on_stdout, stdout)
            _emit(on_stderr, stderr)
            raise SandboxCommandError(
                f"command timed out after {self.command_timeout_seconds}s",
                stdout=stdout,
                stderr=stderr,
            ) from error
        except OSError as error:
            raise SandboxCommandError(f"command failed to start: {error}") from error

        _emit(on_stdout, completed.stdout)
        _emit(on_stderr, completed.stderr)
        if completed.returncode != 0:
            raise SandboxCommandError(
                f"command exited with code {completed.returncode}",
                stdout=completed.stdout,
                stderr=completed.stderr,
                exit_code=completed.returncode,
            )
        return CommandResult(stdout=completed.stdout, stderr=completed.stderr)

    def write_file(self, path: str, content: str) -> None:
        target = self._confine(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, "utf-8")
        except OSError as error:
            raise SandboxIOError(f"failed to write {path}: {error}") from error

    def read_file(self, path: str) -> str:
        target = self._confine(path)
        try:
            return target.read_text("utf-8")
        except FileNotFoundError as error:
            raise SandboxIOError(f"file not found: {path}") from error
        except OSError as error:
            raise SandboxIOError(f"failed to read {path}: {error}") from error

    def get_host(self, port: int) -> str:
        return f"localhost:{port}"

    def _confine(self, path: str) -> Path:
        raw = (path or "").strip().lstrip("/")
        if not raw:
            raise SandboxIOError("path is empty")
        root = self.workdir.resolve()
        target = (root / raw).resolve()
        if target != root and root not in target.parents:
            raise SandboxIOError(f"path escapes sandbox: {path}")
        return target


class LocalSandboxProvider:
    """Creates sandbox directories, optionally seeded from a template directory."""

    url_scheme = "http"

    def __init__(
        self,
        root_dir: Path,
        *,
        template_dir: Path | None = None,
        command_timeout_seconds: int = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self.root_dir = root_dir
        self.template_dir = template_dir
        self.command_timeout_seconds = command_timeout_seconds

    def create(self, template: str) -> str:
        sandbox_id = uuid4().hex
        workdir = self.root_dir / sandbox_id
        source = self.template_dir / template if self.template_dir else None
        if source is not None and source.is_dir():
            shutil.copytree(source, workdir)
        else:
            workdir.mkdir(parents=True)
        logger.info("Local sandbox created: id=%s template=%s", sandbox_id, template)
        return sandbox_id

    def connect(self, sandbox_id: str) -> LocalSandboxConnection:
        workdir = self.root_dir / sandbox_id
        if not sandbox_id or not workdir.is_dir():
            raise SandboxConnectionError(f"Local sandbox not found: {sandbox_id!r}")
        return LocalSandboxConnection(
            workdir,
            command_timeout_seconds=self.command_timeout_seconds,
        )


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _emit(callback: OutputCallback | None, data: str) -> None:
    if callback is not None and data:
        callback(data)
