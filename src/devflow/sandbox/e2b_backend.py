"""E2B-hosted sandbox provider."""

from __future__ import annotations

import logging

from e2b import CommandExitException, NotFoundException, SandboxException, TimeoutException
from e2b_code_interpreter import Sandbox

from devflow.sandbox.base import (
    CommandResult,
    OutputCallback,
    SandboxCommandError,
    SandboxConnectionError,
    SandboxIOError,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "devflow-nextjs-test-v7"


class E2BSandboxConnection:
    """Adapts an ``e2b_code_interpreter.Sandbox`` to ``SandboxConnection``."""

    def __init__(self, sandbox: Sandbox, *, command_timeout_seconds: int) -> None:
        self._sandbox = sandbox
        self.command_timeout_seconds = command_timeout_seconds

    @property
    def sandbox_id(self) -> str:
        return self._sandbox.sandbox_id

    def run_command(
        self,
        command: str,
        *,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> CommandResult:
        try:
            result = self._sandbox.commands.run(
                command,
                on_stdout=on_stdout,
                on_stderr=on_stderr,
                timeout=self.command_timeout_seconds,
            )
        except CommandExitException as error:
            raise SandboxCommandError(
                f"command exited with code {error.exit_code}: {error.error or ''}".rstrip(": "),
                stdout=error.stdout,
                stderr=error.stderr,
                exit_code=error.exit_code,
            ) from error
        except TimeoutException as error:
            raise SandboxCommandError(f"command timed out: {error}") from error
        except SandboxException as error:
            raise SandboxCommandError(f"sandbox error: {error}") from error
        return CommandResult(stdout=result.stdout, stderr=result.stderr, exit_code=result.exit_code)

    def write_file(self, path: str, content: str) -> None:
        try:
            self._sandbox.files.write(path, content)
        except SandboxException as error:
            raise SandboxIOError(f"failed to write {path}: {error}") from error

    def read_file(self, path: str) -> str:
        try:
            return self._sandbox.files.read(path)
        except NotFoundException as error:
            raise SandboxIOError(f"file not found: {path}") from error
        except SandboxException as error:
            raise SandboxIOError(f"failed to read {path}: {error}") from error

    def get_host(self, port: int) -> str:
        return self._sandbox.get_host(port)


class E2BSandboxProvider:
    """Creates E2B sandboxes from a template and reconnects to them by id."""

    url_scheme = "https"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        domain: str | None = None,
        sandbox_timeout_seconds: int = 1_800,
        command_timeout_seconds: int = 300,
    ) -> None:
        self.api_key = api_key or None
        self.domain = domain or None
        self.sandbox_timeout_seconds = sandbox_timeout_seconds
        self.command_timeout_seconds = command_timeout_seconds

    def create(self, template: str) -> str:
        sandbox = Sandbox.create(
            template=template or DEFAULT_TEMPLATE,
            timeout=self.sandbox_timeout_seconds,
            api_key=self.api_key,
            domain=self.domain,
        )
        logger.info("E2B sandbox created: id=%s template=%s", sandbox.sandbox_id, template)
        return sandbox.sandbox_id

    def connect(self, sandbox_id: str) -> E2BSandboxConnection:
        try:
            sandbox = Sandbox.connect(sandbox_id, api_key=self.api_key, domain=self.domain)
        except SandboxException as error:
            raise SandboxConnectionError(
                f"E2B sandbox {sandbox_id!r} is not reachable: {error}",
            ) from error
        return E2BSandboxConnection(sandbox, command_timeout_seconds=self.command_timeout_seconds)
