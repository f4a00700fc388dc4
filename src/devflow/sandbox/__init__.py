"""Sandbox providers and the handle used to address them."""

from devflow.sandbox.base import (
    CommandResult,
    ExecResult,
    SandboxCommandError,
    SandboxConnection,
    SandboxConnectionError,
    SandboxHandle,
    SandboxIOError,
    SandboxProvider,
    exec_command,
    public_url,
)
from devflow.sandbox.local import LocalSandboxProvider

__all__ = [
    "CommandResult",
    "ExecResult",
    "LocalSandboxProvider",
    "SandboxCommandError",
    "SandboxConnection",
    "SandboxConnectionError",
    "SandboxHandle",
    "SandboxIOError",
    "SandboxProvider",
    "exec_command",
    "public_url",
]
