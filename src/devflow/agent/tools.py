"""Sandbox tools exposed to the coding agent.

Each tool body runs as a durable step and reaches the sandbox through a fresh
connection. Failures are returned to the model as text so it can react on
its next iteration; they never raise into the workflow.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from devflow.agent.state import AgentState
from devflow.sandbox.base import ExecResult, SandboxHandle, SandboxProvider, exec_command
from devflow.workflow.steps import StepExecutor

logger = logging.getLogger(__name__)

TERMINAL_TOOL = "terminal"
CREATE_OR_UPDATE_FILES_TOOL = "createOrUpdateFiles"
READ_FILES_TOOL = "readFiles"


class ToolArgumentError(ValueError):
    """Raised when the model passes arguments that do not match the tool schema."""


@dataclass(slots=True)
class ToolContext:
    """Everything a tool handler may touch during one call."""

    state: AgentState
    steps: StepExecutor
    sandbox: SandboxHandle
    provider: SandboxProvider
    step_name: str


ToolHandler = Callable[[dict[str, Any], ToolContext], str]


@dataclass(frozen=True, slots=True)
class Tool:
    """A typed operation the model may call."""

    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def invoke(self, arguments: dict[str, Any], context: ToolContext) -> str:
        try:
            return self.handler(arguments, context)
        except ToolArgumentError as error:
            logger.warning("Tool %s rejected arguments: %s", self.name, error)
            return f"Invalid arguments for {self.name}: {error}"


def format_command_failure(result: ExecResult) -> str:
    return f"Command failed: {result.error}\nstdout: {result.stdout}\nstderr: {result.stderr}"


def _terminal(arguments: dict[str, Any], context: ToolContext) -> str:
    command = _require_str(arguments, "command")

    def _step() -> str:
        try:
            connection = context.sandbox.resolve(context.provider)
        except Exception as error:  # noqa: BLE001
            logger.warning("terminal: sandbox unavailable: %s", error)
            return format_command_failure(ExecResult(stdout="", stderr="", error=str(error)))
        result = exec_command(connection, command)
        if result.ok:
            return result.stdout
        logger.warning("terminal: command failed: %s", result.error)
        return format_command_failure(result)

    return context.steps.run(context.step_name, _step)


def _create_or_update_files(arguments: dict[str, Any], context: ToolContext) -> str:
    entries = _require_file_entries(arguments)

    def _step() -> dict[str, Any]:
        written: dict[str, str] = {}
        try:
            connection = context.sandbox.resolve(context.provider)
            for path, content in entries:
                connection.write_file(path, content)
                written[path] = content
        except Exception as error:  # noqa: BLE001
            logger.warning("createOrUpdateFiles: failed after %d file(s): %s", len(written), error)
            return {"files": written, "error": str(error)}
        return {"files": written, "error": None}

    outcome = context.steps.run(context.step_name, _step)
    if outcome["files"]:
        context.state.merge_files(outcome["files"])
    if outcome["error"]:
        return f"Error updating files: {outcome['error']}"
    return f"Updated {len(outcome['files'])} file(s): {', '.join(outcome['files'])}"


def _read_files(arguments: dict[str, Any], context: ToolContext) -> str:
    paths = _require_str_list(arguments, "files")

    def _step() -> str:
        try:
            connection = context.sandbox.resolve(context.provider)
            contents = [{"path": path, "content": connection.read_file(path)} for path in paths]
        except Exception as error:  # noqa: BLE001
            logger.warning("readFiles: %s", error)
            return f"Error reading files: {error}"
        return json.dumps(contents, ensure_ascii=False)

    return context.steps.run(context.step_name, _step)


def _require_str(arguments: dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolArgumentError(f"{key!r} must be a non-empty string")
    return value


def _require_str_list(arguments: dict[str, Any], key: str) -> list[str]:
    value = arguments.get(key)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ToolArgumentError(f"{key!r} must be a list of strings")
    return value


def _require_file_entries(arguments: dict[str, Any]) -> list[tuple[str, str]]:
    value = arguments.get("files")
    if not isinstance(value, list):
        raise ToolArgumentError("'files' must be a list of {path, content} objects")
    entries: list[tuple[str, str]] = []
    for item in value:
        if (
            not isinstance(item, dict)
            or not isinstance(item.get("path"), str)
            or not isinstance(item.get("content"), str)
        ):
            raise ToolArgumentError("each file needs string 'path' and 'content'")
        entries.append((item["path"], item["content"]))
    return entries


def build_tool_set() -> tuple[Tool, ...]:
    """The three sandbox tools, in the order they are offered to the model."""

    return (
        Tool(
            name=TERMINAL_TOOL,
            description="Use the terminal to run shell commands.",
            parameters={
                "type": "object",
                "properties": {"command": {"type": "string"}},
                "required": ["command"],
            },
            handler=_terminal,
        ),
        Tool(
            name=CREATE_OR_UPDATE_FILES_TOOL,
            description="Create or update files in the sandbox.",
            parameters={
                "type": "object",
                "properties": {
                    "files": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "path": {"type": "string"},
                                "content": {"type": "string"},
                            },
                            "required": ["path", "content"],
                        },
                    },
                },
                "required": ["files"],
            },
            handler=_create_or_update_files,
        ),
        Tool(
            name=READ_FILES_TOOL,
            description="Read files from the sandbox.",
            parameters={
                "type": "object",
                "properties": {"files": {"type": "array", "items": {"type": "string"}}},
                "required": ["files"],
            },
            handler=_read_files,
        ),
    )
