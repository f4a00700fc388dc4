"""Controllers for project and agent CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

from devflow.agent.llm import OpenAICompatChatModel
from devflow.config import Settings
from devflow.sandbox.base import SandboxProvider
from devflow.sandbox.e2b_backend import E2BSandboxProvider
from devflow.sandbox.local import LocalSandboxProvider
from devflow.workflow.flow import WorkflowDependencies, code_agent_flow
from devflow.workflow.models import CodeAgentRequest, MessageView, RunStatus, WorkflowResult
from devflow.workflow.repository import ProjectNotFoundError, WorkflowRepository

_PREVIEW_CHARS = 120


@dataclass(slots=True)
class ProjectCreateCommand:
    """CLI input for project creation."""

    db_path: Path | None
    prompt: str
    name: str | None
    run: bool
    sandbox_backend: str | None


@dataclass(slots=True)
class ProjectMessagesCommand:
    """CLI input for listing a project's messages."""

    db_path: Path | None
    project_id: str
    show_files: bool


@dataclass(slots=True)
class AgentRunCommand:
    """CLI input for running (or resuming) the workflow on a project."""

    db_path: Path | None
    project_id: str
    prompt: str
    run_id: str | None
    sandbox_backend: str | None


@dataclass(slots=True)
class AgentStepsCommand:
    """CLI input for inspecting memoized steps of a run."""

    db_path: Path | None
    run_id: str
    show_results: bool


@dataclass(slots=True)
class WorkflowCommandResult:
    """Lines to print plus overall success flag."""

    lines: list[str]
    success: bool


class WorkflowCliController:
    """High-level project and workflow operations."""

    def create_project(self, command: ProjectCreateCommand) -> WorkflowCommandResult:
        settings = _load_settings(command.db_path, command.sandbox_backend)
        with _repository(settings) as repository:
            project = repository.create_project(command.prompt, name=command.name)
            lines = [f"Project created: project_id={project.project_id} name={project.name}"]
            if not command.run:
                return WorkflowCommandResult(lines=lines, success=True)
            result = _run_flow(
                settings,
                repository,
                CodeAgentRequest(project_id=project.project_id, value=command.prompt),
            )
        lines.extend(_render_result(result))
        return WorkflowCommandResult(lines=lines, success=result.status is RunStatus.SUCCEEDED)

    def run_agent(self, command: AgentRunCommand) -> WorkflowCommandResult:
        settings = _load_settings(command.db_path, command.sandbox_backend)
        with _repository(settings) as repository:
            if repository.get_project(command.project_id) is None:
                raise ProjectNotFoundError(f"Project not found: {command.project_id}")
            resuming = command.run_id is not None and bool(repository.list_steps(command.run_id))
            if not resuming:
                repository.add_user_message(command.project_id, command.prompt)
            result = _run_flow(
                settings,
                repository,
                CodeAgentRequest(
                    project_id=command.project_id,
                    value=command.prompt,
                    run_id=command.run_id,
                ),
            )
        return WorkflowCommandResult(
            lines=_render_result(result),
            success=result.status is RunStatus.SUCCEEDED,
        )

    def messages(self, command: ProjectMessagesCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            project = repository.get_project(command.project_id)
            if project is None:
                raise ProjectNotFoundError(f"Project not found: {command.project_id}")
            messages = repository.list_messages(command.project_id)

        lines = [f"Project {project.name} ({project.project_id}): {len(messages)} message(s)"]
        for message in messages:
            lines.extend(_render_message(message, show_files=command.show_files))
        return lines

    def steps(self, command: AgentStepsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            steps = repository.list_steps(command.run_id)

        lines = [f"Run {command.run_id}: {len(steps)} completed step(s)"]
        for step in steps:
            line = f"  {step.completed_at.isoformat()} {step.step_name}"
            if command.show_results:
                line += f" -> {_preview(step.result_json)}"
            lines.append(line)
        return lines


@contextmanager
def _repository(settings: Settings) -> Iterator[WorkflowRepository]:
    repository = WorkflowRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


def _load_settings(db_path: Path | None, sandbox_backend: str | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    if sandbox_backend:
        settings = replace(
            settings,
            sandbox=replace(settings.sandbox, backend=sandbox_backend.lower()),
        )
    settings.validate()
    return settings


def build_sandbox_provider(settings: Settings) -> SandboxProvider:
    sandbox = settings.sandbox
    if sandbox.backend == "local":
        return LocalSandboxProvider(
            sandbox.local_root,
            template_dir=sandbox.local_template_dir,
            command_timeout_seconds=sandbox.command_timeout_seconds,
        )
    return E2BSandboxProvider(
        api_key=sandbox.e2b_api_key,
        domain=sandbox.e2b_domain,
        sandbox_timeout_seconds=sandbox.sandbox_timeout_seconds,
        command_timeout_seconds=sandbox.command_timeout_seconds,
    )


def _run_flow(
    settings: Settings,
    repository: WorkflowRepository,
    request: CodeAgentRequest,
) -> WorkflowResult:
    models = settings.models
    with (
        OpenAICompatChatModel(
            base_url=models.coding_base_url,
            model=models.coding_model,
            api_key=models.coding_api_key,
            temperature=models.coding_temperature,
            timeout_seconds=models.timeout_seconds,
            max_retries=models.max_retries,
        ) as coding_model,
        OpenAICompatChatModel(
            base_url=models.summary_base_url,
            model=models.summary_model,
            api_key=models.summary_api_key,
            timeout_seconds=models.timeout_seconds,
            max_retries=models.max_retries,
        ) as summary_model,
    ):
        deps = WorkflowDependencies(
            repository=repository,
            sandbox_provider=build_sandbox_provider(settings),
            coding_model=coding_model,
            summary_model=summary_model,
            settings=settings,
        )
        flow_with_retries = code_agent_flow.with_options(
            retries=settings.workflow.flow_retries,
        )
        return flow_with_retries(request=request, deps=deps)


def _render_result(result: WorkflowResult) -> list[str]:
    lines = [
        f"Run {result.run_id}: status={result.status.value} iterations={result.iterations} "
        f"files={len(result.files)}",
    ]
    if result.status is RunStatus.SUCCEEDED:
        lines.append(f"  title: {result.title}")
        lines.append(f"  url: {result.url}")
        lines.extend(f"  file: {path}" for path in sorted(result.files))
    if result.error:
        lines.append(f"  error: {result.error}")
    return lines


def _render_message(message: MessageView, *, show_files: bool) -> list[str]:
    lines = [
        f"  [{message.created_at.isoformat()}] {message.role.value}/{message.message_type.value}: "
        f"{_preview(message.content)}",
    ]
    fragment = message.fragment
    if fragment is not None:
        lines.append(
            f"    fragment: {fragment.title} {fragment.sandbox_url} files={len(fragment.files)}",
        )
        if show_files:
            lines.extend(f"      {path}" for path in sorted(fragment.files))
    return lines


def _preview(text: str) -> str:
    flattened = " ".join(text.split())
    if len(flattened) <= _PREVIEW_CHARS:
        return flattened
    return flattened[: _PREVIEW_CHARS - 3] + "..."
