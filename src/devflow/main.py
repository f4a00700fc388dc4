"""CLI entrypoint for devflow."""

from pathlib import Path

import rich_click as click

from devflow import __version__
from devflow.config import SUPPORTED_SANDBOX_BACKENDS
from devflow.workflow.controllers import (
    AgentRunCommand,
    AgentStepsCommand,
    ProjectCreateCommand,
    ProjectMessagesCommand,
    WorkflowCliController,
)
from devflow.workflow.repository import ProjectNotFoundError

click.rich_click.USE_MARKDOWN = True
WORKFLOW_CONTROLLER = WorkflowCliController()


@click.group()
@click.version_option(version=__version__, prog_name="devflow")
def devflow() -> None:
    """Turn a prompt into a working app inside a sandbox."""


@devflow.group()
def project() -> None:
    """Project commands."""


@devflow.group()
def agent() -> None:
    """Coding agent workflow commands."""


@project.command("create")
@click.argument("prompt")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", default=None, help="Project name. Generated when omitted.")
@click.option(
    "--run/--no-run",
    default=True,
    show_default=True,
    help="Start the coding agent workflow right after creating the project.",
)
@click.option(
    "--sandbox",
    "sandbox_backend",
    type=click.Choice(SUPPORTED_SANDBOX_BACKENDS, case_sensitive=False),
    default=None,
    help="Sandbox backend. Overrides DEVFLOW_SANDBOX_BACKEND.",
)
def project_create(
    prompt: str,
    db_path: Path | None,
    name: str | None,
    run: bool,
    sandbox_backend: str | None,
) -> None:
    """Create a project from PROMPT and optionally build it."""

    try:
        result = WORKFLOW_CONTROLLER.create_project(
            ProjectCreateCommand(
                db_path=db_path,
                prompt=prompt,
                name=name,
                run=run,
                sandbox_backend=sandbox_backend,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Coding agent run did not produce a result.")


@project.command("messages")
@click.argument("project_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--show-files/--no-show-files",
    default=False,
    show_default=True,
    help="List fragment file paths under each result.",
)
def project_messages(project_id: str, db_path: Path | None, show_files: bool) -> None:
    """Show the conversation and generated fragments of a project."""

    try:
        lines = WORKFLOW_CONTROLLER.messages(
            ProjectMessagesCommand(db_path=db_path, project_id=project_id, show_files=show_files),
        )
    except ProjectNotFoundError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@agent.command("run")
@click.argument("project_id")
@click.argument("prompt")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--run-id",
    default=None,
    help="Workflow run id. Reuse an existing id to resume it from its memoized steps.",
)
@click.option(
    "--sandbox",
    "sandbox_backend",
    type=click.Choice(SUPPORTED_SANDBOX_BACKENDS, case_sensitive=False),
    default=None,
    help="Sandbox backend. Overrides DEVFLOW_SANDBOX_BACKEND.",
)
def agent_run(
    project_id: str,
    prompt: str,
    db_path: Path | None,
    run_id: str | None,
    sandbox_backend: str | None,
) -> None:
    """Send PROMPT to an existing project and run the coding agent."""

    try:
        result = WORKFLOW_CONTROLLER.run_agent(
            AgentRunCommand(
                db_path=db_path,
                project_id=project_id,
                prompt=prompt,
                run_id=run_id,
                sandbox_backend=sandbox_backend,
            ),
        )
    except (ValueError, ProjectNotFoundError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Coding agent run did not produce a result.")


@agent.command("steps")
@click.argument("run_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--show-results/--no-show-results",
    default=False,
    show_default=True,
    help="Print a preview of each memoized step result.",
)
def agent_steps(run_id: str, db_path: Path | None, show_results: bool) -> None:
    """List the completed (memoized) steps of a workflow run."""

    _emit_lines(
        WORKFLOW_CONTROLLER.steps(
            AgentStepsCommand(db_path=db_path, run_id=run_id, show_results=show_results),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    devflow()
