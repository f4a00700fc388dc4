from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import allure
import pytest
from stubs import FailingChatModel, ScriptedChatModel, summary_response, tool_call

from devflow.agent.llm import ModelResponse
from devflow.config import Settings, WorkflowSettings
from devflow.sandbox.base import SandboxConnectionError
from devflow.sandbox.local import LocalSandboxProvider
from devflow.workflow.flow import WorkflowDependencies, run_code_agent
from devflow.workflow.models import (
    ERROR_OUTCOME_MESSAGE,
    CodeAgentRequest,
    MessageRole,
    MessageType,
    RunStatus,
)
from devflow.workflow.repository import WorkflowRepository
from devflow.workflow.steps import StepExecutor

pytestmark = [
    allure.epic("Coding Agent"),
    allure.feature("Durable Workflow"),
]

PROMPT = "Build a landing page"


class _Crash(BaseException):
    """Simulates the worker process dying mid-run."""


class _UnavailableProvider:
    url_scheme = "https"

    def create(self, template: str) -> str:
        raise SandboxConnectionError(f"quota exceeded for template {template}")

    def connect(self, sandbox_id: str):
        raise SandboxConnectionError(f"unknown sandbox {sandbox_id}")


def _write_files_then_finish() -> ScriptedChatModel:
    return ScriptedChatModel(
        script=[
            tool_call("createOrUpdateFiles", files=[{"path": "a.txt", "content": "hi"}]),
            summary_response(),
        ],
    )


def _summary_model() -> ScriptedChatModel:
    return ScriptedChatModel(
        script=[ModelResponse(text="Landing Page"), ModelResponse(text="Your page is ready.")],
    )


def _deps(
    repository: WorkflowRepository,
    provider: Any,
    coding_model: Any,
    summary_model: Any,
    settings: Settings | None = None,
) -> WorkflowDependencies:
    return WorkflowDependencies(
        repository=repository,
        sandbox_provider=provider,
        coding_model=coding_model,
        summary_model=summary_model,
        settings=settings or Settings(),
    )


def _crash_on(step_name: str) -> Callable[[str, Callable[[], Any]], Any]:
    def _invoke(name: str, fn: Callable[[], Any]) -> Any:
        if name == step_name:
            raise _Crash(name)
        return fn()

    return _invoke


def test_successful_run_persists_fragment_with_generated_title_and_reply(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)
    executor = StepExecutor(repository, "run-ok")

    result = run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(repository, sandbox_provider, _write_files_then_finish(), _summary_model()),
        executor=executor,
    )

    assert result.status is RunStatus.SUCCEEDED
    assert result.files == {"a.txt": "hi"}
    assert result.title == "Landing Page"
    assert result.url == "http://localhost:3000"
    assert result.iterations == 2
    assert "<task_summary>" in result.summary
    assert executor.executed == [
        "get-sandbox-id",
        "get-previous-messages",
        "code-agent:inference:1",
        "createOrUpdateFiles:1.0",
        "code-agent:inference:2",
        "generate-fragment-title",
        "generate-response",
        "get-sandbox-url",
        "save-result",
    ]

    messages = repository.list_messages(project.project_id)
    assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    outcome = messages[-1]
    assert outcome.message_type is MessageType.RESULT
    assert outcome.content == "Your page is ready."
    assert outcome.run_id == "run-ok"
    assert outcome.fragment is not None
    assert outcome.fragment.title == "Landing Page"
    assert outcome.fragment.sandbox_url == "http://localhost:3000"
    assert outcome.fragment.files == {"a.txt": "hi"}


def test_written_files_land_in_the_sandbox(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)
    executor = StepExecutor(repository, "run-files")

    run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(repository, sandbox_provider, _write_files_then_finish(), _summary_model()),
        executor=executor,
    )

    sandbox_id = repository.get_step("run-files", "get-sandbox-id")
    assert sandbox_id is not None
    connection = sandbox_provider.connect(json.loads(sandbox_id))
    assert connection.read_file("a.txt") == "hi"


def test_previous_messages_are_sent_before_the_prompt(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)
    coding = _write_files_then_finish()

    run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(repository, sandbox_provider, coding, _summary_model()),
        executor=StepExecutor(repository, "run-history"),
    )

    first_call = coding.calls[0]["messages"]
    assert first_call == [
        {"role": "user", "content": PROMPT},
        {"role": "user", "content": PROMPT},
    ]
    assert {tool["function"]["name"] for tool in coding.calls[0]["tools"]} == {
        "terminal",
        "createOrUpdateFiles",
        "readFiles",
    }


def test_follow_up_run_sees_previous_outcome_as_assistant_context(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)
    run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(repository, sandbox_provider, _write_files_then_finish(), _summary_model()),
        executor=StepExecutor(repository, "run-first"),
    )
    repository.add_user_message(project.project_id, "Make it blue")
    coding = _write_files_then_finish()

    run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value="Make it blue"),
        _deps(repository, sandbox_provider, coding, _summary_model()),
        executor=StepExecutor(repository, "run-second"),
    )

    roles = [message["role"] for message in coding.calls[0]["messages"]]
    assert roles == ["user", "assistant", "user", "user"]
    assert coding.calls[0]["messages"][1]["content"] == "Your page is ready."


def test_exhausted_loop_records_error_outcome(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)
    coding = ScriptedChatModel()
    summary = ScriptedChatModel()
    executor = StepExecutor(repository, "run-exhausted")

    result = run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(repository, sandbox_provider, coding, summary),
        executor=executor,
    )

    assert result.status is RunStatus.FAILED
    assert result.iterations == 15
    assert len(coding.calls) == 15
    assert summary.calls == []
    assert "get-sandbox-url" not in executor.executed
    outcome = repository.get_outcome("run-exhausted")
    assert outcome is not None
    assert outcome.message_type is MessageType.ERROR
    assert outcome.content == ERROR_OUTCOME_MESSAGE
    assert outcome.fragment is None


def test_summary_without_files_is_an_error(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)
    executor = StepExecutor(repository, "run-nofiles")

    result = run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(
            repository,
            sandbox_provider,
            ScriptedChatModel(script=[summary_response("Nothing to do.")]),
            _summary_model(),
        ),
        executor=executor,
    )

    assert result.status is RunStatus.FAILED
    assert result.iterations == 1
    assert result.files == {}
    assert "get-sandbox-url" not in executor.executed
    assert "save-result" in executor.executed
    outcome = repository.get_outcome("run-nofiles")
    assert outcome is not None
    assert outcome.message_type is MessageType.ERROR


def test_title_and_reply_fall_back_to_defaults_when_summary_model_fails(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)

    result = run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(repository, sandbox_provider, _write_files_then_finish(), FailingChatModel()),
        executor=StepExecutor(repository, "run-defaults"),
    )

    assert result.status is RunStatus.SUCCEEDED
    assert result.title == "Fragment"
    outcome = repository.get_outcome("run-defaults")
    assert outcome is not None
    assert outcome.content == "Here you go"
    assert outcome.fragment is not None
    assert outcome.fragment.title == "Fragment"


class _BrokenSummaryModel:
    def generate(self, system_prompt, messages, tools=None):  # noqa: ARG002
        raise AttributeError("'NoneType' object has no attribute 'get'")


@pytest.mark.parametrize(
    "summary_model",
    [_BrokenSummaryModel(), FailingChatModel(transient=True)],
    ids=["unexpected-exception", "transient-after-retries"],
)
def test_summary_model_errors_never_fail_a_successful_run(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
    summary_model: Any,
) -> None:
    project = repository.create_project(PROMPT)
    executor = StepExecutor(repository, "run-summary-errors")

    result = run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(repository, sandbox_provider, _write_files_then_finish(), summary_model),
        executor=executor,
    )

    assert result.status is RunStatus.SUCCEEDED
    assert result.title == "Fragment"
    outcome = repository.get_outcome("run-summary-errors")
    assert outcome is not None
    assert outcome.message_type is MessageType.RESULT
    assert outcome.content == "Here you go"
    assert "generate-fragment-title" not in executor.executed
    assert executor.executed[-2:] == ["get-sandbox-url", "save-result"]


def test_failed_command_is_reported_to_the_model_and_loop_continues(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)
    coding = ScriptedChatModel(
        script=[
            tool_call("terminal", command="echo partial; exit 3"),
            tool_call("createOrUpdateFiles", files=[{"path": "a.txt", "content": "hi"}]),
            summary_response(),
        ],
    )

    result = run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(repository, sandbox_provider, coding, _summary_model()),
        executor=StepExecutor(repository, "run-cmdfail"),
    )

    assert result.status is RunStatus.SUCCEEDED
    tool_message = coding.calls[1]["messages"][-1]
    assert tool_message["role"] == "tool"
    assert tool_message["content"].startswith("Command failed:")
    assert "partial" in tool_message["content"]


def test_sandbox_creation_failure_still_writes_one_error_outcome(
    repository: WorkflowRepository,
) -> None:
    project = repository.create_project(PROMPT)
    coding = _write_files_then_finish()
    executor = StepExecutor(repository, "run-nosandbox")

    result = run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(repository, _UnavailableProvider(), coding, _summary_model()),
        executor=executor,
    )

    assert result.status is RunStatus.FAILED
    assert result.error is not None
    assert "quota exceeded" in result.error
    assert coding.calls == []
    assert executor.executed == ["save-result"]
    messages = repository.list_messages(project.project_id)
    assert [m.message_type for m in messages if m.role is MessageRole.ASSISTANT] == [
        MessageType.ERROR,
    ]


def test_completed_run_replays_every_step_without_side_effects(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)
    request = CodeAgentRequest(project_id=project.project_id, value=PROMPT)
    first = run_code_agent(
        request,
        _deps(repository, sandbox_provider, _write_files_then_finish(), _summary_model()),
        executor=StepExecutor(repository, "run-replay"),
    )
    coding = FailingChatModel()
    summary = FailingChatModel()
    executor = StepExecutor(repository, "run-replay")

    second = run_code_agent(
        request,
        _deps(repository, sandbox_provider, coding, summary),
        executor=executor,
    )

    assert coding.calls == 0
    assert summary.calls == 0
    assert executor.executed == []
    assert second.status is RunStatus.SUCCEEDED
    assert second.files == first.files
    assert second.title == first.title
    assert second.url == first.url
    assert len(list(sandbox_provider.root_dir.iterdir())) == 1
    outcomes = [
        m for m in repository.list_messages(project.project_id) if m.role is MessageRole.ASSISTANT
    ]
    assert len(outcomes) == 1


def test_resume_after_crash_runs_only_the_missing_steps(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)
    request = CodeAgentRequest(project_id=project.project_id, value=PROMPT)
    with pytest.raises(_Crash):
        run_code_agent(
            request,
            _deps(repository, sandbox_provider, _write_files_then_finish(), FailingChatModel()),
            executor=StepExecutor(
                repository,
                "run-crash",
                invoke=_crash_on("generate-fragment-title"),
            ),
        )
    assert repository.get_outcome("run-crash") is None

    coding = FailingChatModel()
    executor = StepExecutor(repository, "run-crash")
    result = run_code_agent(
        request,
        _deps(repository, sandbox_provider, coding, _summary_model()),
        executor=executor,
    )

    assert coding.calls == 0
    assert executor.executed == [
        "generate-fragment-title",
        "generate-response",
        "get-sandbox-url",
        "save-result",
    ]
    assert result.status is RunStatus.SUCCEEDED
    assert result.files == {"a.txt": "hi"}
    assert result.title == "Landing Page"


def test_iteration_cap_follows_settings(
    repository: WorkflowRepository,
    sandbox_provider: LocalSandboxProvider,
) -> None:
    project = repository.create_project(PROMPT)
    coding = ScriptedChatModel()
    settings = Settings(workflow=WorkflowSettings(max_iterations=3))

    result = run_code_agent(
        CodeAgentRequest(project_id=project.project_id, value=PROMPT),
        _deps(repository, sandbox_provider, coding, ScriptedChatModel(), settings),
        executor=StepExecutor(repository, "run-capped"),
    )

    assert result.iterations == 3
    assert len(coding.calls) == 3
    assert result.status is RunStatus.FAILED
