"""The code-agent workflow and its Prefect flow wrapper.

Step order for one run:

1. ``get-sandbox-id`` - create the sandbox, remember only its id
2. ``get-previous-messages`` - last few project messages as model context
3. agent loop - ``code-agent:inference:<n>`` and ``<tool>:<n>.<i>`` steps
4. ``generate-fragment-title`` / ``generate-response`` - best-effort summaries
5. ``get-sandbox-url`` - only when the run produced a summary and files
6. ``save-result`` - the single outcome write
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from uuid import uuid4

from prefect import flow
from prefect.runtime import flow_run

from devflow.agent.llm import ChatModel
from devflow.agent.network import AgentNetwork, CodingAgent
from devflow.agent.postprocess import (
    fragment_title_or_default,
    generate_fragment_title,
    generate_response,
)
from devflow.agent.prompts import CODING_AGENT_PROMPT
from devflow.agent.state import AgentState, ConversationMessage
from devflow.agent.tools import build_tool_set
from devflow.config import Settings
from devflow.sandbox.base import SandboxHandle, SandboxProvider, public_url
from devflow.workflow.models import (
    CodeAgentRequest,
    ErrorOutcome,
    OutcomeRecord,
    RunStatus,
    WorkflowResult,
)
from devflow.workflow.persister import build_outcome, is_error_outcome, persist_outcome
from devflow.workflow.repository import WorkflowRepository
from devflow.workflow.steps import StepExecutor, prefect_invoker

logger = logging.getLogger(__name__)

CODING_AGENT_NAME = "code-agent"


@dataclass(slots=True)
class WorkflowDependencies:
    """External collaborators of one workflow run.

    Field types must work with ``isinstance``: Prefect builds a parameter
    schema for ``code_agent_flow`` from them.
    """

    repository: WorkflowRepository
    sandbox_provider: SandboxProvider
    coding_model: ChatModel
    summary_model: ChatModel
    settings: Settings


def build_coding_agent(model: ChatModel) -> CodingAgent:
    return CodingAgent(
        name=CODING_AGENT_NAME,
        system_prompt=CODING_AGENT_PROMPT,
        model=model,
        tools=build_tool_set(),
    )


def run_code_agent(
    request: CodeAgentRequest,
    deps: WorkflowDependencies,
    *,
    executor: StepExecutor,
) -> WorkflowResult:
    """Execute one run; always ends with exactly one persisted outcome."""

    run_id = executor.run_id
    settings = deps.settings
    provider = deps.sandbox_provider
    state = AgentState()
    iterations = 0
    title: str | None = None
    sandbox_url: str | None = None
    error: str | None = None
    started = time.monotonic()
    logger.info("Run %s started for project %s", run_id, request.project_id)

    try:
        sandbox_id = executor.run(
            "get-sandbox-id",
            lambda: provider.create(settings.sandbox.template),
        )
        handle = SandboxHandle(sandbox_id)

        history_payload = executor.run(
            "get-previous-messages",
            lambda: [
                asdict(message)
                for message in deps.repository.load_recent_messages(
                    request.project_id,
                    limit=settings.workflow.history_limit,
                )
            ],
        )
        history = [ConversationMessage(**item) for item in history_payload]

        network = AgentNetwork(
            build_coding_agent(deps.coding_model),
            steps=executor,
            sandbox=handle,
            provider=provider,
            max_iterations=settings.workflow.max_iterations,
        )
        network_result = network.run(request.value, state=state, history=history)
        iterations = network_result.iterations
        snapshot = state.snapshot()

        reply: str | None = None
        if snapshot.summary:
            title = _best_effort_step(
                executor,
                "generate-fragment-title",
                lambda: generate_fragment_title(deps.summary_model, snapshot.summary),
            )
            reply = _best_effort_step(
                executor,
                "generate-response",
                lambda: generate_response(deps.summary_model, snapshot.summary),
            )

        if not is_error_outcome(snapshot):
            sandbox_url = executor.run(
                "get-sandbox-url",
                lambda: public_url(
                    handle.resolve(provider),
                    settings.sandbox.port,
                    scheme=provider.url_scheme,
                ),
            )
        outcome: OutcomeRecord = build_outcome(
            snapshot,
            title=title,
            reply=reply,
            sandbox_url=sandbox_url,
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("Run %s failed before producing an outcome", run_id)
        error = f"Unexpected error: {exc}"
        outcome = ErrorOutcome()

    executor.run(
        "save-result",
        lambda: persist_outcome(
            deps.repository,
            project_id=request.project_id,
            run_id=run_id,
            outcome=outcome,
        ),
    )

    succeeded = not isinstance(outcome, ErrorOutcome)
    snapshot = state.snapshot()
    logger.info(
        "Run %s finished: status=%s iterations=%d files=%d elapsed=%.1fs",
        run_id,
        "succeeded" if succeeded else "failed",
        iterations,
        len(snapshot.files),
        time.monotonic() - started,
    )
    return WorkflowResult(
        run_id=run_id,
        status=RunStatus.SUCCEEDED if succeeded else RunStatus.FAILED,
        title=fragment_title_or_default(title),
        url=sandbox_url or "",
        summary=snapshot.summary,
        files=dict(snapshot.files),
        iterations=iterations,
        error=error,
    )


def _best_effort_step(
    executor: StepExecutor,
    step_name: str,
    fn: Callable[[], str | None],
) -> str | None:
    """Run a summary step; once its retries are exhausted, fall back to ``None``."""

    try:
        return executor.run(step_name, fn)
    except Exception as error:  # noqa: BLE001
        logger.warning("Step %s failed, using the default instead: %s", step_name, error)
        return None


@flow(name="code-agent", validate_parameters=False)
def code_agent_flow(request: CodeAgentRequest, deps: WorkflowDependencies) -> WorkflowResult:
    """Prefect entrypoint; a flow retry reuses the flow-run id and replays memoized steps."""

    run_id = request.run_id or flow_run.id or str(uuid4())
    executor = StepExecutor(
        deps.repository,
        run_id,
        invoke=prefect_invoker(
            retries=deps.settings.workflow.step_retries,
            backoff_seconds=deps.settings.workflow.step_backoff_seconds,
        ),
    )
    return run_code_agent(request, deps, executor=executor)
