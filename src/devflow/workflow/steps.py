"""Durable, memoized workflow steps.

Every side effect of a workflow run (sandbox creation, model calls, tool
calls, the final write) happens inside a named step. A completed step's
JSON-encoded result is stored under ``(run_id, step_name)``; when the same
run is resumed after a crash or a flow retry, completed steps return the
stored result instead of executing again. Retry of a failing step is owned by
Prefect: the step body runs inside a task with bounded retries and
exponential backoff.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from prefect import task
from prefect.cache_policies import NO_CACHE
from prefect.tasks import exponential_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")
StepInvoker = Callable[[str, Callable[[], Any]], Any]


class StepStore(Protocol):
    """Write-once result table keyed by ``(run_id, step_name)``."""

    def get_step(self, run_id: str, step_name: str) -> str | None:
        """Return the stored JSON result or ``None`` if the step never completed."""

    def save_step(self, run_id: str, step_name: str, result_json: str) -> str:
        """Store ``result_json`` unless present; return the value that is stored."""


def _is_transient(task: Any, task_run: Any, state: Any) -> bool:  # noqa: ARG001
    try:
        state.result()
    except Exception as error:  # noqa: BLE001
        return bool(getattr(error, "transient", True))
    return False


@task(
    task_run_name="{step_name}",
    cache_policy=NO_CACHE,
    persist_result=False,
    retry_condition_fn=_is_transient,
)
def run_durable_step(step_name: str, fn: Callable[[], Any]) -> Any:  # noqa: ARG001
    """Prefect task wrapper that gives a step body retries."""
    return fn()


def prefect_invoker(*, retries: int, backoff_seconds: float) -> StepInvoker:
    """Build an invoker running step bodies as retried Prefect tasks."""

    configured = run_durable_step.with_options(
        retries=retries,
        retry_delay_seconds=exponential_backoff(backoff_factor=backoff_seconds) if retries else 0,
    )

    def _invoke(step_name: str, fn: Callable[[], Any]) -> Any:
        return configured(step_name=step_name, fn=fn)

    return _invoke


def invoke_inline(step_name: str, fn: Callable[[], Any]) -> Any:  # noqa: ARG001
    """Run the step body directly, without a Prefect task or retries."""
    return fn()


class StepExecutor:
    """Runs named steps of one workflow run at most once."""

    def __init__(
        self,
        store: StepStore,
        run_id: str,
        *,
        invoke: StepInvoker = invoke_inline,
    ) -> None:
        self.store = store
        self.run_id = run_id
        self.invoke = invoke
        self.executed: list[str] = []
        self.replayed: list[str] = []

    def run(self, step_name: str, fn: Callable[[], T]) -> T:
        """Return the memoized result of ``step_name`` or execute ``fn`` and store it.

        The result must be JSON-serializable. The value handed back is always
        the decoded stored payload, so a first execution and a replay return
        structurally identical results.
        """

        cached = self.store.get_step(self.run_id, step_name)
        if cached is not None:
            logger.info("Step replayed from memo: run_id=%s step=%s", self.run_id, step_name)
            self.replayed.append(step_name)
            return json.loads(cached)

        started = time.monotonic()
        result = self.invoke(step_name, fn)
        payload = json.dumps(result, ensure_ascii=False, sort_keys=True)
        stored = self.store.save_step(self.run_id, step_name, payload)
        self.executed.append(step_name)
        logger.info(
            "Step completed: run_id=%s step=%s elapsed=%.2fs",
            self.run_id,
            step_name,
            time.monotonic() - started,
        )
        return json.loads(stored)
