"""Outcome classification and the single outcome write of a run."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Protocol

from devflow.agent.postprocess import fragment_title_or_default, response_or_default
from devflow.agent.state import AgentStateSnapshot
from devflow.workflow.models import ErrorOutcome, MessageView, OutcomeRecord, SuccessOutcome

logger = logging.getLogger(__name__)


class OutcomeWriter(Protocol):
    """Persistence collaborator receiving the run's outcome record."""

    def write_outcome(self, project_id: str, run_id: str, outcome: OutcomeRecord) -> MessageView:
        """Persist ``outcome`` once for ``run_id``."""


def is_error_outcome(snapshot: AgentStateSnapshot) -> bool:
    """A run failed unless it produced both a summary and at least one file."""

    return not snapshot.summary or not snapshot.files


def build_outcome(
    snapshot: AgentStateSnapshot,
    *,
    title: str | None,
    reply: str | None,
    sandbox_url: str | None,
) -> OutcomeRecord:
    if is_error_outcome(snapshot) or sandbox_url is None:
        return ErrorOutcome()
    return SuccessOutcome(
        reply=response_or_default(reply),
        title=fragment_title_or_default(title),
        sandbox_url=sandbox_url,
        files=dict(snapshot.files),
    )


def outcome_to_dict(outcome: OutcomeRecord) -> dict[str, Any]:
    kind = "error" if isinstance(outcome, ErrorOutcome) else "success"
    return {"kind": kind, **asdict(outcome)}


def persist_outcome(
    writer: OutcomeWriter,
    *,
    project_id: str,
    run_id: str,
    outcome: OutcomeRecord,
) -> dict[str, Any]:
    """Write the outcome and return a JSON-safe description of what was stored."""

    message = writer.write_outcome(project_id, run_id, outcome)
    logger.info(
        "Outcome saved: project_id=%s run_id=%s type=%s message_id=%s",
        project_id,
        run_id,
        message.message_type.value,
        message.message_id,
    )
    return {"message_id": message.message_id, **outcome_to_dict(outcome)}
