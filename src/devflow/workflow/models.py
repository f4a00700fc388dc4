"""Domain models for projects, outcome records and workflow runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

ERROR_OUTCOME_MESSAGE = "Something went wrong. Please try again"
MAX_PROMPT_CHARS = 1_000


class MessageRole(str, Enum):
    """Author of a project message."""

    USER = "USER"
    ASSISTANT = "ASSISTANT"


class MessageType(str, Enum):
    """Whether an assistant message carries a result or the error placeholder."""

    RESULT = "RESULT"
    ERROR = "ERROR"


class RunStatus(str, Enum):
    """Terminal classification of one workflow run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ErrorOutcome:
    """Fixed error record: no artifact attached."""

    content: str = ERROR_OUTCOME_MESSAGE


@dataclass(frozen=True, slots=True)
class SuccessOutcome:
    """Successful run: reply text plus the generated fragment."""

    reply: str
    title: str
    sandbox_url: str
    files: dict[str, str]


OutcomeRecord = ErrorOutcome | SuccessOutcome


@dataclass(slots=True)
class CodeAgentRequest:
    """Trigger payload for one workflow run."""

    project_id: str
    value: str
    run_id: str | None = None


@dataclass(slots=True)
class WorkflowResult:
    """Value returned to the caller of the workflow."""

    run_id: str
    status: RunStatus
    title: str
    url: str
    summary: str
    files: dict[str, str] = field(default_factory=dict)
    iterations: int = 0
    error: str | None = None


@dataclass(slots=True)
class ProjectView:
    project_id: str
    name: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class FragmentView:
    fragment_id: int
    message_id: int
    title: str
    sandbox_url: str
    files: dict[str, str]
    created_at: datetime


@dataclass(slots=True)
class MessageView:
    message_id: int
    project_id: str
    role: MessageRole
    message_type: MessageType
    content: str
    run_id: str | None
    created_at: datetime
    fragment: FragmentView | None = None


@dataclass(slots=True)
class StepView:
    run_id: str
    step_name: str
    result_json: str
    completed_at: datetime


def validate_prompt(value: str) -> str:
    """Enforce the trigger surface's prompt bounds."""

    if not value:
        raise ValueError("Message is required")
    if len(value) > MAX_PROMPT_CHARS:
        raise ValueError("Prompt is too long")
    return value
