"""Per-run agent state shared by every tool invocation."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Literal

Role = Literal["user", "assistant"]


class StateMutationError(RuntimeError):
    """Raised when a mutation would break the state's invariants."""


@dataclass(frozen=True, slots=True)
class ConversationMessage:
    """One prior project message used as model context only."""

    role: Role
    content: str

    def to_chat_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class AgentStateSnapshot:
    """Immutable copy of the state at one point in time."""

    summary: str
    files: Mapping[str, str]

    @property
    def is_complete(self) -> bool:
        return bool(self.summary)


@dataclass(slots=True)
class AgentState:
    """Mutable ``summary`` + ``files`` record owned by exactly one workflow run.

    ``files`` only grows: a path, once written, stays; later writes overwrite
    its content. ``summary`` is empty until completion is detected and never
    goes back to empty afterwards.
    """

    summary: str = ""
    files: dict[str, str] = field(default_factory=dict)
    _mutating: bool = field(default=False, repr=False, compare=False)

    def snapshot(self) -> AgentStateSnapshot:
        return AgentStateSnapshot(summary=self.summary, files=dict(self.files))

    def mutate(self, fn: Callable[[AgentState], None]) -> AgentStateSnapshot:
        """Apply ``fn`` synchronously; nested mutation is rejected."""

        if self._mutating:
            raise StateMutationError("Agent state is already being mutated")
        self._mutating = True
        try:
            fn(self)
        finally:
            self._mutating = False
        return self.snapshot()

    def merge_files(self, files: Mapping[str, str]) -> AgentStateSnapshot:
        def _merge(state: AgentState) -> None:
            state.files.update(files)

        return self.mutate(_merge)

    def set_summary(self, summary: str) -> AgentStateSnapshot:
        if not summary:
            raise StateMutationError("Summary cannot be reset to empty")

        def _set(state: AgentState) -> None:
            state.summary = summary

        return self.mutate(_set)
