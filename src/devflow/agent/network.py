"""Bounded agent loop driving the coding agent until it reports completion."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from devflow.agent.completion import detect_task_summary
from devflow.agent.llm import ChatModel, ModelResponse, ToolCall
from devflow.agent.state import AgentState, ConversationMessage
from devflow.agent.tools import Tool, ToolContext
from devflow.sandbox.base import SandboxHandle, SandboxProvider
from devflow.workflow.steps import StepExecutor

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 15


class NetworkStatus(str, Enum):
    """Loop lifecycle states."""

    RUNNING = "running"
    DONE = "done"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class CodingAgent:
    """Model configuration the network invokes on every iteration."""

    name: str
    system_prompt: str
    model: ChatModel
    tools: tuple[Tool, ...] = ()

    def find_tool(self, name: str) -> Tool | None:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None


@dataclass(slots=True)
class NetworkResult:
    """Terminal state of one network run."""

    status: NetworkStatus
    iterations: int
    state: AgentState
    last_text: str | None = None


class AgentNetwork:
    """Re-invokes one agent until a summary is set or the iteration cap is hit.

    One iteration is one model inference followed by the tool calls it
    requested, executed sequentially in the requested order. An iteration
    that produces neither tool calls nor a summary still counts.
    """

    def __init__(  # noqa: PLR0913
        self,
        agent: CodingAgent,
        *,
        steps: StepExecutor,
        sandbox: SandboxHandle,
        provider: SandboxProvider,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        if max_iterations <= 0:
            raise ValueError("max_iterations must be > 0")
        self.agent = agent
        self.steps = steps
        self.sandbox = sandbox
        self.provider = provider
        self.max_iterations = max_iterations

    def route(self, state: AgentState) -> CodingAgent | None:
        """Pick the next agent to run, or ``None`` once a summary exists."""

        if state.summary:
            return None
        return self.agent

    def run(
        self,
        prompt: str,
        *,
        state: AgentState,
        history: Sequence[ConversationMessage] = (),
    ) -> NetworkResult:
        messages: list[dict[str, Any]] = [message.to_chat_message() for message in history]
        messages.append({"role": "user", "content": prompt})
        iteration = 0
        last_text: str | None = None

        while iteration < self.max_iterations:
            agent = self.route(state)
            if agent is None:
                break
            iteration += 1
            response = self._infer(agent, messages, iteration)
            messages.append(response.to_chat_message())
            for index, call in enumerate(response.tool_calls):
                output = self._call_tool(agent, call, state, f"{call.name}:{iteration}.{index}")
                messages.append({"role": "tool", "tool_call_id": call.call_id, "content": output})
            if response.text:
                last_text = response.text
            self._on_response(response, state)
            logger.info(
                "Iteration %d/%d: tool_calls=%d files=%d done=%s",
                iteration,
                self.max_iterations,
                len(response.tool_calls),
                len(state.files),
                bool(state.summary),
            )

        status = NetworkStatus.DONE if state.summary else NetworkStatus.EXHAUSTED
        if status is NetworkStatus.EXHAUSTED:
            logger.warning("Agent loop exhausted after %d iterations without a summary", iteration)
        return NetworkResult(status=status, iterations=iteration, state=state, last_text=last_text)

    def _infer(
        self,
        agent: CodingAgent,
        messages: list[dict[str, Any]],
        iteration: int,
    ) -> ModelResponse:
        context = list(messages)
        schemas = [tool.schema() for tool in agent.tools] or None

        def _step() -> dict[str, Any]:
            return agent.model.generate(agent.system_prompt, context, schemas).to_dict()

        payload = self.steps.run(f"{agent.name}:inference:{iteration}", _step)
        return ModelResponse.from_dict(payload)

    def _call_tool(
        self,
        agent: CodingAgent,
        call: ToolCall,
        state: AgentState,
        step_name: str,
    ) -> str:
        tool = agent.find_tool(call.name)
        if tool is None:
            available = ", ".join(t.name for t in agent.tools)
            logger.warning("Model requested unknown tool %r", call.name)
            return f"Unknown tool {call.name!r}. Available tools: {available}"
        context = ToolContext(
            state=state,
            steps=self.steps,
            sandbox=self.sandbox,
            provider=self.provider,
            step_name=step_name,
        )
        return tool.invoke(call.arguments, context)

    def _on_response(self, response: ModelResponse, state: AgentState) -> None:
        summary = detect_task_summary(response.text)
        if summary and not state.summary:
            state.set_summary(summary)
