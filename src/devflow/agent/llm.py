"""Chat model client over the OpenAI-compatible ``/chat/completions`` API."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_RETRIES = 2
_TRANSIENT_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})


class ModelCallError(RuntimeError):
    """Model call failure with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(frozen=True, slots=True)
class ToolCall:
    """One tool invocation requested by the model."""

    call_id: str
    name: str
    arguments: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"call_id": self.call_id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ToolCall:
        return cls(
            call_id=str(payload["call_id"]),
            name=str(payload["name"]),
            arguments=dict(payload.get("arguments") or {}),
        )


@dataclass(frozen=True, slots=True)
class ModelResponse:
    """Text and/or tool calls returned by one model invocation."""

    text: str | None
    tool_calls: tuple[ToolCall, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "tool_calls": [call.to_dict() for call in self.tool_calls]}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ModelResponse:
        return cls(
            text=payload.get("text"),
            tool_calls=tuple(ToolCall.from_dict(item) for item in payload.get("tool_calls", [])),
        )

    def to_chat_message(self) -> dict[str, Any]:
        """Assistant message in the wire format, for feeding back as history."""

        message: dict[str, Any] = {"role": "assistant", "content": self.text}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.call_id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in self.tool_calls
            ]
        return message


@runtime_checkable
class ChatModel(Protocol):
    """Protocol implemented by model clients."""

    def generate(
        self,
        system_prompt: str,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> ModelResponse:
        """Run one completion and return text and/or tool calls."""


class OpenAICompatChatModel:
    """``ChatModel`` backed by any OpenAI-compatible chat completions endpoint."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        model: str,
        api_key: str = "",
        temperature: float | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def generate(
        self,
        system_prompt: str,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> ModelResponse:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if tools:
            payload["tools"] = list(tools)

        url = f"{self.base_url}/chat/completions"
        try:
            response = self._client.post(url, json=payload)
        except httpx.HTTPError as error:
            raise ModelCallError(
                f"{self.model}: request failed: {error}",
                transient=True,
            ) from error

        if not response.is_success:
            raise ModelCallError(
                f"{self.model}: HTTP {response.status_code}: {response.text[:500]}",
                transient=response.status_code in _TRANSIENT_STATUS_CODES,
            )
        try:
            data = response.json()
            message = data["choices"][0]["message"]
            if not isinstance(message, dict):
                raise TypeError(f"message is {type(message).__name__}, expected an object")
            return parse_chat_message(message)
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as error:
            raise ModelCallError(
                f"{self.model}: unexpected completion payload: {error}",
                transient=False,
            ) from error

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAICompatChatModel:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def parse_chat_message(message: dict[str, Any]) -> ModelResponse:
    """Convert a wire-format assistant message into ``ModelResponse``."""

    text = _message_text(message.get("content"))
    calls: list[ToolCall] = []
    for index, raw in enumerate(message.get("tool_calls") or []):
        function = raw.get("function") or {}
        name = str(function.get("name") or "")
        raw_arguments = function.get("arguments") or "{}"
        try:
            arguments = (
                json.loads(raw_arguments) if isinstance(raw_arguments, str) else raw_arguments
            )
        except json.JSONDecodeError:
            logger.warning("Tool call %s has malformed JSON arguments", name)
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        calls.append(
            ToolCall(
                call_id=str(raw.get("id") or f"call_{index}"),
                name=name,
                arguments=arguments,
            ),
        )
    return ModelResponse(text=text, tool_calls=tuple(calls))


def _message_text(content: Any) -> str | None:
    if content is None:
        return None
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            str(part.get("text", ""))
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        ]
        return "".join(parts)
    return str(content)
