"""Single-shot title and reply generation from the agent's final summary.

Both calls are best-effort: a failed or empty generation yields ``None`` and
the persister substitutes a fixed default. A transient ``ModelCallError`` is
re-raised so the surrounding step can retry it first.
"""

from __future__ import annotations

import logging

from devflow.agent.llm import ChatModel, ModelCallError
from devflow.agent.prompts import FRAGMENT_TITLE_PROMPT, RESPONSE_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_FRAGMENT_TITLE = "Fragment"
DEFAULT_RESPONSE = "Here you go"


def generate_fragment_title(model: ChatModel, summary: str) -> str | None:
    return _generate(model, FRAGMENT_TITLE_PROMPT, summary, purpose="fragment title")


def generate_response(model: ChatModel, summary: str) -> str | None:
    return _generate(model, RESPONSE_PROMPT, summary, purpose="response")


def fragment_title_or_default(title: str | None) -> str:
    return title or DEFAULT_FRAGMENT_TITLE


def response_or_default(response: str | None) -> str:
    return response or DEFAULT_RESPONSE


def _generate(model: ChatModel, system_prompt: str, summary: str, *, purpose: str) -> str | None:
    try:
        response = model.generate(system_prompt, [{"role": "user", "content": summary}])
    except ModelCallError as error:
        if error.transient:
            raise
        logger.warning("Generating %s failed, falling back to default: %s", purpose, error)
        return None
    except Exception as error:  # noqa: BLE001
        logger.warning("Generating %s raised, falling back to default: %s", purpose, error)
        return None
    text = (response.text or "").strip()
    if not text:
        logger.warning("Generating %s returned no text, falling back to default", purpose)
        return None
    return text
