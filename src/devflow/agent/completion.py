"""Completion protocol between the coding agent's prompt and the loop.

The agent signals that it is finished by including ``<task_summary>`` in a
text reply. Detection is a plain substring check: when the marker appears,
the whole message (not just the tagged part) becomes the run's summary.
"""

from __future__ import annotations

TASK_SUMMARY_MARKER = "<task_summary>"


def detect_task_summary(text: str | None) -> str | None:
    """Return the summary carried by ``text`` or ``None`` if it is not terminal."""

    if text and TASK_SUMMARY_MARKER in text:
        return text
    return None
