"""Display-text extraction from A2A responses.

An A2A call can answer with a bare message, a task (with status message,
history and artifacts), a JSON-RPC error, or something older and looser.
``extract_display_text`` runs an ordered chain of extractors and returns
the first text one of them produces; the final link pretty-prints the
payload, so the function always returns something displayable.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from typing import Any, TypeAlias

Extractor: TypeAlias = Callable[[Any], str | None]

_STATE_MESSAGES: dict[str, str] = {
    "submitted": "Task submitted, waiting for agent...",
    "working": "Agent is working on your request...",
    "input-required": "Agent requires additional input.",
    "completed": "Task completed.",
    "failed": "Task failed.",
    "canceled": "Task was canceled.",
}


def format_json(value: Any) -> str:
    """Pretty-print ``value`` with 2-space indent, ``str()`` if not JSON-able."""
    try:
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def extract_text_from_parts(parts: Any) -> str | None:
    """Return the ``text`` of the first ``kind: "text"`` part, if any."""
    if not isinstance(parts, list):
        return None
    for part in parts:
        if (
            isinstance(part, dict)
            and part.get("kind") == "text"
            and isinstance(part.get("text"), str)
        ):
            return part["text"]
    return None


def extract_error_summary(payload: Any) -> str | None:
    """Summarize a JSON-RPC style ``error`` object, or ``None`` if absent.

    Looks at a top-level ``error`` first, then ``data.error``.
    """
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if error is None:
        data = payload.get("data")
        error = data.get("error") if isinstance(data, dict) else None
    if not isinstance(error, dict):
        return None

    code = error.get("code")
    if isinstance(code, bool) or not isinstance(code, (int, float)):
        code = None
    message = error.get("message")
    if not isinstance(message, str) or not message:
        message = None

    if code is not None and message:
        return f"Agent error {code}: {message}"
    if message:
        return f"Agent error: {message}"
    if code is not None:
        return f"Agent error {code}"
    return "Agent returned an error."


def extract_artifacts_block(artifacts: Iterable[Any]) -> str | None:
    """Render text artifacts as quoted, fenced excerpts under a header.

    Artifacts without a text part are skipped; returns ``None`` when none
    remain. The block starts with a blank line so it can be appended
    directly to conversational text.
    """
    blocks: list[str] = []
    for artifact in artifacts:
        if not isinstance(artifact, dict):
            continue
        name = artifact.get("name")
        if not isinstance(name, str):
            name = "artifact"
        text = extract_text_from_parts(artifact.get("parts"))
        if text:
            quoted = "\n> ".join(text.split("\n"))
            blocks.append(f"> 📎 **{name}**\n>\n> ```json\n> {quoted}\n> ```")

    if not blocks:
        return None

    header = "**Artifact:**" if len(blocks) == 1 else "**Artifacts:**"
    return f"\n\n{header}\n\n" + "\n\n".join(blocks)


def extract_status_message_text(status: Any) -> str | None:
    """Text of ``status.message``: a raw string or a structured message."""
    if not isinstance(status, dict):
        return None
    message = status.get("message")
    if isinstance(message, str):
        return message or None
    if isinstance(message, dict) and message.get("kind") == "message":
        return extract_text_from_parts(message.get("parts"))
    return None


def extract_history_text(history: Any) -> str | None:
    """Most recent agent-authored text in ``history``, scanning backward."""
    if not isinstance(history, list):
        return None
    for entry in reversed(history):
        if isinstance(entry, dict) and entry.get("role") == "agent":
            text = extract_text_from_parts(entry.get("parts"))
            if text:
                return text
    return None


def extract_task_lead(task: dict[str, Any]) -> str | None:
    """Conversational part of a task: status message, else agent history."""
    return extract_status_message_text(task.get("status")) or extract_history_text(
        task.get("history")
    )


def extract_task_content(task: dict[str, Any]) -> str | None:
    """Conversational text plus artifacts block, without state fallback.

    When only artifacts exist the artifacts block is returned on its own,
    leading blank line included.
    """
    content_parts: list[str] = []
    lead = extract_task_lead(task)
    if lead:
        content_parts.append(lead)
    artifacts = task.get("artifacts")
    if isinstance(artifacts, list) and artifacts:
        block = extract_artifacts_block(artifacts)
        if block:
            content_parts.append(block)
    return "".join(content_parts) or None


def task_state_fallback(state: str | None) -> str:
    """Fixed sentence describing a task state."""
    if state in _STATE_MESSAGES:
        return _STATE_MESSAGES[state]
    return f"Task status: {state or 'unknown'}"


def _task_state(payload: dict[str, Any]) -> str | None:
    status = payload.get("status")
    state = status.get("state") if isinstance(status, dict) else None
    return state if isinstance(state, str) else None


# ---------------------------------------------------------------------------
# Extractor chain
# ---------------------------------------------------------------------------


def _from_string(payload: Any) -> str | None:
    return payload if isinstance(payload, str) else None


def _from_error(payload: Any) -> str | None:
    # Transport failures are recorded as {"error": "<message>"}
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return extract_error_summary(payload)


def _from_task(payload: Any) -> str | None:
    if not isinstance(payload, dict) or payload.get("kind") != "task":
        return None
    return extract_task_content(payload) or task_state_fallback(_task_state(payload))


def _from_message(payload: Any) -> str | None:
    if not isinstance(payload, dict) or payload.get("kind") != "message":
        return None
    return extract_text_from_parts(payload.get("parts"))


def _from_legacy_result(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    result = payload.get("result")
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        for key in ("message", "content", "text"):
            if key in result and result[key] is not None:
                value = result[key]
                return value if isinstance(value, str) else None
    return None


EXTRACTORS: tuple[Extractor, ...] = (
    _from_string,
    _from_error,
    _from_task,
    _from_message,
    _from_legacy_result,
)


def extract_display_text(payload: Any) -> str:
    """Produce display text for any A2A result shape.

    Tries each extractor in :data:`EXTRACTORS` in order and falls back to
    pretty-printed JSON of the whole payload.
    """
    for extractor in EXTRACTORS:
        text = extractor(payload)
        if text is not None:
            return text
    return format_json(payload)
