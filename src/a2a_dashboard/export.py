"""Conversation export as JSON or Markdown."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Literal, TypeAlias

from .types import ChatMessage

ExportFormat: TypeAlias = Literal["json", "md"]

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-z0-9]")


def _message_dicts(messages: Iterable[ChatMessage]) -> list[dict]:
    return [
        message.model_dump(by_alias=True, exclude_none=True, mode="json")
        for message in messages
    ]


def export_to_json(
    messages: Iterable[ChatMessage],
    agent_name: str,
    agent_id: str,
    context_id: str | None = None,
    *,
    exported_at: datetime | None = None,
) -> str:
    """Serialize a conversation to a JSON document.

    The document has a ``metadata`` block (``agentName``, ``agentId``,
    optional ``contextId``, ``exportedAt``) and the ``messages`` list,
    indented by two spaces.
    """
    metadata: dict[str, str] = {"agentName": agent_name, "agentId": agent_id}
    if context_id:
        metadata["contextId"] = context_id
    metadata["exportedAt"] = (exported_at or datetime.now(UTC)).isoformat()
    return json.dumps(
        {"metadata": metadata, "messages": _message_dicts(messages)},
        indent=2,
        ensure_ascii=False,
    )


def _clock_time(timestamp: str) -> str:
    try:
        parsed = datetime.fromisoformat(timestamp)
    except ValueError:
        return timestamp
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed.strftime("%H:%M")


def export_to_markdown(
    messages: Iterable[ChatMessage],
    agent_name: str,
    agent_id: str,
    context_id: str | None = None,
    *,
    exported_at: datetime | None = None,
) -> str:
    """Render a conversation as Markdown, one section per message."""
    exported = (exported_at or datetime.now(UTC)).astimezone()
    lines = [
        f"# Conversation with {agent_name}",
        "",
        f"**Agent ID:** {agent_id}",
    ]
    if context_id:
        lines.append(f"**Context ID:** {context_id}")
    lines += [
        f"**Exported:** {exported.strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "---",
        "",
    ]

    for message in messages:
        role_label = "**You**" if message.role == "user" else "**Agent**"
        lines += [
            f"### {role_label} ({_clock_time(message.timestamp)})",
            "",
            message.content,
            "",
        ]
        if message.task_id:
            lines.append(f"> Task: {message.task_id}")
            if message.task_state:
                lines.append(f"> State: {message.task_state}")
            lines.append("")

    return "\n".join(lines)


def generate_export_filename(
    agent_name: str, fmt: ExportFormat, *, now: datetime | None = None
) -> str:
    """``conversation-<agent name>-<UTC timestamp>.<fmt>``, filesystem safe."""
    sanitized = _UNSAFE_FILENAME_CHARS.sub("-", agent_name.lower())
    stamp = (now or datetime.now(UTC)).astimezone(UTC).strftime("%Y-%m-%dT%H-%M-%S")
    return f"conversation-{sanitized}-{stamp}.{fmt}"
