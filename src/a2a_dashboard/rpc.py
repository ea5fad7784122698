"""JSON-RPC envelope building and response-frame inspection."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from a2a.types import Message, Part, Role, TextPart

from .exceptions import RequestValidationError, UnsupportedMethodError
from .extract import extract_status_message_text

MESSAGE_SEND = "message/send"
MESSAGE_STREAM = "message/stream"
TASKS_GET = "tasks/get"

SUPPORTED_METHODS: tuple[str, ...] = (MESSAGE_SEND, MESSAGE_STREAM, TASKS_GET)
DEFAULT_METHOD = MESSAGE_SEND

# Frame kinds whose task id lives in ``taskId`` rather than ``id``
_TASK_REFERENCING_KINDS = frozenset({"message", "status-update", "artifact-update"})


def validate_method(method: str) -> str:
    """Return ``method`` if it is on the allow-list.

    Raises:
        UnsupportedMethodError: For anything else.
    """
    if method not in SUPPORTED_METHODS:
        raise UnsupportedMethodError(method, SUPPORTED_METHODS)
    return method


def build_message_params(
    text: str,
    *,
    context_id: str | None = None,
    task_id: str | None = None,
) -> dict[str, Any]:
    """Build ``params`` for ``message/send`` / ``message/stream``.

    The message gets a fresh ``messageId``, role ``user`` and a single
    text part. ``contextId`` continues a conversation; a known ``task_id``
    continues an ``input-required`` task and is sent both as ``params.id``
    and ``message.taskId``.
    """
    if not text.strip():
        raise RequestValidationError("Message text must not be empty.")

    message = Message(
        message_id=str(uuid4()),
        role=Role.user,
        parts=[Part(root=TextPart(text=text))],
        context_id=context_id,
        task_id=task_id,
    )
    params: dict[str, Any] = {
        "message": message.model_dump(mode="json", by_alias=True, exclude_none=True)
    }
    if task_id:
        params["id"] = task_id
    return params


def build_jsonrpc_request(method: str, params: dict[str, Any]) -> dict[str, Any]:
    """Wrap ``params`` in a JSON-RPC 2.0 envelope with a random id."""
    return {
        "jsonrpc": "2.0",
        "id": str(uuid4()),
        "method": method,
        "params": params,
    }


def unwrap_rpc_payload(envelope: Any) -> Any:
    """Return an envelope's ``result``, or the envelope itself.

    Error envelopes are returned whole so their ``error`` object reaches
    the content extractor.
    """
    if isinstance(envelope, dict) and "result" in envelope and "error" not in envelope:
        return envelope["result"]
    return envelope


def frame_context_id(frame: Any) -> str | None:
    if not isinstance(frame, dict):
        return None
    context_id = frame.get("contextId")
    return context_id if isinstance(context_id, str) and context_id else None


def frame_task_id(frame: Any) -> str | None:
    """Task id carried by a frame.

    Task objects (and kind-less payloads) carry it as ``id``; messages and
    update events carry it as ``taskId``.
    """
    if not isinstance(frame, dict):
        return None
    key = "taskId" if frame.get("kind") in _TASK_REFERENCING_KINDS else "id"
    task_id = frame.get(key)
    return task_id if isinstance(task_id, str) and task_id else None


def frame_task_state(frame: Any) -> str | None:
    if not isinstance(frame, dict):
        return None
    status = frame.get("status")
    state = status.get("state") if isinstance(status, dict) else None
    return state if isinstance(state, str) and state else None


def frame_status_message(frame: Any) -> str | None:
    """Status message text for task tracking, string or structured."""
    if not isinstance(frame, dict):
        return None
    return extract_status_message_text(frame.get("status"))


def frame_has_error(frame: Any) -> bool:
    """True when a frame carries an explicit ``error`` field."""
    return isinstance(frame, dict) and frame.get("error") is not None
