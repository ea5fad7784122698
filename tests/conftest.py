"""Shared fixtures for a2a-dashboard tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, TypeAlias
from uuid import uuid4

import httpx
import pytest
from a2a.types import (
    Artifact,
    Message,
    Part,
    Role,
    Task,
    TaskArtifactUpdateEvent,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
    TextPart,
)

from a2a_dashboard.card import parse_agent_card
from a2a_dashboard.store import AgentSessionStore
from a2a_dashboard.transport import AgentTransport
from a2a_dashboard.types import AgentCard

ENDPOINT = "https://agent.example/rpc"
CARD_URL = "https://agent.example/.well-known/agent-card.json"

Handler: TypeAlias = Callable[[httpx.Request], httpx.Response]

# ---------------------------------------------------------------------------
# Agent cards
# ---------------------------------------------------------------------------


def make_card_payload(*, streaming: bool = False, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": "Echo Agent",
        "description": "Repeats what you say",
        "version": "1.0.0",
        "protocolVersion": "0.3.0",
        "url": ENDPOINT,
        "capabilities": {"streaming": streaming},
        "skills": [{"id": "echo", "name": "Echo", "tags": ["demo"]}],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def card_payload() -> dict[str, Any]:
    """A minimal non-streaming agent card document."""
    return make_card_payload()


@pytest.fixture
def agent_card() -> AgentCard:
    """Normalized non-streaming card registered from its well-known URL."""
    return parse_agent_card(make_card_payload(), source_url=CARD_URL)


@pytest.fixture
def streaming_card() -> AgentCard:
    """Normalized card that declares streaming support."""
    return parse_agent_card(
        make_card_payload(streaming=True, id="stream-agent"), source_url=CARD_URL
    )


@pytest.fixture
def store(agent_card: AgentCard) -> AgentSessionStore:
    """A store with the non-streaming agent registered and selected."""
    return AgentSessionStore([agent_card])


# ---------------------------------------------------------------------------
# A2A wire builders (dumped the way agents send them)
# ---------------------------------------------------------------------------


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def make_text_part(text: str) -> Part:
    return Part(root=TextPart(text=text))


def make_message(
    text: str,
    *,
    role: Role = Role.agent,
    context_id: str | None = None,
    task_id: str | None = None,
) -> dict[str, Any]:
    return _dump(
        Message(
            message_id=str(uuid4()),
            role=role,
            parts=[make_text_part(text)],
            context_id=context_id,
            task_id=task_id,
        )
    )


def make_artifact(
    text: str, *, name: str | None = None, artifact_id: str | None = None
) -> Artifact:
    return Artifact(
        artifact_id=artifact_id or str(uuid4()),
        parts=[make_text_part(text)],
        name=name,
    )


def make_task(
    *,
    state: TaskState = TaskState.completed,
    status_text: str | None = None,
    history: list[str] | None = None,
    artifacts: list[Artifact] | None = None,
    task_id: str = "task-1",
    context_id: str = "ctx-1",
) -> dict[str, Any]:
    status_message = None
    if status_text is not None:
        status_message = Message(
            message_id=str(uuid4()),
            role=Role.agent,
            parts=[make_text_part(status_text)],
        )
    history_messages = None
    if history is not None:
        history_messages = [
            Message(
                message_id=str(uuid4()),
                role=Role.agent,
                parts=[make_text_part(text)],
            )
            for text in history
        ]
    return _dump(
        Task(
            id=task_id,
            context_id=context_id,
            status=TaskStatus(state=state, message=status_message),
            history=history_messages,
            artifacts=artifacts,
        )
    )


def make_status_update(
    state: TaskState,
    *,
    text: str | None = None,
    task_id: str = "task-1",
    context_id: str = "ctx-1",
    final: bool = False,
) -> dict[str, Any]:
    message = None
    if text is not None:
        message = Message(
            message_id=str(uuid4()),
            role=Role.agent,
            parts=[make_text_part(text)],
        )
    return _dump(
        TaskStatusUpdateEvent(
            task_id=task_id,
            context_id=context_id,
            status=TaskStatus(state=state, message=message),
            final=final,
        )
    )


def make_artifact_update(
    artifact: Artifact,
    *,
    task_id: str = "task-1",
    context_id: str = "ctx-1",
    append: bool | None = None,
) -> dict[str, Any]:
    return _dump(
        TaskArtifactUpdateEvent(
            task_id=task_id,
            context_id=context_id,
            artifact=artifact,
            append=append,
        )
    )


# ---------------------------------------------------------------------------
# JSON-RPC envelopes and SSE bodies
# ---------------------------------------------------------------------------


def rpc_result(result: Any, request_id: str = "1") -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def rpc_error(code: int, message: str, request_id: str = "1") -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def sse_body(*frames: Any, done: bool = True) -> bytes:
    lines: list[str] = []
    for frame in frames:
        data = frame if isinstance(frame, str) else json.dumps(frame)
        lines += [f"data: {data}", ""]
    if done:
        lines += ["data: [DONE]", ""]
    return ("\n".join(lines) + "\n").encode()


def sse_response(*frames: Any, done: bool = True) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content=sse_body(*frames, done=done),
    )


# ---------------------------------------------------------------------------
# HTTP plumbing
# ---------------------------------------------------------------------------


class RecordingHandler:
    """MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def json_bodies(self) -> list[Any]:
        return [json.loads(request.content) for request in self.requests]


def make_transport(handler: Handler) -> AgentTransport:
    return AgentTransport(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )
