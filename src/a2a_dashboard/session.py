"""JSON-RPC / SSE session driver.

Turns one user message into one request to the selected agent endpoint and
folds the reply (a single JSON-RPC response, or a stream of events) into
the agent's state in :class:`~a2a_dashboard.store.AgentSessionStore`.

Transport and protocol failures never escape :meth:`SessionDriver.send_message`;
they end up as a failed assistant message, a chat error and a completed
request log entry. Input problems raise before anything is sent.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from .auth import build_auth_headers, ensure_auth_usable
from .card import (
    is_absolute_url,
    normalize_card_url,
    parse_agent_card,
    resolve_card_source_url,
)
from .exceptions import (
    A2ADashboardError,
    CardValidationError,
    RequestValidationError,
)
from .extract import (
    extract_artifacts_block,
    extract_display_text,
    extract_error_summary,
    extract_status_message_text,
    extract_task_lead,
    extract_text_from_parts,
    task_state_fallback,
)
from .rpc import (
    DEFAULT_METHOD,
    MESSAGE_STREAM,
    TASKS_GET,
    build_jsonrpc_request,
    build_message_params,
    frame_context_id,
    frame_has_error,
    frame_status_message,
    frame_task_id,
    frame_task_state,
    unwrap_rpc_payload,
    validate_method,
)
from .store import AgentSessionStore, now_iso
from .tasks import (
    DEFAULT_HISTORY_LENGTH,
    DEFAULT_POLL_INTERVAL,
    TaskClient,
    TaskPoller,
)
from .transport import EVENT_STREAM, JSON_CONTENT, AgentTransport
from .types import (
    TERMINAL_TASK_STATES,
    AgentCard,
    ChatMessage,
    HealthStatus,
    RpcLogEntry,
    TrackedTask,
)

logger = logging.getLogger(__name__)

MISSING_ENDPOINT_MESSAGE = (
    "Select an endpoint or enter a full endpoint URL before chatting."
)
TASKS_GET_MESSAGE = (
    "tasks/get fetches an existing task. Use the task lookup with a task id "
    "instead of sending a chat message."
)


@dataclass
class OutgoingRequest:
    """A validated request, ready to dispatch."""

    endpoint_url: str
    payload: dict[str, Any]
    headers: dict[str, str]
    streaming: bool


@dataclass
class StreamContent:
    """Display content accumulated across stream frames.

    A ``task`` frame replaces both the lead and the artifact set with its
    own state. Messages and status updates overwrite the lead when they
    carry text; artifact updates merge by ``artifactId``. Artifacts are
    rendered after the lead.
    """

    lead: str | None = None
    artifacts: dict[str, dict[str, Any]] = field(default_factory=dict)

    def apply(self, frame: Any) -> str | None:
        """Fold one unwrapped frame in; returns the new content, if any."""
        if not isinstance(frame, dict):
            return None
        kind = frame.get("kind")
        if kind == "message":
            self._set_lead(extract_text_from_parts(frame.get("parts")))
        elif kind == "task":
            # a task frame carries the full state; nothing from earlier frames survives
            self.lead = extract_task_lead(frame)
            self.artifacts = {}
            artifacts = frame.get("artifacts")
            if isinstance(artifacts, list):
                for artifact in artifacts:
                    self._merge_artifact(artifact, append=False)
        elif kind == "status-update":
            self._set_lead(extract_status_message_text(frame.get("status")))
        elif kind == "artifact-update":
            self._merge_artifact(
                frame.get("artifact"), append=frame.get("append") is True
            )
        else:
            return None
        return self.content

    def _set_lead(self, text: str | None) -> None:
        if text:
            self.lead = text

    def _merge_artifact(self, artifact: Any, *, append: bool) -> None:
        if not isinstance(artifact, dict):
            return
        key = artifact.get("artifactId")
        if not isinstance(key, str) or not key:
            key = f"artifact-{len(self.artifacts)}"
        existing = self.artifacts.get(key)
        if append and existing is not None:
            parts = [*(existing.get("parts") or []), *(artifact.get("parts") or [])]
            artifact = {**existing, **artifact, "parts": parts}
        self.artifacts[key] = artifact

    @property
    def content(self) -> str | None:
        block = extract_artifacts_block(self.artifacts.values()) or ""
        return f"{self.lead or ''}{block}" or None


@dataclass
class _Exchange:
    """Bookkeeping for one request from dispatch to finalization."""

    agent_id: str
    request: OutgoingRequest
    log: RpcLogEntry
    started: float
    message_id: str | None = None
    status_code: int | None = None
    last_raw: Any = None
    last_frame: Any = None
    error_frame: Any = None
    frame_count: int = 0
    task_id: str | None = None
    task_state: str | None = None

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class SessionDriver:
    """Sends chat messages to agents and records the outcome in a store.

    Args:
        store: State store the driver reads configuration from and writes
            results to.
        transport: JSON-RPC/SSE transport; created (and closed by
            :meth:`close`) when omitted.
        task_client: Client for ``tasks/get``; created when omitted.
        poll_interval: Seconds between task polls.
    """

    def __init__(
        self,
        store: AgentSessionStore,
        *,
        transport: AgentTransport | None = None,
        task_client: TaskClient | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._store = store
        self._transport = transport or AgentTransport()
        self._owns_transport = transport is None
        self._task_client = task_client or TaskClient()
        self._owns_task_client = task_client is None
        self._poll_interval = poll_interval
        self._pollers: dict[tuple[str, str], TaskPoller] = {}

    @property
    def store(self) -> AgentSessionStore:
        return self._store

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_from_url(self, url: str, *, select: bool = True) -> AgentCard:
        """Fetch an agent card from ``url`` and register it.

        ``url`` may be the agent's base URL or the card URL itself.

        Raises:
            RequestValidationError: If ``url`` is not an absolute URL.
            CardValidationError: If the fetched card does not normalize.
            AgentConnectionError: If the card cannot be fetched.
        """
        card_url = normalize_card_url(url)
        if not is_absolute_url(card_url):
            raise RequestValidationError(f"Invalid agent URL: {url!r}")
        payload = await self._transport.fetch_agent_card(card_url)
        card = parse_agent_card(payload, source_url=card_url)
        return self._store.register(card, select=select)

    def register_from_json(
        self, card_json: str | dict[str, Any], *, select: bool = True
    ) -> AgentCard:
        """Register a pasted agent card.

        Raises:
            CardValidationError: If the text is not JSON or the card does
                not normalize.
        """
        if isinstance(card_json, str):
            try:
                card_json = json.loads(card_json)
            except ValueError as e:
                raise CardValidationError(["Card JSON could not be parsed."]) from e
        source_url = resolve_card_source_url(card_json) or None
        card = parse_agent_card(card_json, source_url=source_url)
        return self._store.register(card, select=select)

    def remove_agent(self, agent_id: str) -> bool:
        """Stop polling for an agent and delete all of its state."""
        self.stop_polling(agent_id)
        return self._store.remove(agent_id)

    async def check_health(self, agent_id: str) -> HealthStatus:
        card = self._store.get_card(agent_id)
        if card is None or not card.url:
            return HealthStatus(healthy=False, error="Agent has no card URL.")
        return await self._transport.check_health(card.url)

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    def prepare_request(self, agent_id: str, text: str) -> OutgoingRequest:
        """Validate input and build the request for ``text``.

        Raises:
            RequestValidationError: Unknown agent, blank text, no endpoint,
                or ``tasks/get`` selected as the chat method.
            UnsupportedMethodError: If the selected method is not supported.
            AuthConfigurationError: If auth is selected but unusable.
        """
        state = self._store.get(agent_id)
        if state is None:
            raise RequestValidationError(f"Unknown agent: {agent_id}")
        if not text.strip():
            raise RequestValidationError("Message text must not be empty.")

        endpoint_url = self._store.resolve_endpoint(agent_id)
        if not endpoint_url or not is_absolute_url(endpoint_url):
            raise RequestValidationError(MISSING_ENDPOINT_MESSAGE)

        method = validate_method(state.method or DEFAULT_METHOD)
        if method == TASKS_GET:
            raise RequestValidationError(TASKS_GET_MESSAGE)
        ensure_auth_usable(state.auth)

        declares_streaming = state.card.capabilities.streaming
        streaming = method == MESSAGE_STREAM or declares_streaming
        params = build_message_params(
            text,
            context_id=state.context_id,
            task_id=state.active_task_id,
        )
        payload = build_jsonrpc_request(MESSAGE_STREAM if streaming else method, params)
        accept = EVENT_STREAM if streaming and declares_streaming else JSON_CONTENT
        headers = {
            "Content-Type": JSON_CONTENT,
            "Accept": accept,
            **build_auth_headers(state.auth),
        }
        return OutgoingRequest(
            endpoint_url=endpoint_url,
            payload=payload,
            headers=headers,
            streaming=streaming,
        )

    async def send_message(self, agent_id: str, text: str) -> ChatMessage | None:
        """Send ``text`` to an agent and record the exchange.

        Returns:
            The final assistant message, or ``None`` if the agent was
            removed while the request was in flight.

        Raises:
            RequestValidationError: See :meth:`prepare_request`.
        """
        request = self.prepare_request(agent_id, text)
        self._store.set_chat_error(agent_id, None)
        self._store.append_message(
            agent_id,
            ChatMessage(
                id=str(uuid4()),
                role="user",
                content=text,
                timestamp=now_iso(),
                status="complete",
            ),
        )
        return await self._dispatch(agent_id, request)

    async def retry(self, agent_id: str, failed_message_id: str) -> ChatMessage | None:
        """Replay the user text that led to a failed assistant message.

        The failed message is removed and the text is sent as a new request;
        the original user message stays where it is.

        Raises:
            RequestValidationError: If the message is not a failed assistant
                message with a preceding user message.
        """
        messages = self._store.messages(agent_id)
        index = next(
            (i for i, m in enumerate(messages) if m.id == failed_message_id), None
        )
        if index is None:
            raise RequestValidationError(f"Unknown message: {failed_message_id}")
        if messages[index].role != "assistant" or messages[index].status != "error":
            raise RequestValidationError("Only failed agent replies can be retried.")

        original = next(
            (m for m in reversed(messages[:index]) if m.role == "user"), None
        )
        if original is None:
            raise RequestValidationError("No user message found to retry.")

        request = self.prepare_request(agent_id, original.content)
        self._store.remove_message(agent_id, failed_message_id)
        self._store.set_chat_error(agent_id, None)
        logger.info("Retrying message %s for agent '%s'", original.id, agent_id)
        return await self._dispatch(agent_id, request)

    def new_conversation(self, agent_id: str) -> None:
        """Forget messages, context and active task; keep everything else."""
        self._store.clear_conversation(agent_id)

    async def _dispatch(
        self, agent_id: str, request: OutgoingRequest
    ) -> ChatMessage | None:
        log = RpcLogEntry(
            id=str(uuid4()),
            endpoint_url=request.endpoint_url,
            request_payload=request.payload,
            request_headers=request.headers,
            started_at=now_iso(),
        )
        self._store.append_log(agent_id, log)
        exchange = _Exchange(
            agent_id=agent_id, request=request, log=log, started=time.monotonic()
        )
        logger.debug(
            "Dispatching %s to %s (streaming=%s)",
            request.payload["method"],
            request.endpoint_url,
            request.streaming,
        )

        self._store.set_sending(agent_id, True)
        try:
            if request.streaming:
                return await self._run_stream(exchange)
            return await self._run_single(exchange)
        finally:
            self._store.set_sending(agent_id, False)

    async def _run_single(self, exchange: _Exchange) -> ChatMessage | None:
        try:
            response = await self._transport.post_json(
                exchange.request.endpoint_url,
                exchange.request.payload,
                exchange.request.headers,
            )
        except A2ADashboardError as e:
            return self._fail(exchange, e)

        exchange.status_code = response.status_code
        self._observe(exchange, response.payload)
        result = exchange.last_frame
        is_error = exchange.error_frame is not None or (
            extract_error_summary(result) is not None
        )
        message = ChatMessage(
            id=str(uuid4()),
            role="assistant",
            content=extract_display_text(result),
            timestamp=now_iso(),
            status="error" if is_error else "complete",
            task_id=exchange.task_id,
            task_state=exchange.task_state,
        )
        if is_error:
            message = message.model_copy(update={"error": message.content})
        self._store.append_message(exchange.agent_id, message)
        return self._complete(exchange, message, is_error)

    async def _run_stream(self, exchange: _Exchange) -> ChatMessage | None:
        agent_id = exchange.agent_id
        placeholder = ChatMessage(
            id=str(uuid4()),
            role="assistant",
            content="",
            timestamp=now_iso(),
            status="streaming",
        )
        exchange.message_id = placeholder.id
        self._store.append_message(agent_id, placeholder)

        content = StreamContent()
        try:
            async with self._transport.open_stream(
                exchange.request.endpoint_url,
                exchange.request.payload,
                exchange.request.headers,
            ) as stream:
                exchange.status_code = stream.status_code
                async for raw in stream.frames():
                    self._observe(exchange, raw)
                    text = content.apply(exchange.last_frame)
                    changes: dict[str, Any] = {}
                    if text:
                        changes["content"] = text
                    if exchange.task_id:
                        changes["task_id"] = exchange.task_id
                        changes["task_state"] = exchange.task_state
                    if changes:
                        self._store.patch_message(agent_id, placeholder.id, **changes)
        except A2ADashboardError as e:
            return self._fail(exchange, e)

        if exchange.error_frame is None and extract_error_summary(exchange.last_frame):
            exchange.error_frame = exchange.last_frame
        is_error = exchange.error_frame is not None

        if is_error:
            text = extract_display_text(exchange.error_frame)
        elif content.content:
            text = content.content
        elif exchange.frame_count:
            text = extract_display_text(exchange.last_frame)
        else:
            text = task_state_fallback(self._last_known_state(agent_id))

        message = self._store.patch_message(
            agent_id,
            placeholder.id,
            content=text,
            status="error" if is_error else "complete",
            error=text if is_error else None,
        )
        return self._complete(exchange, message, is_error)

    def _observe(self, exchange: _Exchange, raw: Any) -> None:
        """Apply the bookkeeping carried by one reply or stream frame."""
        agent_id = exchange.agent_id
        frame = unwrap_rpc_payload(raw)
        exchange.last_raw = raw
        exchange.last_frame = frame
        exchange.frame_count += 1
        if frame_has_error(frame):
            exchange.error_frame = frame

        context_id = frame_context_id(frame)
        if context_id:
            self._store.set_context_id(agent_id, context_id)

        task_id = frame_task_id(frame)
        state = frame_task_state(frame)
        if task_id:
            exchange.task_id = task_id
        if task_id and state:
            exchange.task_state = state
            self._store.upsert_tracked_task(
                agent_id,
                task_id,
                state,
                context_id=context_id,
                message=frame_status_message(frame),
            )
            if state == "input-required":
                self._store.set_active_task(agent_id, task_id)
            elif state in TERMINAL_TASK_STATES:
                self._store.clear_active_task(agent_id)

    def _last_known_state(self, agent_id: str) -> str | None:
        active = self._store.active_task_id(agent_id)
        for task in self._store.tracked_tasks(agent_id):
            if task.task_id == active:
                return task.state
        return None

    def _complete(
        self, exchange: _Exchange, message: ChatMessage | None, is_error: bool
    ) -> ChatMessage | None:
        self._store.complete_log(
            exchange.agent_id,
            exchange.log.id,
            response_payload=exchange.last_raw,
            status=exchange.status_code,
            completed_at=now_iso(),
            duration_ms=exchange.duration_ms,
            fallback=exchange.log,
        )
        if exchange.agent_id not in self._store:
            logger.debug("Agent '%s' removed mid-request", exchange.agent_id)
            return None
        if is_error and message is not None:
            self._store.set_chat_error(exchange.agent_id, message.content)
        return message

    def _fail(
        self, exchange: _Exchange, error: A2ADashboardError
    ) -> ChatMessage | None:
        agent_id = exchange.agent_id
        reason = error.message or "Request failed."
        logger.warning(
            "Request to %s failed: %s", exchange.request.endpoint_url, reason
        )
        self._store.complete_log(
            agent_id,
            exchange.log.id,
            response_payload={"error": reason},
            status=getattr(error, "status_code", None) or exchange.status_code,
            completed_at=now_iso(),
            duration_ms=exchange.duration_ms,
            fallback=exchange.log,
        )
        self._store.set_chat_error(agent_id, reason)

        content = f"Request failed: {reason}"
        if exchange.message_id is not None:
            return self._store.patch_message(
                agent_id,
                exchange.message_id,
                content=content,
                status="error",
                error=reason,
            )
        message = ChatMessage(
            id=str(uuid4()),
            role="assistant",
            content=content,
            timestamp=now_iso(),
            status="error",
            error=reason,
        )
        self._store.append_message(agent_id, message)
        return message if agent_id in self._store else None

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def fetch_task(
        self,
        agent_id: str,
        task_id: str,
        history_length: int = DEFAULT_HISTORY_LENGTH,
    ) -> TrackedTask:
        """Fetch a task once and record it in the tracked-task list."""
        return await self._task_client.fetch_task(
            self._store, agent_id, task_id, history_length
        )

    def start_polling(
        self,
        agent_id: str,
        task_id: str,
        *,
        on_update: Callable[[dict[str, Any]], None] | None = None,
        on_complete: Callable[[dict[str, Any]], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> TaskPoller:
        """Poll a task until it reaches a terminal state.

        At most one poller runs per agent and task; asking again returns
        the running one.
        """
        key = (agent_id, task_id)
        existing = self._pollers.get(key)
        if existing is not None and existing.running:
            return existing

        async def fetch() -> dict[str, Any]:
            task, _ = await self._task_client.fetch_and_record(
                self._store, agent_id, task_id
            )
            return task

        def complete(task: dict[str, Any]) -> None:
            if self._pollers.get(key) is poller:
                del self._pollers[key]
            if on_complete:
                on_complete(task)

        poller = TaskPoller(
            fetch,
            interval=self._poll_interval,
            on_update=on_update,
            on_complete=complete,
            on_error=on_error,
        )
        self._pollers[key] = poller
        poller.start()
        return poller

    def stop_polling(
        self, agent_id: str | None = None, task_id: str | None = None
    ) -> None:
        """Stop pollers for one task, one agent, or (no arguments) all."""
        for key in list(self._pollers):
            if agent_id is not None and key[0] != agent_id:
                continue
            if task_id is not None and key[1] != task_id:
                continue
            self._pollers.pop(key).stop()

    async def close(self) -> None:
        """Stop all polling and close owned network clients."""
        self.stop_polling()
        if self._owns_transport:
            await self._transport.close()
        if self._owns_task_client:
            await self._task_client.close()

    async def __aenter__(self) -> SessionDriver:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
