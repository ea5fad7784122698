"""Per-agent conversation and task state.

All state belonging to one agent lives in a single :class:`AgentState`
aggregate, so deleting an agent removes everything at once. Writes for an
agent id that is not registered (for instance the late reply of a request
whose agent was deleted mid-flight) are dropped.

Listeners registered with :meth:`AgentSessionStore.subscribe` receive a
:class:`StoreEvent` after every change; a UI renders from the store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeAlias

from .auth import AgentAuthConfig, NoAuth
from .rpc import DEFAULT_METHOD, validate_method
from .types import AgentCard, ChatMessage, RpcLogEntry, TrackedTask

logger = logging.getLogger(__name__)


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


@dataclass
class AgentState:
    """Everything the dashboard holds for one registered agent."""

    card: AgentCard
    auth: AgentAuthConfig = field(default_factory=NoAuth)
    messages: list[ChatMessage] = field(default_factory=list)
    logs: list[RpcLogEntry] = field(default_factory=list)
    endpoint: str | None = None
    endpoint_override: str = ""
    method: str = DEFAULT_METHOD
    context_id: str | None = None
    active_task_id: str | None = None
    tracked_tasks: list[TrackedTask] = field(default_factory=list)
    chat_error: str | None = None
    sending: bool = False


@dataclass(frozen=True)
class StoreEvent:
    """Change notification.

    Attributes:
        kind: What changed (``agents``, ``selection``, ``messages``,
            ``logs``, ``context``, ``task``, ``tracked_tasks``, ``config``,
            ``error``, ``sending``).
        agent_id: Agent concerned, ``None`` for selection changes.
    """

    kind: str
    agent_id: str | None = None


StoreListener: TypeAlias = Callable[[StoreEvent], None]


class AgentSessionStore:
    """Keyed repository of :class:`AgentState`, one per registered agent.

    Args:
        agents: Initial cards, e.g. restored from the caller's persistence.
            The first one becomes the selection.
        auth: Initial auth configs keyed by agent id.
    """

    def __init__(
        self,
        agents: Iterable[AgentCard] = (),
        *,
        auth: Mapping[str, AgentAuthConfig] | None = None,
    ) -> None:
        self._states: dict[str, AgentState] = {}
        self._listeners: list[StoreListener] = []
        self._selected_id: str | None = None

        for card in agents:
            self._states[card.id] = self._seeded_state(card)
        for agent_id, config in (auth or {}).items():
            if agent_id in self._states:
                self._states[agent_id].auth = config
        if self._states:
            self._selected_id = next(iter(self._states))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: str, agent_id: str | None = None) -> None:
        event = StoreEvent(kind=kind, agent_id=agent_id)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Store listener failed for %s event", kind)

    def _state(self, agent_id: str) -> AgentState | None:
        state = self._states.get(agent_id)
        if state is None:
            logger.debug("Dropping update for unknown agent '%s'", agent_id)
        return state

    @staticmethod
    def _seeded_state(card: AgentCard) -> AgentState:
        return AgentState(
            card=card,
            endpoint=card.endpoints[0].url if card.endpoints else None,
        )

    # ------------------------------------------------------------------
    # Agents and selection
    # ------------------------------------------------------------------

    @property
    def agents(self) -> list[AgentCard]:
        return [state.card for state in self._states.values()]

    @property
    def selected_agent_id(self) -> str | None:
        return self._selected_id

    @property
    def selected_agent(self) -> AgentCard | None:
        if self._selected_id is None:
            return None
        state = self._states.get(self._selected_id)
        return state.card if state else None

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._states

    def get(self, agent_id: str) -> AgentState | None:
        """The live state for ``agent_id``; treat it as read-only."""
        return self._states.get(agent_id)

    def get_card(self, agent_id: str) -> AgentCard | None:
        state = self._states.get(agent_id)
        return state.card if state else None

    def register(self, card: AgentCard, *, select: bool = True) -> AgentCard:
        """Add or replace an agent card and move it to the front.

        Existing conversation, auth, and endpoint/method choices for the
        same id are kept; endpoint and method are seeded only when unset.
        """
        existing = self._states.pop(card.id, None)
        if existing is None:
            state = self._seeded_state(card)
        else:
            state = existing
            state.card = card
            if not state.endpoint and card.endpoints:
                state.endpoint = card.endpoints[0].url
            if not state.method:
                state.method = DEFAULT_METHOD
        self._states = {card.id: state, **self._states}
        logger.info("Registered agent '%s' (%s)", card.name, card.id)
        self._emit("agents", card.id)
        if select:
            self.select(card.id)
        return card

    def remove(self, agent_id: str) -> bool:
        """Delete an agent and all of its state; clears it if selected."""
        if self._states.pop(agent_id, None) is None:
            return False
        self._emit("agents", agent_id)
        if self._selected_id == agent_id:
            self._selected_id = None
            self._emit("selection")
        return True

    def select(self, agent_id: str | None) -> None:
        if agent_id is not None and agent_id not in self._states:
            raise KeyError(agent_id)
        if agent_id != self._selected_id:
            self._selected_id = agent_id
            self._emit("selection", agent_id)

    def snapshot_agents(self) -> list[dict[str, Any]]:
        """Cards in display order, dumped for the caller to persist."""
        return [card.model_dump(by_alias=True, mode="json") for card in self.agents]

    # ------------------------------------------------------------------
    # Per-agent configuration
    # ------------------------------------------------------------------

    def auth(self, agent_id: str) -> AgentAuthConfig:
        state = self._states.get(agent_id)
        return state.auth if state else NoAuth()

    def set_auth(self, agent_id: str, auth: AgentAuthConfig | None) -> None:
        if (state := self._state(agent_id)) is None:
            return
        state.auth = auth if auth is not None else NoAuth()
        self._emit("config", agent_id)

    def set_endpoint(self, agent_id: str, url: str | None) -> None:
        if (state := self._state(agent_id)) is None:
            return
        state.endpoint = url
        self._emit("config", agent_id)

    def set_endpoint_override(self, agent_id: str, url: str) -> None:
        if (state := self._state(agent_id)) is None:
            return
        state.endpoint_override = url
        self._emit("config", agent_id)

    def set_method(self, agent_id: str, method: str) -> None:
        """Select the JSON-RPC method for an agent.

        Raises:
            UnsupportedMethodError: If ``method`` is not on the allow-list.
        """
        validate_method(method)
        if (state := self._state(agent_id)) is None:
            return
        state.method = method
        self._emit("config", agent_id)

    def method(self, agent_id: str) -> str:
        state = self._states.get(agent_id)
        return (state.method if state else None) or DEFAULT_METHOD

    def resolve_endpoint(self, agent_id: str) -> str | None:
        """Endpoint a request should go to: override, selection, first endpoint."""
        state = self._states.get(agent_id)
        if state is None:
            return None
        override = state.endpoint_override.strip()
        if override:
            return override
        if state.endpoint:
            return state.endpoint
        return state.card.endpoints[0].url if state.card.endpoints else None

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def messages(self, agent_id: str) -> list[ChatMessage]:
        state = self._states.get(agent_id)
        return list(state.messages) if state else []

    def append_message(self, agent_id: str, message: ChatMessage) -> None:
        if (state := self._state(agent_id)) is None:
            return
        state.messages.append(message)
        self._emit("messages", agent_id)

    def patch_message(
        self, agent_id: str, message_id: str, **changes: Any
    ) -> ChatMessage | None:
        """Replace a message by id with ``changes`` applied."""
        if (state := self._state(agent_id)) is None:
            return None
        for index, message in enumerate(state.messages):
            if message.id == message_id:
                updated = message.model_copy(update=changes)
                state.messages[index] = updated
                self._emit("messages", agent_id)
                return updated
        return None

    def remove_message(self, agent_id: str, message_id: str) -> bool:
        if (state := self._state(agent_id)) is None:
            return False
        remaining = [m for m in state.messages if m.id != message_id]
        if len(remaining) == len(state.messages):
            return False
        state.messages = remaining
        self._emit("messages", agent_id)
        return True

    # ------------------------------------------------------------------
    # Request logs
    # ------------------------------------------------------------------

    def logs(self, agent_id: str) -> list[RpcLogEntry]:
        state = self._states.get(agent_id)
        return list(state.logs) if state else []

    def append_log(self, agent_id: str, entry: RpcLogEntry) -> None:
        if (state := self._state(agent_id)) is None:
            return
        state.logs.append(entry)
        self._emit("logs", agent_id)

    def complete_log(
        self,
        agent_id: str,
        log_id: str,
        *,
        response_payload: Any,
        status: int | None = None,
        completed_at: str | None = None,
        duration_ms: int | None = None,
        fallback: RpcLogEntry | None = None,
    ) -> RpcLogEntry | None:
        """Set the completion fields of a log entry, exactly once.

        Updates the existing entry when present; only when it is missing is
        ``fallback`` (with the completion fields applied) appended instead.
        A second completion of the same entry is ignored.
        """
        if (state := self._state(agent_id)) is None:
            return None
        changes = {
            "response_payload": response_payload,
            "status": status,
            "completed_at": completed_at or now_iso(),
            "duration_ms": duration_ms,
        }
        for index, entry in enumerate(state.logs):
            if entry.id == log_id:
                if entry.completed:
                    logger.warning("Log entry %s already completed; ignoring", log_id)
                    return entry
                updated = entry.model_copy(update=changes)
                state.logs[index] = updated
                self._emit("logs", agent_id)
                return updated

        if fallback is None:
            return None
        inserted = fallback.model_copy(update={"id": log_id, **changes})
        state.logs.append(inserted)
        self._emit("logs", agent_id)
        return inserted

    # ------------------------------------------------------------------
    # Conversation continuity
    # ------------------------------------------------------------------

    def context_id(self, agent_id: str) -> str | None:
        state = self._states.get(agent_id)
        return state.context_id if state else None

    def set_context_id(self, agent_id: str, context_id: str) -> None:
        if (state := self._state(agent_id)) is None:
            return
        if state.context_id != context_id:
            state.context_id = context_id
            self._emit("context", agent_id)

    def clear_context_id(self, agent_id: str) -> None:
        if (state := self._state(agent_id)) is None:
            return
        state.context_id = None
        self._emit("context", agent_id)

    def active_task_id(self, agent_id: str) -> str | None:
        state = self._states.get(agent_id)
        return state.active_task_id if state else None

    def set_active_task(self, agent_id: str, task_id: str) -> None:
        if (state := self._state(agent_id)) is None:
            return
        state.active_task_id = task_id
        self._emit("task", agent_id)

    def clear_active_task(self, agent_id: str) -> None:
        if (state := self._state(agent_id)) is None:
            return
        if state.active_task_id is not None:
            state.active_task_id = None
            self._emit("task", agent_id)

    # ------------------------------------------------------------------
    # Tracked tasks
    # ------------------------------------------------------------------

    def tracked_tasks(self, agent_id: str) -> list[TrackedTask]:
        state = self._states.get(agent_id)
        return list(state.tracked_tasks) if state else []

    def upsert_tracked_task(
        self,
        agent_id: str,
        task_id: str,
        state: str,
        *,
        context_id: str | None = None,
        message: str | None = None,
    ) -> TrackedTask | None:
        """Record an observation of a task.

        The first observation fixes ``created_at`` and puts the task at the
        head of the list; later ones overwrite state, message and timestamp
        in place, and the context id unless the update carries none.
        """
        if (agent := self._state(agent_id)) is None:
            return None
        now = now_iso()
        for index, existing in enumerate(agent.tracked_tasks):
            if existing.task_id == task_id:
                task = TrackedTask(
                    task_id=task_id,
                    context_id=context_id or existing.context_id,
                    state=state,
                    last_updated=now,
                    created_at=existing.created_at,
                    message=message,
                )
                agent.tracked_tasks[index] = task
                break
        else:
            task = TrackedTask(
                task_id=task_id,
                context_id=context_id,
                state=state,
                last_updated=now,
                created_at=now,
                message=message,
            )
            agent.tracked_tasks.insert(0, task)
        self._emit("tracked_tasks", agent_id)
        return task

    # ------------------------------------------------------------------
    # Chat status
    # ------------------------------------------------------------------

    def chat_error(self, agent_id: str) -> str | None:
        state = self._states.get(agent_id)
        return state.chat_error if state else None

    def set_chat_error(self, agent_id: str, error: str | None) -> None:
        if (state := self._state(agent_id)) is None:
            return
        state.chat_error = error
        self._emit("error", agent_id)

    def set_sending(self, agent_id: str, sending: bool) -> None:
        if (state := self._state(agent_id)) is None:
            return
        state.sending = sending
        self._emit("sending", agent_id)

    def clear_conversation(self, agent_id: str) -> None:
        """Start a new conversation.

        Clears messages, context id, active task and the chat error; keeps
        tracked tasks, logs, auth and endpoint/method configuration.
        """
        if (state := self._state(agent_id)) is None:
            return
        state.messages = []
        state.context_id = None
        state.active_task_id = None
        state.chat_error = None
        self._emit("messages", agent_id)
