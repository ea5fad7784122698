"""Task fetch and poll client built on the a2a-sdk JSON-RPC client."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeAlias
from urllib.parse import urlsplit
from uuid import uuid4

import httpx
from a2a.client import (
    A2ACardResolver,
    A2AClient,
    A2AClientHTTPError,
    A2AClientJSONError,
    A2AClientTimeoutError,
)
from a2a.types import GetTaskRequest, JSONRPCErrorResponse, TaskQueryParams

from .auth import (
    AgentAuthConfig,
    auth_needs_custom_headers,
    build_auth_headers,
    token_for_bearer_client,
)
from .card import AGENT_CARD_PATH
from .exceptions import (
    A2ADashboardError,
    AgentConnectionError,
    AgentHTTPError,
    AgentProtocolError,
    AgentTimeoutError,
    RequestValidationError,
    raise_for_rpc_error,
)
from .extract import extract_status_message_text
from .rpc import frame_context_id, frame_task_state
from .store import now_iso
from .transport import DEFAULT_TIMEOUT
from .types import POLL_TERMINAL_STATES, TrackedTask

if TYPE_CHECKING:
    from .store import AgentSessionStore

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LENGTH = 10
DEFAULT_POLL_INTERVAL = 3.0

TaskFetch: TypeAlias = Callable[[], Awaitable[dict[str, Any]]]


def _auth_request_headers(auth: AgentAuthConfig | None) -> dict[str, str]:
    if auth_needs_custom_headers(auth):
        return build_auth_headers(auth)
    token = token_for_bearer_client(auth)
    return {"Authorization": f"Bearer {token}"} if token else {}


def _split_card_url(card_url: str) -> tuple[str, str]:
    """Split a card URL into the resolver's base URL and card path."""
    parts = urlsplit(card_url)
    if not parts.scheme or not parts.netloc:
        raise RequestValidationError(f"Invalid card URL: {card_url!r}")
    base_url = f"{parts.scheme}://{parts.netloc}"
    return base_url, parts.path or AGENT_CARD_PATH


def tracked_task_fields(task: dict[str, Any]) -> dict[str, Any]:
    """Pull the tracked-task fields out of a task payload."""
    return {
        "context_id": frame_context_id(task),
        "state": frame_task_state(task) or "unknown",
        "message": extract_status_message_text(task.get("status")),
    }


class TaskClient:
    """Fetches tasks by id via ``tasks/get``.

    The agent card is resolved from the card URL on every call so a
    re-deployed agent is picked up without re-registration.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._http_client

    async def get_task(
        self,
        card_url: str,
        task_id: str,
        history_length: int = DEFAULT_HISTORY_LENGTH,
        auth: AgentAuthConfig | None = None,
        endpoint_url: str | None = None,
    ) -> dict[str, Any]:
        """Fetch a task and return it as a camelCase JSON dict.

        Args:
            card_url: URL of the agent card document.
            task_id: Task to fetch.
            history_length: Number of history messages to request.
            auth: Agent auth; bearer auth is sent as a token, API key and
                custom auth as their header map.
            endpoint_url: JSON-RPC endpoint to use instead of the card's.

        Returns:
            The task object.

        Raises:
            RequestValidationError: If ``card_url`` or ``task_id`` is missing.
            AgentConnectionError: If connection to the agent fails.
            AgentTimeoutError: If the request times out.
            AgentHTTPError: On a non-2xx status.
            AgentProtocolError: If the agent returns a JSON-RPC error.
        """
        if not card_url:
            raise RequestValidationError("Missing cardUrl.")
        if not task_id:
            raise RequestValidationError("Missing taskId.")

        base_url, card_path = _split_card_url(card_url)
        http_kwargs = {"headers": _auth_request_headers(auth)}
        client = self._ensure_client()
        logger.debug("Fetching task %s via %s", task_id, card_url)

        try:
            resolver = A2ACardResolver(client, base_url, agent_card_path=card_path)
            card = await resolver.get_agent_card(http_kwargs=http_kwargs)
            a2a_client = A2AClient(client, agent_card=card, url=endpoint_url)
            response = await a2a_client.get_task(
                GetTaskRequest(
                    id=str(uuid4()),
                    params=TaskQueryParams(id=task_id, history_length=history_length),
                ),
                http_kwargs=http_kwargs,
            )
        except A2AClientTimeoutError as e:
            raise AgentTimeoutError(
                f"Request to agent at {card_url} timed out after {self._timeout:g}s",
                cause=e,
            ) from e
        except A2AClientHTTPError as e:
            # the SDK reports network failures as HTTP errors with status 503
            raise AgentHTTPError(
                f"HTTP {e.status_code}: {e.message}",
                status_code=e.status_code,
                cause=e,
            ) from e
        except A2AClientJSONError as e:
            raise AgentProtocolError(str(e), code=-32700, cause=e) from e
        except httpx.TimeoutException as e:
            raise AgentTimeoutError(
                f"Request to agent at {card_url} timed out after {self._timeout:g}s",
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise AgentConnectionError(
                f"Failed to connect to agent at {card_url}: {e}", cause=e
            ) from e

        root = response.root
        if isinstance(root, JSONRPCErrorResponse):
            raise_for_rpc_error(root.error)

        return root.result.model_dump(mode="json", by_alias=True, exclude_none=True)

    async def fetch_and_record(
        self,
        store: AgentSessionStore,
        agent_id: str,
        task_id: str,
        history_length: int = DEFAULT_HISTORY_LENGTH,
    ) -> tuple[dict[str, Any], TrackedTask]:
        """Fetch a task for a registered agent and record it in ``store``.

        Returns:
            The raw task payload and the upserted tracked-task entry.

        Raises:
            RequestValidationError: If the agent is unknown or has no card URL.
            A2ADashboardError: Any error raised by :meth:`get_task`.
        """
        card = store.get_card(agent_id)
        if card is None:
            raise RequestValidationError(f"Unknown agent: {agent_id}")
        if not card.url:
            raise RequestValidationError(
                f"Agent '{card.name}' has no card URL to fetch tasks from."
            )

        task = await self.get_task(
            card.url,
            task_id,
            history_length=history_length,
            auth=store.auth(agent_id),
        )
        fields = tracked_task_fields(task)
        tracked = store.upsert_tracked_task(agent_id, task_id, **fields)
        if tracked is None:
            # agent removed while the request was in flight
            now = now_iso()
            tracked = TrackedTask(
                task_id=task_id, last_updated=now, created_at=now, **fields
            )
        return task, tracked

    async def fetch_task(
        self,
        store: AgentSessionStore,
        agent_id: str,
        task_id: str,
        history_length: int = DEFAULT_HISTORY_LENGTH,
    ) -> TrackedTask:
        """Fetch a task and return its tracked-task entry."""
        _, tracked = await self.fetch_and_record(
            store, agent_id, task_id, history_length
        )
        return tracked

    async def close(self) -> None:
        """Close the underlying HTTP client if this client created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> TaskClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


class TaskPoller:
    """Repeats a task fetch until the task reaches a terminal state.

    The first fetch runs as soon as :meth:`start` is called, then one every
    ``interval`` seconds. A fetch is skipped while another is in flight.
    Failed fetches are reported through ``on_error`` and polling goes on.

    Args:
        fetch: Coroutine function returning the current task payload.
        interval: Seconds between fetches.
        on_update: Called with every fetched task.
        on_complete: Called once with the task in a terminal state.
        on_error: Called with a readable message when a fetch fails.
    """

    def __init__(
        self,
        fetch: TaskFetch,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_update: Callable[[dict[str, Any]], None] | None = None,
        on_complete: Callable[[dict[str, Any]], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self._fetch = fetch
        self._interval = interval
        self._on_update = on_update
        self._on_complete = on_complete
        self._on_error = on_error
        self._task: asyncio.Task[None] | None = None
        self._in_flight = False
        self._finished = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def finished(self) -> bool:
        """True once a terminal state has been observed."""
        return self._finished

    def start(self) -> None:
        """Begin polling on the running event loop; no-op if already running."""
        if self.running or self._finished:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while not self._finished:
            await self.poll_once()
            if self._finished:
                break
            await asyncio.sleep(self._interval)

    async def poll_once(self) -> dict[str, Any] | None:
        """Fetch once unless a fetch is already in flight.

        Any failure, mapped or not, is reported through ``on_error`` and
        leaves the poller running. Exceptions raised by callbacks are
        logged and do not stop polling.

        Returns:
            The fetched task, or ``None`` if the fetch was skipped or failed.
        """
        if self._in_flight or self._finished:
            return None
        self._in_flight = True
        try:
            task = await self._fetch()
        except A2ADashboardError as e:
            logger.warning("Task poll failed: %s", e.message)
            self._notify(self._on_error, e.message or "Polling failed")
            return None
        except Exception as e:
            logger.exception("Task poll failed unexpectedly")
            self._notify(self._on_error, str(e) or "Polling failed")
            return None
        finally:
            self._in_flight = False

        self._notify(self._on_update, task)
        state = frame_task_state(task)
        if state in POLL_TERMINAL_STATES:
            self._finished = True
            logger.info("Task %s reached %s; polling stopped", task.get("id"), state)
            self._notify(self._on_complete, task)
        return task

    @staticmethod
    def _notify(callback: Callable[[Any], None] | None, value: Any) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Task poll callback failed")

    def stop(self) -> None:
        """Stop polling and release the timer task."""
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def wait(self) -> None:
        """Wait for the polling loop to end (terminal state or :meth:`stop`)."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
