"""httpx transport to external A2A agents."""

from __future__ import annotations

import contextlib
import json
import logging
import time
from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from .exceptions import (
    AgentConnectionError,
    AgentHTTPError,
    AgentProtocolError,
    AgentTimeoutError,
)
from .sse import aiter_sse_frames, synthesize_event_lines
from .types import HealthStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
HEALTH_CHECK_TIMEOUT = 10.0
USER_AGENT = "a2a-dashboard/0.1 (A2A JSON-RPC client)"
EVENT_STREAM = "text/event-stream"
JSON_CONTENT = "application/json"


@dataclass
class RpcResponse:
    """Decoded reply of a non-streaming JSON-RPC call."""

    status_code: int
    payload: Any


async def _aiter(items: Iterable[str]) -> AsyncIterator[str]:
    for item in items:
        yield item


class EventStream:
    """An open streaming response.

    ``frames()`` yields decoded events. A reply that is not actually an
    event stream is presented as one synthesized event followed by the
    end marker.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self.status_code = response.status_code
        self.is_event_stream = EVENT_STREAM in response.headers.get("content-type", "")

    async def frames(self) -> AsyncIterator[Any]:
        if self.is_event_stream:
            lines = self._response.aiter_lines()
        else:
            body = await self._response.aread()
            lines = _aiter(synthesize_event_lines(_decode_body(body)))
        async for frame in aiter_sse_frames(lines):
            yield frame


def _decode_body(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return body.decode("utf-8", errors="replace")


def _string_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _http_error(response: httpx.Response) -> AgentHTTPError:
    return AgentHTTPError(
        f"HTTP {response.status_code}: {response.reason_phrase}",
        status_code=response.status_code,
    )


class AgentTransport:
    """Posts JSON-RPC requests and reads SSE streams from agent endpoints.

    One shared ``httpx.AsyncClient`` is created lazily. httpx failures are
    mapped onto the dashboard exception hierarchy so callers can tell a
    timeout from other transport errors.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            timeout: Request timeout in seconds (default 30.0).
            headers: Extra headers sent on every request.
            http_client: Pre-built client (tests, custom TLS); not closed
                by :meth:`close` unless created here.
        """
        self._timeout = timeout
        self._headers = {"User-Agent": USER_AGENT, **dict(headers or {})}
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def timeout(self) -> float:
        return self._timeout

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._headers,
            )
            self._owns_client = True
        return self._http_client

    def _request_headers(self, headers: Mapping[str, str] | None) -> dict[str, str]:
        merged = dict(self._headers)
        merged.update(headers or {})
        return merged

    def _timeout_error(self, url: str, exc: Exception) -> AgentTimeoutError:
        return AgentTimeoutError(
            f"Request to agent at {url} timed out after {self._timeout:g}s",
            cause=exc,
        )

    def _connection_error(self, url: str, exc: Exception) -> AgentConnectionError:
        return AgentConnectionError(
            f"Failed to connect to agent at {url}: {exc}",
            cause=exc,
        )

    async def post_json(
        self,
        url: str,
        payload: Any,
        headers: Mapping[str, str] | None = None,
    ) -> RpcResponse:
        """POST a JSON-RPC envelope and decode the JSON reply.

        Raises:
            AgentConnectionError: If the connection fails.
            AgentTimeoutError: If the request times out.
            AgentHTTPError: On a non-2xx status.
            AgentProtocolError: If the body is not JSON.
        """
        client = self._ensure_client()
        logger.debug("POST %s", url)
        try:
            response = await client.post(
                url, json=payload, headers=self._request_headers(headers)
            )
        except httpx.TimeoutException as e:
            raise self._timeout_error(url, e) from e
        except httpx.HTTPError as e:
            raise self._connection_error(url, e) from e

        if response.is_error:
            raise _http_error(response)
        try:
            data = response.json()
        except ValueError as e:
            raise AgentProtocolError(
                f"Agent at {url} returned a non-JSON response",
                code=-32700,
                cause=e,
            ) from e
        return RpcResponse(status_code=response.status_code, payload=data)

    @contextlib.asynccontextmanager
    async def open_stream(
        self,
        url: str,
        payload: Any,
        headers: Mapping[str, str] | None = None,
    ) -> AsyncIterator[EventStream]:
        """Open a streaming POST; usable as ``async with``.

        Raises:
            AgentConnectionError: If the connection fails.
            AgentTimeoutError: If connecting or reading times out.
            AgentHTTPError: On a non-2xx status.
        """
        client = self._ensure_client()
        logger.debug("POST %s (stream)", url)
        try:
            async with client.stream(
                "POST", url, json=payload, headers=self._request_headers(headers)
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise _http_error(response)
                yield EventStream(response)
        except httpx.TimeoutException as e:
            raise self._timeout_error(url, e) from e
        except httpx.HTTPError as e:
            raise self._connection_error(url, e) from e

    async def fetch_agent_card(self, card_url: str) -> Any:
        """GET an agent card document and return the decoded JSON.

        Raises:
            AgentConnectionError: If the card cannot be fetched.
            AgentTimeoutError: If the request times out.
            AgentHTTPError: On a non-2xx status.
        """
        client = self._ensure_client()
        try:
            response = await client.get(
                card_url, headers=self._request_headers({"Accept": JSON_CONTENT})
            )
        except httpx.TimeoutException as e:
            raise self._timeout_error(card_url, e) from e
        except httpx.HTTPError as e:
            raise AgentConnectionError(f"Failed to fetch card: {e}", cause=e) from e

        if response.is_error:
            raise AgentHTTPError(
                f"Failed to fetch card: {response.reason_phrase or response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise AgentConnectionError(
                "Failed to fetch card: response is not JSON", cause=e
            ) from e

    async def check_health(
        self, card_url: str, *, timeout: float = HEALTH_CHECK_TIMEOUT
    ) -> HealthStatus:
        """Probe an agent's card URL; never raises for agent-side failures."""
        client = self._ensure_client()
        started = time.monotonic()
        try:
            response = await client.get(
                card_url,
                headers=self._request_headers({"Accept": JSON_CONTENT}),
                timeout=timeout,
            )
        except httpx.TimeoutException:
            logger.warning("Health check timed out for %s", card_url)
            return HealthStatus(healthy=False, error="Request timed out")
        except httpx.HTTPError as e:
            logger.warning("Health check failed for %s", card_url, exc_info=True)
            return HealthStatus(healthy=False, error=str(e) or "Health check failed")

        latency_ms = int((time.monotonic() - started) * 1000)
        if response.is_error:
            return HealthStatus(
                healthy=False,
                status_code=response.status_code,
                latency_ms=latency_ms,
                error=response.reason_phrase or None,
            )

        try:
            card = response.json()
        except ValueError:
            card = None
        is_card = isinstance(card, dict) and isinstance(card.get("name"), str)
        return HealthStatus(
            healthy=is_card,
            status_code=response.status_code,
            latency_ms=latency_ms,
            agent_name=card.get("name") if is_card else None,
            protocol_version=_string_or_none(card.get("protocolVersion"))
            if is_card
            else None,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> AgentTransport:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
