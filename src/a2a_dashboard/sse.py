"""Incremental Server-Sent Events parsing for A2A streams.

Each ``data:`` line carries one JSON value. ``data: [DONE]`` marks the end
of the stream. A frame that fails to decode is skipped so that one
corrupt event cannot fail the whole exchange.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Any

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class _Done:
    """Marker returned by :func:`parse_sse_line` for the end sentinel."""

    def __repr__(self) -> str:
        return "DONE"


DONE = _Done()


def parse_sse_line(line: str) -> Any:
    """Parse one line of an event stream.

    Returns:
        The decoded JSON value of a ``data:`` line, :data:`DONE` for the
        end sentinel, or ``None`` for anything else (comments, ``event:``
        and ``id:`` fields, blank lines, malformed JSON).
    """
    line = line.rstrip("\r\n")
    if not line.startswith(DATA_PREFIX):
        return None
    data = line[len(DATA_PREFIX):]
    if data.startswith(" "):
        data = data[1:]
    if data.strip() == DONE_SENTINEL:
        return DONE
    if not data.strip():
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed SSE frame: %.200s", data)
        return None


async def aiter_sse_frames(lines: AsyncIterable[str]) -> AsyncIterator[Any]:
    """Yield decoded frames from an async line source until ``[DONE]``.

    Frames are yielded in arrival order; the consumer's pace bounds how far
    the underlying transport reads ahead.
    """
    async for line in lines:
        frame = parse_sse_line(line)
        if frame is DONE:
            return
        if frame is not None:
            yield frame


def synthesize_event_lines(payload: Any) -> Iterable[str]:
    """Render a single non-streamed reply as an event stream.

    Used when an agent answers a streaming request with plain JSON: the
    reply becomes one ``data:`` event followed by the end sentinel.
    """
    return (
        f"{DATA_PREFIX} {json.dumps(payload, ensure_ascii=False)}",
        "",
        f"{DATA_PREFIX} {DONE_SENTINEL}",
        "",
    )
