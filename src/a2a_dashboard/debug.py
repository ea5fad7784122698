"""Helpers for the request inspector: cURL reproduction and log formatting."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .extract import format_json
from .transport import JSON_CONTENT


def _shell_quote(value: str) -> str:
    return value.replace("'", "'\\''")


def build_curl(
    endpoint_url: str,
    payload: Any,
    headers: Mapping[str, str] | None = None,
) -> str:
    """Reproduce a logged request as a single-line ``curl`` command.

    Header values and the pretty-printed JSON body are single-quoted, with
    embedded single quotes escaped as ``'\\''``. Without ``headers`` only
    ``Content-Type: application/json`` is sent.
    """
    if headers is None:
        headers = {"Content-Type": JSON_CONTENT}
    header_flags = " ".join(
        f"-H '{name}: {_shell_quote(str(value))}'" for name, value in headers.items()
    )
    body = _shell_quote(format_json(payload))
    return f"curl -X POST '{endpoint_url}' {header_flags} -d '{body}'"


def extract_rpc_method(payload: Any) -> str | None:
    if isinstance(payload, dict) and isinstance(payload.get("method"), str):
        return payload["method"]
    return None


def format_duration(duration_ms: float | None) -> str:
    """Human-readable request duration: ``pending``, ``12 ms`` or ``1.25 s``."""
    if duration_ms is None:
        return "pending"
    if duration_ms >= 1000:
        return f"{duration_ms / 1000:.2f} s"
    return f"{max(1, round(duration_ms))} ms"
