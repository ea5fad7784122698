"""Agent card normalization.

Agent cards in the wild disagree on where endpoints live and how skills
are shaped. ``normalize_agent_card`` folds those variants into one
:class:`~a2a_dashboard.types.AgentCard` and reports every structural
problem at once instead of stopping at the first.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from .exceptions import CardValidationError
from .types import (
    AgentCapabilities,
    AgentCard,
    AgentEndpoint,
    AgentProvider,
    AgentSkill,
    NormalizationResult,
)

logger = logging.getLogger(__name__)

AGENT_CARD_PATH = "/.well-known/agent-card.json"
DEFAULT_PROTOCOL = "jsonrpc"
ROOT_ENDPOINT_NAME = "Agent URL"

# Keys checked, in order, when ``endpoints`` is an object keyed by transport
_TRANSPORT_KEYS: tuple[str, ...] = ("jsonrpc", "rpc", "http")


def _as_record(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _as_string(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def _first_string(record: Mapping[str, Any], *keys: str) -> str:
    """First non-blank string among ``keys``."""
    for key in keys:
        value = _as_string(record.get(key))
        if value:
            return value
    return ""


def _string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    items = [item for item in value if isinstance(item, str)]
    return items or None


def is_absolute_url(value: str) -> bool:
    """True when ``value`` parses with both a scheme and a host."""
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)


def _collect_endpoint_candidates(
    card: Mapping[str, Any],
) -> list[tuple[dict[str, Any], str]]:
    """Gather ``(entry, protocol_hint)`` pairs from every known location."""
    candidates: list[tuple[dict[str, Any], str]] = []
    protocol_hint = _as_string(card.get("preferredTransport")).lower() or DEFAULT_PROTOCOL

    endpoints = card.get("endpoints")
    if isinstance(endpoints, list):
        for entry in endpoints:
            record = _as_record(entry)
            if record is not None:
                candidates.append((record, protocol_hint))
    elif isinstance(endpoints, dict):
        for key in _TRANSPORT_KEYS:
            value = endpoints.get(key)
            if isinstance(value, list):
                for entry in value:
                    record = _as_record(entry)
                    if record is not None:
                        candidates.append((record, key))

    endpoint = _as_record(card.get("endpoint"))
    if endpoint is not None:
        candidates.append((endpoint, protocol_hint))

    root_url = _as_string(card.get("url"))
    if root_url:
        candidates.append(
            (
                {"url": root_url, "name": ROOT_ENDPOINT_NAME, "protocol": protocol_hint},
                protocol_hint,
            )
        )

    return candidates


def _normalize_skill(entry: Any) -> AgentSkill | None:
    if isinstance(entry, str):
        name = entry.strip()
        return AgentSkill(name=name) if name else None

    record = _as_record(entry)
    if record is None:
        return None
    name = _first_string(record, "name", "title")
    if not name:
        return None

    return AgentSkill(
        name=name,
        id=_as_string(record.get("id")) or None,
        description=_as_string(record.get("description")) or None,
        examples=_string_list(record.get("examples")),
        tags=_string_list(record.get("tags")),
        input_modes=_string_list(record.get("inputModes")),
        output_modes=_string_list(record.get("outputModes")),
    )


def _normalize_endpoints(
    card: Mapping[str, Any], errors: list[str]
) -> list[AgentEndpoint]:
    endpoints: list[AgentEndpoint] = []
    for index, (entry, protocol_hint) in enumerate(
        _collect_endpoint_candidates(card), start=1
    ):
        url = _first_string(entry, "url", "href", "endpoint")
        if not url:
            errors.append(f"Endpoint {index} is missing a url.")
            continue
        if not is_absolute_url(url):
            errors.append(f"Endpoint {index} has an invalid url.")
            continue
        protocol = _first_string(entry, "protocol", "type", "transport")
        endpoints.append(
            AgentEndpoint(
                id=f"{protocol or protocol_hint}-{index}",
                name=_first_string(entry, "name", "id") or f"Endpoint {index}",
                url=url,
                protocol=protocol or protocol_hint or DEFAULT_PROTOCOL,
            )
        )
    return endpoints


def _normalize_capabilities(value: Any) -> AgentCapabilities:
    record = _as_record(value) or {}
    return AgentCapabilities(
        streaming=record.get("streaming") is True,
        push_notifications=record.get("pushNotifications") is True,
        state_transition_history=record.get("stateTransitionHistory") is True,
    )


def _normalize_provider(value: Any) -> AgentProvider | None:
    record = _as_record(value)
    if record is None:
        return None
    organization = _as_string(record.get("organization")) or None
    url = _as_string(record.get("url")) or None
    if not organization and not url:
        return None
    return AgentProvider(organization=organization, url=url)


def normalize_agent_card(
    payload: Any, source_url: str | None = None
) -> NormalizationResult:
    """Parse an arbitrary agent-card payload into a canonical card.

    Args:
        payload: Decoded JSON of the card.
        source_url: URL the card was fetched from (or derived for pasted
            cards). Becomes ``card.url`` and the id fallback.

    Returns:
        A result holding either the card or every validation error found.
    """
    card = _as_record(payload)
    if card is None:
        return NormalizationResult(errors=["Agent card payload must be an object."])

    errors: list[str] = []
    name = _as_string(card.get("name"))
    if not name:
        errors.append("Missing required field: name.")

    raw_skills = card.get("skills")
    skills: list[AgentSkill] = []
    if isinstance(raw_skills, list):
        for entry in raw_skills:
            skill = _normalize_skill(entry)
            if skill is not None:
                skills.append(skill)

    endpoints = _normalize_endpoints(card, errors)
    if not endpoints:
        errors.append("No endpoints found in card.")

    if errors:
        return NormalizationResult(errors=errors)

    agent_id = (
        _first_string(card, "id", "agentId") or _as_string(source_url) or name
    )

    normalized = AgentCard(
        id=agent_id,
        name=name,
        description=_as_string(card.get("description")) or None,
        version=_as_string(card.get("version")) or None,
        protocol_version=_as_string(card.get("protocolVersion")) or None,
        url=source_url or None,
        provider=_normalize_provider(card.get("provider")),
        default_input_modes=_string_list(card.get("defaultInputModes")),
        default_output_modes=_string_list(card.get("defaultOutputModes")),
        skills=skills,
        endpoints=endpoints,
        capabilities=_normalize_capabilities(card.get("capabilities")),
        raw=payload,
    )
    logger.debug(
        "Normalized agent card '%s' with %d endpoint(s)", name, len(endpoints)
    )
    return NormalizationResult(card=normalized)


def parse_agent_card(payload: Any, source_url: str | None = None) -> AgentCard:
    """Like :func:`normalize_agent_card` but raises on failure.

    Raises:
        CardValidationError: Carrying every validation error.
    """
    result = normalize_agent_card(payload, source_url)
    if result.card is None:
        raise CardValidationError(result.errors)
    return result.card


def normalize_card_url(value: str) -> str:
    """Point a user-entered agent URL at its well-known card document.

    ``https://host/agent`` becomes
    ``https://host/agent/.well-known/agent-card.json``; URLs already ending
    in the card path are kept. Non-URLs come back trimmed but untouched.
    """
    trimmed = value.strip()
    if not trimmed or not is_absolute_url(trimmed):
        return trimmed
    parts = urlsplit(trimmed)
    path = parts.path
    if not path.endswith(AGENT_CARD_PATH):
        path = f"{path.rstrip('/')}{AGENT_CARD_PATH}"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def resolve_card_source_url(card_json: Any) -> str:
    """Derive a source URL for a pasted card.

    Looks at ``url``, ``cardUrl`` and ``agentUrl``; failing that, builds
    the well-known card URL from the origin of the first endpoint.
    Returns ``""`` when nothing usable is present.
    """
    record = _as_record(card_json)
    if record is None:
        return ""

    direct = _first_string(record, "url", "cardUrl", "agentUrl")
    if direct:
        return direct

    endpoints = record.get("endpoints")
    if isinstance(endpoints, list) and endpoints:
        first = _as_record(endpoints[0])
        endpoint_url = first.get("url") if first else None
        if isinstance(endpoint_url, str) and endpoint_url:
            if is_absolute_url(endpoint_url):
                parts = urlsplit(endpoint_url)
                return f"{parts.scheme}://{parts.netloc}{AGENT_CARD_PATH}"
            return endpoint_url
    return ""
