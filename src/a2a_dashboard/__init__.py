"""A2A Dashboard core: protocol engine for operating A2A agents.

SessionDriver is the primary entry point: it sends messages over
JSON-RPC or SSE and records every exchange in an AgentSessionStore.
"""

from .auth import (
    AgentAuthConfig,
    ApiKeyAuth,
    BearerAuth,
    CustomHeadersAuth,
    NoAuth,
    build_auth_headers,
    parse_auth_config,
    token_for_bearer_client,
)
from .card import (
    AGENT_CARD_PATH,
    normalize_agent_card,
    normalize_card_url,
    parse_agent_card,
    resolve_card_source_url,
)
from .debug import build_curl, extract_rpc_method, format_duration
from .exceptions import (
    A2ADashboardError,
    AgentConnectionError,
    AgentHTTPError,
    AgentProtocolError,
    AgentTimeoutError,
    AuthConfigurationError,
    CardValidationError,
    ContentTypeNotSupportedError,
    RequestValidationError,
    TaskNotCancelableError,
    TaskNotFoundError,
    UnsupportedMethodError,
    UnsupportedOperationError,
)
from .export import export_to_json, export_to_markdown, generate_export_filename
from .extract import extract_display_text
from .session import SessionDriver
from .store import AgentSessionStore, AgentState, StoreEvent
from .tasks import TaskClient, TaskPoller
from .transport import AgentTransport
from .types import (
    AgentCard,
    AgentEndpoint,
    ChatMessage,
    HealthStatus,
    RpcLogEntry,
    TrackedTask,
)

__all__ = [
    "A2ADashboardError",
    "AGENT_CARD_PATH",
    "AgentAuthConfig",
    "AgentCard",
    "AgentConnectionError",
    "AgentEndpoint",
    "AgentHTTPError",
    "AgentProtocolError",
    "AgentSessionStore",
    "AgentState",
    "AgentTimeoutError",
    "AgentTransport",
    "ApiKeyAuth",
    "AuthConfigurationError",
    "BearerAuth",
    "CardValidationError",
    "ChatMessage",
    "ContentTypeNotSupportedError",
    "CustomHeadersAuth",
    "HealthStatus",
    "NoAuth",
    "RequestValidationError",
    "RpcLogEntry",
    "SessionDriver",
    "StoreEvent",
    "TaskClient",
    "TaskNotCancelableError",
    "TaskNotFoundError",
    "TaskPoller",
    "TrackedTask",
    "UnsupportedMethodError",
    "UnsupportedOperationError",
    "build_auth_headers",
    "build_curl",
    "export_to_json",
    "export_to_markdown",
    "extract_display_text",
    "extract_rpc_method",
    "format_duration",
    "generate_export_filename",
    "normalize_agent_card",
    "normalize_card_url",
    "parse_agent_card",
    "parse_auth_config",
    "resolve_card_source_url",
    "token_for_bearer_client",
]
