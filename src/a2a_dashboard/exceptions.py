"""Exception hierarchy for a2a-dashboard.

Validation errors are raised before anything is sent. Transport and
protocol errors are raised by the transport and task client; the session
driver converts them into chat state instead of propagating them.
"""

from __future__ import annotations

from typing import Any, NoReturn


class A2ADashboardError(Exception):
    """Base exception for all a2a-dashboard errors.

    Attributes:
        message: Human-readable error message.
        __cause__: Optional chained exception (from another error).
    """

    def __init__(
        self,
        message: str,
        *,
        cause: Exception | None = None,
    ) -> None:
        """Initialize dashboard error.

        Args:
            message: Error description.
            cause: Optional exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.__cause__ = cause


class CardValidationError(A2ADashboardError):
    """Agent card payload failed normalization.

    Carries every problem found, not just the first one.

    Attributes:
        errors: Human-readable validation messages, in discovery order.
    """

    def __init__(self, errors: list[str]) -> None:
        super().__init__(" ".join(errors) or "Invalid agent card.")
        self.errors = list(errors)


class RequestValidationError(A2ADashboardError):
    """Outgoing request is incomplete (no text, no endpoint, unknown agent).

    **Retryable:** No - requires user input.
    """

    pass


class UnsupportedMethodError(RequestValidationError):
    """JSON-RPC method is outside the supported allow-list."""

    def __init__(self, method: str, supported: tuple[str, ...]) -> None:
        super().__init__(
            f"Method '{method}' not supported. Use one of: {', '.join(supported)}"
        )
        self.method = method


class AuthConfigurationError(RequestValidationError):
    """Auth is configured but produces no usable header.

    Raised for apiKey/custom configs with blank fields so the request is
    never sent with empty credentials.
    """

    pass


class AgentConnectionError(A2ADashboardError):
    """Connection to the agent failed (DNS, refused, TLS, reset).

    **Retryable:** Yes - typically a transient issue.
    """

    pass


class AgentTimeoutError(A2ADashboardError):
    """Request to the agent exceeded the configured timeout.

    **Retryable:** Yes - likely a transient issue.
    """

    pass


class AgentHTTPError(A2ADashboardError):
    """Agent answered with a non-2xx HTTP status.

    Attributes:
        status_code: HTTP status returned by the agent.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code


class AgentProtocolError(A2ADashboardError):
    """A2A protocol-level error (JSON-RPC error response).

    Attributes:
        code: JSON-RPC error code.
        data: Optional error data from the server.
    """

    def __init__(
        self,
        message: str,
        *,
        code: int,
        data: Any = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.code = code
        self.data = data


class TaskNotFoundError(AgentProtocolError):
    """Task ID not found on the agent (code -32001)."""

    pass


class TaskNotCancelableError(AgentProtocolError):
    """Task cannot be canceled in its current state (code -32002)."""

    pass


class UnsupportedOperationError(AgentProtocolError):
    """Agent does not support the requested operation (code -32004)."""

    pass


class ContentTypeNotSupportedError(AgentProtocolError):
    """Agent rejected the message content type (code -32005)."""

    pass


# Error code mapping for JSON-RPC error responses
_ERROR_CODE_MAP: dict[int, type[AgentProtocolError]] = {
    -32001: TaskNotFoundError,
    -32002: TaskNotCancelableError,
    -32004: UnsupportedOperationError,
    -32005: ContentTypeNotSupportedError,
}


def raise_for_rpc_error(error: Any) -> NoReturn:
    """Convert a JSON-RPC error object to a typed exception.

    Accepts either an a2a-sdk ``JSONRPCError`` model or a plain dict
    taken from a raw response envelope.

    Raises:
        AgentProtocolError: Or one of its subclasses based on error code.
    """
    if isinstance(error, dict):
        error_code = error.get("code")
        error_message = error.get("message")
        error_data = error.get("data")
    else:
        error_code = getattr(error, "code", None)
        error_message = getattr(error, "message", None)
        error_data = getattr(error, "data", None)

    if not isinstance(error_code, int):
        error_code = 0
    exc_class = _ERROR_CODE_MAP.get(error_code, AgentProtocolError)

    raise exc_class(
        f"[{error_code}] {error_message or 'RPC error'}",
        code=error_code,
        data=error_data,
    )
