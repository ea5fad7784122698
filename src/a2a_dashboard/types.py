"""Type definitions for a2a-dashboard.

Models dump with camelCase aliases (``model_dump(by_alias=True)``) so
that exported conversations and persisted cards use the same field names
as the A2A wire format.
"""

from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Task states that end an input-required exchange
TERMINAL_TASK_STATES: frozenset[str] = frozenset({"completed", "failed", "canceled"})

# Task states at which polling stops
POLL_TERMINAL_STATES: frozenset[str] = TERMINAL_TASK_STATES | {"rejected"}

MessageRole: TypeAlias = Literal["user", "assistant"]
MessageStatus: TypeAlias = Literal["pending", "streaming", "complete", "error"]


class DashboardModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentSkill(DashboardModel):
    """A named capability advertised by an agent card."""

    name: str
    id: str | None = None
    description: str | None = None
    examples: list[str] | None = None
    tags: list[str] | None = None
    input_modes: list[str] | None = None
    output_modes: list[str] | None = None


class AgentEndpoint(DashboardModel):
    id: str
    name: str
    url: str
    protocol: str


class AgentCapabilities(DashboardModel):
    streaming: bool = False
    push_notifications: bool = False
    state_transition_history: bool = False


class AgentProvider(DashboardModel):
    organization: str | None = None
    url: str | None = None


class AgentCard(DashboardModel):
    """Canonical agent descriptor produced by the card normalizer.

    Immutable once built. Re-registering an agent with the same ``id``
    replaces the stored card wholesale.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    name: str
    description: str | None = None
    version: str | None = None
    protocol_version: str | None = None
    url: str | None = None  # card source URL, used to re-fetch tasks
    provider: AgentProvider | None = None
    default_input_modes: list[str] | None = None
    default_output_modes: list[str] | None = None
    skills: list[AgentSkill] = Field(default_factory=list)
    endpoints: list[AgentEndpoint]
    capabilities: AgentCapabilities = Field(default_factory=AgentCapabilities)
    raw: Any = None


class ChatMessage(DashboardModel):
    """One entry of an agent conversation.

    Assistant messages start as an empty ``streaming`` placeholder when a
    response is streamed, and end as ``complete`` or ``error``.
    """

    id: str
    role: MessageRole
    content: str
    timestamp: str
    status: MessageStatus = "complete"
    error: str | None = None
    task_id: str | None = None
    task_state: str | None = None


class RpcLogEntry(DashboardModel):
    """Wire-level record of one request/response exchange."""

    id: str
    endpoint_url: str
    request_payload: Any
    request_headers: dict[str, str] = Field(default_factory=dict)
    response_payload: Any = None
    status: int | None = None  # HTTP status
    started_at: str
    completed_at: str | None = None
    duration_ms: int | None = None

    @property
    def completed(self) -> bool:
        return self.completed_at is not None


class TrackedTask(DashboardModel):
    task_id: str
    context_id: str | None = None
    state: str
    last_updated: str
    created_at: str
    message: str | None = None


class NormalizationResult(BaseModel):
    """Outcome of card normalization: a card, or every error found."""

    card: AgentCard | None = None
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.card is not None and not self.errors


class HealthStatus(BaseModel):
    """Result of probing an agent's card URL."""

    healthy: bool
    status_code: int | None = None
    latency_ms: int | None = None
    agent_name: str | None = None
    protocol_version: str | None = None
    error: str | None = None
