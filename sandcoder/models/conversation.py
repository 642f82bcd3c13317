"""Conversation, message and API data models."""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sandcoder.models.llm import NormalizedResponse, ToolCall, ToolResult, Usage

Role = Literal["user", "assistant", "tool_result"]


def utcnow() -> datetime:
    return datetime.now(UTC)


class Message(BaseModel):
    """A single entry in a conversation's append-only history."""

    model_config = ConfigDict(extra="ignore")

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_result: ToolResult | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    usage: Usage | None = None
    cost: float = 0.0
    model: str | None = None
    provider: str | None = None

    @model_validator(mode="after")
    def check_role_payload(self) -> "Message":
        """Keep tool payloads on the roles that own them."""
        if self.role == "tool_result" and self.tool_result is None:
            raise ValueError("tool_result messages require a tool_result payload")
        if self.role != "tool_result" and self.tool_result is not None:
            raise ValueError(f"{self.role} messages cannot carry a tool_result")
        if self.role != "assistant" and self.tool_calls:
            raise ValueError(f"{self.role} messages cannot carry tool_calls")
        return self

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", content=text)

    @classmethod
    def from_response(cls, response: NormalizedResponse) -> "Message":
        """Assistant message recording exactly what the model produced."""
        return cls(
            role="assistant",
            content=response.text,
            tool_calls=list(response.tool_calls),
            usage=response.usage,
            cost=response.cost,
            model=response.model,
            provider=response.provider,
        )

    @classmethod
    def from_tool_result(cls, result: ToolResult) -> "Message":
        return cls(role="tool_result", tool_result=result)


class ConversationMetadata(BaseModel):
    """Aggregate usage across a conversation."""

    model_config = ConfigDict(extra="ignore")

    total_tokens: int = 0
    total_cost: float = 0.0
    model_used: str | None = None
    provider: str | None = None


class Conversation(BaseModel):
    """A persisted conversation. Messages are only ever appended."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = "New Conversation"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    messages: list[Message] = Field(default_factory=list)
    metadata: ConversationMetadata = Field(default_factory=ConversationMetadata)


class ConversationSummary(BaseModel):
    """Listing entry for a stored conversation."""

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int
    encrypted: bool = False


class ConversationStats(BaseModel):
    """Counters for a single conversation."""

    message_count: int
    total_tokens: int
    total_cost: float
    created_at: datetime
    updated_at: datetime


class TurnResult(BaseModel):
    """Structured outcome of one user turn."""

    conversation_id: str
    status: Literal["done", "failed"]
    text: str = ""
    stop_reason: str | None = None
    rounds: int = 0
    limit_reached: bool = False
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    pending_tool_calls: list[ToolCall] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    cost: float = 0.0
    model: str | None = None
    provider: str | None = None
    error: str | None = None


# API request/response models


class CreateConversationRequest(BaseModel):
    """Request model for creating a conversation."""

    title: str | None = None


class SendMessageRequest(BaseModel):
    """Request model for posting a user message."""

    message: str
    auto_execute_tools: bool = True
    system_prompt: str | list[str] | list[dict[str, Any]] | None = None


class ToolApprovalRequest(BaseModel):
    """Request model for approving pending tool calls."""

    approved_ids: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
