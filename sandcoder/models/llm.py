"""LLM-related data models and types (provider-agnostic)."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Usage(BaseModel):
    """Token usage reported by a provider. Missing fields count as zero."""

    model_config = ConfigDict(extra="ignore")

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    # Set when the provider sent arguments that could not be decoded
    argument_error: str | None = None


class ToolResult(BaseModel):
    """Outcome of exactly one ToolCall."""

    model_config = ConfigDict(extra="ignore")

    tool_call_id: str
    is_error: bool = False
    output: Any = None
    error: str | None = None

    @classmethod
    def success(cls, tool_call_id: str, output: Any) -> "ToolResult":
        return cls(tool_call_id=tool_call_id, output=output)

    @classmethod
    def failure(cls, tool_call_id: str, error: str) -> "ToolResult":
        return cls(tool_call_id=tool_call_id, is_error=True, error=error)


class ToolSpec(BaseModel):
    """Tool description sent to a provider."""

    name: str
    description: str
    input_schema: dict[str, Any]


class SystemBlock(BaseModel):
    """Structured system prompt block."""

    model_config = ConfigDict(extra="allow")

    type: Literal["text"] = "text"
    text: str


# System prompt variants. Callers may hand in a string, a list of strings or
# a list of content blocks; normalize_system_prompt turns that into exactly
# one of the three classes below so adapters never inspect raw types.


@dataclass(frozen=True)
class PlainPrompt:
    """A single system prompt string."""

    text: str

    def as_text(self) -> str:
        return self.text

    def as_blocks(self) -> list[dict[str, Any]]:
        return [{"type": "text", "text": self.text}]

    def anthropic_system(self) -> str:
        return self.text


@dataclass(frozen=True)
class PromptParts:
    """Ordered system prompt fragments."""

    parts: tuple[str, ...]

    def as_text(self) -> str:
        return "\n\n".join(self.parts)

    def as_blocks(self) -> list[dict[str, Any]]:
        return [{"type": "text", "text": part} for part in self.parts]

    def anthropic_system(self) -> list[dict[str, Any]]:
        return self.as_blocks()


@dataclass(frozen=True)
class PromptBlocks:
    """Ordered content blocks, possibly carrying provider extras such as cache_control."""

    blocks: tuple[SystemBlock, ...]

    def as_text(self) -> str:
        return "\n\n".join(block.text for block in self.blocks)

    def as_blocks(self) -> list[dict[str, Any]]:
        return [block.model_dump(exclude_none=True) for block in self.blocks]

    def anthropic_system(self) -> list[dict[str, Any]]:
        # Keeps cache_control and other extras
        return self.as_blocks()


SystemPrompt = PlainPrompt | PromptParts | PromptBlocks
SystemPromptInput = str | Sequence[str] | Sequence[SystemBlock | dict[str, Any]] | SystemPrompt


def normalize_system_prompt(value: SystemPromptInput | None) -> SystemPrompt | None:
    """Convert any accepted system prompt form into its tagged variant."""
    if value is None:
        return None
    if isinstance(value, PlainPrompt | PromptParts | PromptBlocks):
        return value
    if isinstance(value, str):
        return PlainPrompt(value) if value else None

    items = list(value)
    if not items:
        return None
    if all(isinstance(item, str) for item in items):
        return PromptParts(tuple(items))
    return PromptBlocks(tuple(SystemBlock.model_validate(item) for item in items))


ToolChoice = Literal["auto", "required", "none"] | str


class StopReason:
    """Why a provider response or a loop ended."""

    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    MAX_ROUNDS = "max_rounds"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class NormalizedResponse:
    """Provider-agnostic result of one round-trip."""

    text: str
    tool_calls: tuple[ToolCall, ...]
    raw: dict[str, Any]
    usage: Usage
    cost: float
    model: str
    provider: str
    stop_reason: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def as_text(self) -> str:
        """Collapse to plain text for callers that did not ask for structure."""
        return self.text
