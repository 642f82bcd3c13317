"""Provider adapter interface.

An adapter translates between the conversation model and one provider's
wire format, and owns nothing else: transport and rate limiting are
injected.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from sandcoder.clients.rate_limit import ProviderRateLimiter
from sandcoder.clients.transport import Transport
from sandcoder.config import ProviderSettings
from sandcoder.errors import ProviderError
from sandcoder.models.conversation import Message
from sandcoder.models.llm import NormalizedResponse, SystemPrompt, ToolCall, ToolChoice, ToolResult, ToolSpec, Usage
from sandcoder.utils.ids import new_tool_call_id
from sandcoder.utils.logging import get_logger
from sandcoder.utils.tokens import estimate_payload_tokens

logger = get_logger(__name__)


def tool_result_content(result: ToolResult) -> str:
    """Text sent back to the model for one tool result."""
    if result.is_error:
        return f"Error: {result.error}"
    if isinstance(result.output, str):
        return result.output
    return json.dumps(result.output, ensure_ascii=False, default=str)



def unique_tool_calls(calls: list[ToolCall]) -> tuple[ToolCall, ...]:
    """Give every repeat of an already used tool call id a fresh id.

    Each call is executed and answered exactly once, so ids must be unique
    within a response.
    """
    seen: set[str] = set()
    unique: list[ToolCall] = []
    for call in calls:
        if call.id in seen:
            fresh = new_tool_call_id()
            logger.warning(f"Duplicate tool call id {call.id!r} in response, renamed to {fresh!r}")
            call = call.model_copy(update={"id": fresh})
        seen.add(call.id)
        unique.append(call)
    return tuple(unique)

class ProviderAdapter(ABC):
    """Base class for provider wire-format adapters."""

    def __init__(
        self,
        settings: ProviderSettings,
        transport: Transport,
        rate_limiter: ProviderRateLimiter | None = None,
    ):
        self.settings = settings
        self.transport = transport
        self.model = settings.resolved_model
        self.rate_limiter = rate_limiter or ProviderRateLimiter(
            settings.requests_per_minute, settings.tokens_per_minute
        )

    @property
    def name(self) -> str:
        return self.settings.name

    @abstractmethod
    def build_request(
        self,
        context: list[Message],
        system_prompt: SystemPrompt | None,
        tools: list[ToolSpec],
        tool_choice: ToolChoice | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        """Encode the conversation slice as this provider's request body."""

    @abstractmethod
    def parse_response(self, payload: dict[str, Any]) -> NormalizedResponse:
        """Decode a response body into a ``NormalizedResponse``."""

    def complete(
        self,
        context: list[Message],
        system_prompt: SystemPrompt | None,
        tools: list[ToolSpec],
        tool_choice: ToolChoice | None = None,
        max_tokens: int | None = None,
    ) -> NormalizedResponse:
        """One full round-trip: build, rate-limit, send, parse.

        Raises:
            ProviderError: on transport failure or a malformed response
        """
        request = self.build_request(context, system_prompt, tools, tool_choice, max_tokens)
        self.rate_limiter.acquire(estimate_payload_tokens(request.get("messages")), self.name)

        logger.debug(f"Creating {self.name} request with {len(context)} messages, {len(tools)} tools")
        payload = self.transport.send(request, self.settings.timeout)

        try:
            response = self.parse_response(payload)
        except ProviderError:
            raise
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderError(self.name, f"malformed response: {e}") from e

        logger.debug(
            f"Response received - Stop reason: {response.stop_reason}, tool calls: {len(response.tool_calls)}"
        )
        return response

    def compute_cost(self, usage: Usage) -> float:
        """Best-effort cost from the configured per-1k price table."""
        prices = self.settings.prices_per_1k
        return usage.input_tokens / 1000 * prices.input + usage.output_tokens / 1000 * prices.output
