"""Anthropic Messages API adapter."""

from typing import Any

from sandcoder.models.conversation import Message
from sandcoder.models.llm import (
    NormalizedResponse,
    SystemPrompt,
    ToolCall,
    ToolChoice,
    ToolSpec,
    Usage,
)
from sandcoder.providers.base import ProviderAdapter, tool_result_content, unique_tool_calls
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)


def encode_tool_choice(choice: ToolChoice) -> dict[str, str]:
    """Map a provider-agnostic tool choice onto Anthropic's ``tool_choice``."""
    if choice == "auto":
        return {"type": "auto"}
    if choice == "required":
        return {"type": "any"}
    if choice == "none":
        return {"type": "none"}
    return {"type": "tool", "name": choice}


class AnthropicAdapter(ProviderAdapter):
    """Adapter for the Anthropic Messages wire format."""

    def build_request(
        self,
        context: list[Message],
        system_prompt: SystemPrompt | None,
        tools: list[ToolSpec],
        tool_choice: ToolChoice | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.settings.max_tokens,
            "messages": self._encode_messages(context),
        }
        if system_prompt is not None:
            request["system"] = system_prompt.anthropic_system()
        if self.settings.temperature is not None:
            request["temperature"] = self.settings.temperature
        if tools:
            request["tools"] = [
                {"name": spec.name, "description": spec.description, "input_schema": spec.input_schema}
                for spec in tools
            ]
            if tool_choice is not None:
                request["tool_choice"] = encode_tool_choice(tool_choice)
        return request

    def _encode_messages(self, context: list[Message]) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []

        def push(role: str, blocks: list[dict[str, Any]]) -> None:
            # The API requires alternating roles; merge consecutive turns of the same role
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"].extend(blocks)
            else:
                messages.append({"role": role, "content": blocks})

        for message in context:
            if message.role == "user":
                push("user", [{"type": "text", "text": message.content}])
            elif message.role == "assistant":
                blocks: list[dict[str, Any]] = []
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                for call in message.tool_calls:
                    blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.input})
                if blocks:
                    push("assistant", blocks)
            else:
                result = message.tool_result
                push(
                    "user",
                    [
                        {
                            "type": "tool_result",
                            "tool_use_id": result.tool_call_id,
                            "content": tool_result_content(result),
                            "is_error": result.is_error,
                        }
                    ],
                )
        return messages

    def parse_response(self, payload: dict[str, Any]) -> NormalizedResponse:
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []

        for block in payload.get("content") or []:
            block_type = block.get("type")
            if block_type == "text":
                text_parts.append(block.get("text") or "")
            elif block_type == "tool_use":
                tool_input = block.get("input")
                tool_calls.append(
                    ToolCall(
                        id=block["id"],
                        name=block["name"],
                        input=tool_input if isinstance(tool_input, dict) else {},
                        argument_error=None if isinstance(tool_input, dict | None) else "tool input must be an object",
                    )
                )
            else:
                logger.warning(f"Unknown content block type: {block_type}")

        raw_usage = payload.get("usage") or {}
        input_tokens = raw_usage.get("input_tokens") or 0
        output_tokens = raw_usage.get("output_tokens") or 0
        usage = Usage(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=input_tokens + output_tokens)

        return NormalizedResponse(
            text="\n".join(text_parts),
            tool_calls=unique_tool_calls(tool_calls),
            raw=payload,
            usage=usage,
            cost=self.compute_cost(usage),
            model=payload.get("model") or self.model,
            provider=self.name,
            stop_reason=payload.get("stop_reason"),
        )
