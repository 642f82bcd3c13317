"""OpenAI-compatible Chat Completions adapter (OpenAI, OpenRouter, DeepSeek, Ollama)."""

import json
from typing import Any

from sandcoder.errors import ProviderError
from sandcoder.models.conversation import Message
from sandcoder.models.llm import NormalizedResponse, StopReason, SystemPrompt, ToolCall, ToolChoice, ToolSpec, Usage
from sandcoder.providers.base import ProviderAdapter, tool_result_content, unique_tool_calls
from sandcoder.utils.ids import new_tool_call_id

DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "ollama": "http://localhost:11434/v1",
}

_FINISH_REASONS = {"stop": StopReason.END_TURN, "tool_calls": StopReason.TOOL_USE, "function_call": StopReason.TOOL_USE}


def encode_tool_choice(choice: ToolChoice) -> str | dict[str, Any]:
    """Map a provider-agnostic tool choice onto Chat Completions ``tool_choice``."""
    if choice in ("auto", "required", "none"):
        return choice
    return {"type": "function", "function": {"name": choice}}


def decode_arguments(raw: Any) -> tuple[dict[str, Any], str | None]:
    """Decode a tool call's ``arguments`` JSON string.

    Returns:
        The decoded object and ``None``, or ``{}`` and the decode error
    """
    if raw is None or raw == "":
        return {}, None
    if isinstance(raw, dict):
        return raw, None
    try:
        decoded = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        return {}, f"arguments are not valid JSON: {e}"
    if not isinstance(decoded, dict):
        return {}, "arguments must be a JSON object"
    return decoded, None


class OpenAICompatibleAdapter(ProviderAdapter):
    """Adapter for the OpenAI Chat Completions wire format."""

    def build_request(
        self,
        context: list[Message],
        system_prompt: SystemPrompt | None,
        tools: list[ToolSpec],
        tool_choice: ToolChoice | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if system_prompt is not None:
            messages.append({"role": "system", "content": system_prompt.as_text()})

        for message in context:
            if message.role == "user":
                messages.append({"role": "user", "content": message.content})
            elif message.role == "assistant":
                encoded: dict[str, Any] = {"role": "assistant", "content": message.content or None}
                if message.tool_calls:
                    encoded["tool_calls"] = [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.input)},
                        }
                        for call in message.tool_calls
                    ]
                messages.append(encoded)
            else:
                result = message.tool_result
                messages.append(
                    {"role": "tool", "tool_call_id": result.tool_call_id, "content": tool_result_content(result)}
                )

        request: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens or self.settings.max_tokens,
        }
        if self.settings.temperature is not None:
            request["temperature"] = self.settings.temperature
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {"name": spec.name, "description": spec.description, "parameters": spec.input_schema},
                }
                for spec in tools
            ]
            if tool_choice is not None:
                request["tool_choice"] = encode_tool_choice(tool_choice)
        return request

    def parse_response(self, payload: dict[str, Any]) -> NormalizedResponse:
        choices = payload.get("choices") or []
        if not choices:
            raise ProviderError(self.name, "response contained no choices")
        choice = choices[0]
        message = choice.get("message") or {}

        content = message.get("content") or ""
        if isinstance(content, list):
            content = "\n".join(part.get("text", "") for part in content if isinstance(part, dict))

        tool_calls: list[ToolCall] = []
        for raw_call in message.get("tool_calls") or []:
            function = raw_call.get("function") or {}
            arguments, error = decode_arguments(function.get("arguments"))
            tool_calls.append(
                ToolCall(
                    id=raw_call.get("id") or new_tool_call_id(),
                    name=function.get("name") or "",
                    input=arguments,
                    argument_error=error,
                )
            )

        raw_usage = payload.get("usage") or {}
        input_tokens = raw_usage.get("prompt_tokens") or 0
        output_tokens = raw_usage.get("completion_tokens") or 0
        usage = Usage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=raw_usage.get("total_tokens") or input_tokens + output_tokens,
        )

        finish_reason = choice.get("finish_reason")
        return NormalizedResponse(
            text=content,
            tool_calls=unique_tool_calls(tool_calls),
            raw=payload,
            usage=usage,
            cost=self.compute_cost(usage),
            model=payload.get("model") or self.model,
            provider=self.name,
            stop_reason=_FINISH_REASONS.get(finish_reason, finish_reason),
        )
