"""Automatic tool-execution loop.

One ``run`` drives a single user turn: request the model, inspect the
response, execute any requested tools through the registry, append their
results and request again, until the model answers without tools, a round
limit is hit, the caller cancels, or every provider in the chain fails.
"""

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum

from sandcoder.errors import ProviderError, RequestCancelled
from sandcoder.models.conversation import Message
from sandcoder.models.llm import (
    NormalizedResponse,
    StopReason,
    SystemPromptInput,
    ToolCall,
    ToolChoice,
    ToolResult,
    ToolSpec,
    Usage,
    normalize_system_prompt,
)
from sandcoder.providers.base import ProviderAdapter
from sandcoder.tools.registry import ToolRegistry
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)

MessageCallback = Callable[[Message], None]

CANCELLED_ERROR = "cancelled"
REJECTED_ERROR = "rejected by user"


class LoopState(StrEnum):
    AWAITING_MODEL = "awaiting_model"
    INSPECTING_RESPONSE = "inspecting_response"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"


class CancellationToken:
    """Thread-safe flag a caller sets to stop a running loop."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class LoopResult:
    """Outcome of one loop run, including every message it produced."""

    state: LoopState = LoopState.AWAITING_MODEL
    transitions: list[LoopState] = field(default_factory=list)
    stop_reason: str | None = None
    limit_reached: bool = False
    response: NormalizedResponse | None = None
    new_messages: list[Message] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    pending_tool_calls: list[ToolCall] = field(default_factory=list)
    rounds: int = 0
    usage: Usage = field(default_factory=Usage)
    cost: float = 0.0
    error: str | None = None
    exception: ProviderError | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == LoopState.DONE

    def as_text(self) -> str:
        """Final response text; empty when the loop failed before any response."""
        return self.response.as_text() if self.response else ""


class ToolExecutionLoop:
    """Synchronous request/execute/resend state machine."""

    def __init__(
        self,
        adapters: ProviderAdapter | list[ProviderAdapter],
        registry: ToolRegistry,
        max_rounds: int = 5,
    ):
        """Initialize the loop.

        Args:
            adapters: Primary provider adapter, optionally followed by fallbacks tried in order
            registry: Tools the model may call
            max_rounds: Maximum provider round-trips per run
        """
        self.adapters = adapters if isinstance(adapters, list) else [adapters]
        if not self.adapters:
            raise ValueError("At least one provider adapter is required")
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.registry = registry
        self.max_rounds = max_rounds

    def run(
        self,
        context: list[Message],
        system_prompt: SystemPromptInput | None = None,
        *,
        auto_execute_tools: bool = True,
        tool_choice: ToolChoice | None = None,
        max_tokens: int | None = None,
        cancel: CancellationToken | None = None,
        on_message: MessageCallback | None = None,
    ) -> LoopResult:
        """Drive one turn starting from ``context``.

        Args:
            context: Messages sent with the first request; not modified
            system_prompt: String, list of strings or list of content blocks
            auto_execute_tools: Execute requested tools; when False stop at the first tool request
            tool_choice: "auto", "required", "none" or a tool name
            max_tokens: Per-request output token cap (adapter default when None)
            cancel: Checked before every request and every tool call
            on_message: Called with each produced message, in order

        Returns:
            Loop result; provider failures are reported in it, not raised
        """
        turn = _Turn(self, context, system_prompt, tool_choice, max_tokens, cancel, on_message)
        logger.info(
            f"Starting tool loop with {len(context)} context messages, "
            f"{len(turn.tools)} tools, max_rounds: {self.max_rounds}"
        )
        return turn.drive(auto_execute_tools)

    def resume(
        self,
        context: list[Message],
        pending_calls: list[ToolCall],
        approved_ids: Iterable[str],
        system_prompt: SystemPromptInput | None = None,
        *,
        auto_execute_tools: bool = True,
        tool_choice: ToolChoice | None = None,
        max_tokens: int | None = None,
        cancel: CancellationToken | None = None,
        on_message: MessageCallback | None = None,
    ) -> LoopResult:
        """Continue a turn that stopped with pending tool calls.

        Approved calls are executed, the others are answered with a
        "rejected by user" error, and the loop then requests the model again.
        ``context`` must end with the assistant message that requested
        ``pending_calls``.
        """
        approved = set(approved_ids)
        turn = _Turn(self, context, system_prompt, tool_choice, max_tokens, cancel, on_message)
        logger.info(f"Resuming tool loop: {len(approved)} of {len(pending_calls)} pending calls approved")

        turn.transition(LoopState.EXECUTING_TOOLS)
        turn.result.tool_calls.extend(pending_calls)
        if not turn.execute(pending_calls, rejected=lambda call: call.id not in approved):
            return turn.fail(RequestCancelled(), StopReason.CANCELLED)
        turn.transition(LoopState.AWAITING_MODEL)
        return turn.drive(auto_execute_tools)

    def request(
        self,
        messages: list[Message],
        system_prompt,
        tools: list[ToolSpec],
        tool_choice: ToolChoice | None,
        max_tokens: int | None,
        cancel: CancellationToken | None,
    ) -> NormalizedResponse:
        """One round-trip, falling through the adapter chain on ``ProviderError``.

        Raises:
            RequestCancelled: if ``cancel`` is set before a request is sent
            ProviderError: the last adapter's error when every adapter fails
        """
        last_error: ProviderError | None = None
        for index, adapter in enumerate(self.adapters):
            if cancel is not None and cancel.cancelled:
                raise RequestCancelled()
            try:
                return adapter.complete(messages, system_prompt, tools, tool_choice, max_tokens)
            except RequestCancelled:
                raise
            except ProviderError as e:
                last_error = e
                if index + 1 < len(self.adapters):
                    logger.warning(f"{adapter.name} failed ({e}); falling back to {self.adapters[index + 1].name}")
                else:
                    logger.error(f"{adapter.name} failed: {e}")
        assert last_error is not None
        raise last_error


class _Turn:
    """Mutable state of one loop run."""

    def __init__(
        self,
        loop: ToolExecutionLoop,
        context: list[Message],
        system_prompt: SystemPromptInput | None,
        tool_choice: ToolChoice | None,
        max_tokens: int | None,
        cancel: CancellationToken | None,
        on_message: MessageCallback | None,
    ):
        self.loop = loop
        self.messages = [message.model_copy(deep=True) for message in context]
        self.system_prompt = normalize_system_prompt(system_prompt)
        self.tools = loop.registry.specs()
        self.tool_choice = tool_choice
        self.max_tokens = max_tokens
        self.cancel = cancel
        self.on_message = on_message
        self.result = LoopResult()
        self.result.transitions.append(LoopState.AWAITING_MODEL)

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled

    def transition(self, state: LoopState) -> None:
        self.result.state = state
        self.result.transitions.append(state)

    def emit(self, message: Message) -> None:
        self.messages.append(message)
        self.result.new_messages.append(message)
        if self.on_message is not None:
            self.on_message(message)

    def drive(self, auto_execute_tools: bool) -> LoopResult:
        result = self.result
        while True:
            if self.cancelled:
                return self.fail(RequestCancelled(), StopReason.CANCELLED)

            result.rounds += 1
            logger.debug(f"Tool loop round {result.rounds}/{self.loop.max_rounds}")
            try:
                response = self.loop.request(
                    self.messages, self.system_prompt, self.tools, self.tool_choice, self.max_tokens, self.cancel
                )
            except RequestCancelled as e:
                return self.fail(e, StopReason.CANCELLED)
            except ProviderError as e:
                return self.fail(e, StopReason.ERROR)

            self.transition(LoopState.INSPECTING_RESPONSE)
            result.response = response
            result.usage = result.usage + response.usage
            result.cost += response.cost
            self.emit(Message.from_response(response))

            if not response.has_tool_calls:
                result.stop_reason = StopReason.END_TURN
                return self.finish()

            result.tool_calls.extend(response.tool_calls)
            logger.info(f"Model requested {len(response.tool_calls)} tool calls")

            if not auto_execute_tools:
                result.pending_tool_calls = list(response.tool_calls)
                result.stop_reason = StopReason.TOOL_CALLS_PENDING
                return self.finish()

            self.transition(LoopState.EXECUTING_TOOLS)
            if not self.execute(response.tool_calls):
                return self.fail(RequestCancelled(), StopReason.CANCELLED)

            if result.rounds >= self.loop.max_rounds:
                logger.warning(f"Tool loop reached max rounds ({self.loop.max_rounds})")
                result.limit_reached = True
                result.stop_reason = StopReason.MAX_ROUNDS
                return self.finish()

            self.transition(LoopState.AWAITING_MODEL)

    def execute(self, calls: Iterable[ToolCall], rejected: Callable[[ToolCall], bool] | None = None) -> bool:
        """Answer every call in order. Returns False if cancelled part-way."""
        calls = list(calls)
        for index, call in enumerate(calls):
            if self.cancelled:
                logger.info(f"Cancelled before tool call {call.id}; answering {len(calls) - index} calls as cancelled")
                for remaining in calls[index:]:
                    self.record(ToolResult.failure(remaining.id, CANCELLED_ERROR))
                return False
            if rejected is not None and rejected(call):
                self.record(ToolResult.failure(call.id, REJECTED_ERROR))
                continue
            self.record(self.loop.registry.invoke(call))
        return True

    def record(self, tool_result: ToolResult) -> None:
        self.result.tool_results.append(tool_result)
        self.emit(Message.from_tool_result(tool_result))

    def finish(self) -> LoopResult:
        self.transition(LoopState.DONE)
        logger.info(f"Tool loop completed in {self.result.rounds} rounds ({self.result.stop_reason})")
        return self.result

    def fail(self, error: ProviderError, stop_reason: str) -> LoopResult:
        self.result.stop_reason = stop_reason
        self.result.error = CANCELLED_ERROR if stop_reason == StopReason.CANCELLED else str(error)
        self.result.exception = error
        self.transition(LoopState.FAILED)
        logger.warning(f"Tool loop failed after {self.result.rounds} rounds: {self.result.error}")
        return self.result
