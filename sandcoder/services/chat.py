"""Chat service: one user turn from message to persisted result."""

from collections.abc import Iterable

from sandcoder.config import Settings
from sandcoder.models.conversation import Conversation, Message, TurnResult
from sandcoder.models.llm import SystemPromptInput, ToolResult
from sandcoder.providers.factory import create_adapter_chain
from sandcoder.services.conversation_store import ConversationStore, unanswered_tool_calls
from sandcoder.services.crypto import PassphraseCipher
from sandcoder.services.tool_loop import REJECTED_ERROR, CancellationToken, LoopResult, ToolExecutionLoop
from sandcoder.services.usage import UsageLog
from sandcoder.tools.registry import build_default_registry
from sandcoder.tools.terminal import ConfirmCallback
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)


class ChatService:
    """Ties the conversation store to the tool execution loop."""

    def __init__(
        self,
        settings: Settings,
        store: ConversationStore,
        loop: ToolExecutionLoop,
        usage_log: UsageLog | None = None,
    ):
        self.settings = settings
        self.store = store
        self.loop = loop
        self.usage_log = usage_log

        logger.info(f"ChatService initialized with providers: {[adapter.name for adapter in loop.adapters]}")

    def create_conversation(self, title: str | None = None) -> Conversation:
        return self.store.create(title)

    def send(
        self,
        conversation_id: str,
        text: str,
        *,
        auto_execute_tools: bool = True,
        return_structured: bool = False,
        system_prompt: SystemPromptInput | None = None,
        cancel: CancellationToken | None = None,
    ) -> str | TurnResult:
        """Process a user message and return the assistant's answer.

        The user message is persisted before any provider request, so a
        failing provider never loses it.

        Args:
            conversation_id: Target conversation
            text: User's message
            auto_execute_tools: Execute requested tools; when False return them as pending
            return_structured: Return a ``TurnResult`` instead of plain text
            system_prompt: Overrides ``Settings.system_prompt`` for this turn
            cancel: Token the caller may set to stop the turn

        Returns:
            The final text, or a ``TurnResult`` when ``return_structured``

        Raises:
            ValueError: empty message
            ConversationNotFound: unknown conversation
            ProviderError: the turn failed and ``return_structured`` is False
        """
        if not text or not text.strip():
            raise ValueError("Message cannot be empty")

        with self.store.lock(conversation_id):
            self._reject_unanswered(conversation_id)
            self.store.append(conversation_id, Message.user(text))
            self.store.persist(conversation_id)
            logger.info(f"Processing message for conversation {conversation_id}")

            result = self.loop.run(
                self._request_context(conversation_id),
                self._system_prompt(system_prompt),
                auto_execute_tools=auto_execute_tools,
                cancel=cancel,
                on_message=self._recorder(conversation_id),
            )
            return self._finish(conversation_id, result, return_structured)

    def approve_tool_calls(
        self,
        conversation_id: str,
        approved_ids: Iterable[str],
        *,
        auto_execute_tools: bool = True,
        return_structured: bool = False,
        system_prompt: SystemPromptInput | None = None,
        cancel: CancellationToken | None = None,
    ) -> str | TurnResult:
        """Resume a turn that stopped with pending tool calls.

        Approved calls are executed; every other pending call is answered
        with a "rejected by user" error.

        Raises:
            ValueError: nothing is pending, or an id does not name a pending call
        """
        approved = set(approved_ids)
        with self.store.lock(conversation_id):
            pending = unanswered_tool_calls(self.store.get(conversation_id).messages)
            if not pending:
                raise ValueError(f"No tool calls are awaiting approval in conversation {conversation_id}")
            unknown = approved - {call.id for call in pending}
            if unknown:
                raise ValueError(f"Unknown tool call ids: {', '.join(sorted(unknown))}")

            result = self.loop.resume(
                self._request_context(conversation_id),
                pending,
                approved,
                self._system_prompt(system_prompt),
                auto_execute_tools=auto_execute_tools,
                cancel=cancel,
                on_message=self._recorder(conversation_id),
            )
            return self._finish(conversation_id, result, return_structured)

    def _system_prompt(self, override: SystemPromptInput | None) -> SystemPromptInput | None:
        return override if override is not None else self.settings.system_prompt

    def _recorder(self, conversation_id: str):
        def record(message: Message) -> None:
            self.store.append(conversation_id, message)
            self.store.persist(conversation_id)

        return record

    def _reject_unanswered(self, conversation_id: str) -> None:
        """Close out calls left pending by an earlier manual-mode turn."""
        pending = unanswered_tool_calls(self.store.get(conversation_id).messages)
        for call in pending:
            self.store.append(conversation_id, Message.from_tool_result(ToolResult.failure(call.id, REJECTED_ERROR)))
        if pending:
            logger.info(f"Rejected {len(pending)} unapproved tool calls in conversation {conversation_id}")

    def _request_context(self, conversation_id: str) -> list[Message]:
        """Context slice trimmed to start at a user message.

        A window cut mid-exchange would start with tool results (or the
        assistant message owning them), which providers reject.
        """
        window = self.store.context_slice(
            conversation_id, self.settings.context_messages, self.settings.context_tokens
        )
        for index, message in enumerate(window):
            if message.role == "user":
                if index:
                    logger.debug(f"Dropped {index} leading messages without a user turn from context")
                return window[index:]

        start = 0
        while start < len(window) and window[start].role == "tool_result":
            start += 1
        return window[start:]

    def _finish(self, conversation_id: str, result: LoopResult, return_structured: bool) -> str | TurnResult:
        response = result.response
        model = response.model if response else None
        provider = response.provider if response else None

        if response is not None:
            self.store.record_usage(conversation_id, result.usage, result.cost, model, provider)
        self.store.persist(conversation_id)

        if self.usage_log is not None and self.settings.usage_log_enabled:
            for message in result.new_messages:
                if message.role == "assistant" and message.usage is not None:
                    self.usage_log.record(message.provider, message.model, message.usage, message.cost)

        logger.info(
            f"Turn finished for {conversation_id}: state={result.state}, rounds={result.rounds}, "
            f"tokens={result.usage.total_tokens}, stop_reason={result.stop_reason}"
        )

        if return_structured:
            return TurnResult(
                conversation_id=conversation_id,
                status="done" if result.succeeded else "failed",
                text=result.as_text(),
                stop_reason=result.stop_reason,
                rounds=result.rounds,
                limit_reached=result.limit_reached,
                tool_calls=result.tool_calls,
                tool_results=result.tool_results,
                pending_tool_calls=result.pending_tool_calls,
                usage=result.usage,
                cost=result.cost,
                model=model,
                provider=provider,
                error=result.error,
            )

        if not result.succeeded and result.exception is not None:
            raise result.exception
        return result.as_text()


def build_chat_service(settings: Settings, confirm: ConfirmCallback | None = None) -> ChatService:
    """Wire the store, providers, tools and usage log from ``settings``.

    Raises:
        ValueError: encryption is enabled without a passphrase, or a provider is missing its API key
    """
    cipher = None
    if settings.conversation_encryption:
        if settings.passphrase is None:
            raise ValueError("SANDCODER_PASSPHRASE is required when conversation encryption is enabled")
        cipher = PassphraseCipher(settings.passphrase.get_secret_value(), settings.encryption_iterations)

    loop = ToolExecutionLoop(
        create_adapter_chain(settings.provider, settings.fallback_providers),
        build_default_registry(settings, confirm),
        max_rounds=settings.max_rounds,
    )
    usage_log = UsageLog(settings.usage_log_path, settings.currency) if settings.usage_log_enabled else None
    return ChatService(settings, ConversationStore(settings, cipher), loop, usage_log)
