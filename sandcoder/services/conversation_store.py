"""File-backed conversation persistence.

One file per conversation under ``Settings.conversations_dir``: ``<id>.json``
or, with encryption enabled, ``<id>.json.enc``. Messages are only appended;
the full history is always written.
"""

import threading
from pathlib import Path

from pydantic import ValidationError

from sandcoder.config import Settings
from sandcoder.errors import (
    ConversationCorrupted,
    ConversationNotFound,
    DecryptionError,
    MessageOrderError,
    PersistenceError,
)
from sandcoder.models.conversation import (
    Conversation,
    ConversationStats,
    ConversationSummary,
    Message,
    utcnow,
)
from sandcoder.models.llm import ToolCall, Usage
from sandcoder.services.crypto import PassphraseCipher
from sandcoder.utils.files import write_atomic
from sandcoder.utils.ids import new_conversation_id
from sandcoder.utils.logging import get_logger
from sandcoder.utils.tokens import estimate_tokens

logger = get_logger(__name__)

PLAIN_SUFFIX = ".json"
ENCRYPTED_SUFFIX = ".json.enc"
TITLE_LENGTH = 50
DEFAULT_TITLE = "New Conversation"


def unanswered_tool_calls(messages: list[Message]) -> list[ToolCall]:
    """Tool calls of the last assistant message that have no result yet."""
    answered: set[str] = set()
    for message in reversed(messages):
        if message.role == "tool_result":
            answered.add(message.tool_result.tool_call_id)
            continue
        if message.role == "assistant":
            return [call for call in message.tool_calls if call.id not in answered]
        return []
    return []


def message_tokens(message: Message) -> int:
    """Rough token footprint of one message for context budgeting."""
    text = message.content
    for call in message.tool_calls:
        text += call.name + str(call.input)
    if message.tool_result is not None:
        text += str(message.tool_result.output or message.tool_result.error or "")
    return estimate_tokens(text)


class ConversationStore:
    """Owns every conversation; all mutation goes through here."""

    def __init__(self, settings: Settings, cipher: PassphraseCipher | None = None):
        """Initialize the store.

        Args:
            settings: Process settings (storage directory)
            cipher: When given, conversations are written encrypted
        """
        self.directory: Path = settings.conversations_dir
        self.directory.mkdir(parents=True, exist_ok=True)
        self.cipher = cipher
        self._conversations: dict[str, Conversation] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock(self, conversation_id: str) -> threading.RLock:
        """Re-entrant lock serialising all access to one conversation."""
        with self._locks_guard:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = self._locks[conversation_id] = threading.RLock()
            return lock

    def _drop_lock(self, conversation_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(conversation_id, None)

    def _path(self, conversation_id: str, encrypted: bool) -> Path:
        if not conversation_id or "/" in conversation_id or "\\" in conversation_id or conversation_id.startswith("."):
            raise ConversationNotFound(conversation_id)
        return self.directory / f"{conversation_id}{ENCRYPTED_SUFFIX if encrypted else PLAIN_SUFFIX}"

    def _stored_path(self, conversation_id: str) -> Path:
        for encrypted in (False, True):
            path = self._path(conversation_id, encrypted)
            if path.exists():
                return path
        raise ConversationNotFound(conversation_id)

    # Creation and mutation

    def create(self, title: str | None = None) -> Conversation:
        """Create and persist an empty conversation."""
        conversation = Conversation(id=new_conversation_id(), title=title or DEFAULT_TITLE)
        with self.lock(conversation.id):
            self._conversations[conversation.id] = conversation
            self.persist(conversation.id)
        logger.info(f"Created conversation {conversation.id}")
        return conversation.model_copy(deep=True)

    def append(self, conversation_id: str, message: Message) -> None:
        """Append ``message`` in memory. Call ``persist`` to make it durable.

        Raises:
            ConversationNotFound: unknown id
            MessageOrderError: a tool result that does not answer a pending call
        """
        with self.lock(conversation_id):
            conversation = self._get_loaded(conversation_id)

            if message.role == "tool_result":
                pending = {call.id for call in unanswered_tool_calls(conversation.messages)}
                if message.tool_result.tool_call_id not in pending:
                    raise MessageOrderError(
                        f"tool_result for '{message.tool_result.tool_call_id}' does not answer "
                        "a pending call of the preceding assistant message"
                    )

            conversation.messages.append(message.model_copy(deep=True))
            conversation.updated_at = utcnow()

            if message.role == "user" and conversation.title == DEFAULT_TITLE and message.content.strip():
                text = " ".join(message.content.split())
                conversation.title = text[:TITLE_LENGTH] + ("..." if len(text) > TITLE_LENGTH else "")

    def record_usage(
        self, conversation_id: str, usage: Usage, cost: float, model: str | None, provider: str | None
    ) -> None:
        """Add one turn's usage to the conversation's aggregate metadata."""
        with self.lock(conversation_id):
            conversation = self._get_loaded(conversation_id)
            conversation.metadata.total_tokens += usage.total_tokens
            conversation.metadata.total_cost += cost
            if model:
                conversation.metadata.model_used = model
            if provider:
                conversation.metadata.provider = provider
            conversation.updated_at = utcnow()

    def persist(self, conversation_id: str) -> None:
        """Atomically write the conversation to disk.

        Raises:
            PersistenceError: if the file cannot be written
        """
        with self.lock(conversation_id):
            conversation = self._get_loaded(conversation_id)
            encrypted = self.cipher is not None
            data = conversation.model_dump_json(indent=2).encode("utf-8")
            if self.cipher is not None:
                data = self.cipher.encrypt(data)

            target = self._path(conversation_id, encrypted)
            stale = self._path(conversation_id, not encrypted)
            try:
                write_atomic(target, data)
                stale.unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceError(f"Could not save conversation {conversation_id}: {e}") from e
            logger.debug(f"Persisted conversation {conversation_id} ({len(conversation.messages)} messages)")

    # Reading

    def load(self, conversation_id: str) -> Conversation:
        """Read the conversation from disk, replacing any in-memory copy.

        Raises:
            ConversationNotFound: no file for this id
            ConversationCorrupted: the file exists but does not parse
            DecryptionError: the encrypted file cannot be decrypted
        """
        with self.lock(conversation_id):
            try:
                path = self._stored_path(conversation_id)
            except ConversationNotFound:
                self._conversations.pop(conversation_id, None)
                self._drop_lock(conversation_id)
                raise

            try:
                data = path.read_bytes()
            except OSError as e:
                raise PersistenceError(f"Could not read conversation {conversation_id}: {e}") from e

            if path.name.endswith(ENCRYPTED_SUFFIX):
                if self.cipher is None:
                    raise DecryptionError(
                        f"Conversation {conversation_id} is encrypted and no passphrase is configured"
                    )
                data = self.cipher.decrypt(data)

            try:
                conversation = Conversation.model_validate_json(data)
            except ValidationError as e:
                raise ConversationCorrupted(conversation_id, str(e).splitlines()[0]) from e

            self._conversations[conversation_id] = conversation
            return conversation.model_copy(deep=True)

    def get(self, conversation_id: str) -> Conversation:
        """Deep copy of the conversation, loading it on first access."""
        with self.lock(conversation_id):
            return self._get_loaded(conversation_id).model_copy(deep=True)

    def _get_loaded(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            self.load(conversation_id)
            conversation = self._conversations[conversation_id]
        return conversation

    def context_slice(self, conversation_id: str, max_messages: int, max_tokens: int | None = None) -> list[Message]:
        """Last ``max_messages`` messages in original order, as deep copies.

        With ``max_tokens``, the oldest messages of that window are dropped
        until the estimate fits; the newest message is always kept. The stored
        history is never changed.
        """
        with self.lock(conversation_id):
            messages = self._get_loaded(conversation_id).messages
            window = messages[-max_messages:] if max_messages > 0 else []
            window = [message.model_copy(deep=True) for message in window]

        if max_tokens is not None and window:
            sizes = [message_tokens(message) for message in window]
            total = sum(sizes)
            start = 0
            while total > max_tokens and start < len(window) - 1:
                total -= sizes[start]
                start += 1
            if start:
                logger.debug(f"Trimmed {start} oldest messages from context to fit {max_tokens} tokens")
            window = window[start:]
        return window

    def list_conversations(self) -> list[ConversationSummary]:
        """Summaries of every stored conversation, most recently updated first."""
        summaries: list[ConversationSummary] = []
        seen: set[str] = set()
        for path in sorted(self.directory.iterdir()):
            name = path.name
            if name.endswith(ENCRYPTED_SUFFIX):
                conversation_id = name[: -len(ENCRYPTED_SUFFIX)]
            elif name.endswith(PLAIN_SUFFIX):
                conversation_id = name[: -len(PLAIN_SUFFIX)]
            else:
                continue
            if conversation_id in seen or conversation_id.startswith("."):
                continue
            seen.add(conversation_id)

            try:
                conversation = self.get(conversation_id)
            except PersistenceError as e:
                logger.warning(f"Skipping unreadable conversation {conversation_id}: {e}")
                continue
            summaries.append(
                ConversationSummary(
                    id=conversation.id,
                    title=conversation.title,
                    created_at=conversation.created_at,
                    updated_at=conversation.updated_at,
                    message_count=len(conversation.messages),
                    encrypted=name.endswith(ENCRYPTED_SUFFIX),
                )
            )
        summaries.sort(key=lambda summary: summary.updated_at, reverse=True)
        return summaries

    def stats(self, conversation_id: str) -> ConversationStats:
        conversation = self.get(conversation_id)
        return ConversationStats(
            message_count=len(conversation.messages),
            total_tokens=conversation.metadata.total_tokens,
            total_cost=conversation.metadata.total_cost,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )

    def delete(self, conversation_id: str) -> bool:
        """Remove a conversation from memory and disk.

        Returns:
            True if anything was deleted, False if it did not exist
        """
        try:
            with self.lock(conversation_id):
                existed = self._conversations.pop(conversation_id, None) is not None
                for encrypted in (False, True):
                    path = self._path(conversation_id, encrypted)
                    try:
                        path.unlink()
                        existed = True
                    except FileNotFoundError:
                        pass
                    except OSError as e:
                        raise PersistenceError(f"Could not delete conversation {conversation_id}: {e}") from e
        finally:
            self._drop_lock(conversation_id)
        if existed:
            logger.info(f"Deleted conversation {conversation_id}")
        return existed
