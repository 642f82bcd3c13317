"""Turn orchestration, persistence and usage accounting."""

from sandcoder.services.chat import ChatService, build_chat_service
from sandcoder.services.conversation_store import ConversationStore
from sandcoder.services.tool_loop import CancellationToken, LoopResult, LoopState, ToolExecutionLoop

__all__ = [
    "CancellationToken",
    "ChatService",
    "ConversationStore",
    "LoopResult",
    "LoopState",
    "ToolExecutionLoop",
    "build_chat_service",
]
