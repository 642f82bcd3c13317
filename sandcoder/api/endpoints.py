"""API endpoints for the coding assistant sidecar."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from sandcoder import __version__
from sandcoder.config import Settings
from sandcoder.errors import (
    ConversationCorrupted,
    ConversationNotFound,
    DecryptionError,
    MessageOrderError,
    PersistenceError,
    ProviderError,
)
from sandcoder.models.conversation import (
    Conversation,
    ConversationSummary,
    CreateConversationRequest,
    HealthResponse,
    SendMessageRequest,
    ToolApprovalRequest,
    TurnResult,
)
from sandcoder.models.llm import StopReason
from sandcoder.services.chat import ChatService, build_chat_service
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

_chat_service: ChatService | None = None


def get_chat_service() -> ChatService:
    """Get or create chat service instance."""
    global _chat_service
    if _chat_service is None:
        _chat_service = build_chat_service(Settings.from_env())
    return _chat_service


def _to_http_error(conversation_id: str, e: Exception) -> HTTPException:
    """Map domain errors onto HTTP status codes."""
    if isinstance(e, ConversationNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConversationCorrupted | DecryptionError | MessageOrderError):
        logger.warning(f"Conversation {conversation_id} cannot be used: {e}")
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ProviderError):
        logger.error(f"Provider failure for conversation {conversation_id}: {e}")
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Storage error for conversation {conversation_id}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail="Failed to access conversation storage")


def _check_turn(conversation_id: str, result: TurnResult) -> TurnResult:
    """Surface a provider failure as 502; cancelled and completed turns pass through."""
    if result.status == "failed" and result.stop_reason == StopReason.ERROR:
        logger.error(f"Turn failed for conversation {conversation_id}: {result.error}")
        raise HTTPException(status_code=502, detail=result.error or "Provider request failed")
    return result


@router.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )


@router.post("/conversations", response_model=Conversation, status_code=201, tags=["Conversations"])
def create_conversation(
    request: CreateConversationRequest, service: ChatService = Depends(get_chat_service)
) -> Conversation:
    """Create an empty conversation."""
    try:
        return service.create_conversation(request.title)
    except PersistenceError as e:
        raise _to_http_error("<new>", e) from e


@router.get("/conversations", response_model=list[ConversationSummary], tags=["Conversations"])
def list_conversations(service: ChatService = Depends(get_chat_service)) -> list[ConversationSummary]:
    """List stored conversations, most recently updated first."""
    return service.store.list_conversations()


@router.get("/conversations/{conversation_id}", response_model=Conversation, tags=["Conversations"])
def get_conversation(conversation_id: str, service: ChatService = Depends(get_chat_service)) -> Conversation:
    """Return a conversation with its full message history."""
    try:
        return service.store.get(conversation_id)
    except PersistenceError as e:
        raise _to_http_error(conversation_id, e) from e


@router.delete("/conversations/{conversation_id}", status_code=204, tags=["Conversations"])
def delete_conversation(conversation_id: str, service: ChatService = Depends(get_chat_service)) -> Response:
    """Delete a conversation."""
    try:
        deleted = service.store.delete(conversation_id)
    except PersistenceError as e:
        raise _to_http_error(conversation_id, e) from e
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    return Response(status_code=204)


@router.post("/conversations/{conversation_id}/messages", response_model=TurnResult, tags=["Chat"])
def send_message(
    conversation_id: str, request: SendMessageRequest, service: ChatService = Depends(get_chat_service)
) -> TurnResult:
    """Send a user message and run the tool loop for one turn.

    A provider failure answers 502; the user's message is stored either way.
    """
    logger.info(f"Processing message for conversation {conversation_id}: {request.message[:50]}...")
    try:
        result = service.send(
            conversation_id,
            request.message,
            auto_execute_tools=request.auto_execute_tools,
            return_structured=True,
            system_prompt=request.system_prompt,
        )
    except (PersistenceError, MessageOrderError, ValueError) as e:
        raise _to_http_error(conversation_id, e) from e
    return _check_turn(conversation_id, result)


@router.post("/conversations/{conversation_id}/tool-approvals", response_model=TurnResult, tags=["Chat"])
def approve_tool_calls(
    conversation_id: str, request: ToolApprovalRequest, service: ChatService = Depends(get_chat_service)
) -> TurnResult:
    """Execute approved pending tool calls, reject the rest, and continue the turn."""
    try:
        result = service.approve_tool_calls(conversation_id, request.approved_ids, return_structured=True)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except PersistenceError as e:
        raise _to_http_error(conversation_id, e) from e
    return _check_turn(conversation_id, result)


@router.get("/usage", tags=["Usage"])
def usage_summary(
    hours: float | None = Query(default=None, gt=0), service: ChatService = Depends(get_chat_service)
) -> dict:
    """Aggregate token and cost usage, optionally over the last ``hours``."""
    if service.usage_log is None:
        raise HTTPException(status_code=404, detail="Usage logging is disabled")
    return service.usage_log.summarize(hours)
