"""Chat API routes backed by the orchestrator."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_conversation_store, get_orchestrator, get_progress_log
from app.api.schemas.chat import (
    ChatClearResponse,
    ChatHistoryResponse,
    ChatMessageOut,
    ChatRequest,
    ChatResponse,
    ProgressResponse,
    ProgressUpdateRequest,
    TaskAnalysis,
)
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.conversation_store import ConversationStore, ProgressLog
from app.services.orchestrator import Orchestrator

router = APIRouter()


@router.post("/ai/chat", response_model=ChatResponse, tags=["chat"])
def chat(
    request: ChatRequest,
    http_request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    """Handle one chat message and return the assistant's reply."""
    request_id = getattr(http_request.state, "request_id", None)
    metadata: Dict[str, Any] = {
        "route": "/ai/chat",
        "message_length": len(request.message),
        "has_session": bool(request.session_id),
    }

    with trace("chat.message", metadata=metadata, session_id=request.session_id, request_id=request_id):
        result = orchestrator.handle(request.message.strip(), request.session_id)

    log_metric("chat.success", 1 if result.success else 0, metadata={"intent": result.intent.value if result.intent else None})
    task_analysis = None
    if result.pending_confirmation is not None:
        task_analysis = TaskAnalysis.model_validate(result.pending_confirmation.to_dict())

    return ChatResponse(
        success=result.success,
        session_id=result.session_id,
        response=result.reply_text,
        intent=result.intent.value if result.intent else None,
        actions=result.actions,
        conflicts=result.conflicts,
        task_analysis=task_analysis,
        timestamp=datetime.now(timezone.utc),
        request_id=request_id,
    )


@router.get("/ai/chat/{session_id}/history", response_model=ChatHistoryResponse, tags=["chat"])
def chat_history(
    session_id: str,
    limit: int | None = Query(default=None, ge=1, le=500),
    conversations: ConversationStore = Depends(get_conversation_store),
) -> ChatHistoryResponse:
    messages = conversations.recent(session_id, limit)
    return ChatHistoryResponse(
        session_id=session_id,
        messages=[ChatMessageOut.model_validate(message.to_dict()) for message in messages],
        stats=conversations.stats(session_id),
    )


@router.delete("/ai/chat/{session_id}", response_model=ChatClearResponse, tags=["chat"])
def clear_chat(
    session_id: str,
    conversations: ConversationStore = Depends(get_conversation_store),
) -> ChatClearResponse:
    return ChatClearResponse(session_id=session_id, cleared=conversations.clear(session_id))


@router.get("/ai/thinking-progress", response_model=ProgressResponse, tags=["chat"])
def thinking_progress(
    recent: int | None = Query(default=None, ge=1, le=200),
    progress: ProgressLog = Depends(get_progress_log),
) -> ProgressResponse:
    entries = progress.recent(recent) if recent else progress.snapshot()
    return ProgressResponse(progress=entries)


@router.post("/ai/thinking-progress", response_model=ProgressResponse, tags=["chat"])
def update_thinking_progress(
    request: ProgressUpdateRequest,
    progress: ProgressLog = Depends(get_progress_log),
) -> ProgressResponse:
    if request.action == "clear":
        progress.clear()
    elif request.action == "set":
        progress.replace(request.messages or ([request.message] if request.message else []))
    elif request.message:
        progress.add(request.message)
    return ProgressResponse(progress=progress.snapshot())
