"""Shared FastAPI dependencies for the scheduling services."""
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.deps import get_db
from app.services.conversation_store import ConversationStore, ProgressLog
from app.services.llm_client import CompletionClient, build_completion_client
from app.services.orchestrator import Orchestrator
from app.services.task_store import TaskStore


@lru_cache
def get_conversation_store() -> ConversationStore:
    return ConversationStore(
        max_messages=settings.chat_max_messages_per_session,
        max_sessions=settings.chat_max_sessions,
    )


@lru_cache
def get_progress_log() -> ProgressLog:
    return ProgressLog(max_entries=settings.progress_log_size)


@lru_cache
def get_completion_client() -> CompletionClient:
    return build_completion_client()


def get_task_store(db: Session = Depends(get_db)) -> TaskStore:
    return TaskStore(db)


def get_orchestrator(
    store: TaskStore = Depends(get_task_store),
    conversations: ConversationStore = Depends(get_conversation_store),
    progress: ProgressLog = Depends(get_progress_log),
    client: CompletionClient = Depends(get_completion_client),
) -> Orchestrator:
    return Orchestrator(store, conversations, progress, client)
