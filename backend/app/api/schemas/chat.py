"""Pydantic schemas for the chat API."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    session_id: Optional[str] = Field(default=None, max_length=128)


class SuggestedTask(BaseModel):
    title: str
    type: str
    description: Optional[str] = None
    scheduled_time: Optional[str] = None
    is_fixed_time: bool = False
    deadline: Optional[str] = None
    estimated_duration: Optional[int] = None
    is_required: bool = False


class TaskAnalysis(BaseModel):
    original_input: str
    suggested_tasks: List[SuggestedTask]
    requires_confirmation: bool = True


class ChatResponse(BaseModel):
    success: bool
    session_id: str
    response: str
    intent: Optional[str] = None
    actions: List[str] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)
    task_analysis: Optional[TaskAnalysis] = None
    timestamp: datetime
    request_id: Optional[str] = None


class ChatMessageOut(BaseModel):
    id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime
    metadata: Optional[Dict[str, Any]] = None


class ChatHistoryResponse(BaseModel):
    session_id: str
    messages: List[ChatMessageOut]
    stats: Optional[Dict[str, Any]] = None


class ChatClearResponse(BaseModel):
    session_id: str
    cleared: bool


class ProgressResponse(BaseModel):
    progress: List[str]


class ProgressUpdateRequest(BaseModel):
    action: Literal["add", "clear", "set"]
    message: Optional[str] = None
    messages: List[str] = Field(default_factory=list)
