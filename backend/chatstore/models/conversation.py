"""Conversation and message records as the application sees them."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel


class ChatMessage(BaseModel):
    id: str
    conversation_id: str
    role: Literal["user", "assistant", "tool"]
    content: Any  # text, or a structured tool-call / tool-result payload
    created_at: datetime
    updated_at: datetime


class Conversation(BaseModel):
    id: str
    title: str
    created_at: datetime
    updated_at: datetime

    # None means "not loaded", not "no messages"
    messages: Optional[list[ChatMessage]] = None
