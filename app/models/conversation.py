from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, Column
from sqlmodel import Field
from app.models.base import BaseModel, new_id, utcnow


# Conversation Model
class Conversation(BaseModel, table=True):
    """
    Represents one chat between a user and an assistant.
    thread_id points at the provider-side thread holding the history.
    """
    id: str = Field(default_factory=new_id, primary_key=True)

    user_id: str = Field(index=True)
    assistant_id: str = Field(foreign_key="assistant.id", index=True)

    # Set when the conversation was started through an institution
    institution_id: Optional[str] = Field(default=None, foreign_key="institution.id")

    title: str = Field(default="New Chat")
    thread_id: Optional[str] = Field(default=None)
    updated_at: datetime = Field(default_factory=utcnow)


# Message Model
class Message(BaseModel, table=True):
    """
    One turn in a conversation. Append-only, ordered by created_at.
    """
    id: str = Field(default_factory=new_id, primary_key=True)
    conversation_id: str = Field(foreign_key="conversation.id", index=True)
    role: str  # user | assistant
    content: str
    attachments: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    # Orchestration category when content is a synthesized fallback
    error_code: Optional[str] = Field(default=None)
