from typing import Optional
from sqlmodel import Field
from app.models.base import BaseModel, new_id


class ChatFile(BaseModel, table=True):
    """
    A file exchanged inside a conversation.
    direction=upload for user files, direction=download for files the
    assistant generated with its code interpreter.
    """
    __tablename__ = "chat_files"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    conversation_id: Optional[str] = Field(default=None, foreign_key="conversation.id", index=True)
    file_name: str
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    openai_file_id: Optional[str] = Field(default=None, index=True)
    direction: str = Field(default="upload")
    status: str = Field(default="pending")  # pending | ready
