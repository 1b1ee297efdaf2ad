import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _reject_script_tags(v: str) -> str:
    """
    Sanitization: Prevent basic XSS or injection attacks.
    """
    if re.search(r"<script.*?>.*?</script>", v, re.IGNORECASE | re.DOTALL):
        raise ValueError("Content contains potentially harmful script tags")
    return v


# chat schemas
class Attachment(BaseModel):
    """
    A file referenced by a message. openai_file_id is what the provider sees.
    """
    file_id: Optional[str] = Field(default=None, description="Local chat_files id")
    openai_file_id: Optional[str] = Field(default=None, description="Provider file id (file-...)")
    file_name: Optional[str] = None


class MessageCreate(BaseModel):
    """
    Payload sent to POST /chat/conversations/{id}/messages
    """
    content: str = Field(..., description="The message content", min_length=1, max_length=32000)
    attachments: List[Attachment] = Field(default_factory=list)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        return _reject_script_tags(v)


class ConversationCreate(BaseModel):
    assistant_id: str = Field(..., description="Catalog id of the assistant")
    title: Optional[str] = Field(default=None, max_length=200)


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    role: Literal["user", "assistant"]
    content: str
    attachments: Optional[List[Dict[str, Any]]] = None
    error_code: Optional[str] = None
    created_at: datetime


class ConversationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    assistant_id: str
    institution_id: Optional[str] = None
    title: str
    thread_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Usage(BaseModel):
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0


class SendMessageResponse(BaseModel):
    """
    Standard response from the send-message endpoint.
    assistant_message is always present; error_code is set when it is a fallback.
    """
    user_message: MessageRead
    assistant_message: MessageRead
    error_code: Optional[str] = None
    renewal_warning: bool = False
    days_remaining: Optional[int] = None
    usage: Usage = Field(default_factory=Usage)


class InstitutionChatRequest(BaseModel):
    """
    Payload sent to POST /institutions/{slug}/chat
    assistant_id is the provider assistant id the institution portal displays.
    """
    assistant_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=32000)
    conversation_id: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        return _reject_script_tags(v)


class InstitutionChatResponse(BaseModel):
    response: str
    conversation_id: str
    thread_id: Optional[str]
    assistant_name: str
    is_simulator: bool
    error_code: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)


class ChatFileRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: Optional[str] = None
    file_name: str
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    openai_file_id: Optional[str] = None
    direction: str
    status: str
