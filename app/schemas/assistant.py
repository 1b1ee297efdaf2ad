from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class AssistantRead(BaseModel):
    """
    Public catalog entry.
    openai_assistant_id is included because the institution portal addresses assistants by it.
    """
    model_config = ConfigDict(from_attributes=True)

    id: str
    openai_assistant_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    is_simulator: bool
    is_active: bool


class AdminAssistantRead(AssistantRead):
    created_at: datetime
