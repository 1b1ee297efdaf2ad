from typing import List
from pydantic import BaseModel, ConfigDict, Field

from app.schemas.assistant import AssistantRead


class InstitutionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    name: str


class InstitutionAccess(BaseModel):
    """What an approved member sees when entering the institution portal."""
    institution: InstitutionRead
    role: str
    is_admin: bool
    available_assistants: List[AssistantRead] = Field(default_factory=list)
