from typing import Optional
from sqlmodel import Field
from app.models.base import BaseModel, new_id


# Assistant Model
class Assistant(BaseModel, table=True):
    """
    A catalog entry pointing at a configured OpenAI Assistant.
    Read-only from the gateway's point of view; the admin tooling owns it.
    """
    id: str = Field(default_factory=new_id, primary_key=True)

    # Opaque id of the assistant in the provider's catalog (asst_...)
    openai_assistant_id: Optional[str] = Field(default=None, index=True)

    name: str
    description: Optional[str] = None
    icon: Optional[str] = None

    # Simulators role-play a patient and run slightly hotter
    is_simulator: bool = Field(default=False)
    is_active: bool = Field(default=True)
