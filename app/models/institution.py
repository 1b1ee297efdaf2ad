from datetime import datetime
from typing import Optional
from sqlalchemy import Column, DateTime
from sqlmodel import Field
from app.models.base import BaseModel, new_id


class Institution(BaseModel, table=True):
    """A partner organisation whose members share assistants."""
    id: str = Field(default_factory=new_id, primary_key=True)
    slug: str = Field(unique=True, index=True)
    name: str
    is_active: bool = Field(default=True)


class InstitutionMembership(BaseModel, table=True):
    """
    Link between a user and an institution.
    Members must be approved (is_active) before they can chat.
    """
    __tablename__ = "institution_users"

    id: str = Field(default_factory=new_id, primary_key=True)
    institution_id: str = Field(foreign_key="institution.id", index=True)
    user_id: str = Field(index=True)
    role: str = Field(default="user")  # user | subadmin | admin
    is_admin: bool = Field(default=False)
    is_active: bool = Field(default=False)


class InstitutionAssistant(BaseModel, table=True):
    """Assistants an institution has enabled for its members."""
    __tablename__ = "institution_assistants"

    id: str = Field(default_factory=new_id, primary_key=True)
    institution_id: str = Field(foreign_key="institution.id", index=True)
    assistant_id: str = Field(foreign_key="assistant.id", index=True)
    is_enabled: bool = Field(default=True)


class InstitutionSubscription(BaseModel, table=True):
    """Institution-level subscription held by one member."""
    __tablename__ = "institution_user_subscriptions"

    id: str = Field(default_factory=new_id, primary_key=True)
    institution_id: str = Field(foreign_key="institution.id", index=True)
    user_id: str = Field(index=True)
    status: str = Field(default="active")
    expires_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
