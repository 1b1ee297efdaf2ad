from datetime import datetime
from typing import List
from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field
from app.models.base import BaseModel, new_id


class Subscription(BaseModel, table=True):
    """
    Individual subscription of one user to one assistant.
    Only one active row per (user, assistant) is expected, but this is
    not enforced by the schema; lookups take the first row.
    """
    __tablename__ = "user_subscriptions"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    assistant_id: str = Field(foreign_key="assistant.id", index=True)
    subscription_type: str = Field(default="monthly")
    status: str = Field(default="active", index=True)
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class UserPackage(BaseModel, table=True):
    """
    A bundle of assistants bought together; grants every assistant in assistant_ids.
    """
    __tablename__ = "user_packages"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    package_type: str = Field(default="package_3")
    assistant_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: str = Field(default="active", index=True)
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
