import uuid
from datetime import datetime, UTC
from sqlmodel import Field, SQLModel


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


# Base Database Model
class BaseModel(SQLModel):
    """
    Abstract base model that adds common fields to all tables.
    Using an abstract class ensures consistency across our schema.
    """
    # always use UTC in production to avoid timezone headaches
    created_at: datetime = Field(default_factory=utcnow)
