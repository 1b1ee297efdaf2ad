from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from app.core.errors import DenialReason


class EntitlementSource(str, Enum):
    INDIVIDUAL = "individual"
    PACKAGE = "package"
    INSTITUTION = "institution"


class Granted(BaseModel):
    """The user may invoke the assistant."""
    granted: Literal[True] = True
    source: EntitlementSource
    expires_at: Optional[datetime] = Field(default=None, description="None for institution admins")
    days_remaining: Optional[int] = None

    # Soft signal for client-side renewal prompts, never blocks the request
    renewal_warning: bool = False


class Denied(BaseModel):
    """The user may not invoke the assistant."""
    granted: Literal[False] = False
    reason: DenialReason
    source: Optional[EntitlementSource] = None
    expires_at: Optional[datetime] = None
    days_expired: Optional[int] = None
    action_required: Optional[str] = None


Entitlement = Union[Granted, Denied]


class EntitlementStatus(BaseModel):
    """Response of the entitlement status endpoint."""
    assistant_id: str
    entitlement: Entitlement


class InstitutionSubscriptionStatus(BaseModel):
    has_subscription: bool
    subscription_status: Optional[str] = None
    expires_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    assistant_id: str
    subscription_type: str
    status: str
    expires_at: datetime


class PackageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    package_type: str
    assistant_ids: List[str]
    status: str
    expires_at: datetime


class UserSubscriptions(BaseModel):
    """Everything the caller is currently paying for."""
    subscriptions: List[SubscriptionRead] = Field(default_factory=list)
    packages: List[PackageRead] = Field(default_factory=list)
