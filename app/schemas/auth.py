from typing import Optional
from pydantic import BaseModel, Field

# Authentication schemas
class AuthenticatedUser(BaseModel):
    """
    Identity resolved from a Supabase access token.
    The identity provider owns the user; we only ever read these claims.
    """
    id: str = Field(..., description="Supabase user id (token 'sub')")
    email: Optional[str] = Field(default=None, description="User's email address")

    # app_metadata.role from the token, "admin" for platform admins
    role: Optional[str] = Field(default=None)


class MeResponse(BaseModel):
    """
    Public identity echo (safe return to frontend).
    """
    id: str
    email: Optional[str]
    is_admin: bool
