from typing import Optional
from fastapi import APIRouter, Depends, Header

from app.core.authorization import AuthorizationPolicy, authorization_policy
from app.core.errors import Forbidden
from app.core.logging import bind_context, logger
from app.schemas.auth import AuthenticatedUser, MeResponse
from app.services.chat_orchestrator import ChatOrchestrator
from app.services.database_service import DatabaseService, database_service
from app.services.entitlement_service import EntitlementService
from app.services.openai_service import AssistantsClient, assistants_client
from app.utils import extract_bearer_token, resolve_user

router = APIRouter()


# Shared dependencies, overridden in tests
def get_database_service() -> DatabaseService:
    return database_service


def get_assistants_client() -> AssistantsClient:
    return assistants_client


def get_authorization_policy() -> AuthorizationPolicy:
    return authorization_policy


def get_entitlement_service(db: DatabaseService = Depends(get_database_service)) -> EntitlementService:
    return EntitlementService(db)


def get_chat_orchestrator(
    db: DatabaseService = Depends(get_database_service),
    provider: AssistantsClient = Depends(get_assistants_client),
) -> ChatOrchestrator:
    return ChatOrchestrator(db, provider)


async def get_current_user(authorization: Optional[str] = Header(default=None)) -> AuthenticatedUser:
    """Resolve the caller from the Authorization header.

    Raises:
        Unauthorized: If the token is missing or invalid
    """
    user = resolve_user(extract_bearer_token(authorization))
    bind_context(user_id=user.id)
    return user


async def require_admin(
    user: AuthenticatedUser = Depends(get_current_user),
    policy: AuthorizationPolicy = Depends(get_authorization_policy),
) -> AuthenticatedUser:
    if not policy.is_admin(user):
        logger.warning("admin_access_denied", user_id=user.id)
        raise Forbidden("Admin access required")
    return user


@router.get("/me", response_model=MeResponse)
async def me(
    user: AuthenticatedUser = Depends(get_current_user),
    policy: AuthorizationPolicy = Depends(get_authorization_policy),
):
    return MeResponse(id=user.id, email=user.email, is_admin=policy.is_admin(user))
