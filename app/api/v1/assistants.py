from typing import List
from fastapi import APIRouter, Depends

from app.api.v1.auth import get_current_user, get_database_service, require_admin
from app.schemas.assistant import AdminAssistantRead, AssistantRead
from app.schemas.auth import AuthenticatedUser
from app.services.database_service import DatabaseService

router = APIRouter()
admin_router = APIRouter()


@router.get("", response_model=List[AssistantRead])
async def list_assistants(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
):
    """Assistants currently offered."""
    return await db.list_assistants(active_only=True)


@admin_router.get("/assistants", response_model=List[AdminAssistantRead])
async def list_all_assistants(
    admin: AuthenticatedUser = Depends(require_admin),
    db: DatabaseService = Depends(get_database_service),
):
    """Whole catalog, retired assistants included."""
    return await db.list_assistants(active_only=False)
