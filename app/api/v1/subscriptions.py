from fastapi import APIRouter, Depends

from app.api.v1.auth import get_current_user, get_database_service, get_entitlement_service
from app.core.errors import NotFound
from app.schemas.auth import AuthenticatedUser
from app.schemas.entitlement import EntitlementStatus, PackageRead, SubscriptionRead, UserSubscriptions
from app.services.database_service import DatabaseService
from app.services.entitlement_service import EntitlementService

router = APIRouter()


@router.get("", response_model=UserSubscriptions)
async def list_subscriptions(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
):
    subscriptions = await db.list_user_subscriptions(user.id)
    packages = await db.get_active_packages(user.id)
    return UserSubscriptions(
        subscriptions=[SubscriptionRead.model_validate(s) for s in subscriptions],
        packages=[PackageRead.model_validate(p) for p in packages],
    )


@router.get("/assistants/{assistant_id}", response_model=EntitlementStatus)
async def assistant_entitlement(
    assistant_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
    entitlements: EntitlementService = Depends(get_entitlement_service),
):
    """Whether the caller may chat with the assistant, with the renewal warning the UI shows."""
    if await db.get_active_assistant(assistant_id) is None:
        raise NotFound("assistant")
    decision = await entitlements.check(user.id, assistant_id)
    return EntitlementStatus(assistant_id=assistant_id, entitlement=decision)
