from fastapi import APIRouter, Depends, Request

from app.api.v1.auth import (
    get_chat_orchestrator,
    get_current_user,
    get_database_service,
    get_entitlement_service,
)
from app.api.v1.chat import resolve_attachments
from app.core.errors import DenialReason, Forbidden, NotFound
from app.core.limiter import endpoint_limit, limiter
from app.core.logging import bind_context, logger
from app.models.database import Institution
from app.schemas.assistant import AssistantRead
from app.schemas.auth import AuthenticatedUser
from app.schemas.chat import InstitutionChatRequest, InstitutionChatResponse
from app.schemas.entitlement import Granted, InstitutionSubscriptionStatus
from app.schemas.institution import InstitutionAccess, InstitutionRead
from app.services.chat_orchestrator import ChatOrchestrator
from app.services.database_service import DatabaseService
from app.services.entitlement_service import EntitlementService, require_granted

router = APIRouter()

# Conversations started from the portal are titled after the first message
_TITLE_LENGTH = 50
_STAFF_ROLES = ("admin", "subadmin")


async def _get_institution(db: DatabaseService, slug: str) -> Institution:
    institution = await db.get_institution_by_slug(slug)
    if institution is None:
        raise NotFound("institution")
    bind_context(institution_slug=institution.slug)
    return institution


@router.get("/{slug}", response_model=InstitutionAccess)
async def institution_access(
    slug: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
):
    """Institution details and the assistants it has enabled, for approved members only."""
    institution = await _get_institution(db, slug)
    membership = await db.get_membership(institution.id, user.id)
    if membership is None or not membership.is_active:
        logger.info("institution_access_denied", has_membership=membership is not None)
        raise Forbidden("You do not have access to this institution", reason=DenialReason.MEMBERSHIP_INACTIVE)

    assistants = await db.list_institution_assistants(institution.id)
    return InstitutionAccess(
        institution=InstitutionRead.model_validate(institution),
        role=membership.role,
        is_admin=membership.is_admin or membership.role in _STAFF_ROLES,
        available_assistants=[AssistantRead.model_validate(a) for a in assistants],
    )


@router.get("/{slug}/subscription", response_model=InstitutionSubscriptionStatus)
async def institution_subscription(
    slug: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
    entitlements: EntitlementService = Depends(get_entitlement_service),
):
    """Subscription status the portal uses to decide between the chat and the paywall."""
    institution = await _get_institution(db, slug)
    decision = await entitlements.check_institution(user.id, institution)

    if isinstance(decision, Granted):
        return InstitutionSubscriptionStatus(
            has_subscription=True,
            subscription_status="active",
            expires_at=decision.expires_at,
            days_remaining=decision.days_remaining,
        )
    if decision.reason == DenialReason.EXPIRED:
        return InstitutionSubscriptionStatus(
            has_subscription=False,
            subscription_status="expired",
            expires_at=decision.expires_at,
            error_type="SUBSCRIPTION_EXPIRED",
            error_message="Your subscription for this institution has expired",
        )
    return InstitutionSubscriptionStatus(
        has_subscription=False,
        error_type="NO_SUBSCRIPTION",
        error_message="You need a subscription to use this institution's assistants",
    )


@router.post("/{slug}/chat", response_model=InstitutionChatResponse)
@limiter.limit(endpoint_limit("institution_chat"))
async def institution_chat(
    request: Request,
    slug: str,
    payload: InstitutionChatRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
    entitlements: EntitlementService = Depends(get_entitlement_service),
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
):
    """Chat through an institution. The conversation is created on first use.

    payload.assistant_id is the provider assistant id, which is what the portal lists.
    """
    institution = await _get_institution(db, slug)
    require_granted(await entitlements.check_institution(user.id, institution))

    enabled = await db.list_institution_assistants(institution.id)
    assistant = next((a for a in enabled if a.openai_assistant_id == payload.assistant_id), None)
    if assistant is None:
        logger.warning(
            "institution_assistant_unavailable",
            requested_assistant_id=payload.assistant_id,
            available=[a.openai_assistant_id for a in enabled],
        )
        raise NotFound("assistant", "Assistant not available for this institution")

    if payload.conversation_id:
        conversation = await db.get_conversation(payload.conversation_id, user.id)
        if conversation is None:
            raise NotFound("conversation")
        if conversation.assistant_id != assistant.id or conversation.institution_id != institution.id:
            logger.warning(
                "institution_conversation_mismatch",
                conversation_id=conversation.id,
                conversation_assistant_id=conversation.assistant_id,
                conversation_institution_id=conversation.institution_id,
            )
            raise NotFound("conversation")
    else:
        conversation = await db.create_conversation(
            user.id,
            assistant.id,
            title=payload.message[:_TITLE_LENGTH],
            institution_id=institution.id,
        )
    bind_context(conversation_id=conversation.id)

    attachments = await resolve_attachments(db, user.id, payload.attachments)
    await db.create_message(
        conversation.id,
        "user",
        payload.message,
        attachments=[a.model_dump() for a in attachments],
    )
    outcome = await orchestrator.respond(conversation, assistant, payload.message, attachments)
    await db.touch_conversation(conversation.id)

    return InstitutionChatResponse(
        response=outcome.assistant_message.content,
        conversation_id=conversation.id,
        thread_id=outcome.thread_id,
        assistant_name=assistant.name,
        is_simulator=assistant.is_simulator,
        error_code=outcome.error_code,
        usage=outcome.usage,
    )
