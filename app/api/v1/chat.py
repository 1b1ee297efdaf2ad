from typing import List
from fastapi import APIRouter, Depends, Request, Response, status

from app.api.v1.auth import (
    get_chat_orchestrator,
    get_current_user,
    get_database_service,
    get_entitlement_service,
)
from app.core.errors import NotFound
from app.core.limiter import endpoint_limit, limiter
from app.core.logging import bind_context, logger
from app.schemas.auth import AuthenticatedUser
from app.schemas.chat import (
    Attachment,
    ConversationCreate,
    ConversationRead,
    MessageCreate,
    MessageRead,
    SendMessageResponse,
)
from app.services.chat_orchestrator import ChatOrchestrator
from app.services.database_service import DatabaseService
from app.services.entitlement_service import EntitlementService, require_granted
from app.utils import sanitize_string

router = APIRouter()


async def resolve_attachments(db: DatabaseService, user_id: str, attachments: List[Attachment]) -> List[Attachment]:
    """Fill in provider file ids for attachments referenced by local id.

    Raises:
        NotFound: If a referenced file does not belong to the user
    """
    resolved = []
    for attachment in attachments:
        if attachment.file_id and not attachment.openai_file_id:
            record = await db.get_chat_file(attachment.file_id, user_id)
            if record is None:
                raise NotFound("file")
            attachment = Attachment(
                file_id=record.id,
                openai_file_id=record.openai_file_id,
                file_name=attachment.file_name or record.file_name,
            )
        resolved.append(attachment)
    return resolved


@router.get("/conversations", response_model=List[ConversationRead])
async def list_conversations(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
):
    return await db.list_conversations(user.id)


@router.post("/conversations", response_model=ConversationRead, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    payload: ConversationCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
    entitlements: EntitlementService = Depends(get_entitlement_service),
):
    """Start a conversation. The provider thread is created on the first message."""
    assistant = await db.get_active_assistant(payload.assistant_id)
    if assistant is None:
        raise NotFound("assistant")
    require_granted(await entitlements.check(user.id, assistant.id), assistant_id=assistant.id)

    title = sanitize_string(payload.title) if payload.title else assistant.name
    return await db.create_conversation(user.id, assistant.id, title)


@router.get("/conversations/{conversation_id}", response_model=ConversationRead)
async def get_conversation(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
):
    conversation = await db.get_conversation(conversation_id, user.id)
    if conversation is None:
        raise NotFound("conversation")
    return conversation


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
):
    if not await db.delete_conversation(conversation_id, user.id):
        raise NotFound("conversation")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/conversations/{conversation_id}/messages", response_model=List[MessageRead])
async def list_messages(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
):
    if await db.get_conversation(conversation_id, user.id) is None:
        raise NotFound("conversation")
    return await db.list_messages(conversation_id)


@router.post("/conversations/{conversation_id}/messages", response_model=SendMessageResponse)
@limiter.limit(endpoint_limit("chat"))
async def send_message(
    request: Request,
    conversation_id: str,
    payload: MessageCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
    entitlements: EntitlementService = Depends(get_entitlement_service),
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
):
    """Send a user message and wait for the assistant's reply.

    Always answers 200 with an assistant message once access is granted;
    a failed run yields a fallback reply and a non-null error_code.
    """
    conversation = await db.get_conversation(conversation_id, user.id)
    if conversation is None:
        raise NotFound("conversation")
    bind_context(conversation_id=conversation.id)

    assistant = await db.get_active_assistant(conversation.assistant_id)
    if assistant is None:
        raise NotFound("assistant")

    grant = require_granted(await entitlements.check(user.id, assistant.id), assistant_id=assistant.id)
    attachments = await resolve_attachments(db, user.id, payload.attachments)

    user_message = await db.create_message(
        conversation.id,
        "user",
        payload.content,
        attachments=[a.model_dump() for a in attachments],
    )
    outcome = await orchestrator.respond(conversation, assistant, payload.content, attachments)
    await db.touch_conversation(conversation.id)

    logger.info(
        "message_exchanged",
        conversation_id=conversation.id,
        assistant_id=assistant.id,
        run_id=outcome.run_id,
        error_code=outcome.error_code,
        total_tokens=outcome.usage.total_tokens,
    )
    return SendMessageResponse(
        user_message=MessageRead.model_validate(user_message),
        assistant_message=MessageRead.model_validate(outcome.assistant_message),
        error_code=outcome.error_code,
        renewal_warning=grant.renewal_warning,
        days_remaining=grant.days_remaining,
        usage=outcome.usage,
    )
