import os
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile, status
from openai import OpenAIError

from app.api.v1.auth import get_assistants_client, get_current_user, get_database_service
from app.core.config import settings
from app.core.errors import BadRequest, NotFound, ProviderUnavailable
from app.core.limiter import endpoint_limit, limiter
from app.core.logging import logger
from app.schemas.auth import AuthenticatedUser
from app.schemas.chat import ChatFileRead
from app.services.database_service import DatabaseService
from app.services.openai_service import AssistantsClient
from app.utils import sanitize_filename

router = APIRouter()

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "text/plain",
    "text/markdown",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/csv",
    "application/json",
})
ALLOWED_EXTENSIONS = frozenset({".pdf", ".txt", ".md", ".doc", ".docx", ".csv", ".json"})


def validate_upload(file_name: str, content_type: Optional[str], size: int) -> None:
    """
    Raises:
        BadRequest: If the type, extension or size is not accepted
    """
    if content_type not in ALLOWED_MIME_TYPES:
        raise BadRequest("File type not allowed. Accepted: PDF, TXT, MD, DOC, DOCX, CSV, JSON", content_type=content_type)
    extension = os.path.splitext(file_name)[1].lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise BadRequest(f"File extension not allowed: {extension or 'none'}")
    if size > settings.MAX_UPLOAD_BYTES:
        raise BadRequest(f"File too large. Maximum size: {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB")
    if size == 0:
        raise BadRequest("File is empty")


@router.post("", response_model=ChatFileRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(endpoint_limit("upload"))
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    conversation_id: Optional[str] = Form(default=None),
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
    provider: AssistantsClient = Depends(get_assistants_client),
):
    """Upload a file the assistant can search during the conversation."""
    file_name = sanitize_filename(file.filename or "")
    content = await file.read()
    validate_upload(file_name, file.content_type, len(content))

    if conversation_id and await db.get_conversation(conversation_id, user.id) is None:
        raise NotFound("conversation")

    openai_file_id = None
    if provider.configured:
        try:
            uploaded = await provider.upload_file(file_name, content)
        except OpenAIError as e:
            logger.error("file_upload_failed", file_name=file_name, file_size=len(content), error=str(e))
            raise ProviderUnavailable("Could not process the file") from e
        openai_file_id = uploaded.id
    else:
        logger.warning("file_upload_skipped_provider_not_configured", file_name=file_name)

    return await db.create_chat_file(
        user_id=user.id,
        conversation_id=conversation_id,
        file_name=file_name,
        file_type=file.content_type,
        file_size=len(content),
        openai_file_id=openai_file_id,
        direction="upload",
        status="ready" if openai_file_id else "pending",
    )


@router.get("/{file_id}/download")
async def download_file(
    file_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DatabaseService = Depends(get_database_service),
    provider: AssistantsClient = Depends(get_assistants_client),
):
    """Stream back a file, typically one the assistant generated."""
    record = await db.get_chat_file(file_id, user.id)
    if record is None:
        raise NotFound("file")
    if not record.openai_file_id:
        raise NotFound("file", "File content is not available")

    try:
        content = await provider.download_file(record.openai_file_id)
    except OpenAIError as e:
        logger.error("file_download_failed", file_id=file_id, openai_file_id=record.openai_file_id, error=str(e))
        raise ProviderUnavailable("Could not download the file") from e

    return Response(
        content=content,
        media_type=record.file_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{sanitize_filename(record.file_name)}"'},
    )
