import os
from typing import Any, Dict, List, Optional, Tuple

from app.core.errors import ErrorCategory, OrchestrationError
from app.core.logging import logger
from app.models.database import Conversation, Message
from app.services.database_service import DatabaseService
from app.services.openai_service import AssistantsClient

GENERIC_FALLBACK = (
    "Sorry, I couldn't put together a response right now. "
    "Please send your message again in a few moments."
)

# Deterministic user-facing text per failure category; provider details stay in the logs
FALLBACK_MESSAGES: Dict[ErrorCategory, str] = {
    ErrorCategory.AUTH_ERROR: (
        "The assistant is temporarily unavailable. Our team has been notified, "
        "please try again in a few minutes."
    ),
    ErrorCategory.RATE_LIMIT: (
        "The assistant is receiving a lot of requests right now. "
        "Please wait a moment and send your message again."
    ),
    ErrorCategory.TIMEOUT: (
        "The assistant took too long to answer. "
        "Please send your message again."
    ),
    ErrorCategory.ASSISTANT_CONFIG_ERROR: (
        "This assistant is temporarily unavailable while we update its configuration. "
        "Please try again later."
    ),
    ErrorCategory.PROVIDER_FAILED: GENERIC_FALLBACK,
    ErrorCategory.EXTRACTION_FAILED: GENERIC_FALLBACK,
    ErrorCategory.UNKNOWN: GENERIC_FALLBACK,
}


def fallback_text(category: ErrorCategory) -> str:
    return FALLBACK_MESSAGES.get(category, GENERIC_FALLBACK)


def _get(obj: Any, name: str, default: Any = None) -> Any:
    """SDK objects and plain dicts alike."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def find_run_reply(messages: List[Any], run_id: str) -> Optional[Any]:
    """
    The assistant message produced by this run, not simply the newest one,
    so a concurrent run on the same thread cannot leak its answer here.
    """
    for message in messages:
        if _get(message, "role") == "assistant" and _get(message, "run_id") == run_id:
            return message
    return None


def extract_text(message: Any) -> Tuple[str, List[str]]:
    """Return the first text block's value and the file ids its file_path annotations point at.

    Non-text blocks (images) are skipped.
    """
    for block in _get(message, "content") or []:
        if _get(block, "type") != "text":
            continue
        text = _get(block, "text")
        value = _get(text, "value") or ""
        file_ids: List[str] = []
        for annotation in _get(text, "annotations") or []:
            if _get(annotation, "type") != "file_path":
                continue
            file_id = _get(_get(annotation, "file_path"), "file_id")
            if file_id and file_id not in file_ids:
                file_ids.append(file_id)
        return value, file_ids
    return "", []


class ResponseMaterializer:
    """
    Turns a completed run into a persisted assistant Message, or records a
    fallback turn when no reply could be produced.
    """

    def __init__(self, db: DatabaseService, provider: AssistantsClient):
        self.db = db
        self.provider = provider

    async def materialize(self, conversation: Conversation, thread_id: str, run_id: str) -> Message:
        """Fetch, extract and persist the reply of a completed run.

        Raises:
            OrchestrationError: extraction_failed when the run left no text
        """
        messages = await self.provider.list_messages(thread_id)
        reply = find_run_reply(messages, run_id)
        if reply is None:
            raise OrchestrationError(
                ErrorCategory.EXTRACTION_FAILED,
                f"No assistant message for run {run_id} among {len(messages)} thread messages",
                run_id=run_id,
            )

        text, file_ids = extract_text(reply)
        if not text.strip():
            raise OrchestrationError(
                ErrorCategory.EXTRACTION_FAILED,
                "Assistant message has no text content",
                run_id=run_id,
            )

        attachments = await self._persist_generated_files(conversation, file_ids)
        message = await self.db.create_message(
            conversation.id,
            "assistant",
            text,
            attachments=attachments,
        )
        logger.info(
            "assistant_reply_persisted",
            conversation_id=conversation.id,
            run_id=run_id,
            message_id=message.id,
            content_length=len(text),
            generated_files=len(attachments),
        )
        return message

    async def _persist_generated_files(self, conversation: Conversation, file_ids: List[str]) -> List[Dict[str, Any]]:
        """Record files written by the code interpreter so the user can download them."""
        attachments: List[Dict[str, Any]] = []
        for file_id in file_ids:
            info = await self.provider.get_file(file_id)
            file_name = os.path.basename(_get(info, "filename") or file_id)
            record = await self.db.create_chat_file(
                user_id=conversation.user_id,
                conversation_id=conversation.id,
                file_name=file_name,
                file_size=_get(info, "bytes"),
                openai_file_id=file_id,
                direction="download",
                status="ready",
            )
            attachments.append({
                "file_id": record.id,
                "openai_file_id": file_id,
                "file_name": file_name,
                "direction": "download",
            })
        return attachments

    async def persist_fallback(self, conversation: Conversation, error: OrchestrationError) -> Message:
        """Give the conversation its assistant turn even though the run failed."""
        return await self.db.create_message(
            conversation.id,
            "assistant",
            fallback_text(error.category),
            error_code=error.category.value,
        )
