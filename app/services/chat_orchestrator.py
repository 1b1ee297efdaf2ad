import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from openai import (
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
)
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_incrementing,
)

from app.core.config import settings
from app.core.errors import ErrorCategory, OrchestrationError
from app.core.logging import logger
from app.core.prompts import run_instructions
from app.models.database import Assistant, Conversation, Message
from app.schemas.chat import Attachment, Usage
from app.schemas.run import RunStatus, is_terminal
from app.services.database_service import DatabaseService
from app.services.openai_service import AssistantsClient
from app.services.response_materializer import ResponseMaterializer

# Thread ids written by older deploys when the provider was unreachable
_PLACEHOLDER_MARKERS = ("mock-thread-", "placeholder")


def is_placeholder_thread_id(thread_id: Optional[str]) -> bool:
    """Missing ids and anything not shaped like a provider thread id need a new thread."""
    if not thread_id or not thread_id.strip():
        return True
    if any(marker in thread_id for marker in _PLACEHOLDER_MARKERS):
        return True
    return not thread_id.startswith("thread_")


def classify_provider_error(exc: BaseException) -> OrchestrationError:
    """Map a provider exception onto the orchestration error taxonomy."""
    if isinstance(exc, OrchestrationError):
        return exc

    code = getattr(exc, "code", None)
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        category = ErrorCategory.AUTH_ERROR
    elif isinstance(exc, RateLimitError):
        category = ErrorCategory.RATE_LIMIT
    elif isinstance(exc, APITimeoutError):
        category = ErrorCategory.TIMEOUT
    elif isinstance(exc, NotFoundError):
        # Unknown assistant id (or one deleted on the provider side)
        category = ErrorCategory.ASSISTANT_CONFIG_ERROR
    elif isinstance(exc, BadRequestError) and "assistant" in str(exc).lower():
        category = ErrorCategory.ASSISTANT_CONFIG_ERROR
    elif isinstance(exc, APIStatusError):
        category = ErrorCategory.PROVIDER_FAILED
    else:
        # Connection resets and anything unexpected
        category = ErrorCategory.UNKNOWN

    return OrchestrationError(category, str(exc) or type(exc).__name__, code=code, cause=exc)


def classify_run_failure(run: Any) -> OrchestrationError:
    """A run that reached a terminal state other than completed."""
    status = RunStatus.parse(getattr(run, "status", None))
    last_error = getattr(run, "last_error", None)
    code = getattr(last_error, "code", None) if last_error is not None else None
    message = getattr(last_error, "message", None) if last_error is not None else None

    if code == "rate_limit_exceeded":
        category = ErrorCategory.RATE_LIMIT
    else:
        # cancelled, expired, incomplete and requires_action included
        category = ErrorCategory.PROVIDER_FAILED

    return OrchestrationError(
        category,
        message or f"Run ended with status {status.value}",
        code=code or (None if status == RunStatus.FAILED else status.value),
        run_id=getattr(run, "id", None),
    )


def run_usage(run: Any) -> Usage:
    usage = getattr(run, "usage", None)
    if usage is None:
        return Usage()
    return Usage(
        total_tokens=getattr(usage, "total_tokens", 0) or 0,
        prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
    )


def provider_attachments(attachments: List[Attachment]) -> List[Dict[str, Any]]:
    """Attachments the provider can search; ones without a provider file id are skipped."""
    return [
        {"file_id": a.openai_file_id, "tools": [{"type": "file_search"}]}
        for a in attachments
        if a.openai_file_id
    ]


@dataclass
class TurnOutcome:
    """What one user message produced. assistant_message is never empty."""
    assistant_message: Message
    thread_id: Optional[str] = None
    run_id: Optional[str] = None
    usage: Usage = field(default_factory=Usage)
    error: Optional[OrchestrationError] = None

    @property
    def error_code(self) -> Optional[str]:
        return self.error.category.value if self.error else None


class ChatOrchestrator:
    """
    Drives one assistant turn against the provider:
    thread resolution, message post, run start, run polling, reply materialization.

    Every turn is sequential and request-scoped; nothing is shared between turns
    except the store and the provider client.
    """

    def __init__(
        self,
        db: DatabaseService,
        provider: AssistantsClient,
        materializer: Optional[ResponseMaterializer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_poll_attempts: Optional[int] = None,
        max_poll_seconds: Optional[float] = None,
    ):
        self.db = db
        self.provider = provider
        self.materializer = materializer or ResponseMaterializer(db, provider)
        self._sleep = sleep
        self.max_poll_attempts = max_poll_attempts if max_poll_attempts is not None else settings.RUN_POLL_MAX_ATTEMPTS
        self.max_poll_seconds = max_poll_seconds if max_poll_seconds is not None else settings.RUN_POLL_MAX_SECONDS

    async def resolve_thread(self, conversation: Conversation) -> str:
        """Return a live thread id for the conversation, creating and persisting one if needed."""
        current = conversation.thread_id
        if not is_placeholder_thread_id(current) and await self.provider.thread_exists(current):
            return current

        logger.info(
            "thread_self_heal",
            conversation_id=conversation.id,
            previous_thread_id=current,
            reason="missing_or_placeholder" if is_placeholder_thread_id(current) else "not_found",
        )
        new_thread_id = await self.provider.create_thread()
        stored = await self.db.set_conversation_thread(conversation.id, current, new_thread_id)
        conversation.thread_id = stored
        return stored

    async def start_run(self, thread_id: str, conversation: Conversation, assistant: Assistant) -> Any:
        """Create a run with a bounded token budget and trace metadata.

        Raises:
            OrchestrationError: If the provider returned a run without an id
        """
        run = await self.provider.create_run(
            thread_id,
            assistant.openai_assistant_id,
            max_completion_tokens=settings.RUN_MAX_COMPLETION_TOKENS,
            metadata={
                "conversation_id": conversation.id,
                "user_id": conversation.user_id,
                "timestamp": datetime.now(UTC).isoformat(),
            },
            temperature=settings.SIMULATOR_TEMPERATURE if assistant.is_simulator else settings.DEFAULT_TEMPERATURE,
            additional_instructions=run_instructions(assistant.is_simulator),
        )
        if run is None or not getattr(run, "id", None):
            raise OrchestrationError(
                ErrorCategory.PROVIDER_FAILED,
                "Provider returned a malformed run object",
                code="invalid_run",
            )
        logger.info("run_created", run_id=run.id, thread_id=thread_id, status=getattr(run, "status", None))
        return run

    def _log_poll_progress(self, retry_state: RetryCallState) -> None:
        if retry_state.attempt_number % 10 == 0:
            run = retry_state.outcome.result() if retry_state.outcome and not retry_state.outcome.failed else None
            logger.debug(
                "run_still_processing",
                attempt=retry_state.attempt_number,
                max_attempts=self.max_poll_attempts,
                status=getattr(run, "status", None),
            )

    async def wait_for_run(self, thread_id: str, run_id: str) -> Any:
        """Poll a run until it reaches a terminal state.

        One immediate fetch, then re-polls spaced min(300 + n*100, 1000) ms,
        stopping after max_poll_attempts re-polls or max_poll_seconds.

        Raises:
            OrchestrationError: timeout if the run never reached a terminal state
        """
        started = time.monotonic()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_poll_attempts + 1) | stop_after_delay(self.max_poll_seconds),
            wait=wait_incrementing(start=0.3, increment=0.1, max=1.0),
            retry=retry_if_result(lambda r: not is_terminal(getattr(r, "status", None))),
            retry_error_callback=lambda state: state.outcome.result(),
            before_sleep=self._log_poll_progress,
            sleep=self._sleep,
        )
        run = await retrying(self.provider.get_run, thread_id, run_id)

        status = RunStatus.parse(getattr(run, "status", None))
        elapsed = round(time.monotonic() - started, 2)
        logger.info(
            "run_polling_finished",
            run_id=run_id,
            status=status.value,
            attempts=retrying.statistics.get("attempt_number"),
            elapsed_seconds=elapsed,
        )
        if not status.is_terminal():
            raise OrchestrationError(
                ErrorCategory.TIMEOUT,
                f"Run still {status.value} after {elapsed}s",
                run_id=run_id,
            )
        return run

    async def run_turn(
        self,
        conversation: Conversation,
        assistant: Assistant,
        content: str,
        attachments: Optional[List[Attachment]] = None,
    ) -> TurnOutcome:
        """Everything between the stored user message and the stored assistant reply.

        Raises:
            OrchestrationError: For any failure, already classified
        """
        if not self.provider.configured:
            raise OrchestrationError(
                ErrorCategory.ASSISTANT_CONFIG_ERROR,
                "OpenAI API key is not configured",
                code="missing_api_key",
            )
        if not assistant.openai_assistant_id:
            raise OrchestrationError(
                ErrorCategory.ASSISTANT_CONFIG_ERROR,
                f"Assistant {assistant.id} has no provider assistant id",
                code="missing_assistant_id",
            )

        run_id: Optional[str] = None
        try:
            thread_id = await self.resolve_thread(conversation)
            await self.provider.post_message(thread_id, content, provider_attachments(attachments or []))

            run = await self.start_run(thread_id, conversation, assistant)
            run_id = run.id
            run = await self.wait_for_run(thread_id, run_id)

            if RunStatus.parse(run.status) != RunStatus.COMPLETED:
                raise classify_run_failure(run)

            message = await self.materializer.materialize(conversation, thread_id, run_id)
        except OrchestrationError as e:
            e.run_id = e.run_id or run_id
            raise
        except Exception as e:
            error = classify_provider_error(e)
            error.run_id = run_id
            raise error from e

        return TurnOutcome(
            assistant_message=message,
            thread_id=thread_id,
            run_id=run_id,
            usage=run_usage(run),
        )

    async def respond(
        self,
        conversation: Conversation,
        assistant: Assistant,
        content: str,
        attachments: Optional[List[Attachment]] = None,
    ) -> TurnOutcome:
        """Like run_turn, but failures are recovered into a fallback assistant message.

        The cause is logged with full context and never shown to the user.
        """
        started = time.monotonic()
        try:
            return await self.run_turn(conversation, assistant, content, attachments)
        except OrchestrationError as e:
            logger.error(
                "orchestration_failed",
                error_category=e.diagnostic_category,
                category=e.category.value,
                error=e.message,
                conversation_id=conversation.id,
                assistant_id=assistant.id,
                openai_assistant_id=assistant.openai_assistant_id,
                thread_id=conversation.thread_id,
                run_id=e.run_id,
                has_api_key=self.provider.configured,
                api_key_length=self.provider.key_length,
                elapsed_seconds=round(time.monotonic() - started, 2),
            )
            fallback = await self.materializer.persist_fallback(conversation, e)
            return TurnOutcome(
                assistant_message=fallback,
                thread_id=conversation.thread_id,
                run_id=e.run_id,
                error=e,
            )
