from typing import Any, Dict, List, Optional
from openai import AsyncOpenAI, NotFoundError

from app.core.config import settings
from app.core.logging import logger


class AssistantsClient:
    """
    Thin wrapper over the OpenAI Assistants (threads/runs) API.
    Every call the gateway makes to the provider goes through here, which keeps
    the orchestrator testable with a fake exposing the same coroutines.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None, api_key: Optional[str] = None):
        self._client = client
        self._api_key = api_key if api_key is not None else settings.OPENAI_API_KEY

    @property
    def configured(self) -> bool:
        """A usable key is present (placeholder keys from old deploys do not count)."""
        if self._client is not None:
            return True
        key = self._api_key
        return bool(key) and "placeholder" not in key

    @property
    def key_length(self) -> int:
        return len(self._api_key or "")

    @property
    def client(self) -> AsyncOpenAI:
        # Lazy, so importing the app never requires a key
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                organization=settings.OPENAI_ORGANIZATION,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
                max_retries=0,
            )
            logger.info("openai_client_initialized", api_key_length=self.key_length)
        return self._client

    # Threads
    async def create_thread(self) -> str:
        thread = await self.client.beta.threads.create()
        logger.info("thread_created", thread_id=thread.id)
        return thread.id

    async def thread_exists(self, thread_id: str) -> bool:
        try:
            await self.client.beta.threads.retrieve(thread_id)
            return True
        except NotFoundError:
            return False

    async def post_message(self, thread_id: str, content: str, attachments: Optional[List[Dict[str, Any]]] = None):
        params: Dict[str, Any] = {"role": "user", "content": content}
        if attachments:
            params["attachments"] = attachments
        return await self.client.beta.threads.messages.create(thread_id, **params)

    async def list_messages(self, thread_id: str, limit: int = 20) -> List[Any]:
        """Newest first."""
        page = await self.client.beta.threads.messages.list(thread_id, order="desc", limit=limit)
        return list(page.data)

    # Runs
    async def create_run(
        self,
        thread_id: str,
        assistant_id: str,
        max_completion_tokens: int,
        metadata: Dict[str, str],
        temperature: Optional[float] = None,
        additional_instructions: Optional[str] = None,
    ):
        params: Dict[str, Any] = {
            "assistant_id": assistant_id,
            "max_completion_tokens": max_completion_tokens,
            "metadata": metadata,
        }
        if temperature is not None:
            params["temperature"] = temperature
        if additional_instructions:
            params["additional_instructions"] = additional_instructions
        return await self.client.beta.threads.runs.create(thread_id=thread_id, **params)

    async def get_run(self, thread_id: str, run_id: str):
        return await self.client.beta.threads.runs.retrieve(run_id, thread_id=thread_id)

    # Files
    async def get_file(self, file_id: str):
        """File metadata (filename, bytes, purpose)."""
        return await self.client.files.retrieve(file_id)

    async def upload_file(self, filename: str, content: bytes):
        return await self.client.files.create(file=(filename, content), purpose="assistants")

    async def download_file(self, file_id: str) -> bytes:
        response = await self.client.files.content(file_id)
        return response.content


assistants_client = AssistantsClient()
