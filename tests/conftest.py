"""Shared fixtures: in-memory database, fake Assistants client, signed tokens."""

import os

# Settings are read at import time
os.environ["APP_ENV"] = "test"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-with-enough-length"
os.environ["ADMIN_EMAILS"] = "admin@neuroialab.com.br"
os.environ["OPENAI_API_KEY"] = ""

import time
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

from app.core.config import settings
from app.core.limiter import limiter
from app.models.database import (
    Assistant,
    Conversation,
    Institution,
    InstitutionAssistant,
    InstitutionMembership,
    InstitutionSubscription,
    Subscription,
    UserPackage,
)
from app.services.chat_orchestrator import ChatOrchestrator
from app.services.database_service import DatabaseService

# StaticPool keeps every connection on the same in-memory database
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

USER_ID = "5b7c1d2e-0000-4000-8000-000000000001"
OTHER_USER_ID = "5b7c1d2e-0000-4000-8000-000000000002"

limiter.enabled = False


@pytest.fixture(autouse=True)
def _setup_db():
    """Create all tables before each test, drop after."""
    SQLModel.metadata.create_all(TEST_ENGINE)
    yield
    SQLModel.metadata.drop_all(TEST_ENGINE)


@pytest.fixture
def session():
    with Session(TEST_ENGINE, expire_on_commit=False) as s:
        yield s


@pytest.fixture
def db_service():
    return DatabaseService(TEST_ENGINE)


def add(session, obj):
    session.add(obj)
    session.commit()
    session.refresh(obj)
    return obj


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


def text_message(run_id, text, file_ids=()):
    """An assistant thread message shaped like the provider's payload."""
    annotations = [
        {"type": "file_path", "text": f"sandbox:/mnt/data/{fid}", "file_path": {"file_id": fid}}
        for fid in file_ids
    ]
    return {
        "role": "assistant",
        "run_id": run_id,
        "content": [{"type": "text", "text": {"value": text, "annotations": annotations}}],
    }


class FakeAssistantsClient:
    """In-memory stand-in for AssistantsClient.

    Runs walk through run_statuses, one entry per get_run call, repeating the last one.
    """

    def __init__(self, run_statuses=("in_progress", "completed"), reply="Olá! Como posso ajudar?", configured=True):
        self.configured = configured
        self.key_length = 51 if configured else 0
        self.run_statuses = list(run_statuses)
        self.reply = reply
        self.reply_file_ids = []
        self.last_error = None
        self.errors = {}
        self.threads = {}
        self.created_threads = []
        self.posted = []
        self.runs_created = []
        self.get_run_calls = 0
        self.files = {}
        self.uploads = []

    def _maybe_raise(self, name):
        if name in self.errors:
            raise self.errors[name]

    async def create_thread(self):
        self._maybe_raise("create_thread")
        thread_id = f"thread_fake{len(self.created_threads) + 1}"
        self.created_threads.append(thread_id)
        self.threads[thread_id] = []
        return thread_id

    async def thread_exists(self, thread_id):
        return thread_id in self.threads

    async def post_message(self, thread_id, content, attachments=None):
        self._maybe_raise("post_message")
        self.posted.append({"thread_id": thread_id, "content": content, "attachments": attachments})

    async def list_messages(self, thread_id, limit=20):
        self._maybe_raise("list_messages")
        return list(reversed(self.threads.get(thread_id, [])))[:limit]

    async def create_run(self, thread_id, assistant_id, max_completion_tokens, metadata, temperature=None, additional_instructions=None):
        self._maybe_raise("create_run")
        run_id = f"run_fake{len(self.runs_created) + 1}"
        self.runs_created.append({
            "run_id": run_id,
            "thread_id": thread_id,
            "assistant_id": assistant_id,
            "max_completion_tokens": max_completion_tokens,
            "metadata": metadata,
            "temperature": temperature,
            "additional_instructions": additional_instructions,
        })
        return SimpleNamespace(id=run_id, status="queued")

    async def get_run(self, thread_id, run_id):
        self._maybe_raise("get_run")
        self.get_run_calls += 1
        status = self.run_statuses[min(self.get_run_calls - 1, len(self.run_statuses) - 1)]
        messages = self.threads.setdefault(thread_id, [])
        if status == "completed" and self.reply is not None and not any(m["run_id"] == run_id for m in messages):
            messages.append(text_message(run_id, self.reply, self.reply_file_ids))
        return SimpleNamespace(
            id=run_id,
            status=status,
            last_error=self.last_error if status == "failed" else None,
            usage=SimpleNamespace(total_tokens=42, prompt_tokens=30, completion_tokens=12) if status == "completed" else None,
        )

    async def get_file(self, file_id):
        return self.files.get(file_id, SimpleNamespace(id=file_id, filename=f"/mnt/data/{file_id}.csv", bytes=128))

    async def upload_file(self, filename, content):
        self._maybe_raise("upload_file")
        self.uploads.append((filename, content))
        return SimpleNamespace(id=f"file-upload{len(self.uploads)}", filename=filename, bytes=len(content))

    async def download_file(self, file_id):
        self._maybe_raise("download_file")
        return b"col_a,col_b\n1,2\n"


class RecordingSleep:
    """Replaces asyncio.sleep in the poll loop and remembers every delay."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def provider():
    return FakeAssistantsClient()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def orchestrator(db_service, provider, sleeper):
    return ChatOrchestrator(db_service, provider, sleep=sleeper)


# ---------------------------------------------------------------------------
# Catalog, entitlement and conversation rows
# ---------------------------------------------------------------------------


@pytest.fixture
def assistant(session):
    return add(session, Assistant(
        id="psicanalise",
        openai_assistant_id="asst_psicanalise",
        name="Psicanálise Clínica",
        description="Apoio a estudos psicanalíticos",
    ))


@pytest.fixture
def simulator(session):
    return add(session, Assistant(
        id="simulador",
        openai_assistant_id="asst_simulador",
        name="Simulador de Paciente",
        is_simulator=True,
    ))


@pytest.fixture
def subscription(session, assistant):
    return add(session, Subscription(
        user_id=USER_ID,
        assistant_id=assistant.id,
        expires_at=datetime.now(UTC) + timedelta(days=30),
    ))


@pytest.fixture
def conversation(session, assistant):
    return add(session, Conversation(user_id=USER_ID, assistant_id=assistant.id, title="Sessão"))


@pytest.fixture
def institution(session):
    return add(session, Institution(slug="instituto-freud", name="Instituto Freud"))


@pytest.fixture
def institution_assistant(session, institution, assistant):
    add(session, InstitutionAssistant(institution_id=institution.id, assistant_id=assistant.id))
    return assistant


@pytest.fixture
def membership(session, institution):
    return add(session, InstitutionMembership(institution_id=institution.id, user_id=USER_ID, is_active=True))


@pytest.fixture
def institution_subscription(session, institution):
    return add(session, InstitutionSubscription(
        institution_id=institution.id,
        user_id=USER_ID,
        expires_at=datetime.now(UTC) + timedelta(days=60),
    ))


def package_for(session, assistant_ids, expires_at, user_id=USER_ID):
    return add(session, UserPackage(user_id=user_id, assistant_ids=list(assistant_ids), expires_at=expires_at))


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def make_token(user_id=USER_ID, email="aluno@example.com", role=None, expires_in=3600, audience="authenticated", secret=None):
    claims = {
        "sub": user_id,
        "email": email,
        "aud": audience,
        "exp": int(time.time()) + expires_in,
        "app_metadata": {"role": role} if role else {},
    }
    return jwt.encode(claims, secret or settings.SUPABASE_JWT_SECRET, algorithm="HS256")


@pytest.fixture
def app(db_service, provider, sleeper):
    """The FastAPI app with the store and provider swapped for test doubles."""
    from app.api.v1.auth import get_assistants_client, get_chat_orchestrator, get_database_service
    from app.main import app as _app

    _app.dependency_overrides[get_database_service] = lambda: db_service
    _app.dependency_overrides[get_assistants_client] = lambda: provider
    _app.dependency_overrides[get_chat_orchestrator] = lambda: ChatOrchestrator(db_service, provider, sleep=sleeper)
    yield _app
    _app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    # Not used as a context manager, so startup does not try to reach Postgres
    return TestClient(app)


@pytest.fixture
def auth_client(client):
    client.headers["Authorization"] = f"Bearer {make_token()}"
    return client
