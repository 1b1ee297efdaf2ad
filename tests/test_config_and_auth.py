"""Tests for settings parsing, token resolution and the admin policy."""

import pytest
import structlog
from pydantic import ValidationError

from app.core.authorization import AuthorizationPolicy
from app.core.config import Environment, Settings, get_environment
from app.core.errors import Unauthorized
from app.core.limiter import endpoint_limit
from app.core.logging import bind_context, clear_context
from app.schemas.auth import AuthenticatedUser
from app.services.openai_service import AssistantsClient
from app.utils import extract_bearer_token, resolve_user, sanitize_filename
from conftest import USER_ID, make_token


class TestSettings:
    def test_comma_separated_admin_emails(self, monkeypatch):
        monkeypatch.setenv("ADMIN_EMAILS", "Coord@X.com, b@x.com ,")
        assert Settings().ADMIN_EMAILS == ["coord@x.com", "b@x.com"]

    def test_allowed_origins(self, monkeypatch):
        monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.com,https://b.com")
        assert Settings().ALLOWED_ORIGINS == ["https://a.com", "https://b.com"]

    def test_missing_list_uses_default(self, monkeypatch):
        monkeypatch.delenv("RATE_LIMIT_DEFAULT", raising=False)
        assert Settings().RATE_LIMIT_DEFAULT == ["200 per day", "50 per hour"]

    def test_endpoint_limits(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_CHAT", "5 per minute,100 per day")
        monkeypatch.delenv("RATE_LIMIT_UPLOAD", raising=False)
        limits = Settings().RATE_LIMIT_ENDPOINTS
        assert limits["chat"] == ["5 per minute", "100 per day"]
        assert limits["upload"] == ["10 per minute"]

    def test_typed_fields(self, monkeypatch):
        monkeypatch.setenv("RUN_POLL_MAX_ATTEMPTS", "10")
        monkeypatch.setenv("DEFAULT_TEMPERATURE", "0.5")
        monkeypatch.setenv("OPENAI_ORGANIZATION", "")
        loaded = Settings()
        assert loaded.RUN_POLL_MAX_ATTEMPTS == 10
        assert loaded.DEFAULT_TEMPERATURE == 0.5
        assert loaded.OPENAI_ORGANIZATION is None

    def test_server_address(self, monkeypatch):
        monkeypatch.setenv("PORT", "9000")
        assert Settings().PORT == 9000

    def test_invalid_number_is_rejected(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_PORT", "not-a-port")
        with pytest.raises(ValidationError):
            Settings()

    @pytest.mark.parametrize("value,expected", [
        ("prod", Environment.PRODUCTION),
        ("STAGING", Environment.STAGING),
        ("test", Environment.TEST),
        ("anything", Environment.DEVELOPMENT),
    ])
    def test_environment(self, monkeypatch, value, expected):
        monkeypatch.setenv("APP_ENV", value)
        assert get_environment() == expected
        assert Settings().ENVIRONMENT == expected

    def test_environment_defaults(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        for key in ("DEBUG", "LOG_LEVEL", "LOG_FORMAT"):
            monkeypatch.delenv(key, raising=False)
        loaded = Settings()
        assert loaded.DEBUG is False
        assert loaded.LOG_LEVEL == "WARNING"
        assert loaded.LOG_FORMAT == "json"

    def test_explicit_values_win_over_environment_defaults(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.setenv("LOG_LEVEL", "info")
        assert Settings().LOG_LEVEL == "INFO"

    def test_limits_join_for_slowapi(self):
        assert endpoint_limit("chat") == "30 per minute"


class TestLogContext:
    def test_bind_and_clear(self):
        clear_context()
        bind_context(user_id=USER_ID, conversation_id=None)
        assert structlog.contextvars.get_contextvars() == {"user_id": USER_ID}

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestAssistantsClientKey:
    @pytest.mark.parametrize("key,configured", [
        ("sk-proj-abc123", True),
        ("sk-testing-abc123", True),
        ("sk-placeholder", False),
        ("", False),
    ])
    def test_configured(self, key, configured):
        assert AssistantsClient(api_key=key).configured is configured


class TestTokens:
    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic abc"])
    def test_no_bearer_token(self, header):
        assert extract_bearer_token(header) is None

    def test_bearer_token(self):
        assert extract_bearer_token("bearer abc.def") == "abc.def"

    def test_resolve_user(self):
        user = resolve_user(make_token(role="admin"))
        assert user.id == USER_ID
        assert user.role == "admin"

    def test_missing_subject(self):
        with pytest.raises(Unauthorized):
            resolve_user(make_token(user_id=""))

    def test_unconfigured_secret_rejects_everything(self, monkeypatch):
        from app.core.config import settings

        token = make_token()
        monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", "")
        with pytest.raises(Unauthorized):
            resolve_user(token)


class TestAuthorizationPolicy:
    def test_invalid_emails_are_dropped(self):
        policy = AuthorizationPolicy(["not-an-email", "Coord@Example.com"])
        assert policy.is_admin(AuthenticatedUser(id="1", email="coord@example.com"))

    def test_regular_user(self):
        policy = AuthorizationPolicy(["coord@example.com"])
        assert not policy.is_admin(AuthenticatedUser(id="1", email="aluno@example.com"))
        assert not policy.is_admin(AuthenticatedUser(id="1"))
        assert not policy.is_admin(None)


class TestFilenames:
    @pytest.mark.parametrize("raw,expected", [
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\ana\\caso.pdf", "caso.pdf"),
        ('na"me;.txt', "name.txt"),
        ("", "file"),
    ])
    def test_sanitize_filename(self, raw, expected):
        assert sanitize_filename(raw) == expected
