import os
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


# Environment Types
class Environment(str, Enum):
    """
    Application environment types.
    Defines the possible environments the app can run in.
    """
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


def parse_environment(value: Any) -> Environment:
    """Map APP_ENV spellings onto an Environment (defaults to development)."""
    if isinstance(value, Environment):
        return value
    match str(value or "development").strip().lower():
        case "production" | "prod":
            return Environment.PRODUCTION
        case "staging" | "stage":
            return Environment.STAGING
        case "test":
            return Environment.TEST
        case _:
            return Environment.DEVELOPMENT


def get_environment() -> Environment:
    return parse_environment(os.getenv("APP_ENV"))


def load_env_file() -> None:
    """
    Load the most specific .env file available.
    .env.<environment>.local wins over .env.<environment>, which wins over .env
    """
    env = get_environment()
    base_dir = Path(__file__).resolve().parents[2]

    for candidate in (f".env.{env.value}.local", f".env.{env.value}", ".env"):
        env_file = base_dir / candidate
        if env_file.is_file():
            load_dotenv(dotenv_path=env_file)
            return


load_env_file()


# Comma separated in the environment: ADMIN_EMAILS="a@x.com,b@x.com"
CommaList = Annotated[List[str], NoDecode]


def split_comma_list(value: Any) -> Any:
    if isinstance(value, str):
        return [v.strip().strip("\"'") for v in value.split(",") if v.strip()]
    return value


# Application Settings
class Settings(BaseSettings):
    """
    Central configuration object.
    Environment variables (and the .env file loaded above) override the defaults.
    """

    ENVIRONMENT: Environment = Field(default=Environment.DEVELOPMENT, validation_alias="APP_ENV")

    # Application
    PROJECT_NAME: str = "NeuroIA Lab Chat Gateway"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False
    ALLOWED_ORIGINS: CommaList = [
        "https://neuroai-lab.vercel.app",
        "https://www.neuroialab.com.br",
        "https://neuroialab.com.br",
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"

    # Identity provider (Supabase auth issues HS256 JWTs)
    SUPABASE_URL: str = ""
    SUPABASE_JWT_SECRET: str = ""
    SUPABASE_JWT_AUDIENCE: str = "authenticated"
    JWT_ALGORITHM: str = "HS256"

    # Authorization
    ADMIN_EMAILS: CommaList = []

    # Postgres
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "postgres"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_POOL_SIZE: int = 5
    POSTGRES_MAX_OVERFLOW: int = 10

    # OpenAI Assistants
    OPENAI_API_KEY: str = ""
    OPENAI_ORGANIZATION: Optional[str] = None
    OPENAI_TIMEOUT_SECONDS: float = 30.0
    RUN_MAX_COMPLETION_TOKENS: int = 4000
    RUN_POLL_MAX_ATTEMPTS: int = 60
    RUN_POLL_MAX_SECONDS: float = 60.0
    DEFAULT_TEMPERATURE: float = 0.7
    SIMULATOR_TEMPERATURE: float = 0.8

    # Entitlements
    RENEWAL_WARNING_DAYS: int = 3

    # File uploads (OpenAI limit)
    MAX_UPLOAD_BYTES: int = 20 * 1024 * 1024

    # Rate limiting, slowapi syntax: "30 per minute,500 per day"
    RATE_LIMIT_DEFAULT: CommaList = ["200 per day", "50 per hour"]
    RATE_LIMIT_CHAT: CommaList = ["30 per minute"]
    RATE_LIMIT_INSTITUTION_CHAT: CommaList = ["30 per minute"]
    RATE_LIMIT_UPLOAD: CommaList = ["10 per minute"]
    RATE_LIMIT_HEALTH: CommaList = ["20 per minute"]

    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        extra="ignore",
    )

    @field_validator("ENVIRONMENT", mode="before")
    @classmethod
    def validate_environment(cls, v: Any) -> Environment:
        return parse_environment(v)

    @field_validator(
        "ALLOWED_ORIGINS",
        "RATE_LIMIT_DEFAULT",
        "RATE_LIMIT_CHAT",
        "RATE_LIMIT_INSTITUTION_CHAT",
        "RATE_LIMIT_UPLOAD",
        "RATE_LIMIT_HEALTH",
        mode="before",
    )
    @classmethod
    def validate_comma_list(cls, v: Any) -> Any:
        return split_comma_list(v)

    @field_validator("ADMIN_EMAILS", mode="before")
    @classmethod
    def validate_admin_emails(cls, v: Any) -> Any:
        emails = split_comma_list(v)
        return [e.lower() for e in emails] if isinstance(emails, list) else emails

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def apply_environment_settings(self) -> "Settings":
        """
        Environment specific overrides, applied only when the variable
        was not set explicitly.
        """
        overrides: Dict[Environment, Dict[str, Any]] = {
            Environment.DEVELOPMENT: {"DEBUG": True, "LOG_LEVEL": "DEBUG", "LOG_FORMAT": "console"},
            Environment.STAGING: {"DEBUG": False, "LOG_LEVEL": "INFO", "LOG_FORMAT": "json"},
            Environment.PRODUCTION: {"DEBUG": False, "LOG_LEVEL": "WARNING", "LOG_FORMAT": "json"},
            Environment.TEST: {"DEBUG": True, "LOG_LEVEL": "DEBUG", "LOG_FORMAT": "console"},
        }
        explicit = set(self.model_fields_set)
        for key, value in overrides.get(self.ENVIRONMENT, {}).items():
            if key not in explicit:
                setattr(self, key, value)
        return self

    @property
    def RATE_LIMIT_ENDPOINTS(self) -> Dict[str, List[str]]:
        return {
            "chat": self.RATE_LIMIT_CHAT,
            "institution_chat": self.RATE_LIMIT_INSTITUTION_CHAT,
            "upload": self.RATE_LIMIT_UPLOAD,
            "health": self.RATE_LIMIT_HEALTH,
        }


settings = Settings()
