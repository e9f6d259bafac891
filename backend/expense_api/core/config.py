"""Simple configuration management.

This module defines a ``Settings`` class that reads configuration
values from environment variables and provides sensible defaults.
``.env`` support is implemented by loading files from the repository
root in a defined order. You can override any value via environment
variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# -----------------------------------------------------------------------------
# .env loading
#
# Prefer a .env in the repository root but allow fallback to whatever
# python-dotenv discovers from the current working directory. Files are
# loaded in order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

_LOCAL_ENV = (_THIS_FILE.parent.parent.parent / ".env").as_posix()
if os.path.exists(_LOCAL_ENV) and _LOCAL_ENV not in _candidate_envs:
    _candidate_envs.append(_LOCAL_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from the environment with sensible defaults. Any
    attribute defined here can be overridden by setting the corresponding
    environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="allow",
    )

    # API Settings
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "Paragoniusz Receipt API"
    ENVIRONMENT: str = Field(default="development")

    # Remote model provider (OpenRouter speaks the OpenAI chat completions API)
    OPENROUTER_API_KEY: Optional[str] = Field(default=None)
    OPENROUTER_BASE_URL: str = Field(default="https://openrouter.ai/api/v1")
    OPENROUTER_MODEL: str = Field(default="openai/gpt-4o-mini")
    OPENROUTER_TIMEOUT_MS: int = Field(default=20000)
    OPENROUTER_RETRY_ATTEMPTS: int = Field(default=3)
    OPENROUTER_RETRY_BASE_DELAY_MS: int = Field(default=1000)
    OPENROUTER_APP_URL: str = Field(default="https://paragoniusz.app")
    OPENROUTER_APP_TITLE: str = Field(default="Paragoniusz")

    # Managed backend
    SUPABASE_URL: Optional[str] = Field(default=None)
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = Field(default=None)
    SUPABASE_JWT_SECRET: Optional[str] = Field(default=None)
    SUPABASE_JWT_AUDIENCE: Optional[str] = Field(default="authenticated")
    RECEIPTS_BUCKET: str = Field(default="receipts")

    # Storage
    STORAGE_BACKEND: str = Field(default="supabase")
    STORAGE_DIRECTORY: str = Field(default="./storage")

    # File Upload
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB
    ALLOWED_CONTENT_TYPES: list[str] = ["image/jpeg", "image/png", "image/heic"]

    # Receipt processing
    AI_RECEIPT_PROCESSING_ENABLED: bool = Field(default=True)
    DEFAULT_CURRENCY: str = Field(default="PLN")

    # Redis backed per-user rate limit for receipt processing
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    PROCESS_RATE_LIMIT_PER_MIN: int = Field(default=10)

    # Auth
    # Disable auth bypass by default. Override in .env only when running locally.
    DEV_AUTH_BYPASS: bool = Field(default=False)
    DEV_USER_ID: str = Field(default="00000000-0000-0000-0000-000000000000")

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:4321", "http://127.0.0.1:4321"],
    )

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)


# Instantiate global settings
settings = Settings()
