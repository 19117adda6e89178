"""Settings read from the environment (and a local .env file).

Core:
    CHATROUTE_ENV        local | test | staging | prod
    DATABASE_URL         SQLAlchemy URL, always required

Cache:
    REDIS_URL            caching is off when unset
    CHAT_CACHE_TTL_S     cached chat answers (default 3600)
    SESSION_CACHE_TTL_S  cached session list and detail views (default 60)

Auth (required outside test):
    AUTH_JWKS_URL        identity provider JWKS endpoint
    AUTH_ISSUER          expected iss, compared without trailing slash
    AUTH_AUDIENCES       comma-separated accepted audiences

Providers:
    OPENAI_API_KEY, ANTHROPIC_API_KEY, GEMINI_API_KEY
    ENABLE_OPENAI, ENABLE_ANTHROPIC, ENABLE_GEMINI
    USE_MOCK_LLM         serve every provider from the deterministic mock
    LLM_TIMEOUT_S        per-attempt provider timeout

Logging:
    LOG_LEVEL            root level name (default INFO)
    LOG_JSON             JSON lines when true, console rendering otherwise
"""

import logging
from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


def _split_csv(value: str | None) -> list[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    chatroute_env: Environment = Field(default=Environment.LOCAL, alias="CHATROUTE_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    chat_cache_ttl_s: int = Field(default=3600, alias="CHAT_CACHE_TTL_S")
    session_cache_ttl_s: int = Field(default=60, alias="SESSION_CACHE_TTL_S")

    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_issuer: str | None = Field(default=None, alias="AUTH_ISSUER")
    auth_audiences: str | None = Field(default=None, alias="AUTH_AUDIENCES")

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: str | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    enable_openai: bool = Field(default=True, alias="ENABLE_OPENAI")
    enable_anthropic: bool = Field(default=True, alias="ENABLE_ANTHROPIC")
    enable_gemini: bool = Field(default=True, alias="ENABLE_GEMINI")

    use_mock_llm: bool = Field(default=False, alias="USE_MOCK_LLM")
    mock_token_delay_ms: int = Field(default=0, alias="MOCK_TOKEN_DELAY_MS")

    llm_timeout_s: int = Field(default=45, alias="LLM_TIMEOUT_S")
    llm_max_output_tokens: int = Field(default=2048, alias="LLM_MAX_OUTPUT_TOKENS")
    model_listing_ttl_s: int = Field(default=300, alias="MODEL_LISTING_TTL_S")

    enable_streaming: bool = Field(default=True, alias="ENABLE_STREAMING")
    cors_origins: str = Field(default="http://localhost:8080", alias="CORS_ORIGINS")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        if self.chatroute_env != Environment.TEST:
            missing = [
                name
                for name, value in (
                    ("AUTH_JWKS_URL", self.auth_jwks_url),
                    ("AUTH_ISSUER", self.auth_issuer),
                    ("AUTH_AUDIENCES", self.auth_audiences),
                )
                if not value
            ]
            if missing:
                raise ValueError(
                    f"Missing required auth settings: {', '.join(missing)}. "
                    f"Set these environment variables for CHATROUTE_ENV={self.chatroute_env.value}."
                )

        providers_on = self.enable_openai or self.enable_anthropic or self.enable_gemini
        if not (self.use_mock_llm or providers_on):
            raise ValueError("At least one LLM provider must be enabled when USE_MOCK_LLM is off")

        if self.llm_timeout_s <= 0:
            raise ValueError("LLM_TIMEOUT_S must be positive")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"LOG_LEVEL {self.log_level!r} is not a logging level")

        return self

    @property
    def audience_list(self) -> list[str]:
        return _split_csv(self.auth_audiences)

    @property
    def normalized_issuer(self) -> str | None:
        return self.auth_issuer.rstrip("/") if self.auth_issuer else None

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins)


@lru_cache
def get_settings() -> Settings:
    """Settings loaded once per process.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
