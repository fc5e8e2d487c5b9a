import os
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global configuration for environment variables."""

    APP_NAME: str = "ScribeAI Completion Core"
    ENV: str = os.getenv("ENV", "development")
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Provider credentials
    ANTHROPIC_API_KEY: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None
    DEEPSEEK_API_KEY: Optional[str] = None

    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com"
    GEMINI_ENDPOINT: str = "https://generativelanguage.googleapis.com"
    DEEPSEEK_BASE_URL: str = "https://api.deepseek.com/v1"

    # Models
    ANTHROPIC_DEFAULT_MODEL: str = "claude-3-5-sonnet-latest"
    ANTHROPIC_ALTERNATE_MODEL: str = "claude-3-5-haiku-latest"
    GEMINI_DEFAULT_MODEL: str = "gemini-2.0-flash"
    DEEPSEEK_DEFAULT_MODEL: str = "deepseek-reasoner"
    BATCH_DEFAULT_MODEL: str = "claude-3-5-sonnet-20241022"

    # Routing
    PRIMARY_PROVIDER: str = "anthropic"
    FALLBACK_PROVIDERS: str = "gemini,deepseek"
    MAX_NETWORK_ATTEMPTS: int = 3
    BACKOFF_BASE_SECONDS: float = 1.0
    OVERLOAD_RETRIES: int = 1
    REQUEST_TIMEOUT_SECONDS: float = 120.0

    # Batch
    BATCH_POLL_INTERVAL_SECONDS: float = 10.0
    BATCH_MAX_POLL_SECONDS: float = 1800.0
    BATCH_MAX_CONSECUTIVE_ERRORS: int = 3
    BATCH_EMPTY_RESULT_RETRY_DELAY_SECONDS: float = 3.0
    BATCH_MIN_CONTENT_CHARS: int = 100
    BATCH_STORE_TTL_SECONDS: int = 7 * 24 * 60 * 60

    # Humanizer
    HUMANIZER_MAX_CHUNK_CHARS: int = 3500
    HUMANIZER_CONCURRENCY: int = 1
    HUMANIZER_CHUNK_DELAY_SECONDS: float = 1.0

    # Usage
    TRIAL_TOKEN_LIMIT: int = 2500
    BASIC_DAILY_MESSAGES: int = 30
    BASIC_PLAN_WORDS: int = 25000
    PREMIUM_DAILY_MESSAGES: int = 100
    PREMIUM_PLAN_WORDS: int = 100000
    PREMIUM_HUMANIZER_WORDS: int = 10000

    # Storage
    REDIS_URL: Optional[str] = None
    REDIS_LOCK_TIMEOUT_SECONDS: int = 10

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    @property
    def fallback_providers(self) -> List[str]:
        return [p.strip() for p in self.FALLBACK_PROVIDERS.split(",") if p.strip()]


settings = Settings()
