from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DB_URL: str
    REDIS_URL: str = "redis://localhost:6379/0"
    LOG_LEVEL: str = "INFO"

    # Hosted auth provider (Supabase GoTrue)
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    SUPABASE_JWT_SECRET: str
    JWT_AUDIENCE: str = "authenticated"
    ALGORITHM: str = "HS256"
    AUTH_TIMEOUT_SECONDS: float = 15.0

    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_SUCCESS_URL: str = "http://localhost:3000/payment/success"
    STRIPE_CANCEL_URL: str = "http://localhost:3000/payment/cancel"
    STRIPE_PORTAL_RETURN_URL: str = "http://localhost:3000/profile"

    # External LLM/TTS inference service
    INFERENCE_URL: str = Field(
        default="",
        validation_alias=AliasChoices("INFERENCE_URL", "AI_SERVICE_URL"),
    )
    INFERENCE_API_TOKEN: str | None = Field(
        default=None,
        validation_alias=AliasChoices("INFERENCE_API_TOKEN", "AI_SERVICE_TOKEN"),
    )
    INFERENCE_CREATOR_ID: str = ""
    INFERENCE_TIMEOUT_SECONDS: float = 45.0
    INFERENCE_FAST_TIMEOUT_SECONDS: float = 25.0
    INFERENCE_CONNECT_TIMEOUT_SECONDS: float = 10.0

    # Chat / token accounting
    DEFAULT_INFLUENCER_ID: str | None = None
    INITIAL_CONVERSATION_TOKENS: int = 100
    TOKENS_PER_MESSAGE: int = 1
    HISTORY_WINDOW: int = 20

    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_CHAT_MAX: int = 30
    RATE_LIMIT_CHAT_WINDOW: int = 60

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[2] / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
