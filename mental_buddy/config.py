"""Application settings loaded from the environment and `.env`."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, validated once at import."""

    # Storage
    DATABASE_URL: str = "sqlite:///./mental_buddy.db"

    # Language model (OpenAI-compatible Gemini endpoint)
    GEMINI_API_KEY: Optional[str] = None
    LLM_MODEL: str = "gemini-2.0-flash"
    LLM_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    LLM_TIMEOUT: float = 60.0
    LLM_MAX_RETRIES: int = 0

    # Identity provider
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CREDENTIALS: Optional[str] = None

    # Attachments
    UPLOAD_DIR: str = "uploads"
    UPLOAD_MAX_BYTES: int = 10 * 1024 * 1024

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: list[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
