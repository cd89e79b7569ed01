"""Application settings loaded from environment variables and .env."""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the care planning core."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    environment: str = Field(default="development", description="Deployment environment name")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Render logs as JSON instead of console output")

    # Persistence
    database_url: str = Field(
        default="sqlite+aiosqlite:///./revolucare.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # Cache / events. Empty means in-process adapters.
    redis_url: Optional[str] = Field(default=None, description="Redis URL for cache and event bus")
    care_plan_cache_ttl_seconds: int = Field(default=3600, description="TTL for cached care plans and lists")
    options_cache_ttl_seconds: int = Field(default=3600, description="TTL for cached option sets")
    analysis_cache_ttl_seconds: int = Field(default=86400, description="TTL for cached completed analyses")
    care_plan_events_channel: str = Field(default="care-plan-events", description="Pub/sub channel for care plan events")

    # Blob storage
    blob_storage_path: Path = Field(default=Path("./data/blobs"), description="Root directory for stored documents")
    blob_signing_secret: str = Field(default="change-me", description="HMAC secret for signed download URLs")
    blob_base_url: str = Field(default="http://localhost:8000/files", description="Base URL for signed download links")
    signed_url_ttl_seconds: int = Field(default=900, description="Lifetime of signed download URLs")
    max_upload_size_bytes: int = Field(default=25 * 1024 * 1024, description="Maximum accepted document size")

    # Anthropic
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    claude_model: str = Field(default="claude-sonnet-4-20250514", description="Claude model id")
    claude_max_output_tokens: int = Field(default=8192, description="Max output tokens for Claude")

    # Gemini
    gemini_api_key: Optional[str] = Field(default=None, description="Google Gemini API key")
    gemini_model: str = Field(default="gemini-2.5-pro", description="Gemini model id")
    gemini_max_output_tokens: int = Field(default=8192, description="Max output tokens for Gemini")

    # Azure OpenAI
    azure_openai_api_key: Optional[str] = Field(default=None, description="Azure OpenAI API key")
    azure_openai_endpoint: Optional[str] = Field(default=None, description="Azure OpenAI endpoint URL")
    azure_openai_api_version: str = Field(default="2024-08-01-preview", description="Azure OpenAI API version")
    azure_openai_deployment: str = Field(default="gpt-4o", description="Azure OpenAI deployment name")
    azure_max_output_tokens: int = Field(default=8192, description="Max output tokens for Azure OpenAI")

    # LLM gateway
    llm_gateway_timeout_seconds: float = Field(default=120.0, description="Wall-clock budget per gateway call")
    llm_routing_config: Optional[Path] = Field(default=None, description="JSON file overriding task routing")

    # Langfuse prompt management (optional)
    langfuse_public_key: Optional[str] = Field(default=None, description="Langfuse public key")
    langfuse_secret_key: Optional[str] = Field(default=None, description="Langfuse secret key")
    langfuse_base_url: str = Field(default="https://cloud.langfuse.com", description="Langfuse host")

    # Prompts
    prompts_dir: Path = Field(
        default=Path(__file__).resolve().parent.parent / "prompts",
        description="Directory containing prompt templates",
    )

    # Document analysis / generation
    analysis_timeout_seconds: float = Field(default=60.0, description="Per-analysis extraction timeout")
    generation_deadline_seconds: float = Field(default=180.0, description="Default deadline for option generation")
    care_plan_option_count: int = Field(default=3, ge=1, le=3, description="Number of option strategies to run")


@lru_cache()
def get_settings() -> Settings:
    """Return the process settings (cached)."""
    return Settings()
