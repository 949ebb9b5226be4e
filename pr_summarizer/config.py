"""
Application configuration module.
"""

from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pr_summarizer.models.domain import ProviderConfig


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application Configuration
    APP_NAME: str = Field(default="GitHub PR Summarizer")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)

    # API Configuration
    API_V1_STR: str = Field(default="/api/v1")
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"]
    )

    # Summary storage: "memory" keeps summaries in process, "database" uses DATABASE_URL
    SUMMARY_STORE_BACKEND: str = Field(default="memory")
    DATABASE_URL: str = Field(default="sqlite:///./pr_summaries.db")

    # GitHub API Configuration
    GITHUB_TOKEN: str = Field(default="")
    GITHUB_API_URL: str = Field(default="https://api.github.com")
    RATE_LIMIT_THRESHOLD: int = Field(default=10)
    MAX_REPOS_PER_SYNC: int = Field(default=20)
    MAX_PRS_PER_REPO: int = Field(default=5)
    SYNC_REPO_DELAY: float = Field(default=0.2)

    # LLM provider selection
    LLM_PRIMARY_PROVIDER: str = Field(default="openai")
    LLM_PRIMARY_MODEL: str = Field(default="gpt-4")
    LLM_FALLBACK_PROVIDER: Optional[str] = Field(default=None)
    LLM_FALLBACK_MODEL: Optional[str] = Field(default=None)

    # Hosted providers
    OPENAI_API_KEY: str = Field(default="")
    OPENAI_BASE_URL: Optional[str] = Field(default=None)
    ANTHROPIC_API_KEY: str = Field(default="")
    ANTHROPIC_BASE_URL: Optional[str] = Field(default=None)

    # Ollama Configuration
    OLLAMA_ENABLED: bool = Field(default=False)
    OLLAMA_URL: str = Field(default="http://localhost:11434")
    OLLAMA_MODEL: str = Field(default="llama2")

    # Generation parameters
    LLM_MAX_TOKENS: int = Field(default=4000)
    LLM_TEMPERATURE: float = Field(default=0.3)
    LLM_TIMEOUT_SECONDS: float = Field(default=60.0)
    LLM_MAX_RETRIES: int = Field(default=2)
    LLM_RETRY_BASE_DELAY: float = Field(default=1.0)
    LLM_COST_PER_1K_PROMPT_TOKENS: float = Field(default=0.0)
    LLM_COST_PER_1K_COMPLETION_TOKENS: float = Field(default=0.0)

    # Batching
    SUMMARY_BATCH_SIZE: int = Field(default=5)
    SUMMARY_BATCH_DELAY: float = Field(default=1.0)
    DEFAULT_MAX_PRS: int = Field(default=10)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Monitoring Configuration
    TIMEOUT_SECONDS: int = Field(default=30)


# Create settings instance
settings = Settings()


def get_default_provider_config(settings: Settings) -> ProviderConfig:
    """Build the process-wide default provider configuration."""
    return ProviderConfig(
        provider=settings.LLM_PRIMARY_PROVIDER,
        model=settings.LLM_PRIMARY_MODEL,
        max_tokens=settings.LLM_MAX_TOKENS,
        temperature=settings.LLM_TEMPERATURE,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        max_retries=settings.LLM_MAX_RETRIES,
    )


def get_fallback_provider_config(settings: Settings) -> Optional[ProviderConfig]:
    """Build the secondary provider configuration, if one is configured."""
    if not settings.LLM_FALLBACK_PROVIDER:
        return None
    return ProviderConfig(
        provider=settings.LLM_FALLBACK_PROVIDER,
        model=settings.LLM_FALLBACK_MODEL or settings.OLLAMA_MODEL,
        max_tokens=settings.LLM_MAX_TOKENS,
        temperature=settings.LLM_TEMPERATURE,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        max_retries=settings.LLM_MAX_RETRIES,
    )


def get_cors_origins(settings: Settings) -> List[str]:
    """Get CORS origins."""
    if isinstance(settings.CORS_ORIGINS, str):
        return [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
    return settings.CORS_ORIGINS


def is_development(settings: Settings) -> bool:
    """Check if running in development mode."""
    return settings.DEBUG
