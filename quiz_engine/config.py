"""
Configuration using Pydantic Settings for the Quiz Engine service
"""
from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field, field_validator
from enum import Enum


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


# Env var names the authoring app documents for each grading provider
PROVIDER_ENV_VARS = {
    "gemini": "GEMINI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "claude": "CLAUDE_API_KEY",
    "openai": "OPENAI_API_KEY",
}


class Settings(BaseSettings):
    """Application settings with validation and type safety"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Provider API keys (server-side fallbacks; user supplied keys win)
    gemini_api_key: Optional[str] = Field(default=None)
    deepseek_api_key: Optional[str] = Field(default=None)
    claude_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("claude_api_key", "anthropic_api_key"),
    )
    openai_api_key: Optional[str] = Field(default=None)

    # Provider models
    gemini_model: str = Field(default="gemini-2.5-flash")
    deepseek_model: str = Field(default="deepseek-chat")
    deepseek_base_url: str = Field(default="https://api.deepseek.com")
    claude_model: str = Field(default="claude-sonnet-4-20250514")
    openai_model: str = Field(default="gpt-4o-mini")

    # AI grading
    ai_grading_temperature: float = Field(default=0.3)
    ai_grading_max_tokens: int = Field(default=2048, ge=1)
    ai_grading_timeout: int = Field(default=60, ge=1)
    ai_grading_max_retries: int = Field(default=0, ge=0)
    ai_grading_rate_limit: int = Field(default=10, ge=1)
    ai_grading_rate_window_seconds: int = Field(default=60, ge=1)

    # Sequencing
    uncategorized_label: str = Field(default="Uncategorized")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("ai_grading_temperature")
    def validate_temperature(cls, v):
        if not 0 <= v <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    def get_provider_api_key(self, provider: str) -> Optional[str]:
        key = getattr(self, f"{provider}_api_key", None)
        if key and key.strip():
            return key.strip()
        return None


def provider_env_var(provider: str) -> str:
    return PROVIDER_ENV_VARS.get(provider, f"{provider.upper()}_API_KEY")


# Create global settings instance
settings = Settings()
