"""
Centralized configuration for the Lead Qualification Engine.

All settings are loaded from environment variables via .env file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Assistant
    assistant_name: str = Field(default="F.B/c AI strategy assistant")

    # LLM provider selection
    llm_provider: str = Field(default="openai")  # openai | bedrock | none

    # AWS / Bedrock
    aws_region: str = Field(default="us-east-1")
    bedrock_llm_model_id: str = Field(default="us.anthropic.claude-sonnet-4-20250514-v1:0")

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None)
    openai_llm_model: str = Field(default="gpt-4o-mini")

    # Context optimizer
    token_budget: int = Field(default=8000)
    token_estimator: str = Field(default="heuristic")  # heuristic | tiktoken
    summary_tail_size: int = Field(default=4)
    conversation_cache_ttl_seconds: int = Field(default=1800)
    cache_min_messages: int = Field(default=5)
    summarization_timeout_seconds: float = Field(default=15.0)

    # Research
    research_lookup_timeout_seconds: float = Field(default=4.0)
    research_synthesis_timeout_seconds: float = Field(default=20.0)
    research_ttl_seconds: int = Field(default=24 * 60 * 60)
    search_api_url: Optional[str] = Field(default=None)
    search_api_key: Optional[str] = Field(default=None)

    # Stage machine
    require_business_email: bool = Field(default=True)
    session_idle_seconds: int = Field(default=3600)

    # In-memory state sweep
    sweep_interval_seconds: float = Field(default=60.0)

    # Live responses / rate limiting
    live_min_interval_ms: int = Field(default=5000)
    rate_limit_per_minute: int = Field(default=100)

    # Database
    database_url: Optional[str] = Field(default=None)

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_title: str = Field(default="Lead Qualification Engine API")
    api_version: str = Field(default="1.0.0")
    cors_origins: str = Field(default="*")

    # Logging
    log_level: str = Field(default="INFO")

    @property
    def is_bedrock(self) -> bool:
        return self.llm_provider.lower() == "bedrock"

    @property
    def is_openai(self) -> bool:
        return self.llm_provider.lower() == "openai"

    @property
    def llm_enabled(self) -> bool:
        return self.is_openai or self.is_bedrock

    @property
    def llm_model_id(self) -> str:
        if self.is_openai:
            return self.openai_llm_model
        return self.bedrock_llm_model_id

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
