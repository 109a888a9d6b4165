"""Configuration management using Pydantic settings"""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="VOICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Language
    language: str = Field(default="de-CH", description="Default language tag")

    # Decision thresholds
    confidence_threshold: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Minimum confidence to keep going after an error"
    )
    max_processing_time_ms: int = Field(
        default=5000, gt=0, description="Wall-clock deadline per invocation"
    )

    # Cache
    enable_caching: bool = Field(default=True, description="Cache resolved utterances")
    cache_ttl_seconds: float = Field(default=300.0, gt=0, description="Cache entry TTL in seconds")
    cache_max_size: int = Field(default=100, gt=0, description="Maximum cached results")

    # Conversation history
    history_capacity: int = Field(
        default=50, gt=0, description="Number of turns kept per session"
    )
    max_sessions: int = Field(
        default=1000, gt=0, description="Idle sessions kept in memory before the least recent is dropped"
    )
    context_history_window: int = Field(
        default=3, ge=0, description="Turns searched when resolving missing entities"
    )

    # Feature flags
    enable_context_awareness: bool = Field(
        default=True, description="Apply page/intent affinity boost"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Render logs as JSON")

    # OpenAI delegate
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_intent_model: str = Field(
        default="gpt-4o-mini", description="Model used by the OpenAI intent classifier"
    )

    @property
    def max_processing_time_seconds(self) -> float:
        """Deadline in seconds"""
        return self.max_processing_time_ms / 1000.0


# Global settings instance
settings = Settings()
