"""
Centralized configuration for the purchase intent engine.

All settings are loaded from environment variables via .env file.
"""

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from intent_tracking.taxonomy import IntentConfig

load_dotenv()


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Intent engine
    intent_decay_rate_per_hour: float = Field(default=1 / 6, ge=0)
    intent_history_capacity: int = Field(default=50, ge=1)
    intent_product_interest_capacity: int = Field(default=20, ge=1)
    intent_signal_capacity: int = Field(default=100, ge=1)
    intent_hysteresis_margin: int = Field(default=5, ge=0)
    intent_taxonomy_file: Optional[str] = None  # JSON taxonomy; built-in defaults when unset
    intent_cache_enabled: bool = True

    # Persistence
    database_url: Optional[str] = None  # in-memory repository when unset
    db_pool_size: int = 5
    db_max_overflow: int = 10
    persistence_timeout_seconds: float = Field(default=5.0, gt=0)

    # Action-change notifications
    action_webhook_url: Optional[str] = None
    action_webhook_api_key: Optional[str] = None
    action_webhook_timeout: float = 10.0

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Purchase Intent Engine API"
    api_version: str = "1.0.0"
    cors_origins: str = "*"

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    @property
    def cors_origins_list(self) -> list:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def build_intent_config(self) -> IntentConfig:
        """
        Build the validated engine configuration.

        Raises:
            ConfigurationError: invalid taxonomy or parameters
        """
        params = dict(
            decay_rate_per_hour=self.intent_decay_rate_per_hour,
            history_capacity=self.intent_history_capacity,
            product_interest_capacity=self.intent_product_interest_capacity,
            signal_capacity=self.intent_signal_capacity,
            hysteresis_margin=self.intent_hysteresis_margin,
        )
        if self.intent_taxonomy_file:
            return IntentConfig.from_json_file(self.intent_taxonomy_file, **params)
        return IntentConfig(**params)


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
