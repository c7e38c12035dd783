"""
Application configuration using pydantic-settings.

Loads configuration from environment variables (prefix ``BRENNERBOT_``)
and .env files. The engines never read these settings themselves; the CLI
converts them into explicit configuration objects and passes them down.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from brennerbot.loop.analytics import AnalyticsThresholds
from brennerbot.loop.confidence import ConfidenceUpdateConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BRENNERBOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Session store
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/brennerbot.db",
        description="SQLAlchemy async URL of the session blob store",
    )

    # Agent Mail
    agent_mail_url: str = Field(
        default="http://127.0.0.1:8765/mcp/",
        description="Agent Mail JSON-RPC endpoint",
    )
    agent_mail_token: str = Field(
        default="",
        description="Bearer token for Agent Mail (empty to disable auth)",
    )
    agent_mail_timeout: int = Field(
        default=30,
        description="Timeout in seconds for Agent Mail requests",
    )
    project_key: str = Field(
        default="/data/projects/brenner_bot",
        description="Agent Mail project key used for tribunal threads",
    )

    # Confidence engine
    support_weight: float = Field(default=0.30, ge=0.0, le=1.0)
    challenge_weight: float = Field(default=0.30, ge=0.0, le=1.0)
    asymmetry_factor: float = Field(default=1.5, gt=0.0)
    elimination_factor: float = Field(default=2.0, ge=1.0)

    # Analytics
    falsified_below: float = Field(default=20.0, ge=0.0, le=100.0)
    robust_above: float = Field(default=80.0, ge=0.0, le=100.0)

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    def confidence_config(self) -> ConfidenceUpdateConfig:
        """Build the confidence engine configuration from these settings."""
        return ConfidenceUpdateConfig(
            support_weight=self.support_weight,
            challenge_weight=self.challenge_weight,
            asymmetry_factor=self.asymmetry_factor,
            elimination_factor=self.elimination_factor,
        )

    def analytics_thresholds(self) -> AnalyticsThresholds:
        """Build the outcome classification thresholds from these settings."""
        return AnalyticsThresholds(
            falsified_below=self.falsified_below,
            robust_above=self.robust_above,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
