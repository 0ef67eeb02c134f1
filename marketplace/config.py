"""Central configuration for the marketplace matching and recommendation service.

This module uses Pydantic Settings for validation and env management.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class DatabaseSettings(BaseSettings):
    """Database configuration."""
    model_config = SettingsConfigDict(
        env_prefix="DB_",
        extra="ignore",
    )

    url: str = Field(
        default="sqlite+aiosqlite:///./marketplace.db",
        description="Async database connection URL",
    )
    echo: bool = Field(default=False)
    retry_attempts: int = Field(default=3, ge=1, le=10, description="Attempts for transient read failures")
    retry_backoff_seconds: float = Field(default=0.5, ge=0.0, le=30.0)


class MatchingSettings(BaseSettings):
    """Matching engine configuration."""
    model_config = SettingsConfigDict(env_prefix="MATCHING_", extra="ignore")

    max_results: int = Field(default=3, ge=1, le=100, description="Matches persisted per intake")
    neutral_score: float = Field(default=0.5, ge=0.0, le=1.0, description="Score for unknown attributes")
    good_match_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    controller_fuzzy_threshold: int = Field(default=80, ge=0, le=100, description="Rapidfuzz score threshold")
    category_fuzzy_threshold: int = Field(default=85, ge=0, le=100)
    oversize_penalty_per_ratio: float = Field(default=0.1, ge=0.0, le=1.0)
    max_oversize_penalty: float = Field(default=0.3, ge=0.0, le=1.0)

    weight_payload: float = Field(default=0.20, ge=0.0)
    weight_reach: float = Field(default=0.10, ge=0.0)
    weight_repeatability: float = Field(default=0.10, ge=0.0)
    weight_speed: float = Field(default=0.10, ge=0.0)
    weight_ip_rating: float = Field(default=0.05, ge=0.0)
    weight_controller: float = Field(default=0.10, ge=0.0)
    weight_integration: float = Field(default=0.10, ge=0.0)
    weight_price: float = Field(default=0.10, ge=0.0)
    weight_lead_time: float = Field(default=0.10, ge=0.0)
    weight_uptime: float = Field(default=0.05, ge=0.0)


class RecommendationSettings(BaseSettings):
    """Recommendation engine configuration."""
    model_config = SettingsConfigDict(env_prefix="RECOMMEND_", extra="ignore")

    default_limit: int = Field(default=10, ge=1, le=50)
    min_limit: int = Field(default=1, ge=1)
    max_limit: int = Field(default=50, ge=1)

    browsing_window_days: int = Field(default=30, ge=1)
    industry_window_days: int = Field(default=60, ge=1)
    trending_window_days: int = Field(default=7, ge=1)
    similar_buyers_window_days: int = Field(default=90, ge=1)
    browsing_history_size: int = Field(default=20, ge=1)
    peer_org_sample: int = Field(default=100, ge=1)

    hybrid_weight_browsing: float = Field(default=0.40, ge=0.0)
    hybrid_weight_industry: float = Field(default=0.25, ge=0.0)
    hybrid_weight_trending: float = Field(default=0.20, ge=0.0)
    hybrid_weight_similar_buyers: float = Field(default=0.15, ge=0.0)


class LoggingSettings(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)
    app_name: str = Field(default="Automation Marketplace")
    version: str = Field(default="0.1.0")

    # Sub-configs
    db: DatabaseSettings = Field(default_factory=DatabaseSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    recommendations: RecommendationSettings = Field(default_factory=RecommendationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("db", mode="before")
    @classmethod
    def validate_db(cls, v):
        return v if isinstance(v, DatabaseSettings) else DatabaseSettings()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
