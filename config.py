"""
Configuration settings for the adaptive practice engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///./practice.db",
        description="SQLAlchemy connection string (PostgreSQL or SQLite)",
    )

    # ========================================
    # Deployment
    # ========================================
    server_url: str = Field(
        default="https://practice.local",
        description="Platform id of the self-hosted deployment (no external gradebook)",
    )

    # ========================================
    # Question Selection
    # ========================================
    exercise_assignment_type: str = Field(
        default="Exercises",
        description="Catalog assignment type queried for practice questions",
    )
    recent_question_window: int = Field(
        default=5,
        ge=1,
        description="Number of recently presented questions excluded from selection",
    )
    min_questions_per_topic: int = Field(
        default=5,
        ge=0,
        description="A topic joins an assignment only with more questions than this",
    )
    selection_seed: int | None = Field(
        default=None,
        description="Seed for the selection RNG (None = nondeterministic)",
    )

    # ========================================
    # Grade Reporting (LMS)
    # ========================================
    grade_report_enabled: bool = Field(
        default=True,
        description="Push high-water scores to the hosting LMS",
    )
    grade_report_url: str = Field(
        default="http://127.0.0.1:8080/report",
        description="Endpoint that forwards scores to the LMS gradebook",
    )
    grade_report_timeout_ms: int = Field(
        default=30000,
        ge=100,
        description="HTTP timeout for a single score report",
    )
    grade_report_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Delivery attempts per score report",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    def get_grade_report_config(self) -> dict[str, object]:
        """Get grade reporting configuration as a dictionary."""
        return {
            "enabled": self.grade_report_enabled,
            "url": self.grade_report_url,
            "timeout_seconds": self.grade_report_timeout_ms / 1000.0,
            "retry_attempts": self.grade_report_retry_attempts,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
