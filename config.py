"""
Configuration settings for the trivia feed engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

import socket
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from triviafeed.weights.tuning import WeightTuning


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Local Store
    # ========================================
    database_url: str = Field(
        default="sqlite:///data/triviafeed.db",
        description="SQLAlchemy URL of the on-device store",
    )

    # ========================================
    # Remote Store (PostgREST-style backend)
    # ========================================
    remote_url: str = Field(
        default="http://localhost:54321",
        description="Base URL of the hosted backend",
    )
    remote_api_key: str = Field(
        default="",
        description="API key sent as 'apikey' and bearer token",
    )
    remote_events_table: str = Field(
        default="user_weight_changes",
        description="Remote table receiving weight-change events",
    )
    remote_timeout_seconds: float = Field(
        default=10.0,
        description="Per-request timeout for remote calls",
    )
    remote_retry_attempts: int = Field(
        default=3,
        description="Attempts per remote call before giving up",
    )
    remote_backoff_seconds: float = Field(
        default=1.0,
        description="Base of the exponential backoff between attempts",
    )
    device_id: str = Field(
        default_factory=socket.gethostname,
        description="Identifier stamped on events created by this device",
    )

    # ========================================
    # Sync Behavior
    # ========================================
    sync_interval_seconds: int = Field(
        default=300,
        description="Background sync interval (0 to disable)",
    )
    sync_batch_size: int = Field(
        default=200,
        description="Events uploaded per outbox batch",
    )
    sync_pull_page_size: int = Field(
        default=1000,
        description="Remote rows fetched per pull request",
    )
    sync_pull_overlap_seconds: float = Field(
        default=300.0,
        description="Pulls re-read this much before the cursor to catch late commits",
    )

    # ========================================
    # Feed
    # ========================================
    feed_batch_size: int = Field(
        default=5,
        description="Questions requested per checkpoint",
    )
    feed_related_topic_bonus: float = Field(
        default=0.05,
        description="Bonus for candidates related to the last answered topic",
    )
    feed_change_retention_days: int = Field(
        default=7,
        description="Days of feed change log kept by prune-feed-log",
    )
    active_topic: str | None = Field(
        default=None,
        description="Restrict the feed to one topic (None for all topics)",
    )

    # ========================================
    # Weight Tuning
    # ========================================
    weight_neutral: float = Field(default=0.5, description="Score of an unseen level")
    weight_min: float = Field(default=0.1, description="Lowest reachable score")
    weight_max: float = Field(default=1.0, description="Highest reachable score")
    weight_correct_topic: float = Field(default=0.05)
    weight_correct_subtopic: float = Field(default=0.08)
    weight_correct_branch: float = Field(default=0.10)
    weight_incorrect_topic: float = Field(default=0.01)
    weight_incorrect_subtopic: float = Field(default=0.015)
    weight_incorrect_branch: float = Field(default=0.02)
    weight_skip_topic: float = Field(default=0.05)
    weight_skip_subtopic: float = Field(default=0.07)
    weight_skip_branch: float = Field(default=0.10)
    skip_compensation_per_correct: float = Field(
        default=0.1,
        description="Fraction of the skip penalty offset per recent correct answer",
    )
    skip_compensation_cap: float = Field(
        default=0.8,
        description="Largest fraction of the skip penalty that can be offset",
    )
    history_window: int = Field(
        default=10,
        description="Recent interactions remembered per topic level",
    )
    decay_per_day: float = Field(
        default=0.05,
        description="Score lost per idle day once past the grace period",
    )
    decay_grace_days: float = Field(
        default=1.0,
        description="Idle days before decay starts",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default="logs/triviafeed.log",
        description="Log file path (None for stderr only)",
    )

    def weight_tuning(self) -> WeightTuning:
        """Build the weight model parameters from these settings."""
        return WeightTuning(
            neutral_score=self.weight_neutral,
            min_score=self.weight_min,
            max_score=self.weight_max,
            correct_deltas=(
                self.weight_correct_topic,
                self.weight_correct_subtopic,
                self.weight_correct_branch,
            ),
            incorrect_deltas=(
                self.weight_incorrect_topic,
                self.weight_incorrect_subtopic,
                self.weight_incorrect_branch,
            ),
            skip_penalties=(
                self.weight_skip_topic,
                self.weight_skip_subtopic,
                self.weight_skip_branch,
            ),
            compensation_per_correct=self.skip_compensation_per_correct,
            compensation_cap=self.skip_compensation_cap,
            history_window=self.history_window,
            decay_per_day=self.decay_per_day,
            decay_grace_days=self.decay_grace_days,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
