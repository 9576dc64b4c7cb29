"""
Configuration settings for hashdeck.

Uses Pydantic Settings for environment variable management with .env file support.
Every field can be overridden with a HASHDECK_-prefixed environment variable,
e.g. HASHDECK_NEW_CARD_LIMIT=20.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .drill import AnswerControls
from .scheduler import Grade, SchedulerConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HASHDECK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Collection
    # ========================================
    collection_dir: Path = Field(
        default=Path("."),
        description="Directory searched for deck files",
    )
    deck_pattern: str = Field(
        default="**/*.md",
        description="Glob pattern for deck files, relative to collection_dir",
    )
    state_db: Path = Field(
        default=Path.home() / ".hashdeck" / "state.db",
        description="SQLite file holding the collection snapshot and review log",
    )
    cloze_placeholder: str = Field(
        default="[...]",
        description="Text shown in place of a hidden cloze deletion",
    )

    # ========================================
    # Drill defaults
    # ========================================
    card_limit: int | None = Field(default=None, ge=0)
    new_card_limit: int | None = Field(default=None, ge=0)
    shuffle: bool = True
    bury_siblings: bool = Field(
        default=True,
        description="Drill one cloze deletion per card per session",
    )
    answer_controls: AnswerControls = Field(
        default=AnswerControls.FULL,
        description="full: forgot/hard/good/easy; binary: forgot/good",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging verbosity level",
    )

    # ========================================
    # Scheduling curve
    # ========================================
    initial_strength: float = Field(default=2.5, gt=0)
    min_strength: float = Field(default=1.3, gt=0)
    max_strength: float = Field(default=3.0, gt=0)
    min_interval: int = Field(default=1, ge=1)
    max_interval: int = Field(default=36500, ge=1)

    learning_interval_hard: int = Field(default=1, ge=1)
    learning_interval_good: int = Field(default=1, ge=1)
    learning_interval_easy: int = Field(default=3, ge=1)
    graduating_interval_hard: int = Field(default=1, ge=1)
    graduating_interval_good: int = Field(default=3, ge=1)
    graduating_interval_easy: int = Field(default=5, ge=1)

    hard_multiplier: float = Field(default=1.2, ge=1.0)
    hard_penalty: float = Field(default=0.15, ge=0)
    easy_bonus: float = Field(default=1.3, ge=1.0)
    easy_strength_bonus: float = Field(default=0.15, ge=0)
    forgot_penalty: float = Field(default=0.2, ge=0)

    @model_validator(mode="after")
    def check_bounds(self) -> Settings:
        if self.min_strength > self.max_strength:
            raise ValueError("min_strength must not exceed max_strength")
        if self.min_interval > self.max_interval:
            raise ValueError("min_interval must not exceed max_interval")
        return self

    def scheduler_config(self) -> SchedulerConfig:
        """Build the scheduling curve from these settings."""
        return SchedulerConfig(
            initial_strength=self.initial_strength,
            min_strength=self.min_strength,
            max_strength=self.max_strength,
            min_interval=self.min_interval,
            max_interval=self.max_interval,
            learning_intervals={
                Grade.HARD: self.learning_interval_hard,
                Grade.GOOD: self.learning_interval_good,
                Grade.EASY: self.learning_interval_easy,
            },
            graduating_intervals={
                Grade.HARD: self.graduating_interval_hard,
                Grade.GOOD: self.graduating_interval_good,
                Grade.EASY: self.graduating_interval_easy,
            },
            hard_multiplier=self.hard_multiplier,
            hard_penalty=self.hard_penalty,
            easy_bonus=self.easy_bonus,
            easy_strength_bonus=self.easy_strength_bonus,
            forgot_penalty=self.forgot_penalty,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
