"""
Memory-Strength Scheduler.

Maps (memory state, grade, review time) to the next memory state.

Stages:
    New       - never successfully recalled
    Learning  - first successful recall, short fixed interval
    Review    - on the growth curve, interval multiplied by strength
    Relapsed  - forgotten after leaving New, back to the minimum interval

Grades:
    1 forgot - no recall
    2 hard   - recalled with effort, slow growth, strength nudged down
    3 good   - standard growth (interval * strength)
    4 easy   - fast growth (interval * strength * bonus), strength nudged up

Every (state, grade, time) triple has a result; nothing here raises.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum

from loguru import logger

from .errors import InvalidGrade

# =============================================================================
# Grades and Stages
# =============================================================================


class Grade(str, Enum):
    """User feedback for a review. Token strings are user-visible."""

    FORGOT = "forgot"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"

    @classmethod
    def parse(cls, value: Grade | str) -> Grade:
        """Accept a Grade or one of its tokens (case-insensitive)."""
        if isinstance(value, Grade):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidGrade(
                f"Invalid grade: {value!r} (expected forgot, hard, good or easy)"
            ) from None

    @property
    def is_success(self) -> bool:
        return self is not Grade.FORGOT


class Stage(str, Enum):
    """Lifecycle stage of a card's memory state."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELAPSED = "relapsed"


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class SchedulerConfig:
    """Tunable constants of the scheduling curve."""

    initial_strength: float = 2.5
    min_strength: float = 1.3
    max_strength: float = 3.0

    min_interval: int = 1  # Days
    max_interval: int = 36500

    # New -> Learning
    learning_intervals: dict[Grade, int] = field(
        default_factory=lambda: {Grade.HARD: 1, Grade.GOOD: 1, Grade.EASY: 3}
    )
    # Learning / Relapsed -> Review
    graduating_intervals: dict[Grade, int] = field(
        default_factory=lambda: {Grade.HARD: 1, Grade.GOOD: 3, Grade.EASY: 5}
    )

    hard_multiplier: float = 1.2
    hard_penalty: float = 0.15
    easy_bonus: float = 1.3
    easy_strength_bonus: float = 0.15
    forgot_penalty: float = 0.2

    def clamp_strength(self, value: float) -> float:
        if not math.isfinite(value):
            return self.initial_strength
        return min(self.max_strength, max(self.min_strength, value))

    def clamp_interval(self, value: float) -> int:
        if isinstance(value, float) and not math.isfinite(value):
            return self.max_interval
        return int(min(self.max_interval, max(self.min_interval, round(value))))


DEFAULT_CONFIG = SchedulerConfig()


# =============================================================================
# Memory State
# =============================================================================


@dataclass(frozen=True)
class MemoryState:
    """Scheduling state of a single card."""

    stage: Stage
    due: date
    interval: int = 0  # Days
    strength: float = DEFAULT_CONFIG.initial_strength
    lapses: int = 0
    reviews: int = 0
    last_reviewed: datetime | None = None

    @classmethod
    def new(cls, today: date, config: SchedulerConfig = DEFAULT_CONFIG) -> MemoryState:
        """Fresh state for a card seen for the first time."""
        return cls(stage=Stage.NEW, due=today, strength=config.initial_strength)

    @property
    def is_new(self) -> bool:
        return self.stage is Stage.NEW

    def is_due(self, today: date) -> bool:
        """New cards are always eligible."""
        return self.is_new or self.due <= today

    def days_overdue(self, today: date) -> int:
        return max(0, (today - self.due).days)


# =============================================================================
# Scheduling
# =============================================================================


def _as_date(moment: datetime | date) -> date:
    if isinstance(moment, datetime):
        return moment.date()
    return moment


def _as_datetime(moment: datetime | date) -> datetime:
    if isinstance(moment, datetime):
        return moment
    return datetime(moment.year, moment.month, moment.day)


def _add_days(day: date, days: int) -> date:
    # Saturates at date.max
    return day + timedelta(days=min(days, (date.max - day).days))


def next_state(
    state: MemoryState,
    grade: Grade,
    now: datetime | date,
    config: SchedulerConfig = DEFAULT_CONFIG,
) -> MemoryState:
    """
    Compute the memory state after a review.

    Args:
        state: Current state of the card
        grade: User feedback
        now: Review time; `due` is counted from its date
        config: Curve constants

    Returns:
        New MemoryState with `due = now + interval` days
    """
    today = _as_date(now)
    strength = config.clamp_strength(state.strength)
    interval = config.clamp_interval(state.interval)
    stage = state.stage
    lapses = state.lapses

    if grade is Grade.FORGOT:
        interval = config.min_interval
        if stage is not Stage.NEW:
            stage = Stage.RELAPSED
            lapses += 1
            strength = config.clamp_strength(strength - config.forgot_penalty)

    elif stage is Stage.NEW:
        stage = Stage.LEARNING
        interval = config.clamp_interval(
            config.learning_intervals.get(grade, config.min_interval)
        )

    elif stage in (Stage.LEARNING, Stage.RELAPSED):
        stage = Stage.REVIEW
        interval = config.clamp_interval(
            config.graduating_intervals.get(grade, config.min_interval)
        )

    else:
        good = config.clamp_interval(max(interval + 1, interval * strength))
        if grade is Grade.HARD:
            interval = config.clamp_interval(max(interval, interval * config.hard_multiplier))
            strength = config.clamp_strength(strength - config.hard_penalty)
        elif grade is Grade.GOOD:
            interval = good
        else:
            interval = config.clamp_interval(
                max(good + 1, interval * strength * config.easy_bonus)
            )
            strength = config.clamp_strength(strength + config.easy_strength_bonus)

    return replace(
        state,
        stage=stage,
        due=_add_days(today, interval),
        interval=interval,
        strength=round(strength, 4),
        lapses=lapses,
        reviews=state.reviews + 1,
        last_reviewed=_as_datetime(now),
    )


class Scheduler:
    """Binds a SchedulerConfig to `next_state`."""

    def __init__(self, config: SchedulerConfig | None = None):
        self.config = config or DEFAULT_CONFIG

    def new_state(self, today: date) -> MemoryState:
        return MemoryState.new(today, self.config)

    def next_state(
        self,
        state: MemoryState,
        grade: Grade | str,
        now: datetime | date,
    ) -> MemoryState:
        grade = Grade.parse(grade)
        result = next_state(state, grade, now, self.config)
        logger.debug(
            f"{grade.value}: {state.stage.value} -> {result.stage.value}, "
            f"interval={result.interval}d, due={result.due}"
        )
        return result
