"""
Collection Store: card id -> MemoryState.

The only mutable scheduling data in hashdeck. Cards parsed from decks are
merged in (existing state kept, fresh New state for unseen ids); states of
cards that disappear from the decks are kept as orphans and only removed on
explicit request.

Snapshots are plain JSON-compatible dicts:

    {"version": 1, "cards": {"<sha256>": {"stage": "review", "due": "2025-01-09", ...}}}
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from datetime import date, datetime
from typing import Annotated, Any, Literal

from loguru import logger
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
    model_validator,
)

from .errors import FormatError
from .scheduler import DEFAULT_CONFIG, MemoryState, SchedulerConfig, Stage

SNAPSHOT_VERSION = 1

# Longest interval a date can still be offset by
MAX_INTERVAL_DAYS = (date.max - date.min).days

CardId = Annotated[str, StringConstraints(pattern=r"^[0-9a-f]{64}$")]

# =============================================================================
# Snapshot Schema
# =============================================================================


class MemoryStateRecord(BaseModel):
    """Serialized MemoryState. Out-of-range values are rejected, not clamped."""

    model_config = ConfigDict(extra="forbid")

    stage: Stage
    due: date
    interval: int = Field(ge=0, le=MAX_INTERVAL_DAYS, strict=True)
    # Bounds are the scheduler's business; it clamps on the next review
    strength: float = Field(gt=0, allow_inf_nan=False)
    lapses: int = Field(default=0, ge=0, strict=True)
    reviews: int = Field(default=0, ge=0, strict=True)
    last_reviewed: datetime | None = None

    @model_validator(mode="after")
    def check_counters(self) -> MemoryStateRecord:
        if self.lapses > self.reviews:
            raise ValueError("lapses cannot exceed reviews")
        if self.stage is not Stage.NEW and self.reviews == 0:
            raise ValueError(f"stage '{self.stage.value}' requires at least one review")
        return self

    @classmethod
    def from_state(cls, state: MemoryState) -> MemoryStateRecord:
        return cls(
            stage=state.stage,
            due=state.due,
            interval=state.interval,
            strength=state.strength,
            lapses=state.lapses,
            reviews=state.reviews,
            last_reviewed=state.last_reviewed,
        )

    def to_state(self) -> MemoryState:
        return MemoryState(
            stage=self.stage,
            due=self.due,
            interval=self.interval,
            strength=self.strength,
            lapses=self.lapses,
            reviews=self.reviews,
            last_reviewed=self.last_reviewed,
        )


class Snapshot(BaseModel):
    """Whole-collection backup."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1]
    cards: dict[CardId, MemoryStateRecord]


def _describe(error: ValidationError) -> str:
    details = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "snapshot"
        details.append(f"{location}: {item['msg']}")
    return "Invalid snapshot: " + "; ".join(details)


def load_snapshot(snapshot: Mapping[str, Any] | str | bytes) -> dict[str, MemoryState]:
    """
    Validate a snapshot and decode its states.

    Raises:
        FormatError: on malformed JSON, unknown fields or out-of-range values
    """
    try:
        if isinstance(snapshot, (str, bytes, bytearray)):
            parsed = Snapshot.model_validate_json(snapshot)
        else:
            parsed = Snapshot.model_validate(snapshot)
    except ValidationError as e:
        raise FormatError(_describe(e)) from e
    return {card_id: record.to_state() for card_id, record in parsed.cards.items()}


def dump_snapshot(states: Mapping[str, MemoryState]) -> dict[str, Any]:
    """Encode states as a JSON-compatible snapshot."""
    return {
        "version": SNAPSHOT_VERSION,
        "cards": {
            card_id: MemoryStateRecord.from_state(state).model_dump(mode="json")
            for card_id, state in sorted(states.items())
        },
    }


# =============================================================================
# Merge
# =============================================================================


def merge(
    existing: Mapping[str, MemoryState],
    parsed_ids: Iterable[str],
    today: date,
    config: SchedulerConfig = DEFAULT_CONFIG,
) -> dict[str, MemoryState]:
    """
    Add fresh New states for unseen ids; keep every existing state.

    Ids missing from `parsed_ids` are retained untouched.
    """
    merged = dict(existing)
    for card_id in parsed_ids:
        if card_id not in merged:
            merged[card_id] = MemoryState.new(today, config)
    return merged


# =============================================================================
# Collection Store
# =============================================================================


class CollectionStore:
    """
    In-memory scheduling state for a collection.

    Tracks which ids are active (present in the last loaded decks, in parse
    order); only active ids are ever scheduled.
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        states: Mapping[str, MemoryState] | None = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self._states: dict[str, MemoryState] = dict(states or {})
        self._active: list[str] = []
        self._active_set: set[str] = set()

    # =========================================================================
    # Mapping access
    # =========================================================================

    def __contains__(self, card_id: object) -> bool:
        return card_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[str]:
        return iter(self._states)

    @property
    def states(self) -> dict[str, MemoryState]:
        """Copy of every state, orphans included."""
        return dict(self._states)

    @property
    def active_ids(self) -> list[str]:
        return list(self._active)

    def is_active(self, card_id: str) -> bool:
        return card_id in self._active_set

    def get(self, card_id: str) -> MemoryState:
        return self._states[card_id]

    def put(self, card_id: str, state: MemoryState) -> None:
        self._states[card_id] = state

    # =========================================================================
    # Collection operations
    # =========================================================================

    def merge(self, card_ids: Iterable[str], today: date) -> int:
        """
        Merge freshly parsed card ids.

        Args:
            card_ids: Ids in parse order
            today: Due date for newly inserted states

        Returns:
            Number of ids seen for the first time
        """
        ordered = list(dict.fromkeys(card_ids))
        before = len(self._states)
        self._states = merge(self._states, ordered, today, self.config)
        self._active = ordered
        self._active_set = set(ordered)

        inserted = len(self._states) - before
        logger.debug(
            f"Merged {len(ordered)} cards: {inserted} new, {len(self.orphan_ids())} orphaned"
        )
        return inserted

    def due_ids(self, today: date) -> list[str]:
        """Active ids due on `today` or still New, in parse order."""
        return [card_id for card_id in self._active if self._states[card_id].is_due(today)]

    def new_ids(self) -> list[str]:
        return [card_id for card_id in self._active if self._states[card_id].is_new]

    def orphan_ids(self) -> list[str]:
        """Ids with state but no card in the loaded decks."""
        return sorted(card_id for card_id in self._states if card_id not in self._active_set)

    def delete_orphans(self) -> int:
        orphans = self.orphan_ids()
        for card_id in orphans:
            del self._states[card_id]
        if orphans:
            logger.info(f"Deleted {len(orphans)} orphan states")
        return len(orphans)

    def stage_counts(self) -> dict[Stage, int]:
        """Stage histogram over active cards."""
        counts = {stage: 0 for stage in Stage}
        for card_id in self._active:
            counts[self._states[card_id].stage] += 1
        return counts

    # =========================================================================
    # Snapshots
    # =========================================================================

    def export_state(self) -> dict[str, Any]:
        """Snapshot of every state, orphans included."""
        return dump_snapshot(self._states)

    def export_json(self) -> str:
        return json.dumps(self.export_state(), indent=2, sort_keys=True)

    def import_state(
        self,
        snapshot: Mapping[str, Any] | str | bytes,
        today: date | None = None,
    ) -> int:
        """
        Replace every state with the snapshot's.

        All-or-nothing: on FormatError the store is left untouched. When
        `today` is given, active ids missing from the snapshot get a fresh
        New state; otherwise they stop being active until the next merge.

        Returns:
            Number of states imported
        """
        states = load_snapshot(snapshot)
        if today is not None:
            states = merge(states, self._active, today, self.config)
        else:
            self._active = [card_id for card_id in self._active if card_id in states]
            self._active_set = set(self._active)
        self._states = states
        logger.info(f"Imported {len(states)} memory states")
        return len(states)
