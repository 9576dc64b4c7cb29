"""
Drill: the imperative handle around the session engine.

Owns one CollectionStore and one Session value. Hosts (the CLI, an
embedding UI) talk to this object; it threads the session value through
the pure functions in `session_engine`.

Usage:
    drill = Drill()
    drill.load({"geo.md": "Q: Capital of France?\\nA: Paris\\n"}, today)
    drill.start_session(today)
    drill.reveal()
    drill.grade("good", now)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

from loguru import logger

from . import session_engine
from .card_parser import CLOZE_PLACEHOLDER, Card, parse_decks
from .collection_store import CollectionStore
from .errors import InvalidState, ParseError
from .scheduler import Grade, Scheduler, SchedulerConfig
from .session_engine import Progress, Session, SessionSummary

# Fixed key bindings for interactive hosts
KEYBINDINGS: dict[str, str] = {
    " ": "reveal",
    "u": "undo",
    "1": Grade.FORGOT.value,
    "2": Grade.HARD.value,
    "3": Grade.GOOD.value,
    "4": Grade.EASY.value,
}


class AnswerControls(str, Enum):
    """Which grades a host offers once the answer is shown."""

    FULL = "full"
    BINARY = "binary"  # forgot / good only

    @property
    def grades(self) -> tuple[Grade, ...]:
        if self is AnswerControls.BINARY:
            return (Grade.FORGOT, Grade.GOOD)
        return tuple(Grade)


def _as_moment(now: datetime | date | str) -> datetime | date:
    if isinstance(now, str):
        return datetime.fromisoformat(now)
    return now


class Drill:
    """
    One collection plus the session currently being drilled.

    Not thread-safe; callers sharing an instance must hold one lock around it.
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        placeholder: str = CLOZE_PLACEHOLDER,
    ):
        self.scheduler = Scheduler(config)
        self.store = CollectionStore(self.scheduler.config)
        self.placeholder = placeholder
        self.cards: list[Card] = []
        self.parse_errors: list[ParseError] = []
        self.session = Session()
        self._by_id: dict[str, Card] = {}
        self._loaded_on: date | None = None

    # =========================================================================
    # Loading
    # =========================================================================

    def load(
        self,
        decks: Mapping[str, str] | Iterable[tuple[str, str]],
        today: date,
    ) -> int:
        """
        Parse decks and merge their cards into the store.

        Malformed blocks are skipped and kept in `parse_errors`. Loading
        discards any session in progress.

        Returns:
            Number of cards loaded (0 is a valid result)
        """
        result = parse_decks(decks, self.placeholder)
        self.cards = result.cards
        self.parse_errors = result.errors
        self._by_id = {card.id: card for card in self.cards}
        self._loaded_on = today

        inserted = self.store.merge([card.id for card in self.cards], today)
        self.session = Session()
        logger.info(f"Loaded {len(self.cards)} cards ({inserted} new)")
        return len(self.cards)

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def start_session(
        self,
        today: date,
        shuffle: bool = False,
        card_limit: int | None = None,
        new_card_limit: int | None = None,
        deck_filter: str | None = None,
        bury_siblings: bool = False,
        started_at: datetime | None = None,
    ) -> int:
        """
        Queue the cards due on `today`.

        Returns:
            Number of cards queued; 0 leaves the session NotStarted
        """
        self.session = session_engine.start_session(
            self.cards,
            self.store,
            today,
            shuffle=shuffle,
            card_limit=card_limit,
            new_card_limit=new_card_limit,
            deck_filter=deck_filter,
            bury=bury_siblings,
            started_at=started_at,
        )
        return self.session.total

    def reveal(self) -> None:
        self.session = session_engine.reveal(self.session)

    def is_revealed(self) -> bool:
        return self.session.revealed

    def grade(self, grade: Grade | str, now: datetime | date | str) -> None:
        """
        Grade the revealed card.

        Raises:
            InvalidGrade: unknown grade token
            InvalidState: no card revealed
        """
        value = Grade.parse(grade)
        moment = _as_moment(now)
        self.session = session_engine.grade(
            self.session, self.store, value, moment, self.scheduler
        )

    def undo(self) -> None:
        self.session = session_engine.undo(self.session, self.store)

    # =========================================================================
    # Current card
    # =========================================================================

    def current_card(self) -> Card:
        card_id = session_engine.current_card_id(self.session)
        if card_id is None or not self.session.is_active:
            raise InvalidState(f"No current card: session is {self.session.phase.value}")
        return self._by_id[card_id]

    def current_front(self) -> str:
        return self.current_card().front

    def current_back(self) -> str:
        return self.current_card().back

    def current_deck(self) -> str:
        return self.current_card().deck

    # =========================================================================
    # Progress
    # =========================================================================

    def progress(self) -> Progress:
        return session_engine.progress(self.session)

    def progress_fraction(self) -> float:
        """Share of the session reviewed, in [0, 1]; 0 before a session starts."""
        return self.progress().fraction

    def remaining_cards(self) -> int:
        return self.progress().remaining

    def total_cards(self) -> int:
        return self.session.total

    def is_active(self) -> bool:
        return self.session.is_active

    def is_completed(self) -> bool:
        return self.session.is_completed

    def summary(self, now: datetime | None = None) -> SessionSummary:
        return session_engine.summarize(self.session, now)

    # =========================================================================
    # Collection
    # =========================================================================

    def collection_size(self) -> int:
        return len(self.cards)

    def new_cards_count(self) -> int:
        return len(self.store.new_ids())

    def deck_names(self) -> list[str]:
        return sorted({card.deck for card in self.cards})

    def orphan_ids(self) -> list[str]:
        return self.store.orphan_ids()

    def delete_orphans(self) -> int:
        return self.store.delete_orphans()

    def export_state(self) -> str:
        return self.store.export_json()

    def import_state(self, snapshot: Mapping[str, Any] | str | bytes) -> int:
        """
        Replace all memory states with a snapshot.

        Discards any session in progress along with its undo history.

        Raises:
            FormatError: malformed snapshot; nothing is changed
        """
        count = self.store.import_state(snapshot, today=self._loaded_on)
        self.session = Session()
        return count
