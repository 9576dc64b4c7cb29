"""
Session Engine: the drill state machine.

    NotStarted --start (queue non-empty)--> Active --last grade--> Completed
                                              ^                       |
                                              +--------undo-----------+

Sessions are immutable values: every operation takes a Session and returns
a new one. The CollectionStore is the only thing mutated (by grade and undo).

Rules:
- reveal needs Active with a card in the queue; repeating it is a no-op
- grade needs the current card revealed
- undo needs history; it restores the prior state and re-queues the card
"""

from __future__ import annotations

import random
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum

from loguru import logger

from .card_parser import Card
from .collection_store import CollectionStore
from .errors import InvalidState, NothingToUndo
from .scheduler import Grade, MemoryState, Scheduler

# =============================================================================
# Session Value
# =============================================================================


class SessionPhase(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class HistoryEntry:
    """One completed grading, enough to undo it."""

    card_id: str
    grade: Grade
    prior: MemoryState
    reviewed_at: datetime | date | None = None


@dataclass(frozen=True)
class Session:
    """A drill in progress. `queue[0]` is the current card."""

    phase: SessionPhase = SessionPhase.NOT_STARTED
    queue: tuple[str, ...] = ()
    history: tuple[HistoryEntry, ...] = ()
    revealed: bool = False
    total: int = 0
    started_at: datetime | None = None

    @property
    def current(self) -> str | None:
        return self.queue[0] if self.queue else None

    @property
    def is_active(self) -> bool:
        return self.phase is SessionPhase.ACTIVE

    @property
    def is_completed(self) -> bool:
        return self.phase is SessionPhase.COMPLETED


@dataclass(frozen=True)
class Progress:
    reviewed: int
    remaining: int
    total: int

    @property
    def fraction(self) -> float:
        if self.total == 0:
            return 0.0
        return self.reviewed / self.total


@dataclass
class SessionSummary:
    """End-of-session numbers for the CLI summary panel."""

    reviewed: int = 0
    remaining: int = 0
    grades: dict[Grade, int] = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    @property
    def seconds_per_card(self) -> float:
        if self.reviewed == 0:
            return 0.0
        return self.elapsed_seconds / self.reviewed

    @property
    def recall_rate(self) -> float:
        if self.reviewed == 0:
            return 0.0
        return 1 - self.grades.get(Grade.FORGOT, 0) / self.reviewed


# =============================================================================
# Queue Building
# =============================================================================


def bury_siblings(cards: Sequence[Card]) -> list[Card]:
    """Keep only the first card of every cloze family."""
    seen: set[str] = set()
    result = []
    for card in cards:
        if card.family is not None:
            if card.family in seen:
                continue
            seen.add(card.family)
        result.append(card)
    return result


def select_due(
    cards: Sequence[Card],
    store: CollectionStore,
    today: date,
    *,
    card_limit: int | None = None,
    new_card_limit: int | None = None,
    deck_filter: str | None = None,
    bury: bool = False,
) -> list[Card]:
    """
    Pick the cards for a session, in parse order.

    New cards are capped first, then the whole selection.
    """
    due = [
        card
        for card in cards
        if store.is_active(card.id) and store.get(card.id).is_due(today)
    ]
    if deck_filter is not None:
        due = [card for card in due if card.deck == deck_filter]
    if bury:
        due = bury_siblings(due)

    if new_card_limit is not None:
        kept = []
        new_count = 0
        for card in due:
            if store.get(card.id).is_new:
                if new_count >= new_card_limit:
                    continue
                new_count += 1
            kept.append(card)
        due = kept

    if card_limit is not None:
        due = due[: max(card_limit, 0)]
    return due


# =============================================================================
# Operations
# =============================================================================


def start_session(
    cards: Sequence[Card],
    store: CollectionStore,
    today: date,
    *,
    shuffle: bool = False,
    card_limit: int | None = None,
    new_card_limit: int | None = None,
    deck_filter: str | None = None,
    bury: bool = False,
    started_at: datetime | None = None,
    rng: random.Random | None = None,
) -> Session:
    """
    Build the review queue for `today`.

    Returns:
        Active session, or a NotStarted one with an empty queue when nothing
        is due
    """
    selected = select_due(
        cards,
        store,
        today,
        card_limit=card_limit,
        new_card_limit=new_card_limit,
        deck_filter=deck_filter,
        bury=bury,
    )
    queue = [card.id for card in selected]
    if shuffle:
        (rng or random.Random()).shuffle(queue)

    if not queue:
        logger.info(f"No cards due on {today}")
        return Session()

    new_count = sum(1 for card_id in queue if store.get(card_id).is_new)
    logger.info(
        f"Session started: {len(queue) - new_count} due + {new_count} new = {len(queue)} cards"
    )
    return Session(
        phase=SessionPhase.ACTIVE,
        queue=tuple(queue),
        total=len(queue),
        started_at=started_at,
    )


def current_card_id(session: Session) -> str | None:
    return session.current


def reveal(session: Session) -> Session:
    if not session.is_active or not session.queue:
        raise InvalidState(f"Cannot reveal: session is {session.phase.value}")
    if session.revealed:
        return session
    return replace(session, revealed=True)


def grade(
    session: Session,
    store: CollectionStore,
    value: Grade,
    now: datetime | date,
    scheduler: Scheduler | None = None,
) -> Session:
    """
    Grade the current card and advance.

    Raises:
        InvalidState: if the session is not Active or the card is hidden
    """
    if not session.is_active or not session.queue:
        raise InvalidState(f"Cannot grade: session is {session.phase.value}")
    if not session.revealed:
        raise InvalidState("Cannot grade: reveal the card first")

    scheduler = scheduler or Scheduler(store.config)
    card_id = session.queue[0]
    prior = store.get(card_id)
    store.put(card_id, scheduler.next_state(prior, value, now))

    queue = session.queue[1:]
    return replace(
        session,
        phase=SessionPhase.ACTIVE if queue else SessionPhase.COMPLETED,
        queue=queue,
        history=session.history + (HistoryEntry(card_id, value, prior, now),),
        revealed=False,
    )


def undo(session: Session, store: CollectionStore) -> Session:
    """
    Revert the most recent grade.

    Raises:
        NothingToUndo: if no grade has been recorded
    """
    if not session.history:
        raise NothingToUndo("Nothing to undo")

    entry = session.history[-1]
    store.put(entry.card_id, entry.prior)
    logger.debug(f"Undid {entry.grade.value} on {entry.card_id[:12]}")
    return replace(
        session,
        phase=SessionPhase.ACTIVE,
        queue=(entry.card_id,) + session.queue,
        history=session.history[:-1],
        revealed=False,
    )


def progress(session: Session) -> Progress:
    remaining = len(session.queue)
    return Progress(
        reviewed=session.total - remaining,
        remaining=remaining,
        total=session.total,
    )


def summarize(session: Session, now: datetime | None = None) -> SessionSummary:
    counts = Counter(entry.grade for entry in session.history)
    elapsed = 0.0
    if now is not None and session.started_at is not None:
        elapsed = max(0.0, (now - session.started_at).total_seconds())
    return SessionSummary(
        reviewed=len(session.history),
        remaining=len(session.queue),
        grades={g: counts.get(g, 0) for g in Grade},
        elapsed_seconds=elapsed,
    )
