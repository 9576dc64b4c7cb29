"""
hashdeck: spaced repetition for plain-text decks.

Cards live in markdown files; their identity is a hash of their content.

Components:
- card_parser: deck text to Card records
- scheduler: memory-state transitions per grade
- collection_store: card id -> memory state, snapshots
- session_engine: the drill state machine
- Drill: imperative handle used by the CLI
- StateStore: SQLite persistence for the CLI
"""

from .card_parser import Card, CardKind, ParseResult, parse_deck, parse_decks
from .collection_store import CollectionStore
from .deck_source import DeckSource, DirectoryDeckSource, MemoryDeckSource
from .drill import KEYBINDINGS, AnswerControls, Drill
from .errors import (
    FormatError,
    HashdeckError,
    InvalidGrade,
    InvalidState,
    NothingToUndo,
    ParseError,
)
from .scheduler import Grade, MemoryState, Scheduler, SchedulerConfig, Stage
from .session_engine import Progress, Session, SessionPhase
from .state_store import StateStore

__version__ = "0.1.0"

__all__ = [
    # Parsing
    "Card",
    "CardKind",
    "ParseResult",
    "parse_deck",
    "parse_decks",
    # Sources
    "DeckSource",
    "DirectoryDeckSource",
    "MemoryDeckSource",
    # Scheduling
    "Grade",
    "Stage",
    "MemoryState",
    "Scheduler",
    "SchedulerConfig",
    # Collection
    "CollectionStore",
    "StateStore",
    # Sessions
    "Drill",
    "KEYBINDINGS",
    "AnswerControls",
    "Session",
    "SessionPhase",
    "Progress",
    # Errors
    "HashdeckError",
    "ParseError",
    "InvalidState",
    "NothingToUndo",
    "FormatError",
    "InvalidGrade",
]
