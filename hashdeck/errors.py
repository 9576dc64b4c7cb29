"""
Error taxonomy for hashdeck.

- ParseError: malformed block-level deck syntax, recovered per block
- InvalidState: reveal/grade/undo called out of sequence
- FormatError: corrupt or out-of-range import snapshot
- InvalidGrade: unknown grade token

An empty parse or an empty session is not an error: callers get 0 back.
"""

from __future__ import annotations


class HashdeckError(Exception):
    """Base class for every error raised by hashdeck."""


class ParseError(HashdeckError):
    """A deck block that could not be turned into a card."""

    def __init__(self, message: str, source: str, line: int):
        self.message = message
        self.source = source
        self.line = line  # 0-based
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{self.message} Location: {self.source}:{self.line + 1}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParseError):
            return NotImplemented
        return (self.message, self.source, self.line) == (
            other.message,
            other.source,
            other.line,
        )

    def __hash__(self) -> int:
        return hash((self.message, self.source, self.line))


class InvalidState(HashdeckError):
    """Operation rejected because the session is not in the right state."""


class NothingToUndo(InvalidState):
    """Undo requested with an empty history."""


class FormatError(HashdeckError):
    """A snapshot could not be imported."""


class InvalidGrade(HashdeckError, ValueError):
    """A grade token outside forgot/hard/good/easy."""
