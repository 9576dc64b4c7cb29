"""
Deck Sources: where deck text comes from.

A source hands the parser a mapping of deck file name -> text. File names
are relative POSIX paths so card ids do not depend on where the collection
lives on disk.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from loguru import logger


class DeckSource(Protocol):
    def load(self) -> dict[str, str]: ...


class DirectoryDeckSource:
    """
    Markdown decks discovered under a collection directory.

    Hidden files and directories (leading dot) are skipped.
    """

    DEFAULT_PATTERN = "**/*.md"

    def __init__(self, root: Path | str, pattern: str = DEFAULT_PATTERN):
        self.root = Path(root)
        self.pattern = pattern
        self._files_loaded: list[Path] = []

    @property
    def files_loaded(self) -> list[Path]:
        return list(self._files_loaded)

    def discover(self) -> list[Path]:
        """Deck files under root, sorted by relative path."""
        if not self.root.is_dir():
            logger.warning(f"Collection directory not found: {self.root}")
            return []

        paths = []
        for path in self.root.glob(self.pattern):
            relative = path.relative_to(self.root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            if path.is_file():
                paths.append(path)
        return sorted(paths, key=lambda p: p.relative_to(self.root).as_posix())

    def load(self) -> dict[str, str]:
        """
        Read every deck file.

        Returns:
            Relative POSIX path -> file text, in sorted order
        """
        self._files_loaded.clear()
        decks: dict[str, str] = {}

        for path in self.discover():
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.error(f"Failed to read {path}: {e}")
                continue
            decks[path.relative_to(self.root).as_posix()] = text
            self._files_loaded.append(path)

        if not decks:
            logger.warning(f"No deck files found in {self.root}")
        else:
            logger.debug(f"Read {len(decks)} deck files from {self.root}")
        return decks


class MemoryDeckSource:
    """Decks held in memory, mostly for tests and embedding hosts."""

    def __init__(self, decks: Mapping[str, str] | None = None):
        self.decks = dict(decks or {})

    def add(self, name: str, text: str) -> None:
        self.decks[name] = text

    def load(self) -> dict[str, str]:
        return dict(sorted(self.decks.items()))
