"""
Card Parser: deck text to Card records.

Deck syntax (one deck per file):

    ---
    name = "Cell Biology"
    ---

    Q: What is the powerhouse of the cell?
    A: The mitochondrion.

    C: DNA is transcribed into [mRNA] in the [nucleus].

- `Q:` starts a question, `A:` its answer, `C:` a cloze block
- Continuation lines extend whatever is being read
- A blank line (or `---`) ends a card
- Fenced code (``` / ~~~) and `$$` math blocks are never split
- The optional TOML front matter sets the deck name

Malformed blocks are recorded as ParseError and skipped; the rest of the
deck still parses.
"""

from __future__ import annotations

import hashlib
import posixpath
import tomllib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from .errors import ParseError

QUESTION_MARKER = "Q:"
ANSWER_MARKER = "A:"
CLOZE_MARKER = "C:"
SEPARATOR = "---"
CLOZE_PLACEHOLDER = "[...]"

# =============================================================================
# Card Data Class
# =============================================================================


class CardKind(str, Enum):
    """Variant of a card."""

    QUESTION_ANSWER = "question_answer"
    CLOZE = "cloze"


@dataclass(frozen=True)
class Card:
    """
    A unit of study content.

    `front` and `back` are markup-ready text. For cloze cards `cloze_span`
    holds the (start, end) offsets of the hidden text inside `back`, and
    `family` is shared by every card cut from the same cloze block.
    """

    id: str
    deck: str
    kind: CardKind
    front: str
    back: str

    # Diagnostics only, never part of the identity
    source: str = ""
    line: int = 0

    family: str | None = None
    cloze_span: tuple[int, int] | None = None

    @property
    def is_cloze(self) -> bool:
        return self.kind is CardKind.CLOZE

    @property
    def answer_text(self) -> str:
        """The part of the back the learner had to recall."""
        if self.cloze_span is None:
            return self.back
        start, end = self.cloze_span
        return self.back[start:end]


@dataclass
class ParseResult:
    """Cards parsed from one or more decks plus the recovered errors."""

    cards: list[Card] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def deck_names(self) -> list[str]:
        return sorted({card.deck for card in self.cards})

    def __len__(self) -> int:
        return len(self.cards)


# =============================================================================
# Identity
# =============================================================================


def normalize(text: str) -> str:
    """Unify line endings, strip trailing whitespace and outer blank lines."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return "\n".join(line.rstrip() for line in text.split("\n")).strip("\n")


def card_digest(*parts: str) -> str:
    """SHA-256 over NUL-terminated parts."""
    hasher = hashlib.sha256()
    for part in parts:
        hasher.update(part.encode("utf-8"))
        hasher.update(b"\x00")
    return hasher.hexdigest()


def deck_name_from_filename(filename: str) -> str:
    """`lang/french.md` -> `lang/french`."""
    stem, _ = posixpath.splitext(filename.replace("\\", "/"))
    return stem or filename


# =============================================================================
# Front Matter
# =============================================================================


@dataclass
class FrontMatter:
    """Deck-level settings from the leading `---` block."""

    name: str | None = None
    body: str = ""
    line_offset: int = 0
    error: ParseError | None = None


def split_front_matter(text: str, source: str) -> FrontMatter:
    """
    Separate the optional TOML front matter from the deck body.

    A leading `---` without a closing `---` is not front matter; it is left
    in the body where it acts as a plain separator.
    """
    lines = text.split("\n")
    if not lines or lines[0].strip() != SEPARATOR:
        return FrontMatter(body=text)

    closing = next(
        (idx for idx in range(1, len(lines)) if lines[idx].strip() == SEPARATOR),
        None,
    )
    if closing is None:
        return FrontMatter(body=text)

    body = "\n".join(lines[closing + 1 :])
    raw = "\n".join(lines[1:closing])
    try:
        metadata = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        error = ParseError(f"Failed to parse TOML front matter: {e}.", source, 0)
        return FrontMatter(body=body, line_offset=closing + 1, error=error)

    name = metadata.get("name")
    if name is not None and not isinstance(name, str):
        error = ParseError("Front matter 'name' must be a string.", source, 0)
        return FrontMatter(body=body, line_offset=closing + 1, error=error)

    return FrontMatter(name=name or None, body=body, line_offset=closing + 1)


# =============================================================================
# Cloze Scanning
# =============================================================================


@dataclass
class ClozeScan:
    """A cloze block with its deletion brackets removed."""

    clean: str
    spans: list[tuple[int, int]]
    problems: list[str]


def scan_cloze(text: str) -> ClozeScan:
    """
    Find the `[...]` deletions of a cloze block.

    Image brackets (`![alt](url)`), inline code and fenced blocks are opaque,
    `\\[` and `\\]` are literal brackets. Unbalanced brackets stay in the
    text as literals and produce no deletion.
    """
    clean: list[str] = []
    spans: list[tuple[int, int]] = []
    problems: list[str] = []
    open_at: int | None = None
    fence: str | None = None

    for line_idx, line in enumerate(text.split("\n")):
        if line_idx:
            clean.append("\n")

        fence, opaque = _track_fence(fence, line)
        if opaque:
            clean.extend(line)
            continue

        in_image = False
        in_code = False
        i = 0
        while i < len(line):
            ch = line[i]
            nxt = line[i + 1] if i + 1 < len(line) else ""
            if ch == "\\" and nxt in ("[", "]"):
                clean.append(nxt)
                i += 2
                continue
            if ch == "`":
                in_code = not in_code
                clean.append(ch)
            elif in_code:
                clean.append(ch)
            elif ch == "!" and nxt == "[" and not in_image:
                in_image = True
                clean.extend("![")
                i += 2
                continue
            elif ch == "]" and in_image:
                in_image = False
                clean.append(ch)
            elif ch == "[":
                if open_at is not None:
                    problems.append("Cloze deletion opened twice without closing.")
                    clean.insert(open_at, "[")
                open_at = len(clean)
            elif ch == "]":
                if open_at is None:
                    problems.append("Unmatched ']' in cloze block.")
                    clean.append(ch)
                elif open_at == len(clean):
                    problems.append("Empty cloze deletion.")
                    clean.extend("[]")
                    open_at = None
                else:
                    spans.append((open_at, len(clean)))
                    open_at = None
            else:
                clean.append(ch)
            i += 1

    if open_at is not None:
        problems.append("Unclosed '[' in cloze block.")
        clean.insert(open_at, "[")

    return ClozeScan(clean="".join(clean), spans=spans, problems=problems)


def _track_fence(fence: str | None, line: str) -> tuple[str | None, bool]:
    """Return the fence state after `line` and whether `line` is opaque."""
    stripped = line.strip()
    if fence is not None:
        if fence == "$$":
            closed = "$$" in stripped
        else:
            closed = stripped.startswith(fence)
        return (None if closed else fence), True

    for marker in ("```", "~~~"):
        if stripped.startswith(marker):
            return marker, True
    if stripped.startswith("$$") and (stripped == "$$" or stripped.count("$$") == 1):
        return "$$", True
    return None, False


# =============================================================================
# Deck Parser
# =============================================================================


class _State(Enum):
    INITIAL = "initial"
    QUESTION = "question"
    ANSWER = "answer"
    CLOZE = "cloze"
    SKIPPING = "skipping"


class _Line(Enum):
    QUESTION = "question"
    ANSWER = "answer"
    CLOZE = "cloze"
    SEPARATOR = "separator"
    BLANK = "blank"
    TEXT = "text"


def _classify(line: str) -> tuple[_Line, str]:
    if line.startswith(QUESTION_MARKER):
        return _Line.QUESTION, line[2:].strip()
    if line.startswith(ANSWER_MARKER):
        return _Line.ANSWER, line[2:].strip()
    if line.startswith(CLOZE_MARKER):
        return _Line.CLOZE, line[2:].strip()
    if line.strip() == SEPARATOR:
        return _Line.SEPARATOR, ""
    if not line.strip():
        return _Line.BLANK, ""
    return _Line.TEXT, line


class DeckParser:
    """
    Line-oriented parser for a single deck body.

    Pure: the same (deck, text) always yields the same cards and errors.
    """

    def __init__(self, deck: str, source: str = "", placeholder: str = CLOZE_PLACEHOLDER):
        self.deck = deck
        self.source = source or deck
        self.placeholder = placeholder

    def parse(self, text: str, line_offset: int = 0) -> ParseResult:
        """
        Parse all cards in `text`.

        Args:
            text: Deck body (front matter already removed)
            line_offset: Line number of the body's first line in its file

        Returns:
            ParseResult with cards in source order, duplicates removed
        """
        result = ParseResult()
        self._result = result
        self._offset = line_offset
        self._state = _State.INITIAL
        self._buffer: list[str] = []
        self._question = ""
        self._start = 0

        fence: str | None = None
        lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        for line_num, raw in enumerate(lines):
            fence, opaque = _track_fence(fence, raw)
            if opaque:
                kind, content = _Line.TEXT, raw
            else:
                kind, content = _classify(raw)
            self._feed(kind, content, line_num)

        last_line = max(len(lines) - 1, 0)
        if fence is not None and self._state in (_State.QUESTION, _State.ANSWER, _State.CLOZE):
            self._error(f"Unclosed '{fence}' block at end of deck.", self._start)
        else:
            self._finish(last_line, at_end=True)

        seen: set[str] = set()
        unique: list[Card] = []
        for card in result.cards:
            if card.id not in seen:
                seen.add(card.id)
                unique.append(card)
        result.cards = unique
        return result

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    def _feed(self, kind: _Line, content: str, line_num: int) -> None:
        state = self._state

        if state is _State.SKIPPING:
            if kind in (_Line.BLANK, _Line.SEPARATOR):
                self._state = _State.INITIAL
            return

        if state is _State.INITIAL:
            if kind is _Line.QUESTION:
                self._begin(_State.QUESTION, content, line_num)
            elif kind is _Line.CLOZE:
                self._begin(_State.CLOZE, content, line_num)
            elif kind is _Line.ANSWER:
                self._error("Found answer tag without a question.", line_num)
                self._state = _State.SKIPPING
            return

        if state is _State.QUESTION:
            if kind is _Line.ANSWER:
                self._question = "\n".join(self._buffer)
                self._buffer = [content]
                self._state = _State.ANSWER
            elif kind is _Line.TEXT:
                self._buffer.append(content)
            elif kind in (_Line.QUESTION, _Line.CLOZE):
                self._error("New card started before the question was answered.", line_num)
                self._state = _State.SKIPPING
            elif kind is _Line.SEPARATOR:
                self._error("Found flashcard separator while reading a question.", line_num)
                self._state = _State.INITIAL
            else:
                self._error("Question ended without an answer.", self._start)
                self._state = _State.INITIAL
            return

        # ANSWER or CLOZE
        if kind is _Line.TEXT:
            self._buffer.append(content)
        elif kind in (_Line.BLANK, _Line.SEPARATOR):
            self._finish(line_num)
            self._state = _State.INITIAL
        elif kind is _Line.ANSWER:
            where = "an answer" if state is _State.ANSWER else "a cloze card"
            self._error(f"Found answer tag while reading {where}.", line_num)
            self._state = _State.SKIPPING
        else:
            self._finish(line_num)
            self._error("Card marker must be preceded by a blank line.", line_num)
            self._state = _State.SKIPPING

    def _begin(self, state: _State, content: str, line_num: int) -> None:
        self._state = state
        self._buffer = [content]
        self._question = ""
        self._start = line_num

    def _finish(self, line_num: int, at_end: bool = False) -> None:
        state = self._state
        if state is _State.ANSWER:
            self._emit_question_answer(self._question, "\n".join(self._buffer))
        elif state is _State.CLOZE:
            self._emit_cloze("\n".join(self._buffer))
        elif state is _State.QUESTION and at_end:
            self._error("File ended while reading a question without answer.", line_num)
        self._state = _State.INITIAL

    def _error(self, message: str, line_num: int) -> None:
        self._result.errors.append(ParseError(message, self.source, line_num + self._offset))

    # -------------------------------------------------------------------------
    # Card construction
    # -------------------------------------------------------------------------

    def _emit_question_answer(self, question: str, answer: str) -> None:
        question = normalize(question)
        answer = normalize(answer)
        if not question or not answer:
            self._error("Question and answer must both have text.", self._start)
            return
        card_id = card_digest(self.deck, CardKind.QUESTION_ANSWER.value, question, answer)
        self._result.cards.append(
            Card(
                id=card_id,
                deck=self.deck,
                kind=CardKind.QUESTION_ANSWER,
                front=question,
                back=answer,
                source=self.source,
                line=self._start + self._offset,
            )
        )

    def _emit_cloze(self, text: str) -> None:
        scan = scan_cloze(normalize(text))
        for problem in scan.problems:
            self._error(problem, self._start)
        if not scan.spans:
            self._error("Cloze card must contain at least one cloze deletion.", self._start)
            return

        clean = scan.clean
        family = card_digest(self.deck, "cloze-family", clean)
        for start, end in scan.spans:
            card_id = card_digest(self.deck, CardKind.CLOZE.value, clean, f"{start}:{end}")
            self._result.cards.append(
                Card(
                    id=card_id,
                    deck=self.deck,
                    kind=CardKind.CLOZE,
                    front=clean[:start] + self.placeholder + clean[end:],
                    back=clean,
                    source=self.source,
                    line=self._start + self._offset,
                    family=family,
                    cloze_span=(start, end),
                )
            )


# =============================================================================
# Entry Points
# =============================================================================


def parse_deck(filename: str, text: str, placeholder: str = CLOZE_PLACEHOLDER) -> ParseResult:
    """Parse one deck file, honouring its front matter."""
    front = split_front_matter(text, filename)
    deck = front.name or deck_name_from_filename(filename)
    result = DeckParser(deck, filename, placeholder).parse(front.body, front.line_offset)
    if front.error is not None:
        result.errors.insert(0, front.error)
    return result


def parse_decks(
    decks: Mapping[str, str] | Iterable[tuple[str, str]],
    placeholder: str = CLOZE_PLACEHOLDER,
) -> ParseResult:
    """
    Parse several deck files into one ordered card list.

    Args:
        decks: Mapping (or pairs) of file name -> deck text
        placeholder: Text shown in place of the hidden cloze span

    Returns:
        ParseResult; an empty card list is a valid outcome
    """
    items = decks.items() if isinstance(decks, Mapping) else decks
    combined = ParseResult()
    seen: set[str] = set()

    for filename, text in items:
        result = parse_deck(filename, text, placeholder)
        for card in result.cards:
            if card.id in seen:
                logger.debug(f"Skipping duplicate card {card.id[:12]} in {filename}")
                continue
            seen.add(card.id)
            combined.cards.append(card)
        combined.errors.extend(result.errors)

    for error in combined.errors:
        logger.warning(f"Parse error: {error}")

    logger.info(
        f"Parsed {len(combined.cards)} cards from {len(combined.deck_names)} decks "
        f"({len(combined.errors)} errors)"
    )
    return combined
