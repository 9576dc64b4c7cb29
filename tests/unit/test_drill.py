"""
Unit tests for the Drill handle.

Run: pytest tests/unit/test_drill.py -v
"""
import json
from datetime import timedelta

import pytest

from hashdeck.collection_store import MAX_INTERVAL_DAYS
from hashdeck.drill import KEYBINDINGS, AnswerControls, Drill
from hashdeck.errors import FormatError, InvalidGrade, InvalidState, NothingToUndo
from hashdeck.scheduler import Grade, SchedulerConfig


@pytest.fixture
def drill(sample_decks, today):
    drill = Drill()
    drill.load(sample_decks, today)
    return drill


class TestLoad:
    def test_counts(self, drill):
        assert drill.collection_size() == 4
        assert drill.new_cards_count() == 4
        assert drill.deck_names() == ["Geography", "biology"]
        assert drill.parse_errors == []

    def test_empty_collection(self, today):
        drill = Drill()

        assert drill.load({}, today) == 0
        assert drill.start_session(today) == 0
        assert not drill.is_active()

    def test_parse_errors_do_not_raise(self, today):
        drill = Drill()
        loaded = drill.load({"bad.md": "A: no question\n\nQ: a\nA: b\n"}, today)

        assert loaded == 1
        assert len(drill.parse_errors) == 1

    def test_reload_keeps_progress(self, drill, sample_decks, today, now):
        drill.start_session(today, card_limit=1)
        drill.reveal()
        drill.grade("good", now)
        drill.load(sample_decks, today)

        assert drill.new_cards_count() == 3

    def test_edited_card_leaves_orphan(self, drill, today, now):
        drill.start_session(today, card_limit=1)
        drill.reveal()
        drill.grade("good", now)
        drill.load({"geography.md": "Q: Edited?\nA: Yes\n"}, today)

        assert drill.collection_size() == 1
        assert len(drill.orphan_ids()) == 4
        assert drill.delete_orphans() == 4
        assert drill.orphan_ids() == []


class TestSession:
    def test_single_card_scenario(self, drill, today, now):
        assert drill.start_session(today, card_limit=1) == 1
        assert drill.current_front() == "What is the capital of France?"
        assert drill.current_deck() == "Geography"

        drill.reveal()
        assert drill.is_revealed()
        assert drill.current_back() == "Paris"

        drill.grade("good", now)
        assert drill.is_completed()
        assert drill.remaining_cards() == 0
        assert drill.total_cards() == 1
        with pytest.raises(InvalidState):
            drill.reveal()
        with pytest.raises(InvalidState):
            drill.current_front()

    def test_cloze_faces(self, drill, today):
        drill.start_session(today, deck_filter="biology")

        assert drill.current_front() == "The [...] is the powerhouse of the cell."
        assert drill.current_back() == "The mitochondrion is the powerhouse of the cell."

    def test_grade_before_reveal(self, drill, today, now):
        drill.start_session(today)
        with pytest.raises(InvalidState):
            drill.grade("good", now)

    def test_unknown_grade(self, drill, today, now):
        drill.start_session(today)
        drill.reveal()
        with pytest.raises(InvalidGrade):
            drill.grade("perfect", now)
        assert drill.is_revealed()

    def test_grade_accepts_iso_time(self, drill, today):
        drill.start_session(today)
        drill.reveal()
        drill.grade(Grade.EASY, "2025-01-01T10:00:00")

        assert drill.progress().reviewed == 1

    def test_undo(self, drill, today, now):
        drill.start_session(today)
        with pytest.raises(NothingToUndo):
            drill.undo()

        front = drill.current_front()
        drill.reveal()
        drill.grade("forgot", now)
        drill.undo()

        assert drill.current_front() == front
        assert not drill.is_revealed()
        assert drill.new_cards_count() == 4

    def test_progress_fraction(self, drill, today, now):
        assert drill.progress_fraction() == 0.0

        drill.start_session(today)
        drill.reveal()
        drill.grade("good", now)

        assert drill.progress_fraction() == pytest.approx(0.25)

    def test_dates_are_required(self, drill, sample_decks, today):
        with pytest.raises(TypeError):
            drill.load(sample_decks)
        with pytest.raises(TypeError):
            drill.start_session()

        drill.start_session(today)
        drill.reveal()
        with pytest.raises(TypeError):
            drill.grade("good")

    def test_full_session(self, drill, today, now):
        drill.start_session(today, shuffle=True)
        for token in ("forgot", "hard", "good", "easy"):
            drill.reveal()
            drill.grade(token, now)

        assert drill.is_completed()
        summary = drill.summary(now)
        assert summary.reviewed == 4
        assert all(count == 1 for count in summary.grades.values())

    def test_next_day(self, drill, today, now):
        drill.start_session(today)
        for _ in range(4):
            drill.reveal()
            drill.grade("good", now)

        assert drill.start_session(today) == 0
        assert drill.start_session(today + timedelta(days=1)) == 4

    def test_custom_config(self, sample_decks, today, now):
        drill = Drill(SchedulerConfig(learning_intervals={Grade.GOOD: 7}))
        drill.load(sample_decks, today)
        drill.start_session(today, card_limit=1)
        drill.reveal()
        drill.grade("good", now)

        assert drill.start_session(today + timedelta(days=6)) == 3


class TestSnapshots:
    def test_export_is_json(self, drill):
        snapshot = json.loads(drill.export_state())

        assert snapshot["version"] == 1
        assert len(snapshot["cards"]) == 4

    def test_round_trip(self, drill, sample_decks, today, now):
        drill.start_session(today)
        drill.reveal()
        drill.grade("easy", now)
        exported = drill.export_state()

        other = Drill()
        other.load(sample_decks, today)
        other.import_state(exported)

        assert other.export_state() == exported
        assert other.new_cards_count() == 3

    def test_import_discards_session(self, drill, today, now):
        before = drill.export_state()
        drill.start_session(today)
        drill.reveal()
        drill.grade("forgot", now)
        drill.import_state(before)

        assert not drill.is_active()
        with pytest.raises(NothingToUndo):
            drill.undo()
        assert drill.export_state() == before

    def test_longest_imported_interval_still_grades(self, drill, today, now):
        card_id = drill.cards[0].id
        record = {
            "stage": "review",
            "due": today.isoformat(),
            "interval": MAX_INTERVAL_DAYS,
            "strength": 2.5,
            "lapses": 0,
            "reviews": 9,
            "last_reviewed": None,
        }
        drill.import_state({"version": 1, "cards": {card_id: record}})
        drill.start_session(today, card_limit=1)
        drill.reveal()
        drill.grade("good", now)

        assert drill.store.get(card_id).interval == drill.scheduler.config.max_interval

    def test_bad_import_leaves_state(self, drill):
        before = drill.export_state()
        with pytest.raises(FormatError):
            drill.import_state('{"version": 1, "cards": {"x": {}}}')
        assert drill.export_state() == before


def test_keybindings():
    assert KEYBINDINGS == {
        " ": "reveal",
        "u": "undo",
        "1": "forgot",
        "2": "hard",
        "3": "good",
        "4": "easy",
    }


@pytest.mark.parametrize(
    "controls,grades",
    [
        (AnswerControls.FULL, (Grade.FORGOT, Grade.HARD, Grade.GOOD, Grade.EASY)),
        (AnswerControls.BINARY, (Grade.FORGOT, Grade.GOOD)),
    ],
)
def test_answer_controls(controls, grades):
    assert controls.grades == grades
