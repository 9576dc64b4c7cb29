"""
Unit tests for the collection store and its snapshot format.

Run: pytest tests/unit/test_collection_store.py -v
"""
import json
from datetime import date, datetime, timedelta

import pytest

from hashdeck.card_parser import card_digest
from hashdeck.collection_store import (
    MAX_INTERVAL_DAYS,
    CollectionStore,
    dump_snapshot,
    load_snapshot,
    merge,
)
from hashdeck.errors import FormatError
from hashdeck.scheduler import MemoryState, Stage

TODAY = date(2025, 1, 1)

A = card_digest("deck", "a")
B = card_digest("deck", "b")
C = card_digest("deck", "c")


def reviewed(due=TODAY, interval=3):
    return MemoryState(
        stage=Stage.REVIEW,
        due=due,
        interval=interval,
        strength=2.6,
        lapses=1,
        reviews=4,
        last_reviewed=datetime(2024, 12, 29, 8, 15),
    )


@pytest.fixture
def store():
    store = CollectionStore()
    store.merge([A, B], TODAY)
    return store


# ========================================
# Merge
# ========================================


class TestMerge:
    def test_new_ids_get_new_state(self, store):
        assert len(store) == 2
        assert store.get(A) == MemoryState.new(TODAY)

    def test_existing_state_kept(self, store):
        store.put(A, reviewed())
        inserted = store.merge([A, B, C], TODAY + timedelta(days=5))

        assert inserted == 1
        assert store.get(A) == reviewed()
        assert store.get(C).due == TODAY + timedelta(days=5)

    def test_missing_ids_become_orphans(self, store):
        store.put(A, reviewed())
        store.merge([B], TODAY)

        assert A in store
        assert store.orphan_ids() == [A]
        assert store.active_ids == [B]
        assert not store.is_active(A)

    def test_orphan_revived_with_history(self, store):
        store.put(A, reviewed())
        store.merge([B], TODAY)
        store.merge([A, B], TODAY)

        assert store.get(A) == reviewed()
        assert store.orphan_ids() == []

    def test_merge_is_idempotent(self, store):
        before = store.states
        assert store.merge([A, B], TODAY) == 0
        assert store.states == before

    def test_pure_merge_does_not_mutate(self):
        existing = {A: reviewed()}
        merged = merge(existing, [A, B], TODAY)

        assert existing == {A: reviewed()}
        assert set(merged) == {A, B}


class TestQueries:
    def test_due_ids_in_parse_order(self, store):
        store.put(B, reviewed(due=TODAY - timedelta(days=1)))
        store.put(A, reviewed(due=TODAY + timedelta(days=1)))

        assert store.due_ids(TODAY) == [B]

    def test_new_cards_always_due(self, store):
        assert store.due_ids(TODAY - timedelta(days=100)) == [A, B]
        assert store.new_ids() == [A, B]

    def test_delete_orphans(self, store):
        store.merge([A], TODAY)

        assert store.delete_orphans() == 1
        assert B not in store
        assert store.delete_orphans() == 0

    def test_stage_counts(self, store):
        store.put(A, reviewed())
        counts = store.stage_counts()

        assert counts[Stage.NEW] == 1
        assert counts[Stage.REVIEW] == 1
        assert counts[Stage.LEARNING] == 0


# ========================================
# Snapshots
# ========================================


class TestSnapshots:
    def test_round_trip(self, store):
        store.put(A, reviewed())
        exported = store.export_json()

        other = CollectionStore()
        other.merge([A, B], TODAY)
        other.import_state(exported)

        assert other.states == store.states
        assert other.export_json() == exported

    def test_snapshot_shape(self, store):
        store.put(A, reviewed())
        snapshot = store.export_state()

        assert snapshot["version"] == 1
        assert snapshot["cards"][A] == {
            "stage": "review",
            "due": "2025-01-01",
            "interval": 3,
            "strength": 2.6,
            "lapses": 1,
            "reviews": 4,
            "last_reviewed": "2024-12-29T08:15:00",
        }

    def test_orphans_are_exported(self, store):
        store.merge([A], TODAY)
        assert B in store.export_state()["cards"]

    def test_import_fills_missing_active_ids(self, store):
        snapshot = dump_snapshot({A: reviewed()})
        store.import_state(snapshot, today=TODAY)

        assert store.get(A) == reviewed()
        assert store.get(B) == MemoryState.new(TODAY)

    def test_import_without_date_deactivates_missing_ids(self, store):
        store.import_state(dump_snapshot({A: reviewed()}))

        assert B not in store
        assert store.active_ids == [A]

    def test_accepts_mapping_and_bytes(self):
        snapshot = dump_snapshot({A: reviewed()})

        assert load_snapshot(snapshot) == {A: reviewed()}
        assert load_snapshot(json.dumps(snapshot).encode()) == {A: reviewed()}

    def test_empty_snapshot(self, store):
        assert store.import_state({"version": 1, "cards": {}}) == 0
        assert len(store) == 0


class TestInvalidSnapshots:
    """Corrupt snapshots raise FormatError and leave the store untouched."""

    def valid_record(self, **overrides):
        record = {
            "stage": "review",
            "due": "2025-01-01",
            "interval": 3,
            "strength": 2.5,
            "lapses": 0,
            "reviews": 2,
            "last_reviewed": None,
        }
        record.update(overrides)
        return record

    @pytest.mark.parametrize(
        "snapshot",
        [
            "not json",
            "[]",
            {"cards": {}},
            {"version": 2, "cards": {}},
            {"version": 1},
            {"version": 1, "cards": {}, "extra": True},
            {"version": 1, "cards": {"not-a-hash": {}}},
        ],
    )
    def test_malformed_envelope(self, store, snapshot):
        before = store.export_json()
        with pytest.raises(FormatError):
            store.import_state(snapshot)
        assert store.export_json() == before

    @pytest.mark.parametrize(
        "overrides",
        [
            {"interval": -1},
            {"interval": 2.5},
            {"interval": MAX_INTERVAL_DAYS + 1},
            {"interval": 10**400},
            {"strength": 0},
            {"strength": -1.0},
            {"lapses": -1},
            {"lapses": 3, "reviews": 2},
            {"stage": "mastered"},
            {"stage": "review", "reviews": 0},
            {"due": "tomorrow"},
            {"unknown": 1},
        ],
    )
    def test_out_of_range_record(self, store, overrides):
        snapshot = {"version": 1, "cards": {A: self.valid_record(**overrides)}}
        with pytest.raises(FormatError):
            store.import_state(snapshot)
        assert store.get(A) == MemoryState.new(TODAY)

    def test_error_names_the_field(self):
        snapshot = {"version": 1, "cards": {A: self.valid_record(interval=-1)}}
        with pytest.raises(FormatError, match="interval"):
            load_snapshot(snapshot)

    def test_longest_interval_is_accepted(self):
        snapshot = {"version": 1, "cards": {A: self.valid_record(interval=MAX_INTERVAL_DAYS)}}
        assert load_snapshot(snapshot)[A].interval == MAX_INTERVAL_DAYS
