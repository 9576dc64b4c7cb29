"""
Unit tests for the hashdeck CLI.

Commands run in-process through typer's CliRunner against a temporary
collection and state database.
Run: pytest tests/unit/test_cli.py -v
"""
import json

import pytest
from typer.testing import CliRunner

from hashdeck.card_parser import card_digest
from hashdeck.cli import app, dispatch_key, key_help
from hashdeck.drill import AnswerControls
from hashdeck.state_store import StateStore

runner = CliRunner()


@pytest.fixture
def db(tmp_path):
    return tmp_path / "state.db"


def invoke(*args, input=None):
    return runner.invoke(app, [str(a) for a in args], input=input)


# ========================================
# Key Dispatch
# ========================================


class TestDispatchKey:
    @pytest.mark.parametrize(
        "key,action",
        [
            (" ", "reveal"),
            ("", "reveal"),
            ("u", "undo"),
            ("1", "forgot"),
            ("2", "hard"),
            ("3", "good"),
            ("4", "easy"),
            ("q", "quit"),
            ("Good", "good"),
        ],
    )
    def test_known_keys(self, key, action):
        assert dispatch_key(key) == action

    def test_unknown_key(self):
        assert dispatch_key("x") is None

    @pytest.mark.parametrize("key", ["2", "4", "hard", "easy"])
    def test_binary_controls_refuse_hard_and_easy(self, key):
        assert dispatch_key(key, AnswerControls.BINARY) is None

    @pytest.mark.parametrize(
        "key,action",
        [("1", "forgot"), ("3", "good"), (" ", "reveal"), ("u", "undo"), ("q", "quit")],
    )
    def test_binary_controls_keep_other_keys(self, key, action):
        assert dispatch_key(key, AnswerControls.BINARY) == action

    def test_key_help_lists_offered_grades(self):
        assert "2 hard" in key_help()
        binary = key_help(AnswerControls.BINARY)
        assert "1 forgot" in binary
        assert "3 good" in binary
        assert "hard" not in binary
        assert "easy" not in binary


# ========================================
# Commands
# ========================================


class TestDrillCommand:
    def test_single_card_session(self, collection_dir, db):
        result = invoke("drill", collection_dir, "--db", db, "--card-limit", "1", input="\n3\n")

        assert result.exit_code == 0, result.output
        assert "Session Complete!" in result.output

        state = StateStore(db)
        reviews = state.get_recent_reviews()
        assert [r.grade for r in reviews] == ["good"]
        assert state.load_snapshot() is not None
        state.close()

    def test_nothing_due_after_review(self, collection_dir, db):
        invoke(
            "drill", collection_dir, "--db", db, "--no-shuffle", "--no-bury-siblings",
            input="\n3\n" * 4,
        )
        result = invoke("drill", collection_dir, "--db", db)

        assert result.exit_code == 0
        assert "Nothing due" in result.output

    def test_undo_removes_logged_review(self, collection_dir, db):
        result = invoke("drill", collection_dir, "--db", db, input="\n1\nu\nq\n")

        assert result.exit_code == 0, result.output
        state = StateStore(db)
        assert state.get_recent_reviews() == []
        state.close()

    def test_siblings_buried_by_default(self, collection_dir, db):
        result = invoke("drill", collection_dir, "--db", db, input="")

        assert "Session: 3 cards" in result.output

    def test_binary_controls(self, collection_dir, db):
        result = invoke(
            "drill", collection_dir, "--db", db, "--answer-controls", "binary",
            "--card-limit", "1", input="\n2\n3\n",
        )

        assert result.exit_code == 0, result.output
        assert "Unknown key" in result.output
        state = StateStore(db)
        assert [r.grade for r in state.get_recent_reviews()] == ["good"]
        state.close()

    def test_grade_before_reveal_is_refused(self, collection_dir, db):
        result = invoke("drill", collection_dir, "--db", db, input="3\nq\n")

        assert result.exit_code == 0
        assert "Reveal the card first" in result.output

    def test_end_of_input_interrupts(self, collection_dir, db):
        result = invoke("drill", collection_dir, "--db", db, input="")

        assert result.exit_code == 0
        assert "interrupted" in result.output

    def test_empty_collection(self, tmp_path, db):
        result = invoke("drill", tmp_path, "--db", db)

        assert result.exit_code == 1
        assert "No cards found" in result.output


class TestCheckCommand:
    def test_clean_collection(self, collection_dir):
        result = invoke("check", collection_dir)

        assert result.exit_code == 0
        assert "4 cards in 2 decks" in result.output

    def test_reports_errors(self, tmp_path):
        (tmp_path / "bad.md").write_text("A: answer first\n", encoding="utf-8")
        result = invoke("check", tmp_path)

        assert result.exit_code == 1
        assert "1 parse errors" in result.output


class TestStatsCommand:
    def test_stats(self, collection_dir, db):
        result = invoke("stats", collection_dir, "--db", db)

        assert result.exit_code == 0, result.output
        assert "Collection Statistics" in result.output

    def test_json_format(self, collection_dir, db):
        invoke("drill", collection_dir, "--db", db, "--card-limit", "1", input="\n3\n")
        result = invoke("stats", collection_dir, "--db", db, "--format", "json")

        assert result.exit_code == 0, result.output
        figures = json.loads(result.output)
        assert figures["cards"] == 4
        assert figures["decks"] == 2
        assert figures["stages"] == {"new": 3, "learning": 1, "review": 0, "relapsed": 0}
        assert figures["total_reviews"] == 1
        assert figures["sessions_completed"] == 1
        assert figures["recent_sessions"][0]["cards_reviewed"] == 1


class TestSnapshotCommands:
    def test_export_stdout(self, collection_dir, db):
        result = invoke("export", collection_dir, "--db", db)

        assert result.exit_code == 0
        snapshot = json.loads(result.output)
        assert len(snapshot["cards"]) == 4

    def test_export_then_import(self, collection_dir, db, tmp_path):
        out = tmp_path / "backup.json"
        assert invoke("export", collection_dir, "--db", db, "--output", out).exit_code == 0

        other_db = tmp_path / "other.db"
        result = invoke("import", out, "--dir", collection_dir, "--db", other_db)

        assert result.exit_code == 0, result.output
        assert "Imported 4 states" in result.output
        state = StateStore(other_db)
        assert json.loads(state.load_snapshot()) == json.loads(out.read_text())
        state.close()

    def test_import_rejects_bad_snapshot(self, collection_dir, db, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text('{"version": 99, "cards": {}}')
        result = invoke("import", bad, "--dir", collection_dir, "--db", db)

        assert result.exit_code == 1
        assert "Import failed" in result.output


class TestOrphansCommands:
    @pytest.fixture
    def orphan_id(self, tmp_path, collection_dir, db):
        orphan = card_digest("gone", "card")
        snapshot = {
            "version": 1,
            "cards": {
                orphan: {
                    "stage": "review",
                    "due": "2025-01-01",
                    "interval": 3,
                    "strength": 2.5,
                    "lapses": 0,
                    "reviews": 2,
                    "last_reviewed": None,
                }
            },
        }
        path = tmp_path / "orphan.json"
        path.write_text(json.dumps(snapshot))
        assert invoke("import", path, "--dir", collection_dir, "--db", db).exit_code == 0
        return orphan

    def test_list(self, collection_dir, db, orphan_id):
        result = invoke("orphans", "list", collection_dir, "--db", db)

        assert result.exit_code == 0
        assert orphan_id in result.output

    def test_delete(self, collection_dir, db, orphan_id):
        result = invoke("orphans", "delete", collection_dir, "--db", db, "--yes")
        assert result.exit_code == 0
        assert "Deleted 1" in result.output

        result = invoke("orphans", "list", collection_dir, "--db", db)
        assert "No orphaned states" in result.output
