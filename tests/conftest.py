"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import date, datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

GEOGRAPHY_DECK = """---
name = "Geography"
---

Q: What is the capital of France?
A: Paris

Q: What is the capital of Japan?
A: Tokyo
"""

BIOLOGY_DECK = """C: The [mitochondrion] is the powerhouse of the [cell].
"""


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def today():
    return date(2025, 1, 1)


@pytest.fixture
def now():
    return datetime(2025, 1, 1, 9, 30)


@pytest.fixture
def sample_decks():
    """Two decks: two Q/A cards and one cloze block with two deletions."""
    return {
        "geography.md": GEOGRAPHY_DECK,
        "biology.md": BIOLOGY_DECK,
    }


@pytest.fixture
def collection_dir(tmp_path, sample_decks):
    """Sample decks written to a collection directory."""
    root = tmp_path / "collection"
    root.mkdir()
    for name, text in sample_decks.items():
        (root / name).write_text(text, encoding="utf-8")
    return root
