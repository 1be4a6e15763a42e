"""Shared test fixtures for the retro board tests."""

import sys
from pathlib import Path

import pytest

# Ensure the project root (pkg/, retro_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from pkg.retro.board import RetroBoard
from pkg.retro.store import RetroStore


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "retro.db")


@pytest.fixture
def store(db_path):
    return RetroStore(db_path)


@pytest.fixture
def board(store):
    return RetroBoard(store)


@pytest.fixture
def session(board):
    """Active session facilitated by Alice, who is the current user."""
    return board.create_session("Sprint 42", "Alice", max_notes_per_person=3)
