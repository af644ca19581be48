"""
tests/test_db.py
"""
from __future__ import annotations

import pytest

from cairn.db import transaction
from cairn.errors import StorageError


def _notes(db) -> int:
    return db.execute("SELECT COUNT(*) FROM notes").fetchone()[0]


def test_failed_commit_is_rolled_back(db):
    """A deferred FK violation only surfaces at COMMIT."""
    with pytest.raises(StorageError, match="orphan note"):
        with transaction(db, "orphan note"):
            db.execute("PRAGMA defer_foreign_keys = ON")
            db.execute("INSERT INTO notes (entry_id, body) VALUES ('ghost', 'x')")

    assert not db.in_transaction
    assert _notes(db) == 0

    # the connection is usable for the next transaction
    with transaction(db):
        db.execute(
            "INSERT INTO entries (id, entry_type, title, created_at, updated_at)"
            " VALUES ('n1', 'note', 't', '2099', '2099')"
        )
        db.execute("INSERT INTO notes (entry_id, body) VALUES ('n1', 'ok')")
    assert _notes(db) == 1


def test_non_storage_error_rolls_back_and_propagates(db):
    with pytest.raises(KeyError):
        with transaction(db):
            db.execute(
                "INSERT INTO entries (id, entry_type, title, created_at, updated_at)"
                " VALUES ('n2', 'todo', 't', '2099', '2099')"
            )
            raise KeyError("boom")

    assert not db.in_transaction
    assert db.execute("SELECT COUNT(*) FROM entries").fetchone()[0] == 0
