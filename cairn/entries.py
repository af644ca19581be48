"""
Entry store: the identity row every kind shares.

Creation and edits happen through the kind modules (notes, bookmarks,
todos), which write this table and their own extension table together.
"""

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from cairn.db import parse_ts, stamp, storage_errors
from cairn.errors import NotFound, ValidationError

ENTRY_COLUMNS = "e.id, e.entry_type, e.title, e.created_at, e.updated_at"


class EntryType(str, Enum):
    NOTE = "note"
    BOOKMARK = "bookmark"
    TODO = "todo"


@dataclass
class Entry:
    id: str
    entry_type: EntryType
    title: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Entry":
        return cls(
            id=row["id"],
            entry_type=EntryType(row["entry_type"]),
            title=row["title"],
            created_at=parse_ts(row["created_at"]),
            updated_at=parse_ts(row["updated_at"]),
        )


def validate_title(title: str | None) -> str:
    """Trim *title*; reject it when nothing is left."""
    title = (title or "").strip()
    if not title:
        raise ValidationError("title", "Title is required.")
    return title


def list_all(*, db) -> list[Entry]:
    """Every entry, most recently edited first."""
    with storage_errors("listing entries"):
        rows = db.execute(
            f"""SELECT {ENTRY_COLUMNS}
                  FROM entries e
              ORDER BY e.updated_at DESC, e.created_at DESC"""
        ).fetchall()
    return [Entry.from_row(r) for r in rows]


def get(entry_id: str, *, db) -> Entry:
    with storage_errors("loading entry"):
        row = db.execute(
            f"SELECT {ENTRY_COLUMNS} FROM entries e WHERE e.id=?", (entry_id,)
        ).fetchone()
    if row is None:
        raise NotFound(f"entry {entry_id} not found")
    return Entry.from_row(row)


# -------------------------------------------------------------------------
# Helpers for the kind modules (always called inside a transaction)
# -------------------------------------------------------------------------
def insert(entry_type: EntryType, title: str, *, db) -> str:
    entry_id = str(uuid.uuid4())
    now = stamp()
    db.execute(
        """INSERT INTO entries (id, entry_type, title, created_at, updated_at)
                VALUES (?,?,?,?,?)""",
        (entry_id, entry_type.value, title, now, now),
    )
    return entry_id


def touch(entry_id: str, entry_type: EntryType, title: str, *, db) -> None:
    """Set a new title and bump ``updated_at``; NotFound if no such entry."""
    cur = db.execute(
        "UPDATE entries SET title=?, updated_at=? WHERE id=? AND entry_type=?",
        (title, stamp(), entry_id, entry_type.value),
    )
    if cur.rowcount == 0:
        raise NotFound(f"{entry_type.value} {entry_id} not found")


def remove(entry_id: str, entry_type: EntryType, *, db) -> None:
    """Delete an entry of *entry_type*; extension rows go with it."""
    with storage_errors(f"deleting {entry_type.value}"):
        db.execute(
            "DELETE FROM entries WHERE id=? AND entry_type=?",
            (entry_id, entry_type.value),
        )
