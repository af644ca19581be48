"""
Todo lists: an entry (title only) that owns an ordered list of items.

Item edits never bump the parent's ``updated_at``.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from cairn import entries
from cairn.db import parse_ts, stamp, storage_errors, transaction
from cairn.entries import ENTRY_COLUMNS, Entry, EntryType
from cairn.errors import NotFound, ValidationError

KIND = EntryType.TODO


@dataclass
class TodoItem:
    id: str
    entry_id: str
    body: str
    is_done: bool
    position: int
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "TodoItem":
        return cls(
            id=row["id"],
            entry_id=row["entry_id"],
            body=row["body"],
            is_done=bool(row["is_done"]),
            position=row["position"],
            created_at=parse_ts(row["created_at"]),
        )


def validate_body(body: str | None) -> str:
    body = (body or "").strip()
    if not body:
        raise ValidationError("body", "Item text is required.")
    return body


###############################################################################
# The list itself
###############################################################################
def create(title: str, *, db) -> str:
    title = entries.validate_title(title)
    with transaction(db, "creating todo"):
        entry_id = entries.insert(KIND, title, db=db)
    return entry_id


def get_by_id(entry_id: str, *, db) -> tuple[Entry, list[TodoItem]]:
    with storage_errors("loading todo"):
        row = db.execute(
            f"SELECT {ENTRY_COLUMNS} FROM entries e WHERE e.id=? AND e.entry_type=?",
            (entry_id, KIND.value),
        ).fetchone()
        if row is None:
            raise NotFound(f"todo {entry_id} not found")
        items = db.execute(
            """SELECT id, entry_id, body, is_done, position, created_at
                 FROM todo_items
                WHERE entry_id = ?
             ORDER BY position""",
            (entry_id,),
        ).fetchall()
    return Entry.from_row(row), [TodoItem.from_row(i) for i in items]


def update(entry_id: str, title: str, *, db) -> None:
    title = entries.validate_title(title)
    with transaction(db, "updating todo"):
        entries.touch(entry_id, KIND, title, db=db)


def delete(entry_id: str, *, db) -> None:
    entries.remove(entry_id, KIND, db=db)


###############################################################################
# Items
###############################################################################
def add_item(entry_id: str, body: str, *, db) -> str:
    """Append an item after the current last one (positions start at 1)."""
    body = validate_body(body)
    item_id = str(uuid.uuid4())
    with transaction(db, "adding todo item"):
        owner = db.execute(
            "SELECT 1 FROM entries WHERE id=? AND entry_type=?",
            (entry_id, KIND.value),
        ).fetchone()
        if owner is None:
            raise NotFound(f"todo {entry_id} not found")
        db.execute(
            """INSERT INTO todo_items (id, entry_id, body, position, created_at)
               VALUES (?, ?, ?,
                       COALESCE((SELECT MAX(position)
                                   FROM todo_items
                                  WHERE entry_id = ?), 0) + 1,
                       ?)""",
            (item_id, entry_id, body, entry_id, stamp()),
        )
    return item_id


def get_item(item_id: str, *, db) -> TodoItem:
    with storage_errors("loading todo item"):
        row = db.execute(
            """SELECT id, entry_id, body, is_done, position, created_at
                 FROM todo_items WHERE id=?""",
            (item_id,),
        ).fetchone()
    if row is None:
        raise NotFound(f"todo item {item_id} not found")
    return TodoItem.from_row(row)


def update_item(item_id: str, body: str, *, db) -> None:
    body = validate_body(body)
    with storage_errors("updating todo item"):
        cur = db.execute("UPDATE todo_items SET body=? WHERE id=?", (body, item_id))
    if cur.rowcount == 0:
        raise NotFound(f"todo item {item_id} not found")


def toggle_item(item_id: str, *, db) -> None:
    """Flip ``is_done``; silently does nothing for an unknown id."""
    with storage_errors("toggling todo item"):
        db.execute(
            "UPDATE todo_items SET is_done = NOT is_done WHERE id=?", (item_id,)
        )


def delete_item(item_id: str, *, db) -> None:
    with storage_errors("deleting todo item"):
        db.execute("DELETE FROM todo_items WHERE id=?", (item_id,))
