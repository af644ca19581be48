"""Notes: an entry plus a free-form Markdown body."""

from dataclasses import dataclass

from cairn import entries
from cairn.db import storage_errors, transaction
from cairn.entries import ENTRY_COLUMNS, Entry, EntryType
from cairn.errors import NotFound

KIND = EntryType.NOTE


@dataclass
class Note:
    entry_id: str
    body: str


def create(title: str, body: str, *, db) -> str:
    title = entries.validate_title(title)
    with transaction(db, "creating note"):
        entry_id = entries.insert(KIND, title, db=db)
        db.execute(
            "INSERT INTO notes (entry_id, body) VALUES (?,?)",
            (entry_id, body or ""),
        )
    return entry_id


def get_by_id(entry_id: str, *, db) -> tuple[Entry, Note]:
    with storage_errors("loading note"):
        row = db.execute(
            f"""SELECT {ENTRY_COLUMNS}, n.body
                  FROM entries e
                  JOIN notes   n ON n.entry_id = e.id
                 WHERE e.id = ? AND e.entry_type = ?""",
            (entry_id, KIND.value),
        ).fetchone()
    if row is None:
        raise NotFound(f"note {entry_id} not found")
    return Entry.from_row(row), Note(entry_id=row["id"], body=row["body"])


def update(entry_id: str, title: str, body: str, *, db) -> None:
    title = entries.validate_title(title)
    with transaction(db, "updating note"):
        entries.touch(entry_id, KIND, title, db=db)
        db.execute(
            "UPDATE notes SET body=? WHERE entry_id=?", (body or "", entry_id)
        )


def delete(entry_id: str, *, db) -> None:
    entries.remove(entry_id, KIND, db=db)
