"""
Bookmarks: an entry plus a URL and the result of the last liveness check.

``last_status`` is ``None`` until the first check and ``0`` when the last
fetch failed outright (DNS, TLS, refused, timeout).
"""

from dataclasses import dataclass
from datetime import datetime

from cairn import entries
from cairn.db import parse_ts, stamp, storage_errors, transaction
from cairn.entries import ENTRY_COLUMNS, Entry, EntryType
from cairn.errors import NotFound, ValidationError

KIND = EntryType.BOOKMARK
FETCH_FAILED = 0

BOOKMARK_COLUMNS = "b.url, b.last_status, b.last_checked_at, b.content_hash"


@dataclass
class Bookmark:
    entry_id: str
    url: str
    last_status: int | None = None
    last_checked_at: datetime | None = None
    content_hash: str | None = None

    @property
    def checked(self) -> bool:
        return self.last_status is not None

    @property
    def fetch_failed(self) -> bool:
        return self.last_status == FETCH_FAILED


def _from_row(row) -> tuple[Entry, Bookmark]:
    return Entry.from_row(row), Bookmark(
        entry_id=row["id"],
        url=row["url"],
        last_status=row["last_status"],
        last_checked_at=parse_ts(row["last_checked_at"]),
        content_hash=row["content_hash"],
    )


def validate_url(url: str | None) -> str:
    # Only emptiness is checked; "not a url" is stored as typed.
    url = (url or "").strip()
    if not url:
        raise ValidationError("url", "URL is required.")
    return url


def create(title: str, url: str, *, db) -> str:
    title = entries.validate_title(title)
    url = validate_url(url)
    with transaction(db, "creating bookmark"):
        entry_id = entries.insert(KIND, title, db=db)
        db.execute(
            "INSERT INTO bookmarks (entry_id, url) VALUES (?,?)", (entry_id, url)
        )
    return entry_id


def get_by_id(entry_id: str, *, db) -> tuple[Entry, Bookmark]:
    with storage_errors("loading bookmark"):
        row = db.execute(
            f"""SELECT {ENTRY_COLUMNS}, {BOOKMARK_COLUMNS}
                  FROM entries   e
                  JOIN bookmarks b ON b.entry_id = e.id
                 WHERE e.id = ? AND e.entry_type = ?""",
            (entry_id, KIND.value),
        ).fetchone()
    if row is None:
        raise NotFound(f"bookmark {entry_id} not found")
    return _from_row(row)


def list_all(*, db) -> list[tuple[Entry, Bookmark]]:
    with storage_errors("listing bookmarks"):
        rows = db.execute(
            f"""SELECT {ENTRY_COLUMNS}, {BOOKMARK_COLUMNS}
                  FROM entries   e
                  JOIN bookmarks b ON b.entry_id = e.id
              ORDER BY e.updated_at DESC, e.created_at DESC"""
        ).fetchall()
    return [_from_row(r) for r in rows]


def update(entry_id: str, title: str, url: str, *, db) -> None:
    title = entries.validate_title(title)
    url = validate_url(url)
    with transaction(db, "updating bookmark"):
        entries.touch(entry_id, KIND, title, db=db)
        db.execute("UPDATE bookmarks SET url=? WHERE entry_id=?", (url, entry_id))


def delete(entry_id: str, *, db) -> None:
    entries.remove(entry_id, KIND, db=db)


def record_check(
    entry_id: str, status: int, content_hash: str | None, *, db
) -> datetime:
    """
    Store a liveness result. ``entries.updated_at`` is left alone: a check
    is not an edit. Returns the ``last_checked_at`` written.
    """
    checked_at = stamp()
    with storage_errors("recording link check"):
        cur = db.execute(
            """UPDATE bookmarks
                  SET last_status = ?, last_checked_at = ?, content_hash = ?
                WHERE entry_id = ?""",
            (status, checked_at, content_hash, entry_id),
        )
    if cur.rowcount == 0:
        raise NotFound(f"bookmark {entry_id} not found")
    return parse_ts(checked_at)
