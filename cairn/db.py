"""
Storage boundary: connections, transactions, timestamps and migrations.

Every store in cairn takes an open ``sqlite3.Connection`` as its keyword-only
``db`` argument; nothing here keeps a process-wide handle.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

from cairn.errors import MigrationError, StorageError

log = logging.getLogger(__name__)

ROOT = Path(__file__).parent
MIGRATIONS_DIR = ROOT / "migrations"
DEFAULT_DATABASE_URL = f"sqlite:///{ROOT / 'cairn.sqlite3'}"
SQLITE_PREFIX = "sqlite:///"


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


def stamp() -> str:
    """Current time as fixed-width ISO text (sorts chronologically)."""
    return utc_now().isoformat(timespec="microseconds")


def parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


###############################################################################
# Connections
###############################################################################
def database_path(url: str) -> str:
    """
    Turn a connection string into something ``sqlite3.connect`` accepts.

    • ``sqlite:///cairn.db``        → ``cairn.db``   (relative)
    • ``sqlite:////srv/cairn.db``   → ``/srv/cairn.db``
    • ``sqlite:///:memory:``        → ``:memory:``
    • a bare path is taken as-is
    """
    if "://" not in url:
        return url
    scheme = urlparse(url).scheme
    if scheme != "sqlite" or not url.startswith(SQLITE_PREFIX):
        raise ValueError(f"Unsupported database URL “{url}” (only sqlite:/// is)")
    path = url[len(SQLITE_PREFIX) :]
    if not path:
        raise ValueError("Database URL has no path")
    return path


def connect(url: str = DEFAULT_DATABASE_URL) -> sqlite3.Connection:
    """
    Open a connection in autocommit mode; multi-statement work goes through
    :func:`transaction`.
    """
    path = database_path(url)
    try:
        db = sqlite3.connect(path, isolation_level=None)
        db.row_factory = sqlite3.Row
        db.execute("PRAGMA foreign_keys = ON;")
        db.execute("PRAGMA busy_timeout = 5000;")
    except sqlite3.Error as exc:
        raise StorageError(f"cannot open database {path}: {exc}") from exc
    return db


@contextmanager
def storage_errors(action: str):
    """Re-raise any ``sqlite3.Error`` as :class:`StorageError`."""
    try:
        yield
    except sqlite3.Error as exc:
        raise StorageError(f"{action} failed: {exc}") from exc


@contextmanager
def transaction(db: sqlite3.Connection, action: str = "transaction"):
    """
    All statements inside the block commit together or not at all.
    Any exception (storage or otherwise, COMMIT included) rolls the whole
    block back and leaves the connection ready for the next one.
    """
    with storage_errors(action):
        db.execute("BEGIN")
        try:
            yield db
            db.execute("COMMIT")
        except BaseException:
            if db.in_transaction:
                db.execute("ROLLBACK")
            raise


###############################################################################
# Migrations
###############################################################################
def applied_migrations(db: sqlite3.Connection) -> set[str]:
    with storage_errors("reading migration log"):
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                filename   TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        rows = db.execute("SELECT filename FROM schema_migrations").fetchall()
    return {r["filename"] for r in rows}


def run_migrations(
    db: sqlite3.Connection, directory: str | Path = MIGRATIONS_DIR
) -> list[str]:
    """
    Apply every ``*.sql`` file in *directory* that is not logged yet, in
    filename order. Each file and its log row share one transaction.
    Returns the names applied by this call.
    """
    done = applied_migrations(db)
    applied: list[str] = []

    for path in sorted(Path(directory).glob("*.sql")):
        if path.name in done:
            continue
        sql = path.read_text(encoding="utf-8")
        try:
            # executescript() leaves our BEGIN open, so the log row below
            # lands in the same transaction as the file's statements.
            db.executescript("BEGIN;\n" + sql)
            db.execute(
                "INSERT INTO schema_migrations (filename, applied_at) VALUES (?,?)",
                (path.name, stamp()),
            )
            db.execute("COMMIT")
        except sqlite3.Error as exc:
            if db.in_transaction:
                db.execute("ROLLBACK")
            raise MigrationError(f"migration {path.name} failed: {exc}") from exc

        log.info("applied migration: %s", path.name)
        applied.append(path.name)

    return applied
