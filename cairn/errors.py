"""
Error taxonomy shared by every store.

Stores raise these; the web layer turns them into 400 / 404 / 500 pages.
"""


class CairnError(Exception):
    """Base class for everything cairn raises on purpose."""


class ValidationError(CairnError, ValueError):
    """A required field was empty (after trimming)."""

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"{field} is required")


class NotFound(CairnError, LookupError):
    """Lookup by id matched no row (or no row of the expected type)."""


class StorageError(CairnError):
    """The database refused or failed an operation."""


class MigrationError(StorageError):
    """A schema migration file failed to apply."""
