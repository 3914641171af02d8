"""
arcengine/errors.py -- Exception taxonomy for the catalog engine.

Messages are written for a non-technical user first, with the technical
detail appended, so callers can surface ``str(exc)`` directly.

    CatalogError
    +-- EntityNotFoundError        (also a KeyError)
    +-- DuplicateEntityError       (also a ValueError)
    +-- DirectoryUnavailableError  (also a FileNotFoundError)
    +-- BackupError                (also a RuntimeError)
    +-- OperationInProgressError   (also a RuntimeError)
    +-- ArchiveFormatError         (also a ValueError)
        +-- IncompletePartsError
        +-- SnapshotValidationError
"""


class CatalogError(Exception):
    """Base exception for catalog engine operations."""


class EntityNotFoundError(CatalogError, KeyError):
    """Raised by operations that require an existing record."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the friendly message intact.
        return str(self.args[0]) if self.args else ""


class DuplicateEntityError(CatalogError, ValueError):
    """Raised when creating a record whose id already exists."""


class DirectoryUnavailableError(CatalogError, FileNotFoundError):
    """Raised when the working directory cannot be accessed."""


class BackupError(CatalogError, RuntimeError):
    """Raised when writing a backup archive fails."""


class OperationInProgressError(CatalogError, RuntimeError):
    """Raised when a backup or restore is already running for a directory."""


class ArchiveFormatError(CatalogError, ValueError):
    """Raised when an archive or its catalog metadata is unreadable."""


class IncompletePartsError(ArchiveFormatError):
    """Raised when a multi-part archive is missing one of its parts."""


class SnapshotValidationError(ArchiveFormatError):
    """Raised when a catalog snapshot does not match the expected shape."""
