"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The ledger lives in an EntityStore (in-memory here, swappable for a database);
Google Sheets is only ever a mirror of it.
"""

from bookkeeper.services.storage.interface import (
    ConnectionError,
    CredentialsMissingError,
    CredentialStore,
    DuplicateError,
    EntityStore,
    NotFoundError,
    PermissionDeniedError,
    SheetMirror,
    SheetNotFoundError,
    StorageError,
)
from bookkeeper.services.storage.memory import (
    InMemoryCredentialStore,
    InMemoryEntityStore,
)
from bookkeeper.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsMirror,
)

__all__ = [
    # Interfaces
    "CredentialStore",
    "EntityStore",
    "SheetMirror",
    # Exceptions
    "ConnectionError",
    "CredentialsMissingError",
    "DuplicateError",
    "NotFoundError",
    "PermissionDeniedError",
    "SheetNotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryCredentialStore",
    "InMemoryEntityStore",
    # Google Sheets implementation
    "GoogleSheetsClient",
    "GoogleSheetsMirror",
]
