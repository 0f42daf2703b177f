"""Services package."""

from bookkeeper.services.storage import (
    ConnectionError,
    CredentialsMissingError,
    CredentialStore,
    DuplicateError,
    EntityStore,
    GoogleSheetsClient,
    GoogleSheetsMirror,
    InMemoryCredentialStore,
    InMemoryEntityStore,
    NotFoundError,
    PermissionDeniedError,
    SheetMirror,
    SheetNotFoundError,
    StorageError,
)

__all__ = [
    # Storage services
    "ConnectionError",
    "CredentialsMissingError",
    "CredentialStore",
    "DuplicateError",
    "EntityStore",
    "GoogleSheetsClient",
    "GoogleSheetsMirror",
    "InMemoryCredentialStore",
    "InMemoryEntityStore",
    "NotFoundError",
    "PermissionDeniedError",
    "SheetMirror",
    "SheetNotFoundError",
    "StorageError",
]
