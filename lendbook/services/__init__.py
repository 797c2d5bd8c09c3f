"""Services package."""

from lendbook.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    EventStoreInterface,
    InMemoryEventStore,
    JsonFileEventStore,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "DuplicateError",
    "EventStoreInterface",
    "InMemoryEventStore",
    "JsonFileEventStore",
    "NotFoundError",
    "StorageError",
]
