"""
Storage Services Package

Provides the abstract event store interface and concrete implementations.
The in-memory store serves tests and embedding applications; the JSON file
store reads and writes the application's stored document directly.
"""

from lendbook.services.storage.interface import (
    ACCOUNTING_TRANSACTIONS,
    ACCOUNTS,
    LENDINGS,
    NET_FLOWS,
    PERSONS,
    TRANSFERS,
    AuditStorageInterface,
    DuplicateError,
    EventStoreInterface,
    NotFoundError,
    StorageError,
)
from lendbook.services.storage.memory import InMemoryEventStore
from lendbook.services.storage.json_file import JsonFileEventStore

__all__ = [
    # Collection names
    "ACCOUNTING_TRANSACTIONS",
    "ACCOUNTS",
    "LENDINGS",
    "NET_FLOWS",
    "PERSONS",
    "TRANSFERS",
    # Interfaces
    "AuditStorageInterface",
    "EventStoreInterface",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryEventStore",
    "JsonFileEventStore",
]
