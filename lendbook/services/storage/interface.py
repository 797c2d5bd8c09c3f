"""
Abstract Storage Interface

DESIGN DECISION: The event store is owned by the surrounding application.
Lendbook only needs:
1. One consistent snapshot per computation
2. Append-only insertion of new events
3. Replacement of an event when a status field changes (returned, archived)
4. Write-through of the derived Account.balance cache

Any backend (JSON file, SQL, the browser app's own store) can implement
these methods.
"""

from abc import ABC, abstractmethod

from lendbook.models.audit import AuditEvent
from lendbook.models.ledger import (
    Account,
    AccountTransferEvent,
    LedgerSnapshot,
    LendingEvent,
    PersonNetFlowEvent,
)

# Stored collection names
ACCOUNTS = "accounts"
PERSONS = "persons"
LENDINGS = "lendings"
TRANSFERS = "accountTransactions"
NET_FLOWS = "personTransactions"

# Management-accounting rows owned by the rest of the application
ACCOUNTING_TRANSACTIONS = "transactions"


class EventStoreInterface(ABC):
    """
    Abstract interface for the ledger event store.

    Events are never hard-deleted: archival is a replace with
    is_archived=True.
    """

    @abstractmethod
    async def snapshot(self) -> LedgerSnapshot:
        """
        Return one consistent read of every collection.

        The returned snapshot is a copy; mutating it does not touch the store.
        """
        pass

    @abstractmethod
    async def next_id(self, collection: str) -> int:
        """
        Allocate the next id for a collection.

        Args:
            collection: One of the stored collection names

        Returns:
            max(existing ids) + 1, or 1 for an empty collection
        """
        pass

    @abstractmethod
    async def append_lending(self, lending: LendingEvent) -> LendingEvent:
        """
        Append a new lending event.

        Raises:
            DuplicateError: If an event with the same id exists
        """
        pass

    @abstractmethod
    async def replace_lending(self, lending: LendingEvent) -> LendingEvent:
        """
        Replace an existing lending event (same id).

        Raises:
            NotFoundError: If no event has this id
        """
        pass

    @abstractmethod
    async def settle_lending(
        self,
        settled: LendingEvent,
        return_event: LendingEvent,
    ) -> LendingEvent:
        """
        Replace a settled lending and append its return event as one write.

        Either both changes are stored or neither is.

        Raises:
            NotFoundError: If the settled event does not exist
            DuplicateError: If the return event's id is taken
        """
        pass

    @abstractmethod
    async def append_transfer(self, transfer: AccountTransferEvent) -> AccountTransferEvent:
        """Append a new account transaction."""
        pass

    @abstractmethod
    async def replace_transfer(self, transfer: AccountTransferEvent) -> AccountTransferEvent:
        """
        Replace an existing account transaction (same id).

        When the stored transaction carries a linkedTransactionId, the
        matching accounting row is kept in step: archiving deletes it,
        editing an interest or investment_gain rewrites it.
        """
        pass

    @abstractmethod
    async def append_net_flow(self, net_flow: PersonNetFlowEvent) -> PersonNetFlowEvent:
        """Append a new person net flow."""
        pass

    @abstractmethod
    async def replace_accounts(self, accounts: list[Account]) -> None:
        """
        Write back account records (used for the balance cache).

        Accounts not in the list are left untouched.

        Raises:
            NotFoundError: If an account id does not exist
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific record.

        Args:
            entity_type: 'lending', 'transaction', 'person-transaction' or 'account'
            entity_id: The record's id

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass
