"""
In-Memory Storage Implementation

Holds one LedgerSnapshot and hands out deep copies of it. Used directly
in tests and by embedding applications that own persistence themselves,
and as the base of the JSON file store.
"""

import asyncio
from typing import Optional

from lendbook.models.audit import AuditEvent
from lendbook.models.ledger import (
    Account,
    AccountTransferEvent,
    LedgerSnapshot,
    LendingEvent,
    PersonNetFlowEvent,
    TransferType,
    money_to_json,
)
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

# Accounting category for transaction types mirrored into 'transactions'
LINKED_CATEGORIES = {
    TransferType.INTEREST: "受取利息",
    TransferType.INVESTMENT_GAIN: "運用損益",
}


def _collection(snapshot: LedgerSnapshot, collection: str) -> list:
    if collection == ACCOUNTS:
        return snapshot.accounts
    if collection == PERSONS:
        return snapshot.persons
    if collection == LENDINGS:
        return snapshot.lendings
    if collection == TRANSFERS:
        return snapshot.transfers
    if collection == NET_FLOWS:
        return snapshot.net_flows
    raise StorageError(f"Unknown collection: {collection}")


def _insert(snapshot: LedgerSnapshot, collection: str, record) -> None:
    items = _collection(snapshot, collection)
    if any(item.id == record.id for item in items):
        raise DuplicateError(f"{collection} already contains id {record.id}")
    items.append(record.model_copy(deep=True))


def _swap(snapshot: LedgerSnapshot, collection: str, record):
    """Replace the record with the same id and return the previous one."""
    items = _collection(snapshot, collection)
    for index, item in enumerate(items):
        if item.id == record.id:
            items[index] = record.model_copy(deep=True)
            return item
    raise NotFoundError(f"{collection} has no id {record.id}")


def sync_linked_transaction(
    snapshot: LedgerSnapshot,
    previous: AccountTransferEvent,
    transfer: AccountTransferEvent,
) -> None:
    """
    Bring the accounting row named by linkedTransactionId in line with a
    replaced account transaction.

    Archiving deletes the row. Editing an interest or investment_gain
    rewrites its type, category, amount, date and memo; a negative amount
    becomes an expense of the absolute value.
    """
    linked_id = previous.linked_transaction_id
    extra = snapshot.model_extra
    if linked_id is None or extra is None:
        return
    rows = extra.get(ACCOUNTING_TRANSACTIONS)
    if not isinstance(rows, list):
        return

    if transfer.is_archived:
        if not previous.is_archived:
            extra[ACCOUNTING_TRANSACTIONS] = [
                row for row in rows
                if not (isinstance(row, dict) and row.get("id") == linked_id)
            ]
        return

    category = LINKED_CATEGORIES.get(previous.type)
    if category is None:
        return

    memo = transfer.memo or previous.memo
    for row in rows:
        if not isinstance(row, dict) or row.get("id") != linked_id:
            continue
        row.update({
            "type": "expense" if transfer.amount < 0 else "income",
            "category": category,
            "amount": money_to_json(abs(transfer.amount)),
            "date": transfer.date.isoformat(),
        })
        if memo is None:
            row.pop("memo", None)
        else:
            row["memo"] = memo


class InMemoryEventStore(EventStoreInterface, AuditStorageInterface):
    """
    Event store backed by a single in-process snapshot.

    Every write builds a staged copy of the state and hands it to
    _persist(). The copy becomes the live state only after _persist()
    returns, so a failed write leaves the store exactly as it was.

    Writes are serialized with an asyncio lock. next_id() reads without
    the lock; when two writers are handed the same id, the second append
    fails with DuplicateError instead of overwriting the first.
    """

    def __init__(
        self,
        snapshot: Optional[LedgerSnapshot] = None,
        audit_events: Optional[list[AuditEvent]] = None,
    ):
        self._snapshot = snapshot.model_copy(deep=True) if snapshot else LedgerSnapshot()
        self._audit_events: list[AuditEvent] = list(audit_events or [])
        self._lock = asyncio.Lock()

    def _persist(self, snapshot: LedgerSnapshot, audit_events: list[AuditEvent]) -> None:
        """Hook for subclasses that write the state somewhere. Raise to abort."""

    def _commit(
        self,
        snapshot: LedgerSnapshot,
        audit_events: Optional[list[AuditEvent]] = None,
    ) -> None:
        if audit_events is None:
            audit_events = self._audit_events
        self._persist(snapshot, audit_events)
        self._snapshot = snapshot
        self._audit_events = audit_events

    def _staged(self) -> LedgerSnapshot:
        return self._snapshot.model_copy(deep=True)

    def _append(self, collection: str, record):
        staged = self._staged()
        _insert(staged, collection, record)
        self._commit(staged)
        return record

    def _replace(self, collection: str, record):
        staged = self._staged()
        _swap(staged, collection, record)
        self._commit(staged)
        return record

    async def snapshot(self) -> LedgerSnapshot:
        return self._snapshot.model_copy(deep=True)

    async def next_id(self, collection: str) -> int:
        items = _collection(self._snapshot, collection)
        return max((item.id for item in items), default=0) + 1

    async def append_lending(self, lending: LendingEvent) -> LendingEvent:
        async with self._lock:
            return self._append(LENDINGS, lending)

    async def replace_lending(self, lending: LendingEvent) -> LendingEvent:
        async with self._lock:
            return self._replace(LENDINGS, lending)

    async def settle_lending(
        self,
        settled: LendingEvent,
        return_event: LendingEvent,
    ) -> LendingEvent:
        async with self._lock:
            staged = self._staged()
            _swap(staged, LENDINGS, settled)
            _insert(staged, LENDINGS, return_event)
            self._commit(staged)
        return return_event

    async def append_transfer(self, transfer: AccountTransferEvent) -> AccountTransferEvent:
        async with self._lock:
            return self._append(TRANSFERS, transfer)

    async def replace_transfer(self, transfer: AccountTransferEvent) -> AccountTransferEvent:
        async with self._lock:
            staged = self._staged()
            previous = _swap(staged, TRANSFERS, transfer)
            sync_linked_transaction(staged, previous, transfer)
            self._commit(staged)
        return transfer

    async def append_net_flow(self, net_flow: PersonNetFlowEvent) -> PersonNetFlowEvent:
        async with self._lock:
            return self._append(NET_FLOWS, net_flow)

    async def replace_accounts(self, accounts: list[Account]) -> None:
        async with self._lock:
            by_id = {a.id: a for a in self._snapshot.accounts}
            missing = [a.id for a in accounts if a.id not in by_id]
            if missing:
                raise NotFoundError(f"accounts has no id {missing[0]}")
            replacements = {a.id: a.model_copy(deep=True) for a in accounts}
            staged = self._staged()
            staged.accounts = [replacements.get(a.id, a) for a in staged.accounts]
            self._commit(staged)

    # -------------------------------------------------------------------------
    # Audit storage
    # -------------------------------------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        async with self._lock:
            self._commit(self._snapshot, self._audit_events + [event])
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._audit_events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self._audit_events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
