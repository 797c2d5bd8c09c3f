"""
Main Orchestrator for Lendbook

This module ties together all the components and defines the
end-to-end flows for:
1. Recording (input → event → validate → append → audit → cache refresh)
2. Balance queries (snapshot → engine → summary)

DESIGN DECISION: The orchestrator enforces the boundaries:
- The engine never sees a write; it only reads snapshots
- No event is appended without passing validation (when enabled)
- Every write is audited with the acting user

The Account.balance cache is owned here, not by the engine. It is
recomputed from the event log, never adjusted incrementally.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Iterable, Optional, Union

import structlog

from lendbook.audit import AuditLogger, describe_changes, detect_changes
from lendbook.config import get_settings
from lendbook.engine import (
    TieBreak,
    account_ledger_balance,
    account_outstanding_balance,
    aggregate_person_totals,
    combined_history,
    person_account_balance,
    person_outstanding_balance,
)
from lendbook.models.ledger import (
    ZERO,
    AccountTransferEvent,
    CounterpartyType,
    HistoryItem,
    LedgerSnapshot,
    LendingEvent,
    LendingType,
    NetFlowType,
    PersonNetFlowEvent,
    PersonTotals,
    TransferType,
    utc_now,
)
from lendbook.models.validation import ValidationResult
from lendbook.queries import (
    AccountSummary,
    LedgerOverview,
    PersonSummary,
    ledger_overview,
    summarize_account,
    summarize_person,
)
from lendbook.services.storage import (
    LENDINGS,
    NET_FLOWS,
    TRANSFERS,
    AuditStorageInterface,
    EventStoreInterface,
    InMemoryEventStore,
    JsonFileEventStore,
    NotFoundError,
    StorageError,
)
from lendbook.validation import EventValidator, LedgerValidationError

logger = structlog.get_logger(__name__)

RETURN_MEMO = "返済"

LENDING_EDITABLE_FIELDS = frozenset({
    "amount", "date", "memo", "account_id",
    "counterparty_id", "counterparty_type", "type",
})
TRANSFER_EDITABLE_FIELDS = frozenset({
    "amount", "date", "memo", "account_id",
    "type", "from_account_id", "to_account_id",
})


class LedgerOperationError(Exception):
    """A write was requested that makes no sense for the event's state."""
    pass


def _signed_lending_amount(lending_type: LendingType, amount: Any) -> Decimal:
    """Lend is stored positive, borrow negative, whatever sign the caller used."""
    value = abs(Decimal(str(amount)))
    return value if lending_type == LendingType.LEND else -value


def _find(items: Iterable, item_id: int, kind: str):
    for item in items:
        if item.id == item_id:
            return item
    raise NotFoundError(f"{kind} not found: {item_id}")


class EventRecordingFlow:
    """
    Orchestrates every write to the event log.

    Flow for each write:
    1. Snapshot → build or update the event
    2. Validate against the snapshot (errors block the write)
    3. Append / replace in the store
    4. Audit with the acting user id
    5. Refresh the Account.balance cache (if enabled)

    Events are never deleted. Archival and return are status changes on
    the stored record; a return additionally appends its own event.
    """

    def __init__(
        self,
        store: EventStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        if audit_logger is None:
            audit_storage = store if isinstance(store, AuditStorageInterface) else None
            audit_logger = AuditLogger(audit_storage)
        self._audit_logger = audit_logger
        self._settings = get_settings().app

    def _user(self, user_id: Optional[int]) -> int:
        return user_id if user_id is not None else self._settings.default_user_id

    async def _check(self, result: ValidationResult, user_id: int) -> None:
        """Raise on validation errors; log warnings and carry on."""
        if result.has_errors:
            issues = [
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in result.issues
            ]
            await self._audit_logger.log_validation_failed(
                entity_type=result.entity_type,
                issues=issues,
                user_id=user_id,
            )
            raise LedgerValidationError(result)

        for warning in result.warnings:
            logger.warning(
                "validation_warning",
                entity_type=result.entity_type,
                entity_id=result.entity_id,
                message=warning,
            )

    async def _write(self, operation: str, awaitable: Awaitable, **details):
        """Run a store write; storage failures are audited, then re-raised."""
        try:
            return await awaitable
        except StorageError as e:
            await self._audit_logger.log_error(
                error_type=f"storage_{operation}",
                error_message=str(e),
                details=details,
            )
            raise

    async def _after_write(self, account_ids: Iterable[Optional[int]]) -> None:
        if not self._settings.refresh_balances_on_write:
            return
        snapshot = await self._store.snapshot()
        known = {a.id for a in snapshot.accounts}
        touched = [a for a in dict.fromkeys(account_ids) if a in known]
        if touched:
            await self.refresh_account_balances(touched)

    @staticmethod
    def _lending_accounts(lending: LendingEvent) -> list[Optional[int]]:
        accounts = [lending.account_id]
        if lending.counterparty_type == CounterpartyType.ACCOUNT:
            accounts.append(lending.counterparty_id)
        return accounts

    @staticmethod
    def _transfer_accounts(transfer: AccountTransferEvent) -> list[Optional[int]]:
        return [transfer.account_id, transfer.from_account_id, transfer.to_account_id]

    # -------------------------------------------------------------------------
    # Lending events
    # -------------------------------------------------------------------------

    async def record_lending(
        self,
        account_id: int,
        counterparty_type: Union[CounterpartyType, str],
        counterparty_id: int,
        lending_type: Union[LendingType, str],
        amount: Union[Decimal, int, str],
        lending_date: date,
        memo: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> LendingEvent:
        """
        Record a new lend or borrow.

        The amount's sign is normalized from the type: lend is stored
        positive, borrow negative.

        Raises:
            LedgerOperationError: For lending_type 'return' (use mark_returned)
            LedgerValidationError: If the event fails validation
        """
        lending_type = LendingType(lending_type)
        if lending_type == LendingType.RETURN:
            raise LedgerOperationError("Returns are recorded with mark_returned()")

        user_id = self._user(user_id)
        snapshot = await self._store.snapshot()

        lending = LendingEvent(
            id=await self._store.next_id(LENDINGS),
            account_id=account_id,
            counterparty_type=CounterpartyType(counterparty_type),
            counterparty_id=counterparty_id,
            type=lending_type,
            amount=_signed_lending_amount(lending_type, amount),
            date=lending_date,
            memo=memo,
            created_at=utc_now(),
            created_by_user_id=user_id,
        )

        if self._settings.validate_on_write:
            await self._check(EventValidator(snapshot).validate_lending(lending), user_id)

        await self._write("append_lending", self._store.append_lending(lending), lending_id=lending.id)
        await self._audit_logger.log_lending_recorded(
            lending_id=lending.id,
            lending_type=lending.type.value,
            amount=lending.amount,
            user_id=user_id,
        )
        await self._after_write(self._lending_accounts(lending))
        return lending

    async def mark_returned(
        self,
        lending_id: int,
        return_date: Optional[date] = None,
        user_id: Optional[int] = None,
    ) -> LendingEvent:
        """
        Settle a lend or borrow.

        Flags the original event returned and appends a return event with
        the opposite amount, the same account and counterparty, and a link
        back to the original. Both changes are stored in one write.

        Returns:
            The appended return event

        Raises:
            NotFoundError: If the lending does not exist
            LedgerOperationError: If it is archived, already returned, or a return itself
        """
        user_id = self._user(user_id)
        snapshot = await self._store.snapshot()
        original = _find(snapshot.lendings, lending_id, "Lending")

        if original.is_return:
            raise LedgerOperationError(f"Lending {lending_id} is itself a return")
        if original.returned:
            raise LedgerOperationError(f"Lending {lending_id} is already returned")
        if original.is_archived:
            raise LedgerOperationError(f"Lending {lending_id} is archived")

        now = utc_now()
        settled = original.model_copy(update={
            "returned": True,
            "last_edited_by_user_id": user_id,
            "last_edited_at": now,
        })
        return_event = LendingEvent(
            id=await self._store.next_id(LENDINGS),
            account_id=original.account_id,
            counterparty_type=original.counterparty_type,
            counterparty_id=original.counterparty_id,
            type=LendingType.RETURN,
            amount=-original.amount,
            date=return_date or date.today(),
            memo=RETURN_MEMO,
            returned=True,
            original_id=original.id,
            created_at=now,
            created_by_user_id=user_id,
        )

        await self._write(
            "settle_lending",
            self._store.settle_lending(settled, return_event),
            lending_id=original.id,
            return_id=return_event.id,
        )
        await self._audit_logger.log_lending_returned(
            lending_id=original.id,
            return_id=return_event.id,
            user_id=user_id,
        )
        await self._after_write(self._lending_accounts(original))
        return return_event

    async def archive_lending(
        self,
        lending_id: int,
        user_id: Optional[int] = None,
    ) -> LendingEvent:
        """Archive a lending event. Archiving twice is a no-op."""
        user_id = self._user(user_id)
        snapshot = await self._store.snapshot()
        lending = _find(snapshot.lendings, lending_id, "Lending")
        if lending.is_archived:
            return lending

        archived = lending.model_copy(update={
            "is_archived": True,
            "last_edited_by_user_id": user_id,
            "last_edited_at": utc_now(),
        })
        await self._write("replace_lending", self._store.replace_lending(archived), lending_id=lending_id)
        await self._audit_logger.log_lending_archived(lending_id=lending_id, user_id=user_id)
        await self._after_write(self._lending_accounts(lending))
        return archived

    async def edit_lending(
        self,
        lending_id: int,
        updates: dict[str, Any],
        user_id: Optional[int] = None,
    ) -> LendingEvent:
        """
        Edit the user-facing fields of a lending event.

        Args:
            lending_id: Event to edit
            updates: New values keyed by field name (amount, date, memo,
                    account_id, counterparty_id, counterparty_type, type)
            user_id: Acting user

        Returns:
            The stored event (unchanged if nothing differs)

        Raises:
            LedgerOperationError: For fields that cannot be edited
        """
        unknown = set(updates) - LENDING_EDITABLE_FIELDS
        if unknown:
            raise LedgerOperationError(f"Cannot edit lending fields: {sorted(unknown)}")

        user_id = self._user(user_id)
        snapshot = await self._store.snapshot()
        lending = _find(snapshot.lendings, lending_id, "Lending")

        data = {**lending.model_dump(), **updates}
        edited_type = LendingType(data["type"])
        if edited_type != LendingType.RETURN:
            data["amount"] = _signed_lending_amount(edited_type, data["amount"])
        candidate = LendingEvent.model_validate(data)

        changes = detect_changes(
            lending.model_dump(include=LENDING_EDITABLE_FIELDS),
            candidate.model_dump(include=LENDING_EDITABLE_FIELDS),
            accounts=snapshot.accounts,
            persons=snapshot.persons,
        )
        if not changes:
            return lending

        if self._settings.validate_on_write:
            await self._check(EventValidator(snapshot).validate_lending(candidate), user_id)

        edited = candidate.model_copy(update={
            "last_edited_by_user_id": user_id,
            "last_edited_at": utc_now(),
        })
        description = describe_changes(changes)
        await self._write("replace_lending", self._store.replace_lending(edited), lending_id=lending_id)
        await self._audit_logger.log_lending_updated(
            lending_id=lending_id,
            description=description,
            changes=changes,
            user_id=user_id,
        )
        await self._after_write(self._lending_accounts(lending) + self._lending_accounts(edited))
        return edited

    # -------------------------------------------------------------------------
    # Account transactions
    # -------------------------------------------------------------------------

    async def record_transfer(
        self,
        transfer_type: Union[TransferType, str],
        amount: Union[Decimal, int, str],
        transfer_date: date,
        account_id: Optional[int] = None,
        from_account_id: Optional[int] = None,
        to_account_id: Optional[int] = None,
        memo: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> AccountTransferEvent:
        """
        Record an account transaction.

        'transfer' uses from_account_id/to_account_id, every other type
        uses account_id. investment_gain may be negative (a loss).
        """
        user_id = self._user(user_id)
        snapshot = await self._store.snapshot()

        transfer = AccountTransferEvent(
            id=await self._store.next_id(TRANSFERS),
            type=TransferType(transfer_type),
            account_id=account_id,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=Decimal(str(amount)),
            date=transfer_date,
            memo=memo,
            created_at=utc_now(),
            created_by_user_id=user_id,
        )

        if self._settings.validate_on_write:
            await self._check(EventValidator(snapshot).validate_transfer(transfer), user_id)

        await self._write("append_transfer", self._store.append_transfer(transfer), transaction_id=transfer.id)
        await self._audit_logger.log_transfer_recorded(
            transaction_id=transfer.id,
            transaction_type=transfer.type.value,
            amount=transfer.amount,
            user_id=user_id,
        )
        await self._after_write(self._transfer_accounts(transfer))
        return transfer

    async def archive_transfer(
        self,
        transaction_id: int,
        user_id: Optional[int] = None,
    ) -> AccountTransferEvent:
        """
        Archive an account transaction. Archiving twice is a no-op.

        A linked accounting row (linkedTransactionId) is removed by the store.
        """
        user_id = self._user(user_id)
        snapshot = await self._store.snapshot()
        transfer = _find(snapshot.transfers, transaction_id, "Account transaction")
        if transfer.is_archived:
            return transfer

        archived = transfer.model_copy(update={
            "is_archived": True,
            "last_edited_by_user_id": user_id,
            "last_edited_at": utc_now(),
        })
        await self._write("replace_transfer", self._store.replace_transfer(archived), transaction_id=transaction_id)
        await self._audit_logger.log_transfer_archived(transaction_id=transaction_id, user_id=user_id)
        await self._after_write(self._transfer_accounts(transfer))
        return archived

    async def edit_transfer(
        self,
        transaction_id: int,
        updates: dict[str, Any],
        user_id: Optional[int] = None,
    ) -> AccountTransferEvent:
        """Edit an account transaction; see edit_lending."""
        unknown = set(updates) - TRANSFER_EDITABLE_FIELDS
        if unknown:
            raise LedgerOperationError(f"Cannot edit transaction fields: {sorted(unknown)}")

        user_id = self._user(user_id)
        snapshot = await self._store.snapshot()
        transfer = _find(snapshot.transfers, transaction_id, "Account transaction")

        candidate = AccountTransferEvent.model_validate({**transfer.model_dump(), **updates})
        changes = detect_changes(
            transfer.model_dump(include=TRANSFER_EDITABLE_FIELDS),
            candidate.model_dump(include=TRANSFER_EDITABLE_FIELDS),
            accounts=snapshot.accounts,
            persons=snapshot.persons,
        )
        if not changes:
            return transfer

        if self._settings.validate_on_write:
            await self._check(EventValidator(snapshot).validate_transfer(candidate), user_id)

        edited = candidate.model_copy(update={
            "last_edited_by_user_id": user_id,
            "last_edited_at": utc_now(),
        })
        description = describe_changes(changes)
        await self._write("replace_transfer", self._store.replace_transfer(edited), transaction_id=transaction_id)
        await self._audit_logger.log_transfer_updated(
            transaction_id=transaction_id,
            description=description,
            changes=changes,
            user_id=user_id,
        )
        await self._after_write(self._transfer_accounts(transfer) + self._transfer_accounts(edited))
        return edited

    # -------------------------------------------------------------------------
    # Person net flows
    # -------------------------------------------------------------------------

    async def record_net_flow(
        self,
        person_id: int,
        flow_type: Union[NetFlowType, str],
        amount: Union[Decimal, int, str],
        flow_date: date,
        memo: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> PersonNetFlowEvent:
        """Record a deposit or withdrawal against a person."""
        user_id = self._user(user_id)
        snapshot = await self._store.snapshot()

        net_flow = PersonNetFlowEvent(
            id=await self._store.next_id(NET_FLOWS),
            person_id=person_id,
            type=NetFlowType(flow_type),
            amount=abs(Decimal(str(amount))),
            date=flow_date,
            memo=memo,
            created_at=utc_now(),
            created_by_user_id=user_id,
        )

        if self._settings.validate_on_write:
            await self._check(EventValidator(snapshot).validate_net_flow(net_flow), user_id)

        await self._write("append_net_flow", self._store.append_net_flow(net_flow), net_flow_id=net_flow.id)
        await self._audit_logger.log_net_flow_recorded(
            net_flow_id=net_flow.id,
            flow_type=net_flow.type.value,
            amount=net_flow.amount,
            user_id=user_id,
        )
        return net_flow

    # -------------------------------------------------------------------------
    # Derived cache
    # -------------------------------------------------------------------------

    async def refresh_account_balances(
        self,
        account_ids: Optional[Iterable[int]] = None,
    ) -> dict[int, Decimal]:
        """
        Recompute Account.balance from the event log and write it back.

        Args:
            account_ids: Accounts to refresh (all accounts if None)

        Returns:
            {account_id: recomputed balance} for every refreshed account

        Raises:
            NotFoundError: If a requested account does not exist
        """
        snapshot = await self._store.snapshot()
        if account_ids is None:
            targets = list(snapshot.accounts)
        else:
            targets = [_find(snapshot.accounts, a, "Account") for a in account_ids]

        balances = {}
        changed = []
        for account in targets:
            new_balance = account_ledger_balance(
                snapshot.lendings,
                snapshot.transfers,
                account.id,
                opening_balance=account.opening_balance or ZERO,
            )
            balances[account.id] = new_balance
            if account.balance != new_balance:
                changed.append((account, account.model_copy(update={"balance": new_balance})))

        if changed:
            await self._write(
                "replace_accounts",
                self._store.replace_accounts([updated for _, updated in changed]),
                account_ids=[updated.id for _, updated in changed],
            )
            for old, updated in changed:
                await self._audit_logger.log_balance_refreshed(
                    account_id=updated.id,
                    old_balance=old.balance,
                    new_balance=updated.balance,
                )

        return balances


class BalanceQueryFlow:
    """
    Read-side flow.

    Each call takes ONE snapshot of the store and runs the pure engine over
    it, so a result never mixes two states of the log.
    """

    def __init__(self, store: EventStoreInterface):
        self._store = store
        self._settings = get_settings().app

    async def snapshot(self) -> LedgerSnapshot:
        return await self._store.snapshot()

    async def person_outstanding_balance(self, person_id: int) -> Decimal:
        snapshot = await self._store.snapshot()
        return person_outstanding_balance(snapshot.lendings, person_id)

    async def person_account_balance(self, person_id: int) -> Decimal:
        snapshot = await self._store.snapshot()
        return person_account_balance(snapshot.lendings, snapshot.net_flows, person_id)

    async def account_outstanding_balance(self, account_id: int) -> Decimal:
        snapshot = await self._store.snapshot()
        return account_outstanding_balance(snapshot.lendings, account_id)

    async def account_ledger_balance(self, account_id: int) -> Decimal:
        """Recomputed cash balance, starting from the account's opening balance."""
        snapshot = await self._store.snapshot()
        account = _find(snapshot.accounts, account_id, "Account")
        return account_ledger_balance(
            snapshot.lendings,
            snapshot.transfers,
            account_id,
            opening_balance=account.opening_balance or ZERO,
        )

    async def person_totals(self) -> PersonTotals:
        snapshot = await self._store.snapshot()
        return aggregate_person_totals(snapshot.lendings, snapshot.persons)

    async def history(
        self,
        account_id: Optional[int] = None,
        person_id: Optional[int] = None,
        exclude_archived: bool = True,
        tie_break: Optional[Union[TieBreak, str]] = None,
    ) -> list[HistoryItem]:
        """
        Combined history, newest first.

        Args:
            account_id: Only events where the account is primary, counterparty
                        or a transfer side
            person_id: Only events whose counterparty is the person
            exclude_archived: Drop archived lendings and account transactions
            tie_break: Same-date ordering (LENDBOOK_HISTORY_TIE_BREAK if None)
        """
        snapshot = await self._store.snapshot()
        lendings = snapshot.lendings
        transfers = snapshot.transfers
        net_flows = snapshot.net_flows

        if account_id is not None:
            lendings = [
                lending for lending in lendings
                if lending.account_id == account_id
                or lending.involves_account_as_counterparty(account_id)
            ]
            transfers = [t for t in transfers if t.touches_account(account_id)]
            net_flows = []
        if person_id is not None:
            lendings = [lending for lending in lendings if lending.involves_person(person_id)]
            transfers = []
            net_flows = [f for f in net_flows if f.person_id == person_id]

        return combined_history(
            lendings,
            transfers,
            net_flows,
            exclude_archived=exclude_archived,
            tie_break=tie_break or self._settings.history_tie_break,
        )

    async def account_summary(self, account_id: int) -> AccountSummary:
        return summarize_account(await self._store.snapshot(), account_id)

    async def person_summary(self, person_id: int) -> PersonSummary:
        return summarize_person(await self._store.snapshot(), person_id)

    async def overview(self) -> LedgerOverview:
        return ledger_overview(await self._store.snapshot())


def create_ledger_components(
    store: Optional[EventStoreInterface] = None,
) -> tuple[EventRecordingFlow, BalanceQueryFlow, EventStoreInterface]:
    """
    Factory function to create all application components.

    Args:
        store: Event store to use. If None, a JsonFileEventStore is opened
               when LENDBOOK_STORE_PATH is set, otherwise an empty
               in-memory store is used.

    Returns:
        (recording_flow, query_flow, store)
    """
    if store is None:
        store_settings = get_settings().store
        if store_settings.path is not None:
            store = JsonFileEventStore(store_settings.path)
        else:
            logger.info("store_not_configured", fallback="memory")
            store = InMemoryEventStore()

    audit_storage = store if isinstance(store, AuditStorageInterface) else None
    audit_logger = AuditLogger(audit_storage)

    recording_flow = EventRecordingFlow(store, audit_logger=audit_logger)
    query_flow = BalanceQueryFlow(store)

    return recording_flow, query_flow, store
