"""
Flow tests for the recording and query orchestrators.

All flows run against an InMemoryEventStore (which is also the audit
storage), driven with asyncio.run.
"""

import asyncio

import pytest
from datetime import date
from decimal import Decimal

from lendbook.audit import AuditLogger
from lendbook.config import get_settings
from lendbook.models.audit import AuditEventType
from lendbook.models.ledger import (
    Account,
    CounterpartyType,
    LedgerSnapshot,
    LendingType,
    Person,
)
from lendbook.orchestrator import (
    BalanceQueryFlow,
    EventRecordingFlow,
    LedgerOperationError,
    create_ledger_components,
)
from lendbook.services.storage import (
    InMemoryEventStore,
    JsonFileEventStore,
    NotFoundError,
    StorageError,
)
from lendbook.validation import LedgerValidationError


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    for name in (
        "LENDBOOK_STORE_PATH",
        "LENDBOOK_VALIDATE_ON_WRITE",
        "LENDBOOK_REFRESH_BALANCES_ON_WRITE",
        "LENDBOOK_DEFAULT_USER_ID",
        "LENDBOOK_HISTORY_TIE_BREAK",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store():
    return InMemoryEventStore(LedgerSnapshot(
        accounts=[
            Account(id=1, name="現金", opening_balance=Decimal("10000")),
            Account(id=2, name="銀行"),
        ],
        persons=[
            Person(id=7, name="佐藤"),
            Person(id=8, name="鈴木"),
        ],
    ))


@pytest.fixture
def flows(store):
    recording = EventRecordingFlow(store, audit_logger=AuditLogger(store))
    return recording, BalanceQueryFlow(store)


def lend_to_person(recording, amount="1000", person_id=7, lending_type="lend", **kwargs):
    return asyncio.run(recording.record_lending(
        account_id=1,
        counterparty_type="person",
        counterparty_id=person_id,
        lending_type=lending_type,
        amount=amount,
        lending_date=date(2024, 1, 1),
        **kwargs,
    ))


def audit_types(store, entity_type, entity_id):
    events = asyncio.run(store.get_events_by_entity(entity_type, entity_id))
    return [e.event_type for e in events]


class FailingWriteStore(InMemoryEventStore):
    """In-memory store whose writes fail while `fail` is set."""

    fail = False

    def _persist(self, snapshot, audit_events):
        if self.fail:
            raise StorageError("disk full")


class TestRecordLending:
    """Tests for EventRecordingFlow.record_lending."""

    def test_lend_is_stored_positive(self, flows, store):
        recording, query = flows
        lending = lend_to_person(recording, "1000")

        assert lending.id == 1
        assert lending.amount == Decimal("1000")
        assert lending.created_by_user_id == get_settings().app.default_user_id
        assert asyncio.run(query.person_outstanding_balance(7)) == Decimal("1000")
        assert audit_types(store, "lending", 1) == [AuditEventType.LENDING_RECORDED]

    def test_borrow_sign_is_normalized(self, flows):
        recording, _ = flows
        lending = lend_to_person(recording, "500", lending_type="borrow")
        assert lending.amount == Decimal("-500")

    def test_ids_increase(self, flows):
        recording, _ = flows
        first = lend_to_person(recording)
        second = lend_to_person(recording, user_id=5)
        assert (first.id, second.id) == (1, 2)
        assert second.created_by_user_id == 5

    def test_return_type_is_refused(self, flows):
        recording, _ = flows
        with pytest.raises(LedgerOperationError):
            lend_to_person(recording, lending_type="return")

    def test_self_loop_is_refused_and_audited(self, flows, store):
        recording, _ = flows
        with pytest.raises(LedgerValidationError):
            asyncio.run(recording.record_lending(
                account_id=1,
                counterparty_type=CounterpartyType.ACCOUNT,
                counterparty_id=1,
                lending_type=LendingType.LEND,
                amount=Decimal("100"),
                lending_date=date(2024, 1, 1),
            ))
        assert asyncio.run(store.snapshot()).lendings == []
        recent = asyncio.run(store.get_recent_events())
        assert recent[0].event_type == AuditEventType.VALIDATION_FAILED

    def test_validation_can_be_disabled(self, monkeypatch, store):
        monkeypatch.setenv("LENDBOOK_VALIDATE_ON_WRITE", "false")
        recording = EventRecordingFlow(store)
        lending = asyncio.run(recording.record_lending(
            account_id=1,
            counterparty_type="account",
            counterparty_id=1,
            lending_type="lend",
            amount=100,
            lending_date=date(2024, 1, 1),
        ))
        assert lending.id == 1

    def test_orphaned_counterparty_is_recorded(self, flows):
        recording, query = flows
        lend_to_person(recording, "300", person_id=404)
        assert asyncio.run(query.person_outstanding_balance(404)) == Decimal("300")


class TestMarkReturned:
    """Tests for EventRecordingFlow.mark_returned."""

    def test_settles_original_and_appends_return(self, flows, store):
        recording, query = flows
        lend_to_person(recording, "1000")

        return_event = asyncio.run(recording.mark_returned(1, return_date=date(2024, 2, 1)))

        assert return_event.type == LendingType.RETURN
        assert return_event.amount == Decimal("-1000")
        assert return_event.original_id == 1
        assert return_event.returned is True
        assert return_event.memo == "返済"
        assert return_event.counterparty_id == 7
        assert return_event.date == date(2024, 2, 1)

        snapshot = asyncio.run(store.snapshot())
        assert snapshot.lendings[0].returned is True
        assert asyncio.run(query.person_outstanding_balance(7)) == 0
        assert asyncio.run(query.person_account_balance(7)) == 0
        assert AuditEventType.LENDING_RETURNED in audit_types(store, "lending", 1)

    def test_cannot_return_twice(self, flows):
        recording, _ = flows
        lend_to_person(recording)
        asyncio.run(recording.mark_returned(1))
        with pytest.raises(LedgerOperationError):
            asyncio.run(recording.mark_returned(1))

    def test_cannot_return_a_return(self, flows):
        recording, _ = flows
        lend_to_person(recording)
        return_event = asyncio.run(recording.mark_returned(1))
        with pytest.raises(LedgerOperationError):
            asyncio.run(recording.mark_returned(return_event.id))

    def test_unknown_lending(self, flows):
        recording, _ = flows
        with pytest.raises(NotFoundError):
            asyncio.run(recording.mark_returned(42))


    def test_failed_write_leaves_original_open(self):
        store = FailingWriteStore(LedgerSnapshot(
            accounts=[Account(id=1, name="現金")],
            persons=[Person(id=7, name="佐藤")],
        ))
        recording = EventRecordingFlow(store, audit_logger=AuditLogger())
        lend_to_person(recording, "1000")

        store.fail = True
        with pytest.raises(StorageError):
            asyncio.run(recording.mark_returned(1))

        snapshot = asyncio.run(store.snapshot())
        assert [e.id for e in snapshot.lendings] == [1]
        assert snapshot.lendings[0].returned is False

        store.fail = False
        return_event = asyncio.run(recording.mark_returned(1))
        assert return_event.id == 2
        assert len(asyncio.run(store.snapshot()).lendings) == 2



class TestArchiveAndEdit:
    """Tests for archival and edits."""

    def test_archive_removes_from_balances_not_history(self, flows, store):
        recording, query = flows
        lend_to_person(recording, "1000")
        archived = asyncio.run(recording.archive_lending(1))

        assert archived.is_archived is True
        assert asyncio.run(query.person_outstanding_balance(7)) == 0
        assert asyncio.run(query.history()) == []
        history = asyncio.run(query.history(exclude_archived=False))
        assert [item.id for item in history] == ["lending-1"]
        assert audit_types(store, "lending", 1)[-1] == AuditEventType.LENDING_ARCHIVED

    def test_archive_twice_is_a_no_op(self, flows, store):
        recording, _ = flows
        lend_to_person(recording)
        asyncio.run(recording.archive_lending(1))
        asyncio.run(recording.archive_lending(1))
        archived = [
            t for t in audit_types(store, "lending", 1)
            if t == AuditEventType.LENDING_ARCHIVED
        ]
        assert len(archived) == 1

    def test_edit_records_description(self, flows, store):
        recording, query = flows
        lend_to_person(recording, "1000")

        edited = asyncio.run(recording.edit_lending(
            1, {"amount": Decimal("2000"), "memo": "返済"}, user_id=3,
        ))

        assert edited.amount == Decimal("2000")
        assert edited.last_edited_by_user_id == 3
        assert edited.last_edited_at is not None
        assert asyncio.run(query.person_outstanding_balance(7)) == Decimal("2000")

        events = asyncio.run(store.get_events_by_entity("lending", 1))
        assert events[-1].event_type == AuditEventType.LENDING_UPDATED
        assert events[-1].description == "金額を¥1,000→¥2,000に変更、メモを(なし)→返済に変更"

    def test_edit_with_long_memo(self, flows, store):
        recording, _ = flows
        lend_to_person(recording, "1000")
        long_memo = "x" * 600

        edited = asyncio.run(recording.edit_lending(1, {"memo": long_memo}))

        assert edited.memo == long_memo
        assert asyncio.run(store.snapshot()).lendings[0].memo == long_memo
        events = asyncio.run(store.get_events_by_entity("lending", 1))
        assert events[-1].event_type == AuditEventType.LENDING_UPDATED
        assert events[-1].description == f"メモを(なし)→{long_memo}に変更"

    def test_long_memo_edit_still_refreshes_balances(self, monkeypatch, store):
        monkeypatch.setenv("LENDBOOK_REFRESH_BALANCES_ON_WRITE", "true")
        get_settings.cache_clear()
        recording = EventRecordingFlow(store)
        lend_to_person(recording, "1000", memo="短い")

        asyncio.run(recording.edit_lending(1, {"memo": "y" * 800, "amount": 3000}))

        assert asyncio.run(store.snapshot()).account_by_id(1).balance == Decimal("7000")

    def test_edit_type_flips_sign(self, flows):
        recording, _ = flows
        lend_to_person(recording, "1000")
        edited = asyncio.run(recording.edit_lending(1, {"type": "borrow"}))
        assert edited.amount == Decimal("-1000")

    def test_edit_counterparty_uses_names(self, flows, store):
        recording, _ = flows
        lend_to_person(recording, "1000")
        asyncio.run(recording.edit_lending(1, {"counterparty_id": 8}))
        events = asyncio.run(store.get_events_by_entity("lending", 1))
        assert events[-1].description == "相手を佐藤→鈴木に変更"

    def test_edit_without_changes_writes_nothing(self, flows, store):
        recording, _ = flows
        lend_to_person(recording, "1000")
        asyncio.run(recording.edit_lending(1, {"amount": 1000}))
        assert audit_types(store, "lending", 1) == [AuditEventType.LENDING_RECORDED]

    def test_edit_into_self_loop_is_refused(self, flows):
        recording, _ = flows
        lend_to_person(recording)
        with pytest.raises(LedgerValidationError):
            asyncio.run(recording.edit_lending(
                1, {"counterparty_type": "account", "counterparty_id": 1},
            ))

    def test_edit_rejects_unknown_fields(self, flows):
        recording, _ = flows
        lend_to_person(recording)
        with pytest.raises(LedgerOperationError):
            asyncio.run(recording.edit_lending(1, {"returned": True}))


class TestTransfersAndNetFlows:
    """Tests for account transactions and person net flows."""

    def test_transfer_and_ledger_balance(self, flows, store):
        recording, query = flows
        asyncio.run(recording.record_transfer(
            transfer_type="transfer",
            amount="400",
            transfer_date=date(2024, 1, 1),
            from_account_id=1,
            to_account_id=2,
        ))
        assert asyncio.run(query.account_ledger_balance(1)) == Decimal("9600")
        assert asyncio.run(query.account_ledger_balance(2)) == Decimal("400")
        assert audit_types(store, "transaction", 1) == [AuditEventType.TRANSFER_RECORDED]

    def test_transfer_to_same_account_is_refused(self, flows):
        recording, _ = flows
        with pytest.raises(LedgerValidationError):
            asyncio.run(recording.record_transfer(
                transfer_type="transfer",
                amount="400",
                transfer_date=date(2024, 1, 1),
                from_account_id=1,
                to_account_id=1,
            ))

    def test_edit_and_archive_transfer(self, flows, store):
        recording, query = flows
        asyncio.run(recording.record_transfer(
            transfer_type="interest",
            amount="12",
            transfer_date=date(2024, 1, 1),
            account_id=2,
        ))
        asyncio.run(recording.edit_transfer(1, {"amount": Decimal("15")}))
        assert asyncio.run(query.account_ledger_balance(2)) == Decimal("15")

        asyncio.run(recording.archive_transfer(1))
        assert asyncio.run(query.account_ledger_balance(2)) == 0
        assert audit_types(store, "transaction", 1) == [
            AuditEventType.TRANSFER_RECORDED,
            AuditEventType.TRANSFER_UPDATED,
            AuditEventType.TRANSFER_ARCHIVED,
        ]

    def test_net_flow(self, flows, store):
        recording, query = flows
        lend_to_person(recording, "5000")
        flow = asyncio.run(recording.record_net_flow(
            person_id=7,
            flow_type="deposit",
            amount="2000",
            flow_date=date(2024, 1, 2),
        ))
        assert flow.id == 1
        assert asyncio.run(query.person_outstanding_balance(7)) == Decimal("5000")
        assert asyncio.run(query.person_account_balance(7)) == Decimal("7000")
        assert audit_types(store, "person-transaction", 1) == [AuditEventType.NET_FLOW_RECORDED]


    def test_failed_write_is_not_kept(self):
        store = FailingWriteStore(LedgerSnapshot(persons=[Person(id=7, name="佐藤")]))
        recording = EventRecordingFlow(store, audit_logger=AuditLogger())

        def deposit():
            return asyncio.run(recording.record_net_flow(
                person_id=7,
                flow_type="deposit",
                amount="2000",
                flow_date=date(2024, 1, 2),
            ))

        store.fail = True
        with pytest.raises(StorageError):
            deposit()
        assert asyncio.run(store.snapshot()).net_flows == []

        store.fail = False
        deposit()
        assert len(asyncio.run(store.snapshot()).net_flows) == 1


class TestLinkedAccountingRows:
    """Interest and investment results mirrored into the accounting 'transactions' rows."""

    @pytest.fixture
    def linked_store(self):
        return InMemoryEventStore(LedgerSnapshot.from_records({
            "accounts": [{"id": 2, "name": "銀行"}],
            "accountTransactions": [
                {
                    "id": 1, "type": "interest", "accountId": 2, "amount": 12,
                    "date": "2024-01-31", "memo": "1月分", "linkedTransactionId": 40,
                },
                {
                    "id": 2, "type": "investment_gain", "accountId": 2, "amount": 300,
                    "date": "2024-01-31", "linkedTransactionId": 41,
                },
            ],
            "transactions": [
                {
                    "id": 40, "type": "income", "category": "受取利息", "amount": 12,
                    "date": "2024-01-31", "memo": "1月分", "businessId": 1,
                },
                {
                    "id": 41, "type": "income", "category": "運用損益", "amount": 300,
                    "date": "2024-01-31",
                },
                {"id": 42, "type": "expense", "category": "通信費", "amount": 3000, "date": "2024-01-31"},
            ],
        }))

    @staticmethod
    def accounting_rows(store):
        rows = asyncio.run(store.snapshot()).to_records()["transactions"]
        return {row["id"]: row for row in rows}

    def test_edit_interest_rewrites_row(self, linked_store):
        recording = EventRecordingFlow(linked_store)
        asyncio.run(recording.edit_transfer(
            1, {"amount": Decimal("15"), "date": date(2024, 2, 29)},
        ))

        row = self.accounting_rows(linked_store)[40]
        assert row == {
            "id": 40, "type": "income", "category": "受取利息", "amount": 15,
            "date": "2024-02-29", "memo": "1月分", "businessId": 1,
        }

    def test_edit_gain_into_loss_becomes_expense(self, linked_store):
        recording = EventRecordingFlow(linked_store)
        asyncio.run(recording.edit_transfer(2, {"amount": Decimal("-120"), "memo": "評価損"}))

        row = self.accounting_rows(linked_store)[41]
        assert row["type"] == "expense"
        assert row["category"] == "運用損益"
        assert row["amount"] == 120
        assert row["memo"] == "評価損"

    def test_archive_deletes_row(self, linked_store):
        recording = EventRecordingFlow(linked_store)
        asyncio.run(recording.archive_transfer(1))

        rows = self.accounting_rows(linked_store)
        assert sorted(rows) == [41, 42]
        stored = asyncio.run(linked_store.snapshot()).transfers[0]
        assert stored.is_archived is True
        assert stored.linked_transaction_id == 40

    def test_unlinked_transaction_leaves_rows_alone(self, linked_store):
        recording = EventRecordingFlow(linked_store)
        before = self.accounting_rows(linked_store)
        asyncio.run(recording.record_transfer(
            transfer_type="deposit",
            amount="500",
            transfer_date=date(2024, 2, 1),
            account_id=2,
        ))
        asyncio.run(recording.archive_transfer(3))
        assert self.accounting_rows(linked_store) == before



class TestRefreshAccountBalances:
    """Tests for the Account.balance write-through."""

    def test_refresh_all(self, flows, store):
        recording, query = flows
        lend_to_person(recording, "3000")

        balances = asyncio.run(recording.refresh_account_balances())

        assert balances == {1: Decimal("7000"), 2: Decimal("0")}
        accounts = asyncio.run(store.snapshot()).accounts
        assert accounts[0].balance == Decimal("7000")
        summary = asyncio.run(query.account_summary(1))
        assert summary.cache_is_stale is False
        assert AuditEventType.ACCOUNT_BALANCE_REFRESHED in audit_types(store, "account", 1)

    def test_unchanged_balance_is_not_rewritten(self, flows, store):
        recording, _ = flows
        asyncio.run(recording.refresh_account_balances([1]))
        asyncio.run(recording.refresh_account_balances([1]))
        refreshed = [
            t for t in audit_types(store, "account", 1)
            if t == AuditEventType.ACCOUNT_BALANCE_REFRESHED
        ]
        assert len(refreshed) == 1

    def test_unknown_account(self, flows):
        recording, _ = flows
        with pytest.raises(NotFoundError):
            asyncio.run(recording.refresh_account_balances([99]))

    def test_refresh_on_write(self, monkeypatch, store):
        monkeypatch.setenv("LENDBOOK_REFRESH_BALANCES_ON_WRITE", "true")
        recording = EventRecordingFlow(store)
        asyncio.run(recording.record_lending(
            account_id=1,
            counterparty_type="account",
            counterparty_id=2,
            lending_type="lend",
            amount=500,
            lending_date=date(2024, 1, 1),
        ))
        accounts = asyncio.run(store.snapshot()).accounts
        assert accounts[0].balance == Decimal("9500")
        assert accounts[1].balance == Decimal("0")


class TestBalanceQueryFlow:
    """Tests for the read side."""

    def test_dual_role_through_flows(self, flows):
        recording, query = flows
        asyncio.run(recording.record_lending(
            account_id=1,
            counterparty_type="account",
            counterparty_id=2,
            lending_type="lend",
            amount=1000,
            lending_date=date(2024, 1, 1),
        ))
        assert asyncio.run(query.account_outstanding_balance(1)) == Decimal("1000")
        assert asyncio.run(query.account_outstanding_balance(2)) == Decimal("-1000")

    def test_history_filters(self, flows):
        recording, query = flows
        lend_to_person(recording, "1000", person_id=7)
        lend_to_person(recording, "200", person_id=8)
        asyncio.run(recording.record_transfer(
            transfer_type="deposit",
            amount=50,
            transfer_date=date(2024, 1, 3),
            account_id=2,
        ))
        asyncio.run(recording.record_net_flow(
            person_id=7, flow_type="withdrawal", amount=10, flow_date=date(2024, 1, 2),
        ))

        by_person = asyncio.run(query.history(person_id=7))
        assert [item.id for item in by_person] == ["person-transaction-1", "lending-1"]

        by_account = asyncio.run(query.history(account_id=2))
        assert [item.id for item in by_account] == ["transaction-1"]

        everything = asyncio.run(query.history())
        assert [item.id for item in everything] == [
            "transaction-1", "person-transaction-1", "lending-1", "lending-2",
        ]

    def test_history_tie_break_from_settings(self, monkeypatch):
        store = InMemoryEventStore(LedgerSnapshot.from_records({"lendings": [
            {"id": 5, "accountId": 1, "personId": 7, "type": "lend",
             "amount": 100, "date": "2024-01-01"},
            {"id": 2, "accountId": 1, "personId": 7, "type": "lend",
             "amount": 200, "date": "2024-01-01"},
        ]}))

        insertion = asyncio.run(BalanceQueryFlow(store).history())
        assert [item.id for item in insertion] == ["lending-5", "lending-2"]

        monkeypatch.setenv("LENDBOOK_HISTORY_TIE_BREAK", "kind_then_id")
        ordered = asyncio.run(BalanceQueryFlow(store).history())
        assert [item.id for item in ordered] == ["lending-2", "lending-5"]

    def test_person_totals_and_overview(self, flows):
        recording, query = flows
        lend_to_person(recording, "5000", person_id=7)
        lend_to_person(recording, "2000", person_id=8, lending_type="borrow")

        totals = asyncio.run(query.person_totals())
        assert totals.total_lent == Decimal("5000")
        assert totals.total_borrowed == Decimal("2000")

        overview = asyncio.run(query.overview())
        assert overview.totals == totals
        assert [a.account_id for a in overview.accounts] == [1, 2]

        summary = asyncio.run(query.person_summary(8))
        assert summary.outstanding_balance == Decimal("-2000")
        assert summary.unreturned_borrowed == Decimal("2000")


class TestCreateLedgerComponents:
    """Tests for the factory."""

    def test_defaults_to_memory_store(self):
        recording, query, store = create_ledger_components()
        assert isinstance(store, InMemoryEventStore)
        assert not isinstance(store, JsonFileEventStore)
        assert isinstance(recording, EventRecordingFlow)
        assert isinstance(query, BalanceQueryFlow)

    def test_uses_json_file_when_configured(self, monkeypatch, tmp_path):
        path = tmp_path / "ledger.json"
        monkeypatch.setenv("LENDBOOK_STORE_PATH", str(path))
        recording, _, store = create_ledger_components()
        assert isinstance(store, JsonFileEventStore)

        asyncio.run(recording.record_net_flow(
            person_id=7, flow_type="deposit", amount=1, flow_date=date(2024, 1, 1),
        ))
        assert path.exists()

    def test_uses_given_store(self, store):
        _, _, returned = create_ledger_components(store)
        assert returned is store


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
