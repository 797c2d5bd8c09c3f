"""
Report Summaries

DESIGN DECISION: Summaries are DETERMINISTIC projections of one snapshot.
They combine engine results with the Account/Person reference lists for
the dashboard cards and the monthly report. Names are joined here, never
inside the engine.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from lendbook.engine.balance import (
    account_ledger_balance,
    account_outstanding_balance,
    aggregate_person_totals,
    person_account_balance,
    person_outstanding_balance,
)
from lendbook.models.ledger import (
    ZERO,
    LedgerSnapshot,
    LendingType,
    Money,
    PersonTotals,
)


class QueryError(Exception):
    """A summary was requested for an id that does not exist."""
    pass


class AccountSummary(BaseModel):
    """Numbers shown on an account card and the account detail page."""

    account_id: int
    name: Optional[str] = None
    is_archived: bool = False

    outstanding_balance: Money = Field(
        ...,
        description="Unreturned lending position (positive = asset)"
    )
    lending_total: Money = Field(
        ...,
        description="Positive part of outstanding_balance"
    )
    borrowing_total: Money = Field(
        ...,
        description="Absolute negative part of outstanding_balance"
    )
    cached_balance: Money = Field(
        ...,
        description="Account.balance as stored (0 if unset)"
    )
    ledger_balance: Money = Field(
        ...,
        description="Balance recomputed from the event log"
    )

    @property
    def net_worth(self) -> Decimal:
        """Cash plus what the account is owed, minus what it owes."""
        return self.cached_balance + self.outstanding_balance

    @property
    def cache_is_stale(self) -> bool:
        return self.cached_balance != self.ledger_balance


class PersonSummary(BaseModel):
    """Numbers shown on a person card and the person detail page."""

    person_id: int
    name: Optional[str] = None
    is_archived: bool = False

    outstanding_balance: Money
    account_balance: Money
    unreturned_lent: Money
    unreturned_borrowed: Money


class LedgerOverview(BaseModel):
    """Top of the lending dashboard: totals plus active participants."""

    totals: PersonTotals
    accounts: list[AccountSummary] = Field(default_factory=list)
    persons: list[PersonSummary] = Field(default_factory=list)


def summarize_account(
    snapshot: LedgerSnapshot,
    account_id: int,
    opening_balance: Optional[Decimal] = None,
) -> AccountSummary:
    """
    Summarize one account.

    opening_balance defaults to the account's stored opening balance.

    Raises:
        QueryError: If the account is not in the snapshot
    """
    account = snapshot.account_by_id(account_id)
    if account is None:
        raise QueryError(f"Account not found: {account_id}")

    if opening_balance is None:
        opening_balance = account.opening_balance or ZERO

    outstanding = account_outstanding_balance(snapshot.lendings, account_id)
    return AccountSummary(
        account_id=account_id,
        name=account.name,
        is_archived=account.is_archived,
        outstanding_balance=outstanding,
        lending_total=outstanding if outstanding > 0 else ZERO,
        borrowing_total=abs(outstanding) if outstanding < 0 else ZERO,
        cached_balance=account.balance if account.balance is not None else ZERO,
        ledger_balance=account_ledger_balance(
            snapshot.lendings,
            snapshot.transfers,
            account_id,
            opening_balance=opening_balance,
        ),
    )


def summarize_person(snapshot: LedgerSnapshot, person_id: int) -> PersonSummary:
    """
    Summarize one person.

    Raises:
        QueryError: If the person is not in the snapshot
    """
    person = snapshot.person_by_id(person_id)
    if person is None:
        raise QueryError(f"Person not found: {person_id}")

    open_events = [
        lending for lending in snapshot.lendings
        if not lending.is_archived and not lending.returned and lending.involves_person(person_id)
    ]
    return PersonSummary(
        person_id=person_id,
        name=person.name,
        is_archived=person.is_archived,
        outstanding_balance=person_outstanding_balance(snapshot.lendings, person_id),
        account_balance=person_account_balance(
            snapshot.lendings, snapshot.net_flows, person_id
        ),
        unreturned_lent=sum(
            (abs(e.amount) for e in open_events if e.type == LendingType.LEND), ZERO
        ),
        unreturned_borrowed=sum(
            (abs(e.amount) for e in open_events if e.type == LendingType.BORROW), ZERO
        ),
    )


def ledger_overview(snapshot: LedgerSnapshot) -> LedgerOverview:
    """Totals over active persons plus summaries of active participants."""
    return LedgerOverview(
        totals=aggregate_person_totals(snapshot.lendings, snapshot.persons),
        accounts=[summarize_account(snapshot, a.id) for a in snapshot.active_accounts],
        persons=[summarize_person(snapshot, p.id) for p in snapshot.active_persons],
    )
