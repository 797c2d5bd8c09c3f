"""
Balance Engine

Pure functions deriving point-in-time balances from a snapshot of the
event log. Nothing here mutates its inputs, performs I/O or raises on
well-formed input.

DESIGN DECISION: Archived events never contribute to a balance.
Counterparty ids that resolve to no Account/Person still take part in the
arithmetic; resolving names is a display concern.
"""

from decimal import Decimal
from typing import Iterable

from lendbook.engine.roles import (
    account_roles,
    cash_effect,
    custodial_effect,
    net_flow_effect,
    outstanding_effect,
    transfer_effect,
)
from lendbook.models.ledger import (
    ZERO,
    AccountTransferEvent,
    LendingEvent,
    Person,
    PersonNetFlowEvent,
    PersonTotals,
)


def person_outstanding_balance(lendings: Iterable[LendingEvent], person_id: int) -> Decimal:
    """
    What is currently owed between the organization and a person.

    Sums the stored amount of every non-archived, unreturned event whose
    counterparty is the person.

    Returns:
        Positive: the person owes the organization.
        Negative: the organization owes the person.
    """
    return sum(
        (
            lending.amount
            for lending in lendings
            if not lending.is_archived
            and not lending.returned
            and lending.involves_person(person_id)
        ),
        ZERO,
    )


def person_account_balance(
    lendings: Iterable[LendingEvent],
    net_flows: Iterable[PersonNetFlowEvent],
    person_id: int,
) -> Decimal:
    """
    Running custodial position with a person, settled history included.

    Net flows plus the effect of every non-archived lending event touching
    the person, returned or not. A lend and its return cancel out.
    """
    net_flow_total = sum(
        (
            net_flow_effect(flow.type, flow.amount)
            for flow in net_flows
            if not flow.is_archived and flow.person_id == person_id
        ),
        ZERO,
    )

    lending_effect = sum(
        (
            custodial_effect(lending.type, lending.amount)
            for lending in lendings
            if not lending.is_archived and lending.involves_person(person_id)
        ),
        ZERO,
    )

    return net_flow_total + lending_effect


def account_outstanding_balance(lendings: Iterable[LendingEvent], account_id: int) -> Decimal:
    """
    Outstanding lending position of an account.

    The account may be the primary side of an event or an account-type
    counterparty of another account's event. Each role contributes once,
    with opposite signs, so inter-account events sum to zero across both
    accounts.

    Returns:
        Positive: net lender (asset). Negative: net borrower (liability).
    """
    balance = ZERO
    for lending in lendings:
        if lending.is_archived or lending.returned:
            continue
        for role in account_roles(lending, account_id):
            balance += outstanding_effect(role, lending.type, lending.amount)
    return balance


def aggregate_person_totals(
    lendings: Iterable[LendingEvent],
    persons: Iterable[Person],
) -> PersonTotals:
    """
    Split outstanding person balances into lent and borrowed totals.

    Archived persons are skipped; zero balances count toward neither side.
    """
    lendings = list(lendings)
    total_lent = ZERO
    total_borrowed = ZERO

    for person in persons:
        if person.is_archived:
            continue
        balance = person_outstanding_balance(lendings, person.id)
        if balance > 0:
            total_lent += balance
        elif balance < 0:
            total_borrowed += abs(balance)

    return PersonTotals(total_lent=total_lent, total_borrowed=total_borrowed)


def account_ledger_balance(
    lendings: Iterable[LendingEvent],
    transfers: Iterable[AccountTransferEvent],
    account_id: int,
    opening_balance: Decimal = ZERO,
) -> Decimal:
    """
    Running cash balance of an account, net of transfers.

    This is the value the Account.balance cache should hold. Only events
    where the account is the primary side move its cash; the counterparty
    account of an inter-account loan records its own side separately.

    Args:
        lendings: Lending events
        transfers: Account transactions
        account_id: Account to compute
        opening_balance: Balance before the first event in the log
    """
    balance = Decimal(opening_balance)

    for lending in lendings:
        if not lending.is_archived and lending.account_id == account_id:
            balance += cash_effect(lending.type, lending.amount)

    for transfer in transfers:
        if not transfer.is_archived and transfer.touches_account(account_id):
            balance += transfer_effect(transfer, account_id)

    return balance
