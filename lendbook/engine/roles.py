"""
Sign Resolution

Every sign flip in the ledger lives here, keyed by an explicit role and
event type instead of ad hoc negations inside the balance loops.

Conventions:
- LendingEvent.amount > 0: the account side is owed (lent out)
- LendingEvent.amount < 0: the account side owes (borrowed)
- A return carries the opposite sign of the obligation it settles
"""

from decimal import Decimal
from enum import Enum

from lendbook.models.ledger import (
    AccountTransferEvent,
    CounterpartyType,
    LendingEvent,
    LendingType,
    NetFlowType,
    TransferType,
)


class LedgerRole(str, Enum):
    """Which side of a lending event an account sits on."""
    PRIMARY = "primary"            # event.account_id
    COUNTERPARTY = "counterparty"  # event.counterparty_id with type account


def account_roles(event: LendingEvent, account_id: int) -> tuple[LedgerRole, ...]:
    """
    Every role the account plays in the event.

    A self-loop (account lending to itself) yields both roles; their
    outstanding effects cancel. Rejecting self-loops is the job of the
    event-creation validator.
    """
    roles = []
    if event.account_id == account_id:
        roles.append(LedgerRole.PRIMARY)
    if (
        event.counterparty_type == CounterpartyType.ACCOUNT
        and event.counterparty_id == account_id
    ):
        roles.append(LedgerRole.COUNTERPARTY)
    return tuple(roles)


def outstanding_effect(role: LedgerRole, lending_type: LendingType, amount: Decimal) -> Decimal:
    """
    Contribution of an unreturned event to an account's outstanding balance.

    Primary: lend is an asset (+|a|), anything else a liability (-|a|).
    Counterparty: the same event seen from the other side, sign inverted.
    """
    effect = abs(amount) if lending_type == LendingType.LEND else -abs(amount)
    if role == LedgerRole.COUNTERPARTY:
        return -effect
    return effect


def custodial_effect(lending_type: LendingType, amount: Decimal) -> Decimal:
    """
    Contribution of a lending event to a person's custodial balance.

    Returns are added as stored: their sign already encodes direction.
    """
    if lending_type == LendingType.LEND:
        return abs(amount)
    if lending_type == LendingType.BORROW:
        return -abs(amount)
    return amount


def net_flow_effect(flow_type: NetFlowType, amount: Decimal) -> Decimal:
    """Deposit adds, withdrawal subtracts."""
    if flow_type == NetFlowType.DEPOSIT:
        return amount
    return -amount


def cash_effect(lending_type: LendingType, amount: Decimal) -> Decimal:
    """
    Contribution of a lending event to its primary account's cash ledger.

    Lending out moves cash out, borrowing moves cash in. A return moves
    cash back the other way, i.e. -amount as stored, so lend + return nets
    to zero.
    """
    if lending_type == LendingType.LEND:
        return -abs(amount)
    if lending_type == LendingType.BORROW:
        return abs(amount)
    return -amount


def transfer_effect(event: AccountTransferEvent, account_id: int) -> Decimal:
    """Contribution of an account transaction to one account's cash ledger."""
    if event.type == TransferType.TRANSFER:
        effect = Decimal("0")
        if event.from_account_id == account_id:
            effect -= event.amount
        if event.to_account_id == account_id:
            effect += event.amount
        return effect

    if event.account_id != account_id:
        return Decimal("0")
    if event.type == TransferType.WITHDRAWAL:
        return -event.amount
    # interest, investment_gain (signed), deposit
    return event.amount
