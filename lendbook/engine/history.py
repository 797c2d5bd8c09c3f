"""
History Compositor

Merges lending events, account transactions and person net flows into one
date-descending list of HistoryItem for audit and reporting.

Same-date ordering: by default items sharing a date keep their
concatenation order (lendings, then transactions, then net flows, each in
input order). Nothing stronger is promised; callers that need a total
order pass tie_break=TieBreak.KIND_THEN_ID.
"""

from enum import Enum
from typing import Iterable

import structlog

from lendbook.models.ledger import (
    AccountTransferEvent,
    CounterpartyType,
    HistoryItem,
    HistorySource,
    LendingEvent,
    LendingType,
    NetFlowType,
    PersonNetFlowEvent,
    TransferType,
)

logger = structlog.get_logger(__name__)


# Labels used in existing reports. Do not translate or reword.
LEND_LABEL = "貸し"
BORROW_LABEL = "借り"
RETURN_LABEL = "返済"

TRANSACTION_LABELS = {
    TransferType.TRANSFER: "振替",
    TransferType.INTEREST: "受取利息",
    TransferType.DEPOSIT: "純入金",
    TransferType.WITHDRAWAL: "純出金",
}
INVESTMENT_GAIN_LABEL = "運用益"
INVESTMENT_LOSS_LABEL = "運用損"

NET_FLOW_LABELS = {
    NetFlowType.DEPOSIT: "純入金",
    NetFlowType.WITHDRAWAL: "純出金",
}

# Short labels for change descriptions ("種類を貸し→借りに変更").
TYPE_LABELS = {
    "lend": "貸し",
    "borrow": "借り",
    "return": "返済",
    "transfer": "振替",
    "interest": "利息",
    "investment_gain": "運用損益",
    "deposit": "純入金",
    "withdrawal": "純出金",
}

_SOURCE_ORDER = {
    HistorySource.LENDING: 0,
    HistorySource.TRANSACTION: 1,
    HistorySource.PERSON_TRANSACTION: 2,
}


class TieBreak(str, Enum):
    """How items on the same date are ordered."""
    INSERTION = "insertion"        # concatenation order, no stronger intent
    KIND_THEN_ID = "kind_then_id"  # source, then original id


def type_label(event_type: str) -> str:
    """Short label for an event type; unknown types pass through."""
    return TYPE_LABELS.get(event_type, event_type)


def transaction_label(event: AccountTransferEvent) -> str:
    if event.type == TransferType.INVESTMENT_GAIN:
        return INVESTMENT_GAIN_LABEL if event.amount >= 0 else INVESTMENT_LOSS_LABEL
    return TRANSACTION_LABELS[event.type]


def lending_to_history_item(lending: LendingEvent) -> HistoryItem:
    """Project a lending event. The type tag follows the amount sign."""
    if lending.type == LendingType.RETURN:
        type_tag, label = LendingType.RETURN.value, RETURN_LABEL
    elif lending.amount > 0:
        type_tag, label = LendingType.LEND.value, LEND_LABEL
    else:
        type_tag, label = LendingType.BORROW.value, BORROW_LABEL

    return HistoryItem(
        id=f"{HistorySource.LENDING.value}-{lending.id}",
        date=lending.date,
        type=type_tag,
        display_type=label,
        amount=lending.amount,
        account_id=lending.account_id,
        counterparty_type=lending.counterparty_type,
        counterparty_id=lending.counterparty_id,
        memo=lending.memo,
        returned=lending.returned,
        source=HistorySource.LENDING,
        original_id=lending.id,
        created_by_user_id=lending.created_by_user_id,
        last_edited_by_user_id=lending.last_edited_by_user_id,
        last_edited_at=lending.last_edited_at,
    )


def transaction_to_history_item(event: AccountTransferEvent) -> HistoryItem:
    """Project an account transaction. Transfers list the source account first."""
    return HistoryItem(
        id=f"{HistorySource.TRANSACTION.value}-{event.id}",
        date=event.date,
        type=event.type.value,
        display_type=transaction_label(event),
        amount=event.amount,
        account_id=event.primary_account_id,
        to_account_id=event.to_account_id,
        memo=event.memo,
        source=HistorySource.TRANSACTION,
        original_id=event.id,
        created_by_user_id=event.created_by_user_id,
        last_edited_by_user_id=event.last_edited_by_user_id,
        last_edited_at=event.last_edited_at,
    )


def net_flow_to_history_item(flow: PersonNetFlowEvent) -> HistoryItem:
    """Project a person net flow with a signed amount."""
    amount = flow.amount if flow.type == NetFlowType.DEPOSIT else -flow.amount
    return HistoryItem(
        id=f"{HistorySource.PERSON_TRANSACTION.value}-{flow.id}",
        date=flow.date,
        type=flow.type.value,
        display_type=NET_FLOW_LABELS[flow.type],
        amount=amount,
        counterparty_type=CounterpartyType.PERSON,
        counterparty_id=flow.person_id,
        memo=flow.memo,
        source=HistorySource.PERSON_TRANSACTION,
        original_id=flow.id,
        created_by_user_id=flow.created_by_user_id,
    )


def combined_history(
    lendings: Iterable[LendingEvent],
    transfers: Iterable[AccountTransferEvent],
    net_flows: Iterable[PersonNetFlowEvent] = (),
    exclude_archived: bool = True,
    tie_break: TieBreak = TieBreak.INSERTION,
) -> list[HistoryItem]:
    """
    Build the combined history, newest first.

    Args:
        lendings: Lending events
        transfers: Account transactions
        net_flows: Person net flows; always included, archived or not
        exclude_archived: Drop archived lendings and account transactions
        tie_break: Ordering of items that share a date

    Returns:
        History items sorted by date descending
    """
    tie_break = TieBreak(tie_break)

    lending_items = [
        lending_to_history_item(lending)
        for lending in lendings
        if not (exclude_archived and lending.is_archived)
    ]
    transaction_items = [
        transaction_to_history_item(t)
        for t in transfers
        if not (exclude_archived and t.is_archived)
    ]
    net_flow_items = [net_flow_to_history_item(f) for f in net_flows]

    items = lending_items + transaction_items + net_flow_items

    if tie_break == TieBreak.KIND_THEN_ID:
        items.sort(key=lambda item: (_SOURCE_ORDER[item.source], item.original_id))

    # list.sort is stable, also with reverse=True
    items.sort(key=lambda item: item.date, reverse=True)

    logger.debug(
        "combined_history_built",
        lendings=len(lending_items),
        transactions=len(transaction_items),
        net_flows=len(net_flow_items),
        tie_break=tie_break.value,
    )
    return items
