"""
Change Descriptions

Turns an edit of a lending event or account transaction into the
field-level change list and the one-line Japanese description stored in
the audit history ("金額を¥1,000→¥2,000に変更、メモを(なし)→返済に変更").
"""

from decimal import Decimal
from typing import Any, Iterable, Optional

from lendbook.engine.history import type_label
from lendbook.models.audit import FieldChange
from lendbook.models.ledger import Account, CounterpartyType, Person

FIELD_LABELS = {
    "amount": "金額",
    "date": "日付",
    "memo": "メモ",
    "account_id": "口座",
    "counterparty_id": "相手",
    "counterparty_type": "相手タイプ",
    "type": "種類",
    "from_account_id": "振替元",
    "to_account_id": "振替先",
}

_ACCOUNT_FIELDS = ("account_id", "from_account_id", "to_account_id")

NO_VALUE = "(なし)"
NO_CHANGES = "変更なし"


def _plain(value: Any) -> Any:
    """Unwrap enums so values compare and print like stored JSON."""
    return getattr(value, "value", value)


def format_amount(value: Any) -> str:
    """¥ with thousands separators, sign dropped (direction lives in the type)."""
    amount = abs(Decimal(str(value)))
    if amount == amount.to_integral_value():
        return f"¥{int(amount):,}"
    return f"¥{amount:,}"


def _display(
    field: str,
    value: Any,
    counterparty_type: Optional[str],
    accounts: dict[int, Account],
    persons: dict[int, Person],
) -> str:
    if value is None:
        return ""
    if field in _ACCOUNT_FIELDS:
        account = accounts.get(value)
        return account.name if account else str(value)
    if field == "counterparty_id":
        if counterparty_type == CounterpartyType.ACCOUNT.value:
            account = accounts.get(value)
            return account.name if account else str(value)
        person = persons.get(value)
        return person.name if person else str(value)
    if field == "type":
        return type_label(value)
    if field == "amount":
        return format_amount(value)
    return str(value)


def detect_changes(
    old_values: dict[str, Any],
    new_values: dict[str, Any],
    accounts: Iterable[Account] = (),
    persons: Iterable[Person] = (),
) -> list[FieldChange]:
    """
    Compare the editable fields of two versions of an event.

    Args:
        old_values: Field values before the edit (snake_case keys)
        new_values: Field values after the edit
        accounts: Used to show account names instead of ids
        persons: Used to show person names instead of ids

    Returns:
        One FieldChange per field whose value differs
    """
    accounts_by_id = {a.id: a for a in accounts}
    persons_by_id = {p.id: p for p in persons}
    counterparty_type = _plain(
        new_values.get("counterparty_type") or old_values.get("counterparty_type")
    )

    changes = []
    for field, label in FIELD_LABELS.items():
        old = _plain(old_values.get(field))
        new = _plain(new_values.get(field))
        if old == new:
            continue

        changes.append(FieldChange(
            field=field,
            old_value=_display(field, old, counterparty_type, accounts_by_id, persons_by_id),
            new_value=_display(field, new, counterparty_type, accounts_by_id, persons_by_id),
            display_name=label,
        ))

    return changes


def describe_changes(changes: list[FieldChange]) -> str:
    """Join changes into the stored description, or 変更なし."""
    parts = [
        f"{c.display_name}を{c.old_value or NO_VALUE}→{c.new_value or NO_VALUE}に変更"
        for c in changes
    ]
    return "、".join(parts) or NO_CHANGES
