"""
Ledger engine package.

Pure, stateless computations over one snapshot of the event log.
"""

from lendbook.engine.balance import (
    account_ledger_balance,
    account_outstanding_balance,
    aggregate_person_totals,
    person_account_balance,
    person_outstanding_balance,
)
from lendbook.engine.history import (
    TieBreak,
    combined_history,
    type_label,
)
from lendbook.engine.roles import LedgerRole

__all__ = [
    "LedgerRole",
    "TieBreak",
    "account_ledger_balance",
    "account_outstanding_balance",
    "aggregate_person_totals",
    "combined_history",
    "person_account_balance",
    "person_outstanding_balance",
    "type_label",
]
