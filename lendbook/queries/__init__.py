"""Report summaries package."""

from lendbook.queries.summaries import (
    AccountSummary,
    LedgerOverview,
    PersonSummary,
    QueryError,
    ledger_overview,
    summarize_account,
    summarize_person,
)

__all__ = [
    "AccountSummary",
    "LedgerOverview",
    "PersonSummary",
    "QueryError",
    "ledger_overview",
    "summarize_account",
    "summarize_person",
]
