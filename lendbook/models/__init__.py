"""
Data Models Package

This package contains all Pydantic models used in Lendbook.
Every record read from or written to the event store conforms to these schemas.
"""

from lendbook.models.ledger import (
    Account,
    AccountTransferEvent,
    CounterpartyType,
    HistoryItem,
    HistorySource,
    LedgerRecord,
    LedgerSnapshot,
    LendingEvent,
    LendingType,
    Money,
    NetFlowType,
    Person,
    PersonNetFlowEvent,
    PersonTotals,
    TransferType,
)
from lendbook.models.validation import (
    ValidationIssue,
    ValidationResult,
)
from lendbook.models.audit import (
    AuditAction,
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    FieldChange,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountTransferEvent",
    "CounterpartyType",
    "HistoryItem",
    "HistorySource",
    "LedgerRecord",
    "LedgerSnapshot",
    "LendingEvent",
    "LendingType",
    "Money",
    "NetFlowType",
    "Person",
    "PersonNetFlowEvent",
    "PersonTotals",
    "TransferType",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditAction",
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    "FieldChange",
]
