"""
Audit Models for Lendbook

Every write to the event log is recorded for audit purposes.
This provides:
1. Who changed which event, and when
2. A human-readable description of each edit
3. The field-level changes behind that description

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from lendbook.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Lending events
    LENDING_RECORDED = "lending_recorded"
    LENDING_UPDATED = "lending_updated"
    LENDING_RETURNED = "lending_returned"
    LENDING_ARCHIVED = "lending_archived"

    # Account transactions
    TRANSFER_RECORDED = "transfer_recorded"
    TRANSFER_UPDATED = "transfer_updated"
    TRANSFER_ARCHIVED = "transfer_archived"

    # Person net flows
    NET_FLOW_RECORDED = "net_flow_recorded"

    # Derived caches
    ACCOUNT_BALANCE_REFRESHED = "account_balance_refreshed"

    # Guards and failures
    VALIDATION_FAILED = "validation_failed"
    SYSTEM_ERROR = "system_error"


class AuditAction(str, Enum):
    """Action names used in the stored history collections."""
    CREATED = "created"
    UPDATED = "updated"
    RETURNED = "returned"
    ARCHIVED = "archived"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class FieldChange(BaseModel):
    """One edited field, with display-ready old and new values."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    field: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    display_name: str


class AuditEvent(BaseModel):
    """
    A single audit event.

    entity_type is the history source name of the affected record
    ('lending', 'transaction', 'person-transaction', 'account').
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    action: Optional[AuditAction] = None
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what record is this about?
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None

    # Who did it
    user_id: Optional[int] = None

    description: str = Field(
        ...,
        description="Human-readable description of what happened"
    )
    changes: list[FieldChange] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "action": self.action.value if self.action else None,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "description": self.description,
            "changes": [c.model_dump() for c in self.changes],
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_record(self) -> dict:
        """
        Convert to a stored history row.

        Mirrors the lendingHistories / accountTransactionHistories layout:
        the changes list is stored as a JSON string.
        """
        record = {
            "eventId": str(self.event_id),
            "eventType": self.event_type.value,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "action": self.action.value if self.action else None,
            "description": self.description,
            "userId": self.user_id,
            "createdAt": self.timestamp.isoformat(),
        }
        if self.changes:
            record["changes"] = json.dumps(
                [c.model_dump(by_alias=True) for c in self.changes],
                ensure_ascii=False,
            )
        if self.details:
            record["details"] = self.details
        if self.error_message:
            record["errorMessage"] = self.error_message
        return record

    @classmethod
    def from_record(cls, record: dict) -> "AuditEvent":
        """Rebuild an event from a row written by to_record()."""
        changes = record.get("changes")
        if isinstance(changes, str):
            changes = json.loads(changes)
        return cls(
            event_id=record["eventId"],
            timestamp=record["createdAt"],
            event_type=record["eventType"],
            action=record.get("action"),
            entity_type=record.get("entityType"),
            entity_id=record.get("entityId"),
            user_id=record.get("userId"),
            description=record["description"],
            changes=[FieldChange.model_validate(c) for c in changes or []],
            details=record.get("details") or {},
            error_message=record.get("errorMessage"),
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.lending_archived(lending_id, user_id)
        event = AuditEventBuilder.lending_updated(lending_id, description, changes, user_id)
    """

    @staticmethod
    def lending_recorded(
        lending_id: int,
        lending_type: str,
        amount: str,
        user_id: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LENDING_RECORDED,
            action=AuditAction.CREATED,
            entity_type="lending",
            entity_id=lending_id,
            user_id=user_id,
            description=f"Lending recorded: {lending_type} {amount}",
            details={"type": lending_type, "amount": amount},
        )

    @staticmethod
    def lending_updated(
        lending_id: int,
        description: str,
        changes: list[FieldChange],
        user_id: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LENDING_UPDATED,
            action=AuditAction.UPDATED,
            entity_type="lending",
            entity_id=lending_id,
            user_id=user_id,
            description=description,
            changes=changes,
        )

    @staticmethod
    def lending_returned(
        lending_id: int,
        return_id: int,
        user_id: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LENDING_RETURNED,
            action=AuditAction.RETURNED,
            entity_type="lending",
            entity_id=lending_id,
            user_id=user_id,
            description="返済",
            details={"return_id": return_id},
        )

    @staticmethod
    def lending_archived(
        lending_id: int,
        user_id: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LENDING_ARCHIVED,
            action=AuditAction.ARCHIVED,
            entity_type="lending",
            entity_id=lending_id,
            user_id=user_id,
            description="アーカイブ",
        )

    @staticmethod
    def transfer_recorded(
        transaction_id: int,
        transaction_type: str,
        amount: str,
        user_id: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_RECORDED,
            action=AuditAction.CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            description=f"Account transaction recorded: {transaction_type} {amount}",
            details={"type": transaction_type, "amount": amount},
        )

    @staticmethod
    def transfer_updated(
        transaction_id: int,
        description: str,
        changes: list[FieldChange],
        user_id: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_UPDATED,
            action=AuditAction.UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            description=description,
            changes=changes,
        )

    @staticmethod
    def transfer_archived(
        transaction_id: int,
        user_id: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_ARCHIVED,
            action=AuditAction.ARCHIVED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            description="アーカイブ",
        )

    @staticmethod
    def net_flow_recorded(
        net_flow_id: int,
        flow_type: str,
        amount: str,
        user_id: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NET_FLOW_RECORDED,
            action=AuditAction.CREATED,
            entity_type="person-transaction",
            entity_id=net_flow_id,
            user_id=user_id,
            description=f"Net flow recorded: {flow_type} {amount}",
            details={"type": flow_type, "amount": amount},
        )

    @staticmethod
    def account_balance_refreshed(
        account_id: int,
        old_balance: Optional[str],
        new_balance: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_BALANCE_REFRESHED,
            entity_type="account",
            entity_id=account_id,
            description=f"Account balance refreshed: {old_balance} -> {new_balance}",
            details={"old_balance": old_balance, "new_balance": new_balance},
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        issues: list[dict],
        user_id: Optional[int] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            user_id=user_id,
            description=f"Validation failed with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
