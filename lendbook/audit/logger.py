"""
Audit Logger

DESIGN DECISION: Every write to the event log is audited.
This provides:
1. Complete traceability of who changed which event
2. The change history shown next to each transaction
3. Debugging capability

The audit logger:
- Is async so it can share the store's event loop
- Gracefully handles failures (a failed audit write never fails the ledger write)
"""

import logging
from decimal import Decimal
from typing import Optional

import structlog

from lendbook.config import get_settings
from lendbook.models.audit import AuditEvent, AuditEventBuilder, FieldChange
from lendbook.services.storage import AuditStorageInterface


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    Defaults come from LoggingSettings (LENDBOOK_LOG_LEVEL, LENDBOOK_LOG_FORMAT).
    """
    settings = get_settings().logging
    level = (level or settings.level).upper()
    fmt = fmt or settings.format

    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer(ensure_ascii=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    package_logger = logging.getLogger("lendbook")
    package_logger.setLevel(level)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        package_logger.addHandler(handler)


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for the per-record change history)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("lendbook.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value == "error":
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_lending_recorded(
        self,
        lending_id: int,
        lending_type: str,
        amount: Decimal,
        user_id: Optional[int],
    ) -> None:
        """Log a new lending event."""
        await self.log(AuditEventBuilder.lending_recorded(
            lending_id=lending_id,
            lending_type=lending_type,
            amount=str(amount),
            user_id=user_id,
        ))

    async def log_lending_updated(
        self,
        lending_id: int,
        description: str,
        changes: list[FieldChange],
        user_id: Optional[int],
    ) -> None:
        await self.log(AuditEventBuilder.lending_updated(
            lending_id=lending_id,
            description=description,
            changes=changes,
            user_id=user_id,
        ))

    async def log_lending_returned(
        self,
        lending_id: int,
        return_id: int,
        user_id: Optional[int],
    ) -> None:
        await self.log(AuditEventBuilder.lending_returned(
            lending_id=lending_id,
            return_id=return_id,
            user_id=user_id,
        ))

    async def log_lending_archived(
        self,
        lending_id: int,
        user_id: Optional[int],
    ) -> None:
        await self.log(AuditEventBuilder.lending_archived(
            lending_id=lending_id,
            user_id=user_id,
        ))

    async def log_transfer_recorded(
        self,
        transaction_id: int,
        transaction_type: str,
        amount: Decimal,
        user_id: Optional[int],
    ) -> None:
        await self.log(AuditEventBuilder.transfer_recorded(
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=str(amount),
            user_id=user_id,
        ))

    async def log_transfer_updated(
        self,
        transaction_id: int,
        description: str,
        changes: list[FieldChange],
        user_id: Optional[int],
    ) -> None:
        await self.log(AuditEventBuilder.transfer_updated(
            transaction_id=transaction_id,
            description=description,
            changes=changes,
            user_id=user_id,
        ))

    async def log_transfer_archived(
        self,
        transaction_id: int,
        user_id: Optional[int],
    ) -> None:
        await self.log(AuditEventBuilder.transfer_archived(
            transaction_id=transaction_id,
            user_id=user_id,
        ))

    async def log_net_flow_recorded(
        self,
        net_flow_id: int,
        flow_type: str,
        amount: Decimal,
        user_id: Optional[int],
    ) -> None:
        await self.log(AuditEventBuilder.net_flow_recorded(
            net_flow_id=net_flow_id,
            flow_type=flow_type,
            amount=str(amount),
            user_id=user_id,
        ))

    async def log_balance_refreshed(
        self,
        account_id: int,
        old_balance: Optional[Decimal],
        new_balance: Decimal,
    ) -> None:
        await self.log(AuditEventBuilder.account_balance_refreshed(
            account_id=account_id,
            old_balance=str(old_balance) if old_balance is not None else None,
            new_balance=str(new_balance),
        ))

    async def log_validation_failed(
        self,
        entity_type: str,
        issues: list[dict],
        user_id: Optional[int] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            entity_type=entity_type,
            issues=issues,
            user_id=user_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
        ))
