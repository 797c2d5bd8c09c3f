"""Event-creation validation package."""

from lendbook.validation.validator import EventValidator, LedgerValidationError

__all__ = ["EventValidator", "LedgerValidationError"]
