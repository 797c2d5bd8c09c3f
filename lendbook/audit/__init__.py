"""Audit logging package."""

from lendbook.audit.changes import describe_changes, detect_changes
from lendbook.audit.logger import AuditLogger, configure_logging

__all__ = ["AuditLogger", "configure_logging", "describe_changes", "detect_changes"]
