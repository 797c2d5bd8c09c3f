"""
Validation Result Models

The engine itself never validates. These models carry the outcome of the
event-creation checks run by lendbook.validation before an event is
appended to the store.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from lendbook.models.ledger import utc_now


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'self_loop', 'unknown_reference', 'sign_mismatch')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of validating one event before it is written.

    Errors block the write. Warnings (orphaned references, archived
    participants) only degrade display joins and are reported.
    """

    entity_type: str = Field(
        ...,
        description="Kind of event validated ('lending', 'transaction', 'person-transaction')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="Id of the event, if it already has one"
    )
    validated_at: datetime = Field(
        default_factory=utc_now
    )

    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
