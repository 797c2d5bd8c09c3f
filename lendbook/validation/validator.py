"""
Event-Creation Validation

DESIGN DECISION: The balance engine trusts its input. Caller misuse is
caught here, before an event reaches the store:

ERRORS (block the write):
- Account lending to itself (self-loop)
- Zero amounts
- Amount sign contradicting the lending type
- Transfers without two distinct accounts

WARNINGS (reported, write proceeds):
- Ids that resolve to no Account/Person (only display joins degrade)
- Archived participants picked for a new event
- Return events without a link to the settled event

IMPORTANT: Validation NEVER silently fixes issues.
"""

from typing import Optional

from lendbook.models.ledger import (
    AccountTransferEvent,
    CounterpartyType,
    LedgerSnapshot,
    LendingEvent,
    LendingType,
    PersonNetFlowEvent,
    TransferType,
)
from lendbook.models.validation import ValidationIssue, ValidationResult


class LedgerValidationError(Exception):
    """An event was refused because validation found errors."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(i.message for i in result.issues if i.severity == "error")
        super().__init__(f"Invalid {result.entity_type}: {messages}")


class EventValidator:
    """
    Validates new or edited events against one snapshot of the store.

    Without a snapshot, reference checks (unknown / archived ids) are skipped.
    """

    def __init__(self, snapshot: Optional[LedgerSnapshot] = None):
        self._snapshot = snapshot

    def _check_account(
        self,
        account_id: Optional[int],
        field: str,
        issues: list[ValidationIssue],
    ) -> None:
        if self._snapshot is None or account_id is None:
            return
        account = self._snapshot.account_by_id(account_id)
        if account is None:
            issues.append(ValidationIssue(
                field=field,
                issue_type="unknown_reference",
                message=f"Account {account_id} does not exist",
                severity="warning",
                suggested_fix="The event will be counted but shown without a name",
            ))
        elif account.is_archived:
            issues.append(ValidationIssue(
                field=field,
                issue_type="archived_reference",
                message=f"Account {account_id} ({account.name}) is archived",
                severity="warning",
            ))

    def _check_person(
        self,
        person_id: Optional[int],
        field: str,
        issues: list[ValidationIssue],
    ) -> None:
        if self._snapshot is None or person_id is None:
            return
        person = self._snapshot.person_by_id(person_id)
        if person is None:
            issues.append(ValidationIssue(
                field=field,
                issue_type="unknown_reference",
                message=f"Person {person_id} does not exist",
                severity="warning",
                suggested_fix="The event will be counted but shown without a name",
            ))
        elif person.is_archived:
            issues.append(ValidationIssue(
                field=field,
                issue_type="archived_reference",
                message=f"Person {person_id} ({person.name}) is archived",
                severity="warning",
            ))

    def validate_lending(self, lending: LendingEvent) -> ValidationResult:
        """
        Validate a lending event.

        Checks:
        - counterparty present, not the event's own account
        - non-zero amount with the sign its type implies
        - references resolve (warning only)
        """
        issues = []

        if lending.counterparty_type is None or lending.counterparty_id is None:
            issues.append(ValidationIssue(
                field="counterparty_id",
                issue_type="missing",
                message="Lending event has no counterparty",
                severity="error",
                suggested_fix="Pick an account or a person as counterparty",
            ))
        elif (
            lending.counterparty_type == CounterpartyType.ACCOUNT
            and lending.counterparty_id == lending.account_id
        ):
            issues.append(ValidationIssue(
                field="counterparty_id",
                issue_type="self_loop",
                message="An account cannot lend to or borrow from itself",
                severity="error",
                suggested_fix="Pick a different counterparty account",
            ))

        if lending.amount == 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must not be zero",
                severity="error",
            ))
        elif lending.type == LendingType.LEND and lending.amount < 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="sign_mismatch",
                message="A lend must have a positive amount",
                severity="error",
                suggested_fix="Record it as a borrow, or flip the sign",
            ))
        elif lending.type == LendingType.BORROW and lending.amount > 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="sign_mismatch",
                message="A borrow must have a negative amount",
                severity="error",
                suggested_fix="Record it as a lend, or flip the sign",
            ))

        if lending.type == LendingType.RETURN and lending.original_id is None:
            issues.append(ValidationIssue(
                field="original_id",
                issue_type="missing",
                message="Return event is not linked to the event it settles",
                severity="warning",
            ))

        self._check_account(lending.account_id, "account_id", issues)
        if lending.counterparty_type == CounterpartyType.ACCOUNT:
            self._check_account(lending.counterparty_id, "counterparty_id", issues)
        elif lending.counterparty_type == CounterpartyType.PERSON:
            self._check_person(lending.counterparty_id, "counterparty_id", issues)

        return ValidationResult(
            entity_type="lending",
            entity_id=lending.id,
            issues=issues,
        )

    def validate_transfer(self, transfer: AccountTransferEvent) -> ValidationResult:
        """Validate an account transaction."""
        issues = []

        if transfer.type == TransferType.TRANSFER:
            if transfer.from_account_id is None or transfer.to_account_id is None:
                issues.append(ValidationIssue(
                    field="from_account_id" if transfer.from_account_id is None else "to_account_id",
                    issue_type="missing",
                    message="A transfer needs both a source and a destination account",
                    severity="error",
                ))
            elif transfer.from_account_id == transfer.to_account_id:
                issues.append(ValidationIssue(
                    field="to_account_id",
                    issue_type="self_loop",
                    message="Cannot transfer from an account to itself",
                    severity="error",
                ))
            self._check_account(transfer.from_account_id, "from_account_id", issues)
            self._check_account(transfer.to_account_id, "to_account_id", issues)
        else:
            if transfer.account_id is None:
                issues.append(ValidationIssue(
                    field="account_id",
                    issue_type="missing",
                    message=f"A {transfer.type.value} needs an account",
                    severity="error",
                ))
            self._check_account(transfer.account_id, "account_id", issues)

        if transfer.amount == 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must not be zero",
                severity="error",
            ))

        return ValidationResult(
            entity_type="transaction",
            entity_id=transfer.id,
            issues=issues,
        )

    def validate_net_flow(self, net_flow: PersonNetFlowEvent) -> ValidationResult:
        """Validate a person net flow."""
        issues = []

        if net_flow.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Net flow amount must be positive; the type gives the direction",
                severity="error",
            ))

        self._check_person(net_flow.person_id, "person_id", issues)

        return ValidationResult(
            entity_type="person-transaction",
            entity_id=net_flow.id,
            issues=issues,
        )
