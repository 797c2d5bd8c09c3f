"""
Core Ledger Models for Lendbook

These models define the strict schemas for every record in the event log.
They are designed to:
1. Enforce type safety at ingestion
2. Round-trip the stored JSON layout (camelCase field names)
3. Normalize legacy records exactly once
4. Support the audit trail

DESIGN DECISION: Money is Decimal in Python and a plain number in JSON.
Stored records written by other tools use integers for yen amounts, so an
integral Decimal is serialized back as an int.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    model_validator,
)
from pydantic.alias_generators import to_camel


def money_to_json(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


Money = Annotated[Decimal, PlainSerializer(money_to_json, when_used="json")]

ZERO = Decimal("0")


def utc_now() -> datetime:
    """Timezone-aware current time for audit fields."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class CounterpartyType(str, Enum):
    """Kind of party on the non-primary side of a lending event."""
    ACCOUNT = "account"
    PERSON = "person"


class LendingType(str, Enum):
    """
    Lending event types.

    A RETURN is its own ledger line. It carries the opposite sign of the
    obligation it settles; the settled event is flagged with returned=True.
    """
    LEND = "lend"
    BORROW = "borrow"
    RETURN = "return"


class TransferType(str, Enum):
    """Account transaction types."""
    TRANSFER = "transfer"                # fromAccountId -> toAccountId
    INTEREST = "interest"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    INVESTMENT_GAIN = "investment_gain"  # negative amount is a loss


class NetFlowType(str, Enum):
    """Direct cash movement against a person."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class HistorySource(str, Enum):
    """Which collection a history item was projected from."""
    LENDING = "lending"
    TRANSACTION = "transaction"
    PERSON_TRANSACTION = "person-transaction"


# =============================================================================
# BASE RECORD
# =============================================================================

class LedgerRecord(BaseModel):
    """
    Base class for stored records.

    Field names are snake_case in Python and camelCase in storage.
    Unknown stored fields (tags, receiptUrl, ...) are
    kept so that a record survives a read/write cycle untouched.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        str_strip_whitespace=True,
    )

    def to_record(self) -> dict[str, Any]:
        """Convert to the stored JSON layout."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# PARTICIPANTS
# =============================================================================

class Account(LedgerRecord):
    """
    Internal ledger participant (e.g. a company cash account).

    `balance` is a display cache. The event log is the source of truth;
    see engine.balance.account_ledger_balance.
    """

    id: int
    name: str = Field(..., min_length=1, max_length=200)
    business_id: Optional[int] = None
    balance: Optional[Money] = None
    opening_balance: Optional[Money] = Field(
        default=None,
        description="Cash held before the first recorded event"
    )
    is_archived: bool = False


class Person(LedgerRecord):
    """External ledger participant."""

    id: int
    name: str = Field(..., min_length=1, max_length=200)
    business_id: Optional[int] = None
    memo: Optional[str] = None
    is_archived: bool = False


# =============================================================================
# EVENTS
# =============================================================================

class LendingEvent(LedgerRecord):
    """
    A lend/borrow/return movement between an account and a counterparty.

    Sign convention: positive amount = the account side is owed (lent out),
    negative amount = the account side owes (borrowed).

    Legacy records carry only `personId`. They are rewritten to
    counterpartyType='person', counterpartyId=personId when the model is
    built, so nothing downstream ever looks at `person_id`.
    """

    id: int
    account_id: int
    counterparty_type: Optional[CounterpartyType] = None
    counterparty_id: Optional[int] = None
    person_id: Optional[int] = Field(
        default=None,
        description="Legacy person reference, kept for round-tripping only"
    )
    type: LendingType
    amount: Money
    date: date
    memo: Optional[str] = None
    returned: bool = False
    is_archived: bool = False
    original_id: Optional[int] = Field(
        default=None,
        description="For return events: id of the settled event"
    )

    # Audit fields
    created_at: Optional[datetime] = None
    created_by_user_id: Optional[int] = None
    last_edited_by_user_id: Optional[int] = None
    last_edited_at: Optional[datetime] = None

    @model_validator(mode='before')
    @classmethod
    def normalize_legacy_person(cls, data: Any) -> Any:
        """Map a legacy personId onto the counterparty fields."""
        if not isinstance(data, dict):
            return data

        counterparty_type = data.get("counterpartyType", data.get("counterparty_type"))
        person_id = data.get("personId", data.get("person_id"))
        if counterparty_type or person_id is None:
            return data

        data = dict(data)
        data.pop("counterparty_type", None)
        data.pop("counterparty_id", None)
        data["counterpartyType"] = CounterpartyType.PERSON.value
        data["counterpartyId"] = person_id
        return data

    @property
    def is_return(self) -> bool:
        return self.type == LendingType.RETURN

    def involves_person(self, person_id: int) -> bool:
        """True if the person is this event's counterparty."""
        return (
            self.counterparty_type == CounterpartyType.PERSON
            and self.counterparty_id == person_id
        )

    def involves_account_as_counterparty(self, account_id: int) -> bool:
        return (
            self.counterparty_type == CounterpartyType.ACCOUNT
            and self.counterparty_id == account_id
        )


class AccountTransferEvent(LedgerRecord):
    """
    A movement between two accounts, or an account-local adjustment.

    TRANSFER uses from_account_id/to_account_id; every other type uses
    account_id.
    """

    id: int
    type: TransferType
    from_account_id: Optional[int] = None
    to_account_id: Optional[int] = None
    account_id: Optional[int] = None
    amount: Money
    date: date
    memo: Optional[str] = None
    is_archived: bool = False
    linked_transaction_id: Optional[int] = Field(
        default=None,
        description="Row in the accounting 'transactions' collection kept in sync with this one"
    )

    created_at: Optional[datetime] = None
    created_by_user_id: Optional[int] = None
    last_edited_by_user_id: Optional[int] = None
    last_edited_at: Optional[datetime] = None

    @property
    def primary_account_id(self) -> Optional[int]:
        """The account shown first in listings."""
        if self.type == TransferType.TRANSFER:
            return self.from_account_id
        return self.account_id

    def touches_account(self, account_id: int) -> bool:
        return account_id in (self.account_id, self.from_account_id, self.to_account_id)


class PersonNetFlowEvent(LedgerRecord):
    """A deposit/withdrawal against a person outside the lend/borrow framing."""

    id: int
    person_id: int
    type: NetFlowType
    amount: Money = Field(..., ge=0, description="Unsigned; direction comes from type")
    date: date
    memo: Optional[str] = None
    is_archived: bool = False

    created_at: Optional[datetime] = None
    created_by_user_id: Optional[int] = None


# =============================================================================
# DERIVED VALUES
# =============================================================================

class HistoryItem(LedgerRecord):
    """
    One line of the combined history.

    `id` is "<source>-<originalId>" and is unique across all three sources.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    id: str
    date: date
    type: str
    display_type: str
    amount: Money
    account_id: Optional[int] = None
    to_account_id: Optional[int] = None
    counterparty_type: Optional[CounterpartyType] = None
    counterparty_id: Optional[int] = None
    memo: Optional[str] = None
    returned: Optional[bool] = None
    source: HistorySource
    original_id: int
    created_by_user_id: Optional[int] = None
    last_edited_by_user_id: Optional[int] = None
    last_edited_at: Optional[datetime] = None


class PersonTotals(BaseModel):
    """Aggregate outstanding position across persons."""

    total_lent: Money = ZERO
    total_borrowed: Money = ZERO

    @property
    def net(self) -> Decimal:
        """Equals the sum of every person's outstanding balance."""
        return self.total_lent - self.total_borrowed


class LedgerSnapshot(LedgerRecord):
    """
    One consistent read of the event store.

    Collection names match the stored layout. Collections belonging to the
    rest of the application are carried along untouched.
    """

    accounts: list[Account] = Field(default_factory=list)
    persons: list[Person] = Field(default_factory=list)
    lendings: list[LendingEvent] = Field(default_factory=list)
    transfers: list[AccountTransferEvent] = Field(
        default_factory=list,
        alias="accountTransactions",
    )
    net_flows: list[PersonNetFlowEvent] = Field(
        default_factory=list,
        alias="personTransactions",
    )

    @classmethod
    def from_records(cls, records: dict[str, Any]) -> "LedgerSnapshot":
        """Parse the stored JSON layout."""
        return cls.model_validate(records)

    def to_records(self) -> dict[str, Any]:
        return self.to_record()

    def account_by_id(self, account_id: Optional[int]) -> Optional[Account]:
        return next((a for a in self.accounts if a.id == account_id), None)

    def person_by_id(self, person_id: Optional[int]) -> Optional[Person]:
        return next((p for p in self.persons if p.id == person_id), None)

    @property
    def active_accounts(self) -> list[Account]:
        return [a for a in self.accounts if not a.is_archived]

    @property
    def active_persons(self) -> list[Person]:
        return [p for p in self.persons if not p.is_archived]
