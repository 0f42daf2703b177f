"""
Core Ledger Models for Bookkeeper

These models define the strict schemas for every entity the ledger holds.
They are designed to:
1. Enforce type safety at runtime
2. Keep monetary amounts unsigned (direction comes from `kind`)
3. Be serializable for storage and logging
4. Distinguish transactions from loans by an explicit discriminator

DESIGN DECISION: Transactions and loans share one discriminated union
(`LedgerEntry`) keyed on `entity_kind`. Code that handles "any ledger entry"
checks the discriminator instead of sniffing for fields.
"""

import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


TRANSFER_CATEGORY = "Bank Transfer"
REPAYMENT_CATEGORY = "Loan Repayment"


def new_entity_id() -> str:
    """Generate a new entity ID (stable once written to the sheet)."""
    return str(uuid4())


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionKind(str, Enum):
    """Kinds of transaction the ledger records."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    REPAYMENT = "repayment"


class LoanKind(str, Enum):
    """
    Direction of a peer loan.

    GIVEN: the user lent money to a contact (money leaves the account).
    TAKEN: the user borrowed money from a contact (money arrives).
    """
    GIVEN = "loanGiven"
    TAKEN = "loanTaken"


class LoanStatus(str, Enum):
    """
    Loan settlement status.

    Derived from repayments; never authored directly by the user.
    """
    ACTIVE = "active"
    PAID = "paid"


# =============================================================================
# ACCOUNTS & CONTACTS
# =============================================================================

class BankAccount(BaseModel):
    """
    A bank account holding a running balance.

    The balance is maintained incrementally by the balance mutator.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_entity_id)
    user_id: str = Field(..., min_length=1)
    project_id: Optional[str] = None
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Account name (matched case-insensitively)"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Running balance"
    )
    is_primary: bool = Field(
        default=False,
        description="At most one primary account per user"
    )


class Contact(BaseModel):
    """
    A person or business the user deals with.

    Loans reference a contact; income/expense may reference one as a client.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_entity_id)
    user_id: str = Field(..., min_length=1)
    project_id: Optional[str] = None
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name (matched case-insensitively)"
    )


class Project(BaseModel):
    """
    A separate set of books (e.g. a business) owned by one user.

    A project may be linked to one spreadsheet; once linked, every
    ledger write in the project is mirrored into it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_entity_id)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    google_sheet_id: Optional[str] = Field(
        default=None,
        description="Spreadsheet key the project is mirrored into"
    )


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class Transaction(BaseModel):
    """
    A committed money movement.

    Linkage depends on `kind`:
    - income / expense: account_id (optional client_id)
    - transfer: from_account_id + to_account_id
    - repayment: loan_id + account_id
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    entity_kind: Literal["transaction"] = "transaction"

    id: str = Field(default_factory=new_entity_id)
    user_id: str = Field(..., min_length=1)
    project_id: Optional[str] = None

    kind: TransactionKind
    category: str = Field(
        default="",
        max_length=200,
        description="Free text for income/expense"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Unsigned magnitude"
    )
    description: str = Field(default="", max_length=1000)
    date: datetime.date = Field(default_factory=datetime.date.today)

    account_id: Optional[str] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    loan_id: Optional[str] = None
    client_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_linkage(self) -> 'Transaction':
        """Check kind-dependent linkage and fill fixed categories."""
        if self.kind == TransactionKind.TRANSFER:
            if (
                self.from_account_id
                and self.from_account_id == self.to_account_id
            ):
                raise ValueError("Transfer source and destination must differ")
            if not self.category:
                self.category = TRANSFER_CATEGORY

        if self.kind == TransactionKind.REPAYMENT:
            if not self.loan_id:
                raise ValueError("Repayment must reference a loan")
            if not self.category:
                self.category = REPAYMENT_CATEGORY

        return self


class Loan(BaseModel):
    """
    A peer loan given to or taken from a contact.

    `amount` is the principal. Outstanding is derived from repayments.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    entity_kind: Literal["loan"] = "loan"

    id: str = Field(default_factory=new_entity_id)
    user_id: str = Field(..., min_length=1)
    project_id: Optional[str] = None

    kind: LoanKind
    contact_id: str = Field(..., min_length=1)
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Principal, unsigned"
    )
    description: str = Field(default="", max_length=1000)
    date: datetime.date = Field(default_factory=datetime.date.today)
    due_date: Optional[datetime.date] = None
    account_id: str = Field(
        ...,
        min_length=1,
        description="Account the principal moved through"
    )
    status: LoanStatus = Field(default=LoanStatus.ACTIVE)

    @model_validator(mode='after')
    def validate_dates(self) -> 'Loan':
        if self.due_date and self.due_date < self.date:
            raise ValueError("Due date cannot be before loan date")
        return self


LedgerEntry = Annotated[
    Union[Transaction, Loan],
    Field(discriminator="entity_kind"),
]


def event_key(entry: Union[Transaction, Loan]) -> str:
    """Key identifying the balance event of a ledger entry."""
    return f"{entry.entity_kind}:{entry.id}"
