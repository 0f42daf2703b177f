"""
Sheet Synchronization Models

These models carry data between the sheet mirror, the row classifier,
and the sync orchestrator:

- SheetTable: the canonical table written to the sheet
- SheetRow: one parsed (but not yet classified) sheet row
- TransactionDraft / LoanDraft: new entries found in the sheet
- EntityUpdate: drifted fields of an existing entry
- ClassificationResult: everything one classification pass found
- SyncResult: the single terminal outcome of a sync attempt

Drafts may carry names that did not resolve to an ID. A draft with
`contact_name` but no `contact_id` is provisional: the caller creates
the contact before committing it.
"""

import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from bookkeeper.models.ledger import LoanKind, TransactionKind


SHEET_HEADERS = [
    "transaction_id",
    "Date",
    "Type",
    "Account",
    "Category/Contact",
    "Description",
    "Amount",
]


class SheetTable(BaseModel):
    """Headers plus rows, ready to be written starting at A1."""

    headers: list[str] = Field(default_factory=lambda: list(SHEET_HEADERS))
    rows: list[list[str]] = Field(default_factory=list)

    def values(self) -> list[list[str]]:
        """The full 2D value grid (header row first)."""
        return [list(self.headers)] + [list(row) for row in self.rows]


class SheetRow(BaseModel):
    """A structurally valid row read back from the sheet."""

    row_number: int = Field(ge=1, description="1-based row number in the sheet")
    entry_id: str = ""
    date: Optional[datetime.date] = None
    type_label: str
    account_label: str = ""
    category_label: str = ""
    description: str = ""
    amount: Decimal = Field(description="Signed amount as shown in the sheet")


class TransactionDraft(BaseModel):
    """A new transaction parsed from the sheet, not yet committed."""

    row_number: int
    kind: TransactionKind
    amount: Decimal = Field(gt=0)
    category: str = ""
    description: str = ""
    date: Optional[datetime.date] = None

    # Resolved IDs (None when the name did not match anything)
    account_id: Optional[str] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    loan_id: Optional[str] = None
    client_id: Optional[str] = None

    # Raw names as they appeared in the sheet
    account_name: Optional[str] = None
    from_account_name: Optional[str] = None
    to_account_name: Optional[str] = None
    client_name: Optional[str] = None


class LoanDraft(BaseModel):
    """A new loan parsed from the sheet, not yet committed."""

    row_number: int
    kind: LoanKind
    amount: Decimal = Field(gt=0)
    description: str = ""
    date: Optional[datetime.date] = None

    account_id: Optional[str] = None
    account_name: Optional[str] = None
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None

    @property
    def is_provisional(self) -> bool:
        """True when the contact must be created before committing."""
        return self.contact_id is None and bool(self.contact_name)


class EntityUpdate(BaseModel):
    """Only the fields of an existing entry that drifted in the sheet."""

    row_number: int
    entity_id: str
    changes: dict[str, Any] = Field(default_factory=dict)


class SkippedRow(BaseModel):
    """A sheet row that could not be used."""

    row_number: int
    reason: str


class ClassificationResult(BaseModel):
    """Output of one classification pass over the sheet rows."""

    new_transactions: list[TransactionDraft] = Field(default_factory=list)
    updated_transactions: list[EntityUpdate] = Field(default_factory=list)
    new_loans: list[LoanDraft] = Field(default_factory=list)
    updated_loans: list[EntityUpdate] = Field(default_factory=list)
    unchanged_ids: list[str] = Field(
        default_factory=list,
        description="Known entries whose row matched the ledger exactly"
    )
    skipped: list[SkippedRow] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(
            self.new_transactions
            or self.updated_transactions
            or self.new_loans
            or self.updated_loans
        )


class SyncState(str, Enum):
    """States of the sync orchestrator."""
    IDLE = "idle"
    READING = "reading"
    RECONCILING = "reconciling"
    WRITING = "writing"


class RowFailure(BaseModel):
    """A sheet row whose change could not be persisted."""

    row_number: int
    entity_id: Optional[str] = None
    error: str


class SyncResult(BaseModel):
    """
    Terminal outcome of one sync attempt.

    Reported once per invocation; there is no partial-progress reporting.
    """

    success: bool
    message: str
    sheet_id: str
    rows_written: int = Field(default=0, ge=0)
    created: int = Field(default=0, ge=0)
    updated: int = Field(default=0, ge=0)
    failures: list[RowFailure] = Field(default_factory=list)
    skipped: list[SkippedRow] = Field(default_factory=list)
    completed_at: datetime.datetime = Field(default_factory=datetime.datetime.utcnow)
