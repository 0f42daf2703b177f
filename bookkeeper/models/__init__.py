"""
Data Models Package

This package contains all Pydantic models used in Bookkeeper.
All data flowing through the ledger and the sheet mirror must conform
to these schemas.
"""

from bookkeeper.models.ledger import (
    REPAYMENT_CATEGORY,
    TRANSFER_CATEGORY,
    BankAccount,
    Contact,
    LedgerEntry,
    Loan,
    LoanKind,
    LoanStatus,
    Project,
    Transaction,
    TransactionKind,
    event_key,
    new_entity_id,
)
from bookkeeper.models.sync import (
    SHEET_HEADERS,
    ClassificationResult,
    EntityUpdate,
    LoanDraft,
    RowFailure,
    SheetRow,
    SheetTable,
    SkippedRow,
    SyncResult,
    SyncState,
    TransactionDraft,
)
from bookkeeper.models.candidate import (
    ClarificationRequest,
    ExtractionOutcome,
    LedgerCandidate,
)
from bookkeeper.models.credentials import OAuthToken
from bookkeeper.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "REPAYMENT_CATEGORY",
    "TRANSFER_CATEGORY",
    "BankAccount",
    "Contact",
    "LedgerEntry",
    "Loan",
    "LoanKind",
    "LoanStatus",
    "Project",
    "Transaction",
    "TransactionKind",
    "event_key",
    "new_entity_id",
    # Sync models
    "SHEET_HEADERS",
    "ClassificationResult",
    "EntityUpdate",
    "LoanDraft",
    "RowFailure",
    "SheetRow",
    "SheetTable",
    "SkippedRow",
    "SyncResult",
    "SyncState",
    "TransactionDraft",
    # Extraction models
    "ClarificationRequest",
    "ExtractionOutcome",
    "LedgerCandidate",
    # Credentials
    "OAuthToken",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
