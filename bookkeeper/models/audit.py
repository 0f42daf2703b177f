"""
Audit Models for Bookkeeper

Every balance movement, ledger write, and sync transition is emitted as a
typed event. This provides:
1. Traceability of every balance change
2. Debugging information when a balance drifts
3. Correlation of all events in one sync attempt

DESIGN DECISION: Events go to the structured log only. The ledger keeps
no persisted history of edits.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from bookkeeper.models.ledger import Loan, Transaction


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ledger writes
    ENTRY_CREATED = "entry_created"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    CONTACT_CREATED = "contact_created"
    CONTACT_UPDATED = "contact_updated"
    CONTACT_DELETED = "contact_deleted"
    SHEET_LINKED = "sheet_linked"

    # Balances
    BALANCE_APPLIED = "balance_applied"
    BALANCE_REVERSED = "balance_reversed"
    BALANCE_EVENT_DUPLICATE = "balance_event_duplicate"
    BALANCE_DRIFT_RISK = "balance_drift_risk"

    # Loans
    LOAN_SETTLED = "loan_settled"
    LOAN_STATUS_STALE = "loan_status_stale"

    # Sync
    SYNC_STATE_CHANGED = "sync_state_changed"
    SYNC_ROW_SKIPPED = "sync_row_skipped"
    SYNC_ROW_FAILED = "sync_row_failed"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"

    # Credentials / external services
    CREDENTIALS_REFRESHED = "credentials_refreshed"
    EXTERNAL_SERVICE_ERROR = "external_service_error"

    # Background writes
    PENDING_WRITE_FAILED = "pending_write_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """One audited event, as written to the structured log."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = Field(default=AuditSeverity.INFO)

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'loan', 'account', 'sheet')"
    )
    entity_id: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one sync)"
    )

    description: str = Field(..., max_length=500)
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
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


def _money(value: Decimal) -> str:
    return format(value, "f")


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entry_created(transaction)
        event = AuditEventBuilder.sync_failed(sheet_id, error, correlation_id)
    """

    @staticmethod
    def entry_created(entry: Union[Transaction, Loan]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_CREATED,
            entity_type=entry.entity_kind,
            entity_id=entry.id,
            description=f"{entry.kind.value} of {_money(entry.amount)} recorded",
            details={"kind": entry.kind.value, "amount": _money(entry.amount)},
        )

    @staticmethod
    def entry_updated(
        entry: Union[Transaction, Loan],
        changes: dict[str, Any],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_UPDATED,
            entity_type=entry.entity_kind,
            entity_id=entry.id,
            description=f"{entry.entity_kind} updated: {', '.join(sorted(changes))}",
            details={key: str(value) for key, value in changes.items()},
        )

    @staticmethod
    def entry_deleted(entry: Union[Transaction, Loan]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_DELETED,
            entity_type=entry.entity_kind,
            entity_id=entry.id,
            description=f"{entry.kind.value} of {_money(entry.amount)} deleted",
        )

    @staticmethod
    def account_created(account_id: str, name: str, is_primary: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account_id,
            description=f"Bank account created: {name}",
            details={"is_primary": is_primary},
        )

    @staticmethod
    def account_updated(account_id: str, changes: dict[str, Any]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            entity_type="account",
            entity_id=account_id,
            description=f"Bank account updated: {', '.join(sorted(changes))}",
            details={k: str(v) for k, v in changes.items()},
        )

    @staticmethod
    def account_deleted(account_id: str, detached_transactions: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            entity_type="account",
            entity_id=account_id,
            description="Bank account deleted",
            details={"detached_transactions": detached_transactions},
        )

    @staticmethod
    def contact_created(contact_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTACT_CREATED,
            entity_type="contact",
            entity_id=contact_id,
            description=f"Contact created: {name}",
        )

    @staticmethod
    def contact_updated(contact_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTACT_UPDATED,
            entity_type="contact",
            entity_id=contact_id,
            description=f"Contact renamed: {name}",
        )

    @staticmethod
    def contact_deleted(contact_id: str, unlinked_transactions: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTACT_DELETED,
            entity_type="contact",
            entity_id=contact_id,
            description="Contact deleted",
            details={"unlinked_transactions": unlinked_transactions},
        )

    @staticmethod
    def sheet_linked(project_id: str, sheet_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SHEET_LINKED,
            entity_type="project",
            entity_id=project_id,
            description="Spreadsheet linked" if sheet_id else "Spreadsheet unlinked",
            details={"sheet_id": sheet_id},
        )

    @staticmethod
    def balance_applied(
        key: str,
        effects: list[tuple[str, Decimal]],
        reversed_: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.BALANCE_REVERSED if reversed_
                else AuditEventType.BALANCE_APPLIED
            ),
            entity_type="balance_event",
            entity_id=key,
            description=(
                f"Balance effect {'reversed' if reversed_ else 'applied'} "
                f"on {len(effects)} account(s)"
            ),
            details={account_id: _money(delta) for account_id, delta in effects},
        )

    @staticmethod
    def balance_event_duplicate(key: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_EVENT_DUPLICATE,
            severity=AuditSeverity.WARNING,
            entity_type="balance_event",
            entity_id=key,
            description="Balance event already applied; ignoring repeat",
        )

    @staticmethod
    def balance_drift_risk(
        key: str,
        written_account_ids: list[str],
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_DRIFT_RISK,
            severity=AuditSeverity.CRITICAL,
            entity_type="balance_event",
            entity_id=key,
            description="Balance update failed after a partial write",
            details={"written_account_ids": written_account_ids},
            error_message=error_message,
        )

    @staticmethod
    def loan_settled(loan_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_SETTLED,
            entity_type="loan",
            entity_id=loan_id,
            description="Loan fully repaid; status set to paid",
        )

    @staticmethod
    def loan_status_stale(loan_id: str, outstanding: Decimal) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAN_STATUS_STALE,
            severity=AuditSeverity.WARNING,
            entity_type="loan",
            entity_id=loan_id,
            description="Loan is marked paid but has an outstanding amount",
            details={"outstanding": _money(outstanding)},
        )

    @staticmethod
    def sync_state_changed(
        sheet_id: str,
        from_state: str,
        to_state: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_STATE_CHANGED,
            severity=AuditSeverity.DEBUG,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description=f"Sync state {from_state} -> {to_state}",
            details={"from": from_state, "to": to_state},
        )

    @staticmethod
    def sync_row_skipped(
        sheet_id: str,
        row_number: int,
        reason: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_ROW_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description=f"Row {row_number} skipped",
            details={"row_number": row_number, "reason": reason},
        )

    @staticmethod
    def sync_row_failed(
        sheet_id: str,
        row_number: int,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_ROW_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description=f"Row {row_number} could not be persisted",
            details={"row_number": row_number},
            error_message=error_message,
        )

    @staticmethod
    def sync_completed(
        sheet_id: str,
        rows_written: int,
        created: int,
        updated: int,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_COMPLETED,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description=f"Sync wrote {rows_written} rows",
            details={
                "rows_written": rows_written,
                "created": created,
                "updated": updated,
            },
        )

    @staticmethod
    def sync_failed(
        sheet_id: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="sheet",
            entity_id=sheet_id,
            correlation_id=correlation_id,
            description="Sync failed",
            error_message=error_message,
        )

    @staticmethod
    def credentials_refreshed(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDENTIALS_REFRESHED,
            entity_type="user",
            entity_id=user_id,
            description="Expired Google access token refreshed",
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )

    @staticmethod
    def pending_write_failed(label: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENDING_WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            description=f"Background ledger write failed: {label}",
            error_message=error_message,
        )
