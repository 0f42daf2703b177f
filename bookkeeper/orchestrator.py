"""
Main Orchestrator for Bookkeeper

This module ties the ledger to its spreadsheet mirror and defines the
end-to-end sync flow:

    IDLE -> READING -> RECONCILING -> WRITING -> IDLE

1. READING: fetch every row of the worksheet (a missing worksheet is
   just an empty one)
2. RECONCILING (two-way sync only): classify rows against the ledger,
   commit new entries and drifted fields through the ledger service
3. Rebuild the full canonical table from the ledger
4. WRITING: clear the worksheet, write headers + rows from A1

DESIGN DECISION: The orchestrator enforces the boundaries:
- The sheet is always fully rewritten from ledger truth (never patched)
- One bad row never aborts the batch; its failure is collected
- A sheet-level failure aborts the attempt with ONE failure result
- Every step is audited under one correlation ID

There is no automatic retry of a failed sync: the caller re-invokes.
"""

from typing import Optional, Union
from uuid import UUID

from bookkeeper.agents import TransactionExtractionAgent
from bookkeeper.audit import AuditLogger, create_correlation_id
from bookkeeper.config import get_settings
from bookkeeper.ledger.errors import LedgerError, UnresolvedAccountError
from bookkeeper.ledger.service import LedgerService, PendingWrite, WriteStatus
from bookkeeper.models.audit import AuditEventBuilder
from bookkeeper.models.ledger import Loan, Transaction, TransactionKind
from bookkeeper.models.sync import (
    ClassificationResult,
    EntityUpdate,
    LoanDraft,
    RowFailure,
    SyncResult,
    SyncState,
    TransactionDraft,
)
from bookkeeper.reconciliation import RowClassifier, RowStructurer, index_by_name
from bookkeeper.services.storage import (
    CredentialStore,
    EntityStore,
    GoogleSheetsClient,
    GoogleSheetsMirror,
    InMemoryEntityStore,
    PermissionDeniedError,
    SheetMirror,
    SheetNotFoundError,
    StorageError,
)


PERMISSION_HINT = (
    "Share the spreadsheet with editor access for the connected account "
    "(or the service account), then sync again."
)


class SyncOrchestrator:
    """
    Orchestrates one ledger <-> sheet sync at a time.

    Single writer per sheet: concurrent syncs of the same sheet are not
    coordinated (last write wins).
    """

    def __init__(
        self,
        ledger: LedgerService,
        mirror: SheetMirror,
        structurer: Optional[RowStructurer] = None,
        classifier: Optional[RowClassifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        worksheet_name: Optional[str] = None,
    ):
        self._ledger = ledger
        self._mirror = mirror
        self._structurer = structurer or RowStructurer()
        self._classifier = classifier or RowClassifier()
        self._audit_logger = audit_logger or ledger.audit
        self._worksheet_name = worksheet_name or get_settings().google_sheets.worksheet_name
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    def _transition(self, sheet_id: str, to_state: SyncState, correlation_id: UUID) -> None:
        self._audit_logger.log(AuditEventBuilder.sync_state_changed(
            sheet_id, self._state.value, to_state.value, correlation_id
        ))
        self._state = to_state

    async def sync(
        self,
        sheet_id: str,
        two_way: Optional[bool] = None,
        worksheet_name: Optional[str] = None,
    ) -> SyncResult:
        """
        Run one full sync cycle.

        Args:
            sheet_id: Spreadsheet key
            two_way: Read sheet edits back first (defaults to settings)
            worksheet_name: Worksheet to mirror into (defaults to settings)

        Returns:
            The single terminal result of this attempt
        """
        correlation_id = create_correlation_id()
        worksheet = worksheet_name or self._worksheet_name
        if two_way is None:
            two_way = get_settings().app.two_way_sync

        created = 0
        updated = 0
        failures: list[RowFailure] = []
        classification = ClassificationResult()

        try:
            # Step 1: Read what the sheet holds now
            self._transition(sheet_id, SyncState.READING, correlation_id)
            rows = await self._mirror.read_rows(sheet_id, worksheet)

            # Step 2: Fold sheet edits into the ledger
            if two_way and len(rows) > 1:
                self._transition(sheet_id, SyncState.RECONCILING, correlation_id)
                classification = await self._classify(rows)
                for skipped in classification.skipped:
                    self._audit_logger.log(AuditEventBuilder.sync_row_skipped(
                        sheet_id, skipped.row_number, skipped.reason, correlation_id
                    ))
                created, updated, failures = await self._apply(classification)
                for failure in failures:
                    self._audit_logger.log(AuditEventBuilder.sync_row_failed(
                        sheet_id, failure.row_number, failure.error, correlation_id
                    ))

            # Step 3: Project the (now current) ledger
            table = self._structurer.structure(
                await self._ledger.list_transactions(),
                await self._ledger.list_loans(),
                await self._ledger.list_accounts(),
                await self._ledger.list_contacts(),
            )

            # Step 4: Overwrite the sheet
            self._transition(sheet_id, SyncState.WRITING, correlation_id)
            try:
                await self._mirror.clear(sheet_id, worksheet)
            except SheetNotFoundError:
                pass
            await self._mirror.write(sheet_id, worksheet, table.values())

        except PermissionDeniedError as e:
            return self._failed(sheet_id, f"{e}. {PERMISSION_HINT}", correlation_id)
        except (StorageError, LedgerError) as e:
            return self._failed(sheet_id, str(e), correlation_id)
        except Exception as e:
            return self._failed(sheet_id, f"Sync failed unexpectedly: {e}", correlation_id)
        finally:
            self._transition(sheet_id, SyncState.IDLE, correlation_id)

        self._audit_logger.log(AuditEventBuilder.sync_completed(
            sheet_id, len(table.rows), created, updated, correlation_id
        ))

        message = f"Synced {len(table.rows)} entries to the sheet"
        if failures:
            message += f"; {len(failures)} row(s) could not be applied"
        return SyncResult(
            success=True,
            message=message,
            sheet_id=sheet_id,
            rows_written=len(table.rows),
            created=created,
            updated=updated,
            failures=failures,
            skipped=classification.skipped,
        )

    def _failed(self, sheet_id: str, message: str, correlation_id: UUID) -> SyncResult:
        self._audit_logger.log(AuditEventBuilder.sync_failed(sheet_id, message, correlation_id))
        return SyncResult(success=False, message=message, sheet_id=sheet_id)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def _classify(self, rows: list[list[str]]) -> ClassificationResult:
        return self._classifier.classify(
            rows,
            await self._ledger.list_transactions(),
            await self._ledger.list_loans(),
            index_by_name(await self._ledger.list_accounts()),
            index_by_name(await self._ledger.list_contacts()),
        )

    async def _apply(
        self,
        classification: ClassificationResult,
    ) -> tuple[int, int, list[RowFailure]]:
        """Commit drafts and updates; collect per-row failures."""
        created = 0
        updated = 0
        failures: list[RowFailure] = []

        drafts: list[Union[LoanDraft, TransactionDraft]] = [
            *classification.new_loans,
            *classification.new_transactions,
        ]
        for draft in drafts:
            try:
                if isinstance(draft, LoanDraft):
                    await self._commit_loan(draft)
                else:
                    await self._commit_transaction(draft)
                created += 1
            except (LedgerError, StorageError, ValueError) as e:
                failures.append(RowFailure(row_number=draft.row_number, error=str(e)))

        updates: list[tuple[EntityUpdate, bool]] = [
            *((u, False) for u in classification.updated_loans),
            *((u, True) for u in classification.updated_transactions),
        ]
        for update, is_transaction in updates:
            try:
                if is_transaction:
                    await self._ledger.update_transaction(update.entity_id, update.changes)
                else:
                    await self._ledger.update_loan(update.entity_id, update.changes)
                updated += 1
            except (LedgerError, StorageError, ValueError) as e:
                failures.append(RowFailure(
                    row_number=update.row_number,
                    entity_id=update.entity_id,
                    error=str(e),
                ))

        return created, updated, failures

    @staticmethod
    def _account_id(account_id: Optional[str], account_name: Optional[str]) -> Optional[str]:
        # A named but unknown account is an error; no name means "primary"
        if account_id is None and account_name:
            raise UnresolvedAccountError(account_name)
        return account_id

    async def _commit_transaction(self, draft: TransactionDraft) -> Transaction:
        if draft.kind == TransactionKind.TRANSFER:
            from_id = self._account_id(draft.from_account_id, draft.from_account_name)
            to_id = self._account_id(draft.to_account_id, draft.to_account_name)
            if from_id is None or to_id is None:
                raise UnresolvedAccountError(None, "Transfer row needs 'From → To' accounts")
            return await self._ledger.add_transfer(
                from_id, to_id, draft.amount, draft.description, date=draft.date
            )

        account_id = self._account_id(draft.account_id, draft.account_name)

        if draft.kind == TransactionKind.REPAYMENT:
            return await self._ledger.add_repayment(
                draft.loan_id,
                draft.amount,
                account_id=account_id,
                description=draft.description or None,
                date=draft.date,
            )

        client_id = draft.client_id
        if client_id is None and draft.client_name:
            client_id = (await self._ledger.get_or_create_contact(draft.client_name)).id
        return await self._ledger.add_transaction(
            draft.kind,
            draft.amount,
            category=draft.category,
            description=draft.description,
            account_id=account_id,
            client_id=client_id,
            date=draft.date,
        )

    async def _commit_loan(self, draft: LoanDraft) -> Loan:
        contact_id = draft.contact_id
        if draft.is_provisional:
            contact_id = (await self._ledger.get_or_create_contact(draft.contact_name)).id
        return await self._ledger.add_loan(
            draft.kind,
            contact_id,
            draft.amount,
            account_id=self._account_id(draft.account_id, draft.account_name),
            description=draft.description,
            date=draft.date,
        )


class AutoSync:
    """
    Mirrors the ledger into the project's linked spreadsheet after writes.

    Registered as a ledger write listener. Each write schedules a one-way
    sync through `LedgerService.submit`; writes that land while that sync
    is still running are folded into one follow-up pass. Writes made while
    a two-way sync is reconciling are skipped, because that sync rewrites
    the sheet from the ledger afterwards anyway.
    """

    def __init__(self, ledger: LedgerService, orchestrator: SyncOrchestrator):
        self._ledger = ledger
        self._orchestrator = orchestrator
        self._dirty = False
        self._pending: Optional[PendingWrite] = None

    def __call__(self) -> None:
        if self._orchestrator.state == SyncState.RECONCILING:
            return
        self._dirty = True
        if self._pending is None or self._pending.status != WriteStatus.PENDING:
            self._pending = self._ledger.submit(self._run(), label="sheet auto-sync")

    async def _run(self) -> None:
        while self._dirty:
            self._dirty = False
            sheet_id = await self._ledger.linked_sheet_id()
            if sheet_id is None:
                return
            await self._orchestrator.sync(sheet_id, two_way=False)


def create_app_components(
    user_id: str,
    project_id: Optional[str] = None,
    store: Optional[EntityStore] = None,
    credential_store: Optional[CredentialStore] = None,
    use_sheets: bool = True,
    use_agent: bool = True,
    auto_sync: bool = True,
) -> tuple[
    LedgerService,
    Optional[SyncOrchestrator],
    Optional[TransactionExtractionAgent],
    Optional[GoogleSheetsClient],
]:
    """
    Factory function to create all components for one user session.

    Args:
        user_id: The session's user
        project_id: Optional project scope
        store: Entity store (in-memory if not given)
        credential_store: Per-user OAuth tokens (service account otherwise)
        use_sheets: Whether to set up the Google Sheets mirror.
                    Set to False for testing without Google access.
        use_agent: Whether to set up the Gemini extraction agent
        auto_sync: Whether writes are mirrored into the project's linked
                   spreadsheet (needs use_sheets)

    Returns:
        (ledger_service, sync_orchestrator, extraction_agent, sheets_client)
    """
    audit_logger = AuditLogger()
    ledger = LedgerService(
        store or InMemoryEntityStore(),
        user_id,
        project_id,
        audit_logger=audit_logger,
    )

    sheets_client = None
    sync = None
    if use_sheets:
        sheets_client = GoogleSheetsClient(
            user_id=user_id,
            credential_store=credential_store,
            audit_logger=audit_logger,
        )
        sync = SyncOrchestrator(
            ledger,
            GoogleSheetsMirror(sheets_client),
            audit_logger=audit_logger,
        )
        if auto_sync:
            ledger.add_write_listener(AutoSync(ledger, sync))

    agent = TransactionExtractionAgent(audit_logger=audit_logger) if use_agent else None

    return ledger, sync, agent, sheets_client
