"""
Ledger Service

The single entry point for changing the ledger. One instance per user
session, constructed with an injected entity store.

DESIGN DECISION: Every write goes through this service so that:
1. Balance effects are applied exactly once per committed entry
2. Deletions reverse their effect before the entry disappears
3. Loan status is re-derived after every repayment change
4. Every change is audited

Commit order for a new entry is: apply the balance effect, then save.
If the save fails the effect is reversed, so a rejected entry never
leaves a balance behind.

Writes are plain coroutines. Callers that don't want to wait can hand
one to `submit()` and get a PendingWrite back; `flush()` awaits every
pending write of the session.

Write listeners are called after every successful change; the sheet
auto-sync registers itself as one.
"""

import asyncio
import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from bookkeeper.audit.logger import AuditLogger
from bookkeeper.ledger.balances import BalanceMutator, expected_balances
from bookkeeper.ledger.errors import (
    AccountInUseError,
    ContactInUseError,
    LedgerError,
    LoanHasRepaymentsError,
    OutstandingExceededError,
    UnresolvedAccountError,
    UnresolvedContactError,
    UnresolvedLoanError,
)
from bookkeeper.ledger.repayments import RepaymentTracker
from bookkeeper.models.audit import AuditEventBuilder
from bookkeeper.models.candidate import LedgerCandidate
from bookkeeper.models.ledger import (
    BankAccount,
    Contact,
    Loan,
    LoanKind,
    LoanStatus,
    Project,
    Transaction,
    TransactionKind,
)
from bookkeeper.services.storage.interface import (
    DuplicateError,
    EntityStore,
    NotFoundError,
    StorageError,
)


# Fields a user may edit after commit
TRANSACTION_EDITABLE_FIELDS = {"amount", "description", "category", "date", "client_id"}
LOAN_EDITABLE_FIELDS = {"amount", "description", "date", "due_date"}


class WriteStatus(str, Enum):
    """Lifecycle of a submitted write."""
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"


class PendingWrite:
    """
    Handle for a ledger write running in the background.

    Await it to get the write's result (or its exception).
    """

    def __init__(
        self,
        task: "asyncio.Task[Any]",
        label: str,
        audit_logger: AuditLogger,
    ):
        self.task = task
        self.label = label
        self._audit = audit_logger
        task.add_done_callback(self._on_done)

    @property
    def status(self) -> WriteStatus:
        if not self.task.done():
            return WriteStatus.PENDING
        if self.task.cancelled() or self.task.exception() is not None:
            return WriteStatus.FAILED
        return WriteStatus.COMMITTED

    @property
    def error(self) -> Optional[BaseException]:
        if not self.task.done() or self.task.cancelled():
            return None
        return self.task.exception()

    def _on_done(self, task: "asyncio.Task[Any]") -> None:
        if task.cancelled():
            self._audit.log(AuditEventBuilder.pending_write_failed(self.label, "cancelled"))
            return
        error = task.exception()
        if error is not None:
            self._audit.log(AuditEventBuilder.pending_write_failed(self.label, str(error)))

    def __await__(self):
        return self.task.__await__()


class LedgerService:
    """
    Ledger operations for one user (and optionally one project).

    Usage:
        service = LedgerService(store, user_id="u1")
        account = await service.add_bank_account("Checking", Decimal("500"))
        await service.add_transaction(TransactionKind.EXPENSE, Decimal("100"), "Food")
    """

    def __init__(
        self,
        store: EntityStore,
        user_id: str,
        project_id: Optional[str] = None,
        mutator: Optional[BalanceMutator] = None,
        tracker: Optional[RepaymentTracker] = None,
        audit_logger: Optional[AuditLogger] = None,
        today: Callable[[], datetime.date] = datetime.date.today,
    ):
        self.store = store
        self.user_id = user_id
        self.project_id = project_id
        self.audit = audit_logger or AuditLogger()
        self.mutator = mutator or BalanceMutator(store, self.audit)
        self.tracker = tracker or RepaymentTracker()
        self._today = today
        self._pending: list[PendingWrite] = []
        self._listeners: list[Callable[[], None]] = []

    # =========================================================================
    # Bank accounts
    # =========================================================================

    async def list_accounts(self) -> list[BankAccount]:
        return await self.store.list_accounts(self.user_id, self.project_id)

    async def primary_account(self) -> Optional[BankAccount]:
        for account in await self.list_accounts():
            if account.is_primary:
                return account
        return None

    async def find_account(self, name: str) -> Optional[BankAccount]:
        return await self.store.find_account_by_name(self.user_id, name, self.project_id)

    async def add_bank_account(
        self,
        name: str,
        opening_balance: Decimal = Decimal("0"),
    ) -> BankAccount:
        """
        Create a bank account. The first account becomes primary.

        Raises:
            DuplicateError: If an account with the same name exists
        """
        if await self.find_account(name):
            raise DuplicateError(f"Bank account already exists: {name}")

        existing = await self.list_accounts()
        account = BankAccount(
            user_id=self.user_id,
            project_id=self.project_id,
            name=name,
            balance=opening_balance,
            is_primary=not existing,
        )
        saved = await self.store.save_account(account)
        self.audit.log(
            AuditEventBuilder.account_created(saved.id, saved.name, saved.is_primary)
        )
        self._written()
        return saved

    async def set_primary_account(self, account_id: str) -> BankAccount:
        """Make one account primary and clear the flag on all others."""
        target = await self.store.get_account(account_id)
        if target is None:
            raise UnresolvedAccountError(account_id)

        for account in await self.list_accounts():
            if account.is_primary and account.id != account_id:
                await self.store.update_account(account.id, {"is_primary": False})
        primary = await self.store.update_account(account_id, {"is_primary": True})
        self._written()
        return primary

    async def update_bank_account(
        self,
        account_id: str,
        name: Optional[str] = None,
        opening_balance: Optional[Decimal] = None,
    ) -> BankAccount:
        """
        Rename an account or correct its opening balance.

        The opening balance is the balance before any recorded history;
        changing it shifts the running balance by the difference.

        Raises:
            UnresolvedAccountError: If the account doesn't exist
            DuplicateError: If another account already has the name
        """
        account = await self.store.get_account(account_id)
        if account is None:
            raise UnresolvedAccountError(account_id)

        changes: dict[str, Any] = {}
        if name is not None and name.strip() != account.name:
            other = await self.find_account(name)
            if other is not None and other.id != account_id:
                raise DuplicateError(f"Bank account already exists: {name}")
            account = await self.store.update_account(account_id, {"name": name})
            changes["name"] = account.name

        if opening_balance is not None:
            history = expected_balances(
                {account_id: Decimal("0")},
                await self.list_transactions(),
                await self.list_loans(),
            )
            delta = Decimal(opening_balance) - (account.balance - history[account_id])
            if delta:
                await self.mutator.adjust(account_id, delta, f"opening:{account_id}")
                account = await self.store.get_account(account_id)
                changes["opening_balance"] = opening_balance

        if changes:
            self.audit.log(AuditEventBuilder.account_updated(account_id, changes))
            self._written()
        return account

    async def delete_bank_account(self, account_id: str) -> int:
        """
        Delete a bank account.

        Transactions that referenced it are kept but detached (their
        account IDs cleared). If the primary account is deleted, the
        first remaining account becomes primary.

        Returns:
            Number of detached transactions

        Raises:
            UnresolvedAccountError: If the account doesn't exist
            AccountInUseError: If a loan references the account
        """
        account = await self.store.get_account(account_id)
        if account is None:
            raise UnresolvedAccountError(account_id)

        linked_loans = [
            loan for loan in await self.list_loans() if loan.account_id == account_id
        ]
        if linked_loans:
            raise AccountInUseError(account_id, len(linked_loans))

        detached = 0
        for transaction in await self.list_transactions():
            changes = {
                field: None
                for field in ("account_id", "from_account_id", "to_account_id")
                if getattr(transaction, field) == account_id
            }
            if changes:
                await self.store.update_transaction(transaction.id, changes)
                detached += 1

        await self.store.delete_account(account_id)
        self.audit.log(AuditEventBuilder.account_deleted(account_id, detached))

        if account.is_primary:
            remaining = await self.list_accounts()
            if remaining:
                await self.store.update_account(remaining[0].id, {"is_primary": True})
        self._written()
        return detached

    async def _resolve_account(self, account_id: Optional[str]) -> BankAccount:
        """The given account, or the primary account when none is given."""
        if account_id is None:
            primary = await self.primary_account()
            if primary is None:
                raise UnresolvedAccountError(None, "No bank account given and no primary account set")
            return primary
        account = await self.store.get_account(account_id)
        if account is None:
            raise UnresolvedAccountError(account_id)
        return account

    # =========================================================================
    # Contacts
    # =========================================================================

    async def list_contacts(self) -> list[Contact]:
        return await self.store.list_contacts(self.user_id, self.project_id)

    async def find_contact(self, name: str) -> Optional[Contact]:
        return await self.store.find_contact_by_name(self.user_id, name, self.project_id)

    async def add_contact(self, name: str) -> Contact:
        if await self.find_contact(name):
            raise DuplicateError(f"Contact already exists: {name}")
        contact = await self.store.save_contact(
            Contact(user_id=self.user_id, project_id=self.project_id, name=name)
        )
        self.audit.log(AuditEventBuilder.contact_created(contact.id, contact.name))
        self._written()
        return contact

    async def get_or_create_contact(self, name: str) -> Contact:
        """Look a contact up by name (case-insensitive), creating it if missing."""
        existing = await self.find_contact(name)
        if existing is not None:
            return existing
        return await self.add_contact(name)

    async def update_contact(self, contact_id: str, name: str) -> Contact:
        """
        Rename a contact.

        Raises:
            UnresolvedContactError: If the contact doesn't exist
            DuplicateError: If another contact already has the name
        """
        contact = await self.store.get_contact(contact_id)
        if contact is None:
            raise UnresolvedContactError(contact_id)
        if name.strip() == contact.name:
            return contact

        other = await self.find_contact(name)
        if other is not None and other.id != contact_id:
            raise DuplicateError(f"Contact already exists: {name}")

        contact = await self.store.update_contact(contact_id, {"name": name})
        self.audit.log(AuditEventBuilder.contact_updated(contact.id, contact.name))
        self._written()
        return contact

    async def delete_contact(self, contact_id: str) -> int:
        """
        Delete a contact. Transactions naming it as client are kept, unlinked.

        Returns:
            Number of unlinked transactions

        Raises:
            UnresolvedContactError: If the contact doesn't exist
            ContactInUseError: If a loan references the contact
        """
        if await self.store.get_contact(contact_id) is None:
            raise UnresolvedContactError(contact_id)

        loans = [loan for loan in await self.list_loans() if loan.contact_id == contact_id]
        if loans:
            raise ContactInUseError(contact_id, len(loans))

        unlinked = 0
        for transaction in await self.list_transactions():
            if transaction.client_id == contact_id:
                await self.store.update_transaction(transaction.id, {"client_id": None})
                unlinked += 1

        await self.store.delete_contact(contact_id)
        self.audit.log(AuditEventBuilder.contact_deleted(contact_id, unlinked))
        self._written()
        return unlinked

    # =========================================================================
    # Transactions
    # =========================================================================

    async def list_transactions(self) -> list[Transaction]:
        return await self.store.list_transactions(self.user_id, self.project_id)

    async def add_transaction(
        self,
        kind: TransactionKind,
        amount: Decimal,
        category: str = "",
        description: str = "",
        account_id: Optional[str] = None,
        client_id: Optional[str] = None,
        date: Optional[datetime.date] = None,
    ) -> Transaction:
        """
        Record income or an expense.

        Args:
            kind: INCOME or EXPENSE
            amount: Unsigned amount
            category: Free-text category
            description: Free-text description
            account_id: Account to credit/debit (defaults to primary)
            client_id: Optional client contact
            date: Entry date (defaults to today)

        Raises:
            LedgerError: If kind is not income/expense
            UnresolvedAccountError: If no usable account exists
        """
        kind = TransactionKind(kind)
        if kind not in (TransactionKind.INCOME, TransactionKind.EXPENSE):
            raise LedgerError(f"add_transaction records income or expense, not {kind.value}")

        account = await self._resolve_account(account_id)
        if client_id is not None and await self.store.get_contact(client_id) is None:
            raise UnresolvedContactError(client_id)

        transaction = Transaction(
            user_id=self.user_id,
            project_id=self.project_id,
            kind=kind,
            amount=amount,
            category=category,
            description=description,
            account_id=account.id,
            client_id=client_id,
            date=date or self._today(),
        )
        return await self._commit(transaction, self.store.save_transaction)

    async def add_transfer(
        self,
        from_account_id: str,
        to_account_id: str,
        amount: Decimal,
        description: str = "",
        date: Optional[datetime.date] = None,
    ) -> Transaction:
        """Move money between two of the user's accounts (net effect zero)."""
        transfer = Transaction(
            user_id=self.user_id,
            project_id=self.project_id,
            kind=TransactionKind.TRANSFER,
            amount=amount,
            description=description,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            date=date or self._today(),
        )
        return await self._commit(transfer, self.store.save_transaction)

    async def add_repayment(
        self,
        loan_id: str,
        amount: Decimal,
        account_id: Optional[str] = None,
        description: Optional[str] = None,
        date: Optional[datetime.date] = None,
    ) -> Transaction:
        """
        Record a repayment against a loan.

        The repayment moves through the loan's own account unless another
        is given. The loan is marked paid once nothing is outstanding.

        Raises:
            UnresolvedLoanError: If the loan doesn't exist
            OutstandingExceededError: If amount exceeds what is still owed
        """
        loan = await self.store.get_loan(loan_id)
        if loan is None:
            raise UnresolvedLoanError(loan_id)

        self.tracker.validate_repayment(loan, amount, await self.list_transactions())

        if description is None:
            contact = await self.store.get_contact(loan.contact_id)
            description = (
                f"Repayment for loan to/from {contact.name if contact else 'Unknown'}"
            )

        repayment = Transaction(
            user_id=self.user_id,
            project_id=self.project_id,
            kind=TransactionKind.REPAYMENT,
            amount=amount,
            description=description,
            account_id=account_id or loan.account_id,
            loan_id=loan.id,
            date=date or self._today(),
        )
        saved = await self._commit(repayment, self.store.save_transaction, loan)
        await self._refresh_loan_status(loan)
        return saved

    async def update_transaction(
        self,
        transaction_id: str,
        changes: dict[str, Any],
    ) -> Transaction:
        """
        Edit a committed transaction.

        Only description, category, date, client and amount may change.
        An amount change reverses the old balance effect and applies the
        new one; a repayment's new amount is checked against the loan.
        Legs detached from a deleted account stay detached and move no
        balance.

        Raises:
            NotFoundError: If the transaction doesn't exist
            LedgerError: If a non-editable field is given
            OutstandingExceededError: If a repayment grows past the loan
        """
        current = await self.store.get_transaction(transaction_id)
        if current is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        illegal = set(changes) - TRANSACTION_EDITABLE_FIELDS
        if illegal:
            raise LedgerError(f"Cannot edit transaction fields: {', '.join(sorted(illegal))}")

        changes = {k: v for k, v in changes.items() if getattr(current, k) != v}
        if not changes:
            return current

        # Validate the merged entity before touching balances
        Transaction.model_validate({**current.model_dump(), **changes})

        loan = None
        if current.kind == TransactionKind.REPAYMENT:
            loan = await self.store.get_loan(current.loan_id)
            if loan is None:
                raise UnresolvedLoanError(current.loan_id)

        if "amount" not in changes:
            updated = await self.store.update_transaction(transaction_id, changes)
        else:
            new_amount = Decimal(changes["amount"])
            if loan is not None:
                self.tracker.validate_repayment(
                    loan, new_amount, await self.list_transactions(), exclude_id=current.id
                )
            await self.mutator.reverse(current, loan)
            try:
                updated = await self.store.update_transaction(transaction_id, changes)
            except StorageError:
                await self.mutator.apply(current, loan, skip_detached=True)
                raise
            await self.mutator.apply(updated, loan, skip_detached=True)

        self.audit.log(AuditEventBuilder.entry_updated(updated, changes))
        if loan is not None and "amount" in changes:
            await self._refresh_loan_status(loan)
        self._written()
        return updated

    async def delete_transaction(self, transaction_id: str) -> Transaction:
        """
        Reverse a transaction's balance effect, then delete it.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        transaction = await self.store.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        loan = None
        if transaction.kind == TransactionKind.REPAYMENT:
            loan = await self.store.get_loan(transaction.loan_id)

        if transaction.kind != TransactionKind.REPAYMENT or loan is not None:
            await self.mutator.reverse(transaction, loan)
        await self.store.delete_transaction(transaction_id)
        self.audit.log(AuditEventBuilder.entry_deleted(transaction))

        if loan is not None:
            await self._refresh_loan_status(loan)
        self._written()
        return transaction

    # =========================================================================
    # Loans
    # =========================================================================

    async def list_loans(self) -> list[Loan]:
        return await self.store.list_loans(self.user_id, self.project_id)

    async def add_loan(
        self,
        kind: LoanKind,
        contact_id: str,
        amount: Decimal,
        account_id: Optional[str] = None,
        description: str = "",
        due_date: Optional[datetime.date] = None,
        date: Optional[datetime.date] = None,
    ) -> Loan:
        """
        Record a new loan given to or taken from a contact.

        Raises:
            UnresolvedContactError: If the contact doesn't exist
            UnresolvedAccountError: If no usable account exists
        """
        if await self.store.get_contact(contact_id) is None:
            raise UnresolvedContactError(contact_id)
        account = await self._resolve_account(account_id)

        loan = Loan(
            user_id=self.user_id,
            project_id=self.project_id,
            kind=LoanKind(kind),
            contact_id=contact_id,
            amount=amount,
            description=description,
            due_date=due_date,
            account_id=account.id,
            date=date or self._today(),
        )
        return await self._commit(loan, self.store.save_loan)

    async def add_or_extend_loan(
        self,
        kind: LoanKind,
        contact_id: str,
        amount: Decimal,
        account_id: Optional[str] = None,
        description: str = "",
        due_date: Optional[datetime.date] = None,
    ) -> Loan:
        """
        Add to the contact's active loan of the same kind, or start a new one.

        Extending raises the principal; the extra amount moves through
        the existing loan's account.
        """
        kind = LoanKind(kind)
        existing = await self.active_loan(contact_id, kind)
        if existing is None:
            return await self.add_loan(
                kind, contact_id, amount, account_id, description, due_date
            )
        return await self.update_loan(existing.id, {"amount": existing.amount + amount})

    async def active_loan(
        self,
        contact_id: str,
        kind: Optional[LoanKind] = None,
    ) -> Optional[Loan]:
        """The contact's most recent active loan (of the given kind, if any)."""
        candidates = [
            loan for loan in await self.list_loans()
            if loan.contact_id == contact_id
            and loan.status == LoanStatus.ACTIVE
            and (kind is None or loan.kind == kind)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda loan: (loan.date, loan.id))

    async def update_loan(self, loan_id: str, changes: dict[str, Any]) -> Loan:
        """
        Edit a loan's principal, description, or dates.

        The principal can't drop below what was already repaid.

        Raises:
            NotFoundError: If the loan doesn't exist
            LedgerError: If a non-editable field is given
            OutstandingExceededError: If repayments exceed the new principal
        """
        current = await self.store.get_loan(loan_id)
        if current is None:
            raise NotFoundError(f"Loan {loan_id} not found")

        illegal = set(changes) - LOAN_EDITABLE_FIELDS
        if illegal:
            raise LedgerError(f"Cannot edit loan fields: {', '.join(sorted(illegal))}")

        changes = {k: v for k, v in changes.items() if getattr(current, k) != v}
        if not changes:
            return current

        Loan.model_validate({**current.model_dump(), **changes})

        if "amount" not in changes:
            updated = await self.store.update_loan(loan_id, changes)
        else:
            transactions = await self.list_transactions()
            repaid = self.tracker.repaid(current, transactions)
            new_amount = Decimal(changes["amount"])
            if repaid > new_amount:
                raise OutstandingExceededError(current.id, repaid, new_amount)
            await self.mutator.reverse(current)
            try:
                updated = await self.store.update_loan(loan_id, changes)
            except StorageError:
                await self.mutator.apply(current)
                raise
            await self.mutator.apply(updated)

        self.audit.log(AuditEventBuilder.entry_updated(updated, changes))
        if "amount" in changes:
            updated = await self._refresh_loan_status(updated)
        self._written()
        return updated

    async def delete_loan(self, loan_id: str) -> Loan:
        """
        Reverse a loan's balance effect, then delete it.

        Raises:
            NotFoundError: If the loan doesn't exist
            LoanHasRepaymentsError: If repayments still reference it
        """
        loan = await self.store.get_loan(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")

        repayments = self.tracker.repayments(loan, await self.list_transactions())
        if repayments:
            raise LoanHasRepaymentsError(loan_id, len(repayments))

        await self.mutator.reverse(loan)
        await self.store.delete_loan(loan_id)
        self.audit.log(AuditEventBuilder.entry_deleted(loan))
        self._written()
        return loan

    async def outstanding(self, loan_id: str) -> Decimal:
        loan = await self.store.get_loan(loan_id)
        if loan is None:
            raise UnresolvedLoanError(loan_id)
        return self.tracker.outstanding(loan, await self.list_transactions())

    async def _refresh_loan_status(self, loan: Loan) -> Loan:
        """Mark a loan paid when settled; warn when a paid loan owes again."""
        current = await self.store.get_loan(loan.id)
        if current is None:
            return loan

        transactions = await self.list_transactions()
        status = self.tracker.settled_status(current, transactions)
        if status != current.status:
            current = await self.store.update_loan(current.id, {"status": status})
            self.audit.log(AuditEventBuilder.loan_settled(current.id))
        elif current.status == LoanStatus.PAID:
            outstanding = self.tracker.outstanding(current, transactions)
            if outstanding > 0:
                self.audit.log(AuditEventBuilder.loan_status_stale(current.id, outstanding))
        return current

    # =========================================================================
    # Project spreadsheet link
    # =========================================================================

    async def link_sheet(
        self,
        sheet_id: Optional[str],
        project_name: Optional[str] = None,
    ) -> Project:
        """
        Link the session's project to a spreadsheet (None unlinks it).

        The project record is created on first link.

        Raises:
            LedgerError: If the session has no project
        """
        if self.project_id is None:
            raise LedgerError("Only a project can be linked to a spreadsheet")

        project = await self.store.get_project(self.project_id)
        if project is None:
            project = await self.store.save_project(Project(
                id=self.project_id,
                user_id=self.user_id,
                name=project_name or self.project_id,
                google_sheet_id=sheet_id,
            ))
        else:
            project = await self.store.update_project(
                self.project_id, {"google_sheet_id": sheet_id}
            )
        self.audit.log(AuditEventBuilder.sheet_linked(project.id, sheet_id))
        return project

    async def linked_sheet_id(self) -> Optional[str]:
        if self.project_id is None:
            return None
        project = await self.store.get_project(self.project_id)
        return project.google_sheet_id if project else None

    # =========================================================================
    # Extraction candidates
    # =========================================================================

    async def record_candidate(self, candidate: LedgerCandidate) -> Union[Transaction, Loan]:
        """
        Commit an entry proposed by the extraction agent.

        The account is looked up by name, falling back to the primary
        account. Loans extend the contact's active loan of the same kind.

        Raises:
            UnresolvedAccountError: If the named account doesn't exist
            UnresolvedContactError: If a loan candidate names no contact
        """
        if candidate.account_name:
            account = await self.find_account(candidate.account_name)
            if account is None:
                raise UnresolvedAccountError(candidate.account_name)
        else:
            account = await self._resolve_account(None)

        if candidate.is_loan:
            if not candidate.contact_name:
                raise UnresolvedContactError(None)
            contact = await self.get_or_create_contact(candidate.contact_name)
            return await self.add_or_extend_loan(
                LoanKind(candidate.kind),
                contact.id,
                candidate.amount,
                account_id=account.id,
                description=candidate.description or "",
            )

        client_id = None
        if candidate.client_name:
            client_id = (await self.get_or_create_contact(candidate.client_name)).id
        return await self.add_transaction(
            TransactionKind(candidate.kind),
            candidate.amount,
            category=candidate.category or "",
            description=candidate.description or "",
            account_id=account.id,
            client_id=client_id,
        )

    # =========================================================================
    # Background writes
    # =========================================================================

    def submit(self, write: Awaitable[Any], label: str = "ledger write") -> PendingWrite:
        """
        Run a write in the background.

        Must be called from a running event loop. Failures are logged
        even if nobody awaits the returned handle.
        """
        pending = PendingWrite(asyncio.ensure_future(write), label, self.audit)
        self._pending.append(pending)
        return pending

    async def flush(self) -> list[PendingWrite]:
        """
        Wait for every submitted write, including writes submitted while
        flushing (e.g. follow-up syncs); returns their handles.
        """
        flushed: list[PendingWrite] = []
        while self._pending:
            pending, self._pending = self._pending, []
            await asyncio.gather(*(p.task for p in pending), return_exceptions=True)
            flushed.extend(pending)
        return flushed

    def add_write_listener(self, listener: Callable[[], None]) -> None:
        """Call `listener` after every successful ledger change."""
        self._listeners.append(listener)

    def _written(self) -> None:
        for listener in self._listeners:
            listener()

    # =========================================================================
    # Internals
    # =========================================================================

    async def _commit(
        self,
        entry: Union[Transaction, Loan],
        save: Callable[[Any], Awaitable[Any]],
        loan: Optional[Loan] = None,
    ) -> Any:
        """Apply the balance effect, then save; undo the effect if the save fails."""
        await self.mutator.apply(entry, loan)
        try:
            saved = await save(entry)
        except StorageError:
            await self.mutator.reverse(entry, loan)
            raise
        self.audit.log(AuditEventBuilder.entry_created(saved))
        self._written()
        return saved
