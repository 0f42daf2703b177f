"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the in-memory store for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

There are three seams:
- EntityStore: transactions, loans, bank accounts, contacts, projects (async)
- CredentialStore: per-user OAuth tokens for Google access
- SheetMirror: one worksheet of the external spreadsheet (async)

The interface is intentionally simple - we're not building a full ORM.
Just the operations the ledger and the sync need.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from bookkeeper.models.credentials import OAuthToken
from bookkeeper.models.ledger import BankAccount, Contact, Loan, Project, Transaction


class EntityStore(ABC):
    """
    Abstract interface for ledger entity storage.

    Every method is scoped to one user (and optionally one project).
    Updates take a dict of changed fields; the store validates the
    merged entity before accepting it.
    """

    # Transactions

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        """
        Save a new transaction.

        Raises:
            DuplicateError: If the ID is already stored
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def update_transaction(
        self,
        transaction_id: str,
        changes: dict[str, Any],
    ) -> Transaction:
        """
        Apply field changes to a stored transaction.

        Returns:
            The updated transaction

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        """Returns True if something was deleted."""
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> list[Transaction]:
        pass

    # Loans

    @abstractmethod
    async def save_loan(self, loan: Loan) -> Loan:
        pass

    @abstractmethod
    async def get_loan(self, loan_id: str) -> Optional[Loan]:
        pass

    @abstractmethod
    async def update_loan(self, loan_id: str, changes: dict[str, Any]) -> Loan:
        pass

    @abstractmethod
    async def delete_loan(self, loan_id: str) -> bool:
        pass

    @abstractmethod
    async def list_loans(
        self,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> list[Loan]:
        pass

    # Bank accounts

    @abstractmethod
    async def save_account(self, account: BankAccount) -> BankAccount:
        pass

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[BankAccount]:
        pass

    @abstractmethod
    async def update_account(
        self,
        account_id: str,
        changes: dict[str, Any],
    ) -> BankAccount:
        pass

    @abstractmethod
    async def delete_account(self, account_id: str) -> bool:
        pass

    @abstractmethod
    async def list_accounts(
        self,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> list[BankAccount]:
        pass

    @abstractmethod
    async def find_account_by_name(
        self,
        user_id: str,
        name: str,
        project_id: Optional[str] = None,
    ) -> Optional[BankAccount]:
        """
        Find an account by name (case-insensitive, surrounding whitespace ignored).
        """
        pass

    # Contacts

    @abstractmethod
    async def save_contact(self, contact: Contact) -> Contact:
        pass

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        pass

    @abstractmethod
    async def list_contacts(
        self,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> list[Contact]:
        pass

    @abstractmethod
    async def find_contact_by_name(
        self,
        user_id: str,
        name: str,
        project_id: Optional[str] = None,
    ) -> Optional[Contact]:
        pass

    @abstractmethod
    async def update_contact(self, contact_id: str, changes: dict[str, Any]) -> Contact:
        pass

    @abstractmethod
    async def delete_contact(self, contact_id: str) -> bool:
        pass

    # Projects

    @abstractmethod
    async def save_project(self, project: Project) -> Project:
        pass

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Project]:
        pass

    @abstractmethod
    async def update_project(self, project_id: str, changes: dict[str, Any]) -> Project:
        """
        Update a project (e.g. link or unlink its spreadsheet).

        Raises:
            NotFoundError: If the project doesn't exist
        """
        pass


class CredentialStore(ABC):
    """
    Abstract interface for per-user Google credentials.

    Synchronous: the sheets client reads and refreshes tokens inside
    its own blocking gspread calls.
    """

    @abstractmethod
    def get_oauth_token(self, user_id: str) -> Optional[OAuthToken]:
        """Return the stored token for a user, or None."""
        pass

    @abstractmethod
    def save_oauth_token(self, user_id: str, token: OAuthToken) -> None:
        """Persist a (refreshed) token for a user."""
        pass


class SheetMirror(ABC):
    """
    Abstract interface for one external spreadsheet.

    Rows are plain lists of cell strings, header row first.
    """

    @abstractmethod
    async def read_rows(self, sheet_id: str, worksheet_name: str) -> list[list[str]]:
        """
        Read every row of a worksheet.

        Returns:
            All rows (header included); [] if the worksheet doesn't exist
        """
        pass

    @abstractmethod
    async def clear(self, sheet_id: str, worksheet_name: str) -> None:
        """
        Clear an entire worksheet by name.

        Raises:
            SheetNotFoundError: If the worksheet doesn't exist
        """
        pass

    @abstractmethod
    async def write(
        self,
        sheet_id: str,
        worksheet_name: str,
        values: list[list[str]],
    ) -> int:
        """
        Write values starting at A1 as user-entered input.

        Returns:
            Number of rows written
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class SheetNotFoundError(NotFoundError):
    """The spreadsheet or worksheet doesn't exist."""
    pass


class PermissionDeniedError(StorageError):
    """The spreadsheet is not shared with our identity (or read-only)."""
    pass


class CredentialsMissingError(StorageError):
    """No service account and no OAuth token available for the user."""
    pass
