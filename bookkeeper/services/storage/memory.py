"""
In-Memory Storage

Dict-backed implementations of EntityStore and CredentialStore.
Used by tests and by single-session tools that don't need persistence.

Entities are copied on the way in and on the way out, so callers can
never mutate stored state except through the store's own methods.
"""

from typing import Any, Optional, TypeVar

from pydantic import BaseModel

from bookkeeper.models.credentials import OAuthToken
from bookkeeper.models.ledger import BankAccount, Contact, Loan, Project, Transaction
from bookkeeper.services.storage.interface import (
    CredentialStore,
    DuplicateError,
    EntityStore,
    NotFoundError,
)


ModelT = TypeVar("ModelT", bound=BaseModel)


def _normalize_name(name: str) -> str:
    return name.strip().lower()


class InMemoryEntityStore(EntityStore):
    """EntityStore backed by plain dicts keyed by entity ID."""

    def __init__(self):
        self._transactions: dict[str, Transaction] = {}
        self._loans: dict[str, Loan] = {}
        self._accounts: dict[str, BankAccount] = {}
        self._contacts: dict[str, Contact] = {}
        self._projects: dict[str, Project] = {}

    # -------------------------------------------------------------------------
    # Generic helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _insert(table: dict[str, ModelT], entity: ModelT, label: str) -> ModelT:
        if entity.id in table:
            raise DuplicateError(f"{label} {entity.id} already exists")
        table[entity.id] = entity.model_copy(deep=True)
        return entity.model_copy(deep=True)

    @staticmethod
    def _get(table: dict[str, ModelT], entity_id: str) -> Optional[ModelT]:
        entity = table.get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    @staticmethod
    def _update(
        table: dict[str, ModelT],
        entity_id: str,
        changes: dict[str, Any],
        label: str,
    ) -> ModelT:
        current = table.get(entity_id)
        if current is None:
            raise NotFoundError(f"{label} {entity_id} not found")
        merged = current.model_dump()
        merged.update(changes)
        # Re-validate so an update can't produce an entity a save would reject
        updated = type(current).model_validate(merged)
        table[entity_id] = updated
        return updated.model_copy(deep=True)

    @staticmethod
    def _scoped(
        table: dict[str, ModelT],
        user_id: str,
        project_id: Optional[str],
    ) -> list[ModelT]:
        return [
            entity.model_copy(deep=True)
            for entity in table.values()
            if entity.user_id == user_id
            and (project_id is None or entity.project_id == project_id)
        ]

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        return self._insert(self._transactions, transaction, "Transaction")

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self._get(self._transactions, transaction_id)

    async def update_transaction(
        self,
        transaction_id: str,
        changes: dict[str, Any],
    ) -> Transaction:
        return self._update(self._transactions, transaction_id, changes, "Transaction")

    async def delete_transaction(self, transaction_id: str) -> bool:
        return self._transactions.pop(transaction_id, None) is not None

    async def list_transactions(
        self,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> list[Transaction]:
        return self._scoped(self._transactions, user_id, project_id)

    # -------------------------------------------------------------------------
    # Loans
    # -------------------------------------------------------------------------

    async def save_loan(self, loan: Loan) -> Loan:
        return self._insert(self._loans, loan, "Loan")

    async def get_loan(self, loan_id: str) -> Optional[Loan]:
        return self._get(self._loans, loan_id)

    async def update_loan(self, loan_id: str, changes: dict[str, Any]) -> Loan:
        return self._update(self._loans, loan_id, changes, "Loan")

    async def delete_loan(self, loan_id: str) -> bool:
        return self._loans.pop(loan_id, None) is not None

    async def list_loans(
        self,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> list[Loan]:
        return self._scoped(self._loans, user_id, project_id)

    # -------------------------------------------------------------------------
    # Bank accounts
    # -------------------------------------------------------------------------

    async def save_account(self, account: BankAccount) -> BankAccount:
        return self._insert(self._accounts, account, "Bank account")

    async def get_account(self, account_id: str) -> Optional[BankAccount]:
        return self._get(self._accounts, account_id)

    async def update_account(
        self,
        account_id: str,
        changes: dict[str, Any],
    ) -> BankAccount:
        return self._update(self._accounts, account_id, changes, "Bank account")

    async def delete_account(self, account_id: str) -> bool:
        return self._accounts.pop(account_id, None) is not None

    async def list_accounts(
        self,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> list[BankAccount]:
        return self._scoped(self._accounts, user_id, project_id)

    async def find_account_by_name(
        self,
        user_id: str,
        name: str,
        project_id: Optional[str] = None,
    ) -> Optional[BankAccount]:
        wanted = _normalize_name(name)
        for account in self._scoped(self._accounts, user_id, project_id):
            if _normalize_name(account.name) == wanted:
                return account
        return None

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    async def save_contact(self, contact: Contact) -> Contact:
        return self._insert(self._contacts, contact, "Contact")

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        return self._get(self._contacts, contact_id)

    async def list_contacts(
        self,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> list[Contact]:
        return self._scoped(self._contacts, user_id, project_id)

    async def find_contact_by_name(
        self,
        user_id: str,
        name: str,
        project_id: Optional[str] = None,
    ) -> Optional[Contact]:
        wanted = _normalize_name(name)
        for contact in self._scoped(self._contacts, user_id, project_id):
            if _normalize_name(contact.name) == wanted:
                return contact
        return None

    async def update_contact(self, contact_id: str, changes: dict[str, Any]) -> Contact:
        return self._update(self._contacts, contact_id, changes, "Contact")

    async def delete_contact(self, contact_id: str) -> bool:
        return self._contacts.pop(contact_id, None) is not None

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    async def save_project(self, project: Project) -> Project:
        return self._insert(self._projects, project, "Project")

    async def get_project(self, project_id: str) -> Optional[Project]:
        return self._get(self._projects, project_id)

    async def update_project(self, project_id: str, changes: dict[str, Any]) -> Project:
        return self._update(self._projects, project_id, changes, "Project")


class InMemoryCredentialStore(CredentialStore):
    """CredentialStore backed by a dict keyed by user ID."""

    def __init__(self, tokens: Optional[dict[str, OAuthToken]] = None):
        self._tokens: dict[str, OAuthToken] = dict(tokens or {})

    def get_oauth_token(self, user_id: str) -> Optional[OAuthToken]:
        token = self._tokens.get(user_id)
        return token.model_copy() if token else None

    def save_oauth_token(self, user_id: str, token: OAuthToken) -> None:
        self._tokens[user_id] = token.model_copy()
