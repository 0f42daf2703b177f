"""
Balance Mutator

Applies and reverses the monetary effect of a committed ledger entry on
bank account balances.

DESIGN DECISION: Balances are maintained incrementally. Every commit
applies its delta once; every deletion reverses it. There is no
recompute-from-history pass in normal operation. `expected_balances`
replays history for drift diagnostics only and never writes.

Effect table (amounts are unsigned, direction comes from the kind):

    income                  account_id        +amount
    expense                 account_id        -amount
    transfer                from / to         -amount / +amount
    repayment, loanGiven    account_id        +amount
    repayment, loanTaken    account_id        -amount
    loan created, loanGiven loan.account_id   -amount
    loan created, loanTaken loan.account_id   +amount

Every leg is resolved before any balance is written: an unknown account
rejects the whole event. Each apply or reverse holds the mutator lock
from resolving the legs to the last write, so concurrent commits never
read the same starting balance. If a later leg write fails after an earlier one
committed, the drift risk is logged and the storage error re-raised.
"""

import asyncio
from decimal import Decimal
from typing import Iterable, Optional, Union

from bookkeeper.audit.logger import AuditLogger
from bookkeeper.ledger.errors import UnresolvedAccountError, UnresolvedLoanError
from bookkeeper.models.audit import AuditEventBuilder
from bookkeeper.models.ledger import (
    BankAccount,
    Loan,
    LoanKind,
    Transaction,
    TransactionKind,
    event_key,
)
from bookkeeper.services.storage.interface import EntityStore, StorageError


# (account_id, delta); account_id is None when the entry was detached
# from a deleted account.
Effect = tuple[Optional[str], Decimal]


def balance_effects(
    entry: Union[Transaction, Loan],
    loan: Optional[Loan] = None,
) -> list[Effect]:
    """
    Compute the balance deltas of a ledger entry.

    Args:
        entry: A transaction or loan
        loan: The repaid loan (required for repayments)

    Raises:
        UnresolvedLoanError: If a repayment's loan is not given
    """
    amount = entry.amount

    if entry.entity_kind == "loan":
        sign = -1 if entry.kind == LoanKind.GIVEN else 1
        return [(entry.account_id, sign * amount)]

    if entry.kind == TransactionKind.INCOME:
        return [(entry.account_id, amount)]
    if entry.kind == TransactionKind.EXPENSE:
        return [(entry.account_id, -amount)]
    if entry.kind == TransactionKind.TRANSFER:
        return [
            (entry.from_account_id, -amount),
            (entry.to_account_id, amount),
        ]

    # Repayment: money comes back on a loan we gave, goes out on one we took
    if loan is None:
        raise UnresolvedLoanError(entry.loan_id)
    sign = 1 if loan.kind == LoanKind.GIVEN else -1
    return [(entry.account_id, sign * amount)]


class BalanceMutator:
    """
    Applies balance effects through the entity store.

    One instance per session. The applied-events set (keys
    "<entity_kind>:<id>") protects against a retried commit applying
    the same event twice.
    """

    def __init__(
        self,
        store: EntityStore,
        audit_logger: Optional[AuditLogger] = None,
        applied_events: Optional[set[str]] = None,
    ):
        self.store = store
        self.audit = audit_logger or AuditLogger()
        self._applied = applied_events if applied_events is not None else set()
        self._lock = asyncio.Lock()

    def is_applied(self, entry: Union[Transaction, Loan]) -> bool:
        return event_key(entry) in self._applied

    async def apply(
        self,
        entry: Union[Transaction, Loan],
        loan: Optional[Loan] = None,
        skip_detached: bool = False,
    ) -> None:
        """
        Apply the balance effect of a committed entry.

        A second call for the same entry is logged and ignored. Legs
        detached from a deleted account reject the entry unless
        `skip_detached` is set (re-applying an edited entry).

        Raises:
            UnresolvedAccountError: If any leg's account doesn't exist
            UnresolvedLoanError: If a repayment's loan doesn't exist
            StorageError: If a balance write fails
        """
        key = event_key(entry)
        async with self._lock:
            if key in self._applied:
                self.audit.log(AuditEventBuilder.balance_event_duplicate(key))
                return

            effects = []
            for account_id, delta in balance_effects(
                entry, await self._repaid_loan(entry, loan)
            ):
                if account_id is not None:
                    effects.append((account_id, delta))
                elif not skip_detached:
                    raise UnresolvedAccountError(
                        None, f"{entry.kind.value} {entry.id} has no bank account"
                    )

            await self._write(key, effects)
            self._applied.add(key)
        self.audit.log(AuditEventBuilder.balance_applied(key, effects))

    async def reverse(
        self,
        entry: Union[Transaction, Loan],
        loan: Optional[Loan] = None,
    ) -> None:
        """
        Undo the balance effect of a committed entry.

        Legs detached from a deleted account are skipped.

        Raises:
            UnresolvedAccountError: If a linked account doesn't exist
            StorageError: If a balance write fails
        """
        key = event_key(entry)
        async with self._lock:
            effects = [
                (account_id, -delta)
                for account_id, delta in balance_effects(
                    entry, await self._repaid_loan(entry, loan)
                )
                if account_id is not None
            ]

            await self._write(key, effects)
            self._applied.discard(key)
        self.audit.log(AuditEventBuilder.balance_applied(key, effects, reversed_=True))

    async def adjust(self, account_id: str, delta: Decimal, key: str) -> None:
        """
        Shift one balance outside any ledger entry (opening balance edits).

        Raises:
            UnresolvedAccountError: If the account doesn't exist
            StorageError: If the balance write fails
        """
        effects = [(account_id, delta)]
        async with self._lock:
            await self._write(key, effects)
        self.audit.log(AuditEventBuilder.balance_applied(key, effects))

    async def _repaid_loan(
        self,
        entry: Union[Transaction, Loan],
        loan: Optional[Loan],
    ) -> Optional[Loan]:
        if entry.entity_kind != "transaction" or entry.kind != TransactionKind.REPAYMENT:
            return None
        if loan is not None:
            return loan
        found = await self.store.get_loan(entry.loan_id)
        if found is None:
            raise UnresolvedLoanError(entry.loan_id)
        return found

    async def _write(self, key: str, effects: list[Effect]) -> None:
        # Resolve every leg first: nothing is written if any account is missing
        accounts: dict[str, BankAccount] = {}
        for account_id, _ in effects:
            account = await self.store.get_account(account_id)
            if account is None:
                raise UnresolvedAccountError(account_id)
            accounts[account_id] = account

        written: list[str] = []
        for account_id, delta in effects:
            try:
                await self.store.update_account(
                    account_id,
                    {"balance": accounts[account_id].balance + delta},
                )
            except StorageError as e:
                if written:
                    self.audit.log(
                        AuditEventBuilder.balance_drift_risk(key, written, str(e))
                    )
                raise
            written.append(account_id)


def expected_balances(
    opening: dict[str, Decimal],
    transactions: Iterable[Transaction],
    loans: Iterable[Loan],
) -> dict[str, Decimal]:
    """
    Replay history on top of opening balances.

    Diagnostic only: compare the result with stored balances to detect
    drift. Repayments whose loan is unknown and detached legs are ignored.
    """
    balances = {account_id: Decimal(value) for account_id, value in opening.items()}
    loans = list(loans)
    loans_by_id = {loan.id: loan for loan in loans}

    entries: list[tuple[Union[Transaction, Loan], Optional[Loan]]] = [
        (loan, None) for loan in loans
    ]
    for transaction in transactions:
        if transaction.kind == TransactionKind.REPAYMENT:
            repaid = loans_by_id.get(transaction.loan_id)
            if repaid is None:
                continue
            entries.append((transaction, repaid))
        else:
            entries.append((transaction, None))

    for entry, repaid in entries:
        for account_id, delta in balance_effects(entry, repaid):
            if account_id is None:
                continue
            balances[account_id] = balances.get(account_id, Decimal("0")) + delta
    return balances
