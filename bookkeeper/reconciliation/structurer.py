"""
Row Structurer

Turns ledger entities into the canonical sheet table.

DESIGN DECISION: The structurer is a pure function of the store's
contents. The same ledger always yields the same table (rows sorted by
date, then ID), which is what makes repeated syncs idempotent.

Amount column signs (the ledger itself keeps amounts unsigned):

    income       +        loanGiven              -
    expense      -        loanTaken              +
    transfer     +        repayment, loanGiven   +
                          repayment, loanTaken   -
"""

from decimal import Decimal
from typing import Iterable, Optional

from bookkeeper.models.ledger import (
    BankAccount,
    Contact,
    Loan,
    LoanKind,
    Transaction,
    TransactionKind,
    TRANSFER_CATEGORY,
)
from bookkeeper.models.sync import SheetTable


TYPE_LABELS = {
    TransactionKind.INCOME: "Income",
    TransactionKind.EXPENSE: "Expense",
    TransactionKind.TRANSFER: "Transfer",
    TransactionKind.REPAYMENT: "Repayment",
    LoanKind.GIVEN: "Loan Given",
    LoanKind.TAKEN: "Loan Taken",
}

TRANSFER_SEPARATOR = " → "


def format_amount(value: Decimal) -> str:
    """Plain signed decimal, no currency symbol or grouping."""
    return format(value, "f")


class RowStructurer:
    """Builds the canonical [transaction_id, Date, Type, ...] table."""

    def structure(
        self,
        transactions: Iterable[Transaction],
        loans: Iterable[Loan],
        accounts: Iterable[BankAccount],
        contacts: Iterable[Contact],
    ) -> SheetTable:
        """
        Build one row per transaction and per loan.

        Unresolvable account, contact, or loan references render as "".
        """
        account_names = {account.id: account.name for account in accounts}
        contact_names = {contact.id: contact.name for contact in contacts}
        loans = list(loans)
        loans_by_id = {loan.id: loan for loan in loans}

        keyed: list[tuple[tuple[str, str], list[str]]] = []
        for transaction in transactions:
            row = self._transaction_row(
                transaction, loans_by_id.get(transaction.loan_id or ""),
                account_names, contact_names,
            )
            keyed.append(((transaction.date.isoformat(), transaction.id), row))
        for loan in loans:
            row = self._loan_row(loan, account_names, contact_names)
            keyed.append(((loan.date.isoformat(), loan.id), row))

        keyed.sort(key=lambda item: item[0])
        return SheetTable(rows=[row for _, row in keyed])

    def _transaction_row(
        self,
        transaction: Transaction,
        loan: Optional[Loan],
        account_names: dict[str, str],
        contact_names: dict[str, str],
    ) -> list[str]:
        amount = transaction.amount
        kind = transaction.kind

        if kind == TransactionKind.TRANSFER:
            account = (
                account_names.get(transaction.from_account_id or "", "")
                + TRANSFER_SEPARATOR
                + account_names.get(transaction.to_account_id or "", "")
            )
            category = TRANSFER_CATEGORY
            signed = amount
        elif kind == TransactionKind.REPAYMENT:
            account = account_names.get(transaction.account_id or "", "")
            category = contact_names.get(loan.contact_id, "") if loan else ""
            # Unknown loan direction shows as money in
            signed = -amount if loan and loan.kind == LoanKind.TAKEN else amount
        else:
            account = account_names.get(transaction.account_id or "", "")
            category = transaction.category
            client = contact_names.get(transaction.client_id or "")
            if client:
                category = f"{category} ({client})" if category else f"({client})"
            signed = amount if kind == TransactionKind.INCOME else -amount

        return [
            transaction.id,
            transaction.date.isoformat(),
            TYPE_LABELS[kind],
            account,
            category,
            transaction.description,
            format_amount(signed),
        ]

    def _loan_row(
        self,
        loan: Loan,
        account_names: dict[str, str],
        contact_names: dict[str, str],
    ) -> list[str]:
        signed = -loan.amount if loan.kind == LoanKind.GIVEN else loan.amount
        return [
            loan.id,
            loan.date.isoformat(),
            TYPE_LABELS[loan.kind],
            account_names.get(loan.account_id, ""),
            contact_names.get(loan.contact_id, ""),
            loan.description,
            format_amount(signed),
        ]
