"""
Ledger Errors

Raised by the balance mutator, the repayment tracker, the ledger
service, and the row parser. Storage failures keep their own family
(StorageError) in the storage interface.
"""

from decimal import Decimal
from typing import Optional


class LedgerError(Exception):
    """Base exception for ledger rule violations."""
    pass


class UnresolvedAccountError(LedgerError):
    """A referenced bank account does not exist."""

    def __init__(self, account_ref: Optional[str], message: Optional[str] = None):
        self.account_ref = account_ref
        super().__init__(message or f"Bank account not found: {account_ref!r}")


class UnresolvedContactError(LedgerError):
    """A referenced contact does not exist."""

    def __init__(self, contact_ref: Optional[str]):
        self.contact_ref = contact_ref
        super().__init__(f"Contact not found: {contact_ref!r}")


class UnresolvedLoanError(LedgerError):
    """A repayment references a loan that does not exist."""

    def __init__(self, loan_ref: Optional[str]):
        self.loan_ref = loan_ref
        super().__init__(f"Loan not found: {loan_ref!r}")


class MalformedRowError(LedgerError):
    """A sheet row cannot be interpreted; the row is skipped."""

    def __init__(self, row_number: int, reason: str):
        self.row_number = row_number
        self.reason = reason
        super().__init__(f"Row {row_number}: {reason}")


class OutstandingExceededError(LedgerError):
    """A repayment is larger than what is still owed on the loan."""

    def __init__(self, loan_id: str, amount: Decimal, outstanding: Decimal):
        self.loan_id = loan_id
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(
            f"Repayment of {amount} exceeds outstanding {outstanding} on loan {loan_id}"
        )


class LoanHasRepaymentsError(LedgerError):
    """A loan cannot be deleted while repayments reference it."""

    def __init__(self, loan_id: str, repayment_count: int):
        self.loan_id = loan_id
        self.repayment_count = repayment_count
        super().__init__(
            f"Loan {loan_id} has {repayment_count} repayment(s); delete them first"
        )


class AccountInUseError(LedgerError):
    """A bank account cannot be deleted while loans reference it."""

    def __init__(self, account_id: str, loan_count: int):
        self.account_id = account_id
        self.loan_count = loan_count
        super().__init__(
            f"Bank account {account_id} is linked to {loan_count} loan(s)"
        )


class ContactInUseError(LedgerError):
    """A contact cannot be deleted while loans reference it."""

    def __init__(self, contact_id: str, loan_count: int):
        self.contact_id = contact_id
        self.loan_count = loan_count
        super().__init__(
            f"Contact {contact_id} is linked to {loan_count} loan(s)"
        )
