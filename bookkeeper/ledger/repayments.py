"""
Repayment Tracker

Derives a loan's outstanding amount from its repayment history.

    outstanding = principal - sum(repayments with loan_id == loan.id)

Clamped at zero. The tracker is pure: it reads the transactions it is
given and never writes. The ledger service persists status changes.
"""

from decimal import Decimal
from typing import Iterable, Optional

from bookkeeper.ledger.errors import OutstandingExceededError
from bookkeeper.models.ledger import Loan, LoanStatus, Transaction, TransactionKind


class RepaymentTracker:
    """Outstanding-amount arithmetic for peer loans."""

    @staticmethod
    def repayments(loan: Loan, transactions: Iterable[Transaction]) -> list[Transaction]:
        """Repayment transactions recorded against a loan."""
        return [
            t for t in transactions
            if t.kind == TransactionKind.REPAYMENT and t.loan_id == loan.id
        ]

    def repaid(
        self,
        loan: Loan,
        transactions: Iterable[Transaction],
        exclude_id: Optional[str] = None,
    ) -> Decimal:
        """Total repaid on a loan, optionally ignoring one repayment."""
        return sum(
            (t.amount for t in self.repayments(loan, transactions) if t.id != exclude_id),
            Decimal("0"),
        )

    def outstanding(
        self,
        loan: Loan,
        transactions: Iterable[Transaction],
        exclude_id: Optional[str] = None,
    ) -> Decimal:
        """Principal minus repayments, never negative."""
        remaining = loan.amount - self.repaid(loan, transactions, exclude_id)
        return max(remaining, Decimal("0"))

    def validate_repayment(
        self,
        loan: Loan,
        amount: Decimal,
        transactions: Iterable[Transaction],
        exclude_id: Optional[str] = None,
    ) -> None:
        """
        Reject a repayment larger than what is still owed.

        `exclude_id` leaves out a repayment being edited, so its old
        amount doesn't count against its new one.

        Raises:
            OutstandingExceededError: If amount > outstanding
        """
        outstanding = self.outstanding(loan, transactions, exclude_id)
        if amount > outstanding:
            raise OutstandingExceededError(loan.id, amount, outstanding)

    def settled_status(self, loan: Loan, transactions: Iterable[Transaction]) -> LoanStatus:
        """
        PAID once nothing is outstanding, else the loan's current status.

        A paid loan never flips back to active here.
        """
        if self.outstanding(loan, transactions) == 0:
            return LoanStatus.PAID
        return loan.status
