"""Tests for the repayment tracker."""

from decimal import Decimal

import pytest

from bookkeeper.ledger.errors import OutstandingExceededError
from bookkeeper.ledger.repayments import RepaymentTracker
from bookkeeper.models.ledger import Loan, LoanKind, LoanStatus, Transaction, TransactionKind


@pytest.fixture
def loan():
    return Loan(
        id="l1", user_id="u", kind=LoanKind.GIVEN, contact_id="c",
        account_id="a", amount=Decimal("500"),
    )


def _repayment(amount, loan_id="l1", id=None):
    fields = {"id": id} if id else {}
    return Transaction(
        user_id="u", kind=TransactionKind.REPAYMENT, amount=Decimal(amount),
        account_id="a", loan_id=loan_id, **fields,
    )


class TestRepaymentTracker:
    """Tests for outstanding-amount arithmetic."""

    def test_outstanding_is_principal_minus_repayments(self, loan):
        tracker = RepaymentTracker()
        transactions = [
            _repayment("100"),
            _repayment("150"),
            _repayment("999", loan_id="other"),
            Transaction(user_id="u", kind=TransactionKind.INCOME, amount=Decimal("50"), account_id="a"),
        ]
        assert tracker.repaid(loan, transactions) == Decimal("250")
        assert tracker.outstanding(loan, transactions) == Decimal("250")

    def test_outstanding_never_negative(self, loan):
        """Test that an over-repaid loan reports zero, not a negative."""
        tracker = RepaymentTracker()
        assert tracker.outstanding(loan, [_repayment("400"), _repayment("400")]) == Decimal("0")

    def test_validate_rejects_excess(self, loan):
        tracker = RepaymentTracker()
        with pytest.raises(OutstandingExceededError) as exc_info:
            tracker.validate_repayment(loan, Decimal("501"), [])
        assert exc_info.value.outstanding == Decimal("500")

    def test_validate_accepts_exact_outstanding(self, loan):
        RepaymentTracker().validate_repayment(loan, Decimal("500"), [])

    def test_validate_excludes_edited_repayment(self, loan):
        """Test that editing a repayment doesn't count its old amount."""
        tracker = RepaymentTracker()
        transactions = [_repayment("400", id="r1")]
        tracker.validate_repayment(loan, Decimal("500"), transactions, exclude_id="r1")
        with pytest.raises(OutstandingExceededError):
            tracker.validate_repayment(loan, Decimal("500"), transactions)

    def test_settled_status(self, loan):
        tracker = RepaymentTracker()
        assert tracker.settled_status(loan, [_repayment("100")]) == LoanStatus.ACTIVE
        assert tracker.settled_status(loan, [_repayment("500")]) == LoanStatus.PAID

    def test_paid_loan_never_reverts(self, loan):
        """Test that a paid loan stays paid even if something is owed again."""
        paid = loan.model_copy(update={"status": LoanStatus.PAID})
        assert RepaymentTracker().settled_status(paid, []) == LoanStatus.PAID
