"""Tests for the row structurer."""

import datetime
from decimal import Decimal

import pytest

from bookkeeper.models.ledger import (
    BankAccount,
    Contact,
    Loan,
    LoanKind,
    Transaction,
    TransactionKind,
)
from bookkeeper.models.sync import SHEET_HEADERS
from bookkeeper.reconciliation.structurer import RowStructurer, format_amount


ACCOUNTS = [
    BankAccount(id="sav", user_id="u", name="Savings"),
    BankAccount(id="chk", user_id="u", name="Checking"),
]
CONTACTS = [
    Contact(id="raj", user_id="u", name="Raj"),
    Contact(id="acme", user_id="u", name="Acme"),
]
DAY = datetime.date(2024, 1, 5)


def _tx(id, kind, amount="100", date=DAY, **fields):
    return Transaction(
        id=id, user_id="u", kind=kind, amount=Decimal(amount), date=date, **fields
    )


def _loan(id, kind, amount="500", date=DAY):
    return Loan(
        id=id, user_id="u", kind=kind, contact_id="raj", account_id="sav",
        amount=Decimal(amount), date=date,
    )


def _structure(transactions=(), loans=()):
    return RowStructurer().structure(transactions, loans, ACCOUNTS, CONTACTS)


class TestRowStructurer:
    """Tests for building the canonical sheet table."""

    def test_headers(self):
        assert _structure().values() == [SHEET_HEADERS]

    @pytest.mark.parametrize("kind,label,amount", [
        (TransactionKind.INCOME, "Income", "100"),
        (TransactionKind.EXPENSE, "Expense", "-100"),
    ])
    def test_income_and_expense_signs(self, kind, label, amount):
        row = _structure([_tx("t1", kind, category="Food", account_id="sav")]).rows[0]
        assert row == ["t1", "2024-01-05", label, "Savings", "Food", "", amount]

    def test_transfer_row(self):
        transfer = _tx(
            "t1", TransactionKind.TRANSFER, "300",
            from_account_id="sav", to_account_id="chk", description="Move",
        )
        row = _structure([transfer]).rows[0]
        assert row == [
            "t1", "2024-01-05", "Transfer", "Savings → Checking", "Bank Transfer", "Move", "300",
        ]

    def test_loan_rows(self):
        """Test that a given loan shows negative and a taken loan positive."""
        rows = _structure(loans=[
            _loan("l1", LoanKind.GIVEN),
            _loan("l2", LoanKind.TAKEN, "250"),
        ]).rows
        assert rows[0] == ["l1", "2024-01-05", "Loan Given", "Savings", "Raj", "", "-500"]
        assert rows[1] == ["l2", "2024-01-05", "Loan Taken", "Savings", "Raj", "", "250"]

    def test_repayment_signs_follow_loan(self):
        """Test that repayments are the opposite sign of their loan."""
        loans = [_loan("given", LoanKind.GIVEN), _loan("taken", LoanKind.TAKEN)]
        transactions = [
            _tx("r1", TransactionKind.REPAYMENT, "50", account_id="sav", loan_id="given"),
            _tx("r2", TransactionKind.REPAYMENT, "50", account_id="sav", loan_id="taken"),
        ]
        rows = {row[0]: row for row in _structure(transactions, loans).rows}

        assert rows["r1"][2:] == ["Repayment", "Savings", "Raj", "", "50"]
        assert rows["r2"][6] == "-50"

    def test_client_suffix(self):
        rows = _structure([
            _tx("t1", TransactionKind.INCOME, category="Freelance", account_id="sav", client_id="acme"),
            _tx("t2", TransactionKind.INCOME, account_id="sav", client_id="acme"),
        ]).rows
        assert rows[0][4] == "Freelance (Acme)"
        assert rows[1][4] == "(Acme)"

    def test_unresolved_references_render_empty(self):
        """Test that dangling IDs show as blank cells instead of failing."""
        rows = _structure([
            _tx("t1", TransactionKind.EXPENSE, account_id="gone", client_id="nobody"),
            _tx("t2", TransactionKind.TRANSFER, from_account_id=None, to_account_id="chk"),
            _tx("t3", TransactionKind.REPAYMENT, account_id="sav", loan_id="gone"),
        ]).rows
        assert rows[0][3] == ""
        assert rows[0][4] == ""
        assert rows[1][3] == " → Checking"
        assert rows[2][4] == ""
        assert rows[2][6] == "100"

    def test_sorted_by_date_then_id(self):
        """Test that row order is deterministic across runs."""
        earlier = datetime.date(2024, 1, 1)
        table = _structure(
            [
                _tx("b", TransactionKind.INCOME, account_id="sav"),
                _tx("a", TransactionKind.INCOME, account_id="sav"),
                _tx("z", TransactionKind.INCOME, account_id="sav", date=earlier),
            ],
            [_loan("c", LoanKind.GIVEN)],
        )
        assert [row[0] for row in table.rows] == ["z", "a", "b", "c"]

    def test_structure_is_deterministic(self):
        transactions = [
            _tx("t1", TransactionKind.EXPENSE, account_id="sav"),
            _tx("t2", TransactionKind.INCOME, account_id="chk"),
        ]
        assert _structure(transactions).values() == _structure(list(reversed(transactions))).values()

    def test_format_amount_plain_decimal(self):
        assert format_amount(Decimal("1234.50")) == "1234.50"
        assert format_amount(Decimal("-1E+3")) == "-1000"
