"""
Tests for the row parser and classifier.

Rows are plain lists of strings, as gspread returns them.
"""

import datetime
from decimal import Decimal

import pytest

from bookkeeper.ledger.errors import MalformedRowError
from bookkeeper.models.ledger import (
    BankAccount,
    Contact,
    Loan,
    LoanKind,
    LoanStatus,
    Transaction,
    TransactionKind,
)
from bookkeeper.models.sync import SHEET_HEADERS
from bookkeeper.reconciliation import (
    RowClassifier,
    RowStructurer,
    index_by_name,
    infer_kind,
    parse_amount,
    parse_date,
    parse_row,
    split_client_suffix,
)


SAVINGS = BankAccount(id="sav", user_id="u", name="Savings")
CHECKING = BankAccount(id="chk", user_id="u", name="Checking")
RAJ = Contact(id="raj", user_id="u", name="Raj")
ACME = Contact(id="acme", user_id="u", name="Acme")

ACCOUNTS = index_by_name([SAVINGS, CHECKING])
CONTACTS = index_by_name([RAJ, ACME])


def _classify(rows, transactions=(), loans=()):
    return RowClassifier().classify(
        [SHEET_HEADERS] + rows, transactions, loans, ACCOUNTS, CONTACTS
    )


class TestParsing:
    """Tests for cell-level parsing helpers."""

    @pytest.mark.parametrize("label,expected", [
        ("Income", TransactionKind.INCOME),
        ("salary", TransactionKind.INCOME),
        ("Expense", TransactionKind.EXPENSE),
        ("Purchase", TransactionKind.EXPENSE),
        ("Transfer", TransactionKind.TRANSFER),
        ("Repayment", TransactionKind.REPAYMENT),
        ("Loan Given", LoanKind.GIVEN),
        ("Loan Taken", LoanKind.TAKEN),
        ("loan", LoanKind.TAKEN),
        ("Debtor", LoanKind.GIVEN),
        ("Creditor", LoanKind.TAKEN),
        ("Gift", None),
        ("  ", None),
    ])
    def test_infer_kind(self, label, expected):
        assert infer_kind(label) == expected

    @pytest.mark.parametrize("text,expected", [
        ("150", Decimal("150")),
        ("-150", Decimal("-150")),
        ("1,250.50", Decimal("1250.50")),
        ("₹ 99", Decimal("99")),
        ("$12.5", Decimal("12.5")),
        ("(150)", Decimal("-150")),
    ])
    def test_parse_amount(self, text, expected):
        assert parse_amount(text) == expected

    @pytest.mark.parametrize("text", ["abc", "", "NaN", "Infinity"])
    def test_parse_amount_rejects_non_numbers(self, text):
        with pytest.raises(ValueError):
            parse_amount(text)

    @pytest.mark.parametrize("text,expected", [
        ("2024-01-05", datetime.date(2024, 1, 5)),
        ("2024/01/05", datetime.date(2024, 1, 5)),
        ("01/05/2024", datetime.date(2024, 1, 5)),
        ("2024-01-05T10:30:00Z", datetime.date(2024, 1, 5)),
        ("", None),
    ])
    def test_parse_date(self, text, expected):
        assert parse_date(text) == expected

    def test_parse_date_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_date("next tuesday")

    def test_split_client_suffix(self):
        assert split_client_suffix("Freelance (Acme)") == ("Freelance", "Acme")
        assert split_client_suffix("(Acme)") == ("", "Acme")
        assert split_client_suffix("Food") == ("Food", None)

    def test_parse_row_reads_amount_from_last_cell(self):
        """Scenario E: an extra cell before Amount folds into the description."""
        row = parse_row(["", "2024-01-05", "Expense", "Savings", "Food", "", "Lunch", "150"], 2)
        assert row.amount == Decimal("150")
        assert row.description == "Lunch"
        assert row.category_label == "Food"

    def test_parse_row_ignores_trailing_blanks(self):
        row = parse_row(["t1", "2024-01-05", "Income", "Savings", "", "", "10", "", ""], 3)
        assert row.amount == Decimal("10")
        assert row.description == ""

    @pytest.mark.parametrize("cells,reason", [
        (["", "2024-01-05", "Expense", "Savings", "Food"], "expected 7 cells"),
        (["", "2024-01-05", "", "Savings", "Food", "", "10"], "empty Type"),
        (["", "2024-01-05", "Expense", "Savings", "Food", "", "ten"], "not a number"),
        (["", "2024-01-05", "Expense", "Savings", "Food", "", "0"], "zero"),
        (["", "yesterday", "Expense", "Savings", "Food", "", "10"], "unrecognized date"),
    ])
    def test_malformed_rows(self, cells, reason):
        with pytest.raises(MalformedRowError) as exc_info:
            parse_row(cells, 4)
        assert exc_info.value.row_number == 4
        assert reason in exc_info.value.reason


class TestNewRows:
    """Tests for rows with no matching ID."""

    def test_scenario_e_new_expense(self):
        """Test that a signed amount becomes an unsigned new expense."""
        result = _classify([["", "2024-01-05", "Expense", "Savings", "Food", "", "Lunch", "-150"]])

        draft = result.new_transactions[0]
        assert draft.kind == TransactionKind.EXPENSE
        assert draft.amount == Decimal("150")
        assert draft.account_id == "sav"
        assert draft.category == "Food"
        assert draft.description == "Lunch"
        assert draft.date == datetime.date(2024, 1, 5)

    def test_unknown_id_is_new(self):
        """Test that an ID the ledger doesn't know is treated as new."""
        result = _classify([["stale-id", "2024-01-05", "Income", "Savings", "Pay", "", "10"]])
        assert len(result.new_transactions) == 1

    def test_unknown_account_kept_by_name(self):
        result = _classify([["", "", "Income", "Federal", "Pay", "", "10"]])
        draft = result.new_transactions[0]
        assert draft.account_id is None
        assert draft.account_name == "Federal"

    def test_client_suffix_matches_known_contact(self):
        result = _classify([
            ["", "", "Income", "Savings", "Freelance (acme)", "", "900"],
            ["", "", "Income", "Savings", "Rent (Flat 2)", "", "500"],
        ])
        known, unknown = result.new_transactions
        assert known.client_id == "acme"
        assert known.category == "Freelance"
        assert unknown.client_id is None
        assert unknown.category == "Rent (Flat 2)"

    def test_transfer_splits_accounts(self):
        result = _classify([
            ["", "", "Transfer", "Savings → Checking", "", "", "300"],
            ["", "", "Transfer", "checking->Savings", "", "", "50"],
        ])
        first, second = result.new_transactions
        assert (first.from_account_id, first.to_account_id) == ("sav", "chk")
        assert (second.from_account_id, second.to_account_id) == ("chk", "sav")

    def test_new_loan_with_unknown_contact_is_provisional(self):
        result = _classify([["", "", "Loan Given", "Savings", "Meera", "", "-500"]])
        draft = result.new_loans[0]
        assert draft.kind == LoanKind.GIVEN
        assert draft.amount == Decimal("500")
        assert draft.is_provisional
        assert draft.contact_name == "Meera"

    def test_loan_without_contact_skipped(self):
        result = _classify([["", "", "Loan Taken", "Savings", "", "", "500"]])
        assert not result.new_loans
        assert result.skipped[0].reason == "loan row names no contact"

    def test_repayment_resolves_most_recent_active_loan(self):
        loans = [
            Loan(id="old", user_id="u", kind=LoanKind.GIVEN, contact_id="raj",
                 account_id="sav", amount=Decimal("100"), date=datetime.date(2024, 1, 1)),
            Loan(id="new", user_id="u", kind=LoanKind.GIVEN, contact_id="raj",
                 account_id="sav", amount=Decimal("100"), date=datetime.date(2024, 1, 3)),
            Loan(id="paid", user_id="u", kind=LoanKind.GIVEN, contact_id="raj",
                 account_id="sav", amount=Decimal("100"), date=datetime.date(2024, 1, 9),
                 status=LoanStatus.PAID),
        ]
        result = _classify([["", "", "Repayment", "Savings", "Raj", "", "50"]], loans=loans)
        assert result.new_transactions[0].loan_id == "new"

    def test_repayment_without_active_loan_skipped(self):
        result = _classify([["", "", "Repayment", "Savings", "Raj", "", "50"]])
        assert not result.new_transactions
        assert "no active loan" in result.skipped[0].reason

    def test_unrecognized_type_skipped(self):
        result = _classify([["", "", "Gift", "Savings", "", "", "50"]])
        assert "unrecognized Type" in result.skipped[0].reason


class TestKnownRows:
    """Tests for rows whose ID is already in the ledger."""

    @pytest.fixture
    def expense(self):
        return Transaction(
            id="t1", user_id="u", kind=TransactionKind.EXPENSE, amount=Decimal("200"),
            category="Food", description="Lunch", account_id="sav",
            date=datetime.date(2024, 1, 5),
        )

    def test_only_drifted_fields_update(self, expense):
        result = _classify(
            [["t1", "2024-01-05", "Expense", "Savings", "Food", "Dinner", "-150"]],
            transactions=[expense],
        )
        update = result.updated_transactions[0]
        assert update.entity_id == "t1"
        assert update.changes == {"amount": Decimal("150"), "description": "Dinner"}
        assert not result.new_transactions

    def test_matching_row_is_unchanged(self, expense):
        result = _classify(
            [["t1", "2024-01-05", "Expense", "Savings", "Food", "Lunch", "-200"]],
            transactions=[expense],
        )
        assert not result.has_changes
        assert result.unchanged_ids == ["t1"]

    def test_loan_drift(self):
        loan = Loan(id="l1", user_id="u", kind=LoanKind.GIVEN, contact_id="raj",
                    account_id="sav", amount=Decimal("500"))
        result = _classify([["l1", "", "Loan Given", "Savings", "Raj", "", "-600"]], loans=[loan])
        assert result.updated_loans[0].changes == {"amount": Decimal("600")}

    def test_duplicate_id_skipped(self, expense):
        """Test that only the first row carrying an ID is used."""
        result = _classify(
            [
                ["t1", "2024-01-05", "Expense", "Savings", "Food", "Lunch", "-200"],
                ["t1", "2024-01-05", "Expense", "Savings", "Food", "Lunch", "-999"],
            ],
            transactions=[expense],
        )
        assert result.unchanged_ids == ["t1"]
        assert result.skipped[0].row_number == 3
        assert "duplicate" in result.skipped[0].reason

    def test_known_id_with_unrecognized_type_skipped(self, expense):
        """Test that the Type check runs before the row is matched by ID."""
        result = _classify(
            [["t1", "2024-01-05", "xyz", "Savings", "Food", "Dinner", "-150"]],
            transactions=[expense],
        )
        assert not result.has_changes
        assert not result.unchanged_ids
        assert "unrecognized Type" in result.skipped[0].reason

    def test_blank_rows_ignored(self):
        result = _classify([["", "", "", "", "", "", ""], []])
        assert not result.has_changes
        assert not result.skipped

    def test_bad_row_does_not_abort_batch(self):
        result = _classify([
            ["", "", "Expense", "Savings", "Food", "", "abc"],
            ["", "", "Expense", "Savings", "Food", "", "20"],
        ])
        assert len(result.skipped) == 1
        assert len(result.new_transactions) == 1

    def test_structured_table_round_trips_without_changes(self):
        """Test that the table the structurer writes reads back as no-op."""
        transactions = [
            Transaction(id="t1", user_id="u", kind=TransactionKind.INCOME, amount=Decimal("900"),
                        category="Freelance", account_id="sav", client_id="acme"),
            Transaction(id="t2", user_id="u", kind=TransactionKind.TRANSFER, amount=Decimal("300"),
                        from_account_id="sav", to_account_id="chk"),
            Transaction(id="t3", user_id="u", kind=TransactionKind.REPAYMENT, amount=Decimal("50"),
                        account_id="sav", loan_id="l1"),
        ]
        loans = [Loan(id="l1", user_id="u", kind=LoanKind.GIVEN, contact_id="raj",
                      account_id="sav", amount=Decimal("500"))]
        table = RowStructurer().structure(transactions, loans, [SAVINGS, CHECKING], [RAJ, ACME])

        result = RowClassifier().classify(table.values(), transactions, loans, ACCOUNTS, CONTACTS)

        assert not result.has_changes
        assert not result.skipped
        assert sorted(result.unchanged_ids) == ["l1", "t1", "t2", "t3"]
