"""
Tests for the balance mutator.

Covers the effect table, the applied-events guard, two-leg resolution,
and drift-risk logging when a second leg write fails.
"""

import asyncio
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from bookkeeper.ledger.balances import BalanceMutator, balance_effects, expected_balances
from bookkeeper.ledger.errors import UnresolvedAccountError, UnresolvedLoanError
from bookkeeper.models.audit import AuditEventType
from bookkeeper.models.ledger import (
    BankAccount,
    Loan,
    LoanKind,
    Transaction,
    TransactionKind,
)
from bookkeeper.services.storage import InMemoryEntityStore, StorageError


def _transaction(kind, amount="100", **links):
    return Transaction(user_id="u", kind=kind, amount=Decimal(amount), **links)


def _loan(kind, amount="500", account_id="a"):
    return Loan(
        user_id="u", kind=kind, contact_id="c", account_id=account_id, amount=Decimal(amount)
    )


class FailingSecondWriteStore(InMemoryEntityStore):
    """Fails every account update after the first."""

    def __init__(self):
        super().__init__()
        self.account_writes = 0

    async def update_account(self, account_id, changes):
        self.account_writes += 1
        if self.account_writes > 1:
            raise StorageError("write timed out")
        return await super().update_account(account_id, changes)


class YieldingStore(InMemoryEntityStore):
    """Gives up control between reading an account and returning it."""

    async def get_account(self, account_id):
        account = await super().get_account(account_id)
        await asyncio.sleep(0)
        return account


def _events(audit):
    return [call.args[0].event_type for call in audit.log.call_args_list]


class TestBalanceEffects:
    """Tests for the pure effect table."""

    def test_income_and_expense(self):
        assert balance_effects(_transaction(TransactionKind.INCOME, account_id="a")) == [
            ("a", Decimal("100"))
        ]
        assert balance_effects(_transaction(TransactionKind.EXPENSE, account_id="a")) == [
            ("a", Decimal("-100"))
        ]

    @pytest.mark.parametrize("amount", ["0.01", "300", "123456.78"])
    def test_transfer_deltas_sum_to_zero(self, amount):
        """Test that a transfer moves money without creating any."""
        transfer = _transaction(
            TransactionKind.TRANSFER, amount, from_account_id="a", to_account_id="b"
        )
        effects = balance_effects(transfer)
        assert [account for account, _ in effects] == ["a", "b"]
        assert sum(delta for _, delta in effects) == 0

    def test_loan_creation(self):
        """Test loan principal direction."""
        assert balance_effects(_loan(LoanKind.GIVEN)) == [("a", Decimal("-500"))]
        assert balance_effects(_loan(LoanKind.TAKEN)) == [("a", Decimal("500"))]

    def test_repayment_direction_follows_loan(self):
        """Test that repayments reverse the direction of their loan."""
        repayment = _transaction(TransactionKind.REPAYMENT, account_id="a", loan_id="l")
        assert balance_effects(repayment, _loan(LoanKind.GIVEN)) == [("a", Decimal("100"))]
        assert balance_effects(repayment, _loan(LoanKind.TAKEN)) == [("a", Decimal("-100"))]

    def test_repayment_without_loan_rejected(self):
        repayment = _transaction(TransactionKind.REPAYMENT, account_id="a", loan_id="l")
        with pytest.raises(UnresolvedLoanError):
            balance_effects(repayment)


class TestBalanceMutator:
    """Tests for applying and reversing balance effects."""

    @pytest.fixture
    async def accounts(self, store):
        a = await store.save_account(BankAccount(id="a", user_id="u", name="A", balance=Decimal("800")))
        b = await store.save_account(BankAccount(id="b", user_id="u", name="B"))
        return a, b

    @pytest.fixture
    def audit(self):
        return MagicMock()

    async def test_transfer_applies_both_legs(self, store, accounts, audit):
        """Scenario B: transfer 300 from 800 to 0."""
        mutator = BalanceMutator(store, audit)
        transfer = _transaction(
            TransactionKind.TRANSFER, "300", from_account_id="a", to_account_id="b"
        )
        await mutator.apply(transfer)

        assert (await store.get_account("a")).balance == Decimal("500")
        assert (await store.get_account("b")).balance == Decimal("300")
        assert mutator.is_applied(transfer)

    async def test_duplicate_apply_is_noop(self, store, accounts, audit):
        """Test that a retried apply doesn't double-count."""
        mutator = BalanceMutator(store, audit)
        expense = _transaction(TransactionKind.EXPENSE, "200", account_id="a")

        await mutator.apply(expense)
        await mutator.apply(expense)

        assert (await store.get_account("a")).balance == Decimal("600")
        assert AuditEventType.BALANCE_EVENT_DUPLICATE in _events(audit)

    async def test_reverse_restores_balance_and_clears_key(self, store, accounts, audit):
        mutator = BalanceMutator(store, audit)
        expense = _transaction(TransactionKind.EXPENSE, "200", account_id="a")

        await mutator.apply(expense)
        await mutator.reverse(expense)

        assert (await store.get_account("a")).balance == Decimal("800")
        assert not mutator.is_applied(expense)

    async def test_reverse_of_entry_from_previous_session(self, store, accounts, audit):
        """Test that reversing doesn't depend on this session's applied set."""
        expense = _transaction(TransactionKind.EXPENSE, "200", account_id="a")
        await BalanceMutator(store, audit).apply(expense)

        await BalanceMutator(store, audit).reverse(expense)
        assert (await store.get_account("a")).balance == Decimal("800")

    async def test_reverse_skips_detached_legs(self, store, accounts, audit):
        """Test that a leg whose account was deleted is skipped."""
        transfer = _transaction(
            TransactionKind.TRANSFER, "100", from_account_id=None, to_account_id="b"
        )
        await BalanceMutator(store, audit).reverse(transfer)
        assert (await store.get_account("b")).balance == Decimal("-100")

    async def test_unresolved_leg_applies_nothing(self, store, accounts, audit):
        """Test that an unknown destination leaves the source untouched."""
        mutator = BalanceMutator(store, audit)
        transfer = _transaction(
            TransactionKind.TRANSFER, "300", from_account_id="a", to_account_id="missing"
        )
        with pytest.raises(UnresolvedAccountError):
            await mutator.apply(transfer)

        assert (await store.get_account("a")).balance == Decimal("800")
        assert not mutator.is_applied(transfer)

    async def test_missing_account_id_rejected(self, store, accounts, audit):
        with pytest.raises(UnresolvedAccountError):
            await BalanceMutator(store, audit).apply(_transaction(TransactionKind.INCOME))

    async def test_repayment_loads_loan_from_store(self, store, accounts, audit):
        loan = await store.save_loan(_loan(LoanKind.GIVEN))
        repayment = _transaction(TransactionKind.REPAYMENT, "50", account_id="a", loan_id=loan.id)

        await BalanceMutator(store, audit).apply(repayment)
        assert (await store.get_account("a")).balance == Decimal("850")

    async def test_second_leg_failure_logs_drift_risk(self, audit):
        """Test that a partial transfer write is logged, not masked."""
        store = FailingSecondWriteStore()
        await store.save_account(BankAccount(id="a", user_id="u", name="A", balance=Decimal("800")))
        await store.save_account(BankAccount(id="b", user_id="u", name="B"))
        mutator = BalanceMutator(store, audit)
        transfer = _transaction(
            TransactionKind.TRANSFER, "300", from_account_id="a", to_account_id="b"
        )

        with pytest.raises(StorageError):
            await mutator.apply(transfer)

        assert AuditEventType.BALANCE_DRIFT_RISK in _events(audit)
        assert not mutator.is_applied(transfer)

    async def test_shared_applied_events_set(self, store, accounts, audit):
        """Test that an injected applied set guards across mutators."""
        applied: set[str] = set()
        expense = _transaction(TransactionKind.EXPENSE, "200", account_id="a")

        await BalanceMutator(store, audit, applied).apply(expense)
        await BalanceMutator(store, audit, applied).apply(expense)

        assert (await store.get_account("a")).balance == Decimal("600")

    async def test_concurrent_applies_keep_every_delta(self, audit):
        """Test that overlapping applies never read the same starting balance."""
        store = YieldingStore()
        await store.save_account(BankAccount(id="a", user_id="u", name="A", balance=Decimal("800")))
        mutator = BalanceMutator(store, audit)

        await asyncio.gather(
            mutator.apply(_transaction(TransactionKind.EXPENSE, "100", account_id="a")),
            mutator.apply(_transaction(TransactionKind.EXPENSE, "100", account_id="a")),
            mutator.reverse(_transaction(TransactionKind.INCOME, "50", account_id="a")),
        )

        assert (await store.get_account("a")).balance == Decimal("550")

    async def test_skip_detached_applies_remaining_legs(self, store, accounts, audit):
        transfer = _transaction(
            TransactionKind.TRANSFER, "100", from_account_id=None, to_account_id="b"
        )
        await BalanceMutator(store, audit).apply(transfer, skip_detached=True)
        assert (await store.get_account("b")).balance == Decimal("100")

    async def test_adjust(self, store, accounts, audit):
        await BalanceMutator(store, audit).adjust("a", Decimal("-300"), "opening:a")
        assert (await store.get_account("a")).balance == Decimal("500")
        assert _events(audit) == [AuditEventType.BALANCE_APPLIED]


class TestExpectedBalances:
    """Tests for the drift diagnostic."""

    def test_replays_history(self):
        loan = Loan(
            id="l", user_id="u", kind=LoanKind.GIVEN, contact_id="c",
            account_id="a", amount=Decimal("500"),
        )
        transactions = [
            _transaction(TransactionKind.EXPENSE, "200", account_id="a"),
            _transaction(TransactionKind.TRANSFER, "300", from_account_id="a", to_account_id="b"),
            _transaction(TransactionKind.REPAYMENT, "100", account_id="a", loan_id="l"),
            _transaction(TransactionKind.REPAYMENT, "999", account_id="a", loan_id="gone"),
        ]
        balances = expected_balances({"a": Decimal("1000")}, transactions, [loan])

        assert balances == {"a": Decimal("100"), "b": Decimal("300")}
