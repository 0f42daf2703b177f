"""
Ledger Package

Balance effects, repayment arithmetic, and the ledger service that
sequences every write.
"""

from bookkeeper.ledger.balances import BalanceMutator, balance_effects, expected_balances
from bookkeeper.ledger.errors import (
    AccountInUseError,
    ContactInUseError,
    LedgerError,
    LoanHasRepaymentsError,
    MalformedRowError,
    OutstandingExceededError,
    UnresolvedAccountError,
    UnresolvedContactError,
    UnresolvedLoanError,
)
from bookkeeper.ledger.repayments import RepaymentTracker
from bookkeeper.ledger.service import LedgerService, PendingWrite, WriteStatus

__all__ = [
    "BalanceMutator",
    "balance_effects",
    "expected_balances",
    "AccountInUseError",
    "ContactInUseError",
    "LedgerError",
    "LoanHasRepaymentsError",
    "MalformedRowError",
    "OutstandingExceededError",
    "UnresolvedAccountError",
    "UnresolvedContactError",
    "UnresolvedLoanError",
    "RepaymentTracker",
    "LedgerService",
    "PendingWrite",
    "WriteStatus",
]
