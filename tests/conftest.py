"""
Shared fixtures for Bookkeeper tests.

Everything runs against the in-memory store; no real API calls.
"""

import datetime
from decimal import Decimal

import pytest

from bookkeeper.ledger import LedgerService
from bookkeeper.services.storage import InMemoryEntityStore


TODAY = datetime.date(2024, 1, 10)


@pytest.fixture
def store():
    return InMemoryEntityStore()


@pytest.fixture
def ledger(store):
    return LedgerService(store, user_id="user-1", today=lambda: TODAY)


@pytest.fixture
async def savings(ledger):
    """Primary account "Savings" with 1000."""
    return await ledger.add_bank_account("Savings", Decimal("1000"))


@pytest.fixture
async def checking(ledger, savings):
    """Second account "Checking" with 0."""
    return await ledger.add_bank_account("Checking")


@pytest.fixture
async def raj(ledger):
    return await ledger.add_contact("Raj")
