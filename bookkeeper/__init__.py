"""
Bookkeeper - Source Package

Ledger core for a personal / small-business bookkeeping assistant:
income, expenses, transfers between accounts, and peer loans with
repayments, mirrored to a Google Sheet for manual editing.

DESIGN PRINCIPLES:
1. Amounts are stored unsigned; direction comes from the entry kind
2. Balances move only through the balance mutator
3. The sheet is a projection of the ledger, rebuilt on every sync
4. One bad sheet row never blocks the rest of a sync
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Bookkeeper Team"
