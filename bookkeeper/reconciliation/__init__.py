"""
Reconciliation Package

Projects the ledger onto the canonical sheet table and reads sheet
edits back as drafts and updates.
"""

from bookkeeper.reconciliation.parser import (
    RowClassifier,
    index_by_name,
    infer_kind,
    parse_amount,
    parse_date,
    parse_row,
    split_client_suffix,
)
from bookkeeper.reconciliation.structurer import TYPE_LABELS, RowStructurer, format_amount

__all__ = [
    "RowClassifier",
    "index_by_name",
    "infer_kind",
    "parse_amount",
    "parse_date",
    "parse_row",
    "split_client_suffix",
    "TYPE_LABELS",
    "RowStructurer",
    "format_amount",
]
