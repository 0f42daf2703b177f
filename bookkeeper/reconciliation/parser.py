"""
Row Parser / Classifier

Reads rows back from the sheet and decides, per row, whether it is a
new entry, an edit of an existing one, or unusable.

DESIGN DECISION: Parsing is forgiving and classification is strict.
- Amount is read from the last non-empty cell, so a stray cell between
  Description and Amount doesn't break the row (extra middle cells are
  folded into the description).
- Amounts accept grouping commas and currency symbols; the sign is
  dropped (the ledger keeps unsigned amounts, direction comes from Type).
- Known IDs only ever produce partial updates of drifted fields.
- A bad row is recorded in `skipped` and never aborts the batch.

The classifier never writes. The sync orchestrator commits its output
through the ledger service.
"""

import datetime
import re
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Union

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
from bookkeeper.models.sync import (
    ClassificationResult,
    EntityUpdate,
    LoanDraft,
    SheetRow,
    SkippedRow,
    TransactionDraft,
)


MIN_ROW_CELLS = 7

INCOME_KEYWORDS = ("income", "salary", "revenue")
EXPENSE_KEYWORDS = ("expense", "spend", "spent", "payment", "purchase")

DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y")

_CURRENCY_CHARS = re.compile(r"[\s,₹$€£]")
_CLIENT_SUFFIX = re.compile(r"^(.*?)\s*\(([^()]+)\)$")
_TRANSFER_SPLIT = re.compile(r"\s*(?:→|->)\s*")

EntryKind = Union[TransactionKind, LoanKind]


def normalize_name(name: str) -> str:
    return name.strip().lower()


def index_by_name(
    entities: Iterable[Union[BankAccount, Contact]],
) -> dict[str, Union[BankAccount, Contact]]:
    """Map lower-cased, stripped names to entities (first one wins)."""
    index: dict = {}
    for entity in entities:
        index.setdefault(normalize_name(entity.name), entity)
    return index


def infer_kind(type_label: str) -> Optional[EntryKind]:
    """
    Infer the entry kind from free-form Type text.

    "Loan Given" and "Debtor" are loans we gave; any other loan wording
    (and "Creditor") is a loan we took.
    """
    text = type_label.strip().lower()
    if not text:
        return None
    if "repay" in text:
        return TransactionKind.REPAYMENT
    if "transfer" in text:
        return TransactionKind.TRANSFER
    if "loan" in text:
        return LoanKind.GIVEN if "given" in text else LoanKind.TAKEN
    if "debtor" in text:
        return LoanKind.GIVEN
    if "creditor" in text:
        return LoanKind.TAKEN
    if any(word in text for word in INCOME_KEYWORDS):
        return TransactionKind.INCOME
    if any(word in text for word in EXPENSE_KEYWORDS):
        return TransactionKind.EXPENSE
    return None


def parse_amount(text: str) -> Decimal:
    """
    Parse a signed amount cell.

    Accepts "1,250.50", "₹150", "-150" and accounting negatives "(150)".

    Raises:
        ValueError: If the text is not a finite number
    """
    cleaned = _CURRENCY_CHARS.sub("", text)
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    if negative:
        cleaned = cleaned[1:-1]
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"not a number: {text!r}")
    if not value.is_finite():
        raise ValueError(f"not a number: {text!r}")
    return -value if negative else value


def parse_date(text: str) -> Optional[datetime.date]:
    """
    Parse a Date cell; empty means "not given".

    ISO dates may carry a time part, which is ignored.

    Raises:
        ValueError: If the text matches no supported format
    """
    text = text.strip()
    if not text:
        return None
    candidates = [text[:10], text] if len(text) > 10 else [text]
    for candidate in candidates:
        for fmt in DATE_FORMATS:
            try:
                return datetime.datetime.strptime(candidate, fmt).date()
            except ValueError:
                continue
    raise ValueError(f"unrecognized date: {text!r}")


def split_client_suffix(label: str) -> tuple[str, Optional[str]]:
    """Split "Freelance (Acme)" into ("Freelance", "Acme")."""
    match = _CLIENT_SUFFIX.match(label.strip())
    if not match:
        return label.strip(), None
    return match.group(1).strip(), match.group(2).strip()


def parse_row(cells: list, row_number: int) -> SheetRow:
    """
    Turn raw cells into a SheetRow.

    Raises:
        MalformedRowError: If the row can't be interpreted
    """
    values = ["" if cell is None else str(cell).strip() for cell in cells]
    while values and not values[-1]:
        values.pop()

    if len(values) < MIN_ROW_CELLS:
        raise MalformedRowError(row_number, f"expected {MIN_ROW_CELLS} cells, got {len(values)}")
    if not values[2]:
        raise MalformedRowError(row_number, "empty Type")

    try:
        amount = parse_amount(values[-1])
    except ValueError as e:
        raise MalformedRowError(row_number, str(e))
    if amount == 0:
        raise MalformedRowError(row_number, "amount is zero")

    try:
        date = parse_date(values[1])
    except ValueError as e:
        raise MalformedRowError(row_number, str(e))

    return SheetRow(
        row_number=row_number,
        entry_id=values[0],
        date=date,
        type_label=values[2],
        account_label=values[3],
        category_label=values[4],
        description=" ".join(cell for cell in values[5:-1] if cell),
        amount=amount,
    )


class RowClassifier:
    """
    Classifies sheet rows against the current ledger.

    Usage:
        result = RowClassifier().classify(
            rows, transactions, loans,
            index_by_name(accounts), index_by_name(contacts),
        )
    """

    def classify(
        self,
        rows: list[list],
        existing_transactions: Iterable[Transaction],
        existing_loans: Iterable[Loan],
        accounts_by_name: dict[str, BankAccount],
        contacts_by_name: dict[str, Contact],
    ) -> ClassificationResult:
        """
        Classify every row after the header.

        Args:
            rows: All sheet rows, header first
            existing_transactions: Transactions currently in the ledger
            existing_loans: Loans currently in the ledger
            accounts_by_name: Accounts keyed by normalized name
            contacts_by_name: Contacts keyed by normalized name

        Returns:
            New drafts, drifted-field updates, and skipped rows
        """
        transactions_by_id = {t.id: t for t in existing_transactions}
        existing_loans = list(existing_loans)
        loans_by_id = {loan.id: loan for loan in existing_loans}
        contact_names = {c.id: c.name for c in contacts_by_name.values()}

        result = ClassificationResult()
        seen_ids: set[str] = set()

        for row_number, cells in enumerate(rows[1:], start=2):
            if not any(str(cell).strip() for cell in cells if cell is not None):
                continue
            try:
                row = parse_row(cells, row_number)
            except MalformedRowError as e:
                result.skipped.append(SkippedRow(row_number=row_number, reason=e.reason))
                continue

            if row.entry_id:
                if row.entry_id in seen_ids:
                    result.skipped.append(SkippedRow(
                        row_number=row_number,
                        reason=f"duplicate transaction_id {row.entry_id}",
                    ))
                    continue
                seen_ids.add(row.entry_id)

            kind = infer_kind(row.type_label)
            if kind is None:
                result.skipped.append(SkippedRow(
                    row_number=row_number,
                    reason=f"unrecognized Type {row.type_label!r}",
                ))
                continue

            if row.entry_id in transactions_by_id:
                self._diff_transaction(
                    row, transactions_by_id[row.entry_id], contact_names, result
                )
            elif row.entry_id in loans_by_id:
                self._diff_loan(row, loans_by_id[row.entry_id], result)
            else:
                self._classify_new(
                    row, kind, existing_loans, accounts_by_name, contacts_by_name, result
                )

        return result

    # -------------------------------------------------------------------------
    # Known entries: drift detection
    # -------------------------------------------------------------------------

    def _diff_transaction(
        self,
        row: SheetRow,
        transaction: Transaction,
        contact_names: dict[str, str],
        result: ClassificationResult,
    ) -> None:
        changes: dict = {}
        amount = abs(row.amount)
        if amount != transaction.amount:
            changes["amount"] = amount
        if row.description != transaction.description:
            changes["description"] = row.description

        if transaction.kind in (TransactionKind.INCOME, TransactionKind.EXPENSE):
            category = row.category_label
            base, suffix = split_client_suffix(category)
            client = contact_names.get(transaction.client_id or "")
            if client and suffix and normalize_name(suffix) == normalize_name(client):
                category = base
            if category != transaction.category:
                changes["category"] = category

        self._record_diff(row, transaction.id, changes, result.updated_transactions, result)

    def _diff_loan(self, row: SheetRow, loan: Loan, result: ClassificationResult) -> None:
        changes: dict = {}
        amount = abs(row.amount)
        if amount != loan.amount:
            changes["amount"] = amount
        if row.description != loan.description:
            changes["description"] = row.description
        self._record_diff(row, loan.id, changes, result.updated_loans, result)

    @staticmethod
    def _record_diff(
        row: SheetRow,
        entity_id: str,
        changes: dict,
        updates: list[EntityUpdate],
        result: ClassificationResult,
    ) -> None:
        if changes:
            updates.append(EntityUpdate(
                row_number=row.row_number, entity_id=entity_id, changes=changes
            ))
        else:
            result.unchanged_ids.append(entity_id)

    # -------------------------------------------------------------------------
    # New entries
    # -------------------------------------------------------------------------

    def _classify_new(
        self,
        row: SheetRow,
        kind: EntryKind,
        existing_loans: list[Loan],
        accounts_by_name: dict[str, BankAccount],
        contacts_by_name: dict[str, Contact],
        result: ClassificationResult,
    ) -> None:
        amount = abs(row.amount)

        if isinstance(kind, LoanKind):
            contact_label = row.category_label
            if not contact_label:
                result.skipped.append(SkippedRow(
                    row_number=row.row_number, reason="loan row names no contact"
                ))
                return
            account = self._lookup(accounts_by_name, row.account_label)
            contact = self._lookup(contacts_by_name, contact_label)
            result.new_loans.append(LoanDraft(
                row_number=row.row_number,
                kind=kind,
                amount=amount,
                description=row.description,
                date=row.date,
                account_id=account.id if account else None,
                account_name=row.account_label or None,
                contact_id=contact.id if contact else None,
                contact_name=contact.name if contact else contact_label,
            ))
            return

        if kind == TransactionKind.TRANSFER:
            parts = _TRANSFER_SPLIT.split(row.account_label, maxsplit=1)
            from_name = parts[0].strip()
            to_name = parts[1].strip() if len(parts) > 1 else ""
            from_account = self._lookup(accounts_by_name, from_name)
            to_account = self._lookup(accounts_by_name, to_name)
            result.new_transactions.append(TransactionDraft(
                row_number=row.row_number,
                kind=kind,
                amount=amount,
                description=row.description,
                date=row.date,
                from_account_id=from_account.id if from_account else None,
                to_account_id=to_account.id if to_account else None,
                from_account_name=from_name or None,
                to_account_name=to_name or None,
            ))
            return

        account = self._lookup(accounts_by_name, row.account_label)

        if kind == TransactionKind.REPAYMENT:
            contact = self._lookup(contacts_by_name, row.category_label)
            loan = self._active_loan(existing_loans, contact.id) if contact else None
            if loan is None:
                result.skipped.append(SkippedRow(
                    row_number=row.row_number,
                    reason=f"no active loan for contact {row.category_label!r}",
                ))
                return
            result.new_transactions.append(TransactionDraft(
                row_number=row.row_number,
                kind=kind,
                amount=amount,
                description=row.description,
                date=row.date,
                account_id=account.id if account else None,
                account_name=row.account_label or None,
                loan_id=loan.id,
            ))
            return

        category = row.category_label
        client = None
        base, suffix = split_client_suffix(category)
        if suffix:
            client = self._lookup(contacts_by_name, suffix)
            if client is not None:
                category = base

        result.new_transactions.append(TransactionDraft(
            row_number=row.row_number,
            kind=kind,
            amount=amount,
            category=category,
            description=row.description,
            date=row.date,
            account_id=account.id if account else None,
            account_name=row.account_label or None,
            client_id=client.id if client else None,
            client_name=client.name if client else None,
        ))

    @staticmethod
    def _lookup(index: dict, name: str):
        if not name:
            return None
        return index.get(normalize_name(name))

    @staticmethod
    def _active_loan(loans: list[Loan], contact_id: str) -> Optional[Loan]:
        active = [
            loan for loan in loans
            if loan.contact_id == contact_id and loan.status == LoanStatus.ACTIVE
        ]
        if not active:
            return None
        return max(active, key=lambda loan: (loan.date, loan.id))
