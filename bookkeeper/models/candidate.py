"""
Extraction Candidate Models

The extraction agent turns a chat message into one of these.
The ledger never interprets free text itself: it only consumes a
LedgerCandidate, or shows the ClarificationRequest to the user.
"""

from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Older chat vocabulary: a creditor lent to the user, a debtor borrowed.
KIND_ALIASES = {
    "creditor": "loanTaken",
    "debtor": "loanGiven",
    "loan_given": "loanGiven",
    "loan_taken": "loanTaken",
}

CANDIDATE_KINDS = {"income", "expense", "loanGiven", "loanTaken"}


class LedgerCandidate(BaseModel):
    """
    A structured entry proposed by the extraction agent.

    CRITICAL: This is PROPOSED data. It becomes a ledger entry only
    through LedgerService.record_candidate.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: str = Field(
        ...,
        description="income, expense, loanGiven or loanTaken"
    )
    amount: Decimal = Field(..., gt=0)
    category: Optional[str] = Field(default=None, max_length=200)
    contact_name: Optional[str] = Field(default=None, max_length=200)
    client_name: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    account_name: Optional[str] = Field(default=None, max_length=100)

    @field_validator('kind', mode='before')
    @classmethod
    def normalize_kind(cls, v: str) -> str:
        if not isinstance(v, str):
            raise ValueError("kind must be a string")
        v = v.strip()
        v = KIND_ALIASES.get(v.lower(), v)
        lowered = {kind.lower(): kind for kind in CANDIDATE_KINDS}
        if v.lower() not in lowered:
            raise ValueError(f"Unsupported entry kind: {v}")
        return lowered[v.lower()]

    @property
    def is_loan(self) -> bool:
        return self.kind in ("loanGiven", "loanTaken")


class ClarificationRequest(BaseModel):
    """The agent could not build a candidate and needs more input."""

    message: str = Field(..., min_length=1)


ExtractionOutcome = Union[LedgerCandidate, ClarificationRequest]
