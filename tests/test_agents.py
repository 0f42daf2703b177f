"""
Tests for the extraction agent.

The Gemini model is replaced by FakeModel; retries don't sleep.
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from tenacity import wait_none

from bookkeeper.agents import (
    ExtractionFailedError,
    TransactionExtractionAgent,
    parse_extraction_response,
)
from bookkeeper.agents.extraction_agent import DEFAULT_CLARIFICATION, MAX_ATTEMPTS
from bookkeeper.models.audit import AuditEventType
from bookkeeper.models.candidate import ClarificationRequest, LedgerCandidate


class FakeModel:
    """Returns `reply` after failing `failures` times."""

    def __init__(self, reply: str = "", failures: int = 0):
        self.reply = reply
        self.failures = failures
        self.prompts: list[str] = []

    async def generate_content_async(self, prompt):
        self.prompts.append(prompt)
        if len(self.prompts) <= self.failures:
            raise RuntimeError("503 model overloaded")
        return SimpleNamespace(text=self.reply)


def _agent(model, audit=None):
    return TransactionExtractionAgent(model=model, wait=wait_none(), audit_logger=audit or MagicMock())


class TestParseExtractionResponse:
    """Tests for interpreting model replies."""

    def test_plain_candidate(self):
        outcome = parse_extraction_response(
            '{"kind": "expense", "amount": 150, "category": "Food", "description": "Lunch"}'
        )
        assert isinstance(outcome, LedgerCandidate)
        assert outcome.kind == "expense"
        assert outcome.amount == Decimal("150")

    def test_json_inside_code_fence(self):
        outcome = parse_extraction_response(
            '```json\n{"kind": "income", "amount": "900", "client_name": "Acme"}\n```'
        )
        assert outcome.client_name == "Acme"

    def test_aliased_keys_and_nulls(self):
        """Test that camelCase keys and null fields are tolerated."""
        outcome = parse_extraction_response(
            '{"transactionType": "expense", "amount": 40, "accountName": "Federal", "contact_name": null}'
        )
        assert outcome.kind == "expense"
        assert outcome.account_name == "Federal"

    def test_loan_contact_moved_out_of_category(self):
        outcome = parse_extraction_response('{"kind": "creditor", "amount": 300, "category": "Meera"}')
        assert outcome.kind == "loanTaken"
        assert outcome.contact_name == "Meera"
        assert outcome.category is None

    def test_loan_without_contact_asks(self):
        outcome = parse_extraction_response('{"kind": "loanGiven", "amount": 300}')
        assert outcome == ClarificationRequest(message="Who is the loan with?")

    def test_explicit_clarification(self):
        outcome = parse_extraction_response('{"clarification": "How much was it?"}')
        assert outcome.message == "How much was it?"

    @pytest.mark.parametrize("reply", [
        '{"kind": "expense"}',
        '{"kind": "gift", "amount": 5}',
        '{"kind": "expense", "amount": -5}',
        '{not json}',
    ])
    def test_unusable_replies_ask_for_clarification(self, reply):
        outcome = parse_extraction_response(reply)
        assert outcome == ClarificationRequest(message=DEFAULT_CLARIFICATION)

    def test_prose_reply_passed_through(self):
        outcome = parse_extraction_response("Which account did you pay from?")
        assert outcome.message == "Which account did you pay from?"

    def test_empty_reply(self):
        assert parse_extraction_response("").message == DEFAULT_CLARIFICATION


class TestTransactionExtractionAgent:
    """Tests for the model call and its retries."""

    async def test_extract(self):
        model = FakeModel('{"kind": "expense", "amount": 150, "category": "Food"}')
        outcome = await _agent(model).extract("spent 150 on food", chat_history="paid from savings")

        assert outcome.amount == Decimal("150")
        assert "spent 150 on food" in model.prompts[0]
        assert "paid from savings" in model.prompts[0]

    async def test_transient_failures_retried(self):
        model = FakeModel('{"kind": "income", "amount": 10}', failures=MAX_ATTEMPTS - 1)
        outcome = await _agent(model).extract("got 10")

        assert outcome.kind == "income"
        assert len(model.prompts) == MAX_ATTEMPTS

    async def test_gives_up_after_max_attempts(self):
        """Test that a persistently failing model surfaces one error."""
        model = FakeModel(failures=MAX_ATTEMPTS)
        audit = MagicMock()

        with pytest.raises(ExtractionFailedError):
            await _agent(model, audit).extract("got 10")

        assert len(model.prompts) == MAX_ATTEMPTS
        event = audit.log.call_args.args[0]
        assert event.event_type == AuditEventType.EXTERNAL_SERVICE_ERROR

    def test_prompt_without_history(self):
        prompt = _agent(FakeModel()).build_prompt("lent Raj 500")
        assert "(none)" in prompt
        assert "loanGiven" in prompt
