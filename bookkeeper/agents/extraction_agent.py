"""
Extraction Agent

Turns one chat message into a structured ledger candidate.

CRITICAL BOUNDARIES:
- CAN: Propose a LedgerCandidate (kind, amount, category, names)
- CAN: Ask the user to clarify when the message is ambiguous
- CANNOT: Write to the ledger (LedgerService.record_candidate does that)
- CANNOT: Invent an amount that wasn't in the message

The LLM is a TRANSLATOR, not a bookkeeper. Everything it returns is
validated by the LedgerCandidate model before the ledger sees it.

The Gemini call is retried 3 times with linear backoff (1s, 2s, 3s).
After that the failure surfaces as ExtractionFailedError.
"""

import json
from typing import Any, Optional

import google.generativeai as genai
from pydantic import ValidationError
from tenacity import AsyncRetrying, stop_after_attempt, wait_incrementing
from tenacity.wait import wait_base

from bookkeeper.audit.logger import AuditLogger
from bookkeeper.config import get_settings
from bookkeeper.models.audit import AuditEventBuilder
from bookkeeper.models.candidate import (
    ClarificationRequest,
    ExtractionOutcome,
    LedgerCandidate,
)


# One call plus three retries
MAX_ATTEMPTS = 4

DEFAULT_CLARIFICATION = (
    "I couldn't tell what to record. Please say whether it's income, an "
    "expense, or a loan, and include the amount."
)

# Response keys the model sometimes uses instead of ours
RESPONSE_KEY_ALIASES = {
    "transactionType": "kind",
    "transaction_type": "kind",
    "type": "kind",
    "accountName": "account_name",
    "contactName": "contact_name",
    "clientName": "client_name",
}


class ExtractionFailedError(Exception):
    """The language model could not be reached after all retries."""
    pass


def parse_extraction_response(text: str) -> ExtractionOutcome:
    """
    Interpret the model's reply.

    The reply should hold one JSON object: either candidate fields or
    {"clarification": "..."}. Anything unusable becomes a clarification
    request rather than an error.
    """
    text = (text or "").strip()
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        return ClarificationRequest(message=text or DEFAULT_CLARIFICATION)

    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError:
        return ClarificationRequest(message=DEFAULT_CLARIFICATION)
    if not isinstance(data, dict):
        return ClarificationRequest(message=DEFAULT_CLARIFICATION)

    if data.get("clarification"):
        return ClarificationRequest(message=str(data["clarification"]))

    fields: dict[str, Any] = {}
    for key, value in data.items():
        if value is None or value == "":
            continue
        fields[RESPONSE_KEY_ALIASES.get(key, key)] = value

    try:
        candidate = LedgerCandidate.model_validate(fields)
    except ValidationError:
        return ClarificationRequest(message=DEFAULT_CLARIFICATION)

    # Older replies put the person's name in `category` for loans
    if candidate.is_loan and not candidate.contact_name and candidate.category:
        candidate = candidate.model_copy(
            update={"contact_name": candidate.category, "category": None}
        )
    if candidate.is_loan and not candidate.contact_name:
        return ClarificationRequest(message="Who is the loan with?")
    return candidate


class TransactionExtractionAgent:
    """
    Gemini-backed extraction of ledger candidates from chat.

    The model and the retry wait are injectable so tests run without
    network access or sleeping.
    """

    def __init__(
        self,
        model: Optional[Any] = None,
        wait: Optional[wait_base] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._model = model if model is not None else self._configure_genai()
        self._wait = wait if wait is not None else wait_incrementing(start=1, increment=1)
        self._audit = audit_logger or AuditLogger()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        settings = get_settings().gemini
        genai.configure(api_key=settings.api_key)
        return genai.GenerativeModel(
            model_name=settings.model_name,
            generation_config={
                "temperature": settings.temperature,
                "max_output_tokens": settings.max_tokens,
            }
        )

    def build_prompt(self, chat_input: str, chat_history: Optional[str] = None) -> str:
        return f"""You are a bookkeeping assistant. Extract ONE ledger entry from the user's message.

Entry kinds:
- income: money the user received
- expense: money the user spent
- loanGiven: the user lent money to someone ("I gave Raj a loan")
- loanTaken: the user borrowed money ("Raj gave me a loan")

Rules:
- Extract the amount exactly as stated. Never guess an amount.
- For loans, put the person's name in "contact_name".
- For income/expense, "category" is a short general category. If a client or
  customer is named, put it in "client_name".
- If the user names a bank account ("from savings", "to federal"), put only the
  account name in "account_name". If they don't, use the most recently mentioned
  account in the chat history, if any.
- If the message is not a ledger entry or the amount is missing, reply with
  {{"clarification": "<question for the user>"}} instead.

User message: {chat_input}

Chat history:
{chat_history or "(none)"}

Respond with ONLY a JSON object in this format:
{{"kind": "expense", "amount": 150, "category": "Food", "description": "Lunch", "account_name": null, "contact_name": null, "client_name": null}}"""

    async def extract(
        self,
        chat_input: str,
        chat_history: Optional[str] = None,
    ) -> ExtractionOutcome:
        """
        Extract a ledger candidate (or a clarification request).

        Raises:
            ExtractionFailedError: If every attempt to reach the model failed
        """
        prompt = self.build_prompt(chat_input, chat_history)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(MAX_ATTEMPTS),
                wait=self._wait,
                reraise=True,
            ):
                with attempt:
                    response = await self._model.generate_content_async(prompt)
                    text = response.text
        except Exception as e:
            self._audit.log(AuditEventBuilder.external_service_error("gemini", str(e)))
            raise ExtractionFailedError(f"Extraction failed after {MAX_ATTEMPTS} attempts: {e}") from e

        return parse_extraction_response(text)
