"""AI Agents package."""

from bookkeeper.agents.extraction_agent import (
    ExtractionFailedError,
    TransactionExtractionAgent,
    parse_extraction_response,
)

__all__ = [
    "ExtractionFailedError",
    "TransactionExtractionAgent",
    "parse_extraction_response",
]
