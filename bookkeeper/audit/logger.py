"""
Audit Logger

Typed AuditEvents rendered through structlog. The structured log is the
only sink: nothing is persisted, and the ledger keeps no edit history.

Logging never raises into the caller.
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from bookkeeper.config import get_settings
from bookkeeper.models.audit import AuditEvent, AuditSeverity


def configure_logging(json_output: Optional[bool] = None) -> None:
    """Configure structlog processors (JSON by default, console in development)."""
    if json_output is None:
        json_output = get_settings().app.log_json

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(json_output=True)


class AuditLogger:
    """
    Maps event severity onto structlog levels. One instance is shared
    by the ledger service, balance mutator, and sync orchestrator of a
    session so their events share a logger name.
    """

    def __init__(self, name: str = "bookkeeper.audit"):
        self._logger = structlog.get_logger(name)

    def log(self, event: AuditEvent) -> None:
        """Log an audit event."""
        log_dict = event.to_log_dict()
        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Logging must never break a ledger write
            self._logger.error(
                "audit_log_failed",
                error=str(e),
                event_id=str(event.event_id),
                event_type=event.event_type.value,
            )


def create_correlation_id() -> UUID:
    """
    One ID per sync attempt; every event of the attempt carries it.
    """
    return uuid4()
