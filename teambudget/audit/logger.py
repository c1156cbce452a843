"""
Audit Logger

DESIGN DECISION: Every mutation and every storage fallback is logged.
This provides:
1. Traceability of admin changes
2. Visibility into silent failovers to the local store
3. Debugging capability

The audit logger never raises; a logging problem must not break a write.
"""

import logging
import sys
from typing import Any, Optional

import structlog

from teambudget.config import get_settings
from teambudget.models.audit import AuditEvent, AuditEventBuilder, AuditEventType


def configure_logging(level: Optional[str] = None) -> None:
    """Configure stdlib logging and structlog for JSON output."""
    level = (level or get_settings().app.log_level).upper()
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
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
            structlog.processors.JSONRenderer(ensure_ascii=False)
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Writes typed audit events to the structured local log.
    """

    def __init__(self, name: str = "teambudget.audit"):
        self._logger = structlog.get_logger(name)

    def log(self, event: AuditEvent) -> None:
        """Log an audit event at the level matching its severity."""
        log_dict = event.to_log_dict()

        if event.severity.value == "error":
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

    def log_fallback(
        self,
        operation: str,
        primary: str,
        secondary: str,
        error: Exception,
    ) -> None:
        self.log(AuditEventBuilder.backend_fallback(
            operation=operation,
            primary=primary,
            secondary=secondary,
            error_message=str(error),
        ))

    def log_failure(self, operation: str, error: Exception) -> None:
        self.log(AuditEventBuilder.backend_failure(
            operation=operation,
            error_message=str(error),
        ))

    def log_change(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        **details: Any,
    ) -> None:
        self.log(AuditEventBuilder.entity_changed(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        ))
