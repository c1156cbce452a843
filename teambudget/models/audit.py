"""
Audit Models for Team Budget Tracker

Every mutation and every backend fallback is logged as a typed event.
This provides:
1. Traceability of admin changes
2. Visibility into when the remote store was unavailable
3. Debugging information when the stores diverge

Events go to the structured local log only; there is no persisted trail.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Storage health
    BACKEND_FALLBACK = "backend_fallback"
    BACKEND_FAILURE = "backend_failure"

    # Teams
    TEAM_CREATED = "team_created"
    TEAM_UPDATED = "team_updated"
    TEAM_DELETED = "team_deleted"
    TEAMS_SEEDED = "teams_seeded"

    # Members
    MEMBER_CREATED = "member_created"
    MEMBER_UPDATED = "member_updated"
    MEMBER_DELETED = "member_deleted"

    # Expenditures
    EXPENDITURE_CREATED = "expenditure_created"
    EXPENDITURE_UPDATED = "expenditure_updated"
    EXPENDITURE_DELETED = "expenditure_deleted"
    HISTORICAL_NAMES_BACKFILLED = "historical_names_backfilled"

    # Ingestion endpoint
    EXPENSE_INGESTED = "expense_ingested"
    INGEST_MEMBER_NOT_FOUND = "ingest_member_not_found"
    INGEST_REJECTED = "ingest_rejected"

    # Admin console
    ADMIN_LOGIN_FAILED = "admin_login_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="team, member, expenditure or storage"
    )
    entity_id: Optional[str] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.backend_fallback("get_teams", "sql", "local", error)
        event = AuditEventBuilder.entity_changed(AuditEventType.TEAM_CREATED, "team", team.id)
    """

    @staticmethod
    def backend_fallback(
        operation: str,
        primary: str,
        secondary: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKEND_FALLBACK,
            severity=AuditSeverity.WARNING,
            entity_type="storage",
            description=f"{primary} failed on {operation}, using {secondary}",
            details={
                "operation": operation,
                "primary": primary,
                "secondary": secondary,
            },
            error_message=error_message,
        )

    @staticmethod
    def backend_failure(operation: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKEND_FAILURE,
            severity=AuditSeverity.ERROR,
            entity_type="storage",
            description=f"No storage backend could complete {operation}",
            details={"operation": operation},
            error_message=error_message,
        )

    @staticmethod
    def entity_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        action = event_type.value.rsplit("_", 1)[-1]
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{entity_type.capitalize()} {entity_id} {action}",
            details=details or {},
        )

    @staticmethod
    def teams_seeded(count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEAMS_SEEDED,
            entity_type="team",
            description=f"Seeded {count} default teams into an empty store",
            details={"count": count},
        )

    @staticmethod
    def historical_names_backfilled(count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.HISTORICAL_NAMES_BACKFILLED,
            entity_type="expenditure",
            description=f"Backfilled historical names on {count} expenditures",
            details={"count": count},
        )

    @staticmethod
    def expense_ingested(expenditure_id: str, tag: str, member_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_INGESTED,
            entity_type="expenditure",
            entity_id=expenditure_id,
            description=f"Expense ingested for tag '{tag}'",
            details={"tag": tag, "member_id": member_id},
        )

    @staticmethod
    def ingest_member_not_found(tag: str, team_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INGEST_MEMBER_NOT_FOUND,
            severity=AuditSeverity.WARNING,
            entity_type="member",
            description=f"Member with tag '{tag}' not found, recording unassigned expense",
            details={"tag": tag, "team_id": team_id},
        )

    @staticmethod
    def ingest_rejected(status_code: int, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INGEST_REJECTED,
            severity=AuditSeverity.WARNING if status_code < 500 else AuditSeverity.ERROR,
            description=f"Ingestion request rejected ({status_code})",
            details={"status_code": status_code},
            error_message=reason,
        )

    @staticmethod
    def admin_login_failed(username: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ADMIN_LOGIN_FAILED,
            severity=AuditSeverity.WARNING,
            description="Admin console login rejected",
            details={"username": username},
        )
