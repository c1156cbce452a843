"""
Data Models Package

This package contains all Pydantic models used in the Team Budget Tracker.
All data flowing through the system must conform to these schemas.
"""

from teambudget.models.budget import (
    DEFAULT_TEAM_COLOR,
    TEAM_COLORS,
    Expenditure,
    ExpenditureCreate,
    ExpenditureUpdate,
    Member,
    MemberCreate,
    MemberUpdate,
    MemberWithSpending,
    MonthlyBudgetReport,
    Team,
    TeamUpdate,
    TeamWithExpenditures,
    coerce_budget,
    default_teams,
)
from teambudget.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Budget models
    "DEFAULT_TEAM_COLOR",
    "TEAM_COLORS",
    "Expenditure",
    "ExpenditureCreate",
    "ExpenditureUpdate",
    "Member",
    "MemberCreate",
    "MemberUpdate",
    "MemberWithSpending",
    "MonthlyBudgetReport",
    "Team",
    "TeamUpdate",
    "TeamWithExpenditures",
    "coerce_budget",
    "default_teams",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
