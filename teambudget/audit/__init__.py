"""Audit logging package."""

from teambudget.audit.logger import AuditLogger, configure_logging

__all__ = ["AuditLogger", "configure_logging"]
