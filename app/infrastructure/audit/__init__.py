"""
Audit logging infrastructure for conversation processing.
"""

from app.infrastructure.audit.audit_logger import AuditLogger, AuditSink

__all__ = ["AuditLogger", "AuditSink"]
