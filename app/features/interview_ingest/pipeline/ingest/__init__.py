"""
Idempotent candidate upsert for extracted conversations.
"""

from .service import IngestService, synthetic_email_for

__all__ = ["IngestService", "synthetic_email_for"]
