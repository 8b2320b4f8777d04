"""
Persistence for candidates, interviews, tracking records and audit entries.
"""

from .base import CandidateStore
from .postgres_store import PostgresCandidateStore

__all__ = ["CandidateStore", "PostgresCandidateStore"]
