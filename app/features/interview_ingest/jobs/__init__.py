"""
Worker jobs for the interview ingest feature.
"""

from .poll_job import InterviewPollJob, start_interview_poll_scheduler
from .reconciliation_job import ReconciliationJob, start_interview_reconcile_scheduler

__all__ = [
    "InterviewPollJob",
    "ReconciliationJob",
    "start_interview_poll_scheduler",
    "start_interview_reconcile_scheduler",
]
