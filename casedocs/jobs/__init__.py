"""
Job Queue Package
=================

Background retries for audit history with Redis Queue (RQ).
"""

from .queue import enqueue_job, enqueue_history_retry, get_job_status
from .tasks import task_append_history

__all__ = [
    # Queue management
    "enqueue_job", "enqueue_history_retry", "get_job_status",
    # Tasks
    "task_append_history",
]
