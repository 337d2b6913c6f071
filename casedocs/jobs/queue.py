"""
Job Queue Management
====================

Redis Queue (RQ) integration for deferred audit writes.

When Redis cannot be reached the job runs synchronously in the caller's
thread instead, so a deferred history entry is still attempted once.
"""

import logging
from typing import Optional, Dict, Any, Callable
from datetime import datetime

from redis import Redis
from rq import Queue, Retry
from rq.job import Job

from ..config import get_settings

logger = logging.getLogger(__name__)

# Queue names
QUEUE_DEFAULT = "default"
QUEUE_LOW = "low"

RETRY_INTERVALS = [10, 30, 60]


def get_redis_connection() -> Redis:
    """Get Redis connection"""
    return Redis.from_url(get_settings().redis_url)


def get_queue(queue_name: str = QUEUE_DEFAULT) -> Queue:
    """Get RQ queue by name"""
    return Queue(queue_name, connection=get_redis_connection())


def enqueue_job(
    func: Callable,
    *args,
    queue_name: str = QUEUE_DEFAULT,
    job_id: str = None,
    timeout: int = 600,
    retry: int = 3,
    meta: Dict[str, Any] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Enqueue a job for background processing.

    Args:
        func: Function to execute
        *args: Positional arguments for function
        queue_name: Queue to use (default/high/low)
        job_id: Optional custom job ID
        timeout: Job timeout in seconds
        retry: Number of retries on failure
        meta: Custom metadata for job
        **kwargs: Keyword arguments for function

    Returns:
        Dict with job_id and status
    """
    def _run_sync(reason: str) -> Dict[str, Any]:
        logger.warning(f"Running job synchronously ({reason})")
        try:
            result = func(*args, **kwargs)
            return {
                "job_id": job_id or "sync",
                "status": "done",
                "result": result
            }
        except Exception as e:
            logger.error(f"Synchronous job {job_id or func.__name__} failed: {e}")
            return {
                "job_id": job_id or "sync",
                "status": "failed",
                "error": str(e)
            }

    retry_policy = Retry(max=retry, interval=RETRY_INTERVALS[:retry]) if retry > 0 else None

    # Enqueue job (fallback to sync if Redis is unreachable)
    try:
        queue = get_queue(queue_name)
        job = queue.enqueue(
            func,
            *args,
            job_id=job_id,
            job_timeout=timeout,
            retry=retry_policy,
            meta=meta or {},
            **kwargs
        )
    except Exception as e:
        return _run_sync(f"RQ enqueue failed: {e}")

    return {
        "job_id": job.id,
        "status": job.get_status(),
        "queue": queue_name,
        "enqueued_at": datetime.utcnow().isoformat()
    }


def enqueue_history_retry(entry: Dict[str, Any]) -> Dict[str, Any]:
    """
    Queue a history entry whose atomic write failed.

    The job id is derived from the entry uid, and the task skips entries that
    already exist, so re-enqueueing the same entry never duplicates history.
    """
    from .tasks import task_append_history

    settings = get_settings()
    return enqueue_job(
        task_append_history,
        entry,
        queue_name=settings.audit_queue_name,
        job_id=f"history-{entry['entry_uid']}",
        timeout=settings.audit_retry_timeout,
        retry=settings.audit_retry_max,
        meta={"document_id": entry.get("document_id"), "field": entry.get("field_name")},
    )


def get_job_status(job_id: str) -> Dict[str, Any]:
    """
    Get job status and result.

    Args:
        job_id: Job ID

    Returns:
        Dict with status, result, error
    """
    try:
        job = Job.fetch(job_id, connection=get_redis_connection())

        result = {
            "job_id": job_id,
            "status": job.get_status(),
            "meta": job.meta,
            "enqueued_at": job.enqueued_at.isoformat() if job.enqueued_at else None,
            "started_at": job.started_at.isoformat() if job.started_at else None,
            "ended_at": job.ended_at.isoformat() if job.ended_at else None,
        }

        if job.is_finished:
            result["result"] = job.result
        elif job.is_failed:
            result["error"] = str(job.exc_info) if job.exc_info else "Unknown error"

        return result

    except Exception as e:
        return {
            "job_id": job_id,
            "status": "not_found",
            "error": str(e)
        }
