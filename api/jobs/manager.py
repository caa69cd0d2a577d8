"""
Background job manager.

Strategy runs and other long tasks execute on a small thread pool. Each job
reports progress through a callback; the callback returns False once
cancellation has been requested so the task can stop at the next step.
Status changes are forwarded to WebSocket subscribers of ``job:{id}``.
"""

import asyncio
import threading
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..shared.logger import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[float, str], bool]


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobType(str, Enum):
    STRATEGY = "strategy"
    ANALYSIS = "analysis"
    EXPORT = "export"


@dataclass
class Job:
    """A unit of background work and its observable state."""

    id: str
    type: JobType
    status: JobStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    progress: float = 0.0
    progress_message: str = ""
    config: Dict[str, Any] = field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_traceback: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)
    cancellation_requested: bool = False

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "progress": self.progress,
            "progress_message": self.progress_message,
            "config": self.config,
            "result": self.result,
            "error": self.error,
            "metrics": self.metrics,
            "duration_seconds": self._duration(),
        }

    def _duration(self) -> Optional[float]:
        if not self.started_at:
            return None
        end_time = self.completed_at or datetime.now()
        return (end_time - self.started_at).total_seconds()


class JobManager:
    """
    Creates, runs, tracks and cancels background jobs.

    WebSocket notifications are scheduled on the event loop registered with
    ``bind_loop``; without one they are skipped.
    """

    def __init__(self, max_workers: int = 2):
        """Set up the worker pool.

        Args:
            max_workers: Number of jobs that may run at the same time
        """
        self._jobs: Dict[str, Job] = {}
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="job")
        self._lock = threading.Lock()
        self._callbacks: Dict[str, List[Callable[[Job], None]]] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """Register the event loop that receives WebSocket notifications.

        Args:
            loop: The server's running loop, or None to stop notifying
        """
        self._loop = loop

    def create_job(self, job_type: JobType, config: Dict[str, Any]) -> Job:
        """Register a pending job, pruning old finished jobs first.

        Args:
            job_type: Kind of work (strategy run, analysis, export)
            config: Parameters the job was started with, echoed in its status

        Returns:
            The new Job in PENDING state
        """
        self.cleanup_old_jobs()
        job = Job(
            id=f"{job_type.value}_{uuid.uuid4().hex[:8]}",
            type=job_type,
            status=JobStatus.PENDING,
            created_at=datetime.now(),
            config=config,
        )
        with self._lock:
            self._jobs[job.id] = job
        return job

    def submit_job(self, job: Job, task_fn: Callable[[Job, ProgressCallback], Any]) -> Job:
        """Queue a job on the worker pool and return immediately.

        Args:
            job: Job returned by ``create_job``
            task_fn: Called as ``task_fn(job, progress_callback)``; its return
                value becomes the job result

        Returns:
            The same Job, still PENDING until a worker picks it up
        """
        self._executor.submit(self.run_job, job, task_fn)
        return job

    def run_job(self, job: Job, task_fn: Callable[[Job, ProgressCallback], Any]) -> Job:
        """Run a job to completion in the calling thread.

        Exceptions raised by ``task_fn`` mark the job FAILED with its traceback;
        they are not re-raised. A job cancelled while pending is not started.

        Args:
            job: Job to run
            task_fn: Called as ``task_fn(job, progress_callback)``. The callback
                takes a percentage and a message and returns False once
                cancellation has been requested.

        Returns:
            The finished Job
        """
        if job.status == JobStatus.CANCELLED:
            return job

        job.status = JobStatus.RUNNING
        job.started_at = datetime.now()
        self._notify(job)

        def progress_callback(progress: float, message: str = "") -> bool:
            job.progress = min(max(progress, 0.0), 100.0)
            job.progress_message = message
            self._notify(job)
            return not job.cancellation_requested

        try:
            result = task_fn(job, progress_callback)
            if job.cancellation_requested:
                job.status = JobStatus.CANCELLED
                job.error = "Job was cancelled"
                job.result = result if isinstance(result, dict) else None
            else:
                job.status = JobStatus.COMPLETED
                job.result = result if isinstance(result, dict) else {"result": result}
                job.progress = 100.0
        except Exception as e:
            logger.exception("Job %s failed", job.id)
            job.status = JobStatus.FAILED
            job.error = str(e)
            job.error_traceback = traceback.format_exc()
        finally:
            job.completed_at = datetime.now()
            self._notify(job)
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """Look up a job.

        Args:
            job_id: Job identifier

        Returns:
            The Job, or None if unknown or already cleaned up
        """
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(
        self,
        job_type: Optional[JobType] = None,
        status: Optional[JobStatus] = None,
        limit: int = 50,
    ) -> List[Job]:
        """List jobs, newest first.

        Args:
            job_type: Only jobs of this type
            status: Only jobs in this state
            limit: Maximum number of jobs returned

        Returns:
            Matching jobs sorted by creation time, newest first
        """
        with self._lock:
            jobs = list(self._jobs.values())
        if job_type:
            jobs = [j for j in jobs if j.type == job_type]
        if status:
            jobs = [j for j in jobs if j.status == status]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def cancel_job(self, job_id: str) -> bool:
        """Request cancellation of a job.

        A pending job is cancelled at once. A running job is flagged and stops
        at its next progress report.

        Args:
            job_id: Job identifier

        Returns:
            False if the job is unknown or already finished, True otherwise
        """
        job = self.get_job(job_id)
        if not job or job.is_finished:
            return False

        job.cancellation_requested = True
        if job.status == JobStatus.PENDING:
            job.status = JobStatus.CANCELLED
            job.completed_at = datetime.now()
            self._notify(job)
        return True

    def update_job_metrics(self, job_id: str, metrics: Dict[str, Any], append_history: bool = True) -> bool:
        """Merge live metrics into a job and notify listeners.

        Args:
            job_id: Job identifier
            metrics: Metric values to merge into ``job.metrics``
            append_history: Also record a timestamped snapshot in ``job.history``

        Returns:
            False if the job is unknown
        """
        job = self.get_job(job_id)
        if not job:
            return False
        job.metrics.update(metrics)
        if append_history:
            job.history.append({"timestamp": datetime.now().isoformat(), **metrics})
        self._notify(job)
        return True

    def register_callback(self, job_id: str, callback: Callable[[Job], None]) -> None:
        """Call ``callback(job)`` on every status, progress or metrics change.

        Args:
            job_id: Job to watch
            callback: Receives the Job; exceptions it raises are logged
        """
        with self._lock:
            self._callbacks.setdefault(job_id, []).append(callback)

    def unregister_callback(self, job_id: str, callback: Callable[[Job], None]) -> None:
        with self._lock:
            callbacks = self._callbacks.get(job_id, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def _notify(self, job: Job) -> None:
        with self._lock:
            callbacks = list(self._callbacks.get(job.id, []))
        for callback in callbacks:
            try:
                callback(job)
            except Exception as e:
                logger.error("Error in job callback: %s", e)
        self._dispatch_websocket(job)

    def _dispatch_websocket(self, job: Job) -> None:
        if self._loop is None or self._loop.is_closed():
            return

        from websocket import (
            notify_job_cancelled,
            notify_job_completed,
            notify_job_failed,
            notify_job_progress,
            notify_job_started,
        )

        if job.status == JobStatus.RUNNING and job.progress == 0:
            coro = notify_job_started(job.id, job.to_dict())
        elif job.status == JobStatus.RUNNING:
            coro = notify_job_progress(job.id, job.progress, job.progress_message, job.metrics)
        elif job.status == JobStatus.COMPLETED:
            coro = notify_job_completed(job.id, job.result or {})
        elif job.status == JobStatus.FAILED:
            coro = notify_job_failed(job.id, job.error or "Unknown error", job.error_traceback)
        elif job.status == JobStatus.CANCELLED:
            coro = notify_job_cancelled(job.id)
        else:
            return
        asyncio.run_coroutine_threadsafe(coro, self._loop)

    def dispatch(self, coro) -> None:
        """Schedule a notification coroutine on the bound loop.

        Safe to call from worker threads. Without a bound loop the coroutine
        is closed unawaited.

        Args:
            coro: Coroutine from the WebSocket notification helpers
        """
        if self._loop is None or self._loop.is_closed():
            coro.close()
            return
        asyncio.run_coroutine_threadsafe(coro, self._loop)

    def cleanup_old_jobs(self, max_age_hours: int = 24) -> int:
        """Forget finished jobs older than ``max_age_hours``.

        Args:
            max_age_hours: Age since completion after which a job is dropped

        Returns:
            Number of jobs removed
        """
        now = datetime.now()
        with self._lock:
            stale = [
                job_id for job_id, job in self._jobs.items()
                if job.is_finished and job.completed_at
                and (now - job.completed_at).total_seconds() / 3600 > max_age_hours
            ]
            for job_id in stale:
                del self._jobs[job_id]
                self._callbacks.pop(job_id, None)
        return len(stale)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


job_manager = JobManager()
