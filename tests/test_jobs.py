"""
Tests for the background job manager.
"""

import threading
from datetime import datetime, timedelta

from api.jobs import JobManager, JobStatus, JobType


class TestJobLifecycle:
    """Running, failing and cancelling jobs."""

    def test_run_job_completes(self):
        manager = JobManager()
        job = manager.create_job(JobType.STRATEGY, {"x": 1})
        assert job.id.startswith("strategy_")
        assert job.status == JobStatus.PENDING

        manager.run_job(job, lambda job, progress: {"answer": 42})
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"answer": 42}
        assert job.progress == 100.0
        assert job.to_dict()["duration_seconds"] is not None

    def test_non_dict_result_is_wrapped(self):
        manager = JobManager()
        job = manager.run_job(manager.create_job(JobType.ANALYSIS, {}), lambda job, progress: 7)
        assert job.result == {"result": 7}

    def test_failure_is_recorded(self):
        def task(job, progress):
            raise RuntimeError("bad input")

        manager = JobManager()
        job = manager.run_job(manager.create_job(JobType.EXPORT, {}), task)
        assert job.status == JobStatus.FAILED
        assert job.error == "bad input"
        assert "RuntimeError" in job.error_traceback

    def test_cancel_pending_job(self):
        manager = JobManager()
        job = manager.create_job(JobType.STRATEGY, {})
        assert manager.cancel_job(job.id)
        assert job.status == JobStatus.CANCELLED
        # A cancelled job is never started
        manager.run_job(job, lambda job, progress: {})
        assert job.started_at is None

    def test_cancel_running_job_through_progress(self):
        manager = JobManager()
        job = manager.create_job(JobType.STRATEGY, {})
        seen = []

        def task(job, progress):
            manager.cancel_job(job.id)
            seen.append(progress(50, "halfway"))
            return {"partial": True}

        manager.run_job(job, task)
        assert seen == [False]
        assert job.status == JobStatus.CANCELLED
        assert job.result == {"partial": True}

    def test_cancel_unknown_or_finished(self):
        manager = JobManager()
        assert not manager.cancel_job("missing")
        job = manager.run_job(manager.create_job(JobType.STRATEGY, {}), lambda job, progress: {})
        assert not manager.cancel_job(job.id)

    def test_submit_runs_on_pool(self):
        manager = JobManager()
        done = threading.Event()

        def task(job, progress):
            done.set()
            return {}

        job = manager.submit_job(manager.create_job(JobType.STRATEGY, {}), task)
        assert done.wait(5)
        manager.shutdown()
        assert job.status == JobStatus.COMPLETED


class TestJobTracking:
    """Listing, metrics, callbacks and cleanup."""

    def test_list_filters(self):
        manager = JobManager()
        strategy = manager.create_job(JobType.STRATEGY, {})
        manager.create_job(JobType.ANALYSIS, {})
        assert [j.id for j in manager.list_jobs(job_type=JobType.STRATEGY)] == [strategy.id]
        assert len(manager.list_jobs(status=JobStatus.PENDING)) == 2
        assert len(manager.list_jobs(limit=1)) == 1

    def test_metrics_and_history(self):
        manager = JobManager()
        job = manager.create_job(JobType.STRATEGY, {})
        manager.update_job_metrics(job.id, {"steps": 1})
        manager.update_job_metrics(job.id, {"steps": 2}, append_history=False)
        assert job.metrics == {"steps": 2}
        assert len(job.history) == 1
        assert not manager.update_job_metrics("missing", {})

    def test_callbacks(self):
        manager = JobManager()
        job = manager.create_job(JobType.STRATEGY, {})
        statuses = []

        def callback(j):
            statuses.append(j.status)

        manager.register_callback(job.id, callback)
        manager.run_job(job, lambda job, progress: {})
        assert statuses == [JobStatus.RUNNING, JobStatus.COMPLETED]

        manager.unregister_callback(job.id, callback)
        manager.update_job_metrics(job.id, {"x": 1})
        assert len(statuses) == 2

    def test_failing_callback_does_not_break_job(self):
        manager = JobManager()
        job = manager.create_job(JobType.STRATEGY, {})
        manager.register_callback(job.id, lambda j: 1 / 0)
        assert manager.run_job(job, lambda job, progress: {}).status == JobStatus.COMPLETED

    def test_cleanup_old_jobs(self):
        manager = JobManager()
        old = manager.run_job(manager.create_job(JobType.STRATEGY, {}), lambda job, progress: {})
        old.completed_at = datetime.now() - timedelta(hours=48)
        recent = manager.run_job(manager.create_job(JobType.STRATEGY, {}), lambda job, progress: {})
        pending = manager.create_job(JobType.STRATEGY, {})

        assert manager.get_job(old.id) is None
        assert manager.get_job(recent.id) is recent
        assert manager.get_job(pending.id) is pending

    def test_dispatch_without_loop_closes_coroutine(self):
        async def notification():
            return None

        coro = notification()
        JobManager().dispatch(coro)
        assert coro.cr_frame is None
