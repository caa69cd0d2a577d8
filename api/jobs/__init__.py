"""
Background jobs: strategy runs and other long tasks.
"""

from .manager import Job, JobManager, JobStatus, JobType, job_manager

__all__ = ["job_manager", "Job", "JobManager", "JobStatus", "JobType"]
