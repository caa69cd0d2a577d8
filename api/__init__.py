"""
API package for the bitwise workbench FastAPI backend.

This package provides the REST API endpoints for:
- Open files, edits, history and boundaries (files.py)
- Metrics, statistics and reports (analysis.py)
- Transformation pipelines (playground.py)
- Presets and anomaly definitions (presets.py, anomalies.py)
- Declarative strategies and their runs (strategies.py)
- Stored results and step playback (results.py, player.py)
- System health, info and settings (system.py)
- Background job management (jobs/)

The pure bit-string library lives in ``api.shared``.
"""

from .file_manager import FileManager, file_manager
from .jobs import Job, JobStatus, JobType, job_manager

__all__ = [
    "file_manager",
    "FileManager",
    "job_manager",
    "Job",
    "JobStatus",
    "JobType",
]
