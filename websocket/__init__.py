"""
WebSocket module: real-time job and strategy updates.
"""

from .manager import (
    MessageType,
    WebSocketManager,
    WebSocketMessage,
    notify_job_completed,
    notify_job_cancelled,
    notify_job_failed,
    notify_job_progress,
    notify_job_started,
    notify_strategy_step,
    ws_manager,
)

__all__ = [
    "WebSocketManager",
    "WebSocketMessage",
    "MessageType",
    "ws_manager",
    "notify_job_started",
    "notify_job_progress",
    "notify_job_completed",
    "notify_job_failed",
    "notify_job_cancelled",
    "notify_strategy_step",
]
