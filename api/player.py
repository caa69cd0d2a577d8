"""
Step playback over a stored execution result.

Position 0 is the initial bits; position k is the state after step k.
Animation timing belongs to the client, which drives the session with
forward/backward/seek calls.
"""

import threading
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .results import ExecutionResult, results_manager
from .shared.logger import get_logger
from .shared.metrics_computer import calculate_metric

logger = get_logger(__name__)


class PlayerSession:
    def __init__(self, result: ExecutionResult):
        self.result = result
        self.position = 0

    @property
    def total(self) -> int:
        return len(self.result.steps)

    def bits_at(self, position: int) -> str:
        if position == 0:
            return self.result.initial_bits
        return self.result.steps[position - 1].after_bits

    def state(self, max_bits: Optional[int] = None) -> Dict[str, Any]:
        bits = self.bits_at(self.position)
        if self.position == 0:
            step, highlights, metrics = None, [], self.result.initial_metrics
        else:
            current = self.result.steps[self.position - 1]
            step, highlights, metrics = current.summary(), current.bit_ranges, current.metrics
        return {
            "result_id": self.result.id,
            "position": self.position,
            "total": self.total,
            "bits": bits if max_bits is None else bits[:max_bits],
            "length": len(bits),
            "highlights": highlights,
            "metrics": metrics,
            "step": step,
            "at_start": self.position == 0,
            "at_end": self.position == self.total,
        }

    def step_forward(self) -> Dict[str, Any]:
        self.position = min(self.position + 1, self.total)
        return self.state()

    def step_backward(self) -> Dict[str, Any]:
        self.position = max(self.position - 1, 0)
        return self.state()

    def seek(self, position: int) -> Dict[str, Any]:
        if not 0 <= position <= self.total:
            raise ValueError(f"Position {position} is outside 0..{self.total}")
        self.position = position
        return self.state()

    def reset(self) -> Dict[str, Any]:
        self.position = 0
        return self.state()

    def metric_timeline(self, metric: str) -> List[Optional[float]]:
        """Value of ``metric`` at every position, computed where not recorded."""
        recorded = [self.result.initial_metrics, *(s.metrics for s in self.result.steps)]
        timeline: List[Optional[float]] = []
        for position, metrics in enumerate(recorded):
            if metric in metrics:
                timeline.append(metrics[metric])
                continue
            computed = calculate_metric(metric, self.bits_at(position))
            timeline.append(computed.value if computed.success else None)
        return timeline


_sessions: Dict[str, PlayerSession] = {}
_sessions_lock = threading.Lock()


def get_session(result_id: str, fresh: bool = False) -> PlayerSession:
    """Session for ``result_id``, created on first use.

    The result is looked up on every call, so a session never outlives it.
    """
    result = results_manager.get(result_id)
    with _sessions_lock:
        if result is None:
            _sessions.pop(result_id, None)
            raise HTTPException(status_code=404, detail=f"Result '{result_id}' not found")
        session = _sessions.get(result_id)
        if session is None or fresh or session.result is not result:
            session = PlayerSession(result)
            _sessions[result_id] = session
        return session


def drop_sessions(result_ids: List[str]) -> None:
    with _sessions_lock:
        for result_id in result_ids:
            if _sessions.pop(result_id, None) is not None:
                logger.debug("Closed player session for removed result %s", result_id)


results_manager.on_removed(drop_sessions)


# ============= Routes =============

router = APIRouter(prefix="/player")


class SeekRequest(BaseModel):
    position: int = Field(..., description="0 for the initial bits, k for the state after step k")


@router.post("/{result_id}")
async def open_session(result_id: str, max_bits: Optional[int] = None):
    """Open (or reopen) a playback session at position 0."""
    return get_session(result_id, fresh=True).state(max_bits)


@router.get("/{result_id}")
async def session_state(result_id: str, max_bits: Optional[int] = None):
    return get_session(result_id).state(max_bits)


@router.delete("/{result_id}")
async def close_session(result_id: str):
    with _sessions_lock:
        closed = _sessions.pop(result_id, None) is not None
    return {"success": closed}


@router.post("/{result_id}/forward")
async def step_forward(result_id: str):
    return get_session(result_id).step_forward()


@router.post("/{result_id}/backward")
async def step_backward(result_id: str):
    return get_session(result_id).step_backward()


@router.post("/{result_id}/reset")
async def reset(result_id: str):
    return get_session(result_id).reset()


@router.post("/{result_id}/seek")
async def seek(result_id: str, request: SeekRequest):
    try:
        return get_session(result_id).seek(request.position)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{result_id}/timeline")
async def metric_timeline(result_id: str, metric: str = "entropy"):
    session = get_session(result_id)
    return {"metric": metric, "positions": list(range(session.total + 1)), "values": session.metric_timeline(metric)}
