"""
Strategy execution results.

Results are kept newest first, capped at 100, and persisted to
``results.json``. Each result carries the full list of transformation steps
so a run can be replayed by the player.
"""

import json
import random
import string
import threading
import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from .app_config import AppConfigManager, app_config
from .shared.export_utils import to_json
from .shared.logger import get_logger

logger = get_logger(__name__)

MAX_RESULTS = 100
STATUSES = ("completed", "failed", "cancelled")


@dataclass
class TransformationStep:
    """One accepted step of a strategy run."""

    index: int
    operation: str
    params: Dict[str, Any]
    before_bits: str
    after_bits: str
    metrics: Dict[str, float]
    score: float = 0.0
    cost: int = 1
    duration_ms: float = 0.0
    timestamp: float = field(default_factory=lambda: time.time() * 1000)
    bit_ranges: List[Dict[str, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def summary(self) -> Dict[str, Any]:
        """Step without its bit snapshots."""
        data = self.to_dict()
        data.pop("before_bits")
        data.pop("after_bits")
        return data


@dataclass
class ExecutionResult:
    id: str
    strategy_id: str
    strategy_name: str
    start_time: float
    end_time: float
    duration: float
    initial_bits: str
    final_bits: str
    initial_metrics: Dict[str, float]
    final_metrics: Dict[str, float]
    steps: List[TransformationStep]
    benchmarks: Dict[str, float]
    files_used: Dict[str, str]
    status: str
    error: Optional[str] = None
    source_file_id: Optional[str] = None
    source_file_name: Optional[str] = None
    bookmarked: bool = False
    tags: List[str] = field(default_factory=list)
    notes: str = ""

    def to_dict(self, include_bits: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if not include_bits:
            data.pop("initial_bits")
            data.pop("final_bits")
            data["steps"] = [s.summary() for s in self.steps]
            data["initial_length"] = len(self.initial_bits)
            data["final_length"] = len(self.final_bits)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionResult":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["steps"] = [TransformationStep(**s) for s in data.get("steps", [])]
        return cls(**values)


def build_benchmarks(steps: List[TransformationStep], cpu_time_ms: float) -> Dict[str, float]:
    return {
        "cpu_time": cpu_time_ms,
        "operation_count": len(steps),
        "avg_step_duration": sum(s.duration_ms for s in steps) / len(steps) if steps else 0.0,
        "total_cost": sum(s.cost for s in steps),
    }


def _csv_cell(value: Any) -> str:
    text = str(value)
    if "," in text or '"' in text:
        return '"' + text.replace('"', '""') + '"'
    return text


class ResultsManager:
    """Persisted, newest-first store of execution results."""

    DOCUMENT = "results"

    def __init__(self, store: AppConfigManager = app_config, max_results: int = MAX_RESULTS):
        self._store = store
        self.max_results = max_results
        self._results: Dict[str, ExecutionResult] = {}
        # Reentrant: _save lists results while a writer holds the lock
        self._lock = threading.RLock()
        self._removal_listeners: List[Callable[[List[str]], None]] = []
        self.load()

    def load(self) -> None:
        raw = self._store.load_document(self.DOCUMENT, list)
        self._results = {}
        for item in raw if isinstance(raw, list) else []:
            try:
                result = ExecutionResult.from_dict(item)
            except (TypeError, KeyError) as e:
                logger.warning("Skipping malformed stored result: %s", e)
                continue
            self._results[result.id] = result

    def _save(self) -> None:
        ordered = self.get_all()[:self.max_results]
        self._results = {r.id: r for r in ordered}
        self._store.save_document(self.DOCUMENT, [r.to_dict() for r in ordered])

    def create(self, **values: Any) -> ExecutionResult:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        result = ExecutionResult(id=f"result_{int(time.time() * 1000)}_{suffix}", **values)
        with self._lock:
            self._results[result.id] = result
            self._save()
        return result

    def get(self, result_id: str) -> Optional[ExecutionResult]:
        with self._lock:
            return self._results.get(result_id)

    def get_all(self) -> List[ExecutionResult]:
        with self._lock:
            results = list(self._results.values())
        return sorted(results, key=lambda r: r.start_time, reverse=True)

    def get_bookmarked(self) -> List[ExecutionResult]:
        return [r for r in self.get_all() if r.bookmarked]

    def get_by_date(self, start: datetime, end: datetime) -> List[ExecutionResult]:
        lo, hi = start.timestamp() * 1000, end.timestamp() * 1000
        return [r for r in self.get_all() if lo <= r.start_time <= hi]

    def get_by_tag(self, tag: str) -> List[ExecutionResult]:
        return [r for r in self.get_all() if tag in r.tags]

    def _modify(self, result_id: str, change) -> Optional[ExecutionResult]:
        with self._lock:
            result = self._results.get(result_id)
            if result is None:
                return None
            change(result)
            self._save()
            return result

    def toggle_bookmark(self, result_id: str) -> Optional[ExecutionResult]:
        return self._modify(result_id, lambda r: setattr(r, "bookmarked", not r.bookmarked))

    def add_tag(self, result_id: str, tag: str) -> Optional[ExecutionResult]:
        def add(result: ExecutionResult) -> None:
            if tag not in result.tags:
                result.tags.append(tag)
        return self._modify(result_id, add)

    def remove_tag(self, result_id: str, tag: str) -> Optional[ExecutionResult]:
        return self._modify(result_id, lambda r: setattr(r, "tags", [t for t in r.tags if t != tag]))

    def update_notes(self, result_id: str, notes: str) -> Optional[ExecutionResult]:
        return self._modify(result_id, lambda r: setattr(r, "notes", notes))

    def delete(self, result_id: str) -> bool:
        with self._lock:
            if self._results.pop(result_id, None) is None:
                return False
            self._save()
        self._notify_removed([result_id])
        return True

    def clear(self) -> None:
        with self._lock:
            removed = list(self._results)
            self._results.clear()
            self._save()
        self._notify_removed(removed)

    def on_removed(self, listener: Callable[[List[str]], None]) -> None:
        """Call ``listener`` with the ids of deleted or cleared results."""
        self._removal_listeners.append(listener)

    def _notify_removed(self, result_ids: List[str]) -> None:
        for listener in list(self._removal_listeners):
            listener(result_ids)

    def export_csv(self, result: ExecutionResult) -> str:
        lines = ["Step,Operation,Parameters,Before Size,After Size,Duration (ms),Metrics"]
        for step in result.steps:
            metrics = "; ".join(f"{k}={v:.4f}" for k, v in step.metrics.items())
            lines.append(",".join([
                str(step.index),
                step.operation,
                _csv_cell(json.dumps(step.params, separators=(",", ":"))),
                str(len(step.before_bits)),
                str(len(step.after_bits)),
                f"{step.duration_ms:.2f}",
                f'"{metrics}"',
            ]))
        lines += [
            "",
            "Summary",
            f"Strategy,{_csv_cell(result.strategy_name)}",
            f"Duration,{result.duration:.0f}ms",
            f"Operations,{result.benchmarks.get('operation_count', len(result.steps))}",
            f"Initial Size,{len(result.initial_bits)} bits",
            f"Final Size,{len(result.final_bits)} bits",
            f"Status,{result.status}",
        ]
        return "\n".join(lines)

    def export_full_report(self, result: ExecutionResult) -> str:
        return to_json({**result.to_dict(), "exported_at": datetime.now().isoformat()})

    def get_statistics(self) -> Dict[str, Any]:
        results = self.get_all()
        completed = [r for r in results if r.status == "completed"]
        tags = dict.fromkeys(t for r in results for t in r.tags)
        return {
            "total_results": len(results),
            "bookmarked_count": sum(1 for r in results if r.bookmarked),
            "avg_duration": sum(r.duration for r in completed) / len(completed) if completed else 0.0,
            "success_rate": len(completed) / len(results) * 100 if results else 0.0,
            "unique_tags": list(tags),
        }


results_manager = ResultsManager()


# ============= Routes =============

router = APIRouter(prefix="/results")


class TagRequest(BaseModel):
    tag: str = Field(..., min_length=1)


class NotesRequest(BaseModel):
    notes: str = ""


def _get_or_404(result_id: str) -> ExecutionResult:
    result = results_manager.get(result_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Result '{result_id}' not found")
    return result


@router.get("")
async def list_results(
    bookmarked: bool = False,
    tag: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    """List results newest first, optionally filtered."""
    if bookmarked:
        results = results_manager.get_bookmarked()
    elif tag:
        results = results_manager.get_by_tag(tag)
    elif start or end:
        results = results_manager.get_by_date(start or datetime(1970, 1, 1), end or datetime.now())
    else:
        results = results_manager.get_all()
    return {"results": [r.to_dict(include_bits=False) for r in results], "total": len(results)}


@router.get("/statistics")
async def results_statistics():
    return results_manager.get_statistics()


@router.delete("")
async def clear_results():
    results_manager.clear()
    return {"success": True}


@router.get("/{result_id}")
async def get_result(result_id: str, include_bits: bool = True):
    return _get_or_404(result_id).to_dict(include_bits)


@router.delete("/{result_id}")
async def delete_result(result_id: str):
    if not results_manager.delete(result_id):
        raise HTTPException(status_code=404, detail=f"Result '{result_id}' not found")
    return {"success": True, "deleted": result_id}


@router.post("/{result_id}/bookmark")
async def toggle_bookmark(result_id: str):
    result = results_manager.toggle_bookmark(result_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Result '{result_id}' not found")
    return {"id": result_id, "bookmarked": result.bookmarked}


@router.post("/{result_id}/tags")
async def add_tag(result_id: str, request: TagRequest):
    result = results_manager.add_tag(result_id, request.tag)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Result '{result_id}' not found")
    return {"id": result_id, "tags": result.tags}


@router.delete("/{result_id}/tags/{tag}")
async def remove_tag(result_id: str, tag: str):
    result = results_manager.remove_tag(result_id, tag)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Result '{result_id}' not found")
    return {"id": result_id, "tags": result.tags}


@router.put("/{result_id}/notes")
async def update_notes(result_id: str, request: NotesRequest):
    result = results_manager.update_notes(result_id, request.notes)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Result '{result_id}' not found")
    return {"id": result_id, "notes": result.notes}


@router.get("/{result_id}/export")
async def export_result(result_id: str, format: str = "csv"):
    result = _get_or_404(result_id)
    if format == "csv":
        content, media_type = results_manager.export_csv(result), "text/csv"
    elif format == "json":
        content, media_type = results_manager.export_full_report(result), "application/json"
    else:
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {format}")
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{result_id}.{format}"'},
    )
