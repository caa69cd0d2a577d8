"""
Playground API routes for the bitwise workbench.

The playground runs a pipeline of steps (operations, codecs, compressors and
transforms) over a bit string and returns:
- Original and processed bits with quick statistics
- An optional metric comparison between the two
- A per-step execution trace with timing

A failing step is recorded in the trace and leaves the bits unchanged; the
remaining steps still run. Intermediate results are kept in a step-level
prefix cache so edits at the end of a long pipeline only re-run what changed.
"""

from __future__ import annotations

import hashlib
import json
import time
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .app_config import get_max_bits
from .file_manager import FileTooLargeError, check_size, file_manager
from .files import get_file_or_404, resolve_input
from .shared.binary_stats import analyze
from .shared.logger import get_logger
from .shared.metrics_computer import calculate_all_metrics
from .shared.pipeline_service import (
    STEP_TYPES,
    get_codec_methods,
    get_compression_methods,
    get_operation_methods,
    get_transform_methods,
    run_step,
    validate_step_params,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/playground")


# ============= Pydantic Models =============


class PlaygroundStep(BaseModel):
    """A single pipeline step in the playground."""

    id: str = Field(..., description="Unique step identifier")
    type: str = Field("operation", description=f"Step type: {', '.join(STEP_TYPES)}")
    name: str = Field(..., description="Operation id, codec, compressor or transform name (e.g. 'XOR', 'gray')")
    params: dict[str, Any] = Field(default_factory=dict, description="Step parameters")
    enabled: bool = Field(default=True, description="Whether the step is enabled")


class ExecuteRequest(BaseModel):
    """Request model for executing a playground pipeline."""

    bits: str | None = Field(None, description="Inline bit string")
    file_id: str | None = Field(None, description="Use the current bits of this file")
    steps: list[PlaygroundStep] = Field(default_factory=list, description="Pipeline steps to execute")
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Options: compute_metrics, compute_statistics, max_bits_returned, use_cache, apply_to_file",
    )


class StepTrace(BaseModel):
    """Execution trace for a single step."""

    step_id: str
    name: str
    type: str = "operation"
    duration_ms: float
    success: bool
    error: str | None = None
    output_length: int | None = None
    cached: bool = False


class ExecuteResponse(BaseModel):
    """Response model for playground execution."""

    success: bool
    execution_time_ms: float
    original: dict[str, Any] = Field(default_factory=dict, description="Original bits (truncated) and statistics")
    processed: dict[str, Any] = Field(default_factory=dict, description="Processed bits (truncated) and statistics")
    metrics: dict[str, Any] | None = Field(None, description="Metric comparison if computed")
    execution_trace: list[StepTrace] = Field(default_factory=list, description="Per-step execution info")
    step_errors: list[dict[str, Any]] = Field(default_factory=list, description="Any step-level errors")
    is_raw_data: bool = Field(default=False, description="True if no steps were applied")
    applied_to_file: bool = Field(default=False, description="True if the result replaced the file contents")


# ============= Step-Level Prefix Cache =============


class _StepCache:
    """LRU cache of intermediate pipeline states.

    Stores the output of each pipeline prefix so later requests sharing the
    prefix skip the steps already computed. Bounded by approximate size and
    expired after ``ttl_seconds``.
    """

    def __init__(self, max_bytes: int = 64 * 1024 * 1024, ttl_seconds: int = 300):
        self._entries: dict[str, tuple[float, dict]] = {}
        self._sizes: dict[str, int] = {}
        self._total_bytes: int = 0
        self._max_bytes = max_bytes
        self._ttl_seconds = ttl_seconds

    def _estimate_size(self, state: dict) -> int:
        return max(len(state.get("bits", "")) + 64 * len(state.get("trace", [])), 64)

    def get(self, key: str) -> dict | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        ts, state = entry
        if time.time() - ts >= self._ttl_seconds:
            self._evict(key)
            return None
        self._entries[key] = (time.time(), state)
        return state

    def put(self, key: str, state: dict) -> None:
        if key in self._entries:
            self._evict(key)
        size = self._estimate_size(state)
        if size > self._max_bytes:
            return
        while self._total_bytes + size > self._max_bytes and self._entries:
            oldest_key = min(self._entries, key=lambda k: self._entries[k][0])
            self._evict(oldest_key)
        self._entries[key] = (time.time(), state)
        self._sizes[key] = size
        self._total_bytes += size

    def _evict(self, key: str) -> None:
        if key in self._entries:
            del self._entries[key]
            self._total_bytes -= self._sizes.pop(key, 0)

    def clear(self) -> None:
        self._entries.clear()
        self._sizes.clear()
        self._total_bytes = 0

    def __len__(self) -> int:
        return len(self._entries)


_step_cache = _StepCache()


def _compute_data_fingerprint(bits: str) -> str:
    # The size limit is part of the key since it decides which steps fail
    return hashlib.md5(f"{get_max_bits()}:{bits}".encode("ascii")).hexdigest()


def _compute_prefix_key(data_fingerprint: str, steps: list[PlaygroundStep]) -> str:
    step_data = [(s.type, s.name, json.dumps(s.params, sort_keys=True, default=str)) for s in steps]
    raw = f"{data_fingerprint}:{json.dumps(step_data)}"
    return hashlib.md5(raw.encode()).hexdigest()


# ============= PlaygroundExecutor =============


class PlaygroundExecutor:
    """Runs playground pipelines over bit strings."""

    def __init__(self, cache: _StepCache | None = None):
        self.cache = cache
        self.processed_bits = ""

    def execute(self, bits: str, steps: list[PlaygroundStep], options: dict[str, Any] | None = None) -> ExecuteResponse:
        start_time = time.perf_counter()
        options = options or {}

        enabled_steps = [s for s in steps if s.enabled]
        processed, execution_trace, step_errors = self._run_steps(bits, enabled_steps)
        self.processed_bits = processed

        max_bits = int(options.get("max_bits_returned", 4096))
        compute_stats = options.get("compute_statistics", True)
        original = self._describe(bits, max_bits, compute_stats)
        processed_info = self._describe(processed, max_bits, compute_stats)

        metrics = None
        if options.get("compute_metrics", False):
            metrics = self._compare_metrics(bits, processed)

        return ExecuteResponse(
            success=not step_errors,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
            original=original,
            processed=processed_info,
            metrics=metrics,
            execution_trace=execution_trace,
            step_errors=step_errors,
            is_raw_data=not enabled_steps,
        )

    def _run_steps(
        self,
        bits: str,
        steps: list[PlaygroundStep],
    ) -> tuple[str, list[StepTrace], list[dict[str, Any]]]:
        processed = bits
        execution_trace: list[StepTrace] = []
        step_errors: list[dict[str, Any]] = []

        data_fp = _compute_data_fingerprint(bits)
        skip_count = 0
        if self.cache is not None:
            for i in range(len(steps), 0, -1):
                cached = self.cache.get(_compute_prefix_key(data_fp, steps[:i]))
                if cached is not None:
                    processed = cached["bits"]
                    # Cached traces carry the ids of the request that filled them
                    execution_trace = [
                        trace.model_copy(update={"step_id": step.id, "duration_ms": 0.0, "cached": True})
                        for trace, step in zip(cached["trace"], steps[:i])
                    ]
                    step_errors = [
                        {"step": t.step_id, "name": t.name, "error": t.error}
                        for t in execution_trace if not t.success
                    ]
                    skip_count = i
                    break

        for index, step in enumerate(steps[skip_count:], start=skip_count + 1):
            step_start = time.perf_counter()
            try:
                processed = check_size(run_step(step.type, step.name, processed, step.params))
                trace = StepTrace(
                    step_id=step.id,
                    name=step.name,
                    type=step.type,
                    duration_ms=(time.perf_counter() - step_start) * 1000,
                    success=True,
                    output_length=len(processed),
                )
            except (ValueError, LookupError, TypeError) as e:
                trace = StepTrace(
                    step_id=step.id,
                    name=step.name,
                    type=step.type,
                    duration_ms=(time.perf_counter() - step_start) * 1000,
                    success=False,
                    error=str(e),
                    output_length=len(processed),
                )
                step_errors.append({"step": step.id, "name": step.name, "error": str(e)})

            execution_trace.append(trace)
            if self.cache is not None:
                self.cache.put(_compute_prefix_key(data_fp, steps[:index]), {
                    "bits": processed,
                    "trace": list(execution_trace),
                })

        return processed, execution_trace, step_errors

    @staticmethod
    def _describe(bits: str, max_bits: int, compute_stats: bool) -> dict[str, Any]:
        return {
            "bits": bits[:max_bits],
            "length": len(bits),
            "truncated": len(bits) > max_bits,
            "statistics": analyze(bits).to_dict() if compute_stats else None,
        }

    @staticmethod
    def _compare_metrics(original: str, processed: str) -> dict[str, Any]:
        before = calculate_all_metrics(original).metrics
        after = calculate_all_metrics(processed).metrics
        return {
            "original": before,
            "processed": after,
            "delta": {k: after[k] - before[k] for k in before if k in after},
        }


# ============= API Endpoints =============


MAX_STEPS = 50


@router.post("/execute", response_model=ExecuteResponse)
async def execute_pipeline(request: ExecuteRequest):
    """Execute a playground pipeline on inline bits or an open file.

    Limits:
    - Max bits: BITWISE_MAX_BITS
    - Max pipeline steps: 50
    """
    if len(request.steps) > MAX_STEPS:
        raise HTTPException(
            status_code=400,
            detail=f"Too many pipeline steps: {len(request.steps)}. Maximum allowed: {MAX_STEPS}.",
        )

    bits = resolve_input(request.bits, request.file_id)
    use_cache = request.options.get("use_cache", True)
    executor = PlaygroundExecutor(cache=_step_cache if use_cache else None)
    result = executor.execute(bits, request.steps, request.options)

    if request.options.get("apply_to_file") and request.file_id and not result.is_raw_data:
        file = get_file_or_404(request.file_id)
        names = " → ".join(s.name for s in request.steps if s.enabled)
        try:
            file.state.apply(executor.processed_bits, f"Transform pipeline: {names}")
        except FileTooLargeError as e:
            raise HTTPException(status_code=413, detail=str(e))
        file_manager.touch(file)
        result.applied_to_file = True

    return result


@router.get("/operators")
async def list_operators():
    """List everything usable as a playground step, grouped by type and category."""
    groups = {
        "operation": get_operation_methods(),
        "encoding": get_codec_methods("encoding"),
        "decoding": get_codec_methods("decoding"),
        "compression": get_compression_methods("compression"),
        "decompression": get_compression_methods("decompression"),
        "transform": get_transform_methods(),
    }

    response: dict[str, Any] = {}
    for step_type, methods in groups.items():
        by_category: dict[str, list[dict[str, Any]]] = {}
        for method in methods:
            by_category.setdefault(method.get("category", "other"), []).append(method)
        response[step_type] = methods
        response[f"{step_type}_by_category"] = by_category
    response["total"] = sum(len(m) for m in groups.values())
    return response


@router.post("/validate")
async def validate_pipeline(steps: list[PlaygroundStep]):
    """Check that every step resolves and its parameters are accepted."""
    results = {
        "valid": True,
        "steps": [],
        "errors": [],
        "warnings": [],
    }

    if len(steps) > MAX_STEPS:
        results["valid"] = False
        results["errors"].append(f"Too many pipeline steps: {len(steps)}. Maximum allowed: {MAX_STEPS}.")

    for step in steps:
        is_valid, errors, warnings = validate_step_params(step.name, step.params, step.type)
        results["steps"].append({
            "step_id": step.id,
            "name": step.name,
            "valid": is_valid,
            "errors": errors,
            "warnings": warnings,
        })
        if not is_valid:
            results["valid"] = False
            results["errors"].extend(f"Step {step.id}: {e}" for e in errors)
        results["warnings"].extend(f"Step {step.id}: {w}" for w in warnings)

    return results


@router.delete("/cache")
async def clear_cache():
    _step_cache.clear()
    return {"success": True}
