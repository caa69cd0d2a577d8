"""
Declarative strategies and their execution.

A strategy is data, never code: a list of named operations with parameters,
a weighted metric score to minimize or maximize, and a policy bounding the
run (budget, step count, allowed operations, iterations, batching, stop
condition). Runs execute as background jobs and are stored as results for
playback.
"""

import math
import operator
import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

import numpy as np
from fastapi import APIRouter, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .app_config import AppConfigManager, app_config, get_max_bits
from .file_manager import FileTooLargeError, file_manager
from .files import resolve_input
from .jobs import Job, JobStatus, JobType, job_manager
from .results import ExecutionResult, TransformationStep, build_benchmarks, results_manager
from .shared import metrics_computer
from .shared.bit_operations import execute_operation_on_range, get_operation_cost, has_implementation
from .shared.logger import get_logger
from .shared.pipeline_service import validate_step_params

logger = get_logger(__name__)

MAX_HIGHLIGHT_RANGES = 512

STOP_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "lt": operator.lt,
    "le": operator.le,
    "gt": operator.gt,
    "ge": operator.ge,
}


# ============= Definitions =============


class StrategyStep(BaseModel):
    operation: str = Field(..., description="Operation id, e.g. 'XOR'")
    params: Dict[str, Any] = Field(default_factory=dict)
    range: Optional[Tuple[int, int]] = Field(None, description="[start, end) overriding batching")


class Scoring(BaseModel):
    metrics: Dict[str, float] = Field(default_factory=lambda: {"entropy": 1.0}, description="Metric id to weight")
    goal: Literal["minimize", "maximize"] = "minimize"


class StopCondition(BaseModel):
    metric: str
    op: Literal["lt", "le", "gt", "ge"]
    value: float


class Policy(BaseModel):
    budget: Optional[int] = Field(1000, ge=0, description="Total operation cost allowed; None for unlimited")
    max_steps: Optional[int] = Field(100, ge=0, description="Accepted steps allowed; None for unlimited")
    allowed_operations: List[str] = Field(default_factory=list, description="Empty allows every operation")
    iterations: int = Field(1, ge=1, le=1000)
    batches: int = Field(1, ge=1, le=1024)
    accept_only_improving: bool = False
    stop_when: Optional[StopCondition] = None


class StrategyDefinition(BaseModel):
    id: str
    name: str
    description: str = ""
    algorithm: List[StrategyStep] = Field(default_factory=list)
    scoring: Scoring = Field(default_factory=Scoring)
    policy: Policy = Field(default_factory=Policy)
    built_in: bool = False
    created: Optional[str] = None

    def is_allowed(self, operation_id: str) -> bool:
        allowed = self.policy.allowed_operations
        return not allowed or operation_id in allowed


BUILT_IN_STRATEGIES = [
    StrategyDefinition(
        id="entropy-reduction",
        name="Entropy Reduction",
        description="Alternate XOR masks and inversion over four batches, keeping only steps that lower entropy",
        algorithm=[
            StrategyStep(operation="XOR", params={"mask": "01"}),
            StrategyStep(operation="NOT"),
            StrategyStep(operation="XOR", params={"mask": "0011"}),
        ],
        scoring=Scoring(metrics={"entropy": 1.0}, goal="minimize"),
        policy=Policy(
            budget=100,
            max_steps=50,
            allowed_operations=["XOR", "NOT"],
            iterations=3,
            batches=4,
            accept_only_improving=True,
            stop_when=StopCondition(metric="entropy", op="lt", value=0.5),
        ),
        built_in=True,
    ),
    StrategyDefinition(
        id="pattern-mixing",
        name="Pattern Mixing",
        description="Rotate and mask the data to raise transition rate and pattern diversity",
        algorithm=[
            StrategyStep(operation="ROL", params={"count": 3}),
            StrategyStep(operation="XOR", params={"mask": "0110"}),
            StrategyStep(operation="ROR", params={"count": 1}),
        ],
        scoring=Scoring(metrics={"transition_rate": 1.0, "pattern_diversity": 0.5}, goal="maximize"),
        policy=Policy(budget=60, max_steps=30, iterations=2),
        built_in=True,
    ),
]

BUILT_IN_IDS = {s.id for s in BUILT_IN_STRATEGIES}


def validate_strategy(strategy: Optional[StrategyDefinition], bits: str) -> Dict[str, Any]:
    """Check a strategy can run against ``bits``."""
    errors: List[str] = []
    warnings: List[str] = []
    if strategy is None:
        return {"valid": False, "errors": ["Strategy not found"], "warnings": warnings}
    if not bits:
        errors.append("No data to run the strategy on")
    if not strategy.algorithm:
        errors.append("Strategy has no steps")

    for index, step in enumerate(strategy.algorithm, start=1):
        if not has_implementation(step.operation):
            errors.append(f"Step {index}: unknown operation '{step.operation}'")
            continue
        if not strategy.is_allowed(step.operation):
            errors.append(f"Step {index}: operation '{step.operation}' is not allowed by the policy")
        _, step_errors, step_warnings = validate_step_params(step.operation, step.params, "operation")
        errors.extend(f"Step {index}: {e}" for e in step_errors)
        warnings.extend(f"Step {index}: {w}" for w in step_warnings)
        if step.range is not None and step.range[0] > step.range[1]:
            errors.append(f"Step {index}: range start is after its end")

    if not strategy.scoring.metrics:
        errors.append("Scoring defines no metrics")
    for metric_id in strategy.scoring.metrics:
        if not metrics_computer.has_implementation(metric_id):
            errors.append(f"Unknown scoring metric '{metric_id}'")
    stop = strategy.policy.stop_when
    if stop is not None and not metrics_computer.has_implementation(stop.metric):
        errors.append(f"Unknown stop metric '{stop.metric}'")

    return {"valid": not errors, "errors": errors, "warnings": warnings}


# ============= Execution =============


def changed_ranges(before: str, after: str, limit: int = MAX_HIGHLIGHT_RANGES) -> List[Dict[str, int]]:
    """Inclusive ranges where ``after`` differs from ``before``.

    Positions past the shorter string count as changed.
    """
    n = max(len(before), len(after))
    if n == 0:
        return []
    common = min(len(before), len(after))
    diff = np.ones(n, dtype=np.int8)
    if common:
        a = np.frombuffer(before[:common].encode("ascii"), dtype=np.uint8)
        b = np.frombuffer(after[:common].encode("ascii"), dtype=np.uint8)
        diff[:common] = a != b
    edges = np.diff(np.concatenate(([0], diff, [0])))
    starts = np.flatnonzero(edges == 1)[:limit]
    ends = np.flatnonzero(edges == -1)[:limit] - 1
    return [{"start": int(s), "end": int(e)} for s, e in zip(starts, ends)]


def batch_ranges(length: int, batches: int) -> List[Tuple[int, int]]:
    """Split ``[0, length)`` into at most ``batches`` equal slices."""
    if batches <= 1 or length == 0:
        return [(0, length)]
    size = math.ceil(length / batches)
    return [(start, min(start + size, length)) for start in range(0, length, size)]


@dataclass
class StrategyRun:
    initial_bits: str
    final_bits: str
    initial_metrics: Dict[str, float]
    final_metrics: Dict[str, float]
    initial_score: float
    final_score: float
    steps: List[TransformationStep] = field(default_factory=list)
    rejected: List[Dict[str, Any]] = field(default_factory=list)
    spent: int = 0
    stop_reason: str = "completed"
    cpu_time_ms: float = 0.0

    @property
    def cancelled(self) -> bool:
        return self.stop_reason == "cancelled"


class StrategyExecutor:
    """Applies a strategy's steps to a bit string under its policy."""

    def __init__(self, on_step: Optional[Callable[[Dict[str, Any], int, float], None]] = None):
        self.on_step = on_step

    @staticmethod
    def tracked_metrics(strategy: StrategyDefinition) -> List[str]:
        ids = [*metrics_computer.CORE_METRICS, *strategy.scoring.metrics]
        if strategy.policy.stop_when is not None:
            ids.append(strategy.policy.stop_when.metric)
        return list(dict.fromkeys(ids))

    @staticmethod
    def score(strategy: StrategyDefinition, metrics: Dict[str, float]) -> float:
        return sum(weight * metrics.get(m, 0.0) for m, weight in strategy.scoring.metrics.items())

    @staticmethod
    def improves(strategy: StrategyDefinition, new: float, current: float) -> bool:
        if strategy.scoring.goal == "maximize":
            return new > current
        return new < current

    @staticmethod
    def stop_condition_met(strategy: StrategyDefinition, metrics: Dict[str, float]) -> bool:
        stop = strategy.policy.stop_when
        if stop is None or stop.metric not in metrics:
            return False
        return STOP_OPERATORS[stop.op](metrics[stop.metric], stop.value)

    def _ranges(self, strategy: StrategyDefinition, step: StrategyStep, length: int) -> List[Tuple[int, int]]:
        if step.range is not None:
            start = min(step.range[0], length)
            return [(start, min(max(step.range[1], start), length))]
        return batch_ranges(length, strategy.policy.batches)

    def run(
        self,
        strategy: StrategyDefinition,
        bits: str,
        progress_cb: Optional[Callable[[float, str], bool]] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> StrategyRun:
        """Run ``strategy`` over ``bits``.

        ``progress_cb(percent, message)`` returning False cancels the run, as
        does ``should_cancel()`` returning True.
        """
        cpu_start = time.process_time()
        policy = strategy.policy
        metric_ids = self.tracked_metrics(strategy)

        metrics = metrics_computer.calculate_metrics(bits, metric_ids).metrics
        current_score = self.score(strategy, metrics)
        run = StrategyRun(
            initial_bits=bits,
            final_bits=bits,
            initial_metrics=dict(metrics),
            final_metrics=dict(metrics),
            initial_score=current_score,
            final_score=current_score,
        )
        current = bits
        planned = policy.iterations * len(strategy.algorithm) * max(policy.batches, 1)
        attempts = 0

        def stop(reason: str) -> StrategyRun:
            run.stop_reason = reason
            run.final_bits = current
            run.final_metrics = metrics
            run.final_score = current_score
            run.cpu_time_ms = (time.process_time() - cpu_start) * 1000
            logger.info(
                "Strategy %s stopped (%s) after %d steps, score %.4f -> %.4f",
                strategy.id, reason, len(run.steps), run.initial_score, current_score,
            )
            return run

        for iteration in range(policy.iterations):
            for step in strategy.algorithm:
                for start, end in self._ranges(strategy, step, len(current)):
                    if should_cancel is not None and should_cancel():
                        return stop("cancelled")

                    attempt = {"iteration": iteration, "operation": step.operation, "params": step.params,
                               "range": {"start": start, "end": end}}
                    if not strategy.is_allowed(step.operation):
                        run.rejected.append({**attempt, "reason": "not allowed by policy"})
                        continue
                    cost = get_operation_cost(step.operation)
                    if policy.budget is not None and run.spent + cost > policy.budget:
                        return stop("budget")
                    if policy.max_steps is not None and len(run.steps) >= policy.max_steps:
                        return stop("max_steps")

                    step_start = time.perf_counter()
                    result = execute_operation_on_range(step.operation, current, start, end, step.params)
                    run.spent += cost
                    attempts += 1
                    if not result.success:
                        run.rejected.append({**attempt, "reason": result.error})
                        continue
                    if len(result.bits) > get_max_bits():
                        run.rejected.append({**attempt, "reason": "size limit"})
                        continue

                    new_metrics = metrics_computer.calculate_metrics(result.bits, metric_ids).metrics
                    new_score = self.score(strategy, new_metrics)
                    duration = (time.perf_counter() - step_start) * 1000

                    if policy.accept_only_improving and not self.improves(strategy, new_score, current_score):
                        run.rejected.append({**attempt, "reason": "no improvement", "score": new_score})
                        self._report_step(attempt, False, len(run.steps), current_score)
                    else:
                        transformation = TransformationStep(
                            index=len(run.steps) + 1,
                            operation=step.operation,
                            params=dict(step.params),
                            before_bits=current,
                            after_bits=result.bits,
                            metrics=new_metrics,
                            score=new_score,
                            cost=cost,
                            duration_ms=duration,
                            bit_ranges=changed_ranges(current, result.bits),
                        )
                        run.steps.append(transformation)
                        current, metrics, current_score = result.bits, new_metrics, new_score
                        self._report_step(transformation.summary(), True, len(run.steps), current_score)

                    if progress_cb is not None:
                        percent = min(attempts / planned * 100, 99.0) if planned else 99.0
                        if not progress_cb(percent, f"{len(run.steps)} steps, score {current_score:.4f}"):
                            return stop("cancelled")
                    if self.stop_condition_met(strategy, metrics):
                        return stop("condition")

        return stop("completed")

    def _report_step(self, step: Dict[str, Any], accepted: bool, total: int, score: float) -> None:
        if self.on_step is not None:
            self.on_step({**step, "accepted": accepted}, total, score)


# ============= Persistence =============


class StrategyManager:
    """Built-in strategies plus custom ones persisted to ``strategies.json``."""

    DOCUMENT = "strategies"

    def __init__(self, store: AppConfigManager = app_config):
        self._store = store

    def _custom(self) -> List[StrategyDefinition]:
        raw = self._store.load_document(self.DOCUMENT, list)
        strategies = []
        for item in raw if isinstance(raw, list) else []:
            try:
                strategies.append(StrategyDefinition.model_validate({**item, "built_in": False}))
            except ValueError as e:
                logger.warning("Skipping malformed stored strategy: %s", e)
        return strategies

    def _save(self, strategies: List[StrategyDefinition]) -> None:
        self._store.save_document(self.DOCUMENT, [s.model_dump() for s in strategies])

    def get_all(self) -> List[StrategyDefinition]:
        return [s.model_copy(deep=True) for s in BUILT_IN_STRATEGIES] + self._custom()

    def get(self, strategy_id: str) -> Optional[StrategyDefinition]:
        return next((s for s in self.get_all() if s.id == strategy_id), None)

    def create(self, data: Dict[str, Any]) -> StrategyDefinition:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        strategy = StrategyDefinition.model_validate({
            **data,
            "id": f"strategy_{int(time.time() * 1000)}_{suffix}",
            "built_in": False,
            "created": time.strftime("%Y-%m-%dT%H:%M:%S"),
        })
        self._save([*self._custom(), strategy])
        return strategy

    def update(self, strategy_id: str, data: Dict[str, Any]) -> Optional[StrategyDefinition]:
        """Replace a custom strategy's fields; built-ins are never updated."""
        if strategy_id in BUILT_IN_IDS:
            return None
        custom = self._custom()
        for i, existing in enumerate(custom):
            if existing.id == strategy_id:
                custom[i] = StrategyDefinition.model_validate({
                    **existing.model_dump(), **data, "id": strategy_id, "built_in": False,
                })
                self._save(custom)
                return custom[i]
        return None

    def delete(self, strategy_id: str) -> bool:
        if strategy_id in BUILT_IN_IDS:
            return False
        custom = self._custom()
        remaining = [s for s in custom if s.id != strategy_id]
        if len(remaining) == len(custom):
            return False
        self._save(remaining)
        return True


strategy_manager = StrategyManager()


def run_strategy(
    job: Job,
    progress_callback: Callable[[float, str], bool],
    strategy: StrategyDefinition,
    bits: str,
    file_id: Optional[str] = None,
    apply_to_file: bool = False,
) -> Dict[str, Any]:
    """Job body: execute the strategy and store its result."""
    from websocket import notify_strategy_step

    def on_step(step: Dict[str, Any], total: int, score: float) -> None:
        job_manager.update_job_metrics(job.id, {"steps": total, "score": score}, append_history=False)
        job_manager.dispatch(notify_strategy_step(job.id, step, total, score))

    file = file_manager.get_file(file_id) if file_id else None
    source = {
        "source_file_id": file.id if file else None,
        "source_file_name": file.name if file else None,
        "files_used": {"strategy": strategy.id, "data": file.name if file else "inline"},
        "strategy_id": strategy.id,
        "strategy_name": strategy.name,
    }
    start_time = time.time() * 1000

    try:
        run = StrategyExecutor(on_step=on_step).run(strategy, bits, progress_callback)
    except Exception as e:
        end_time = time.time() * 1000
        results_manager.create(
            **source,
            start_time=start_time,
            end_time=end_time,
            duration=end_time - start_time,
            initial_bits=bits,
            final_bits=bits,
            initial_metrics={},
            final_metrics={},
            steps=[],
            benchmarks=build_benchmarks([], 0.0),
            status="failed",
            error=str(e),
        )
        raise

    end_time = time.time() * 1000
    status = "cancelled" if run.cancelled else "completed"
    result: ExecutionResult = results_manager.create(
        **source,
        start_time=start_time,
        end_time=end_time,
        duration=end_time - start_time,
        initial_bits=run.initial_bits,
        final_bits=run.final_bits,
        initial_metrics=run.initial_metrics,
        final_metrics=run.final_metrics,
        steps=run.steps,
        benchmarks=build_benchmarks(run.steps, run.cpu_time_ms),
        status=status,
    )

    applied = False
    if apply_to_file and file is not None and status == "completed" and run.steps:
        try:
            file.state.apply(run.final_bits, f"Strategy: {strategy.name}")
        except FileTooLargeError as e:
            logger.warning("Not applying strategy %s to %s: %s", strategy.id, file.id, e)
        else:
            file_manager.touch(file)
            applied = True

    return {
        "result_id": result.id,
        "status": status,
        "stop_reason": run.stop_reason,
        "steps": len(run.steps),
        "rejected": len(run.rejected),
        "spent": run.spent,
        "initial_score": run.initial_score,
        "final_score": run.final_score,
        "applied_to_file": applied,
    }


# ============= Routes =============

router = APIRouter(prefix="/strategies")


class StrategyCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    algorithm: List[StrategyStep] = Field(default_factory=list)
    scoring: Scoring = Field(default_factory=Scoring)
    policy: Policy = Field(default_factory=Policy)


class StrategyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    algorithm: Optional[List[StrategyStep]] = None
    scoring: Optional[Scoring] = None
    policy: Optional[Policy] = None


class RunRequest(BaseModel):
    bits: Optional[str] = Field(None, description="Inline bit string")
    file_id: Optional[str] = Field(None, description="Run against the current bits of this file")
    wait: bool = Field(False, description="Block until the run finishes")
    apply_to_file: bool = Field(False, description="Replace the file contents with the final bits")


def _get_or_404(strategy_id: str) -> StrategyDefinition:
    strategy = strategy_manager.get(strategy_id)
    if strategy is None:
        raise HTTPException(status_code=404, detail=f"Strategy '{strategy_id}' not found")
    return strategy


@router.get("/jobs")
async def list_strategy_jobs(limit: int = 50):
    jobs = job_manager.list_jobs(job_type=JobType.STRATEGY, limit=limit)
    return {"jobs": [j.to_dict() for j in jobs], "total": len(jobs)}


@router.get("/jobs/{job_id}")
async def get_strategy_job(job_id: str):
    job = job_manager.get_job(job_id)
    if job is None or job.type != JobType.STRATEGY:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found")
    return job.to_dict()


@router.post("/jobs/{job_id}/cancel")
async def cancel_strategy_job(job_id: str):
    job = job_manager.get_job(job_id)
    if job is None or job.type != JobType.STRATEGY:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found")
    if not job_manager.cancel_job(job_id):
        raise HTTPException(status_code=400, detail=f"Job '{job_id}' has already finished")
    return {"success": True, "job_id": job_id}


@router.get("")
async def list_strategies():
    strategies = strategy_manager.get_all()
    return {"strategies": [s.model_dump() for s in strategies], "total": len(strategies)}


@router.post("")
async def create_strategy(request: StrategyCreate):
    return strategy_manager.create(request.model_dump()).model_dump()


@router.get("/{strategy_id}")
async def get_strategy(strategy_id: str):
    return _get_or_404(strategy_id).model_dump()


@router.put("/{strategy_id}")
async def update_strategy(strategy_id: str, request: StrategyUpdate):
    if strategy_id in BUILT_IN_IDS:
        raise HTTPException(status_code=403, detail="Built-in strategies cannot be modified")
    strategy = strategy_manager.update(strategy_id, request.model_dump(exclude_none=True))
    if strategy is None:
        raise HTTPException(status_code=404, detail=f"Strategy '{strategy_id}' not found")
    return strategy.model_dump()


@router.delete("/{strategy_id}")
async def delete_strategy(strategy_id: str):
    if strategy_id in BUILT_IN_IDS:
        raise HTTPException(status_code=403, detail="Built-in strategies cannot be deleted")
    if not strategy_manager.delete(strategy_id):
        raise HTTPException(status_code=404, detail=f"Strategy '{strategy_id}' not found")
    return {"success": True, "deleted": strategy_id}


@router.post("/{strategy_id}/validate")
async def validate(strategy_id: str, request: RunRequest):
    bits = resolve_input(request.bits, request.file_id) if (request.bits is not None or request.file_id) else ""
    return validate_strategy(strategy_manager.get(strategy_id), bits)


@router.post("/{strategy_id}/run")
async def run(strategy_id: str, request: RunRequest):
    """Start a strategy run as a background job, or run it to completion with ``wait``."""
    strategy = _get_or_404(strategy_id)
    bits = resolve_input(request.bits, request.file_id)

    validation = validate_strategy(strategy, bits)
    if not validation["valid"]:
        raise HTTPException(status_code=400, detail="; ".join(validation["errors"]))

    job = job_manager.create_job(JobType.STRATEGY, {
        "strategy_id": strategy.id,
        "file_id": request.file_id,
        "length": len(bits),
    })

    def task(job: Job, progress_callback) -> Dict[str, Any]:
        return run_strategy(job, progress_callback, strategy, bits, request.file_id, request.apply_to_file)

    if not request.wait:
        job_manager.submit_job(job, task)
        return {"job_id": job.id, "status": job.status.value}

    await run_in_threadpool(job_manager.run_job, job, task)
    if job.status == JobStatus.FAILED:
        raise HTTPException(status_code=500, detail=job.error or "Strategy run failed")
    return {"job_id": job.id, "status": job.status.value, **(job.result or {})}
