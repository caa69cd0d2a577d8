"""
Analysis API routes for the bitwise workbench.

Every request carries either raw ``bits`` or the ``file_id`` of an open
file, plus an optional ``[start, end)`` range.

Endpoints:
- /analysis/metrics: metric registry (all or selected ids)
- /analysis/stats: quick file statistics
- /analysis/advanced: advanced summary and grouped report
- /analysis/ideality: single window or top-N windows
- /analysis/functions: raw statistics (entropy, autocorrelation, ...)
- /analysis/entropy-profile: decimated sliding-window entropy
- /analysis/anomalies: enabled anomaly definitions
- /analysis/export: metrics report as CSV, JSON, Markdown or HTML
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from .anomalies import anomalies_manager
from .app_config import app_config
from .file_manager import file_manager
from .files import check_range, resolve_input
from .shared import advanced_metrics
from .shared.advanced_metrics import AdvancedMetricsCalculator
from .shared.binary_stats import analyze, find_longest_run
from .shared.bit_analysis import (
    autocorrelation,
    calculate_entropy,
    chi_square_test,
    find_longest_repeat,
    lempel_ziv_complexity,
    runs_test,
    spectral_analysis,
)
from .shared.decimation import decimate_profile, entropy_profile
from .shared.export_utils import EXPORT_FORMATS, to_csv, to_html, to_json, to_markdown
from .shared.ideality import calculate_ideality, get_top_ideality_windows
from .shared.logger import get_logger
from .shared.metrics_computer import (
    calculate_all_metrics,
    calculate_metrics,
    get_available_metrics,
    get_metric_ids,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/analysis")

LONGEST_REPEAT_LIMIT = 65536
MAX_IDEALITY_WINDOW = 256

FUNCTIONS = ("entropy", "autocorrelation", "longest_repeat", "chi_square", "runs", "spectral", "lempel_ziv")


# ============= Pydantic Models =============


class BitsInput(BaseModel):
    """Bits to analyse: inline or from an open file."""

    bits: Optional[str] = Field(None, description="Inline bit string")
    file_id: Optional[str] = Field(None, description="Use the current bits of this file")
    start: Optional[int] = Field(None, ge=0, description="Range start (inclusive)")
    end: Optional[int] = Field(None, ge=0, description="Range end (exclusive)")

    def resolve(self) -> str:
        bits = resolve_input(self.bits, self.file_id)
        start, end = check_range(bits, self.start, self.end)
        return bits[start:end]


class MetricsRequest(BitsInput):
    metrics: Optional[List[str]] = Field(None, description="Metric ids; all metrics when omitted")


class AdvancedRequest(BitsInput):
    include_report: bool = Field(True, description="Include the grouped report")


class IdealityRequest(BitsInput):
    window: Optional[int] = Field(None, ge=1, description="Single window size; top-N when omitted")
    top_n: int = Field(10, ge=1, le=100)
    max_window: Optional[int] = Field(None, ge=2, le=MAX_IDEALITY_WINDOW)


class FunctionsRequest(BitsInput):
    functions: Optional[List[str]] = Field(None, description=f"Subset of {', '.join(FUNCTIONS)}")
    lags: List[int] = Field(default_factory=lambda: [1, 2, 4, 8, 16], description="Autocorrelation lags")


class EntropyProfileRequest(BitsInput):
    window: Optional[int] = Field(None, ge=2)
    step: Optional[int] = Field(None, ge=1)
    max_points: Optional[int] = Field(None, ge=3, le=100000)


class AnomalyRequest(BitsInput):
    definition_ids: Optional[List[str]] = Field(None, description="Only run these definitions")


class ExportRequest(BaseModel):
    format: str = Field("markdown", description="csv, json, markdown or html")
    title: str = Field("Binary Analysis Report")
    metrics: Optional[Dict[str, Any]] = Field(None, description="Metrics to export; computed from bits when omitted")
    bits: Optional[str] = None
    file_id: Optional[str] = None


# ============= Endpoints =============


@router.post("/metrics")
async def compute_metrics(request: MetricsRequest):
    bits = request.resolve()
    if request.metrics:
        result = calculate_metrics(bits, request.metrics)
    else:
        result = calculate_all_metrics(bits)
    return {**result.to_dict(), "length": len(bits)}


@router.get("/metrics/available")
async def list_available_metrics():
    return {"categories": get_available_metrics(), "metrics": get_metric_ids()}


@router.post("/stats")
async def compute_stats(request: BitsInput):
    bits = request.resolve()
    stats = analyze(bits)
    runs = {}
    for bit, key in (("0", "longest_zero_run"), ("1", "longest_one_run")):
        run = find_longest_run(bits, bit)
        runs[key] = {"start": run.start, "length": run.length} if run else None
    return {"stats": stats.to_dict(), "runs": runs}


@router.post("/advanced")
async def compute_advanced(request: AdvancedRequest):
    bits = request.resolve()
    summary = advanced_metrics.analyze(bits, calculate_entropy(bits))
    response: Dict[str, Any] = {"summary": summary}
    if request.include_report:
        response["report"] = AdvancedMetricsCalculator.calculate(bits, _file_partitions(request))
    return response


def _file_partitions(request: BitsInput) -> Optional[List[Dict[str, Any]]]:
    """Partitions of the requested file, when the whole file is analysed."""
    if request.bits is not None or not request.file_id or request.start or request.end is not None:
        return None
    file = file_manager.get_file(request.file_id)
    if file is None:
        return None
    return [
        {"start": p.start, "end": p.end + 1, "entropy": p.stats.entropy}
        for p in file.state.get_partitions()
    ]


@router.post("/ideality")
async def compute_ideality(request: IdealityRequest):
    bits = request.resolve()
    if request.window is not None:
        return {"result": calculate_ideality(bits, request.window).to_dict()}
    max_window = request.max_window or MAX_IDEALITY_WINDOW
    top = get_top_ideality_windows(bits, request.top_n, max_window=max_window)
    return {"results": [r.to_dict() for r in top]}


@router.post("/functions")
async def compute_functions(request: FunctionsRequest):
    bits = request.resolve()
    wanted = request.functions or list(FUNCTIONS)
    unknown = [f for f in wanted if f not in FUNCTIONS]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown functions: {', '.join(unknown)}")

    results: Dict[str, Any] = {}
    if "entropy" in wanted:
        results["entropy"] = calculate_entropy(bits)
    if "autocorrelation" in wanted:
        results["autocorrelation"] = {str(lag): autocorrelation(bits, lag) for lag in request.lags if lag > 0}
    if "longest_repeat" in wanted:
        results["longest_repeat"] = find_longest_repeat(bits[:LONGEST_REPEAT_LIMIT]).to_dict()
    if "chi_square" in wanted:
        results["chi_square"] = chi_square_test(bits).to_dict()
    if "runs" in wanted:
        results["runs"] = runs_test(bits).to_dict()
    if "spectral" in wanted:
        results["spectral"] = [p.to_dict() for p in spectral_analysis(bits)]
    if "lempel_ziv" in wanted:
        results["lempel_ziv"] = lempel_ziv_complexity(bits)
    return {"length": len(bits), "results": results}


@router.post("/entropy-profile")
async def compute_entropy_profile(request: EntropyProfileRequest):
    """Sliding-window entropy, LTTB-decimated for charting."""
    bits = request.resolve()
    window = request.window or app_config.get_setting("analysis", "entropy_window", 64)
    step = request.step or app_config.get_setting("analysis", "entropy_step", 32)
    max_points = request.max_points or app_config.get_setting("analysis", "max_points", 1000)

    positions, values = entropy_profile(bits, window, step)
    xs, ys = decimate_profile(positions, values, max_points)
    return {
        "window": window,
        "step": step,
        "total_points": int(len(positions)),
        "positions": xs,
        "entropy": ys,
    }


@router.post("/anomalies")
async def detect_anomalies(request: AnomalyRequest):
    bits = request.resolve()
    if request.definition_ids is None:
        anomalies = anomalies_manager.detect_all(bits)
    else:
        anomalies = []
        for definition_id in request.definition_ids:
            definition = anomalies_manager.get(definition_id)
            if definition is None:
                raise HTTPException(status_code=404, detail=f"Anomaly definition '{definition_id}' not found")
            anomalies.extend(
                {**hit, "anomaly_id": definition.id, "name": definition.name,
                 "category": definition.category, "severity": definition.severity}
                for hit in anomalies_manager.execute_detection(definition_id, bits)
            )
    return {"anomalies": anomalies, "total": len(anomalies)}


@router.post("/export")
async def export_report(request: ExportRequest):
    if request.format not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {request.format}")

    metrics = request.metrics
    if metrics is None:
        bits = resolve_input(request.bits, request.file_id)
        metrics = calculate_all_metrics(bits).metrics

    if request.format == "csv":
        content = to_csv([{"metric": k, "value": v} for k, v in metrics.items()])
    elif request.format == "json":
        content = to_json({"title": request.title, "metrics": metrics})
    elif request.format == "markdown":
        content = to_markdown(request.title, metrics)
    else:
        content = to_html(request.title, metrics)

    media_type, extension = EXPORT_FORMATS[request.format]
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="analysis_report.{extension}"'},
    )
