"""
Metric registry for bit strings.

Maps metric ids to implementations so that strategies, the playground and
the analysis endpoints can ask for metrics by name.

Metric Categories:
- Core: entropy, balance, hamming_weight, transition_count, run_length_avg
- Compression: compression_ratio, kolmogorov_estimate, lempel_ziv
- Statistical: chi_square, variance, standard_deviation, skewness, kurtosis,
  bias_percentage, bit_density
- Correlation: autocorrelation, serial_correlation
- Transition: transition_rate, transition_entropy, runs_count
- Pattern: pattern_diversity, ideality, longest_run_ones, longest_run_zeros,
  block_entropy_8, block_entropy_16

Custom metrics registered at runtime take priority over built-ins.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from . import advanced_metrics as adv
from .bit_analysis import chi_square_test, lempel_ziv_complexity, runs_test
from .binary_stats import analyze, find_longest_run
from .bitstring import UnknownMetricError
from .ideality import get_top_ideality_windows
from .logger import get_logger

logger = get_logger(__name__)

MetricFn = Callable[[str], float]

# Windows above this are not scanned by the ``ideality`` metric
IDEALITY_MAX_WINDOW = 64


# ============= Metric Categories =============

CORE_METRICS = [
    'entropy',
    'balance',
    'hamming_weight',
    'transition_count',
    'run_length_avg',
]

COMPRESSION_METRICS = [
    'compression_ratio',
    'kolmogorov_estimate',
    'lempel_ziv',
]

STATISTICAL_METRICS = [
    'chi_square',
    'variance',
    'standard_deviation',
    'skewness',
    'kurtosis',
    'bias_percentage',
    'bit_density',
]

CORRELATION_METRICS = [
    'autocorrelation',
    'serial_correlation',
]

TRANSITION_METRICS = [
    'transition_rate',
    'transition_entropy',
    'runs_count',
]

PATTERN_METRICS = [
    'pattern_diversity',
    'ideality',
    'longest_run_ones',
    'longest_run_zeros',
    'block_entropy_8',
    'block_entropy_16',
]

METRIC_CATEGORIES: Dict[str, List[str]] = {
    'core': CORE_METRICS,
    'compression': COMPRESSION_METRICS,
    'statistical': STATISTICAL_METRICS,
    'correlation': CORRELATION_METRICS,
    'transition': TRANSITION_METRICS,
    'pattern': PATTERN_METRICS,
}

# All built-in metrics, core first
ALL_METRICS = [m for ids in METRIC_CATEGORIES.values() for m in ids]


@dataclass
class MetricResult:
    success: bool
    value: float
    metric_id: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AllMetricsResult:
    success: bool
    metrics: Dict[str, float] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    core_metrics_computed: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============= Implementations =============


def _transition_count(bits: str) -> float:
    return sum(1 for i in range(1, len(bits)) if bits[i] != bits[i - 1])


def _compression_ratio(bits: str) -> float:
    stats = analyze(bits)
    if stats.estimated_compressed_size == 0:
        return 1
    return round(stats.total_bytes / stats.estimated_compressed_size, 4)


def _ideality(bits: str) -> float:
    top = get_top_ideality_windows(bits, 1, max_window=IDEALITY_MAX_WINDOW)
    return round(top[0].ideality_percentage, 4) if top else 0


def _block_entropy(size: int) -> MetricFn:
    def compute(bits: str) -> float:
        blocks = adv.calculate_block_entropy(bits, [size])
        return round(blocks[0].mean, 6) if blocks else 0
    return compute


def _longest_run(bit: str) -> MetricFn:
    def compute(bits: str) -> float:
        run = find_longest_run(bits, bit)
        return run.length if run else 0
    return compute


def _ratio(bits: str) -> float:
    return round(bits.count('1') / len(bits), 6) if bits else 0


METRIC_IMPLEMENTATIONS: Dict[str, MetricFn] = {
    'entropy': lambda bits: round(analyze(bits).entropy, 6),
    'balance': _ratio,
    'hamming_weight': lambda bits: bits.count('1'),
    'transition_count': _transition_count,
    'run_length_avg': lambda bits: round(analyze(bits).mean_run_length, 4),
    'compression_ratio': _compression_ratio,
    'chi_square': lambda bits: round(chi_square_test(bits).statistic, 6),
    'autocorrelation': lambda bits: round(adv.calculate_autocorrelation(bits, 1), 6),
    'variance': lambda bits: round(adv.calculate_variance(bits), 6),
    'standard_deviation': lambda bits: round(adv.calculate_standard_deviation(bits), 6),
    'skewness': lambda bits: round(adv.calculate_skewness(bits), 6),
    'kurtosis': lambda bits: round(adv.calculate_kurtosis(bits), 6),
    'serial_correlation': lambda bits: round(adv.calculate_serial_correlation(bits), 6),
    'transition_rate': lambda bits: round(adv.calculate_transitions(bits).rate, 6),
    'transition_entropy': lambda bits: round(adv.calculate_transitions(bits).entropy, 6),
    'pattern_diversity': lambda bits: round(adv.calculate_pattern_diversity(bits, 8), 6),
    'ideality': _ideality,
    'kolmogorov_estimate': lambda bits: analyze(bits).estimated_compressed_size * 8,
    'bit_density': _ratio,
    'longest_run_ones': _longest_run('1'),
    'longest_run_zeros': _longest_run('0'),
    'runs_count': lambda bits: runs_test(bits).num_runs,
    'bias_percentage': lambda bits: round(adv.detect_bias(bits).percentage, 4),
    'block_entropy_8': _block_entropy(8),
    'block_entropy_16': _block_entropy(16),
    'lempel_ziv': lempel_ziv_complexity,
}

METRIC_DESCRIPTIONS: Dict[str, str] = {
    'entropy': 'Shannon entropy of the 0/1 distribution',
    'balance': 'Fraction of bits that are 1',
    'hamming_weight': 'Number of 1 bits',
    'transition_count': 'Number of adjacent bit changes',
    'run_length_avg': 'Mean run length',
    'compression_ratio': 'Bytes over entropy-estimated compressed bytes',
    'chi_square': 'Chi-square statistic against a 50/50 split',
    'autocorrelation': 'Lag-1 autocorrelation',
    'variance': 'Variance of bit values',
    'standard_deviation': 'Standard deviation of bit values',
    'skewness': 'Skewness of bit values',
    'kurtosis': 'Excess kurtosis of bit values',
    'serial_correlation': 'Serial correlation of adjacent bits',
    'transition_rate': 'Transitions per adjacent pair',
    'transition_entropy': 'Entropy of the 00/01/10/11 pairs',
    'pattern_diversity': 'Distinct 8-bit windows over possible windows',
    'ideality': 'Best ideality percentage over window sizes',
    'kolmogorov_estimate': 'Entropy-estimated compressed size in bits',
    'bit_density': 'Density of 1 bits',
    'longest_run_ones': 'Longest run of 1s',
    'longest_run_zeros': 'Longest run of 0s',
    'runs_count': 'Number of runs',
    'bias_percentage': 'Deviation from a 50/50 split, in percent',
    'block_entropy_8': 'Mean entropy of 8-bit blocks',
    'block_entropy_16': 'Mean entropy of 16-bit blocks',
    'lempel_ziv': 'Lempel-Ziv phrase count',
}

_custom_metrics: Dict[str, MetricFn] = {}


# ============= Registry API =============


def get_metric(metric_id: str) -> MetricFn:
    """Implementation registered for ``metric_id``; custom metrics win.

    Raises:
        UnknownMetricError: If no implementation is registered
    """
    impl = _custom_metrics.get(metric_id) or METRIC_IMPLEMENTATIONS.get(metric_id)
    if impl is None:
        raise UnknownMetricError(f"Metric '{metric_id}' not found")
    return impl


def calculate_metric(metric_id: str, bits: str) -> MetricResult:
    """Calculate a single metric by id.

    Never raises; a missing id or failing implementation gives
    ``success=False`` with the error text.
    """
    try:
        impl = get_metric(metric_id)
    except UnknownMetricError as e:
        return MetricResult(success=False, value=0, metric_id=metric_id, error=str(e))
    try:
        value = float(impl(bits))
    except Exception as e:
        logger.debug("Metric %s failed: %s", metric_id, e)
        return MetricResult(
            success=False, value=0, metric_id=metric_id,
            error=f"Metric calculation failed: {e}",
        )
    return MetricResult(success=True, value=value, metric_id=metric_id)


def calculate_metric_on_range(metric_id: str, bits: str, start: int, end: int) -> MetricResult:
    return calculate_metric(metric_id, bits[start:end])


def calculate_all_metrics(bits: str) -> AllMetricsResult:
    """Calculate every metric; success means all core metrics were computed."""
    result = AllMetricsResult(success=True)
    for metric_id in [*ALL_METRICS, *(m for m in _custom_metrics if m not in ALL_METRICS)]:
        single = calculate_metric(metric_id, bits)
        if single.success:
            result.metrics[metric_id] = single.value
            continue
        result.errors.append(single.error or f"Failed to calculate {metric_id}")
        if metric_id in CORE_METRICS:
            result.core_metrics_computed = False
    result.success = result.core_metrics_computed
    return result


def calculate_metrics(bits: str, metric_ids: List[str]) -> AllMetricsResult:
    """Calculate the listed metrics; success means none failed."""
    result = AllMetricsResult(success=True)
    for metric_id in metric_ids:
        single = calculate_metric(metric_id, bits)
        if single.success:
            result.metrics[metric_id] = single.value
        else:
            result.errors.append(single.error or f"Failed to calculate {metric_id}")
    result.success = not result.errors
    return result


def register_metric(metric_id: str, impl: MetricFn) -> None:
    _custom_metrics[metric_id] = impl


def unregister_metric(metric_id: str) -> None:
    _custom_metrics.pop(metric_id, None)


def has_implementation(metric_id: str) -> bool:
    return metric_id in METRIC_IMPLEMENTATIONS or metric_id in _custom_metrics


def get_metric_ids() -> List[str]:
    return list(dict.fromkeys([*METRIC_IMPLEMENTATIONS, *_custom_metrics]))


def get_metrics_by_category(category: str) -> List[str]:
    if category == 'custom':
        return list(_custom_metrics)
    return list(METRIC_CATEGORIES.get(category, []))


def get_available_metrics() -> Dict[str, List[Dict[str, Any]]]:
    """Get list of available metrics organized by category.

    Returns:
        Dict mapping category names to lists of metric info
    """
    categories: Dict[str, List[Dict[str, Any]]] = {
        category: [
            {
                'name': metric_id,
                'display_name': metric_id.replace('_', ' ').title(),
                'description': METRIC_DESCRIPTIONS.get(metric_id, ''),
            }
            for metric_id in ids
        ]
        for category, ids in METRIC_CATEGORIES.items()
    }
    if _custom_metrics:
        categories['custom'] = [
            {'name': m, 'display_name': m, 'description': 'Custom metric'}
            for m in _custom_metrics
        ]
    return categories
