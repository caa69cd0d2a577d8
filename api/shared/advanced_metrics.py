"""
Advanced metrics for bit strings.

``AdvancedMetricsCalculator.calculate`` produces a grouped report covering
basic counts, entropy measures, randomness tests, run lengths, pattern and
transition statistics, periodicity, partition and byte-level statistics.

Byte-level measures use complete 8-bit chunks only. Every measure returns
0 rather than dividing by zero on inputs too short for it.

The module-level helpers (variance, skewness, transitions, block entropy
and so on) back the metric registry in ``metrics_computer``.
"""

from __future__ import annotations

import math
import zlib
from collections import Counter
from dataclasses import asdict, dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from .bit_analysis import calculate_entropy, lempel_ziv_complexity, runs_test
from .bitstring import full_bytes, to_array
from .compression import lz77_compress

SPECTRUM_LIMIT = 4096
SPECTRAL_FLUX_WINDOW = 64


@dataclass
class TransitionStats:
    count: int
    rate: float
    entropy: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BiasResult:
    percentage: float
    direction: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BlockEntropy:
    block_size: int
    mean: float
    min: float
    max: float

    def to_dict(self) -> dict:
        return asdict(self)


# ============= Bit-value moments =============


def _safe_div(num: float, den: float) -> float:
    return num / den if den else 0.0


def _moments(values: np.ndarray) -> tuple[float, float, float]:
    """Population variance, skewness and excess kurtosis."""
    if values.size == 0:
        return 0.0, 0.0, 0.0
    values = values.astype(np.float64)
    mean = values.mean()
    var = float(((values - mean) ** 2).mean())
    if var == 0:
        return var, 0.0, 0.0
    z = (values - mean) / math.sqrt(var)
    return var, float((z ** 3).mean()), float((z ** 4).mean() - 3)


def calculate_variance(bits: str) -> float:
    return _moments(to_array(bits))[0]


def calculate_standard_deviation(bits: str) -> float:
    return math.sqrt(calculate_variance(bits))


def calculate_skewness(bits: str) -> float:
    return _moments(to_array(bits))[1]


def calculate_kurtosis(bits: str) -> float:
    return _moments(to_array(bits))[2]


# ============= Correlation =============


def calculate_autocorrelation(bits: str, lag: int) -> float:
    """Normalised excess of co-occurring ones at distance ``lag``."""
    n = len(bits)
    if lag <= 0 or lag >= n:
        return 0.0
    arr = to_array(bits).astype(np.int64)
    pairs = n - lag
    observed = int(np.dot(arr[:pairs], arr[lag:]))
    p = arr.sum() / n
    expected = p * p * pairs
    return _safe_div(observed - expected, math.sqrt(expected))


def calculate_serial_correlation(bits: str) -> float:
    return calculate_autocorrelation(bits, 1)


# ============= Transitions / patterns =============


def calculate_transitions(bits: str) -> TransitionStats:
    n = len(bits)
    if n < 2:
        return TransitionStats(count=0, rate=0.0, entropy=0.0)
    arr = to_array(bits)
    count = int(np.count_nonzero(arr[1:] != arr[:-1]))
    pairs = Counter(bits[i:i + 2] for i in range(n - 1))
    return TransitionStats(
        count=count,
        rate=count / (n - 1),
        entropy=_distribution_entropy(pairs.values()),
    )


def calculate_pattern_diversity(bits: str, size: int = 8) -> float:
    """Distinct ``size``-bit windows over the number of windows that could be distinct."""
    windows = len(bits) - size + 1
    if size <= 0 or windows <= 0:
        return 0.0
    unique = len({bits[i:i + size] for i in range(windows)})
    return unique / min(windows, 2 ** size)


def count_unique_patterns(bits: str, size: int) -> int:
    return len({bits[i:i + size] for i in range(len(bits) - size + 1)})


def detect_bias(bits: str) -> BiasResult:
    """Deviation of the ones ratio from 0.5, scaled so 100 means a constant string."""
    n = len(bits)
    if n == 0:
        return BiasResult(percentage=0.0, direction="none")
    ratio = bits.count("1") / n
    direction = "ones" if ratio > 0.5 else "zeros" if ratio < 0.5 else "none"
    return BiasResult(percentage=abs(ratio - 0.5) * 200, direction=direction)


def calculate_block_entropy(bits: str, block_sizes: Iterable[int] = (8, 16)) -> list[BlockEntropy]:
    """Bit-level entropy of consecutive complete blocks, per block size."""
    results = []
    for size in block_sizes:
        entropies = [
            calculate_entropy(bits[i:i + size])
            for i in range(0, len(bits) - size + 1, size)
        ]
        if entropies:
            results.append(BlockEntropy(
                block_size=size,
                mean=float(np.mean(entropies)),
                min=min(entropies),
                max=max(entropies),
            ))
    return results


def calculate_crc32(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


# ============= Byte distributions =============


def _distribution_entropy(counts: Iterable[int]) -> float:
    counts = [c for c in counts if c]
    total = sum(counts)
    if total == 0:
        return 0.0
    return -sum((c / total) * math.log2(c / total) for c in counts)


def min_entropy(data: np.ndarray) -> float:
    if data.size == 0:
        return 0.0
    return -math.log2(np.bincount(data).max() / data.size)


def collision_entropy(data: np.ndarray) -> float:
    return renyi_entropy(data, 2)


def renyi_entropy(data: np.ndarray, alpha: float) -> float:
    if data.size == 0:
        return 0.0
    if alpha == 1:
        return _distribution_entropy(np.bincount(data))
    probs = np.bincount(data)
    probs = probs[probs > 0] / data.size
    return float(math.log2(np.sum(probs ** alpha)) / (1 - alpha))


def _ngrams(data: Sequence[int], n: int) -> Counter:
    return Counter(tuple(data[i:i + n]) for i in range(len(data) - n + 1))


def _median(values: Sequence[float]) -> float:
    return float(np.median(values)) if len(values) else 0.0


def _spectrum(data: np.ndarray) -> np.ndarray:
    if data.size == 0:
        return np.zeros(0)
    return np.abs(np.fft.fft(data[:SPECTRUM_LIMIT].astype(np.float64)))


# ============= Report =============


class AdvancedMetricsCalculator:
    """Grouped advanced metrics report."""

    @classmethod
    def calculate(cls, bits: str, partitions: Optional[list[dict]] = None) -> dict:
        data = full_bytes(bits)
        return {
            "basic": cls._basic(bits, data),
            "entropy": cls._entropy(bits, data),
            "run_length": cls._run_lengths(bits),
            "pattern": cls._patterns(bits, data),
            "transition": cls._transitions(bits),
            "periodicity": cls._periodicity(bits, data),
            "partition": cls._partitions(partitions or []),
            "advanced": cls._advanced(bits, data),
            "byte": cls._bytes(data),
        }

    @classmethod
    def flatten(cls, report: dict) -> dict:
        """Merge the sections into a single ``{metric: value}`` map."""
        flat = {}
        for section in report.values():
            flat.update(section)
        return flat

    @staticmethod
    def _basic(bits: str, data: np.ndarray) -> dict:
        n = len(bits)
        ones = bits.count("1")
        return {
            "total_bits": n,
            "total_bytes": int(data.size),
            "zero_count": n - ones,
            "one_count": ones,
            "zero_percentage": _safe_div(n - ones, n) * 100,
            "one_percentage": _safe_div(ones, n) * 100,
            "bit_density": _safe_div(ones, n),
            "byte_alignment": n % 8,
            "padding_bits": (8 - n % 8) % 8,
            "hamming_weight": ones,
            "parity": "even" if ones % 2 == 0 else "odd",
            "checksum8": int(data.sum()) % 256,
            "crc32": calculate_crc32(data.tobytes()),
        }

    @staticmethod
    def _entropy(bits: str, data: np.ndarray) -> dict:
        n = len(bits)
        counts = np.bincount(data, minlength=256) if data.size else np.zeros(256)
        shannon = _distribution_entropy(counts)

        pairs = _ngrams(data.tolist(), 2)
        joint = _distribution_entropy(pairs.values())
        conditional = max(joint - shannon, 0.0) if pairs else 0.0

        expected = data.size / 256
        chi_squared = float(((counts - expected) ** 2).sum() / expected) if expected else 0.0

        ones = bits.count("1")
        frequency_test = _safe_div(abs(ones - n / 2), math.sqrt(n / 4)) if n else 0.0
        runs = runs_test(bits)

        max_run = int(max(_all_runs(bits), default=0))
        seen: set[int] = set()
        repeats = 0
        for value in data.tolist():
            if value in seen:
                repeats += 1
            seen.add(value)

        ngram2 = Counter(bits[i:i + 2] for i in range(n - 1))
        return {
            "shannon_entropy": shannon,
            "bit_entropy": calculate_entropy(bits),
            "min_entropy": min_entropy(data),
            "collision_entropy": collision_entropy(data),
            "renyi_entropy": renyi_entropy(data, 2),
            "hartley_entropy": math.log2(len(set(data.tolist()))) if data.size else 0.0,
            "kolmogorov_complexity_estimate": lz77_compress(bits).ratio if n else 0.0,
            "approximate_entropy": _distribution_entropy(ngram2.values()) * math.log(2),
            "block_entropy": _distribution_entropy(
                Counter(tuple(data[i:i + 8].tolist()) for i in range(0, data.size, 8)).values()
            ),
            "conditional_entropy": conditional,
            "joint_entropy": joint,
            "mutual_information": shannon - conditional,
            "chi_squared": chi_squared,
            "frequency_test": frequency_test,
            "runs_test": abs(runs.z_score),
            "longest_run_test": _safe_div(max_run, math.log2(n)) if n > 1 else 0.0,
            "serial_correlation": calculate_serial_correlation(bits),
            "birthday_spacings": _safe_div(repeats, data.size),
        }

    @staticmethod
    def _run_lengths(bits: str) -> dict:
        out = {}
        for bit in "01":
            runs = np.array(_runs_of(bits, bit), dtype=np.float64)
            out.update({
                f"mean_run_length_{bit}": float(runs.mean()) if runs.size else 0.0,
                f"max_run_length_{bit}": int(runs.max()) if runs.size else 0,
                f"min_run_length_{bit}": int(runs.min()) if runs.size else 0,
                f"median_run_length_{bit}": _median(runs),
                f"run_length_variance_{bit}": float(runs.var()) if runs.size else 0.0,
            })
        return out

    @staticmethod
    def _patterns(bits: str, data: np.ndarray) -> dict:
        values = data.tolist()
        counts = Counter(values)
        _, skew, kurt = _moments(data)
        n = len(bits)

        windows16 = n - 16 + 1
        repetitions = sum(
            1 for i in range(max(windows16, 0)) if bits[i:i + 8] == bits[i + 8:i + 16]
        )

        huffman_bits = sum(c * math.ceil(-math.log2(c / len(values))) for c in counts.values())
        shannon = _distribution_entropy(counts.values())

        def diversity(k: int) -> float:
            return _safe_div(len(_ngrams(values, k)), len(values) - k + 1) if len(values) >= k else 0.0

        return {
            "unique_4bit_patterns": count_unique_patterns(bits, 4),
            "unique_8bit_patterns": count_unique_patterns(bits, 8),
            "unique_16bit_patterns": count_unique_patterns(bits, 16),
            "most_frequent_byte": counts.most_common(1)[0][0] if counts else 0,
            "least_frequent_byte": min(counts, key=lambda v: (counts[v], v)) if counts else 0,
            "byte_distribution_skewness": skew,
            "byte_distribution_kurtosis": kurt,
            "alphabet_size": len(counts),
            "pattern_regularity_index": _safe_div(count_unique_patterns(bits, 16), windows16) if windows16 > 0 else 0.0,
            "repetition_factor": _safe_div(repetitions, windows16) if windows16 > 0 else 0.0,
            "bigram_diversity": diversity(2),
            "trigram_diversity": diversity(3),
            "fourgram_diversity": diversity(4),
            "lempel_ziv_complexity": lempel_ziv_complexity(bits),
            "compression_ratio_estimate": _safe_div(huffman_bits, len(values) * 8),
            "dictionary_size_estimate": len(_ngrams(values, 4)),
            "redundancy_percentage": (8 - shannon) / 8 * 100 if values else 0.0,
        }

    @staticmethod
    def _transitions(bits: str) -> dict:
        n = len(bits)
        up = sum(1 for i in range(1, n) if bits[i - 1] == "0" and bits[i] == "1")
        down = sum(1 for i in range(1, n) if bits[i - 1] == "1" and bits[i] == "0")
        total = up + down
        return {
            "total_transitions": total,
            "transition_density": _safe_div(total, n - 1) if n > 1 else 0.0,
            "zero_to_one_transitions": up,
            "one_to_zero_transitions": down,
            "transition_ratio": _safe_div(up, down),
            "transition_entropy": calculate_transitions(bits).entropy,
            "edge_density": _safe_div(total, n),
            "change_rate_per_byte": _safe_div(total, n // 8),
        }

    @staticmethod
    def _periodicity(bits: str, data: np.ndarray) -> dict:
        spectrum = _spectrum(data)
        half = spectrum[1: len(spectrum) // 2]
        dominant = int(np.argmax(half)) + 1 if half.size else 0
        total = float(spectrum.sum())

        rolloff = 1.0
        if total > 0:
            cumulative = np.cumsum(spectrum)
            rolloff = float(np.searchsorted(cumulative, 0.85 * total) / len(spectrum))

        half_len = len(bits) // 2
        first, second = bits[:half_len], bits[half_len:2 * half_len]
        matches = sum(1 for a, b in zip(first, second) if a == b)

        values = data.astype(np.float64)
        sum_sq = float((values ** 2).sum())

        return {
            "autocorrelation_lag1": calculate_autocorrelation(bits, 1),
            "autocorrelation_lag8": calculate_autocorrelation(bits, 8),
            "autocorrelation_lag16": calculate_autocorrelation(bits, 16),
            "dominant_period": _safe_div(min(data.size, SPECTRUM_LIMIT), dominant),
            "periodicity_strength": _safe_div(float(half.max()), float(spectrum.mean())) if half.size else 0.0,
            "cross_correlation_score": _safe_div(matches, half_len),
            "durbin_watson_statistic": _safe_div(float((np.diff(values) ** 2).sum()), sum_sq),
            "spectral_flatness": (
                _safe_div(float(np.exp(np.log(spectrum + 1e-10).mean())), float(spectrum.mean()))
                if spectrum.size else 0.0
            ),
            "spectral_centroid": _safe_div(float((np.arange(spectrum.size) * spectrum).sum()), total),
            "spectral_rolloff": rolloff,
            "spectral_flux": _spectral_flux(values),
        }

    @staticmethod
    def _partitions(partitions: list[dict]) -> dict:
        if not partitions:
            return dict.fromkeys((
                "partition_count", "mean_partition_size", "partition_size_variance",
                "smallest_partition", "largest_partition", "partition_entropy_variance",
                "inter_partition_similarity", "partition_boundary_sharpness",
                "partition_homogeneity", "partition_complexity_score",
            ), 0)

        sizes = np.array([p["end"] - p["start"] for p in partitions], dtype=np.float64)
        entropies = np.array([p["entropy"] for p in partitions], dtype=np.float64)
        entropy_var = float(entropies.var())
        diffs = np.abs(np.diff(entropies))
        return {
            "partition_count": len(partitions),
            "mean_partition_size": float(sizes.mean()),
            "partition_size_variance": float(sizes.var()),
            "smallest_partition": int(sizes.min()),
            "largest_partition": int(sizes.max()),
            "partition_entropy_variance": entropy_var,
            "inter_partition_similarity": float((1 - np.minimum(diffs, 1)).mean()) if diffs.size else 0.0,
            "partition_boundary_sharpness": float(diffs.max()) if diffs.size else 0.0,
            "partition_homogeneity": 1 - entropy_var / max(float(entropies.max()), 1.0),
            "partition_complexity_score": len(partitions) * entropy_var,
        }

    @staticmethod
    def _advanced(bits: str, data: np.ndarray) -> dict:
        values = data.astype(np.float64)
        shannon = _distribution_entropy(Counter(data.tolist()).values())
        variance = float(values.var()) if values.size else 0.0
        mean = float(values.mean()) if values.size else 0.0

        hurst = 0.5
        sample = values[:512]
        if sample.size > 1 and sample.std() > 0:
            deviations = np.cumsum(sample - sample.mean())
            rs = (deviations.max() - deviations.min()) / sample.std()
            if rs > 0:
                hurst = math.log(rs) / math.log(sample.size)

        local = [
            count_unique_patterns(bits[i:i + 32], 4) / 29
            for i in range(0, len(bits) - 32 + 1, 32)
        ]

        correct = sum(
            1 for i in range(2, len(bits))
            if (bits[i - 1] if bits[i - 1] == bits[i - 2] else ("0" if bits[i - 1] == "1" else "1")) == bits[i]
        )

        return {
            "hurst_exponent": hurst,
            "fractal_dimension": _fractal_dimension(bits),
            "minimum_description_length": shannon * data.size + len(set(data.tolist())) * 8,
            "algorithmic_information_content": lz77_compress(bits).ratio if bits else 0.0,
            "local_complexity_measure": float(np.mean(local)) if local else 0.0,
            "noise_level_estimate": (
                math.sqrt(float((np.diff(values) ** 2).sum()) / (values.size - 1)) if values.size > 1 else 0.0
            ),
            "signal_to_noise_ratio": 10 * math.log10(mean * mean / variance) if variance and mean else 0.0,
            "predictability_index": _safe_div(correct, len(bits) - 2) if len(bits) > 2 else 0.0,
            "information_density": shannon / 8,
        }

    @staticmethod
    def _bytes(data: np.ndarray) -> dict:
        values = data.tolist()
        if not values:
            return dict.fromkeys((
                "ascii_printable_percentage", "null_byte_count", "high_entropy_byte_count",
                "low_entropy_byte_count", "byte_value_range", "byte_value_mean",
                "byte_value_median", "byte_value_std_dev", "bigram_probability",
                "trigram_probability",
            ), 0)

        byte_entropies = [calculate_entropy(f"{v:08b}") for v in values]

        def ngram_probability(k: int) -> float:
            grams = _ngrams(values, k)
            return max(grams.values()) / (len(values) - k + 1) if grams else 0.0

        return {
            "ascii_printable_percentage": sum(1 for v in values if 32 <= v <= 126) / len(values) * 100,
            "null_byte_count": values.count(0),
            "high_entropy_byte_count": sum(1 for e in byte_entropies if e > 0.9),
            "low_entropy_byte_count": sum(1 for e in byte_entropies if e < 0.3),
            "byte_value_range": max(values) - min(values),
            "byte_value_mean": float(data.mean()),
            "byte_value_median": _median(values),
            "byte_value_std_dev": float(data.std()),
            "bigram_probability": ngram_probability(2),
            "trigram_probability": ngram_probability(3),
        }


def _runs_of(bits: str, bit: str) -> list[int]:
    return [len(run) for run in bits.split("1" if bit == "0" else "0") if run]


def _all_runs(bits: str) -> list[int]:
    return _runs_of(bits, "0") + _runs_of(bits, "1")


def _spectral_flux(values: np.ndarray) -> float:
    w = SPECTRAL_FLUX_WINDOW
    windows = values.size // w
    if windows < 3:
        return 0.0
    flux = 0.0
    for i in range(0, values.size - 2 * w, w):
        a = np.abs(np.fft.fft(values[i:i + w]))
        b = np.abs(np.fft.fft(values[i + w:i + 2 * w]))
        flux += float(np.sqrt(((b - a) ** 2).sum()))
    return flux / windows


def _fractal_dimension(bits: str) -> float:
    """Box-counting slope over scales 2..32."""
    scales = np.array([2, 4, 8, 16, 32], dtype=np.float64)
    counts = []
    for scale in scales.astype(int):
        counts.append(sum(
            1 for i in range(0, len(bits) - scale, scale) if "1" in bits[i:i + scale]
        ))
    slope = np.polyfit(np.log(scales), np.log(np.array(counts) + 1.0), 1)[0]
    return float(-slope)


def analyze(bits: str, entropy: float) -> dict:
    """Compact advanced summary used by the analysis endpoint."""
    var, skew, kurt = _moments(to_array(bits))
    runs = runs_test(bits)
    return {
        "entropy": entropy,
        "variance": var,
        "standard_deviation": math.sqrt(var),
        "skewness": skew,
        "kurtosis": kurt,
        "serial_correlation": calculate_serial_correlation(bits),
        "autocorrelation": [calculate_autocorrelation(bits, lag) for lag in range(1, 17)],
        "transitions": calculate_transitions(bits).to_dict(),
        "bias": detect_bias(bits).to_dict(),
        "block_entropy": [b.to_dict() for b in calculate_block_entropy(bits, (8, 16, 32))],
        "runs": runs.to_dict(),
        "pattern_diversity": calculate_pattern_diversity(bits, 8),
    }
