"""
Statistical analysis functions over bit strings.

Tests treat the payload as a sequence of fair coin flips; p-values come from
scipy so callers can compare against a significance level directly.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass

import numpy as np
from scipy import special, stats

from .bitstring import to_array

SPECTRAL_SAMPLE = 256
SPECTRAL_THRESHOLD = 0.1
SPECTRAL_PEAKS = 5
MAX_REPEAT_PATTERN = 32


@dataclass
class RepeatResult:
    pattern: str
    count: int
    position: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ChiSquareResult:
    statistic: float
    p_value: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RunsTestResult:
    num_runs: int
    expected_runs: float
    z_score: float
    p_value: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SpectralPeak:
    frequency: int
    magnitude: float

    def to_dict(self) -> dict:
        return asdict(self)


def calculate_entropy(bits: str) -> float:
    """Shannon entropy (bits per symbol) of the 0/1 distribution."""
    n = len(bits)
    if n == 0:
        return 0.0
    ones = bits.count("1")
    entropy = 0.0
    for count in (ones, n - ones):
        if count:
            p = count / n
            entropy -= p * math.log2(p)
    return entropy


def autocorrelation(bits: str, lag: int) -> float:
    """Mean product of +/-1 symbols ``lag`` positions apart."""
    n = len(bits)
    if lag < 0 or lag >= n:
        return 0.0
    signs = to_array(bits).astype(np.int64) * 2 - 1
    return float(np.dot(signs[: n - lag], signs[lag:]) / (n - lag))


def find_longest_repeat(bits: str) -> RepeatResult:
    """Pattern with the most consecutive repetitions.

    Pattern lengths from 2 up to min(32, n/2) are scanned. Ties on count are
    resolved in favour of the longer pattern, then the earliest position.
    """
    best = RepeatResult(pattern="", count=0, position=0)
    n = len(bits)
    max_len = min(MAX_REPEAT_PATTERN, n // 2)
    for length in range(2, max_len + 1):
        for i in range(0, n - 2 * length + 1):
            pattern = bits[i:i + length]
            count = 1
            pos = i + length
            while pos + length <= n and bits[pos:pos + length] == pattern:
                count += 1
                pos += length
            if count > best.count or (count == best.count and length > len(best.pattern)):
                best = RepeatResult(pattern=pattern, count=count, position=i)
    return best


def chi_square_test(bits: str) -> ChiSquareResult:
    """Goodness of fit of the 0/1 counts against an even split (1 dof)."""
    n = len(bits)
    if n == 0:
        return ChiSquareResult(statistic=0.0, p_value=1.0)
    ones = bits.count("1")
    expected = n / 2
    statistic = ((ones - expected) ** 2 + ((n - ones) - expected) ** 2) / expected
    return ChiSquareResult(statistic=statistic, p_value=float(stats.chi2.sf(statistic, 1)))


def runs_test(bits: str) -> RunsTestResult:
    """Wald-Wolfowitz runs test."""
    n = len(bits)
    if n == 0:
        return RunsTestResult(num_runs=0, expected_runs=0.0, z_score=0.0, p_value=1.0)
    arr = to_array(bits)
    ones = int(arr.sum())
    zeros = n - ones
    num_runs = 1 + int(np.count_nonzero(arr[1:] != arr[:-1]))

    expected = 2 * ones * zeros / n + 1
    variance = 0.0
    if n > 1:
        variance = (2 * ones * zeros * (2 * ones * zeros - n)) / (n * n * (n - 1))
    if variance > 0:
        z_score = (num_runs - expected) / math.sqrt(variance)
        p_value = float(special.erfc(abs(z_score) / math.sqrt(2)))
    else:
        z_score, p_value = 0.0, 1.0
    return RunsTestResult(
        num_runs=num_runs, expected_runs=expected, z_score=z_score, p_value=p_value
    )


def spectral_analysis(bits: str) -> list[SpectralPeak]:
    """Dominant DFT frequencies of the first 256 symbols mapped to +/-1."""
    sample = bits[:SPECTRAL_SAMPLE]
    n = len(sample)
    if n < 3:
        return []
    signs = to_array(sample).astype(np.float64) * 2 - 1
    magnitudes = np.abs(np.fft.fft(signs)) / n
    peaks = [
        SpectralPeak(frequency=k, magnitude=float(magnitudes[k]))
        for k in range(1, (n + 1) // 2)
        if magnitudes[k] > SPECTRAL_THRESHOLD
    ]
    peaks.sort(key=lambda p: p.magnitude, reverse=True)
    return peaks[:SPECTRAL_PEAKS]


def lempel_ziv_complexity(bits: str) -> int:
    """Number of phrases in an LZ78 parse, counting an unfinished last phrase."""
    vocabulary: set[str] = set()
    phrase = ""
    complexity = 0
    for bit in bits:
        candidate = phrase + bit
        if candidate in vocabulary:
            phrase = candidate
        else:
            vocabulary.add(candidate)
            complexity += 1
            phrase = ""
    if phrase:
        complexity += 1
    return complexity
