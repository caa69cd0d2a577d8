"""
Built-in anomaly detectors.

Each detector has the signature ``detect(bits, min_length) -> list[dict]``;
every finding carries at least ``position`` and ``length`` (in bits) and
may add detector-specific fields.
"""

from __future__ import annotations

from typing import Callable

from .bitstring import UnknownOperationError

Detector = Callable[[str, int], list]

MAX_REPEAT_PATTERN = 20
MIN_REPEATS = 3
SPARSE_LOW = 15
SPARSE_HIGH = 85


def detect_palindromes(bits: str, min_length: int) -> list[dict]:
    """Odd-length palindromes centred on each bit, reported at their widest."""
    results = []
    n = len(bits)
    for i in range(n):
        radius = 1
        while i - radius >= 0 and i + radius < n and bits[i - radius] == bits[i + radius]:
            radius += 1
        length = radius * 2 - 1
        if length >= min_length:
            results.append({"position": i - radius + 1, "length": length})
    return results


def detect_repeating_patterns(bits: str, min_length: int) -> list[dict]:
    """Patterns of ``min_length``..20 bits repeated at least 3 times in a row."""
    results = []
    n = len(bits)
    for size in range(max(1, min_length), MAX_REPEAT_PATTERN + 1):
        for i in range(0, n - size * MIN_REPEATS + 1):
            pattern = bits[i:i + size]
            repeats = 1
            pos = i + size
            while pos + size <= n and bits[pos:pos + size] == pattern:
                repeats += 1
                pos += size
            if repeats >= MIN_REPEATS:
                results.append({
                    "position": i,
                    "length": size * repeats,
                    "pattern": pattern,
                    "repeats": repeats,
                })
    return results


def detect_alternating(bits: str, min_length: int) -> list[dict]:
    results = []
    if not bits:
        return results
    start = 0
    for i in range(1, len(bits) + 1):
        if i == len(bits) or bits[i] == bits[i - 1]:
            if i - start >= min_length:
                results.append({"position": start, "length": i - start})
            start = i
    return results


def detect_long_runs(bits: str, min_length: int) -> list[dict]:
    results = []
    if not bits:
        return results
    start = 0
    for i in range(1, len(bits) + 1):
        if i == len(bits) or bits[i] != bits[start]:
            if i - start >= min_length:
                results.append({"position": start, "length": i - start, "bit": bits[start]})
            start = i
    return results


def detect_sparse_regions(bits: str, window: int) -> list[dict]:
    """Half-overlapping windows whose ones density is below 15% or above 85%."""
    results = []
    if window <= 0:
        return results
    step = max(1, window // 2)
    for i in range(0, len(bits) - window + 1, step):
        density = bits.count("1", i, i + window) / window * 100
        if density < SPARSE_LOW or density > SPARSE_HIGH:
            results.append({"position": i, "length": window, "density": density})
    return results


def detect_byte_misalignment(bits: str, min_length: int) -> list[dict]:
    remainder = len(bits) % 8
    if remainder == 0:
        return []
    return [{"position": len(bits) - remainder, "length": remainder}]


DETECTORS: dict[str, Detector] = {
    "palindrome": detect_palindromes,
    "repeating_pattern": detect_repeating_patterns,
    "alternating": detect_alternating,
    "long_run": detect_long_runs,
    "sparse_region": detect_sparse_regions,
    "byte_misalignment": detect_byte_misalignment,
}


def get_detector(name: str) -> Detector:
    try:
        return DETECTORS[name]
    except KeyError:
        raise UnknownOperationError(f"Unknown detector: {name}") from None
