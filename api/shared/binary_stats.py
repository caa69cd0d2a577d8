"""
Quick statistics for a bit string.

These are the numbers shown beside every file and partition: counts,
percentages, entropy, run lengths and a rough compressed size.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from itertools import product
from typing import Optional

import numpy as np

from .bit_analysis import calculate_entropy
from .bitstring import to_array


@dataclass
class RunInfo:
    start: int
    length: int


@dataclass
class BinaryStats:
    total_bits: int
    total_bytes: int
    zero_count: int
    one_count: int
    zero_percentage: float
    one_percentage: float
    entropy: float
    mean_run_length: float
    longest_zero_run: Optional[RunInfo]
    longest_one_run: Optional[RunInfo]
    estimated_compressed_size: int

    def to_dict(self) -> dict:
        return asdict(self)


def run_lengths(bits: str) -> np.ndarray:
    """Lengths of the maximal runs of equal bits, in order."""
    if not bits:
        return np.zeros(0, dtype=np.int64)
    arr = to_array(bits)
    edges = np.flatnonzero(arr[1:] != arr[:-1]) + 1
    bounds = np.concatenate(([0], edges, [len(arr)]))
    return np.diff(bounds)


def find_longest_run(bits: str, bit: str) -> Optional[RunInfo]:
    """Earliest longest run of ``bit``, or None if the bit never occurs."""
    best: Optional[RunInfo] = None
    start = -1
    for i, b in enumerate(bits + ("1" if bit == "0" else "0")):
        if b == bit:
            if start < 0:
                start = i
        elif start >= 0:
            length = i - start
            if best is None or length > best.length:
                best = RunInfo(start=start, length=length)
            start = -1
    return best


def analyze(bits: str) -> BinaryStats:
    n = len(bits)
    ones = bits.count("1")
    zeros = n - ones
    entropy = calculate_entropy(bits)
    runs = run_lengths(bits)
    return BinaryStats(
        total_bits=n,
        total_bytes=math.ceil(n / 8),
        zero_count=zeros,
        one_count=ones,
        zero_percentage=(zeros / n * 100) if n else 0.0,
        one_percentage=(ones / n * 100) if n else 0.0,
        entropy=entropy,
        mean_run_length=float(runs.mean()) if runs.size else 0.0,
        longest_zero_run=find_longest_run(bits, "0"),
        longest_one_run=find_longest_run(bits, "1"),
        estimated_compressed_size=math.ceil(n * entropy / 8),
    )


def find_unique_boundary(bits: str, min_len: int = 8, max_len: int = 32) -> Optional[str]:
    """Shortest sequence (lexicographically first per length) absent from ``bits``.

    Returns None when every candidate in the length range occurs.
    """
    for length in range(max(1, min_len), max_len + 1):
        seen = {bits[i:i + length] for i in range(len(bits) - length + 1)}
        # Pigeonhole: at most len(seen) + 1 candidates need checking
        for combo in product("01", repeat=length):
            candidate = "".join(combo)
            if candidate not in seen:
                return candidate
    return None
