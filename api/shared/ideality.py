"""
File ideality: the share of bits that sit inside consecutive repetitions
of a fixed-width window.

``1010`` is fully ideal for window 2 (``10`` + ``10``); ``100110`` is not.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional


@dataclass
class IdealityResult:
    window_size: int
    repeating_count: int
    total_bits: int
    ideality_percentage: int

    def to_dict(self) -> dict:
        return asdict(self)


def calculate_ideality(
    bits: str,
    window: int,
    start: int = 0,
    end: Optional[int] = None,
) -> IdealityResult:
    """Ideality of ``bits[start:end]`` for one window size.

    Scans left to right; wherever a window equals the one after it, the whole
    run of repetitions is counted and skipped, otherwise the scan advances
    by one bit.
    """
    section = bits[start:end]
    total = len(section)
    if window <= 0 or total < window * 2:
        return IdealityResult(window, 0, total, 0)

    repeating = 0
    i = 0
    while i <= total - window * 2:
        pattern = section[i:i + window]
        if section[i + window:i + window * 2] != pattern:
            i += 1
            continue
        pos = i + window * 2
        while pos + window <= total and section[pos:pos + window] == pattern:
            pos += window
        repeating += pos - i
        i = pos

    return IdealityResult(window, repeating, total, (repeating * 100) // total)


def calculate_all_idealities(
    bits: str,
    start: int = 0,
    end: Optional[int] = None,
    max_window: Optional[int] = None,
) -> list[IdealityResult]:
    """Ideality for every window from 2 to half the section length."""
    length = len(bits[start:end])
    upper = length // 2
    if max_window is not None:
        upper = min(upper, max_window)
    return [calculate_ideality(bits, w, start, end) for w in range(2, upper + 1)]


def get_top_ideality_windows(
    bits: str,
    top_n: int = 10,
    start: int = 0,
    end: Optional[int] = None,
    max_window: Optional[int] = None,
) -> list[IdealityResult]:
    results = calculate_all_idealities(bits, start, end, max_window)
    # sorted() is stable, so equal percentages keep ascending window order
    return sorted(results, key=lambda r: r.ideality_percentage, reverse=True)[:top_n]
