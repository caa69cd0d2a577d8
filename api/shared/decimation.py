"""
Series decimation for chart payloads.

Sliding-window profiles of long bit strings can have millions of points;
LTTB (Largest-Triangle-Three-Buckets) reduces them to a chart-sized series
while keeping the peaks and valleys that uniform subsampling would drop.
"""

from __future__ import annotations

import numpy as np

from .bitstring import to_array


def lttb_indices(y, target_points: int) -> np.ndarray:
    """Indices of the points kept by LTTB over positions 0..n-1.

    Args:
        y: Series values. Shape (n,).
        target_points: Number of points to keep. Values below 3 keep everything.

    Returns:
        Ascending array of selected indices; first and last are always kept.
    """
    y = np.asarray(y, dtype=np.float64)
    n = len(y)
    if n <= target_points or target_points < 3:
        return np.arange(n)

    keep = np.empty(target_points, dtype=np.intp)
    keep[0], keep[-1] = 0, n - 1
    width = (n - 2) / (target_points - 2)
    prev = 0

    for b in range(1, target_points - 1):
        lo = int(1 + (b - 1) * width)
        hi = min(int(1 + b * width), n - 1)
        nxt_hi = min(int(1 + (b + 1) * width), n - 1)
        if nxt_hi <= hi:
            nxt_hi = min(hi + 1, n)

        # Third triangle vertex: centroid of the next bucket
        cx = (hi + nxt_hi - 1) / 2
        cy = y[hi:nxt_hi].mean()

        xs = np.arange(lo, hi, dtype=np.float64)
        areas = np.abs((prev - cx) * (y[lo:hi] - y[prev]) - (prev - xs) * (cy - y[prev]))
        prev = lo + int(np.argmax(areas))
        keep[b] = prev

    return keep


def entropy_profile(bits: str, window: int = 64, step: int = 32) -> tuple[np.ndarray, np.ndarray]:
    """Shannon entropy of each sliding window.

    Returns:
        ``(positions, entropies)`` where positions are window start offsets.
    """
    n = len(bits)
    if window <= 0 or step <= 0 or n < window:
        return np.zeros(0, dtype=np.int64), np.zeros(0)

    ones = np.concatenate(([0], np.cumsum(to_array(bits), dtype=np.int64)))
    positions = np.arange(0, n - window + 1, step)
    p = (ones[positions + window] - ones[positions]) / window
    with np.errstate(divide="ignore", invalid="ignore"):
        h = -(p * np.log2(p) + (1 - p) * np.log2(1 - p))
    return positions, np.nan_to_num(h, nan=0.0)


def decimate_profile(positions: np.ndarray, values: np.ndarray, max_points: int) -> tuple[list, list]:
    idx = lttb_indices(values, max_points)
    return positions[idx].tolist(), values[idx].tolist()
