"""
Bit string primitives shared by every analysis and codec module.

A bit string is a ``str`` made only of the characters ``'0'`` and ``'1'``,
most significant bit first. Helpers here validate such strings and convert
them to bytes or numpy arrays.
"""

from __future__ import annotations

import re
from typing import Iterator

import numpy as np

_NON_BINARY = re.compile(r"[^01]")


class InvalidBitStringError(ValueError):
    """Raised when a value contains characters other than 0 and 1."""


class UnknownOperationError(ValueError):
    """Raised when an operation, codec or transform name is not registered."""


class UnknownMetricError(ValueError):
    """Raised when a metric id is not registered."""


def is_bits(value: str) -> bool:
    return _NON_BINARY.search(value) is None


def validate_bits(bits: str) -> str:
    """Return ``bits`` unchanged if it is a valid bit string.

    Raises:
        InvalidBitStringError: If any character is not 0 or 1.
    """
    match = _NON_BINARY.search(bits)
    if match:
        raise InvalidBitStringError(
            f"Invalid character {match.group()!r} at position {match.start()}"
        )
    return bits


def clean_bits(text: str) -> str:
    """Strip everything that is not a 0 or 1 (used for text file imports)."""
    return _NON_BINARY.sub("", text)


def bytes_to_bits(data: bytes) -> str:
    return "".join(f"{b:08b}" for b in data)


def iter_bytes(bits: str, pad: bool = True) -> Iterator[int]:
    """Yield byte values from consecutive 8-bit chunks.

    The trailing partial chunk is right-padded with zeros when ``pad`` is
    set, otherwise it is dropped.
    """
    for i in range(0, len(bits), 8):
        chunk = bits[i:i + 8]
        if len(chunk) < 8:
            if not pad:
                return
            chunk = chunk.ljust(8, "0")
        yield int(chunk, 2)


def bits_to_bytes(bits: str) -> bytes:
    return bytes(iter_bytes(bits, pad=True))


def full_bytes(bits: str) -> np.ndarray:
    """Byte values of the complete 8-bit chunks only, as a uint8 array."""
    return np.fromiter(iter_bytes(bits, pad=False), dtype=np.uint8)


def to_array(bits: str) -> np.ndarray:
    """Convert a bit string to a uint8 array of 0/1 values."""
    if not bits:
        return np.zeros(0, dtype=np.uint8)
    return np.frombuffer(bits.encode("ascii"), dtype=np.uint8) - ord("0")


def from_array(arr: np.ndarray) -> str:
    """Inverse of :func:`to_array`."""
    if arr.size == 0:
        return ""
    return (np.asarray(arr, dtype=np.uint8) + ord("0")).tobytes().decode("ascii")
