"""
Bit-order transforms.

Length-preserving rearrangements of a bit string. Byte-oriented transforms
zero pad the trailing partial byte first.
"""

from __future__ import annotations

from typing import Callable

from .bitstring import UnknownOperationError


def reverse_bits(bits: str) -> str:
    return bits[::-1]


def reverse_bytes(bits: str) -> str:
    chunks = [bits[i:i + 8].ljust(8, "0") for i in range(0, len(bits), 8)]
    return "".join(reversed(chunks))


def rotate_left(bits: str, n: int = 1) -> str:
    if not bits:
        return ""
    shift = n % len(bits)
    return bits[shift:] + bits[:shift]


def rotate_right(bits: str, n: int = 1) -> str:
    if not bits:
        return ""
    shift = n % len(bits)
    if shift == 0:
        return bits
    return bits[-shift:] + bits[:-shift]


def nibble_swap(bits: str) -> str:
    out = []
    for i in range(0, len(bits), 8):
        byte = bits[i:i + 8].ljust(8, "0")
        out.append(byte[4:] + byte[:4])
    return "".join(out)


def xor_pattern(bits: str, pattern: str) -> str:
    """XOR with ``pattern`` repeated cyclically; an empty pattern is the identity."""
    if not pattern:
        return bits
    plen = len(pattern)
    return "".join("0" if b == pattern[i % plen] else "1" for i, b in enumerate(bits))


def complement(bits: str) -> str:
    return bits.translate(str.maketrans("01", "10"))


def perfect_shuffle(bits: str) -> str:
    """Riffle the two halves together; an odd trailing bit stays last."""
    half = len(bits) // 2
    out = [bits[i] + bits[half + i] for i in range(half)]
    if len(bits) % 2:
        out.append(bits[-1])
    return "".join(out)


def perfect_unshuffle(bits: str) -> str:
    tail = ""
    if len(bits) % 2:
        bits, tail = bits[:-1], bits[-1]
    return bits[0::2] + bits[1::2] + tail


TRANSFORMS: dict[str, Callable[..., str]] = {
    "reverse_bits": reverse_bits,
    "reverse_bytes": reverse_bytes,
    "rotate_left": rotate_left,
    "rotate_right": rotate_right,
    "nibble_swap": nibble_swap,
    "xor_pattern": xor_pattern,
    "complement": complement,
    "perfect_shuffle": perfect_shuffle,
    "perfect_unshuffle": perfect_unshuffle,
}


def apply_transform(name: str, bits: str, params: dict | None = None) -> str:
    """Apply a named transform; ``params`` are passed as keyword arguments."""
    fn = TRANSFORMS.get(name)
    if fn is None:
        raise UnknownOperationError(f"Unknown transform: {name}")
    return fn(bits, **(params or {}))
