"""
Compression heuristics over bit strings.

These are small, self-describing formats meant for inspecting how
compressible a payload is, not interchange formats:

- RLE: 9-bit records (8-bit run count, then the bit)
- Delta / MTF: byte-wise transforms, trailing partial byte zero padded
- BWT: per 8-bit block, last column of the sorted rotations
- LZ77: literal ``0b`` or match ``1 oooo o llll`` tokens
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass

from .bitstring import iter_bytes

RLE_MAX_RUN = 255

LZ77_WINDOW = 32
LZ77_LOOKAHEAD = 16
LZ77_MIN_MATCH = 3
_LZ77_OFFSET_BITS = 5
_LZ77_LENGTH_BITS = 4


@dataclass
class Lz77Result:
    compressed: str
    ratio: float

    def to_dict(self) -> dict:
        return {"compressed": self.compressed, "ratio": self.ratio}


@dataclass
class HuffmanStats:
    frequencies: dict[str, int]
    entropy: float

    def to_dict(self) -> dict:
        return {"frequencies": self.frequencies, "entropy": self.entropy}


# ============= Run-length =============


def rle_encode(bits: str) -> str:
    if not bits:
        return ""
    out = []
    current = bits[0]
    count = 1
    for b in bits[1:]:
        if b == current and count < RLE_MAX_RUN:
            count += 1
        else:
            out.append(f"{count:08b}{current}")
            current = b
            count = 1
    out.append(f"{count:08b}{current}")
    return "".join(out)


def rle_decode(encoded: str) -> str:
    out = []
    for i in range(0, len(encoded), 9):
        record = encoded[i:i + 9]
        if len(record) < 9:
            break
        out.append(record[8] * int(record[:8], 2))
    return "".join(out)


# ============= Delta / move-to-front =============


def delta_encode(bits: str) -> str:
    values = list(iter_bytes(bits))
    if not values:
        return ""
    out = [values[0]]
    out.extend((values[i] - values[i - 1]) % 256 for i in range(1, len(values)))
    return "".join(f"{v:08b}" for v in out)


def delta_decode(bits: str) -> str:
    deltas = list(iter_bytes(bits))
    if not deltas:
        return ""
    prev = deltas[0]
    out = [prev]
    for d in deltas[1:]:
        prev = (prev + d) % 256
        out.append(prev)
    return "".join(f"{v:08b}" for v in out)


def mtf_encode(bits: str) -> str:
    alphabet = list(range(256))
    out = []
    for value in iter_bytes(bits):
        index = alphabet.index(value)
        out.append(f"{index:08b}")
        alphabet.pop(index)
        alphabet.insert(0, value)
    return "".join(out)


def mtf_decode(bits: str) -> str:
    alphabet = list(range(256))
    out = []
    for index in iter_bytes(bits):
        value = alphabet.pop(index)
        alphabet.insert(0, value)
        out.append(f"{value:08b}")
    return "".join(out)


# ============= Burrows-Wheeler =============


def bwt_encode(bits: str) -> str:
    """Block-wise BWT; each 8-bit block is replaced by its last column.

    No primary index is kept, so the transform is not invertible.
    """
    out = []
    for i in range(0, len(bits), 8):
        block = bits[i:i + 8].ljust(8, "0")
        rotations = sorted(block[k:] + block[:k] for k in range(len(block)))
        out.append("".join(r[-1] for r in rotations))
    return "".join(out)


# ============= LZ77 =============


def lz77_compress(bits: str) -> Lz77Result:
    """Greedy LZ77 over a 32-bit window with up to 16-bit matches.

    Offsets (1..32) and lengths (1..16) are stored minus one so that they
    fit in 5 and 4 bits respectively.
    """
    out = []
    i = 0
    n = len(bits)
    while i < n:
        best_offset, best_length = 0, 0
        for j in range(max(0, i - LZ77_WINDOW), i):
            length = 0
            while (
                length < LZ77_LOOKAHEAD
                and i + length < n
                and bits[j + length] == bits[i + length]
            ):
                length += 1
            if length > best_length:
                best_offset, best_length = i - j, length

        if best_length >= LZ77_MIN_MATCH:
            out.append(
                f"1{best_offset - 1:0{_LZ77_OFFSET_BITS}b}{best_length - 1:0{_LZ77_LENGTH_BITS}b}"
            )
            i += best_length
        else:
            out.append("0" + bits[i])
            i += 1

    compressed = "".join(out)
    ratio = len(compressed) / n if n else 1.0
    return Lz77Result(compressed=compressed, ratio=ratio)


def lz77_decompress(compressed: str) -> str:
    out: list[str] = []
    i = 0
    token_len = 1 + _LZ77_OFFSET_BITS + _LZ77_LENGTH_BITS
    while i < len(compressed):
        if compressed[i] == "0":
            if i + 1 >= len(compressed):
                raise ValueError("Truncated LZ77 literal")
            out.append(compressed[i + 1])
            i += 2
            continue
        token = compressed[i:i + token_len]
        if len(token) < token_len:
            raise ValueError("Truncated LZ77 match token")
        offset = int(token[1:1 + _LZ77_OFFSET_BITS], 2) + 1
        length = int(token[1 + _LZ77_OFFSET_BITS:], 2) + 1
        if offset > len(out):
            raise ValueError(f"LZ77 offset {offset} points before start of output")
        start = len(out) - offset
        # Overlapping copies are valid, so copy one bit at a time
        for k in range(length):
            out.append(out[start + k])
        i += token_len
    return "".join(out)


# ============= Byte statistics / bit planes =============


def huffman_stats(bits: str) -> HuffmanStats:
    """Byte frequencies (keyed by 8-bit string) and byte-level entropy."""
    freq = Counter(f"{b:08b}" for b in iter_bytes(bits))
    total = sum(freq.values())
    entropy = 0.0
    for count in freq.values():
        p = count / total
        entropy -= p * math.log2(p)
    return HuffmanStats(frequencies=dict(freq), entropy=entropy)


def separate_bit_planes(bits: str) -> list[str]:
    """Split into 8 planes; plane ``p`` holds bit ``p`` (MSB first) of each byte."""
    planes: list[list[str]] = [[] for _ in range(8)]
    for value in iter_bytes(bits):
        byte = f"{value:08b}"
        for p in range(8):
            planes[p].append(byte[p])
    return ["".join(p) for p in planes]


def combine_bit_planes(planes: list[str]) -> str:
    if len(planes) != 8:
        return ""
    length = max((len(p) for p in planes), default=0)
    out = []
    for i in range(length):
        for plane in planes:
            out.append(plane[i] if i < len(plane) else "0")
    return "".join(out)


COMPRESSORS = {
    "rle": (rle_encode, rle_decode),
    "delta": (delta_encode, delta_decode),
    "mtf": (mtf_encode, mtf_decode),
    "bwt": (bwt_encode, None),
    "lz77": (lambda bits: lz77_compress(bits).compressed, lz77_decompress),
}
