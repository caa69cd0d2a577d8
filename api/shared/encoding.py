"""
Line and channel codecs over bit strings.

Every function takes a bit string and returns a bit string (``base64_encode``
returns text). Inputs are processed left to right without shared state, and
empty input always yields empty output.

The ``CODECS`` registry exposes encoder/decoder pairs by name so that the
playground and file routes can apply them generically.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .bitstring import UnknownOperationError, iter_bytes

BASE64_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"


def _flip(bit: str) -> str:
    return "1" if bit == "0" else "0"


# ============= Gray code =============


def binary_to_gray(bits: str) -> str:
    if not bits:
        return ""
    out = [bits[0]]
    for i in range(1, len(bits)):
        out.append("1" if bits[i] != bits[i - 1] else "0")
    return "".join(out)


def gray_to_binary(bits: str) -> str:
    if not bits:
        return ""
    out = [bits[0]]
    for i in range(1, len(bits)):
        out.append(_flip(out[-1]) if bits[i] == "1" else out[-1])
    return "".join(out)


# ============= Manchester / differential / NRZI =============


def manchester_encode(bits: str) -> str:
    """IEEE 802.3 convention: 0 -> 01, 1 -> 10."""
    return "".join("10" if b == "1" else "01" for b in bits)


def manchester_decode(bits: str, strict: bool = False) -> str:
    """Decode Manchester pairs.

    Invalid pairs (00, 11) and a dangling final bit decode to ``?`` unless
    ``strict`` is set, in which case a ValueError is raised.
    """
    out = []
    for i in range(0, len(bits), 2):
        pair = bits[i:i + 2]
        if pair == "01":
            out.append("0")
        elif pair == "10":
            out.append("1")
        elif strict:
            raise ValueError(f"Invalid Manchester pair {pair!r} at position {i}")
        else:
            out.append("?")
    return "".join(out)


def differential_encode(bits: str) -> str:
    if not bits:
        return ""
    out = [bits[0]]
    for i in range(1, len(bits)):
        out.append("1" if bits[i] != bits[i - 1] else "0")
    return "".join(out)


def differential_decode(bits: str) -> str:
    if not bits:
        return ""
    out = [bits[0]]
    for i in range(1, len(bits)):
        out.append(_flip(out[-1]) if bits[i] == "1" else out[-1])
    return "".join(out)


def nrzi_encode(bits: str) -> str:
    """Non-return-to-zero inverted: the level toggles on every 1."""
    level = "0"
    out = []
    for b in bits:
        if b == "1":
            level = _flip(level)
        out.append(level)
    return "".join(out)


def nrzi_decode(bits: str) -> str:
    prev = "0"
    out = []
    for b in bits:
        out.append("1" if b != prev else "0")
        prev = b
    return "".join(out)


# ============= Hamming(7,4) =============


def hamming_encode_74(bits: str) -> str:
    """Encode each 4-bit group (zero padded) as ``p1 p2 d1 p4 d2 d3 d4``."""
    out = []
    for i in range(0, len(bits), 4):
        d = [int(c) for c in bits[i:i + 4].ljust(4, "0")]
        p1 = d[0] ^ d[1] ^ d[3]
        p2 = d[0] ^ d[2] ^ d[3]
        p4 = d[1] ^ d[2] ^ d[3]
        out.append(f"{p1}{p2}{d[0]}{p4}{d[1]}{d[2]}{d[3]}")
    return "".join(out)


def hamming_decode_74(bits: str) -> str:
    """Decode 7-bit blocks, correcting up to one flipped bit per block."""
    out = []
    for i in range(0, len(bits), 7):
        c = [int(ch) for ch in bits[i:i + 7].ljust(7, "0")]
        s1 = c[0] ^ c[2] ^ c[4] ^ c[6]
        s2 = c[1] ^ c[2] ^ c[5] ^ c[6]
        s4 = c[3] ^ c[4] ^ c[5] ^ c[6]
        error_pos = s1 + 2 * s2 + 4 * s4
        if error_pos:
            c[error_pos - 1] ^= 1
        out.append(f"{c[2]}{c[4]}{c[5]}{c[6]}")
    return "".join(out)


# ============= Text / framing =============


def base64_encode(bits: str) -> str:
    """Map 6-bit groups (zero padded) onto the standard base64 alphabet."""
    return "".join(
        BASE64_ALPHABET[int(bits[i:i + 6].ljust(6, "0"), 2)]
        for i in range(0, len(bits), 6)
    )


def base64_decode(text: str) -> str:
    """Inverse of :func:`base64_encode`; padding bits are kept."""
    out = []
    for ch in text:
        idx = BASE64_ALPHABET.find(ch)
        if idx < 0:
            raise ValueError(f"Invalid base64 symbol {ch!r}")
        out.append(f"{idx:06b}")
    return "".join(out)


def bit_stuff(bits: str) -> str:
    """HDLC bit stuffing: insert a 0 after every five consecutive 1s."""
    out = []
    ones = 0
    for b in bits:
        out.append(b)
        if b == "1":
            ones += 1
            if ones == 5:
                out.append("0")
                ones = 0
        else:
            ones = 0
    return "".join(out)


def bit_unstuff(bits: str) -> str:
    out = []
    ones = 0
    for b in bits:
        if ones == 5 and b == "0":
            ones = 0
            continue
        out.append(b)
        ones = ones + 1 if b == "1" else 0
    return "".join(out)


# ============= Byte-wise codecs =============


def zigzag_encode(bits: str) -> str:
    """ZigZag-map each byte, read as a two's complement int8."""
    out = []
    for b in iter_bytes(bits):
        signed = b - 256 if b & 0x80 else b
        out.append(f"{((signed << 1) ^ (signed >> 7)) & 0xFF:08b}")
    return "".join(out)


def zigzag_decode(bits: str) -> str:
    out = []
    for z in iter_bytes(bits):
        out.append(f"{((z >> 1) ^ -(z & 1)) & 0xFF:08b}")
    return "".join(out)


def interleave(bits: str) -> str:
    """Merge the first and second halves bit by bit.

    For odd lengths the last bit is carried through unchanged at the end.
    """
    half = len(bits) // 2
    first, second = bits[:half], bits[half:]
    out = [a + b for a, b in zip(first, second)]
    if len(bits) % 2:
        out.append(bits[-1])
    return "".join(out)


def deinterleave(bits: str) -> str:
    """Inverse of :func:`interleave`."""
    tail = ""
    if len(bits) % 2:
        bits, tail = bits[:-1], bits[-1]
    return bits[0::2] + bits[1::2] + tail


# ============= Registry =============


@dataclass(frozen=True)
class Codec:
    name: str
    encode: Callable[[str], str]
    decode: Callable[[str], str] | None
    description: str
    text_output: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "reversible": self.decode is not None,
            "text_output": self.text_output,
        }


CODECS: dict[str, Codec] = {
    codec.name: codec
    for codec in (
        Codec("gray", binary_to_gray, gray_to_binary, "Reflected binary Gray code"),
        Codec("manchester", manchester_encode, manchester_decode, "Manchester (0->01, 1->10)"),
        Codec("differential", differential_encode, differential_decode, "Differential encoding"),
        Codec("nrzi", nrzi_encode, nrzi_decode, "Non-return-to-zero inverted"),
        Codec("hamming74", hamming_encode_74, hamming_decode_74, "Hamming(7,4) single error correction"),
        Codec("base64", base64_encode, base64_decode, "6-bit groups to base64 text", text_output=True),
        Codec("bit_stuffing", bit_stuff, bit_unstuff, "HDLC bit stuffing"),
        Codec("zigzag", zigzag_encode, zigzag_decode, "ZigZag mapping per byte"),
        Codec("interleave", interleave, deinterleave, "Interleave first and second halves"),
    )
}


def get_codec(name: str) -> Codec:
    try:
        return CODECS[name]
    except KeyError:
        raise UnknownOperationError(f"Unknown codec: {name}") from None
