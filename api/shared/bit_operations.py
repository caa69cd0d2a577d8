"""
Operations router: named bit operations with costs.

Each operation takes ``(bits, params)`` and returns the new bit string.
Parameters follow a shared vocabulary:

- ``mask``: pattern for logic gates, repeated cyclically
- ``count``: shift/rotate amount or number of bits affected
- ``position`` / ``start`` / ``end`` / ``source`` / ``dest``: bit indices
- ``bits`` / ``value``: bit strings to insert, append, add or pad with
- ``direction``: ``encode`` or ``decode`` for Gray code
- ``alignment``: 8 (byte) or 4 (nibble) for PAD

Costs feed the strategy budget; unknown ids cost 1.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from .bitstring import UnknownOperationError, validate_bits
from .encoding import binary_to_gray, gray_to_binary
from .logger import get_logger
from .transforms import reverse_bits, reverse_bytes, rotate_left, rotate_right

logger = get_logger(__name__)

OperationFn = Callable[[str, dict[str, Any]], str]


@dataclass
class OperationResult:
    success: bool
    bits: str
    operation_id: str
    params: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "bits": self.bits,
            "operation_id": self.operation_id,
            "params": self.params,
            "error": self.error,
        }


@dataclass(frozen=True)
class OperationSpec:
    id: str
    fn: OperationFn
    category: str
    cost: int
    description: str
    params: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "cost": self.cost,
            "description": self.description,
            "params": list(self.params),
        }


# ============= Primitive helpers =============


def _bits_param(params: dict[str, Any], key: str, default: str = "") -> str:
    return validate_bits(str(params.get(key) or default))


def _int_param(params: dict[str, Any], key: str, default: int) -> int:
    value = params.get(key)
    return default if value is None else int(value)


def _gate(fn: Callable[[bool, bool], bool], default_mask: str) -> OperationFn:
    def apply(bits: str, params: dict[str, Any]) -> str:
        mask = _bits_param(params, "mask") or default_mask
        mlen = len(mask)
        return "".join(
            "1" if fn(b == "1", mask[i % mlen] == "1") else "0"
            for i, b in enumerate(bits)
        )
    return apply


def _not(bits: str, params: dict[str, Any]) -> str:
    return bits.translate(str.maketrans("01", "10"))


def shift_left(bits: str, count: int) -> str:
    n = len(bits)
    count = max(0, min(count, n))
    return bits[count:] + "0" * count


def shift_right(bits: str, count: int) -> str:
    n = len(bits)
    count = max(0, min(count, n))
    return "0" * count + bits[: n - count]


def arithmetic_shift_right(bits: str, count: int) -> str:
    """Shift right, filling with the sign (leftmost) bit."""
    if not bits:
        return ""
    n = len(bits)
    count = max(0, min(count, n))
    return bits[0] * count + bits[: n - count]


def _shl(bits, p):
    return shift_left(bits, _int_param(p, "count", 1))


def _shr(bits, p):
    return shift_right(bits, _int_param(p, "count", 1))


def _ashr(bits, p):
    return arithmetic_shift_right(bits, _int_param(p, "count", 1))


def _rol(bits, p):
    return rotate_left(bits, _int_param(p, "count", 1))


def _ror(bits, p):
    return rotate_right(bits, _int_param(p, "count", 1))


# ============= Bit manipulation =============


def _clamp(index: int, upper: int) -> int:
    return max(0, min(index, upper))


def _insert(bits, p):
    pos = _clamp(_int_param(p, "position", 0), len(bits))
    return bits[:pos] + _bits_param(p, "bits") + bits[pos:]


def _delete(bits, p):
    start = _clamp(_int_param(p, "start", 0), len(bits))
    count = max(0, _int_param(p, "count", 1))
    return bits[:start] + bits[start + count:]


def _replace(bits, p):
    start = _clamp(_int_param(p, "start", 0), len(bits))
    new = _bits_param(p, "bits")
    return bits[:start] + new + bits[start + len(new):]


def _move(bits, p):
    source = _clamp(_int_param(p, "source", 0), len(bits))
    count = max(0, _int_param(p, "count", 1))
    segment = bits[source:source + count]
    rest = bits[:source] + bits[source + count:]
    dest = _clamp(_int_param(p, "dest", 0), len(rest))
    return rest[:dest] + segment + rest[dest:]


def _truncate(bits, p):
    return bits[: max(0, _int_param(p, "count", len(bits)))]


def _append(bits, p):
    return bits + _bits_param(p, "bits")


# ============= Packing =============


def _pad_value(p) -> str:
    return "1" if str(p.get("value", "0")) == "1" else "0"


def _pad(bits, p):
    alignment = 8 if _int_param(p, "alignment", 8) == 8 else 4
    remainder = len(bits) % alignment
    if remainder == 0:
        return bits
    return bits + _pad_value(p) * (alignment - remainder)


def _pad_left(bits, p):
    return bits.rjust(_int_param(p, "count", len(bits) + 8), _pad_value(p))


def _pad_right(bits, p):
    return bits.ljust(_int_param(p, "count", len(bits) + 8), _pad_value(p))


# ============= Encoding / arithmetic / advanced =============


def _gray(bits, p):
    if p.get("direction") == "decode":
        return gray_to_binary(bits)
    return binary_to_gray(bits)


def _arith(sign: int) -> OperationFn:
    def apply(bits: str, params: dict[str, Any]) -> str:
        width = len(bits)
        if width == 0:
            return ""
        operand = int(_bits_param(params, "value", "1"), 2)
        result = (int(bits, 2) + sign * operand) % (1 << width)
        return format(result, f"0{width}b")
    return apply


def _swap(bits, p):
    n = len(bits)
    start1 = _clamp(_int_param(p, "start", 0), n)
    end1 = _clamp(_int_param(p, "end", n // 2), n)
    if end1 < start1:
        start1, end1 = end1, start1
    end2 = min(end1 + (end1 - start1), n)
    return bits[:start1] + bits[end1:end2] + bits[start1:end1] + bits[end2:]


# ============= Registry =============


def _spec(id, fn, category, cost, description, *params):
    return OperationSpec(id, fn, category, cost, description, tuple(params))


OPERATIONS: dict[str, OperationSpec] = {
    s.id: s
    for s in (
        _spec("NOT", _not, "logic", 1, "Invert every bit"),
        _spec("AND", _gate(lambda a, b: a and b, "1"), "logic", 1, "AND with mask", "mask"),
        _spec("OR", _gate(lambda a, b: a or b, "0"), "logic", 1, "OR with mask", "mask"),
        _spec("XOR", _gate(lambda a, b: a != b, "0"), "logic", 1, "XOR with mask", "mask"),
        _spec("NAND", _gate(lambda a, b: not (a and b), "1"), "logic", 2, "NAND with mask", "mask"),
        _spec("NOR", _gate(lambda a, b: not (a or b), "0"), "logic", 2, "NOR with mask", "mask"),
        _spec("XNOR", _gate(lambda a, b: a == b, "0"), "logic", 2, "XNOR with mask", "mask"),
        _spec("SHL", _shl, "shift", 1, "Logical shift left", "count"),
        _spec("SHR", _shr, "shift", 1, "Logical shift right", "count"),
        _spec("ASHL", _shl, "shift", 1, "Arithmetic shift left", "count"),
        _spec("ASHR", _ashr, "shift", 1, "Arithmetic shift right (sign fill)", "count"),
        _spec("ROL", _rol, "shift", 1, "Rotate left", "count"),
        _spec("ROR", _ror, "shift", 1, "Rotate right", "count"),
        _spec("INSERT", _insert, "manipulation", 2, "Insert bits at position", "position", "bits"),
        _spec("DELETE", _delete, "manipulation", 2, "Delete count bits from start", "start", "count"),
        _spec("REPLACE", _replace, "manipulation", 2, "Overwrite bits from start", "start", "bits"),
        _spec("MOVE", _move, "manipulation", 3, "Move a segment to dest", "source", "count", "dest"),
        _spec("TRUNCATE", _truncate, "manipulation", 1, "Keep the first count bits", "count"),
        _spec("APPEND", _append, "manipulation", 1, "Append bits", "bits"),
        _spec("PAD", _pad, "packing", 1, "Pad to byte or nibble alignment", "alignment", "value"),
        _spec("PAD_LEFT", _pad_left, "packing", 1, "Left pad to count bits", "count", "value"),
        _spec("PAD_RIGHT", _pad_right, "packing", 1, "Right pad to count bits", "count", "value"),
        _spec("GRAY", _gray, "encoding", 2, "Gray encode or decode", "direction"),
        _spec("ENDIAN", lambda bits, p: reverse_bytes(bits), "encoding", 2, "Swap byte order"),
        _spec("REVERSE", lambda bits, p: reverse_bits(bits), "encoding", 1, "Reverse bit order"),
        _spec("ADD", _arith(1), "arithmetic", 3, "Add value modulo 2^width", "value"),
        _spec("SUB", _arith(-1), "arithmetic", 3, "Subtract value modulo 2^width", "value"),
        _spec("SWAP", _swap, "advanced", 2, "Swap [start,end) with the following segment", "start", "end"),
    )
}

DEFAULT_COST = 1

_custom_operations: dict[str, OperationFn] = {}


def execute_operation(
    operation_id: str,
    bits: str,
    params: dict[str, Any] | None = None,
) -> OperationResult:
    """Run an operation by id.

    Never raises: unknown ids and failing implementations produce a result
    with ``success=False`` and the input bits unchanged.
    """
    params = params or {}
    impl = _custom_operations.get(operation_id)
    if impl is None:
        spec = OPERATIONS.get(operation_id)
        if spec is None:
            return OperationResult(
                success=False,
                bits=bits,
                operation_id=operation_id,
                params=params,
                error=f"Operation '{operation_id}' not found",
            )
        impl = spec.fn

    try:
        result = impl(bits, params)
    except Exception as e:
        logger.debug("Operation %s failed: %s", operation_id, e)
        return OperationResult(
            success=False,
            bits=bits,
            operation_id=operation_id,
            params=params,
            error=f"Operation failed: {e}",
        )
    return OperationResult(success=True, bits=result, operation_id=operation_id, params=params)


def execute_operation_on_range(
    operation_id: str,
    bits: str,
    start: int,
    end: int,
    params: dict[str, Any] | None = None,
) -> OperationResult:
    """Apply an operation to ``bits[start:end]`` and splice the result back."""
    before, target, after = bits[:start], bits[start:end], bits[end:]
    result = execute_operation(operation_id, target, params)
    if result.success:
        result.bits = before + result.bits + after
    else:
        result.bits = bits
    return result


def register_operation(operation_id: str, impl: OperationFn) -> None:
    _custom_operations[operation_id] = impl


def unregister_operation(operation_id: str) -> None:
    _custom_operations.pop(operation_id, None)


def get_available_operations() -> list[str]:
    return list(dict.fromkeys([*OPERATIONS, *_custom_operations]))


def has_implementation(operation_id: str) -> bool:
    return operation_id in OPERATIONS or operation_id in _custom_operations


def get_operation_cost(operation_id: str) -> int:
    spec = OPERATIONS.get(operation_id)
    return spec.cost if spec else DEFAULT_COST


def get_operation_spec(operation_id: str) -> OperationSpec:
    try:
        return OPERATIONS[operation_id]
    except KeyError:
        raise UnknownOperationError(f"Unknown operation: {operation_id}") from None
