"""
Pipeline step service shared between the playground, files and strategies APIs.

This module resolves a step ``(type, name)`` to a callable over bit strings
and describes every available step for operator listings.

Step types:
- operation: entries of the operations router (``NOT``, ``XOR``, ...)
- encoding / decoding: line and channel codecs
- compression / decompression: compression heuristics
- transform: bit-order transforms
"""

import inspect
import re
from typing import Any, Callable

from .bit_operations import OPERATIONS, execute_operation, has_implementation
from .bitstring import UnknownOperationError, validate_bits
from .compression import COMPRESSORS
from .encoding import CODECS
from .logger import get_logger
from .transforms import TRANSFORMS

logger = get_logger(__name__)

StepFn = Callable[[str, dict[str, Any]], str]

STEP_TYPES = ("operation", "encoding", "decoding", "compression", "decompression", "transform")


def _text_to_bits(text: str) -> str:
    return "".join(f"{ord(c) & 0xFF:08b}" for c in text)


def _bits_to_text(bits: str) -> str:
    return "".join(chr(int(bits[i:i + 8], 2)) for i in range(0, len(bits) - 7, 8))


def _run_operation(name: str) -> StepFn:
    def run(bits: str, params: dict[str, Any]) -> str:
        result = execute_operation(name, bits, params)
        if not result.success:
            raise ValueError(result.error)
        return result.bits
    return run


def resolve_operator(name: str, step_type: str = "operation") -> StepFn | None:
    """Resolve a step name to a ``(bits, params) -> bits`` callable.

    Text-producing codecs (base64) are bridged through 8-bit ASCII so that
    every step both consumes and produces a bit string.

    Returns:
        The callable, or None if the name is unknown for this step type
    """
    if step_type == "operation":
        return _run_operation(name) if has_implementation(name) else None

    if step_type in ("encoding", "decoding"):
        codec = CODECS.get(name)
        if codec is None:
            return None
        if step_type == "encoding":
            if codec.text_output:
                return lambda bits, params: _text_to_bits(codec.encode(bits))
            return lambda bits, params: codec.encode(bits)
        if codec.decode is None:
            return None
        if codec.text_output:
            return lambda bits, params: codec.decode(_bits_to_text(bits))
        return lambda bits, params: codec.decode(bits)

    if step_type in ("compression", "decompression"):
        entry = COMPRESSORS.get(name)
        if entry is None:
            return None
        fn = entry[0] if step_type == "compression" else entry[1]
        if fn is None:
            return None
        return lambda bits, params: fn(bits)

    if step_type == "transform":
        fn = TRANSFORMS.get(name)
        if fn is None:
            return None
        return lambda bits, params: fn(bits, **params)

    return None


def run_step(step_type: str, name: str, bits: str, params: dict[str, Any] | None = None) -> str:
    """Apply one step and return the new bits.

    Raises:
        UnknownOperationError: If the step cannot be resolved
        InvalidBitStringError: If the step produced non-binary output
        ValueError: If the step itself failed
    """
    fn = resolve_operator(name, step_type)
    if fn is None:
        raise UnknownOperationError(f"Unknown {step_type} step: {name}")
    return validate_bits(fn(bits, params or {}))


def validate_step_params(
    name: str,
    params: dict[str, Any],
    step_type: str = "operation",
) -> tuple[bool, list[str], list[str]]:
    """Validate a step without running it.

    Returns:
        Tuple of (is_valid, errors, warnings)
    """
    errors: list[str] = []
    warnings: list[str] = []

    if step_type not in STEP_TYPES:
        errors.append(f"Unknown step type: {step_type}")
        return False, errors, warnings

    if resolve_operator(name, step_type) is None:
        errors.append(f"Unknown {step_type} operator: {name}")
        return False, errors, warnings

    accepted = _accepted_params(name, step_type)
    if accepted is not None:
        for param_name in params:
            if param_name not in accepted:
                if step_type == "transform":
                    errors.append(f"Unknown parameter: {param_name}")
                else:
                    warnings.append(f"Unknown parameter: {param_name}")

    return len(errors) == 0, errors, warnings


def _accepted_params(name: str, step_type: str) -> set[str] | None:
    if step_type == "operation":
        spec = OPERATIONS.get(name)
        return set(spec.params) if spec else None
    if step_type == "transform":
        sig = inspect.signature(TRANSFORMS[name])
        return set(list(sig.parameters)[1:])
    return set()


def get_operation_methods() -> list[dict[str, Any]]:
    return [
        {
            "name": spec.id,
            "display_name": _to_display_name(spec.id),
            "type": "operation",
            "category": spec.category,
            "description": spec.description,
            "params": list(spec.params),
            "cost": spec.cost,
        }
        for spec in OPERATIONS.values()
    ]


def get_codec_methods(step_type: str = "encoding") -> list[dict[str, Any]]:
    return [
        {
            "name": codec.name,
            "display_name": _to_display_name(codec.name),
            "type": step_type,
            "category": "codec",
            "description": codec.description,
            "params": [],
        }
        for codec in CODECS.values()
        if step_type == "encoding" or codec.decode is not None
    ]


def get_compression_methods(step_type: str = "compression") -> list[dict[str, Any]]:
    index = 0 if step_type == "compression" else 1
    return [
        {
            "name": name,
            "display_name": _to_display_name(name),
            "type": step_type,
            "category": "compression",
            "description": f"{name.upper()} {step_type}",
            "params": [],
        }
        for name, fns in COMPRESSORS.items()
        if fns[index] is not None
    ]


def get_transform_methods() -> list[dict[str, Any]]:
    methods = []
    for name, fn in TRANSFORMS.items():
        params = list(inspect.signature(fn).parameters)[1:]
        methods.append({
            "name": name,
            "display_name": _to_display_name(name),
            "type": "transform",
            "category": _categorize_transform(name),
            "description": (inspect.getdoc(fn) or "").split("\n")[0],
            "params": params,
        })
    return methods


def _categorize_transform(name: str) -> str:
    if any(x in name for x in ("rotate", "reverse")):
        return "order"
    if any(x in name for x in ("shuffle", "swap")):
        return "permutation"
    return "mask"


def _to_display_name(name: str) -> str:
    """``perfect_shuffle`` -> ``Perfect Shuffle``; ``NOT`` stays as is."""
    if name.isupper():
        return name.replace("_", " ")
    if name == "hamming74":
        return "Hamming (7,4)"
    return re.sub(r"[_\s]+", " ", name).strip().title()
