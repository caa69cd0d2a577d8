"""
Shared utilities for the bitwise workbench API.

This module contains the pure bit-string library used across endpoints:
validation, codecs, compression, statistics, transforms and metrics.
"""
from .bitstring import (
    InvalidBitStringError,
    UnknownMetricError,
    UnknownOperationError,
    validate_bits,
)
from .bit_operations import execute_operation, execute_operation_on_range
from .metrics_computer import calculate_all_metrics, calculate_metric, calculate_metrics

__all__ = [
    "InvalidBitStringError",
    "UnknownMetricError",
    "UnknownOperationError",
    "validate_bits",
    "execute_operation",
    "execute_operation_on_range",
    "calculate_metric",
    "calculate_metrics",
    "calculate_all_metrics",
]
