"""
Tests for statistics, transforms, the operations router and quick stats.
"""

import math

import pytest

from api.shared import bit_analysis, transforms
from api.shared.binary_stats import analyze, find_longest_run, find_unique_boundary, run_lengths
from api.shared.bit_operations import (
    OPERATIONS,
    execute_operation,
    execute_operation_on_range,
    get_available_operations,
    get_operation_cost,
    get_operation_spec,
    has_implementation,
    register_operation,
    unregister_operation,
)
from api.shared.bitstring import UnknownOperationError


class TestStatistics:
    """Entropy, autocorrelation and randomness tests."""

    def test_entropy_extremes(self):
        assert bit_analysis.calculate_entropy("") == 0.0
        assert bit_analysis.calculate_entropy("0000") == 0.0
        assert bit_analysis.calculate_entropy("0101") == pytest.approx(1.0)

    def test_entropy_uneven(self):
        expected = -(0.25 * math.log2(0.25) + 0.75 * math.log2(0.75))
        assert bit_analysis.calculate_entropy("0001") == pytest.approx(expected)

    def test_autocorrelation(self):
        assert bit_analysis.autocorrelation("0101", 1) == pytest.approx(-1.0)
        assert bit_analysis.autocorrelation("0101", 2) == pytest.approx(1.0)
        assert bit_analysis.autocorrelation("01", 5) == 0.0

    def test_longest_repeat(self):
        result = bit_analysis.find_longest_repeat("10101010")
        assert result.pattern == "10"
        assert result.count == 4
        assert result.position == 0

    def test_chi_square_balanced(self):
        result = bit_analysis.chi_square_test("0011")
        assert result.statistic == 0
        assert result.p_value == pytest.approx(1.0)

    def test_chi_square_biased(self):
        result = bit_analysis.chi_square_test("1" * 100)
        assert result.statistic == pytest.approx(100.0)
        assert result.p_value < 0.001

    def test_runs_test(self):
        result = bit_analysis.runs_test("0011")
        assert result.num_runs == 2
        assert result.expected_runs == pytest.approx(3.0)

    def test_runs_test_constant_input(self):
        result = bit_analysis.runs_test("1111")
        assert result.z_score == 0.0
        assert result.p_value == 1.0

    def test_spectral_finds_period(self):
        peaks = bit_analysis.spectral_analysis("1100" * 32)
        assert peaks[0].frequency == 32
        assert peaks[0].magnitude == pytest.approx(2 ** 0.5 / 2)

    def test_spectral_short_input(self):
        assert bit_analysis.spectral_analysis("10") == []

    def test_lempel_ziv(self):
        # 0 | 1 | 01 | 1 (unfinished)
        assert bit_analysis.lempel_ziv_complexity("01011") == 4
        assert bit_analysis.lempel_ziv_complexity("") == 0


class TestTransforms:
    """Length-preserving bit-order transforms."""

    def test_reverse(self):
        assert transforms.reverse_bits("1100") == "0011"
        assert transforms.reverse_bytes("00000001" + "11111111") == "11111111" + "00000001"

    def test_rotation(self):
        assert transforms.rotate_left("1000", 1) == "0001"
        assert transforms.rotate_right("1000", 5) == "0100"
        assert transforms.rotate_left("", 3) == ""

    def test_nibble_swap(self):
        assert transforms.nibble_swap("11110000") == "00001111"

    def test_xor_pattern(self):
        assert transforms.xor_pattern("0000", "10") == "1010"
        assert transforms.xor_pattern("0110", "") == "0110"

    def test_shuffle(self):
        assert transforms.perfect_shuffle("0011") == "0101"
        assert transforms.perfect_unshuffle("0101") == "0011"

    def test_apply_transform(self):
        assert transforms.apply_transform("rotate_left", "1000", {"n": 2}) == "0010"
        with pytest.raises(UnknownOperationError):
            transforms.apply_transform("bogus", "1")


class TestOperations:
    """Named operations with costs."""

    def test_logic_gates(self):
        assert execute_operation("NOT", "0101").bits == "1010"
        assert execute_operation("AND", "1111", {"mask": "10"}).bits == "1010"
        assert execute_operation("OR", "0000", {"mask": "01"}).bits == "0101"
        assert execute_operation("XOR", "1111", {"mask": "1"}).bits == "0000"

    def test_shifts(self):
        assert execute_operation("SHL", "1011", {"count": 1}).bits == "0110"
        assert execute_operation("SHR", "1011", {"count": 2}).bits == "0010"
        assert execute_operation("ASHR", "1011", {"count": 2}).bits == "1110"
        assert execute_operation("ROL", "1000", {"count": 1}).bits == "0001"

    def test_manipulation(self):
        assert execute_operation("INSERT", "0000", {"position": 2, "bits": "11"}).bits == "001100"
        assert execute_operation("DELETE", "101010", {"start": 1, "count": 2}).bits == "1010"
        assert execute_operation("REPLACE", "0000", {"start": 1, "bits": "11"}).bits == "0110"
        assert execute_operation("MOVE", "110000", {"source": 0, "count": 2, "dest": 4}).bits == "000011"
        assert execute_operation("TRUNCATE", "101010", {"count": 3}).bits == "101"
        assert execute_operation("APPEND", "1", {"bits": "00"}).bits == "100"

    def test_padding(self):
        assert execute_operation("PAD", "101", {}).bits == "10100000"
        assert execute_operation("PAD", "101", {"alignment": 4, "value": "1"}).bits == "1011"
        assert execute_operation("PAD_LEFT", "1", {"count": 4}).bits == "0001"

    def test_arithmetic_wraps(self):
        assert execute_operation("ADD", "1111", {"value": "1"}).bits == "0000"
        assert execute_operation("SUB", "0000", {"value": "1"}).bits == "1111"

    def test_gray_direction(self):
        assert execute_operation("GRAY", "0110").bits == "0101"
        assert execute_operation("GRAY", "0101", {"direction": "decode"}).bits == "0110"

    def test_swap_segments(self):
        assert execute_operation("SWAP", "110000", {"start": 0, "end": 2}).bits == "001100"

    def test_unknown_operation_does_not_raise(self):
        result = execute_operation("FLIP_EVERYTHING", "01")
        assert result.success is False
        assert result.bits == "01"
        assert "not found" in result.error

    def test_failing_operation_does_not_raise(self):
        result = execute_operation("APPEND", "01", {"bits": "2"})
        assert result.success is False
        assert result.bits == "01"

    def test_range_is_end_exclusive(self):
        result = execute_operation_on_range("NOT", "0000", 1, 3)
        assert result.bits == "0110"

    def test_costs(self):
        assert get_operation_cost("NOT") == 1
        assert get_operation_cost("MOVE") == 3
        assert get_operation_cost("UNKNOWN") == 1

    def test_spec_lookup(self):
        assert get_operation_spec("XOR").params == ("mask",)
        with pytest.raises(UnknownOperationError):
            get_operation_spec("NOPE")

    def test_custom_operation_registration(self):
        register_operation("DOUBLE", lambda bits, params: bits + bits)
        try:
            assert has_implementation("DOUBLE")
            assert "DOUBLE" in get_available_operations()
            assert execute_operation("DOUBLE", "10").bits == "1010"
        finally:
            unregister_operation("DOUBLE")
        assert not has_implementation("DOUBLE")

    def test_every_operation_handles_empty_input(self):
        for operation_id in OPERATIONS:
            assert execute_operation(operation_id, "").success, operation_id


class TestBinaryStats:
    """Quick file statistics."""

    def test_analyze(self):
        stats = analyze("00011")
        assert stats.total_bits == 5
        assert stats.total_bytes == 1
        assert stats.zero_count == 3
        assert stats.one_count == 2
        assert stats.zero_percentage == pytest.approx(60.0)
        assert stats.mean_run_length == pytest.approx(2.5)
        assert stats.longest_zero_run.start == 0
        assert stats.longest_zero_run.length == 3
        assert stats.longest_one_run.start == 3

    def test_analyze_empty(self):
        stats = analyze("")
        assert stats.total_bits == 0
        assert stats.entropy == 0.0
        assert stats.longest_one_run is None

    def test_run_lengths(self):
        assert run_lengths("0011101").tolist() == [2, 3, 1, 1]

    def test_longest_run_prefers_earliest(self):
        run = find_longest_run("0110110", "1")
        assert (run.start, run.length) == (1, 2)

    def test_unique_boundary_absent_from_bits(self):
        bits = "0" * 64
        sequence = find_unique_boundary(bits, 4, 8)
        assert sequence == "0001"
        assert sequence not in bits
