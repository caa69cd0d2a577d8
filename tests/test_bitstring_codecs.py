"""
Tests for bit string primitives, line codecs and compression heuristics.
"""

import numpy as np
import pytest

from api.bit_model import BinaryModel
from api.shared import compression, encoding
from api.shared.bitstring import (
    InvalidBitStringError,
    UnknownOperationError,
    bits_to_bytes,
    bytes_to_bits,
    clean_bits,
    from_array,
    full_bytes,
    is_bits,
    to_array,
    validate_bits,
)


class TestBitString:
    """Validation and conversion helpers."""

    def test_validate_accepts_binary(self):
        assert validate_bits("0101") == "0101"
        assert validate_bits("") == ""

    def test_validate_reports_position(self):
        with pytest.raises(InvalidBitStringError, match="position 2"):
            validate_bits("01a1")

    def test_invalid_bits_is_value_error(self):
        assert issubclass(InvalidBitStringError, ValueError)
        assert not is_bits("012")

    def test_clean_bits_strips_everything_else(self):
        assert clean_bits("01 10\n1x0") == "011010"

    def test_bytes_conversion_pads_last_byte(self):
        assert bytes_to_bits(b"\x0f") == "00001111"
        assert bits_to_bytes("1") == b"\x80"
        assert bits_to_bytes("0000111100000001") == b"\x0f\x01"

    def test_full_bytes_drops_partial_chunk(self):
        assert full_bytes("11111111" + "101").tolist() == [255]

    def test_array_conversion(self):
        arr = to_array("1001")
        assert arr.dtype == np.uint8
        assert arr.tolist() == [1, 0, 0, 1]
        assert from_array(arr) == "1001"
        assert from_array(to_array("")) == ""


class TestCodecs:
    """Gray, Manchester, NRZI, Hamming and friends."""

    def test_gray_code(self):
        assert encoding.binary_to_gray("0110") == "0101"
        assert encoding.gray_to_binary("0101") == "0110"

    def test_manchester_encode(self):
        assert encoding.manchester_encode("10") == "1001"

    def test_manchester_invalid_pair_gives_placeholder(self):
        assert encoding.manchester_decode("100011") == "1??"

    def test_manchester_strict_raises(self):
        with pytest.raises(ValueError):
            encoding.manchester_decode("00", strict=True)

    def test_manchester_dangling_bit_gives_placeholder(self):
        assert encoding.manchester_decode("101") == "1?"
        with pytest.raises(ValueError):
            encoding.manchester_decode("101", strict=True)

    def test_nrzi_toggles_on_ones(self):
        assert encoding.nrzi_encode("1101") == "1001"
        assert encoding.nrzi_decode("1001") == "1101"

    def test_hamming_known_codeword(self):
        assert encoding.hamming_encode_74("1011") == "0110011"

    def test_hamming_corrects_single_error(self):
        codeword = list(encoding.hamming_encode_74("1011"))
        codeword[4] = "1" if codeword[4] == "0" else "0"
        assert encoding.hamming_decode_74("".join(codeword)) == "1011"

    def test_base64_groups_of_six(self):
        assert encoding.base64_encode("000000111111") == "A/"
        assert encoding.base64_decode("A/") == "000000111111"

    def test_base64_rejects_unknown_symbol(self):
        with pytest.raises(ValueError):
            encoding.base64_decode("A*")

    def test_bit_stuffing(self):
        assert encoding.bit_stuff("111111") == "1111101"
        assert encoding.bit_unstuff("1111101") == "111111"

    def test_zigzag_is_signed_byte_mapping(self):
        # -1 (0xFF) maps to 1, 1 maps to 2
        assert encoding.zigzag_encode("11111111") == "00000001"
        assert encoding.zigzag_encode("00000001") == "00000010"
        assert encoding.zigzag_decode("00000001") == "11111111"

    def test_interleave_odd_length(self):
        assert encoding.interleave("00111") == "01011"
        assert encoding.deinterleave("01011") == "00111"

    def test_empty_inputs(self):
        for codec in encoding.CODECS.values():
            assert codec.encode("") == ""

    def test_get_codec(self):
        assert encoding.get_codec("gray").decode is encoding.gray_to_binary
        with pytest.raises(UnknownOperationError):
            encoding.get_codec("nope")
        with pytest.raises(ValueError):
            encoding.get_codec("nope")

    def test_codec_listing(self):
        info = encoding.CODECS["base64"].to_dict()
        assert info["text_output"] is True
        assert info["reversible"] is True


class TestCompression:
    """RLE, delta, MTF, BWT and LZ77 heuristics."""

    def test_rle_records(self):
        assert compression.rle_encode("0001") == "000000110" + "000000011"
        assert compression.rle_decode("000000110000000011") == "0001"

    def test_rle_splits_long_runs(self):
        encoded = compression.rle_encode("1" * 300)
        assert len(encoded) == 18
        assert compression.rle_decode(encoded) == "1" * 300

    def test_rle_decode_ignores_partial_record(self):
        assert compression.rle_decode("00000010" + "1" + "0101") == "11"

    def test_delta(self):
        bits = "00000101" + "00000111"
        assert compression.delta_encode(bits) == "00000101" + "00000010"
        assert compression.delta_decode(compression.delta_encode(bits)) == bits

    def test_mtf_repeated_byte_becomes_zero(self):
        encoded = compression.mtf_encode("00000011" * 2)
        assert encoded == "00000011" + "00000000"
        assert compression.mtf_decode(encoded) == "00000011" * 2

    def test_bwt_keeps_length_and_counts(self):
        out = compression.bwt_encode("10110000")
        assert len(out) == 8
        assert out.count("1") == 3

    def test_lz77_finds_matches(self):
        bits = "1010" * 8
        result = compression.lz77_compress(bits)
        assert result.ratio < 1
        assert compression.lz77_decompress(result.compressed) == bits

    def test_lz77_rejects_bad_offset(self):
        with pytest.raises(ValueError):
            compression.lz77_decompress("1" + "00011" + "0001")

    def test_huffman_stats(self):
        stats = compression.huffman_stats("00000000" * 2)
        assert stats.frequencies == {"00000000": 2}
        assert stats.entropy == 0

    def test_bit_planes(self):
        planes = compression.separate_bit_planes("10000000" + "00000001")
        assert planes[0] == "10"
        assert planes[7] == "01"
        assert compression.combine_bit_planes(planes) == "1000000000000001"
        assert compression.combine_bit_planes(planes[:3]) == ""

    def test_registry(self):
        assert compression.COMPRESSORS["bwt"][1] is None
        assert set(compression.COMPRESSORS) == {"rle", "delta", "mtf", "bwt", "lz77"}


LENGTHS = [1, 2, 7, 8, 13, 64, 255, 1000]


def padded(bits, block):
    return bits.ljust(-(-len(bits) // block) * block, "0")


@pytest.fixture(params=LENGTHS, ids=lambda n: f"{n}bits")
def sample(request):
    return BinaryModel.generate_random(request.param, seed=request.param)


class TestRoundTrips:
    """Decoders invert their encoders over seeded random inputs."""

    def test_differential(self, sample):
        encoded = encoding.differential_encode(sample)
        assert len(encoded) == len(sample)
        assert encoding.differential_decode(encoded) == sample

    def test_differential_marks_transitions(self):
        assert encoding.differential_encode("0011101") == "0010011"
        assert encoding.differential_decode("0010011") == "0011101"
        assert encoding.differential_decode("") == ""

    def test_gray_and_nrzi(self, sample):
        assert encoding.gray_to_binary(encoding.binary_to_gray(sample)) == sample
        assert encoding.nrzi_decode(encoding.nrzi_encode(sample)) == sample

    def test_manchester(self, sample):
        assert encoding.manchester_decode(encoding.manchester_encode(sample), strict=True) == sample

    def test_hamming(self, sample):
        encoded = encoding.hamming_encode_74(sample)
        assert len(encoded) == len(padded(sample, 4)) // 4 * 7
        assert encoding.hamming_decode_74(encoded) == padded(sample, 4)

    def test_hamming_corrects_any_single_flip(self, sample):
        encoded = encoding.hamming_encode_74(sample)
        rng = np.random.default_rng(len(sample))
        for block in range(0, len(encoded), 7):
            pos = block + int(rng.integers(7))
            flipped = encoded[:pos] + ("1" if encoded[pos] == "0" else "0") + encoded[pos + 1:]
            assert encoding.hamming_decode_74(flipped) == padded(sample, 4)

    def test_bit_stuffing(self, sample):
        stuffed = encoding.bit_stuff(sample)
        assert "111111" not in stuffed
        assert encoding.bit_unstuff(stuffed) == sample

    def test_bit_stuffing_long_runs(self):
        for n in range(1, 20):
            assert encoding.bit_unstuff(encoding.bit_stuff("1" * n)) == "1" * n

    def test_interleave(self, sample):
        mixed = encoding.interleave(sample)
        assert sorted(mixed) == sorted(sample)
        assert encoding.deinterleave(mixed) == sample

    @pytest.mark.parametrize("value", range(256))
    def test_zigzag_every_byte(self, value):
        byte = f"{value:08b}"
        assert encoding.zigzag_decode(encoding.zigzag_encode(byte)) == byte

    def test_zigzag_is_a_permutation(self):
        outputs = {encoding.zigzag_encode(f"{v:08b}") for v in range(256)}
        assert len(outputs) == 256
        assert encoding.zigzag_encode("11111111") == "00000001"
        assert encoding.zigzag_encode("00000001") == "00000010"

    def test_zigzag_pads_partial_byte(self, sample):
        assert encoding.zigzag_decode(encoding.zigzag_encode(sample)) == padded(sample, 8)

    def test_byte_transforms(self, sample):
        assert compression.delta_decode(compression.delta_encode(sample)) == padded(sample, 8)
        assert compression.mtf_decode(compression.mtf_encode(sample)) == padded(sample, 8)

    def test_rle(self, sample):
        assert compression.rle_decode(compression.rle_encode(sample)) == sample

    def test_rle_splits_long_runs(self):
        bits = "0" * 600
        assert compression.rle_decode(compression.rle_encode(bits)) == bits

    def test_lz77(self, sample):
        result = compression.lz77_compress(sample)
        assert compression.lz77_decompress(result.compressed) == sample

    @pytest.mark.parametrize("bits", ["01" * 40, "1" * 100, "0110" * 25 + "1"])
    def test_lz77_repetitive(self, bits):
        result = compression.lz77_compress(bits)
        assert result.ratio < 1
        assert compression.lz77_decompress(result.compressed) == bits
