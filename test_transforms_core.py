"""
Unit tests for transforms_core.py - Functional Core

Tests the block cosine/sine transforms against direct summation and the
whole-image block application.
"""

import math

import numpy as np
import pytest

from transforms_core import (
    dct_basis,
    dst_basis,
    dct_block,
    dst_block,
    extract_block,
    apply_block_transform,
)


def dct_direct(block):
    """Quadruple-loop reference of the cosine transform"""
    n = len(block)
    out = np.zeros((n, n))
    for u in range(n):
        for v in range(n):
            total = 0.0
            for i in range(n):
                for j in range(n):
                    cu = 1 / math.sqrt(2) if u == 0 else 1.0
                    cv = 1 / math.sqrt(2) if v == 0 else 1.0
                    total += (cu * cv * block[i][j] *
                              math.cos((2 * i + 1) * u * math.pi / (2 * n)) *
                              math.cos((2 * j + 1) * v * math.pi / (2 * n)))
            out[u][v] = total * (2.0 / math.sqrt(n))
    return out


def dst_direct(block):
    """Quadruple-loop reference of the sine transform"""
    n = len(block)
    out = np.zeros((n, n))
    for u in range(n):
        for v in range(n):
            total = 0.0
            for i in range(n):
                for j in range(n):
                    total += (block[i][j] *
                              math.sin((i + 0.5) * u * math.pi / n) *
                              math.sin((j + 0.5) * v * math.pi / n))
            out[u][v] = total * (2.0 / math.sqrt(n))
    return out


# ============================================================================
# Tests for single-block transforms
# ============================================================================

class TestBlockTransforms:
    """Matrix transforms agree with direct summation"""

    @pytest.fixture
    def random_block(self):
        return np.random.default_rng(7).random((4, 4))

    def test_dct_matches_direct(self, random_block):
        np.testing.assert_allclose(dct_block(random_block), dct_direct(random_block), atol=1e-12)

    def test_dst_matches_direct(self, random_block):
        np.testing.assert_allclose(dst_block(random_block), dst_direct(random_block), atol=1e-12)

    def test_dct_of_constant_block_is_dc_only(self):
        result = dct_block(np.ones((8, 8)))
        assert result[0, 0] == pytest.approx(32 * 2 / math.sqrt(8))
        result[0, 0] = 0.0
        assert np.allclose(result, 0.0)

    def test_dst_dc_row_is_zero(self):
        assert np.allclose(dst_basis(8)[0], 0.0)
        assert np.allclose(dst_block(np.ones((8, 8)))[0, :], 0.0)

    def test_dct_basis_dc_weight(self):
        assert dct_basis(4)[0, 0] == pytest.approx(1 / math.sqrt(2))


# ============================================================================
# Tests for whole-image application
# ============================================================================

class TestApplyBlockTransform:

    def test_extract_block_zero_pads(self):
        gray = np.ones((5, 5))
        block = extract_block(gray, 4, 4, 3)
        assert block[0, 0] == 1.0
        assert block[1:, :].sum() == 0.0
        assert block[:, 1:].sum() == 0.0

    def test_output_is_opaque_gray_same_size(self):
        frame = np.zeros((10, 13, 3), dtype=np.uint8)
        frame[:, :, 0] = 128
        result = apply_block_transform(frame, block_size=4, kind="dct")
        assert result.shape == (10, 13, 4)
        assert np.all(result[:, :, 3] == 255)
        np.testing.assert_array_equal(result[:, :, 0], result[:, :, 1])

    def test_black_image_stays_black(self):
        frame = np.zeros((8, 8, 4), dtype=np.uint8)
        for kind in ("dct", "dst"):
            assert np.all(apply_block_transform(frame, 8, kind)[:, :, 0] == 0)

    def test_white_block_dc_saturates(self):
        """DC of a full-white 8x8 block is far above 1 and clamps to 255"""
        frame = np.full((8, 8, 3), 255, dtype=np.uint8)
        result = apply_block_transform(frame, 8, "dct")
        assert result[0, 0, 0] == 255
        assert result[3, 3, 0] == 0

    def test_blocks_are_independent(self):
        """Changing one block leaves the other's coefficients alone"""
        frame = np.zeros((8, 16, 3), dtype=np.uint8)
        before = apply_block_transform(frame, 8, "dct")
        frame[:, 8:, 0] = 255
        after = apply_block_transform(frame, 8, "dct")
        np.testing.assert_array_equal(before[:, :8], after[:, :8])

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown transform"):
            apply_block_transform(np.zeros((4, 4, 3), np.uint8), 4, "fft")

    def test_bad_block_size(self):
        with pytest.raises(ValueError, match="Block size"):
            apply_block_transform(np.zeros((4, 4, 3), np.uint8), 0, "dct")


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
