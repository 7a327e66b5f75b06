"""
Block Transforms - Functional Core

Block-wise frequency transforms (cosine and sine) over the red channel of a
frame, producing an opaque grayscale visualisation of the coefficients.
Independent of the formula engine.
No side effects: no file I/O, no printing.
"""

from typing import Callable, Dict

import numpy as np  # type: ignore

from frame_core import red_channel_gray, gray_to_rgba


# ============================================================================
# Basis Matrices
# ============================================================================

def dct_basis(n: int) -> np.ndarray:
    """DCT-II basis C[u, i] = c(u) cos((2i + 1) u pi / 2n), c(0) = 1/sqrt(2)"""
    u = np.arange(n).reshape(-1, 1)
    i = np.arange(n).reshape(1, -1)
    basis = np.cos((2 * i + 1) * u * np.pi / (2 * n))
    basis[0, :] /= np.sqrt(2.0)
    return basis


def dst_basis(n: int) -> np.ndarray:
    """Sine basis S[u, i] = sin((i + 0.5) u pi / n)

    Row u = 0 is all zeros, so the DC coefficient of the sine transform is 0.
    """
    u = np.arange(n).reshape(-1, 1)
    i = np.arange(n).reshape(1, -1)
    return np.sin((i + 0.5) * u * np.pi / n)


# ============================================================================
# Single-Block Transforms
# ============================================================================

def dct_block(block: np.ndarray) -> np.ndarray:
    """2-D cosine transform of a square block, scaled by 2/sqrt(n)

    Examples:
        >>> float(dct_block(np.ones((8, 8)))[0, 0])  # doctest: +ELLIPSIS
        22.62...
    """
    n = block.shape[0]
    basis = dct_basis(n)
    return (2.0 / np.sqrt(n)) * (basis @ block @ basis.T)


def dst_block(block: np.ndarray) -> np.ndarray:
    """2-D sine transform of a square block, scaled by 2/sqrt(n)"""
    n = block.shape[0]
    basis = dst_basis(n)
    return (2.0 / np.sqrt(n)) * (basis @ block @ basis.T)


BLOCK_TRANSFORMS: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "dct": dct_block,
    "dst": dst_block,
}


# ============================================================================
# Whole-Image Application
# ============================================================================

def extract_block(gray: np.ndarray, x: int, y: int, block_size: int) -> np.ndarray:
    """Square block with top-left corner (x, y); pixels outside the image are 0"""
    block = np.zeros((block_size, block_size), dtype=np.float64)
    height, width = gray.shape
    patch = gray[y:min(y + block_size, height), x:min(x + block_size, width)]
    block[:patch.shape[0], :patch.shape[1]] = patch
    return block


def apply_block_transform(frame: np.ndarray, block_size: int = 8, kind: str = "dct") -> np.ndarray:
    """Transform every block of a frame and visualise the coefficients

    Args:
        frame: RGB or RGBA uint8 frame; only the red channel is used
        block_size: Edge length of the square blocks
        kind: "dct" or "dst"

    Returns:
        Opaque gray RGBA frame of the same size; coefficients are clamped to
        [0, 1] before scaling to bytes

    Raises:
        ValueError: For an unknown kind or non-positive block size
    """
    if kind not in BLOCK_TRANSFORMS:
        raise ValueError(f"Unknown transform {kind!r}, expected one of {sorted(BLOCK_TRANSFORMS)}")
    if block_size <= 0:
        raise ValueError(f"Block size must be positive, got {block_size}")

    transform = BLOCK_TRANSFORMS[kind]
    gray = red_channel_gray(frame)
    height, width = gray.shape
    coefficients = np.zeros_like(gray)

    for y in range(0, height, block_size):
        for x in range(0, width, block_size):
            result = transform(extract_block(gray, x, y, block_size))
            # Coefficients falling outside the image are dropped
            h = min(block_size, height - y)
            w = min(block_size, width - x)
            coefficients[y:y + h, x:x + w] = result[:h, :w]

    return gray_to_rgba(coefficients)
