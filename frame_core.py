"""
Frame Core - Functional Core

Pure raster operations on RGBA/RGB numpy frames: alpha-over compositing of
a rendered overlay onto a video frame, flattening for encoders that take no
alpha, and channel extraction.
No side effects: no file I/O, no GPU context, no printing.

Frames are uint8 arrays indexed [y, x, channel] in RGB(A) order.
"""

import numpy as np  # type: ignore


# ============================================================================
# Compositing
# ============================================================================

def composite_over(base: np.ndarray, overlay: np.ndarray) -> np.ndarray:
    """Place an RGBA overlay over a base frame (Porter-Duff "over")

    Pure function - returns a new array, inputs are untouched.

    Args:
        base: RGB (h, w, 3) or RGBA (h, w, 4) uint8 frame
        overlay: RGBA (h, w, 4) uint8 frame with straight (non-premultiplied) alpha

    Returns:
        uint8 frame with the same shape as base

    Raises:
        ValueError: If sizes differ or overlay has no alpha channel

    Examples:
        >>> base = np.zeros((2, 2, 3), dtype=np.uint8)
        >>> overlay = np.full((2, 2, 4), 255, dtype=np.uint8)
        >>> composite_over(base, overlay)[0, 0].tolist()
        [255, 255, 255]
    """
    if overlay.ndim != 3 or overlay.shape[2] != 4:
        raise ValueError(f"Overlay must be RGBA (h, w, 4), got {overlay.shape}")
    if base.ndim != 3 or base.shape[2] not in (3, 4):
        raise ValueError(f"Base must be RGB or RGBA, got {base.shape}")
    if base.shape[:2] != overlay.shape[:2]:
        raise ValueError(
            f"Frame size mismatch: base {base.shape[1]}x{base.shape[0]}, "
            f"overlay {overlay.shape[1]}x{overlay.shape[0]}"
        )

    alpha = overlay[:, :, 3:4].astype(np.float32) / 255.0
    rgb = (overlay[:, :, :3].astype(np.float32) * alpha +
           base[:, :, :3].astype(np.float32) * (1.0 - alpha))

    result = np.empty_like(base)
    result[:, :, :3] = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
    if base.shape[2] == 4:
        base_alpha = base[:, :, 3:4].astype(np.float32) / 255.0
        out_alpha = alpha + base_alpha * (1.0 - alpha)
        result[:, :, 3:4] = np.clip(np.rint(out_alpha * 255.0), 0, 255).astype(np.uint8)
    return result


def flatten_rgba(frame: np.ndarray) -> np.ndarray:
    """Composite an RGBA frame onto opaque black, returning RGB"""
    black = np.zeros(frame.shape[:2] + (3,), dtype=np.uint8)
    return composite_over(black, frame)


# ============================================================================
# Channel Extraction
# ============================================================================

def red_channel_gray(frame: np.ndarray) -> np.ndarray:
    """Red channel scaled to [0, 1] as float64 (h, w)"""
    return frame[:, :, 0].astype(np.float64) / 255.0


def gray_to_rgba(gray: np.ndarray) -> np.ndarray:
    """Opaque gray RGBA frame from values in [0, 1]

    Values are clamped to [0, 1] and truncated to bytes.
    """
    levels = (np.clip(gray, 0.0, 1.0) * 255.0).astype(np.uint8)
    rgba = np.empty(gray.shape + (4,), dtype=np.uint8)
    rgba[:, :, 0] = levels
    rgba[:, :, 1] = levels
    rgba[:, :, 2] = levels
    rgba[:, :, 3] = 255
    return rgba
