"""
Shader Core - Functional Core

Compiles the four channel formulas into a program and turns evaluated
values into RGBA pixels and frames.
No side effects: no file I/O, no printing, no shared mutable state. A
compiled ChannelProgram is immutable and may be rendered from any number of
threads at once.

Architecture: Functional core (this file) called by imperative shell (shader_shell.py)
"""

import math
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, Tuple

import numpy as np  # type: ignore

from formula_types import (
    Node,
    Pixel,
    CHANNEL_NAMES,
    VARIABLE_NAMES,
    FormulaError,
)
from formula_parser import parse, format_tree
from formula_core import evaluate, evaluate_array, validate_tree


# Demonstration program: animated interference bands, fully opaque
DEFAULT_FORMULAS: Dict[str, str] = {
    "R": "(x*y+frame)%255",
    "G": "(y*y+frame)%255",
    "B": "(x*x/(frame+1))%255",
    "A": "255",
}

DEFAULT_FPS = 30
DEFAULT_FRAME_COUNT = 90


# ============================================================================
# Channel Program
# ============================================================================

@dataclass(frozen=True)
class ChannelProgram:
    """Four compiled and validated trees (R, G, B, A)

    Attributes:
        red, green, blue, alpha: Expression trees
        sources: Original formula text per channel, in R, G, B, A order
    """
    red: Node
    green: Node
    blue: Node
    alpha: Node
    sources: Tuple[str, str, str, str] = ("", "", "", "")

    @property
    def trees(self) -> Tuple[Node, Node, Node, Node]:
        return (self.red, self.green, self.blue, self.alpha)

    def describe(self) -> Dict[str, str]:
        """Canonical formula text per channel"""
        return {name: format_tree(tree) for name, tree in zip(CHANNEL_NAMES, self.trees)}


def compile_program(r_expr: str, g_expr: str, b_expr: str, a_expr: str) -> ChannelProgram:
    """Parse and validate the four channel formulas

    Formulas are parsed in R, G, B, A order and the first failure aborts
    compilation. Validation runs once here, never per pixel.

    Args:
        r_expr, g_expr, b_expr, a_expr: Channel formula sources

    Returns:
        Immutable ChannelProgram ready for rendering

    Raises:
        ParseError, UndefinedVariable, UnsupportedExpression: With .channel
            and .formula set to the failing channel and its source
    """
    sources = (r_expr, g_expr, b_expr, a_expr)
    trees = []
    for channel, text in zip(CHANNEL_NAMES, sources):
        try:
            trees.append(parse(text))
        except FormulaError as e:
            e.channel = channel
            e.formula = text
            raise

    for channel, text, tree in zip(CHANNEL_NAMES, sources, trees):
        try:
            validate_tree(tree, VARIABLE_NAMES)
        except FormulaError as e:
            e.channel = channel
            e.formula = text
            raise

    return ChannelProgram(*trees, sources=sources)


def compile_program_from_mapping(formulas: Mapping[str, str]) -> ChannelProgram:
    """Compile from a {"R": ..., "G": ..., "B": ..., "A": ...} mapping

    Raises:
        ValueError: If a channel is missing, given twice (e.g. "r" and "R"),
            or an unknown key is present
    """
    upper = [key.upper() for key in formulas]
    duplicates = sorted({key for key in upper if upper.count(key) > 1})
    if duplicates:
        raise ValueError(f"Channels given more than once: {duplicates}")
    keys = set(upper)
    missing = [c for c in CHANNEL_NAMES if c not in keys]
    extra = sorted(keys - set(CHANNEL_NAMES))
    if missing or extra:
        raise ValueError(f"Expected channels R, G, B, A; missing {missing}, unknown {extra}")
    by_channel = {key.upper(): text for key, text in formulas.items()}
    return compile_program(*(by_channel[c] for c in CHANNEL_NAMES))


# ============================================================================
# Saturating Clamp
# ============================================================================

def saturate_channel(value: float) -> int:
    """Map an evaluated value to a byte

    NaN → 0, below 0 → 0, above 255 → 255 (so -inf → 0, +inf → 255),
    fractional values truncate toward zero after clamping.

    Examples:
        >>> saturate_channel(-5.0), saturate_channel(300.0), saturate_channel(float('nan'))
        (0, 255, 0)
    """
    if math.isnan(value):
        return 0
    return int(min(max(value, 0.0), 255.0))


def saturate_array(values: np.ndarray) -> np.ndarray:
    """Element-wise saturate_channel, returning uint8"""
    v = np.asarray(values, dtype=np.float64)
    v = np.where(np.isnan(v), 0.0, v)
    return np.trunc(np.clip(v, 0.0, 255.0)).astype(np.uint8)


# ============================================================================
# Pixel Synthesizer
# ============================================================================

def make_binding(x: int, y: int, frame: int) -> Dict[str, int]:
    """Fresh binding for one evaluation call"""
    return {"x": x, "y": y, "frame": frame}


def render_pixel(program: ChannelProgram, x: int, y: int, frame: int) -> Pixel:
    """Evaluate the four channels for one pixel

    Pure function. An evaluation failure on any channel propagates, so no
    partially evaluated pixel is ever returned.
    """
    binding = make_binding(x, y, frame)
    r, g, b, a = (saturate_channel(evaluate(tree, binding)) for tree in program.trees)
    return Pixel(r, g, b, a)


def pixel_grid(width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """Column and row index arrays of shape (height, width)"""
    ys, xs = np.mgrid[0:height, 0:width]
    return xs.astype(np.float64), ys.astype(np.float64)


def render_frame(program: ChannelProgram, frame: int, width: int, height: int) -> np.ndarray:
    """Render one complete frame

    Each channel is evaluated once over the whole (x, y) grid; the result is
    identical to calling render_pixel for every pixel.

    Args:
        program: Compiled channel program
        frame: 0-based frame index
        width, height: Raster size in pixels

    Returns:
        RGBA uint8 array of shape (height, width, 4), indexed [y, x]
    """
    xs, ys = pixel_grid(width, height)
    binding = {"x": xs, "y": ys, "frame": frame}
    raster = np.empty((height, width, 4), dtype=np.uint8)
    for channel, tree in enumerate(program.trees):
        values = np.broadcast_to(evaluate_array(tree, binding), (height, width))
        raster[:, :, channel] = saturate_array(values)
    return raster


def render_frame_by_pixel(program: ChannelProgram, frame: int, width: int, height: int) -> np.ndarray:
    """Reference renderer: one render_pixel call per pixel, row-major

    Much slower than render_frame; kept for verification and debugging.
    """
    raster = np.empty((height, width, 4), dtype=np.uint8)
    for y in range(height):
        for x in range(width):
            raster[y, x] = render_pixel(program, x, y, frame).as_tuple()
    return raster


# ============================================================================
# Frame Sequencing
# ============================================================================

def frame_indices(frame_count: int) -> Iterator[int]:
    """The contiguous 0-indexed frame sequence"""
    return iter(range(frame_count))


def frame_time(frame: int, fps: float) -> float:
    """Time in seconds for a frame index"""
    return frame / fps
