"""
Formula Data Types - Shared Contract

Defines the data contract between the formula parser, the evaluator and the
frame renderers. Expression trees are immutable once built so a single
compiled program can be shared by every pixel evaluation (and every worker
thread) without copying or locking.

Type Hierarchy:
    Node (base) → Literal, Variable, UnaryOp, BinaryOp, Call, Grouping
    FormulaError (base) → ParseError, UndefinedVariable, UnsupportedExpression
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


# Names bound for every evaluation: column, row and 0-based frame index
VARIABLE_NAMES: Tuple[str, ...] = ("x", "y", "frame")

# Channel order used everywhere a program is compiled or rendered
CHANNEL_NAMES: Tuple[str, ...] = ("R", "G", "B", "A")

UNARY_OPERATORS = frozenset({"+", "-"})
ARITHMETIC_OPERATORS = frozenset({"+", "-", "*", "/", "%"})
SIGNED_BITWISE_OPERATORS = frozenset({"&", "|", "^", "&^"})
SHIFT_OPERATORS = frozenset({"<<", ">>"})
BINARY_OPERATORS = ARITHMETIC_OPERATORS | SIGNED_BITWISE_OPERATORS | SHIFT_OPERATORS


# ============================================================================
# Errors
# ============================================================================

class FormulaError(Exception):
    """Base class for static authoring mistakes in a formula

    Attributes:
        message: Human-readable description without channel context
        position: 0-based column in the formula text (None if unknown)
        channel: Channel name ("R", "G", "B", "A") once known
        formula: Source text of the failing formula once known
    """

    def __init__(self, message: str, position: Optional[int] = None,
                 channel: Optional[str] = None, formula: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.position = position
        self.channel = channel
        self.formula = formula

    def __str__(self) -> str:
        text = self.message
        if self.position is not None:
            text = f"{text} (column {self.position})"
        if self.channel is not None:
            text = f"channel {self.channel}: {text}"
        if self.formula is not None:
            text = f"{text} in formula {self.formula!r}"
        return text


class ParseError(FormulaError):
    """Malformed formula text: bad token, unbalanced parentheses, invalid literal"""


class UndefinedVariable(FormulaError):
    """Identifier outside the bound variable names"""

    def __init__(self, name: str, position: Optional[int] = None, **kwargs):
        super().__init__(f"Undefined variable: {name}", position, **kwargs)
        self.name = name


class UnsupportedExpression(FormulaError):
    """Unknown function, wrong argument count, or a construct outside the grammar"""


# ============================================================================
# Expression Tree
# ============================================================================

class Node:
    """Base class of all expression tree nodes"""
    __slots__ = ()


@dataclass(frozen=True)
class Literal(Node):
    """Numeric literal; integer literals are already promoted to float

    Attributes:
        value: Literal value as float
        text: Literal as written in the source
    """
    value: float
    text: str = ""


@dataclass(frozen=True)
class Variable(Node):
    name: str
    position: int = field(default=0, compare=False)


@dataclass(frozen=True)
class UnaryOp(Node):
    op: str
    operand: Node


@dataclass(frozen=True)
class BinaryOp(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Call(Node):
    """Intrinsic function call

    Attributes:
        name: Function name as written
        args: Argument trees in call order
        position: Column of the function name
    """
    name: str
    args: Tuple[Node, ...]
    position: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Grouping(Node):
    """Parenthesised sub-expression (kept so trees format back faithfully)"""
    inner: Node


# ============================================================================
# Rendering Contract
# ============================================================================

@dataclass(frozen=True)
class Pixel:
    """One saturated RGBA pixel (0-255 per channel)"""
    r: int
    g: int
    b: int
    a: int

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.r, self.g, self.b, self.a)


@dataclass(frozen=True)
class RenderSettings:
    """Raster size and sequence length, fixed before rendering starts

    Attributes:
        width: Frame width in pixels
        height: Frame height in pixels
        frame_count: Number of frames (frames are 0..frame_count-1)
        fps: Playback rate used when encoding and for time-based overlays
    """
    width: int
    height: int
    frame_count: int
    fps: int = 30

    def __post_init__(self):
        """Reject sizes that cannot produce a raster"""
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Frame size must be positive, got {self.width}x{self.height}")
        if self.frame_count < 0:
            raise ValueError(f"Frame count must be >= 0, got {self.frame_count}")
        if self.fps <= 0:
            raise ValueError(f"FPS must be positive, got {self.fps}")


class RenderState(Enum):
    """Lifecycle of a frame sequencer; FAILED is terminal"""
    UNCOMPILED = "uncompiled"
    COMPILED = "compiled"
    RENDERING = "rendering"
    DONE = "done"
    FAILED = "failed"
