"""
Formula Evaluator - Functional Core

Pure tree-walking interpreter for parsed formulas.
No side effects: no global state is read or written, bindings are never
mutated, and identical (tree, binding) inputs always give identical results.

Values are carried as numpy float64 so the arithmetic is plain IEEE-754:
division by zero, overflow and domain errors (sqrt(-1), log of negatives in
pow) produce inf/NaN instead of raising. The same code evaluates a single
pixel (scalar bindings) or a whole frame at once (array bindings).
"""

from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, Mapping, Tuple

import numpy as np  # type: ignore

from formula_types import (
    Node,
    Literal,
    Variable,
    UnaryOp,
    BinaryOp,
    Call,
    Grouping,
    VARIABLE_NAMES,
    UNARY_OPERATORS,
    BINARY_OPERATORS,
    UndefinedVariable,
    UnsupportedExpression,
)
from formula_parser import parse


# ============================================================================
# Intrinsic Function Table
# ============================================================================

# Keyed by (name, arity); read-only so it cannot be extended at runtime
INTRINSICS: Mapping[Tuple[str, int], Callable[..., Any]] = MappingProxyType({
    ("sin", 1): np.sin,
    ("cos", 1): np.cos,
    ("tan", 1): np.tan,
    ("exp", 1): np.exp,
    ("sqrt", 1): np.sqrt,
    ("abs", 1): np.abs,
    ("pow", 2): np.power,
})

INTRINSIC_NAMES = frozenset(name for name, _ in INTRINSICS)


# ============================================================================
# Numeric Helpers
# ============================================================================

_TWO_63 = 9223372036854775808.0
_TWO_64 = 18446744073709551616.0


def ieee_remainder(x, y):
    """IEEE-754 remainder: x - n*y with n = x/y rounded half-to-even

    Matches math.remainder exactly but works element-wise on arrays and
    returns NaN (instead of raising) for x = ±inf or y = 0.

    Examples:
        >>> float(ieee_remainder(7.0, 2.0))
        -1.0
        >>> float(ieee_remainder(200.0, 255.0))
        -55.0
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    ay = np.abs(y)
    # fmod is exact; reduce into [0, 2|y|) then fold around |y|/2
    r = np.fmod(np.abs(x), ay + ay)
    above_half = r + r > ay
    r = np.where(above_half, r - ay, r)
    r = np.where(above_half & (r + r >= ay), r - ay, r)
    return np.where(np.signbit(x), -r, r)


def to_int64(values) -> np.ndarray:
    """Truncate toward zero and wrap to a signed 64-bit integer

    Non-finite values truncate to 0.
    """
    v = np.asarray(values, dtype=np.float64)
    t = np.trunc(np.where(np.isfinite(v), v, 0.0))
    t = np.fmod(t, _TWO_64)
    t = np.where(t >= _TWO_63, t - _TWO_64, t)
    t = np.where(t < -_TWO_63, t + _TWO_64, t)
    return t.astype(np.int64)


def to_uint64(values) -> np.ndarray:
    """Truncate toward zero and wrap to an unsigned 64-bit integer"""
    return to_int64(values).astype(np.uint64)


def shift_left(left, right) -> np.ndarray:
    """Unsigned 64-bit left shift; shifting by 64 or more gives 0"""
    a = to_uint64(left)
    s = to_uint64(right)
    too_far = s >= np.uint64(64)
    shifted = np.left_shift(a, np.where(too_far, np.uint64(0), s))
    return np.where(too_far, np.uint64(0), shifted).astype(np.float64)


def shift_right(left, right) -> np.ndarray:
    """Unsigned (logical) 64-bit right shift; shifting by 64 or more gives 0"""
    a = to_uint64(left)
    s = to_uint64(right)
    too_far = s >= np.uint64(64)
    shifted = np.right_shift(a, np.where(too_far, np.uint64(0), s))
    return np.where(too_far, np.uint64(0), shifted).astype(np.float64)


def signed_bitwise(op: str, left, right) -> np.ndarray:
    """Apply & | ^ &^ on operands truncated to signed 64-bit integers"""
    a = to_int64(left)
    b = to_int64(right)
    if op == "&":
        result = np.bitwise_and(a, b)
    elif op == "|":
        result = np.bitwise_or(a, b)
    elif op == "^":
        result = np.bitwise_xor(a, b)
    else:
        # &^ (and-not): clear the bits of a that are set in b
        result = np.bitwise_and(a, np.invert(b))
    return result.astype(np.float64)


def apply_binary(op: str, left, right):
    """Combine two evaluated operands with a binary operator

    Raises:
        UnsupportedExpression: If op is not part of the grammar
    """
    if op == "+":
        return np.add(left, right)
    if op == "-":
        return np.subtract(left, right)
    if op == "*":
        return np.multiply(left, right)
    if op == "/":
        return np.divide(left, right)
    if op == "%":
        return ieee_remainder(left, right)
    if op in ("&", "|", "^", "&^"):
        return signed_bitwise(op, left, right)
    if op == "<<":
        return shift_left(left, right)
    if op == ">>":
        return shift_right(left, right)
    raise UnsupportedExpression(f"Unsupported binary operator: {op}")


# ============================================================================
# Tree Walking
# ============================================================================

def _eval_node(node: Node, values: Mapping[str, Any]):
    """Recursive evaluation; values maps variable names to float64 data"""
    if isinstance(node, Literal):
        return np.float64(node.value)

    if isinstance(node, Variable):
        if node.name not in values:
            raise UndefinedVariable(node.name, node.position)
        return values[node.name]

    if isinstance(node, Grouping):
        return _eval_node(node.inner, values)

    if isinstance(node, UnaryOp):
        operand = _eval_node(node.operand, values)
        if node.op == "+":
            return operand
        if node.op == "-":
            return np.negative(operand)
        raise UnsupportedExpression(f"Unsupported unary operator: {node.op}")

    if isinstance(node, BinaryOp):
        left = _eval_node(node.left, values)
        right = _eval_node(node.right, values)
        return apply_binary(node.op, left, right)

    if isinstance(node, Call):
        func = INTRINSICS.get((node.name, len(node.args)))
        if func is None:
            raise UnsupportedExpression(
                f"Unsupported function: {node.name}/{len(node.args)}", node.position
            )
        # Arguments evaluate left to right before the call
        args = [_eval_node(arg, values) for arg in node.args]
        return func(*args)

    raise UnsupportedExpression(f"Unsupported expression: {type(node).__name__}")


def _as_float64(binding: Mapping[str, Any]) -> Dict[str, Any]:
    """Fresh float64 view of a binding; the caller's mapping is never touched"""
    return {name: np.asarray(value, dtype=np.float64) for name, value in binding.items()}


def evaluate(tree: Node, binding: Mapping[str, Any]) -> float:
    """Evaluate a tree for one set of variable values

    Pure function - identical tree and binding always give an identical result.

    Args:
        tree: Parsed expression tree
        binding: Variable values, e.g. {"x": 3, "y": 4, "frame": 1}

    Returns:
        Result as a Python float (may be inf or NaN)

    Raises:
        UndefinedVariable: If the tree reads a name missing from binding
        UnsupportedExpression: For unknown functions/arity or foreign nodes

    Examples:
        >>> evaluate(parse("x+y+frame"), {"x": 3, "y": 4, "frame": 1})
        8.0
    """
    with np.errstate(all="ignore"):
        return float(_eval_node(tree, _as_float64(binding)))


def evaluate_array(tree: Node, binding: Mapping[str, Any]) -> np.ndarray:
    """Evaluate a tree element-wise over array-valued bindings

    Same semantics as evaluate(); used to render every pixel of a frame in
    one pass. The result broadcasts against the binding arrays but is not
    expanded (a constant formula returns a 0-d array).

    Args:
        tree: Parsed expression tree
        binding: Variable name → scalar or numpy array

    Returns:
        float64 numpy array
    """
    with np.errstate(all="ignore"):
        return np.asarray(_eval_node(tree, _as_float64(binding)), dtype=np.float64)


def evaluate_formula(text: str, binding: Mapping[str, Any]) -> float:
    """Parse, validate against the binding's names, and evaluate one formula"""
    tree = parse(text)
    validate_tree(tree, variables=tuple(binding))
    return evaluate(tree, binding)


# ============================================================================
# Static Validation
# ============================================================================

def iter_nodes(tree: Node) -> Iterator[Node]:
    """Yield every node of a tree, parents before children, left to right"""
    yield tree
    if isinstance(tree, Grouping):
        yield from iter_nodes(tree.inner)
    elif isinstance(tree, UnaryOp):
        yield from iter_nodes(tree.operand)
    elif isinstance(tree, BinaryOp):
        yield from iter_nodes(tree.left)
        yield from iter_nodes(tree.right)
    elif isinstance(tree, Call):
        for arg in tree.args:
            yield from iter_nodes(arg)


def collect_variables(tree: Node) -> Tuple[str, ...]:
    """Distinct variable names read by a tree, in first-use order"""
    names = [n.name for n in iter_nodes(tree) if isinstance(n, Variable)]
    return tuple(dict.fromkeys(names))


def collect_calls(tree: Node) -> Tuple[Tuple[str, int], ...]:
    """Distinct (function name, arity) pairs called by a tree"""
    calls = [(n.name, len(n.args)) for n in iter_nodes(tree) if isinstance(n, Call)]
    return tuple(dict.fromkeys(calls))


def validate_tree(tree: Node, variables: Tuple[str, ...] = VARIABLE_NAMES) -> None:
    """Reject trees that could only fail at evaluation time

    Run once per formula before rendering so that no pixel re-discovers the
    same authoring mistake.

    Args:
        tree: Parsed expression tree
        variables: Names that will be bound at evaluation time

    Raises:
        UndefinedVariable: First identifier outside variables
        UnsupportedExpression: First unknown function/arity, unknown operator,
            or node type outside the grammar
    """
    allowed = frozenset(variables)
    for node in iter_nodes(tree):
        if isinstance(node, (Literal, Grouping)):
            continue
        if isinstance(node, Variable):
            if node.name not in allowed:
                raise UndefinedVariable(node.name, node.position)
        elif isinstance(node, UnaryOp):
            if node.op not in UNARY_OPERATORS:
                raise UnsupportedExpression(f"Unsupported unary operator: {node.op}")
        elif isinstance(node, BinaryOp):
            if node.op not in BINARY_OPERATORS:
                raise UnsupportedExpression(f"Unsupported binary operator: {node.op}")
        elif isinstance(node, Call):
            if (node.name, len(node.args)) not in INTRINSICS:
                if node.name in INTRINSIC_NAMES:
                    message = (f"Wrong number of arguments for {node.name}: "
                               f"got {len(node.args)}")
                else:
                    message = f"Unsupported function: {node.name}"
                raise UnsupportedExpression(message, node.position)
        else:
            raise UnsupportedExpression(f"Unsupported expression: {type(node).__name__}")
