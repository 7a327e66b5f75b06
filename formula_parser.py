"""
Formula Parser - Functional Core

Turns one formula string into an immutable expression tree.
No side effects: each call builds its own tokenizer and parser state, so
formulas can be compiled independently and from several threads at once.

Grammar (highest to lowest precedence):
    unary           + -
    multiplicative  * / %
    additive        + -
    bitwise         & | ^ &^ << >>
Parentheses override precedence. Calls are written name(arg, ...).
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Tuple

from formula_types import (
    Node,
    Literal,
    Variable,
    UnaryOp,
    BinaryOp,
    Call,
    Grouping,
    ParseError,
)


# ============================================================================
# Tokenizer
# ============================================================================

@dataclass(frozen=True)
class Token:
    type: str  # NUMBER, IDENT, OP, LPAREN, RPAREN, COMMA, EOF
    value: str
    position: int


NUMBER_PATTERN = re.compile(
    r"[0-9]+\.[0-9]*(?:[eE][+-]?[0-9]+)?"
    r"|\.[0-9]+(?:[eE][+-]?[0-9]+)?"
    r"|[0-9]+(?:[eE][+-]?[0-9]+)?"
)
IDENT_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Deepest tree accepted; evaluation and formatting recurse once per level
MAX_DEPTH = 200
# Deepest parenthesis/unary/call nesting; the parser recurses several frames per level
MAX_NESTING = 100

# Two-character operators must be tried before their one-character prefixes
OPERATORS = ("&^", "<<", ">>", "+", "-", "*", "/", "%", "&", "|", "^")

PUNCTUATION = {
    "(": "LPAREN",
    ")": "RPAREN",
    ",": "COMMA",
}

MULTIPLICATIVE = ("*", "/", "%")
ADDITIVE = ("+", "-")
BITWISE = ("&", "|", "^", "&^", "<<", ">>")


def tokenize(text: str) -> List[Token]:
    """Split formula text into tokens

    Args:
        text: Formula source

    Returns:
        Token list terminated by an EOF token

    Raises:
        ParseError: On an unknown character or malformed numeric literal

    Examples:
        >>> [t.value for t in tokenize("x&^3")]
        ['x', '&^', '3', '']
    """
    tokens: List[Token] = []
    index = 0
    n = len(text)

    while index < n:
        ch = text[index]
        if ch.isspace():
            index += 1
            continue

        match = NUMBER_PATTERN.match(text, index)
        if match:
            end = match.end()
            # A literal glued to letters, digits or another dot is malformed
            if end < n and (text[end].isalnum() or text[end] in "._"):
                bad_end = end
                while bad_end < n and (text[bad_end].isalnum() or text[bad_end] in "._"):
                    bad_end += 1
                raise ParseError(f"Invalid numeric literal {text[index:bad_end]!r}", index)
            tokens.append(Token("NUMBER", match.group(0), index))
            index = end
            continue

        match = IDENT_PATTERN.match(text, index)
        if match:
            tokens.append(Token("IDENT", match.group(0), index))
            index = match.end()
            continue

        if ch in PUNCTUATION:
            tokens.append(Token(PUNCTUATION[ch], ch, index))
            index += 1
            continue

        for op in OPERATORS:
            if text.startswith(op, index):
                tokens.append(Token("OP", op, index))
                index += len(op)
                break
        else:
            raise ParseError(f"Unexpected character {ch!r}", index)

    tokens.append(Token("EOF", "", n))
    return tokens


# ============================================================================
# Recursive-Descent Parser
# ============================================================================

class Parser:
    """Single-use parser over one token list

    Tracks two limits so hostile input fails with ParseError instead of
    exhausting the interpreter stack: the current nesting of parentheses,
    calls and unary operators, and the height of every node built.
    """

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0
        self.nesting = 0
        self.heights: Dict[int, int] = {}

    def current(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.type != "EOF":
            self.pos += 1
        return token

    def at_operator(self, ops) -> bool:
        token = self.current()
        return token.type == "OP" and token.value in ops

    def expect(self, token_type: str) -> Token:
        token = self.current()
        if token.type != token_type:
            raise ParseError(f"Expected {token_type}, got {describe_token(token)}", token.position)
        return self.advance()

    def build(self, node: Node, children: Tuple[Node, ...], position: int) -> Node:
        """Record a new node's height, rejecting trees deeper than MAX_DEPTH"""
        height = 1 + max((self.heights[id(child)] for child in children), default=0)
        if height > MAX_DEPTH:
            raise ParseError("Formula nested too deeply", position)
        self.heights[id(node)] = height
        return node

    def enter(self, position: int) -> None:
        self.nesting += 1
        if self.nesting > MAX_NESTING:
            raise ParseError("Formula nested too deeply", position)

    def leave(self) -> None:
        self.nesting -= 1

    def parse(self) -> Node:
        """Parse a complete formula; trailing tokens are an error"""
        if self.current().type == "EOF":
            raise ParseError("Empty formula", 0)
        node = self.parse_bitwise()
        token = self.current()
        if token.type != "EOF":
            raise ParseError(f"Unexpected {describe_token(token)}", token.position)
        return node

    def parse_bitwise(self) -> Node:
        left = self.parse_additive()
        while self.at_operator(BITWISE):
            token = self.advance()
            right = self.parse_additive()
            left = self.build(BinaryOp(token.value, left, right), (left, right), token.position)
        return left

    def parse_additive(self) -> Node:
        left = self.parse_multiplicative()
        while self.at_operator(ADDITIVE):
            token = self.advance()
            right = self.parse_multiplicative()
            left = self.build(BinaryOp(token.value, left, right), (left, right), token.position)
        return left

    def parse_multiplicative(self) -> Node:
        left = self.parse_unary()
        while self.at_operator(MULTIPLICATIVE):
            token = self.advance()
            right = self.parse_unary()
            left = self.build(BinaryOp(token.value, left, right), (left, right), token.position)
        return left

    def parse_unary(self) -> Node:
        if self.at_operator(ADDITIVE):
            token = self.advance()
            self.enter(token.position)
            try:
                operand = self.parse_unary()
            finally:
                self.leave()
            return self.build(UnaryOp(token.value, operand), (operand,), token.position)
        return self.parse_primary()

    def parse_primary(self) -> Node:
        token = self.current()

        if token.type == "NUMBER":
            self.advance()
            return self.build(Literal(literal_value(token), token.value), (), token.position)

        if token.type == "IDENT":
            self.advance()
            if self.current().type == "LPAREN":
                return self.parse_call(token)
            return self.build(Variable(token.value, token.position), (), token.position)

        if token.type == "LPAREN":
            self.advance()
            if self.current().type == "RPAREN":
                raise ParseError("Empty parentheses", self.current().position)
            self.enter(token.position)
            try:
                inner = self.parse_bitwise()
            finally:
                self.leave()
            if self.current().type != "RPAREN":
                raise ParseError(
                    f"Unbalanced parentheses: expected ')', got {describe_token(self.current())}",
                    self.current().position
                )
            self.advance()
            return self.build(Grouping(inner), (inner,), token.position)

        raise ParseError(f"Unexpected {describe_token(token)}", token.position)

    def parse_call(self, name_token: Token) -> Node:
        self.expect("LPAREN")
        args: List[Node] = []
        self.enter(name_token.position)
        try:
            if self.current().type != "RPAREN":
                args.append(self.parse_bitwise())
                while self.current().type == "COMMA":
                    self.advance()
                    args.append(self.parse_bitwise())
        finally:
            self.leave()
        if self.current().type != "RPAREN":
            raise ParseError(
                f"Unbalanced parentheses in call to {name_token.value}: "
                f"expected ')', got {describe_token(self.current())}",
                self.current().position
            )
        self.advance()
        call = Call(name_token.value, tuple(args), name_token.position)
        return self.build(call, call.args, name_token.position)


def describe_token(token: Token) -> str:
    if token.type == "EOF":
        return "end of formula"
    return repr(token.value)


def literal_value(token: Token) -> float:
    """Numeric value of a NUMBER token (integers promoted to float)

    Literals beyond the float range become inf, as 1e400 does.
    """
    return float(token.value)


# ============================================================================
# Public API
# ============================================================================

def parse(text: str) -> Node:
    """Parse one formula into an expression tree

    Pure function - holds no state across calls.

    Args:
        text: Formula source, e.g. "(x*y+frame)%255"

    Returns:
        Root node of the immutable expression tree

    Raises:
        ParseError: Naming the malformed token and its column

    Examples:
        >>> parse("2+3*4")
        BinaryOp(op='+', left=Literal(value=2.0, text='2'), right=BinaryOp(op='*', left=Literal(value=3.0, text='3'), right=Literal(value=4.0, text='4')))
    """
    if not isinstance(text, str):
        raise ParseError(f"Formula must be a string, got {type(text).__name__}")
    return Parser(tokenize(text)).parse()


def format_tree(node: Node) -> str:
    """Render a tree back to formula source

    Groupings are preserved, so parse(format_tree(t)) == t for parsed trees.
    """
    if isinstance(node, Literal):
        return node.text or repr(node.value)
    if isinstance(node, Variable):
        return node.name
    if isinstance(node, UnaryOp):
        return f"{node.op}{format_tree(node.operand)}"
    if isinstance(node, BinaryOp):
        return f"{format_tree(node.left)} {node.op} {format_tree(node.right)}"
    if isinstance(node, Call):
        return f"{node.name}({', '.join(format_tree(a) for a in node.args)})"
    if isinstance(node, Grouping):
        return f"({format_tree(node.inner)})"
    return f"<{type(node).__name__}>"
