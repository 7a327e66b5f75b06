"""
Unit tests for formula_parser.py - Functional Core

Tests tokenizing, precedence, grouping and syntax error reporting.
Fast, deterministic tests with no side effects.
"""

import math

import pytest

from formula_types import (
    Literal,
    Variable,
    UnaryOp,
    BinaryOp,
    Call,
    Grouping,
    ParseError,
)
from formula_parser import MAX_DEPTH, MAX_NESTING, tokenize, parse, format_tree


# ============================================================================
# Tests for tokenize()
# ============================================================================

class TestTokenize:
    """Tests for splitting formula text into tokens"""

    def test_numbers_identifiers_and_operators(self):
        """Mixed formula yields typed tokens ending in EOF"""
        tokens = tokenize("x*2.5+frame")
        assert [t.type for t in tokens] == ["IDENT", "OP", "NUMBER", "OP", "IDENT", "EOF"]
        assert [t.value for t in tokens[:-1]] == ["x", "*", "2.5", "+", "frame"]

    def test_two_character_operators(self):
        """&^, << and >> are single tokens"""
        values = [t.value for t in tokenize("a&^b<<c>>d")[:-1]]
        assert values == ["a", "&^", "b", "<<", "c", ">>", "d"]

    def test_ampersand_then_caret_with_space_is_two_tokens(self):
        """'& ^' is and followed by xor, not and-not"""
        values = [t.value for t in tokenize("a & ^b")[:-1]]
        assert values == ["a", "&", "^", "b"]

    def test_token_positions(self):
        """Positions are 0-based columns, whitespace skipped"""
        tokens = tokenize("  x + 10")
        assert [t.position for t in tokens] == [2, 4, 6, 8]

    def test_float_forms(self):
        """Leading-dot, trailing-dot and exponent floats are numbers"""
        values = [t.value for t in tokenize(".5 5. 1e3 2.5E-2") if t.type == "NUMBER"]
        assert values == [".5", "5.", "1e3", "2.5E-2"]

    @pytest.mark.parametrize("text", ["1.2.3", "1e", "12abc", "3_0"])
    def test_malformed_literal(self, text):
        """Literals glued to letters, dots or underscores are rejected"""
        with pytest.raises(ParseError) as exc_info:
            tokenize(text)
        assert "Invalid numeric literal" in str(exc_info.value)
        assert exc_info.value.position == 0

    @pytest.mark.parametrize("text,char", [("x $ y", "$"), ("x < y", "<"), ("x = 1", "=")])
    def test_unexpected_character(self, text, char):
        """Characters outside the grammar are reported with their column"""
        with pytest.raises(ParseError) as exc_info:
            tokenize(text)
        assert repr(char) in str(exc_info.value)
        assert exc_info.value.position == 2


# ============================================================================
# Tests for parse()
# ============================================================================

class TestParseStructure:
    """Tests for the shape of parsed trees"""

    def test_integer_literal_promoted(self):
        """Integer literal value is a float"""
        tree = parse("5")
        assert tree == Literal(5.0, "5")
        assert isinstance(tree.value, float)

    def test_float_literal(self):
        assert parse("0.25") == Literal(0.25, "0.25")

    def test_variable(self):
        assert parse("frame") == Variable("frame")

    def test_multiplication_binds_tighter_than_addition(self):
        """2+3*4 parses as 2+(3*4)"""
        tree = parse("2+3*4")
        assert tree == BinaryOp("+", Literal(2.0, "2"), BinaryOp("*", Literal(3.0, "3"), Literal(4.0, "4")))

    def test_grouping_overrides_precedence(self):
        """(2+3)*4 keeps the group as the left operand"""
        tree = parse("(2+3)*4")
        assert isinstance(tree, BinaryOp) and tree.op == "*"
        assert isinstance(tree.left, Grouping)
        assert tree.left.inner == BinaryOp("+", Literal(2.0, "2"), Literal(3.0, "3"))

    def test_bitwise_binds_loosest(self):
        """x + 1 & y * 2 parses as (x+1) & (y*2)"""
        tree = parse("x + 1 & y * 2")
        assert tree.op == "&"
        assert tree.left.op == "+"
        assert tree.right.op == "*"

    def test_bitwise_operators_share_one_level_left_associative(self):
        """x << 2 | y parses as (x<<2) | y"""
        tree = parse("x << 2 | y")
        assert tree.op == "|"
        assert tree.left.op == "<<"

    def test_left_associative_subtraction(self):
        """10-4-3 parses as (10-4)-3"""
        tree = parse("10-4-3")
        assert tree.op == "-"
        assert tree.left == BinaryOp("-", Literal(10.0, "10"), Literal(4.0, "4"))

    def test_unary_binds_tighter_than_multiplication(self):
        """-x*2 parses as (-x)*2"""
        tree = parse("-x*2")
        assert tree == BinaryOp("*", UnaryOp("-", Variable("x")), Literal(2.0, "2"))

    def test_stacked_unary(self):
        assert parse("-+-x") == UnaryOp("-", UnaryOp("+", UnaryOp("-", Variable("x"))))

    def test_call_arguments_in_order(self):
        tree = parse("pow(x, 2)")
        assert tree == Call("pow", (Variable("x"), Literal(2.0, "2")))

    def test_call_without_arguments(self):
        """Zero-argument calls parse (arity is checked later)"""
        assert parse("sin()") == Call("sin", ())

    def test_nested_calls(self):
        tree = parse("sqrt(abs(x - y))")
        assert tree.name == "sqrt"
        assert tree.args[0].name == "abs"

    def test_unknown_identifiers_still_parse(self):
        """Name checking belongs to validation, not parsing"""
        assert parse("foo(z)") == Call("foo", (Variable("z"),))

    def test_node_positions_recorded(self):
        tree = parse("x + sin(y)")
        assert tree.left.position == 0
        assert tree.right.position == 4
        assert tree.right.args[0].position == 8

    def test_trees_are_immutable(self):
        tree = parse("x + 1")
        with pytest.raises(AttributeError):
            tree.op = "-"

    def test_parse_is_repeatable(self):
        """Parsing the same text twice gives equal trees"""
        assert parse("(x*y+frame)%255") == parse("(x*y+frame)%255")

    def test_huge_integer_literal_is_infinite(self):
        """Literals past the float range behave like 1e400"""
        tree = parse("1" + "0" * 400)
        assert tree.value == math.inf
        assert parse("9" * 5000).value == math.inf

    def test_moderate_nesting_accepted(self):
        depth = MAX_NESTING - 1
        tree = parse("(" * depth + "x" + ")" * depth)
        assert isinstance(tree, Grouping)

    def test_long_operator_chain_accepted(self):
        tree = parse("x" + " + 1" * (MAX_DEPTH - 1))
        assert tree.op == "+"


class TestParseErrors:
    """Tests for syntax error reporting"""

    @pytest.mark.parametrize("text", ["", "   "])
    def test_empty_formula(self, text):
        with pytest.raises(ParseError, match="Empty formula"):
            parse(text)

    def test_missing_close_paren(self):
        with pytest.raises(ParseError, match="Unbalanced parentheses") as exc_info:
            parse("(x + 1")
        assert exc_info.value.position == 6

    def test_extra_close_paren(self):
        with pytest.raises(ParseError, match=r"Unexpected '\)'") as exc_info:
            parse("x + 1)")
        assert exc_info.value.position == 5

    def test_unclosed_call(self):
        with pytest.raises(ParseError, match="call to sin"):
            parse("sin(x")

    def test_dangling_operator(self):
        with pytest.raises(ParseError, match="end of formula"):
            parse("x +")

    def test_adjacent_operands(self):
        with pytest.raises(ParseError, match="Unexpected 'y'"):
            parse("x y")

    def test_empty_parentheses(self):
        with pytest.raises(ParseError, match="Empty parentheses"):
            parse("()")

    def test_trailing_comma_in_call(self):
        with pytest.raises(ParseError):
            parse("pow(x,)")

    def test_non_string_input(self):
        with pytest.raises(ParseError, match="must be a string"):
            parse(42)

    @pytest.mark.parametrize("text,position", [("x²", 1), ("٣", 0), ("x + ½", 4)])
    def test_non_ascii_digits_rejected(self, text, position):
        """Unicode digits are not numeric literals"""
        with pytest.raises(ParseError, match="Unexpected character") as exc_info:
            parse(text)
        assert exc_info.value.position == position

    def test_ascii_literal_glued_to_unicode_digit(self):
        with pytest.raises(ParseError, match="Invalid numeric literal"):
            parse("1٣")

    @pytest.mark.parametrize("text", [
        "(" * 3000 + "1" + ")" * 3000,
        "-" * 3000 + "1",
        "sqrt(" * 3000 + "x" + ")" * 3000,
        "x" + " + 1" * 3000,
        "x" + " << 1" * 3000,
    ], ids=["parentheses", "unary", "calls", "additive_chain", "shift_chain"])
    def test_deep_nesting_rejected(self, text):
        """Deep input fails cleanly instead of exhausting the stack"""
        with pytest.raises(ParseError, match="nested too deeply"):
            parse(text)

    def test_error_message_includes_column(self):
        with pytest.raises(ParseError) as exc_info:
            parse("x # y")
        assert "(column 2)" in str(exc_info.value)


# ============================================================================
# Tests for format_tree()
# ============================================================================

class TestFormatTree:
    """Tests for rendering trees back to source"""

    def test_canonical_spacing(self):
        assert format_tree(parse("(x*y+frame)%255")) == "(x * y + frame) % 255"

    def test_calls_and_unary(self):
        assert format_tree(parse("-pow(x,2)")) == "-pow(x, 2)"

    @pytest.mark.parametrize("text", [
        "(x*y+frame)%255",
        "x &^ y << 2",
        "-sin(x/10.0)*127+128",
        "sqrt(abs(x-y)) | frame",
    ])
    def test_formatted_source_parses_to_same_tree(self, text):
        tree = parse(text)
        assert parse(format_tree(tree)) == tree


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
