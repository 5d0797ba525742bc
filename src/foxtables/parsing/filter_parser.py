"""Parser and evaluator for record filter expressions.

Examples::

    AGE > 26 AND NAME STARTS WITH "Al"
    ACTIVE = TRUE
    NOT ACTIVE OR BORN < {^2000-01-01}
    NOTES != NULL
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import ply.yacc as yacc

from foxtables.parsing.filter_lexer import FilterLexer
from foxtables.types import Record


class NullValue:
    """The NULL literal."""

    def __repr__(self) -> str:
        return "NULL"


NULL = NullValue()


@dataclass
class Condition:
    """A comparison of one field against a literal."""

    field: str
    operator: str  # eq, neq, lt, lte, gt, gte, starts_with, contains
    value: Any
    negate: bool = False


@dataclass
class CompoundCondition:
    """Two conditions joined by AND/OR."""

    left: Condition | CompoundCondition
    operator: str  # and, or
    right: Condition | CompoundCondition
    negate: bool = False


class FilterParser:
    """Parser for filter expressions."""

    tokens = FilterLexer.tokens

    precedence = (
        ("left", "OR"),
        ("left", "AND"),
        ("right", "NOT"),
    )

    def __init__(self) -> None:
        self.lexer = FilterLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore

    def p_condition_comparison(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER EQ value
                     | IDENTIFIER NEQ value
                     | IDENTIFIER LT value
                     | IDENTIFIER LTE value
                     | IDENTIFIER GT value
                     | IDENTIFIER GTE value"""
        op_map = {
            "=": "eq",
            "==": "eq",
            "!=": "neq",
            "<>": "neq",
            "<": "lt",
            "<=": "lte",
            ">": "gt",
            ">=": "gte",
        }
        p[0] = Condition(field=p[1], operator=op_map[p[2]], value=p[3])

    def p_condition_starts_with(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER STARTS WITH STRING"""
        p[0] = Condition(field=p[1], operator="starts_with", value=p[4])

    def p_condition_contains(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER CONTAINS STRING"""
        p[0] = Condition(field=p[1], operator="contains", value=p[3])

    def p_condition_bare(self, p: yacc.YaccProduction) -> None:
        """condition : IDENTIFIER"""
        p[0] = Condition(field=p[1], operator="eq", value=True)

    def p_condition_not(self, p: yacc.YaccProduction) -> None:
        """condition : NOT condition"""
        cond = p[2]
        cond.negate = not cond.negate
        p[0] = cond

    def p_condition_and(self, p: yacc.YaccProduction) -> None:
        """condition : condition AND condition"""
        p[0] = CompoundCondition(left=p[1], operator="and", right=p[3])

    def p_condition_or(self, p: yacc.YaccProduction) -> None:
        """condition : condition OR condition"""
        p[0] = CompoundCondition(left=p[1], operator="or", right=p[3])

    def p_condition_paren(self, p: yacc.YaccProduction) -> None:
        """condition : LPAREN condition RPAREN"""
        p[0] = p[2]

    def p_value_literal(self, p: yacc.YaccProduction) -> None:
        """value : INTEGER
                 | NUMBER
                 | STRING
                 | DATE"""
        p[0] = p[1]

    def p_value_true(self, p: yacc.YaccProduction) -> None:
        """value : TRUE"""
        p[0] = True

    def p_value_false(self, p: yacc.YaccProduction) -> None:
        """value : FALSE"""
        p[0] = False

    def p_value_null(self, p: yacc.YaccProduction) -> None:
        """value : NULL"""
        p[0] = NULL

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error at '{p.value}' (position {p.lexpos})")
        else:
            raise SyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, start="condition", **kwargs)

    def parse(self, data: str) -> Condition | CompoundCondition:
        """Parse a filter expression into a condition tree."""
        if self.parser is None:
            self.build(debug=False, write_tables=False)
        return self.parser.parse(data, lexer=self.lexer.lexer)


def condition_fields(condition: Condition | CompoundCondition) -> set[str]:
    """Return the field names a condition tree refers to."""
    if isinstance(condition, CompoundCondition):
        return condition_fields(condition.left) | condition_fields(condition.right)
    return {condition.field}


def evaluate_condition(record: Record, condition: Condition | CompoundCondition) -> bool:
    """Evaluate a condition against a record."""
    if isinstance(condition, CompoundCondition):
        left = evaluate_condition(record, condition.left)
        if condition.operator == "and":
            result = left and evaluate_condition(record, condition.right)
        else:  # or
            result = left or evaluate_condition(record, condition.right)
        return not result if condition.negate else result

    field_value = record[condition.field]
    if field_value is None:
        # Allow null comparisons: field = NULL, field != NULL
        if isinstance(condition.value, NullValue):
            result = condition.operator == "eq"
            return not result if condition.negate else result
        return condition.negate

    result = _compare(field_value, condition.operator, condition.value)
    return not result if condition.negate else result


def _coerce(field_value: Any, value: Any) -> tuple[Any, Any]:
    """Bring a literal to the type of the field value it is compared with."""
    if isinstance(field_value, float) and isinstance(value, Decimal):
        return field_value, float(value)
    if isinstance(field_value, datetime.datetime):
        if isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
            return field_value, datetime.datetime.combine(value, datetime.time())
    elif isinstance(field_value, datetime.date) and isinstance(value, datetime.datetime):
        return datetime.datetime.combine(field_value, datetime.time()), value
    return field_value, value


def _compare(field_value: Any, operator: str, value: Any) -> bool:
    """Compare a field value against a literal."""
    if isinstance(value, NullValue):
        return operator == "neq"
    field_value, value = _coerce(field_value, value)
    try:
        if operator == "eq":
            return field_value == value
        elif operator == "neq":
            return field_value != value
        elif operator == "lt":
            return field_value < value
        elif operator == "lte":
            return field_value <= value
        elif operator == "gt":
            return field_value > value
        elif operator == "gte":
            return field_value >= value
        elif operator == "starts_with":
            return isinstance(field_value, str) and field_value.startswith(value)
        elif operator == "contains":
            return isinstance(field_value, str) and value in field_value
    except TypeError:
        return False
    return False


class Filter:
    """A compiled filter expression, callable on records."""

    def __init__(self, text: str, condition: Condition | CompoundCondition) -> None:
        self.text = text
        self.condition = condition
        self.fields = condition_fields(condition)

    def __call__(self, record: Record) -> bool:
        return evaluate_condition(record, self.condition)

    def __repr__(self) -> str:
        return f"Filter({self.text!r})"


_parser: FilterParser | None = None


def compile_filter(text: str) -> Filter:
    """Parse a filter expression with a shared parser instance."""
    global _parser
    if _parser is None:
        _parser = FilterParser()
    return Filter(text, _parser.parse(text))
