"""Parsing module for table structure strings and filter expressions."""

from foxtables.parsing.filter_parser import (
    CompoundCondition,
    Condition,
    Filter,
    FilterParser,
    compile_filter,
)
from foxtables.parsing.structure_parser import StructureParser, parse_structure

__all__ = [
    "CompoundCondition",
    "Condition",
    "Filter",
    "FilterParser",
    "StructureParser",
    "compile_filter",
    "parse_structure",
]
