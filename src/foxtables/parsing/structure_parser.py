"""Parser for table structure strings.

    structure := field ("," field)* [","]
    field     := NAME TYPE ["(" length ["," decimals] ")"] option*
    option    := NULL | NOCPTRANS | BINARY | AUTOINC

TYPE is a one-letter tag (``C``, ``N``, ``I`` ...) or a type name
(``Character``, ``Numeric``, ``Integer`` ...).
"""

from __future__ import annotations

from typing import Any

import ply.yacc as yacc

from foxtables.header import FLAG_AUTOINCREMENT, FLAG_BINARY, FLAG_NULLABLE, FieldDescriptor
from foxtables.parsing.structure_lexer import StructureLexer
from foxtables.types import FIELD_TYPE_TAGS, FieldType

_OPTION_FLAGS = {
    "NULL": FLAG_NULLABLE,
    "NOCPTRANS": FLAG_BINARY,
    "BINARY": FLAG_BINARY,
    "AUTOINC": FLAG_AUTOINCREMENT,
}


def resolve_type(name: str) -> FieldType:
    """Map a tag or type name to a FieldType.

    Raises:
        ValueError: If the name is not a known field type.
    """
    field_type = FIELD_TYPE_TAGS.get(name.upper())
    if field_type is not None:
        return field_type
    try:
        return FieldType[name.upper()]
    except KeyError:
        raise ValueError(f"Unknown field type '{name}'") from None


class StructureParser:
    """Parser producing FieldDescriptors from a structure string."""

    tokens = StructureLexer.tokens

    def __init__(self) -> None:
        self.lexer = StructureLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore

    def p_structure(self, p: yacc.YaccProduction) -> None:
        """structure : field_list
                     | field_list COMMA"""
        p[0] = p[1]

    def p_field_list_single(self, p: yacc.YaccProduction) -> None:
        """field_list : field"""
        p[0] = [p[1]]

    def p_field_list_multiple(self, p: yacc.YaccProduction) -> None:
        """field_list : field_list COMMA field"""
        p[0] = p[1] + [p[3]]

    def p_field(self, p: yacc.YaccProduction) -> None:
        """field : IDENTIFIER type_spec option_list"""
        field_type, length, decimals = p[2]
        flags = 0
        for option in p[3]:
            flags |= _OPTION_FLAGS[option]
        if length is None:
            length = field_type.fixed_length or 0
        p[0] = FieldDescriptor(p[1], field_type, length, decimals, flags=flags)

    def p_type_spec_bare(self, p: yacc.YaccProduction) -> None:
        """type_spec : IDENTIFIER"""
        p[0] = (resolve_type(p[1]), None, 0)

    def p_type_spec_length(self, p: yacc.YaccProduction) -> None:
        """type_spec : IDENTIFIER LPAREN INTEGER RPAREN"""
        p[0] = (resolve_type(p[1]), p[3], 0)

    def p_type_spec_decimals(self, p: yacc.YaccProduction) -> None:
        """type_spec : IDENTIFIER LPAREN INTEGER COMMA INTEGER RPAREN"""
        p[0] = (resolve_type(p[1]), p[3], p[5])

    def p_option_list_empty(self, p: yacc.YaccProduction) -> None:
        """option_list : """
        p[0] = []

    def p_option_list(self, p: yacc.YaccProduction) -> None:
        """option_list : option_list option"""
        p[0] = p[1] + [p[2]]

    def p_option(self, p: yacc.YaccProduction) -> None:
        """option : NULL
                  | NOCPTRANS
                  | BINARY
                  | AUTOINC"""
        p[0] = p[1].upper()

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error at '{p.value}' (position {p.lexpos})")
        else:
            raise SyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, start="structure", **kwargs)

    def parse(self, data: str) -> list[FieldDescriptor]:
        """Parse a structure string into field descriptors."""
        if self.parser is None:
            self.build(debug=False, write_tables=False)
        return self.parser.parse(data, lexer=self.lexer.lexer)


_parser: StructureParser | None = None


def parse_structure(data: str) -> list[FieldDescriptor]:
    """Parse a structure string with a shared parser instance."""
    global _parser
    if _parser is None:
        _parser = StructureParser()
    return _parser.parse(data)
