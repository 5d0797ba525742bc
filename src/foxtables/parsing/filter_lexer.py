"""Lexer for record filter expressions."""

import datetime
from decimal import Decimal

import ply.lex as lex


class FilterLexer:
    """Lexer for tokenizing filter expressions such as ``AGE > 26 AND ACTIVE``."""

    # Reserved keywords (matched case-insensitively)
    reserved = {
        "and": "AND",
        "or": "OR",
        "not": "NOT",
        "starts": "STARTS",
        "with": "WITH",
        "contains": "CONTAINS",
        "true": "TRUE",
        "false": "FALSE",
        "null": "NULL",
    }

    tokens = [
        "IDENTIFIER",
        "INTEGER",
        "NUMBER",
        "STRING",
        "DATE",
        "LPAREN",
        "RPAREN",
        "EQ",
        "NEQ",
        "LT",
        "LTE",
        "GT",
        "GTE",
    ] + list(reserved.values())

    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_LTE = r"<="
    t_GTE = r">="
    t_LT = r"<"
    t_GT = r">"

    t_ignore = " \t\r\n"

    def __init__(self) -> None:
        self.lexer: lex.LexToken = None  # type: ignore

    def t_NEQ(self, t: lex.LexToken) -> lex.LexToken:
        r"!=|<>"
        return t

    def t_EQ(self, t: lex.LexToken) -> lex.LexToken:
        r"==|="
        return t

    def t_DATE(self, t: lex.LexToken) -> lex.LexToken:
        r"\{\^\d{4}-\d{1,2}-\d{1,2}(?:[ T]\d{1,2}:\d{2}(?::\d{2})?)?\}"
        text = t.value[2:-1]
        try:
            if " " in text or "T" in text:
                t.value = datetime.datetime.fromisoformat(_pad_iso(text))
            else:
                t.value = datetime.date.fromisoformat(_pad_iso(text))
        except ValueError as e:
            raise SyntaxError(f"Invalid date literal {t.value} at position {t.lexpos}") from e
        return t

    def t_TRUE(self, t: lex.LexToken) -> lex.LexToken:
        r"\.[TtYy]\."
        return t

    def t_FALSE(self, t: lex.LexToken) -> lex.LexToken:
        r"\.[FfNn]\."
        return t

    def t_NUMBER(self, t: lex.LexToken) -> lex.LexToken:
        r"-?\d+\.\d+"
        t.value = Decimal(t.value)
        return t

    def t_INTEGER(self, t: lex.LexToken) -> lex.LexToken:
        r"-?\d+"
        t.value = int(t.value)
        return t

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r'"[^"]*"|\'[^\']*\''
        t.value = t.value[1:-1]
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_][a-zA-Z0-9_]*"
        t.type = self.reserved.get(t.value.lower(), "IDENTIFIER")
        if t.type == "IDENTIFIER":
            t.value = t.value.upper()
        return t

    def t_error(self, t: lex.LexToken) -> None:
        raise SyntaxError(f"Illegal character '{t.value[0]}' at position {t.lexpos}")

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Tokenize the input and return all tokens."""
        self.lexer.input(data)
        tokens = []
        while True:
            tok = self.lexer.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens


def _pad_iso(text: str) -> str:
    """Zero-pad single-digit month/day/hour so fromisoformat accepts them."""
    date_part, sep, time_part = text.replace("T", " ").partition(" ")
    year, month, day = date_part.split("-")
    result = f"{year}-{int(month):02d}-{int(day):02d}"
    if sep:
        hour, rest = time_part.split(":", 1)
        result += f" {int(hour):02d}:{rest}"
    return result
