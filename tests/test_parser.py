"""Tests for the structure and filter DSLs."""

import datetime
from decimal import Decimal

import pytest

from foxtables.parsing import FilterParser, StructureParser, compile_filter, parse_structure
from foxtables.parsing.filter_lexer import FilterLexer
from foxtables.parsing.filter_parser import CompoundCondition, Condition
from foxtables.parsing.structure_lexer import StructureLexer
from foxtables.types import FieldType, Record


class TestStructureLexer:
    def test_tokenize(self):
        lexer = StructureLexer()
        lexer.build()

        tokens = lexer.tokenize("NAME C(20), ID I autoinc")
        token_types = [t.type for t in tokens]

        assert token_types == [
            "IDENTIFIER",
            "IDENTIFIER",
            "LPAREN",
            "INTEGER",
            "RPAREN",
            "COMMA",
            "IDENTIFIER",
            "IDENTIFIER",
            "AUTOINC",
        ]


class TestStructureParser:
    def test_people(self):
        fields = parse_structure("NAME C(20), AGE N(3,0), ACTIVE L")

        assert [f.name for f in fields] == ["NAME", "AGE", "ACTIVE"]
        assert [f.type for f in fields] == [
            FieldType.CHARACTER,
            FieldType.NUMERIC,
            FieldType.LOGICAL,
        ]
        assert fields[0].length == 20
        assert (fields[1].length, fields[1].decimals) == (3, 0)
        assert fields[2].length == 1

    def test_type_names_and_options(self):
        parser = StructureParser()
        fields = parser.parse(
            "ID Integer AUTOINC, NOTES M NOCPTRANS, PRICE currency NULL, STAMP T,"
        )

        assert [f.type for f in fields] == [
            FieldType.INTEGER,
            FieldType.MEMO,
            FieldType.CURRENCY,
            FieldType.DATETIME,
        ]
        assert fields[0].autoincrement
        assert fields[1].binary
        assert fields[2].nullable
        assert fields[3].length == 8

    def test_multiline(self):
        fields = parse_structure("""
            NAME C(10),
            BORN D
        """)
        assert [f.name for f in fields] == ["NAME", "BORN"]

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            parse_structure("NAME Z(3)")

    def test_syntax_errors(self):
        with pytest.raises(SyntaxError):
            parse_structure("NAME C(")
        with pytest.raises(SyntaxError):
            parse_structure("NAME C(20) AGE N(3)")
        with pytest.raises(SyntaxError):
            parse_structure("NAME C(20); AGE N(3)")


class TestFilterLexer:
    def test_tokenize(self):
        lexer = FilterLexer()
        lexer.build()

        tokens = lexer.tokenize('age >= 26 and Name starts with "Al" or active = .T.')
        token_types = [t.type for t in tokens]

        assert token_types == [
            "IDENTIFIER", "GTE", "INTEGER", "AND",
            "IDENTIFIER", "STARTS", "WITH", "STRING", "OR",
            "IDENTIFIER", "EQ", "TRUE",
        ]
        assert tokens[0].value == "AGE"

    def test_literals(self):
        lexer = FilterLexer()
        lexer.build()

        tokens = lexer.tokenize("{^2000-1-2} {^2000-01-02 13:45} -1.50 'x' <>")
        assert tokens[0].value == datetime.date(2000, 1, 2)
        assert tokens[1].value == datetime.datetime(2000, 1, 2, 13, 45)
        assert tokens[2].value == Decimal("-1.50")
        assert tokens[3].value == "x"
        assert tokens[4].type == "NEQ"

    def test_invalid_date(self):
        lexer = FilterLexer()
        lexer.build()
        with pytest.raises(SyntaxError):
            lexer.tokenize("{^2000-02-30}")


class TestFilterParser:
    def test_precedence(self):
        parser = FilterParser()
        cond = parser.parse("A = 1 OR B = 2 AND C = 3")

        assert isinstance(cond, CompoundCondition)
        assert cond.operator == "or"
        assert isinstance(cond.left, Condition)
        assert cond.right.operator == "and"

    def test_not_on_compound(self):
        cond = FilterParser().parse("NOT (A = 1 AND B = 2)")
        assert isinstance(cond, CompoundCondition)
        assert cond.negate

    def test_bare_field(self):
        cond = FilterParser().parse("ACTIVE")
        assert cond == Condition(field="ACTIVE", operator="eq", value=True)

    def test_syntax_error(self):
        with pytest.raises(SyntaxError):
            compile_filter("AGE >")
        with pytest.raises(SyntaxError):
            compile_filter("AGE > 1 AND")


@pytest.fixture
def alice():
    return Record(
        ordinal=0,
        values={
            "NAME": "Alice",
            "AGE": Decimal("30"),
            "ACTIVE": True,
            "BORN": datetime.date(1994, 5, 1),
            "SCORE": 2.5,
            "STAMP": datetime.datetime(2024, 1, 1, 9, 30),
            "NOTES": None,
        },
    )


class TestFilterEvaluation:
    @pytest.mark.parametrize("text,expected", [
        ("AGE > 26", True),
        ("AGE = 30", True),
        ("age <= 29", False),
        ('AGE > 26 AND NAME STARTS WITH "Al"', True),
        ('NAME STARTS WITH "Bo"', False),
        ("NAME CONTAINS 'lic'", True),
        ("ACTIVE", True),
        ("NOT ACTIVE", False),
        ("ACTIVE = .T.", True),
        ("ACTIVE = FALSE", False),
        ("BORN < {^2000-01-01}", True),
        ("STAMP > {^2024-01-01}", True),
        ("STAMP < {^2024-01-01 09:00}", False),
        ("BORN = {^1994-05-01 00:00}", True),
        ("SCORE = 2.5", True),
        ("NOTES = NULL", True),
        ("NOTES != NULL", False),
        ("NAME != NULL", True),
        ("NOTES > 3", False),
        ("NOT NOTES > 3", True),
        ("(AGE < 10 OR AGE >= 30) AND ACTIVE", True),
        ("NOT (AGE > 26 AND ACTIVE)", False),
        ("NAME > 5", False),
    ])
    def test_evaluate(self, alice, text, expected):
        assert compile_filter(text)(alice) is expected

    def test_fields(self):
        f = compile_filter("AGE > 1 AND (name = 'x' OR NOT ACTIVE)")
        assert f.fields == {"AGE", "NAME", "ACTIVE"}

    def test_unknown_field(self, alice):
        with pytest.raises(KeyError):
            compile_filter("HEIGHT > 1")(alice)
