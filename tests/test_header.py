"""Tests for the table header and field descriptors."""

import datetime
import struct

import pytest

from foxtables.errors import (
    CorruptHeader,
    DuplicateFieldName,
    UnsupportedDialect,
    UnsupportedFieldType,
)
from foxtables.header import (
    BACKLINK_SIZE,
    FLAG_AUTOINCREMENT,
    FLAG_BINARY,
    FLAG_NULLABLE,
    TABLE_HAS_MEMO,
    FieldDescriptor,
    FormatDescriptor,
)
from foxtables.types import Dialect, FieldType

TODAY = datetime.date(2024, 3, 15)


def people(dialect=Dialect.VISUAL_FOXPRO):
    return FormatDescriptor.build(
        [
            FieldDescriptor("name", FieldType.CHARACTER, 20),
            FieldDescriptor("AGE", FieldType.NUMERIC, 3, 0),
            FieldDescriptor("ACTIVE", FieldType.LOGICAL, 0),
        ],
        dialect=dialect,
        today=TODAY,
    )


class TestBuild:
    def test_lengths_and_offsets(self):
        descriptor = people()
        assert descriptor.record_length == 25
        assert descriptor.header.record_length == 25
        assert descriptor.header.header_length == 32 + 3 * 32 + 1
        assert [f.offset for f in descriptor.fields] == [1, 21, 24]
        assert descriptor.field_names == ["NAME", "AGE", "ACTIVE"]

    def test_field_lookup_is_case_insensitive(self):
        descriptor = people()
        assert descriptor.get_field("age").type == FieldType.NUMERIC
        assert descriptor.has_field("Active")
        with pytest.raises(KeyError):
            descriptor.get_field("missing")

    def test_does_not_mutate_input(self):
        field = FieldDescriptor("name", FieldType.CHARACTER, 20)
        FormatDescriptor.build([field])
        assert field.name == "name"
        assert field.offset == 0

    def test_visual_foxpro_memo(self):
        descriptor = FormatDescriptor.build([FieldDescriptor("NOTES", FieldType.MEMO, 0)])
        assert descriptor.fields[0].length == 4
        assert descriptor.header.version == 0x30
        assert descriptor.header.table_flags & TABLE_HAS_MEMO

    def test_foxpro_memo(self):
        descriptor = FormatDescriptor.build(
            [FieldDescriptor("NOTES", FieldType.MEMO, 0)], dialect=Dialect.FOXPRO
        )
        assert descriptor.fields[0].length == 10
        assert descriptor.header.version == 0xF5

    def test_foxpro_without_memo(self):
        assert people(Dialect.FOXPRO).header.version == 0x03

    def test_foxpro_rejects_visual_foxpro_types(self):
        with pytest.raises(UnsupportedFieldType):
            FormatDescriptor.build(
                [FieldDescriptor("ID", FieldType.INTEGER, 4)], dialect=Dialect.FOXPRO
            )

    def test_duplicate_names(self):
        with pytest.raises(DuplicateFieldName):
            FormatDescriptor.build(
                [
                    FieldDescriptor("name", FieldType.CHARACTER, 5),
                    FieldDescriptor("NAME", FieldType.CHARACTER, 5),
                ]
            )

    @pytest.mark.parametrize("name", ["1ABC", "TOOLONGNAME", "A-B", ""])
    def test_invalid_names(self, name):
        with pytest.raises(ValueError):
            FormatDescriptor.build([FieldDescriptor(name, FieldType.CHARACTER, 5)])

    def test_invalid_lengths(self):
        with pytest.raises(ValueError):
            FormatDescriptor.build([FieldDescriptor("NAME", FieldType.CHARACTER, 0)])
        with pytest.raises(ValueError):
            FormatDescriptor.build([FieldDescriptor("NAME", FieldType.CHARACTER, 255)])
        with pytest.raises(ValueError):
            FormatDescriptor.build([FieldDescriptor("AMT", FieldType.NUMERIC, 21)])
        with pytest.raises(ValueError):
            FormatDescriptor.build([FieldDescriptor("AMT", FieldType.NUMERIC, 4, 3)])

    def test_fixed_lengths_are_filled_in(self):
        descriptor = FormatDescriptor.build(
            [
                FieldDescriptor("BORN", FieldType.DATE, 0),
                FieldDescriptor("STAMP", FieldType.DATETIME, 0),
                FieldDescriptor("PRICE", FieldType.CURRENCY, 0),
            ]
        )
        assert [f.length for f in descriptor.fields] == [8, 8, 8]

    def test_autoincrement_defaults(self):
        descriptor = FormatDescriptor.build(
            [FieldDescriptor("ID", FieldType.INTEGER, 4, flags=FLAG_AUTOINCREMENT)]
        )
        field = descriptor.fields[0]
        assert field.autoincrement
        assert (field.autoinc_next, field.autoinc_step) == (1, 1)

    def test_autoincrement_needs_integer(self):
        with pytest.raises(ValueError):
            FormatDescriptor.build(
                [FieldDescriptor("ID", FieldType.CHARACTER, 4, flags=FLAG_AUTOINCREMENT)]
            )


class TestSerialize:
    def test_roundtrip(self):
        descriptor = people()
        data = descriptor.serialize()
        assert len(data) == descriptor.header.header_length
        assert data[-1] == 0x0D

        parsed = FormatDescriptor.parse(data)
        assert parsed.field_names == ["NAME", "AGE", "ACTIVE"]
        assert [(f.type, f.length, f.decimals) for f in parsed.fields] == [
            (FieldType.CHARACTER, 20, 0),
            (FieldType.NUMERIC, 3, 0),
            (FieldType.LOGICAL, 1, 0),
        ]
        assert [f.offset for f in parsed.fields] == [1, 21, 24]
        assert parsed.header.last_update == TODAY
        assert parsed.dialect == Dialect.VISUAL_FOXPRO

    def test_header_layout(self):
        data = people().serialize()
        assert data[0] == 0x30
        assert data[1:4] == bytes([124, 3, 15])
        assert struct.unpack("<IHH", data[4:12]) == (0, 129, 25)
        assert data[29] == 0x03
        assert data[32:43] == b"NAME\x00\x00\x00\x00\x00\x00\x00"
        assert data[43:44] == b"C"
        assert data[48] == 20

    def test_flags_and_counters_survive(self):
        descriptor = FormatDescriptor.build(
            [
                FieldDescriptor("ID", FieldType.INTEGER, 4, flags=FLAG_AUTOINCREMENT),
                FieldDescriptor("KEY", FieldType.CHARACTER, 8, flags=FLAG_BINARY),
            ]
        )
        descriptor.fields[0].autoinc_next = 42
        parsed = FormatDescriptor.parse(descriptor.serialize())
        assert parsed.fields[0].autoincrement
        assert parsed.fields[0].autoinc_next == 42
        assert parsed.fields[1].binary

    def test_backlink_accepted(self):
        descriptor = people()
        data = bytearray(descriptor.serialize() + b"\x00" * BACKLINK_SIZE)
        struct.pack_into("<H", data, 8, len(data))
        parsed = FormatDescriptor.parse(bytes(data))
        assert len(parsed.backlink) == BACKLINK_SIZE
        assert parsed.serialize() == bytes(data)


class TestParseErrors:
    def test_unsupported_dialect(self):
        data = bytearray(people().serialize())
        data[0] = 0x83
        with pytest.raises(UnsupportedDialect):
            FormatDescriptor.parse(bytes(data))

    def test_truncated(self):
        with pytest.raises(CorruptHeader):
            FormatDescriptor.parse(b"\x30" + b"\x00" * 10)

    def test_missing_terminator(self):
        data = bytearray(people().serialize())
        data[-1] = 0x20
        with pytest.raises(CorruptHeader):
            FormatDescriptor.parse(bytes(data))

    def test_record_length_mismatch(self):
        data = bytearray(people().serialize())
        struct.pack_into("<H", data, 10, 99)
        with pytest.raises(CorruptHeader):
            FormatDescriptor.parse(bytes(data))

    def test_header_length_mismatch(self):
        data = bytearray(people().serialize() + b"\x00" * 5)
        struct.pack_into("<H", data, 8, len(data))
        with pytest.raises(CorruptHeader):
            FormatDescriptor.parse(bytes(data))

    def test_unknown_type_tag(self):
        data = bytearray(people().serialize())
        data[43] = ord("X")
        with pytest.raises(UnsupportedFieldType):
            FormatDescriptor.parse(bytes(data))

    def test_wrong_fixed_length(self):
        data = bytearray(people().serialize())
        # ACTIVE is the third descriptor; its length byte is at 32 + 64 + 16
        data[32 + 64 + 16] = 2
        struct.pack_into("<H", data, 10, 26)
        with pytest.raises(CorruptHeader):
            FormatDescriptor.parse(bytes(data))


def nullable_people(extra=()):
    return FormatDescriptor.build(
        [
            FieldDescriptor("NAME", FieldType.CHARACTER, 10),
            FieldDescriptor("AGE", FieldType.INTEGER, 4, flags=FLAG_NULLABLE),
            FieldDescriptor("BORN", FieldType.DATE, 8, flags=FLAG_NULLABLE),
            *extra,
        ]
    )


class TestNullFlags:
    def test_build_appends_system_field(self):
        descriptor = nullable_people()
        flags = descriptor.fields[-1]
        assert flags.name == "_NULLFLAGS"
        assert flags.type == FieldType.NULL_FLAGS
        assert flags.system and flags.binary
        assert (flags.length, flags.offset) == (1, 23)
        assert descriptor.null_flags is flags
        assert descriptor.record_length == 24
        assert [f.null_bit for f in descriptor.fields] == [None, 0, 1, None]

    def test_system_field_is_hidden(self):
        descriptor = nullable_people()
        assert descriptor.field_names == ["NAME", "AGE", "BORN"]
        assert not descriptor.has_field("_NullFlags")
        with pytest.raises(KeyError):
            descriptor.get_field("_NULLFLAGS")

    def test_one_byte_per_eight_nullable_fields(self):
        extra = [
            FieldDescriptor(f"N{i}", FieldType.LOGICAL, 1, flags=FLAG_NULLABLE) for i in range(7)
        ]
        descriptor = nullable_people(extra)
        assert descriptor.null_flags.length == 2
        assert descriptor.fields[-2].null_bit == 8

    def test_no_system_field_without_nullable_fields(self):
        descriptor = people()
        assert descriptor.null_flags is None
        assert len(descriptor.fields) == 3

    def test_roundtrip(self):
        data = nullable_people().serialize()
        # _NULLFLAGS is the fourth descriptor
        assert data[32 + 96 + 11 : 32 + 96 + 12] == b"0"
        assert data[32 + 96 + 18] == 0x05
        parsed = FormatDescriptor.parse(data)
        assert parsed.null_flags is not None
        assert parsed.null_flags.offset == 23
        assert parsed.get_field("BORN").null_bit == 1

    def test_nullable_without_flags_field(self):
        data = bytearray(people().serialize())
        # AGE is the second descriptor; its flags byte is at 32 + 32 + 18
        data[32 + 32 + 18] = FLAG_NULLABLE
        with pytest.raises(CorruptHeader):
            FormatDescriptor.parse(bytes(data))

    def test_foxpro_ignores_nullable_flag(self):
        data = bytearray(people(Dialect.FOXPRO).serialize())
        data[32 + 32 + 18] = FLAG_NULLABLE
        parsed = FormatDescriptor.parse(bytes(data))
        assert parsed.get_field("AGE").null_bit is None

    def test_foxpro_rejects_nullable(self):
        with pytest.raises(ValueError):
            FormatDescriptor.build(
                [FieldDescriptor("AGE", FieldType.NUMERIC, 3, flags=FLAG_NULLABLE)],
                dialect=Dialect.FOXPRO,
            )

    def test_system_fields_cannot_be_declared(self):
        with pytest.raises(ValueError):
            FormatDescriptor.build([FieldDescriptor("FLAGS", FieldType.NULL_FLAGS, 1)])
