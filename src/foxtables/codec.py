"""Per-field-type encoding and decoding of record bytes.

Every FieldType has exactly one FieldCodec in CODECS.  The codecs are pure:
they translate between raw field bytes and Python values and never touch a
file.  Memo-type fields decode to a MemoRef; resolving the reference is the
memo store's job.
"""

from __future__ import annotations

import datetime
import math
import struct
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Callable

from foxtables.errors import FieldDecodeError, FieldValueTypeMismatch, Overflow
from foxtables.types import Dialect, FieldType, MemoRef

if TYPE_CHECKING:
    from foxtables.header import FieldDescriptor

# Offset between date.toordinal() and the Julian day number used by VFP DateTime
JULIAN_OFFSET = 1721425

MS_PER_DAY = 86_400_000

INT32_MIN, INT32_MAX = -(2**31), 2**31 - 1
INT64_MIN, INT64_MAX = -(2**63), 2**63 - 1
CURRENCY_SCALE = Decimal("0.0001")

_NUMBER_TYPES = (int, float, Decimal)


@dataclass(frozen=True)
class CodecOptions:
    """Per-table decoding options."""

    encoding: str = "cp1252"
    logical_bad_is_false: bool = False


DEFAULT_OPTIONS = CodecOptions()


@dataclass(frozen=True)
class FieldCodec:
    """Decoder/encoder pair for one field type."""

    decode: Callable[[bytes, FieldDescriptor, CodecOptions], Any]
    encode: Callable[[Any, FieldDescriptor, CodecOptions], bytes]
    accepts: Callable[[Any, FieldDescriptor], bool]


# --- Character ---


def _decode_character(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    data = raw.rstrip(b" \x00")
    if field.binary:
        return data
    try:
        return data.decode(options.encoding)
    except UnicodeDecodeError as e:
        raise FieldDecodeError(f"Field '{field.name}': cannot decode text as {options.encoding}") from e


def _encode_character(value: Any, field: FieldDescriptor, options: CodecOptions) -> bytes:
    if value is None:
        return b" " * field.length
    if isinstance(value, str):
        try:
            data = value.encode(options.encoding)
        except UnicodeEncodeError as e:
            raise FieldValueTypeMismatch(field.name, field.type.value, value) from e
    else:
        data = bytes(value)
    if len(data) > field.length:
        raise Overflow(
            f"Field '{field.name}': {len(data)} bytes exceed declared length {field.length}"
        )
    return data.ljust(field.length, b" ")


def _accepts_character(value: Any, field: FieldDescriptor) -> bool:
    if field.binary:
        return isinstance(value, (bytes, bytearray, str))
    return isinstance(value, str)


# --- Numeric / Float ---


def _numeric_text(raw: bytes, field: FieldDescriptor) -> str | None:
    """Return the stripped ASCII number, or None for blank/overflow content."""
    text = raw.replace(b"\x00", b"").strip()
    if not text or text.startswith(b"*"):
        return None
    try:
        return text.decode("ascii")
    except UnicodeDecodeError as e:
        raise FieldDecodeError(f"Field '{field.name}': {raw!r} is not a number") from e


def _decode_numeric(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    text = _numeric_text(raw, field)
    if text is None:
        return None
    try:
        return Decimal(text)
    except InvalidOperation as e:
        raise FieldDecodeError(f"Field '{field.name}': {raw!r} is not a number") from e


def _decode_float(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    text = _numeric_text(raw, field)
    if text is None:
        return None
    try:
        return float(text)
    except ValueError as e:
        raise FieldDecodeError(f"Field '{field.name}': {raw!r} is not a number") from e


def _encode_numeric(value: Any, field: FieldDescriptor, options: CodecOptions) -> bytes:
    if value is None:
        return b" " * field.length
    if isinstance(value, float):
        if not math.isfinite(value):
            raise Overflow(f"Field '{field.name}': {value} cannot be stored")
        number = Decimal(repr(value))
    else:
        number = Decimal(value)
        if not number.is_finite():
            raise Overflow(f"Field '{field.name}': {value} cannot be stored")
    text = f"{number:>{field.length}.{field.decimals}f}"
    if len(text) > field.length:
        raise Overflow(
            f"Field '{field.name}': {value} does not fit N({field.length},{field.decimals})"
        )
    return text.encode("ascii")


def _accepts_number(value: Any, field: FieldDescriptor) -> bool:
    return isinstance(value, _NUMBER_TYPES) and not isinstance(value, bool)


# --- Date ---


def _decode_date(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    if not raw.strip(b" \x00"):
        return None
    try:
        text = raw.decode("ascii")
        return datetime.date(int(text[0:4]), int(text[4:6]), int(text[6:8]))
    except (UnicodeDecodeError, ValueError) as e:
        raise FieldDecodeError(f"Field '{field.name}': {raw!r} is not a valid date") from e


def _encode_date(value: Any, field: FieldDescriptor, options: CodecOptions) -> bytes:
    if value is None:
        return b" " * 8
    return b"%04d%02d%02d" % (value.year, value.month, value.day)


def _accepts_date(value: Any, field: FieldDescriptor) -> bool:
    return isinstance(value, datetime.date) and not isinstance(value, datetime.datetime)


# --- Logical ---


def _decode_logical(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    if raw in (b"T", b"t", b"Y", b"y"):
        return True
    if raw in (b"F", b"f", b"N", b"n"):
        return False
    if raw in (b"?", b" ", b"\x00"):
        return None
    if options.logical_bad_is_false:
        return False
    raise FieldDecodeError(f"Field '{field.name}': logical field contained {raw!r}")


def _encode_logical(value: Any, field: FieldDescriptor, options: CodecOptions) -> bytes:
    if value is None:
        return b"?"
    return b"T" if value else b"F"


def _accepts_logical(value: Any, field: FieldDescriptor) -> bool:
    return isinstance(value, bool)


# --- Integer / Double / Currency ---


def _decode_integer(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    return struct.unpack("<i", raw)[0]


def _encode_integer(value: Any, field: FieldDescriptor, options: CodecOptions) -> bytes:
    if value is None:
        value = 0
    if not INT32_MIN <= value <= INT32_MAX:
        raise Overflow(f"Field '{field.name}': {value} exceeds the 32-bit integer range")
    return struct.pack("<i", value)


def _accepts_integer(value: Any, field: FieldDescriptor) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _decode_double(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    return struct.unpack("<d", raw)[0]


def _encode_double(value: Any, field: FieldDescriptor, options: CodecOptions) -> bytes:
    if value is None:
        value = 0.0
    return struct.pack("<d", float(value))


def _decode_currency(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    return Decimal(struct.unpack("<q", raw)[0]).scaleb(-4)


def _encode_currency(value: Any, field: FieldDescriptor, options: CodecOptions) -> bytes:
    if value is None:
        return struct.pack("<q", 0)
    number = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    if not number.is_finite():
        raise Overflow(f"Field '{field.name}': {value} cannot be stored")
    try:
        scaled = int(number.quantize(CURRENCY_SCALE).scaleb(4))
    except InvalidOperation:
        raise Overflow(f"Field '{field.name}': {value} exceeds the currency range") from None
    if not INT64_MIN <= scaled <= INT64_MAX:
        raise Overflow(f"Field '{field.name}': {value} exceeds the currency range")
    return struct.pack("<q", scaled)


# --- DateTime ---


def _decode_datetime(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    day, ms = struct.unpack("<II", raw)
    if day == 0 and ms == 0:
        return None
    ordinal = day - JULIAN_OFFSET
    if ordinal < 1 or ms >= MS_PER_DAY:
        raise FieldDecodeError(f"Field '{field.name}': {raw!r} is not a valid datetime")
    try:
        date = datetime.date.fromordinal(ordinal)
    except (ValueError, OverflowError) as e:
        raise FieldDecodeError(f"Field '{field.name}': {raw!r} is not a valid datetime") from e
    seconds, millis = divmod(ms, 1000)
    return datetime.datetime(
        date.year,
        date.month,
        date.day,
        seconds // 3600,
        seconds % 3600 // 60,
        seconds % 60,
        millis * 1000,
    )


def _encode_datetime(value: Any, field: FieldDescriptor, options: CodecOptions) -> bytes:
    if value is None:
        return b"\x00" * 8
    ms = ((value.hour * 3600 + value.minute * 60 + value.second) * 1000) + value.microsecond // 1000
    return struct.pack("<II", value.toordinal() + JULIAN_OFFSET, ms)


def _accepts_datetime(value: Any, field: FieldDescriptor) -> bool:
    return isinstance(value, datetime.datetime)


# --- Memo pointers ---


def _decode_memo_pointer(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    if field.length == 4:
        block = struct.unpack("<I", raw)[0]
    else:
        text = raw.replace(b"\x00", b"").strip()
        if not text:
            return None
        try:
            block = int(text.decode("ascii"))
        except (UnicodeDecodeError, ValueError) as e:
            raise FieldDecodeError(f"Field '{field.name}': {raw!r} is not a memo block number") from e
    if block == 0:
        return None
    return MemoRef(block, binary=field.holds_binary)


def _encode_memo_pointer(value: Any, field: FieldDescriptor, options: CodecOptions) -> bytes:
    block = 0 if value is None else value.block
    if not 0 <= block <= 0xFFFFFFFF:
        raise Overflow(f"Field '{field.name}': memo block {block} not in [0, 4294967295]")
    if field.length == 4:
        return struct.pack("<I", block)
    if block == 0:
        return b" " * field.length
    text = b"%*d" % (field.length, block)
    if len(text) > field.length:
        raise Overflow(f"Field '{field.name}': memo block {block} does not fit")
    return text


def _accepts_memo_ref(value: Any, field: FieldDescriptor) -> bool:
    return isinstance(value, MemoRef)


# --- Null flags ---


def _decode_null_flags(raw: bytes, field: FieldDescriptor, options: CodecOptions) -> Any:
    return bytes(raw)


def _encode_null_flags(value: Any, field: FieldDescriptor, options: CodecOptions) -> bytes:
    if value is None:
        return bytes(field.length)
    return bytes(value)


def _accepts_null_flags(value: Any, field: FieldDescriptor) -> bool:
    return isinstance(value, (bytes, bytearray))


CODECS: dict[FieldType, FieldCodec] = {
    FieldType.CHARACTER: FieldCodec(_decode_character, _encode_character, _accepts_character),
    FieldType.NUMERIC: FieldCodec(_decode_numeric, _encode_numeric, _accepts_number),
    FieldType.FLOAT: FieldCodec(_decode_float, _encode_numeric, _accepts_number),
    FieldType.DATE: FieldCodec(_decode_date, _encode_date, _accepts_date),
    FieldType.LOGICAL: FieldCodec(_decode_logical, _encode_logical, _accepts_logical),
    FieldType.MEMO: FieldCodec(_decode_memo_pointer, _encode_memo_pointer, _accepts_memo_ref),
    FieldType.INTEGER: FieldCodec(_decode_integer, _encode_integer, _accepts_integer),
    FieldType.DOUBLE: FieldCodec(_decode_double, _encode_double, _accepts_number),
    FieldType.CURRENCY: FieldCodec(_decode_currency, _encode_currency, _accepts_number),
    FieldType.DATETIME: FieldCodec(_decode_datetime, _encode_datetime, _accepts_datetime),
    FieldType.GENERAL: FieldCodec(_decode_memo_pointer, _encode_memo_pointer, _accepts_memo_ref),
    FieldType.PICTURE: FieldCodec(_decode_memo_pointer, _encode_memo_pointer, _accepts_memo_ref),
    FieldType.NULL_FLAGS: FieldCodec(_decode_null_flags, _encode_null_flags, _accepts_null_flags),
}

if set(CODECS) != set(FieldType):
    raise RuntimeError(f"Field types without a codec: {set(FieldType) - set(CODECS)}")


def decode_value(
    field: FieldDescriptor, raw: bytes, options: CodecOptions = DEFAULT_OPTIONS
) -> Any:
    """Decode one field's raw bytes.

    Raises:
        FieldDecodeError: If the bytes are not a valid value of the field type.
    """
    if len(raw) != field.length:
        raise FieldDecodeError(
            f"Field '{field.name}': expected {field.length} bytes, got {len(raw)}"
        )
    return CODECS[field.type].decode(raw, field, options)


def encode_value(
    field: FieldDescriptor, value: Any, options: CodecOptions = DEFAULT_OPTIONS
) -> bytes:
    """Encode a value into exactly field.length bytes.

    Raises:
        FieldValueTypeMismatch: If the value's type does not match the field.
        Overflow: If the value does not fit in the field width.
    """
    codec = CODECS[field.type]
    if value is not None and not codec.accepts(value, field):
        raise FieldValueTypeMismatch(field.name, field.type.value, value)
    data = codec.encode(value, field, options)
    if len(data) != field.length:
        raise Overflow(
            f"Field '{field.name}': {value!r} encodes to {len(data)} bytes, "
            f"field holds {field.length}"
        )
    return data


def default_length(field_type: FieldType, dialect: Dialect) -> int | None:
    """Return the length a field gets when none is declared."""
    if field_type.is_memo:
        return dialect.memo_pointer_size
    if field_type == FieldType.LOGICAL:
        return 1
    return field_type.fixed_length
