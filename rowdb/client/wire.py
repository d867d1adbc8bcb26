"""
Binary row format shared by the request encoder and node-side decoders.

All integers are little-endian. A request is laid out as::

    magic "RWDB" | version u8 | kind u8 | database str16 | table_count u16
    then per table:
        name str16 | row_count u32 | column_count u16
        column_count * (name str16 | datatype u8 | semantic u8)
        column_count * (null bitmap | values_len u32 | values)

The null bitmap holds one bit per row, least significant bit first, set for
null rows. Fixed-width types are packed natively; STRING and BINARY values are
each prefixed by a u32 byte length. Null rows keep a zero/empty placeholder so
every values section holds exactly row_count entries.
"""
import math
import struct
import sys
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from rowdb.common.config import WIRE_MAGIC, WIRE_VERSION
from rowdb.common.models import (
    ColumnDataType, ColumnSchema, RequestKind, SemanticType, TIMESTAMP_TYPES
)

# struct format characters for fixed-width types
FIXED_FORMATS = {
    ColumnDataType.BOOLEAN: "?",
    ColumnDataType.INT8: "b",
    ColumnDataType.INT16: "h",
    ColumnDataType.INT32: "i",
    ColumnDataType.INT64: "q",
    ColumnDataType.UINT8: "B",
    ColumnDataType.UINT16: "H",
    ColumnDataType.UINT32: "I",
    ColumnDataType.UINT64: "Q",
    ColumnDataType.FLOAT32: "f",
    ColumnDataType.FLOAT64: "d",
    ColumnDataType.DATE: "i",
    ColumnDataType.DATETIME: "q",
    ColumnDataType.TIMESTAMP_SECOND: "q",
    ColumnDataType.TIMESTAMP_MILLISECOND: "q",
    ColumnDataType.TIMESTAMP_MICROSECOND: "q",
    ColumnDataType.TIMESTAMP_NANOSECOND: "q",
}

INT_RANGES = {
    ColumnDataType.INT8: (-2 ** 7, 2 ** 7 - 1),
    ColumnDataType.INT16: (-2 ** 15, 2 ** 15 - 1),
    ColumnDataType.INT32: (-2 ** 31, 2 ** 31 - 1),
    ColumnDataType.INT64: (-2 ** 63, 2 ** 63 - 1),
    ColumnDataType.UINT8: (0, 2 ** 8 - 1),
    ColumnDataType.UINT16: (0, 2 ** 16 - 1),
    ColumnDataType.UINT32: (0, 2 ** 32 - 1),
    ColumnDataType.UINT64: (0, 2 ** 64 - 1),
    ColumnDataType.DATE: (-2 ** 31, 2 ** 31 - 1),
    ColumnDataType.DATETIME: (-2 ** 63, 2 ** 63 - 1),
    ColumnDataType.TIMESTAMP_SECOND: (-2 ** 63, 2 ** 63 - 1),
    ColumnDataType.TIMESTAMP_MILLISECOND: (-2 ** 63, 2 ** 63 - 1),
    ColumnDataType.TIMESTAMP_MICROSECOND: (-2 ** 63, 2 ** 63 - 1),
    ColumnDataType.TIMESTAMP_NANOSECOND: (-2 ** 63, 2 ** 63 - 1),
}

# Multiplier from microseconds since epoch to each datetime-backed type
MICROS_SCALE = {
    ColumnDataType.TIMESTAMP_SECOND: (1, 1_000_000),
    ColumnDataType.TIMESTAMP_MILLISECOND: (1, 1_000),
    ColumnDataType.TIMESTAMP_MICROSECOND: (1, 1),
    ColumnDataType.TIMESTAMP_NANOSECOND: (1_000, 1),
    ColumnDataType.DATETIME: (1, 1_000),
}

# Largest finite magnitude each float type can hold
FLOAT_LIMITS = {
    ColumnDataType.FLOAT32: 3.4028234663852886e38,
    ColumnDataType.FLOAT64: sys.float_info.max,
}

PLACEHOLDERS = {
    ColumnDataType.BOOLEAN: False,
    ColumnDataType.FLOAT32: 0.0,
    ColumnDataType.FLOAT64: 0.0,
    ColumnDataType.STRING: "",
    ColumnDataType.BINARY: b"",
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
EPOCH_DATE = date(1970, 1, 1)

HEADER = struct.Struct("<4sBB")
U8 = struct.Struct("<B")
U16 = struct.Struct("<H")
U32 = struct.Struct("<I")


def is_valid_value(datatype: ColumnDataType, value: Any) -> bool:
    """Check that a non-null Python value fits a column data type."""
    if datatype == ColumnDataType.BOOLEAN:
        return isinstance(value, bool)
    if datatype in FLOAT_LIMITS:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return False
        # inf and nan are representable in either width
        if isinstance(value, float) and not math.isfinite(value):
            return True
        return abs(value) <= FLOAT_LIMITS[datatype]
    if datatype == ColumnDataType.STRING:
        return isinstance(value, str)
    if datatype == ColumnDataType.BINARY:
        return isinstance(value, (bytes, bytearray))
    if datatype in MICROS_SCALE and isinstance(value, datetime):
        return True
    if datatype == ColumnDataType.DATE and isinstance(value, date):
        return True
    if isinstance(value, int) and not isinstance(value, bool):
        low, high = INT_RANGES[datatype]
        return low <= value <= high
    return False


def to_wire_value(datatype: ColumnDataType, value: Any) -> Any:
    """Convert date and datetime values into their integer wire form."""
    if datatype == ColumnDataType.DATE and isinstance(value, date):
        if isinstance(value, datetime):
            value = value.date()
        return (value - EPOCH_DATE).days
    if datatype in MICROS_SCALE and isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - EPOCH
        micros = (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds
        multiplier, divisor = MICROS_SCALE[datatype]
        return micros * multiplier // divisor
    if datatype == ColumnDataType.BINARY:
        return bytes(value)
    return value


def placeholder(datatype: ColumnDataType) -> Any:
    return PLACEHOLDERS.get(datatype, 0)


def pack_str16(text: str) -> bytes:
    data = text.encode("utf-8")
    if len(data) > 0xFFFF:
        raise ValueError(f"Name too long for the wire format: {text[:32]}...")
    return U16.pack(len(data)) + data


def pack_null_mask(null_mask: Sequence[bool]) -> bytes:
    """Pack a null mask into a bitset, one bit per row."""
    bitmap = bytearray((len(null_mask) + 7) // 8)
    for index, is_null in enumerate(null_mask):
        if is_null:
            bitmap[index >> 3] |= 1 << (index & 7)
    return bytes(bitmap)


def unpack_null_mask(bitmap: bytes, row_count: int) -> List[bool]:
    return [bool(bitmap[index >> 3] & (1 << (index & 7))) for index in range(row_count)]


def pack_values(datatype: ColumnDataType, values: Sequence[Any]) -> bytes:
    """
    Pack a column of non-null wire values.

    Null rows must already be replaced by placeholders.

    Raises:
        struct.error: If a value does not fit the type's layout
    """
    fmt = FIXED_FORMATS.get(datatype)
    if fmt is not None:
        return struct.pack(f"<{len(values)}{fmt}", *values)

    parts = []
    for value in values:
        data = value.encode("utf-8") if datatype == ColumnDataType.STRING else value
        parts.append(U32.pack(len(data)))
        parts.append(data)
    return b"".join(parts)


def unpack_values(datatype: ColumnDataType, data: bytes, row_count: int) -> List[Any]:
    fmt = FIXED_FORMATS.get(datatype)
    if fmt is not None:
        return list(struct.unpack(f"<{row_count}{fmt}", data))

    values = []
    reader = _Reader(data)
    for _ in range(row_count):
        raw = reader.take(reader.read(U32))
        values.append(raw.decode("utf-8") if datatype == ColumnDataType.STRING else raw)
    reader.expect_end()
    return values


@dataclass
class DecodedColumn:
    schema: ColumnSchema
    values: List[Any]
    null_mask: List[bool]


@dataclass
class DecodedTable:
    name: str
    row_count: int
    schema: List[ColumnSchema]
    columns: List[DecodedColumn]


@dataclass
class DecodedRequest:
    kind: RequestKind
    database: str
    tables: List[DecodedTable]


class _Reader:
    """Cursor over a payload; raises ValueError on truncated input."""

    def __init__(self, data: bytes):
        self.data = memoryview(data)
        self.offset = 0

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise ValueError(f"Truncated payload at offset {self.offset}")
        chunk = bytes(self.data[self.offset:end])
        self.offset = end
        return chunk

    def read(self, layout: struct.Struct):
        return layout.unpack(self.take(layout.size))[0]

    def read_str16(self) -> str:
        return self.take(self.read(U16)).decode("utf-8")

    def expect_end(self) -> None:
        if self.offset != len(self.data):
            raise ValueError(f"{len(self.data) - self.offset} trailing bytes in payload")


def _read_header(reader: _Reader):
    magic, version, kind = HEADER.unpack(reader.take(HEADER.size))
    if magic != WIRE_MAGIC:
        raise ValueError(f"Bad magic {magic!r}")
    if version != WIRE_VERSION:
        raise ValueError(f"Unsupported wire version {version}")
    try:
        request_kind = RequestKind(kind)
    except ValueError:
        raise ValueError(f"Unknown request kind {kind}")
    database = reader.read_str16()
    return request_kind, database


def _read_schema(reader: _Reader) -> List[ColumnSchema]:
    column_count = reader.read(U16)
    schema = []
    for _ in range(column_count):
        name = reader.read_str16()
        try:
            datatype = ColumnDataType(reader.read(U8))
            semantic_type = SemanticType(reader.read(U8))
        except ValueError as e:
            raise ValueError(f"Unknown column type for '{name}': {e}")
        schema.append(ColumnSchema(name, datatype, semantic_type))
    return schema


def decode_request(payload: bytes) -> DecodedRequest:
    """
    Decode a full request payload.

    Args:
        payload: Uncompressed request bytes

    Returns:
        Decoded request with every table's schema, values and null masks

    Raises:
        ValueError: If the payload is not a valid request
    """
    reader = _Reader(payload)
    kind, database = _read_header(reader)
    tables = []
    for _ in range(reader.read(U16)):
        name = reader.read_str16()
        row_count = reader.read(U32)
        schema = _read_schema(reader)
        columns = []
        for column in schema:
            null_mask = unpack_null_mask(reader.take((row_count + 7) // 8), row_count)
            values = unpack_values(column.datatype, reader.take(reader.read(U32)), row_count)
            columns.append(DecodedColumn(column, values, null_mask))
        tables.append(DecodedTable(name, row_count, schema, columns))
    reader.expect_end()
    return DecodedRequest(kind, database, tables)


def decode_schema(payload: bytes, table_index: int = 0) -> List[ColumnSchema]:
    """Decode only the schema descriptors of one table in a request."""
    reader = _Reader(payload)
    _read_header(reader)
    table_count = reader.read(U16)
    if not 0 <= table_index < table_count:
        raise IndexError(f"Request has {table_count} tables, no table {table_index}")

    for index in range(table_count):
        reader.read_str16()
        row_count = reader.read(U32)
        schema = _read_schema(reader)
        if index == table_index:
            return schema
        for _ in schema:
            reader.take((row_count + 7) // 8)
            reader.take(reader.read(U32))
    raise IndexError(table_index)


def timestamp_column_count(schema: Sequence[ColumnSchema]) -> int:
    return sum(1 for column in schema if column.semantic_type == SemanticType.TIMESTAMP)


def check_timestamp_role(column: ColumnSchema) -> Optional[str]:
    """Return a problem description if a TIMESTAMP-role column has a non-timestamp type."""
    if column.semantic_type == SemanticType.TIMESTAMP and column.datatype not in TIMESTAMP_TYPES:
        return f"Timestamp column '{column.name}' has non-timestamp type {column.datatype.name}"
    return None
