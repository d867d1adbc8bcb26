"""
Request encoding for insert and delete writes, and decoding of node acknowledgments.
"""
import json
import struct
from typing import Any, List, Optional, Sequence

from rowdb.common.config import DEFAULT_DATABASE, MAX_MESSAGE_SIZE, WIRE_MAGIC, WIRE_VERSION
from rowdb.common.errors import (
    EncodeError, IllegalResponseError, SchemaError, ServerRejected, TransportError
)
from rowdb.common.models import EncodedRequest, RequestKind
from rowdb.common.utils import get_logger
from rowdb.client.row_batch import ColumnTriple, RowBatch
from rowdb.client import wire

logger = get_logger(__name__)

# Gateway and availability errors mean the node could not serve the request at all
UNAVAILABLE_STATUSES = frozenset({502, 503, 504})


class RequestEncoder:
    """
    Builds wire requests from row batches for one database.
    """

    def __init__(self, database: str = DEFAULT_DATABASE, max_message_size: int = MAX_MESSAGE_SIZE):
        """
        Initialize the encoder.

        Args:
            database: Database (catalog/schema) the requests target
            max_message_size: Largest payload the encoder will produce, in bytes
        """
        self.database = database
        self.max_message_size = max_message_size

    def encode_insert(self, batch: RowBatch) -> EncodedRequest:
        """
        Encode an insert of one row batch.

        Args:
            batch: Rows to insert

        Returns:
            Encoded insert request
        """
        return self.encode_inserts([batch])

    def encode_inserts(self, batches: Sequence[RowBatch]) -> EncodedRequest:
        """
        Encode an insert of several row batches in one request.

        Args:
            batches: Row batches, one table section each

        Returns:
            Encoded insert request
        """
        if not batches:
            raise EncodeError("Insert request needs at least one row batch")

        sections = []
        for batch in batches:
            if wire.timestamp_column_count(batch.schema) != 1:
                raise EncodeError(f"Insert into '{batch.table}' needs exactly one timestamp column")
            sections.append((batch.table, batch.row_count, list(batch.columns())))

        return self._build(RequestKind.INSERT, sections)

    def encode_delete(self, table: str, key_columns: Sequence[str], batch: RowBatch) -> EncodedRequest:
        """
        Encode a delete of the rows identified by their key columns.

        Only the key columns are sent; every other column of the batch is ignored.

        Args:
            table: Table to delete from
            key_columns: Names of the columns identifying rows
            batch: Rows holding the key values

        Returns:
            Encoded delete request
        """
        if not key_columns:
            raise EncodeError(f"Delete from '{table}' needs at least one key column")
        if len(set(key_columns)) != len(key_columns):
            raise EncodeError(f"Duplicate key columns for delete from '{table}': {list(key_columns)}")

        try:
            columns = batch.select(key_columns)
        except SchemaError as e:
            raise EncodeError(str(e))

        return self._build(RequestKind.DELETE, [(table, batch.row_count, columns)])

    def _build(self, kind: RequestKind, sections: List[tuple]) -> EncodedRequest:
        if len(sections) > 0xFFFF:
            raise EncodeError(f"Too many tables in one request: {len(sections)}")

        try:
            parts = [
                wire.HEADER.pack(WIRE_MAGIC, WIRE_VERSION, kind.value),
                wire.pack_str16(self.database),
                wire.U16.pack(len(sections)),
            ]
            for table, row_count, columns in sections:
                parts.extend(self._encode_table(table, row_count, columns))
        except (ValueError, OverflowError, struct.error) as e:
            raise EncodeError(f"Failed to encode {kind.name.lower()} request: {e}")

        payload = b"".join(parts)
        if len(payload) > self.max_message_size:
            raise EncodeError(
                f"Encoded request is {len(payload)} bytes, over the {self.max_message_size} byte limit"
            )

        row_count = sum(section[1] for section in sections)
        tables = tuple(section[0] for section in sections)
        logger.debug(f"Encoded {kind.name} for {tables} with {row_count} rows ({len(payload)} bytes)")
        return EncodedRequest(kind, self.database, tables, row_count, payload)

    def _encode_table(self, table: str, row_count: int, columns: List[ColumnTriple]) -> List[bytes]:
        parts = [
            wire.pack_str16(table),
            wire.U32.pack(row_count),
            wire.U16.pack(len(columns)),
        ]

        for column, _, _ in columns:
            parts.append(wire.pack_str16(column.name))
            parts.append(wire.U8.pack(column.datatype.value))
            parts.append(wire.U8.pack(column.semantic_type.value))

        for column, values, null_mask in columns:
            if len(values) != row_count or len(null_mask) != row_count:
                raise EncodeError(
                    f"Column '{column.name}' of '{table}' does not hold {row_count} rows"
                )
            data = wire.pack_values(column.datatype, self._wire_values(table, column, values, null_mask))
            parts.append(wire.pack_null_mask(null_mask))
            parts.append(wire.U32.pack(len(data)))
            parts.append(data)

        return parts

    @staticmethod
    def _wire_values(table, column, values, null_mask) -> List[Any]:
        result = []
        filler = wire.placeholder(column.datatype)
        for row, (value, is_null) in enumerate(zip(values, null_mask)):
            if is_null:
                result.append(filler)
            elif not wire.is_valid_value(column.datatype, value):
                raise EncodeError(
                    f"Column '{column.name}' of '{table}' row {row}: {value!r} is not {column.datatype.name}"
                )
            else:
                result.append(wire.to_wire_value(column.datatype, value))
        return result


def decode_response(address, status_code: int, body: bytes) -> int:
    """
    Decode a node's acknowledgment into an affected row count.

    Args:
        address: Node that answered
        status_code: HTTP status of the reply
        body: Raw reply body

    Returns:
        Number of affected rows

    Raises:
        TransportError: If the node reported itself unavailable
        ServerRejected: If the node refused the request
        IllegalResponseError: If the reply is not a valid acknowledgment
    """
    if status_code in UNAVAILABLE_STATUSES:
        raise TransportError(address, f"node unavailable (status {status_code})")

    result: Optional[dict] = None
    try:
        parsed = json.loads(body.decode("utf-8")) if body else None
        if isinstance(parsed, dict):
            result = parsed
    except (UnicodeDecodeError, json.JSONDecodeError):
        result = None

    if not 200 <= status_code < 300 or (result is not None and not result.get('success', False)):
        message = (result or {}).get('error') or f"HTTP {status_code}"
        code = (result or {}).get('code')
        raise ServerRejected(address, status_code, str(message), code if isinstance(code, int) else None)

    if result is None:
        raise IllegalResponseError(address, "response body is not a JSON object")

    affected_rows = result.get('affected_rows')
    if not isinstance(affected_rows, int) or isinstance(affected_rows, bool) or affected_rows < 0:
        raise IllegalResponseError(address, f"missing or invalid affected_rows: {affected_rows!r}")

    return affected_rows
