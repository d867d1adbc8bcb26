"""
Tests for request encoding and acknowledgment decoding.
"""
import os
import sys
import json
import struct
import unittest
from datetime import date, datetime, timezone

# Add parent directory to path
sys.path.insert(0, os.path.abspath(
    os.path.join(os.path.dirname(__file__), '..')))

from rowdb.client.encoder import RequestEncoder, decode_response
from rowdb.client.row_batch import RowBatch
from rowdb.client.wire import decode_request, decode_schema
from rowdb.common.errors import (
    EncodeError, IllegalResponseError, ServerRejected, TransportError
)
from rowdb.common.models import ColumnDataType, NodeAddress, RequestKind, field, tag, timestamp


class TestRequestEncoder(unittest.TestCase):
    """Test cases for the request encoder.

    This test class includes tests for:
    - The exact byte layout of a small insert
    - Value and null bitmap lengths for every column
    - Schema descriptor round-trips and deterministic output
    - Delete requests carrying only key columns
    - Defensive rejection of malformed batches
    """

    def setUp(self):
        self.encoder = RequestEncoder("public")
        self.schema = [
            timestamp("ts", ColumnDataType.TIMESTAMP_MILLISECOND),
            tag("host", ColumnDataType.STRING),
            field("cpu", ColumnDataType.FLOAT64),
            field("ok", ColumnDataType.BOOLEAN),
            field("blob", ColumnDataType.BINARY),
        ]
        self.batch = RowBatch.from_rows("metrics", self.schema, [
            (1000, "host-a", 0.25, True, b"\x01\x02"),
            (2000, None, 0.5, None, None),
            (3000, "hôst-c", None, False, b""),
        ])

    def test_two_row_layout(self):
        """A null value keeps a zero placeholder and sets its bitmap bit."""
        batch = RowBatch.from_rows(
            "t",
            [timestamp("ts", ColumnDataType.TIMESTAMP_MILLISECOND), field("v", ColumnDataType.INT64)],
            [(1000, 5), (2000, None)]
        )
        request = self.encoder.encode_insert(batch)

        expected = b"".join([
            b"RWDB", struct.pack("<BB", 1, RequestKind.INSERT.value),
            struct.pack("<H", 6), b"public",
            struct.pack("<H", 1),
            struct.pack("<H", 1), b"t",
            struct.pack("<I", 2),
            struct.pack("<H", 2),
            struct.pack("<H", 2), b"ts", struct.pack("<BB", 16, 2),
            struct.pack("<H", 1), b"v", struct.pack("<BB", 4, 1),
            b"\x00", struct.pack("<I", 16), struct.pack("<2q", 1000, 2000),
            b"\x02", struct.pack("<I", 16), struct.pack("<2q", 5, 0),
        ])
        self.assertEqual(request.payload, expected)

        decoded = decode_request(request.payload)
        column = decoded.tables[0].columns[1]
        self.assertEqual(column.values, [5, 0])
        self.assertEqual(column.null_mask, [False, True])

    def test_every_column_holds_row_count_entries(self):
        request = self.encoder.encode_insert(self.batch)
        self.assertEqual(request.kind, RequestKind.INSERT)
        self.assertEqual(request.tables, ("metrics",))
        self.assertEqual(request.row_count, 3)

        table = decode_request(request.payload).tables[0]
        self.assertEqual(table.row_count, 3)
        for column in table.columns:
            with self.subTest(column=column.schema.name):
                self.assertEqual(len(column.values), 3)
                self.assertEqual(len(column.null_mask), 3)

        values = {column.schema.name: column for column in table.columns}
        self.assertEqual(values["host"].values, ["host-a", "", "hôst-c"])
        self.assertEqual(values["host"].null_mask, [False, True, False])
        self.assertEqual(values["cpu"].values, [0.25, 0.5, 0.0])
        self.assertEqual(values["ok"].values, [True, False, False])
        self.assertEqual(values["blob"].values, [b"\x01\x02", b"", b""])
        self.assertEqual(values["blob"].null_mask, [False, True, False])

    def test_bitmap_spans_multiple_bytes(self):
        rows = [(index, index if index % 3 else None) for index in range(11)]
        batch = RowBatch.from_rows("t", [timestamp("ts"), field("v", ColumnDataType.INT16)], rows)
        column = decode_request(self.encoder.encode_insert(batch).payload).tables[0].columns[1]
        self.assertEqual(column.null_mask, [index % 3 == 0 for index in range(11)])
        self.assertEqual(len(column.values), 11)

    def test_schema_round_trip(self):
        """Decoding the schema section gives back the declared columns."""
        request = self.encoder.encode_insert(self.batch)
        self.assertEqual(decode_schema(request.payload), list(self.schema))

    def test_encoding_is_deterministic(self):
        first = self.encoder.encode_insert(self.batch)
        second = self.encoder.encode_insert(self.batch)
        self.assertEqual(first.payload, second.payload)
        self.assertEqual(first, RequestEncoder("public").encode_insert(self.batch))

    def test_empty_batch(self):
        """Zero rows still carry the schema and empty value sections."""
        batch = RowBatch("metrics", self.schema, [[] for _ in self.schema])
        request = self.encoder.encode_insert(batch)
        self.assertEqual(request.row_count, 0)

        table = decode_request(request.payload).tables[0]
        self.assertEqual(table.schema, list(self.schema))
        for column in table.columns:
            self.assertEqual(column.values, [])
            self.assertEqual(column.null_mask, [])

    def test_datetime_conversion(self):
        """Datetime and date values are sent as integers since the epoch."""
        moment = datetime(1970, 1, 1, 0, 0, 10, tzinfo=timezone.utc)
        batch = RowBatch("t", [
            timestamp("ts", ColumnDataType.TIMESTAMP_NANOSECOND),
            field("sec", ColumnDataType.TIMESTAMP_SECOND),
            field("dt", ColumnDataType.DATETIME),
            field("day", ColumnDataType.DATE),
        ], [[moment], [datetime(1970, 1, 1, 0, 0, 10)], [moment], [date(1970, 1, 11)]])

        columns = decode_request(self.encoder.encode_insert(batch).payload).tables[0].columns
        self.assertEqual([column.values[0] for column in columns], [10_000_000_000, 10, 10_000, 10])

    def test_multiple_tables(self):
        other = RowBatch.from_rows("other", [timestamp("ts"), field("n", ColumnDataType.UINT8)], [(1, 255)])
        request = self.encoder.encode_inserts([self.batch, other])

        self.assertEqual(request.tables, ("metrics", "other"))
        self.assertEqual(request.row_count, 4)
        self.assertEqual(decode_schema(request.payload, 1), list(other.schema))
        self.assertEqual(decode_request(request.payload).tables[1].columns[1].values, [255])

    def test_delete_encodes_only_key_columns(self):
        """Non-key columns are dropped; key columns stay in declaration order."""
        request = self.encoder.encode_delete("metrics", ["host", "ts"], self.batch)
        decoded = decode_request(request.payload)

        self.assertEqual(decoded.kind, RequestKind.DELETE)
        self.assertEqual(decoded.database, "public")
        table = decoded.tables[0]
        self.assertEqual(table.name, "metrics")
        self.assertEqual([column.name for column in table.schema], ["ts", "host"])
        self.assertEqual(table.columns[1].null_mask, [False, True, False])

    def test_delete_key_errors(self):
        for keys in ([], ["missing"], ["ts", "ts"]):
            with self.subTest(keys=keys):
                with self.assertRaises(EncodeError):
                    self.encoder.encode_delete("metrics", keys, self.batch)

    def test_insert_requires_timestamp(self):
        batch = RowBatch("t", [tag("host", ColumnDataType.STRING)], [["a"]], require_timestamp=False)
        with self.assertRaises(EncodeError):
            self.encoder.encode_insert(batch)
        # The same batch is fine as delete keys
        self.encoder.encode_delete("t", ["host"], batch)

    def test_corrupted_batch_rejected(self):
        """The encoder re-checks lengths and types of what it is given."""
        batch = RowBatch("t", [timestamp("ts"), field("v", ColumnDataType.INT32)], [[1, 2], [3, 4]])
        batch._values = ((1, 2), (3,))
        with self.assertRaises(EncodeError):
            self.encoder.encode_insert(batch)

        batch._values = ((1, 2), (3, "four"))
        with self.assertRaises(EncodeError):
            self.encoder.encode_insert(batch)

    def test_out_of_range_float_rejected(self):
        """A value too large for FLOAT32 is an encode error, not a packing crash."""
        batch = RowBatch("t", [timestamp("ts"), field("v", ColumnDataType.FLOAT32)], [[1], [1.5]])
        batch._values = ((1,), (1e40,))
        with self.assertRaises(EncodeError):
            self.encoder.encode_insert(batch)

        batch._values = ((1,), (float("inf"),))
        decoded = decode_request(self.encoder.encode_insert(batch).payload)
        self.assertEqual(decoded.tables[0].columns[1].values, [float("inf")])

    def test_message_size_limit(self):
        encoder = RequestEncoder("public", max_message_size=32)
        with self.assertRaises(EncodeError):
            encoder.encode_insert(self.batch)

    def test_no_batches(self):
        with self.assertRaises(EncodeError):
            self.encoder.encode_inserts([])


class TestDecodeResponse(unittest.TestCase):
    """Test cases for decoding node acknowledgments."""

    address = NodeAddress("127.0.0.1", 4001)

    def _body(self, data):
        return json.dumps(data).encode("utf-8")

    def test_success(self):
        body = self._body({"success": True, "affected_rows": 3})
        self.assertEqual(decode_response(self.address, 200, body), 3)

    def test_unavailable_is_transport_failure(self):
        for status in (502, 503, 504):
            with self.assertRaises(TransportError):
                decode_response(self.address, status, b"")

    def test_rejection(self):
        body = self._body({"success": False, "error": "Table not found: cpu", "code": 4001})
        with self.assertRaises(ServerRejected) as context:
            decode_response(self.address, 400, body)
        self.assertEqual(context.exception.status_code, 400)
        self.assertEqual(context.exception.code, 4001)
        self.assertEqual(context.exception.message, "Table not found: cpu")
        self.assertFalse(context.exception.is_retriable())

    def test_success_false_with_ok_status(self):
        with self.assertRaises(ServerRejected):
            decode_response(self.address, 200, self._body({"success": False, "error": "bad"}))

    def test_non_json_error_status(self):
        with self.assertRaises(ServerRejected) as context:
            decode_response(self.address, 500, b"<html>oops</html>")
        self.assertEqual(context.exception.message, "HTTP 500")

    def test_illegal_bodies(self):
        for body in (b"not json", self._body([1, 2]), self._body({"success": True})):
            with self.subTest(body=body):
                with self.assertRaises(IllegalResponseError):
                    decode_response(self.address, 200, body)


if __name__ == '__main__':
    unittest.main()
