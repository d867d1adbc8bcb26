#!/usr/bin/env python3
"""
Example script writing weather readings to a rowdb node.

Set ROWDB_ENDPOINT (default localhost:4001) and ROWDB_DBNAME (default public).
"""
import os
import asyncio

from rowdb.client.client import DatabaseClient
from rowdb.client.row_batch import RowBatch
from rowdb.common.config import DEFAULT_DATABASE, DEFAULT_HOST, DEFAULT_PORT
from rowdb.common.errors import ClientError
from rowdb.common.models import ColumnDataType, field, tag, timestamp
from rowdb.common.utils import configure_logging

WEATHER_SCHEMA = [
    timestamp("ts", ColumnDataType.TIMESTAMP_MILLISECOND),
    tag("collector", ColumnDataType.STRING),
    field("temperature", ColumnDataType.FLOAT32),
    field("humidity", ColumnDataType.INT32),
]


def weather_records():
    """Sample readings as (timestamp_millis, collector, temperature, humidity)."""
    return [
        (1686109527000, "c1", 26.4, 15),
        (1686023127000, "c1", 29.3, 20),
        (1685936727010, "c1", 31.8, 13),
        (1686109527000, "c2", 20.4, 67),
        (1686023127000, "c2", 18.0, None),
        (1685936727000, "c2", 19.2, 81),
    ]


async def main():
    """Insert the sample readings, then delete one collector's rows."""
    endpoint = os.environ.get("ROWDB_ENDPOINT", f"{DEFAULT_HOST}:{DEFAULT_PORT}")
    dbname = os.environ.get("ROWDB_DBNAME", DEFAULT_DATABASE)

    batch = RowBatch.from_rows("weather_demo", WEATHER_SCHEMA, weather_records())

    async with DatabaseClient(dbname, [endpoint]) as client:
        try:
            rows = await client.insert(batch)
            print(f"Rows written: {rows}")

            c2_rows = [record for record in weather_records() if record[1] == "c2"]
            keys = RowBatch.from_rows("weather_demo", WEATHER_SCHEMA, c2_rows)
            rows = await client.delete("weather_demo", ["ts", "collector"], keys)
            print(f"Rows deleted: {rows}")
        except ClientError as e:
            print(f"Error: {e}")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(main())
