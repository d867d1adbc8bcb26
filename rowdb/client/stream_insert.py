"""
Stream inserter: queue inserts and dispatch them from a background task.
"""
import asyncio
from typing import Optional, Sequence, Union

from rowdb.common.config import STREAM_CHANNEL_SIZE
from rowdb.common.errors import ClientError, StreamClosedError
from rowdb.common.utils import get_logger
from rowdb.client.row_batch import RowBatch

logger = get_logger(__name__)


class StreamInserter:
    """
    Buffers insert requests and sends them in order.

    Batches are encoded when queued, so schema and encoding errors surface on
    `insert`. Dispatch failures surface on the next `insert` or on `finish`;
    requests queued after a failure are dropped.
    """

    def __init__(self, client, channel_size: int = STREAM_CHANNEL_SIZE):
        if channel_size < 1:
            raise ValueError(f"channel_size must be at least 1, got {channel_size}")
        self._client = client
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=channel_size)
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._affected_rows = 0
        self._error: Optional[ClientError] = None
        self._dropped = 0

    async def insert(self, batches: Union[RowBatch, Sequence[RowBatch]]) -> None:
        """
        Queue one or more row batches as a single insert request.

        Waits while the queue is full.
        """
        if self._closed:
            raise StreamClosedError("Stream inserter is already finished")
        if self._error is not None:
            raise self._error

        if isinstance(batches, RowBatch):
            batches = [batches]
        request = self._client.encoder.encode_inserts(list(batches))

        if self._task is None:
            self._task = asyncio.create_task(self._run())
        await self._queue.put(request)

    async def finish(self) -> int:
        """
        Flush queued inserts and stop the stream.

        Returns:
            Total number of affected rows
        """
        if self._closed:
            raise StreamClosedError("Stream inserter is already finished")
        self._closed = True

        if self._task is not None:
            await self._queue.put(None)
            await self._task

        if self._error is not None:
            if self._dropped:
                logger.error(f"Stream inserter dropped {self._dropped} requests after a failure")
            raise self._error
        logger.info(f"Stream inserter finished with {self._affected_rows} affected rows")
        return self._affected_rows

    async def _run(self) -> None:
        while True:
            request = await self._queue.get()
            if request is None:
                break
            if self._error is not None:
                self._dropped += 1
                continue
            try:
                self._affected_rows += await self._client.handle(request)
            except ClientError as e:
                logger.error(f"Stream insert failed: {e}")
                self._error = e
