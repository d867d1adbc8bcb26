"""
Pooled connections to database nodes.
"""
import asyncio
import gzip
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter

from rowdb.common.config import CONTENT_TYPE, HANDLE_PATH, HEALTH_PATH, WORKER_POOL_SIZE
from rowdb.common.errors import TransportError
from rowdb.common.models import (
    ChannelConfig, Compression, ConnectionState, EncodedRequest, NodeAddress
)
from rowdb.common.utils import get_logger
from rowdb.client.encoder import decode_response

logger = get_logger(__name__)


class Connection:
    """
    A logical connection to one node.

    Wraps a keep-alive HTTP session shared by every request sent to the node.
    Blocking calls run on the pool's worker threads.
    """

    def __init__(self, address: NodeAddress, config: ChannelConfig, executor: ThreadPoolExecutor):
        self.address = address
        self.config = config
        self.state = ConnectionState.CONNECTING
        self._executor = executor
        self._session = requests.Session()
        adapter = HTTPAdapter(pool_connections=1, pool_maxsize=config.pool_maxsize)
        self._session.mount("http://", adapter)

    async def connect(self) -> None:
        """
        Establish the connection by probing the node's health endpoint.

        Raises:
            TransportError: If the node cannot be reached or is unhealthy
        """
        try:
            await self._run(self._probe)
        except TransportError:
            self.state = ConnectionState.BROKEN
            raise
        if self.state == ConnectionState.CONNECTING:
            self.state = ConnectionState.READY
            logger.info(f"Channel to {self.address} is ready")

    async def check_health(self) -> None:
        """Probe the node without changing the connection state on success."""
        await self._run(self._probe)

    async def send(self, request: EncodedRequest, timeout: Optional[float] = None) -> int:
        """
        Send an encoded request and decode the node's acknowledgment.

        Args:
            request: Encoded write request
            timeout: Read timeout in seconds (defaults to the channel config)

        Returns:
            Number of affected rows
        """
        if self.state != ConnectionState.READY:
            raise TransportError(self.address, f"channel is {self.state.value}")

        body = request.payload
        headers = {'Content-Type': CONTENT_TYPE}
        if self.config.compression == Compression.GZIP:
            body = gzip.compress(body)
            headers['Content-Encoding'] = 'gzip'

        read_timeout = timeout if timeout is not None else self.config.timeout
        status_code, content = await self._run(self._post, body, headers, read_timeout)
        return decode_response(self.address, status_code, content)

    def close(self) -> None:
        self.state = ConnectionState.BROKEN
        self._session.close()

    async def _run(self, func: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _probe(self) -> None:
        try:
            response = self._session.get(
                f"{self.address.url}{HEALTH_PATH}",
                timeout=(self.config.connect_timeout, self.config.connect_timeout)
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(self.address, str(e))
        if response.status_code != 200:
            raise TransportError(self.address, f"health check returned status {response.status_code}")

    def _post(self, body: bytes, headers: Dict[str, str], read_timeout: float):
        try:
            response = self._session.post(
                f"{self.address.url}{HANDLE_PATH}",
                data=body,
                headers=headers,
                timeout=(self.config.connect_timeout, read_timeout)
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(self.address, str(e))
        return response.status_code, response.content


Connector = Callable[[NodeAddress, ChannelConfig, ThreadPoolExecutor], Connection]


class ChannelPool:
    """
    Holds at most one connection per node address.

    Connections are created lazily. Concurrent requests for an address that is
    still connecting wait for the attempt already in flight, including requests
    made from event loops running on other threads.
    """

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        connector: Optional[Connector] = None,
        max_workers: int = WORKER_POOL_SIZE
    ):
        """
        Initialize the channel pool.

        Args:
            config: Settings applied to every connection
            connector: Factory for new connections (defaults to Connection)
            max_workers: Size of the worker pool running blocking I/O
        """
        self.config = config or ChannelConfig()
        self._connector = connector or Connection
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="rowdb-io")
        self._channels: Dict[NodeAddress, Connection] = {}
        self._pending: Dict[NodeAddress, Future] = {}
        self._lock = threading.Lock()
        self._closed = False

    async def get_or_create(self, address: NodeAddress) -> Connection:
        """
        Get the ready connection for an address, establishing it if needed.

        Args:
            address: Node address

        Returns:
            Ready connection

        Raises:
            TransportError: If establishing the connection failed
        """
        with self._lock:
            if self._closed:
                raise TransportError(address, "channel pool is closed")

            channel = self._channels.get(address)
            if channel is not None and channel.state == ConnectionState.READY:
                return channel

            pending = self._pending.get(address)
            if pending is None:
                if channel is not None:
                    channel.close()
                channel = self._connector(address, self.config, self._executor)
                self._channels[address] = channel
                pending = Future()
                self._pending[address] = pending
                owner = True
            else:
                owner = False

        if not owner:
            return await asyncio.shield(asyncio.wrap_future(pending))

        try:
            await channel.connect()
        except BaseException as e:
            error = e if isinstance(e, TransportError) else TransportError(address, f"connect interrupted: {e!r}")
            with self._lock:
                channel.state = ConnectionState.BROKEN
                self._settle(address, pending, error=error)
            logger.warning(f"Failed to establish channel to {address}: {error.reason}")
            raise

        with self._lock:
            if self._channels.get(address) is not channel:
                error = TransportError(address, "channel was evicted while connecting")
            elif channel.state != ConnectionState.READY:
                error = TransportError(address, "channel was marked broken while connecting")
            else:
                error = None
            self._settle(address, pending, channel=channel, error=error)

        if error is not None:
            logger.warning(f"Discarding channel to {address}: {error.reason}")
            raise error
        return channel

    def _settle(
        self,
        address: NodeAddress,
        pending: Future,
        channel: Optional[Connection] = None,
        error: Optional[TransportError] = None
    ) -> None:
        # Caller holds self._lock
        if self._pending.get(address) is pending:
            del self._pending[address]
        if pending.done():
            return
        if error is not None:
            pending.set_exception(error)
        else:
            pending.set_result(channel)

    async def mark_broken(self, address: NodeAddress) -> None:
        """Mark a node's connection broken; the next lookup reconnects."""
        with self._lock:
            channel = self._channels.get(address)
            if channel is not None and channel.state != ConnectionState.BROKEN:
                channel.state = ConnectionState.BROKEN
                logger.warning(f"Marked channel to {address} as broken")

    async def evict(self, address: NodeAddress) -> bool:
        """
        Remove a node's connection and release its resources.

        A connection still being established is failed for everyone waiting on it.

        Returns:
            True if a connection was removed, False otherwise
        """
        with self._lock:
            channel = self._channels.pop(address, None)
            pending = self._pending.get(address)
            if pending is not None:
                self._settle(address, pending, error=TransportError(address, "channel was evicted while connecting"))
        if channel is None:
            return False
        channel.close()
        logger.info(f"Evicted channel to {address}")
        return True

    def is_broken(self, address: NodeAddress) -> bool:
        channel = self._channels.get(address)
        return channel is not None and channel.state == ConnectionState.BROKEN

    def state(self, address: NodeAddress) -> Optional[ConnectionState]:
        channel = self._channels.get(address)
        return channel.state if channel is not None else None

    def addresses(self) -> List[NodeAddress]:
        with self._lock:
            return list(self._channels)

    async def close(self) -> None:
        """Close every connection and stop the worker pool."""
        with self._lock:
            self._closed = True
            channels = list(self._channels.values())
            self._channels.clear()
            for address, pending in list(self._pending.items()):
                self._settle(address, pending, error=TransportError(address, "channel pool is closed"))
        for channel in channels:
            channel.close()
        self._executor.shutdown(wait=False)
        logger.info(f"Channel pool closed ({len(channels)} channels)")
