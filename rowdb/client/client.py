"""
Client interface for the rowdb database.
"""
import threading
from typing import List, Optional, Sequence, Union

from rowdb.common.config import DEFAULT_DATABASE, STREAM_CHANNEL_SIZE, WORKER_POOL_SIZE
from rowdb.common.errors import DispatchFailed, TransportError
from rowdb.common.models import ChannelConfig, EncodedRequest, NodeAddress
from rowdb.common.utils import get_logger, normalize_peers
from rowdb.client.channel_manager import ChannelPool
from rowdb.client.dispatcher import Dispatcher
from rowdb.client.encoder import RequestEncoder
from rowdb.client.load_balance import LoadBalancer
from rowdb.client.row_batch import RowBatch
from rowdb.client.stream_insert import StreamInserter

logger = get_logger(__name__)


class DatabaseClient:
    """
    Client writing row batches to one database across a set of nodes.

    Usage::

        async with DatabaseClient("public", ["127.0.0.1:4001"]) as client:
            rows = await client.insert(batch)
    """

    def __init__(
        self,
        database: str = DEFAULT_DATABASE,
        peers: Sequence[Union[str, NodeAddress]] = (),
        balancer: Optional[LoadBalancer] = None,
        config: Optional[ChannelConfig] = None,
        max_attempts: Optional[int] = None,
        pool: Optional[ChannelPool] = None,
        max_workers: int = WORKER_POOL_SIZE
    ):
        """
        Initialize the database client.

        Args:
            database: Name of the database (catalog/schema) to write to
            peers: Node addresses, e.g. "127.0.0.1:4001"
            balancer: Node selection policy (round-robin from a random start by default)
            config: Connection settings
            max_attempts: Upper bound on nodes tried per request
            pool: Channel pool to use instead of creating one
            max_workers: Worker threads for a pool created by the client
        """
        self._peers = normalize_peers(peers)
        self._peers_lock = threading.Lock()
        self.pool = pool or ChannelPool(config, max_workers=max_workers)
        self.encoder = RequestEncoder(database, self.pool.config.max_message_size)
        self.dispatcher = Dispatcher(self.pool, self.get_peers, balancer, max_attempts)
        logger.info(f"Database client initialized for '{database}' with peers {[str(p) for p in self._peers]}")

    @property
    def database(self) -> str:
        return self.encoder.database

    def set_database(self, name: str) -> None:
        self.encoder.database = name

    def get_peers(self) -> List[NodeAddress]:
        with self._peers_lock:
            return list(self._peers)

    async def set_peers(self, peers: Sequence[Union[str, NodeAddress]]) -> None:
        """
        Replace the node list; channels to removed nodes are evicted.

        Args:
            peers: New node addresses
        """
        addresses = normalize_peers(peers)
        with self._peers_lock:
            removed = [address for address in self._peers if address not in addresses]
            self._peers = addresses
        for address in removed:
            await self.pool.evict(address)
        logger.info(f"Peers updated to {[str(p) for p in addresses]}")

    async def insert(self, batch: RowBatch, timeout: Optional[float] = None) -> int:
        """
        Insert a row batch.

        Args:
            batch: Rows to insert
            timeout: Per-attempt timeout in seconds

        Returns:
            Number of affected rows
        """
        return await self.handle(self.encoder.encode_insert(batch), timeout)

    async def insert_many(self, batches: Sequence[RowBatch], timeout: Optional[float] = None) -> int:
        """Insert several row batches, possibly for different tables, in one request."""
        return await self.handle(self.encoder.encode_inserts(batches), timeout)

    async def delete(
        self,
        table: str,
        key_columns: Sequence[str],
        batch: RowBatch,
        timeout: Optional[float] = None
    ) -> int:
        """
        Delete the rows whose key columns match the batch.

        Args:
            table: Name of the table
            key_columns: Columns identifying the rows
            batch: Rows holding the key values
            timeout: Per-attempt timeout in seconds

        Returns:
            Number of affected rows
        """
        return await self.handle(self.encoder.encode_delete(table, key_columns, batch), timeout)

    async def handle(self, request: EncodedRequest, timeout: Optional[float] = None) -> int:
        """Dispatch an encoded request and return the affected row count."""
        outcome = await self.dispatcher.dispatch(request, timeout)
        return outcome.unwrap()

    async def health_check(self) -> NodeAddress:
        """
        Check that a node picked by the balancer answers its health probe.

        Returns:
            Address of the healthy node

        Raises:
            DispatchFailed: If no node is configured
            TransportError: If the node is unreachable
        """
        address = self.dispatcher.balancer.get_peer(self.get_peers())
        if address is None:
            raise DispatchFailed([])
        channel = await self.pool.get_or_create(address)
        try:
            await channel.check_health()
        except TransportError:
            await self.pool.mark_broken(address)
            raise
        return address

    def streaming_inserter(self, channel_size: int = STREAM_CHANNEL_SIZE) -> StreamInserter:
        """Create a stream inserter that dispatches queued inserts in the background."""
        return StreamInserter(self, channel_size)

    async def close(self) -> None:
        await self.pool.close()

    async def __aenter__(self) -> "DatabaseClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
