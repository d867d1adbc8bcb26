"""
Dispatcher routing encoded requests to database nodes.
"""
import asyncio
from typing import Callable, List, Optional, Sequence

from rowdb.common.errors import (
    DispatchFailed, IllegalResponseError, ServerRejected, TransportError
)
from rowdb.common.models import DispatchOutcome, EncodedRequest, NodeAddress
from rowdb.common.utils import get_logger
from rowdb.client.channel_manager import ChannelPool
from rowdb.client.load_balance import LoadBalancer, RoundRobin

logger = get_logger(__name__)


class Dispatcher:
    """
    Sends each request to one node, falling back to other nodes on transport failures.
    """

    def __init__(
        self,
        pool: ChannelPool,
        peers: Callable[[], Sequence[NodeAddress]],
        balancer: Optional[LoadBalancer] = None,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize the dispatcher.

        Args:
            pool: Channel pool providing node connections
            peers: Callable returning the currently configured node addresses
            balancer: Node selection policy (round-robin by default)
            max_attempts: Upper bound on nodes tried per request (all nodes by default)
            timeout: Per-attempt timeout in seconds (pool config by default)
        """
        if max_attempts is not None and max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.pool = pool
        self.balancer = balancer or RoundRobin()
        self.max_attempts = max_attempts
        self.timeout = timeout if timeout is not None else pool.config.timeout
        self._peers = peers

    def candidates(self) -> List[NodeAddress]:
        """Balancer order, with nodes currently marked broken moved to the back."""
        ordered = self.balancer.candidates(list(self._peers()))
        healthy = [address for address in ordered if not self.pool.is_broken(address)]
        broken = [address for address in ordered if self.pool.is_broken(address)]
        return healthy + broken

    async def dispatch(self, request: EncodedRequest, timeout: Optional[float] = None) -> DispatchOutcome:
        """
        Dispatch a request, trying each candidate node at most once.

        Args:
            request: Encoded request
            timeout: Per-attempt timeout in seconds

        Returns:
            Dispatch outcome: the acknowledgment, a rejection, or DispatchFailed
        """
        attempt_timeout = timeout if timeout is not None else self.timeout
        candidates = self.candidates()
        limit = len(candidates)
        if self.max_attempts is not None:
            limit = min(limit, self.max_attempts)

        attempts = []
        failures = []
        for address in candidates[:limit]:
            attempts.append(address)
            try:
                affected_rows = await asyncio.wait_for(
                    self._attempt(address, request, attempt_timeout),
                    timeout=attempt_timeout
                )
            except asyncio.TimeoutError:
                error = TransportError(address, f"timed out after {attempt_timeout}s")
            except TransportError as e:
                error = e
            except (ServerRejected, IllegalResponseError) as e:
                logger.error(f"{request.kind.name} on {request.tables} rejected by {address}: {e}")
                return DispatchOutcome(success=False, address=address, error=e, attempts=attempts)
            else:
                logger.debug(f"{request.kind.name} on {request.tables} affected {affected_rows} rows on {address}")
                return DispatchOutcome(
                    success=True, address=address, affected_rows=affected_rows, attempts=attempts
                )

            failures.append((address, error))
            await self.pool.mark_broken(address)
            logger.warning(
                f"Error sending {request.kind.name} to {address} (attempt {len(attempts)}/{limit}): {error.reason}"
            )

        failed = DispatchFailed(failures)
        logger.error(f"Failed to dispatch {request.kind.name} on {request.tables}: {failed}")
        return DispatchOutcome(success=False, error=failed, attempts=attempts)

    async def _attempt(self, address: NodeAddress, request: EncodedRequest, timeout: float) -> int:
        channel = await self.pool.get_or_create(address)
        return await channel.send(request, timeout)
