"""
Node selection policies.
"""
import random
import threading
from typing import List, Optional, Sequence

from rowdb.common.models import NodeAddress


class LoadBalancer:
    """Base class for policies ordering candidate nodes for a request."""

    def candidates(self, addresses: Sequence[NodeAddress]) -> List[NodeAddress]:
        """
        Order the configured addresses for one request.

        The first entry is the preferred node; the rest are fallbacks.
        """
        raise NotImplementedError

    def get_peer(self, addresses: Sequence[NodeAddress]) -> Optional[NodeAddress]:
        """Pick a single node, or None when there are no addresses."""
        ordered = self.candidates(addresses)
        return ordered[0] if ordered else None


class RoundRobin(LoadBalancer):
    """
    Round-robin starting from a random offset.

    Each instance starts at its own random position so that many clients
    started together do not all hit the same node first.
    """

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)
        self._offset: Optional[int] = None
        self._lock = threading.Lock()

    def candidates(self, addresses: Sequence[NodeAddress]) -> List[NodeAddress]:
        if not addresses:
            return []
        with self._lock:
            if self._offset is None:
                self._offset = self._rng.randrange(len(addresses))
            start = self._offset % len(addresses)
            self._offset = start + 1
        return list(addresses[start:]) + list(addresses[:start])


class Random(LoadBalancer):
    """Uniformly random order for every request."""

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)
        self._lock = threading.Lock()

    def candidates(self, addresses: Sequence[NodeAddress]) -> List[NodeAddress]:
        ordered = list(addresses)
        with self._lock:
            self._rng.shuffle(ordered)
        return ordered
