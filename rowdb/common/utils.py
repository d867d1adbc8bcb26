"""
Utility functions for the rowdb client runtime.
"""
import logging
from typing import Iterable, List, Union

from rowdb.common.models import NodeAddress

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging for scripts using the client."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


def normalize_peers(peers: Iterable[Union[str, NodeAddress]]) -> List[NodeAddress]:
    """
    Turn a list of address strings into node addresses.

    Duplicate addresses are dropped, keeping the first occurrence.

    Args:
        peers: Address strings or node addresses

    Returns:
        Ordered list of unique node addresses
    """
    result = []
    seen = set()
    for peer in peers:
        address = peer if isinstance(peer, NodeAddress) else NodeAddress.parse(peer)
        if address not in seen:
            seen.add(address)
            result.append(address)
    return result
