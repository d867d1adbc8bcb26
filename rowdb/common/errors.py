"""
Error types raised by the rowdb client.
"""
from typing import List, Optional, Tuple


class ClientError(Exception):
    """Base exception for client errors."""

    def is_retriable(self) -> bool:
        """Whether another node could succeed where this attempt failed."""
        return False


class SchemaError(ClientError):
    """A row batch violates its own schema."""
    pass


class EncodeError(ClientError):
    """A row batch could not be turned into a wire request."""
    pass


class TransportError(ClientError):
    """Connecting to or talking with a node failed."""

    def __init__(self, address, reason: str):
        self.address = address
        self.reason = reason
        super().__init__(f"Transport failure on {address}: {reason}")

    def is_retriable(self) -> bool:
        return True


class ServerRejected(ClientError):
    """A reachable node refused the request."""

    def __init__(
        self,
        address,
        status_code: int,
        message: str,
        code: Optional[int] = None
    ):
        self.address = address
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"Node {address} rejected request (status {status_code}): {message}")


class IllegalResponseError(ClientError):
    """A node answered with something that is not a valid acknowledgment."""

    def __init__(self, address, message: str):
        self.address = address
        self.message = message
        super().__init__(f"Illegal response from {address}: {message}")


class DispatchFailed(ClientError):
    """Every candidate node failed with a transport error."""

    def __init__(self, failures: List[Tuple[object, TransportError]]):
        self.failures = list(failures)
        if self.failures:
            details = "; ".join(f"{address}: {error.reason}" for address, error in self.failures)
            message = f"Request failed on all {len(self.failures)} nodes ({details})"
        else:
            message = "No available node to dispatch the request to"
        super().__init__(message)

    @property
    def attempted(self) -> list:
        """Addresses tried, in attempt order."""
        return [address for address, _ in self.failures]


class StreamClosedError(ClientError):
    """The stream inserter has already been finished."""
    pass
