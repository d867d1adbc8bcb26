"""
Data models for the rowdb client runtime.
"""
from enum import Enum
from typing import List, Optional, Tuple
from dataclasses import dataclass, field as dataclass_field

from rowdb.common.config import (
    CLIENT_TIMEOUT, CONNECT_TIMEOUT, POOL_MAXSIZE, MAX_MESSAGE_SIZE
)


class ColumnDataType(Enum):
    """Column data types, valued by their wire code."""
    BOOLEAN = 0
    INT8 = 1
    INT16 = 2
    INT32 = 3
    INT64 = 4
    UINT8 = 5
    UINT16 = 6
    UINT32 = 7
    UINT64 = 8
    FLOAT32 = 9
    FLOAT64 = 10
    BINARY = 11
    STRING = 12
    DATE = 13  # Days since epoch
    DATETIME = 14  # Milliseconds since epoch
    TIMESTAMP_SECOND = 15
    TIMESTAMP_MILLISECOND = 16
    TIMESTAMP_MICROSECOND = 17
    TIMESTAMP_NANOSECOND = 18

    @property
    def is_timestamp(self) -> bool:
        return self in TIMESTAMP_TYPES


TIMESTAMP_TYPES = frozenset({
    ColumnDataType.TIMESTAMP_SECOND,
    ColumnDataType.TIMESTAMP_MILLISECOND,
    ColumnDataType.TIMESTAMP_MICROSECOND,
    ColumnDataType.TIMESTAMP_NANOSECOND,
})


class SemanticType(Enum):
    """Role a column plays in its table."""
    TAG = 0
    FIELD = 1
    TIMESTAMP = 2


class RequestKind(Enum):
    """Kind of write carried by an encoded request."""
    INSERT = 1
    DELETE = 2


class ConnectionState(Enum):
    """Lifecycle state of a pooled node connection."""
    CONNECTING = "CONNECTING"
    READY = "READY"
    BROKEN = "BROKEN"


class Compression(Enum):
    """Request body compression."""
    GZIP = "gzip"
    NONE = "none"


@dataclass(frozen=True)
class ColumnSchema:
    """Declaration of one column in a row batch."""
    name: str
    datatype: ColumnDataType
    semantic_type: SemanticType = SemanticType.FIELD


def tag(name: str, datatype: ColumnDataType) -> ColumnSchema:
    return ColumnSchema(name, datatype, SemanticType.TAG)


def field(name: str, datatype: ColumnDataType) -> ColumnSchema:
    return ColumnSchema(name, datatype, SemanticType.FIELD)


def timestamp(name: str, datatype: ColumnDataType = ColumnDataType.TIMESTAMP_MILLISECOND) -> ColumnSchema:
    return ColumnSchema(name, datatype, SemanticType.TIMESTAMP)


@dataclass(frozen=True)
class NodeAddress:
    """Network endpoint of a database node."""
    host: str
    port: int

    @classmethod
    def parse(cls, value: str) -> "NodeAddress":
        """
        Parse an address such as "127.0.0.1:4001", "http://db1:4001" or "[::1]:4001".

        Args:
            value: Address string

        Returns:
            Parsed node address
        """
        text = value.strip()
        if "://" in text:
            scheme, text = text.split("://", 1)
            if scheme != "http":
                raise ValueError(f"Unsupported scheme in node address: {value}")
        text = text.rstrip("/")

        if text.startswith("["):
            host, sep, port = text[1:].partition("]:")
        else:
            host, sep, port = text.rpartition(":")

        if not sep or not host or not port.isdigit():
            raise ValueError(f"Invalid node address: {value}")

        port_number = int(port)
        if not 0 < port_number < 65536:
            raise ValueError(f"Port out of range in node address: {value}")

        return cls(host=host, port=port_number)

    @property
    def url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}"

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"


@dataclass(frozen=True)
class ChannelConfig:
    """Settings shared by every connection in a channel pool."""
    timeout: float = CLIENT_TIMEOUT
    connect_timeout: float = CONNECT_TIMEOUT
    pool_maxsize: int = POOL_MAXSIZE
    compression: Compression = Compression.GZIP
    max_message_size: int = MAX_MESSAGE_SIZE


@dataclass(frozen=True)
class EncodedRequest:
    """A write request ready to be sent to a node."""
    kind: RequestKind
    database: str
    tables: Tuple[str, ...]
    row_count: int
    payload: bytes


@dataclass
class DispatchOutcome:
    """Result of dispatching one request."""
    success: bool
    address: Optional[NodeAddress] = None
    affected_rows: int = 0
    error: Optional[Exception] = None
    attempts: List[NodeAddress] = dataclass_field(default_factory=list)

    def unwrap(self) -> int:
        """Return the affected row count, or raise the failure."""
        if self.success:
            return self.affected_rows
        raise self.error
