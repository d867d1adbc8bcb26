"""
Configuration settings for the rowdb client runtime.
"""

# Node settings
DEFAULT_DATABASE = "public"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 4001

# Endpoint paths served by every database node
HEALTH_PATH = "/health"
HANDLE_PATH = "/v1/handle"
CONTENT_TYPE = "application/x-rowdb"

# Client settings
CLIENT_TIMEOUT = 5.0  # seconds, per dispatch attempt
CONNECT_TIMEOUT = 3.0  # seconds
POOL_MAXSIZE = 10  # Keep-alive connections per node
WORKER_POOL_SIZE = 16  # Threads shared by all node connections
STREAM_CHANNEL_SIZE = 1024  # Requests buffered by a stream inserter

# Wire settings
WIRE_MAGIC = b"RWDB"
WIRE_VERSION = 1
MAX_MESSAGE_SIZE = 512 * 1024 * 1024  # bytes
