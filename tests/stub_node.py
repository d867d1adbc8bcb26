"""
In-process database node used by the client tests.
"""
import gzip
import socket
import threading
from typing import List, Optional, Set

from flask import Flask, request, jsonify
from werkzeug.serving import make_server

from rowdb.client.wire import DecodedRequest, decode_request
from rowdb.common.config import HANDLE_PATH, HEALTH_PATH


class StubNode:
    """
    Minimal node speaking the rowdb HTTP protocol.

    Modes:
    - "ok": acknowledge every request with its row count
    - "reject": refuse every request with status 400
    - "unavailable": answer 503 to writes
    """

    def __init__(self, mode: str = "ok", unknown_tables: Optional[Set[str]] = None):
        self.mode = mode
        self.unknown_tables = unknown_tables or set()
        self.requests: List[DecodedRequest] = []
        self.encodings: List[Optional[str]] = []
        self.health_checks = 0
        self._server = None
        self._thread = None

        self.app = Flask(__name__)
        self.app.route(HEALTH_PATH, methods=['GET'])(self.health)
        self.app.route(HANDLE_PATH, methods=['POST'])(self.handle)

    @property
    def address(self) -> str:
        return f"127.0.0.1:{self._server.server_port}"

    def start(self) -> "StubNode":
        self._server = make_server("127.0.0.1", 0, self.app, threaded=True)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._thread.join(timeout=5)

    def health(self):
        self.health_checks += 1
        return jsonify({"success": True})

    def handle(self):
        body = request.get_data()
        encoding = request.headers.get('Content-Encoding')
        if encoding == 'gzip':
            body = gzip.decompress(body)

        if self.mode == "unavailable":
            return jsonify({"success": False, "error": "Node is shutting down"}), 503

        try:
            decoded = decode_request(body)
        except ValueError as e:
            return jsonify({"success": False, "error": str(e), "code": 1001}), 400

        if self.mode == "reject":
            return jsonify({"success": False, "error": "Writes are disabled", "code": 5001}), 400

        for table in decoded.tables:
            if table.name in self.unknown_tables:
                return jsonify({
                    "success": False,
                    "error": f"Table not found: {table.name}",
                    "code": 4001
                }), 400

        self.requests.append(decoded)
        self.encodings.append(encoding)
        affected_rows = sum(table.row_count for table in decoded.tables)
        return jsonify({"success": True, "affected_rows": affected_rows})


def unused_address() -> str:
    """Address of a local port nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"127.0.0.1:{port}"
