# src/solc_gateway/server.py
from __future__ import annotations

import json
import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable

from solc_gateway import main as main_module
from solc_gateway.config import GatewayConfig

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Origin, X-Requested-With, Content-Type, Accept",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
}

# oversized bodies up to this size are read and dropped; larger ones close the connection
MAX_DRAIN_BYTES = 1024 * 1024

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


class RateLimiter:
    """
    Fixed-window request counter per client address. limit <= 0 disables limiting.
    """

    def __init__(self, limit: int, window_s: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_s = window_s
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}

    def allow(self, client: str) -> bool:
        if self.limit <= 0:
            return True
        now = self._clock()
        with self._lock:
            started, count = self._windows.get(client, (now, 0))
            if now - started >= self.window_s:
                started, count = now, 0
            if count >= self.limit:
                self._windows[client] = (started, count)
                return False
            self._windows[client] = (started, count + 1)
            # drop expired windows so idle clients do not accumulate
            if len(self._windows) > 10_000:
                self._windows = {k: v for k, v in self._windows.items() if now - v[0] < self.window_s}
            return True


class GatewayHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], config: GatewayConfig, deps: Any = None):
        super().__init__(address, CompileRequestHandler)
        self.config = config
        self.deps = deps
        self.rate_limiter = RateLimiter(config.rate_limit_per_minute)


class CompileRequestHandler(BaseHTTPRequestHandler):
    server: GatewayHTTPServer
    protocol_version = "HTTP/1.1"
    server_version = "solc-gateway"

    def _send_json(self, status: int, obj: dict[str, Any]) -> None:
        body = json.dumps(obj, separators=(",", ":")).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        for k, v in {**CORS_HEADERS, **SECURITY_HEADERS}.items():
            self.send_header(k, v)
        self.end_headers()
        self.wfile.write(body)

    def _send_error_json(self, status: int, message: str) -> None:
        self._send_json(status, {"success": False, "error": message})

    def _reject(self, status: int, message: str) -> None:
        """Error reply before the body was read: drop a small body, otherwise close the connection."""
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = -1
        if 0 <= length <= MAX_DRAIN_BYTES:
            self._discard_body(length)
        else:
            self.close_connection = True
        self._send_error_json(status, message)

    def _discard_body(self, length: int) -> None:
        while length > 0:
            chunk = self.rfile.read(min(length, 64 * 1024))
            if not chunk:
                break
            length -= len(chunk)

    def _path(self) -> str:
        return self.path.split("?", 1)[0]

    def do_OPTIONS(self) -> None:  # noqa: N802 - http.server naming
        self.send_response(204)
        for k, v in CORS_HEADERS.items():
            self.send_header(k, v)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self) -> None:  # noqa: N802
        if self._path() == "/healthz":
            self._send_json(200, {"ok": True})
            return
        self._send_error_json(404, "Not found.")

    def do_POST(self) -> None:  # noqa: N802
        if self._path() != "/compile":
            self._reject(404, "Not found.")
            return

        if not self.server.rate_limiter.allow(self.client_address[0]):
            self._reject(429, "Too many requests, please try again later.")
            return

        raw_len = self.headers.get("Content-Length")
        if raw_len is None:
            self.close_connection = True
            self._send_error_json(411, "Content-Length required.")
            return
        try:
            length = int(raw_len)
        except ValueError:
            length = -1
        if length < 0:
            self._reject(400, "Invalid Content-Length.")
            return
        if length > self.server.config.max_body_bytes:
            self._reject(413, f"Request body too large (> {self.server.config.max_body_bytes} bytes).")
            return

        try:
            payload = json.loads(self.rfile.read(length).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self._send_error_json(400, f"Invalid JSON body: {e}")
            return

        result = main_module.run(payload, config=self.server.config, deps=self.server.deps)
        status = 400 if result.get("errorKind") == "InvalidRequest" else 200
        self._send_json(status, result)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002 - http.server signature
        logger.info(
            "http %s" % (format % args),
            extra={"client": self.client_address[0] if self.client_address else None},
        )


def make_server(config: GatewayConfig, deps: Any = None) -> GatewayHTTPServer:
    return GatewayHTTPServer((config.host, config.port), config, deps)


def serve(config: GatewayConfig, deps: Any = None) -> None:
    server = make_server(config, deps)
    host, port = server.server_address[:2]
    logger.info("solc-gateway listening", extra={"host": host, "port": port})
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("shutting down")
    finally:
        server.server_close()
