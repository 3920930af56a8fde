"""HTTP server transport that feeds requests to a transport handler."""

from __future__ import annotations

import socket
import socketserver
import ssl
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

from hormmanage.message import Message, global_context
from hormmanage.transport import Handler, TransportOptions
from hormmanage.web_codec import FrameCodec

KEEP_ALIVE_PERIOD = 180  # seconds
_PEM_CERT_MARKER = "-----BEGIN CERTIFICATE-----"
_SPAN_EPOCH_MS = 1_288_834_974_657


class _SpanIds:
    """Time-ordered unique ids for request spans."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_ms = 0
        self._seq = 0

    def next(self) -> int:
        with self._lock:
            now = max(int(time.time() * 1000), self._last_ms)
            if now == self._last_ms:
                self._seq += 1
                if self._seq > 0xFFF:
                    now += 1
                    self._seq = 0
            else:
                self._seq = 0
            self._last_ms = now
            return ((now - _SPAN_EPOCH_MS) << 22) | self._seq


_span_ids = _SpanIds()


def load_ca_certs(ca_cert_file: str) -> str | None:
    """Read the CA certificates used to verify clients; ``"root"`` means the system roots."""
    if ca_cert_file == "root":
        return None
    pem = Path(ca_cert_file).read_text(encoding="utf-8", errors="replace")
    if _PEM_CERT_MARKER not in pem:
        raise ValueError("appendCertsFromPEM fail")
    return pem


def _enable_keep_alive(conn: socket.socket) -> None:
    try:
        conn.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        for name in ("TCP_KEEPIDLE", "TCP_KEEPINTVL"):
            option = getattr(socket, name, None)
            if option is not None:
                conn.setsockopt(socket.IPPROTO_TCP, option, KEEP_ALIVE_PERIOD)
    except OSError:
        pass


class _WebServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_address = True

    def server_bind(self) -> None:
        reuse_port = getattr(socket, "SO_REUSEPORT", None)
        if reuse_port is not None:
            try:
                self.socket.setsockopt(socket.SOL_SOCKET, reuse_port, 1)
            except OSError:
                pass
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = host
        self.server_port = port

    def get_request(self) -> tuple[Any, Any]:
        conn, addr = self.socket.accept()
        _enable_keep_alive(conn)
        return conn, addr


class _WebServer6(_WebServer):
    address_family = socket.AF_INET6


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address}: missing port in address")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not port:
        return host, 0
    if not port.isdigit() or int(port) > 0xFFFF:
        raise ValueError(f"address {address}: invalid port {port!r}")
    return host, int(port)


def _read_chunked(rfile: Any) -> bytes:
    chunks = bytearray()
    while True:
        line = rfile.readline()
        if not line:
            raise ValueError("unexpected end of chunked body")
        try:
            size = int(line.split(b";", 1)[0].strip(), 16)
        except ValueError as exc:
            raise ValueError("invalid chunk size") from exc
        if size == 0:
            while rfile.readline() not in (b"\r\n", b"\n", b""):
                pass
            return bytes(chunks)
        chunks.extend(rfile.read(size))
        rfile.readline()


def _make_request_handler(handler: Handler, idle_timeout: float) -> type[BaseHTTPRequestHandler]:
    class _RequestHandler(BaseHTTPRequestHandler):
        protocol_version = "HTTP/1.1"
        server_version = "hormmanage"
        timeout = idle_timeout or None

        def _read_body(self) -> bytes:
            if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
                return _read_chunked(self.rfile)
            length = self.headers.get("Content-Length")
            if not length:
                return b""
            if not length.strip().isdigit():
                raise ValueError(f"invalid Content-Length {length!r}")
            return self.rfile.read(int(length))

        def _dispatch(self) -> None:
            try:
                body = self._read_body()
            except (ValueError, OSError) as exc:
                self.send_error(400, str(exc))
                return

            fc = FrameCodec(method=self.command, target=self.path, headers=self.headers, body=body)
            msg = Message(
                frame_codec=fc,
                span_id=_span_ids.next(),
                local_addr=tuple(self.server.server_address[:2]),
                remote_addr=tuple(self.client_address[:2]),
            )
            try:
                handler.handle(msg, b"")
            except Exception as exc:  # a failing request must not bring the server down
                global_context().log.error("web server handle error: %s", exc)

            self._send(fc)

        def _send(self, fc: FrameCodec) -> None:
            payload = bytes(fc.response_body)
            self.send_response(200)
            for name, value in fc.response_headers:
                if name.lower() != "content-length":
                    self.send_header(name, value)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(payload)

        do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = do_HEAD = do_OPTIONS = _dispatch

        def log_message(self, format: str, *args: Any) -> None:
            global_context().log.debug(format, *args)

    return _RequestHandler


class WebTransport:
    """Serves HTTP (optionally TLS) in a background thread."""

    def __init__(self) -> None:
        self._server: _WebServer | None = None
        self._thread: threading.Thread | None = None
        self.server_address: tuple[str, int] | None = None

    def serve(self, options: TransportOptions) -> tuple[str, int]:
        """Start listening and serving; return the bound address."""
        if options.handler is None:
            raise ValueError("http server client handler empty")
        if self._server is not None:
            raise RuntimeError("web transport already serving")

        client_ca_required, ca_pem = self._client_ca(options)
        ssl_context = self._ssl_context(options, client_ca_required, ca_pem)

        request_handler = _make_request_handler(options.handler, options.idle_timeout)
        server = self._new_server(options, request_handler)
        if ssl_context is not None:
            server.socket = ssl_context.wrap_socket(server.socket, server_side=True)

        self._server = server
        self.server_address = tuple(server.server_address[:2])
        self._thread = threading.Thread(
            target=server.serve_forever,
            kwargs={"poll_interval": 0.1},
            name=f"web-{options.service_name or 'server'}",
            daemon=True,
        )
        self._thread.start()
        return self.server_address

    def shutdown(self) -> None:
        """Stop serving and close the listener."""
        server, thread = self._server, self._thread
        self._server = None
        self._thread = None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join()

    @staticmethod
    def _client_ca(options: TransportOptions) -> tuple[bool, str | None]:
        if options.enable_h2c or not options.ca_cert_file:
            return False, None
        try:
            return True, load_ca_certs(options.ca_cert_file)
        except (OSError, ValueError) as exc:
            raise ValueError(f"http server get ca cert file error:{exc}") from exc

    @staticmethod
    def _ssl_context(
        options: TransportOptions, client_ca_required: bool, ca_pem: str | None
    ) -> ssl.SSLContext | None:
        if not (options.tls_key_file and options.tls_cert_file):
            return None
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(options.tls_cert_file, options.tls_key_file)
        if client_ca_required:
            context.verify_mode = ssl.CERT_REQUIRED
            if ca_pem is None:
                context.load_default_certs(ssl.Purpose.CLIENT_AUTH)
            else:
                context.load_verify_locations(cadata=ca_pem)
        return context

    @staticmethod
    def _new_server(
        options: TransportOptions, request_handler: type[BaseHTTPRequestHandler]
    ) -> _WebServer:
        listener = options.listener
        if listener is not None:
            server_class = _WebServer6 if listener.family == socket.AF_INET6 else _WebServer
            server = server_class(("", 0), request_handler, bind_and_activate=False)
            server.socket.close()
            server.socket = listener
            server.server_address = listener.getsockname()
            server.server_name, server.server_port = server.server_address[:2]
            return server

        host, port = _split_address(options.address)
        server_class = _WebServer6 if ":" in host else _WebServer
        server = server_class((host, port), request_handler, bind_and_activate=False)
        try:
            server.server_bind()
            server.server_activate()
        except OSError as exc:
            server.server_close()
            raise OSError(f"http reuseport listen error:{exc}") from exc
        return server


DEFAULT_WEB_TRANSPORT = WebTransport()