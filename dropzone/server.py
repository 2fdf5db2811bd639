"""
HTTP(S) listener.

A thread-per-connection werkzeug server. TLS material is loaded once before
the port is bound; each accepted connection then does its own handshake in
its worker thread, so a slow or broken client never holds up accept().
"""

import logging
import socket
import ssl
from pathlib import Path

from flask import Flask
from werkzeug.serving import ThreadedWSGIServer, WSGIRequestHandler, load_ssl_context

from .config import DEFAULT_HANDSHAKE_TIMEOUT, DEFAULT_IDLE_TIMEOUT, ServerConfig
from .errors import BindError, CertificateError

logger = logging.getLogger(__name__)


def load_tls_context(cert_path: Path | None, key_path: Path | None) -> ssl.SSLContext:
    for label, path in (("certificate", cert_path), ("key", key_path)):
        if path is None or not Path(path).is_file():
            raise CertificateError(f"TLS {label} file not found: {path}")
    try:
        return load_ssl_context(str(cert_path), str(key_path))
    except OSError as e:
        raise CertificateError(f"Cannot load TLS certificate {cert_path} with key {key_path}: {e}") from e


class DropzoneRequestHandler(WSGIRequestHandler):
    def setup(self):
        # Stalled clients time out instead of holding an upload open forever.
        self.timeout = self.server.idle_timeout
        super().setup()


class DropzoneServer(ThreadedWSGIServer):
    def __init__(
        self,
        sock: socket.socket,
        app: Flask,
        tls_context: ssl.SSLContext | None = None,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
    ):
        host, port = sock.getsockname()[:2]
        self.idle_timeout = idle_timeout
        self.handshake_timeout = handshake_timeout
        super().__init__(host, port, app, handler=DropzoneRequestHandler, fd=sock.fileno())
        # Not passed to the base class: that would wrap the listening socket.
        self.ssl_context = tls_context

    @property
    def listen_address(self) -> tuple[str, int]:
        host, port = self.socket.getsockname()[:2]
        return host, port

    def finish_request(self, request, client_address):
        if self.ssl_context is None:
            return super().finish_request(request, client_address)

        request.settimeout(self.handshake_timeout)
        try:
            conn = self.ssl_context.wrap_socket(request, server_side=True)
        except OSError as e:
            logger.debug("TLS handshake with %s failed: %s", client_address[0], e)
            return None

        try:
            return super().finish_request(conn, client_address)
        finally:
            self.shutdown_request(conn)


def _address_family(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET

def bind_server(config: ServerConfig, app: Flask) -> DropzoneServer:
    """
    Load TLS material (if enabled) and bind the listener.

    Raises CertificateError before anything is bound, BindError when the
    port cannot be taken.
    """
    tls_context = None
    if config.tls_enabled:
        tls_context = load_tls_context(config.cert_path, config.key_path)

    try:
        sock = socket.create_server((config.host, config.port), family=_address_family(config.host))
    except OSError as e:
        raise BindError(config.host, config.port, e.strerror or str(e)) from e

    try:
        server = DropzoneServer(
            sock,
            app,
            tls_context=tls_context,
            idle_timeout=config.idle_timeout,
            handshake_timeout=config.handshake_timeout,
        )
    finally:
        # The server works on its own duplicate of the descriptor.
        sock.close()

    logger.debug("Listening on %s:%d (%s)", *server.listen_address, config.scheme)
    return server
