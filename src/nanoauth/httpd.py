"""Gated HTTP/HTTPS listener.

A gate binds a plain or TLS listener and serves every request through the
token guard before handing it to the wrapped WSGI application.
"""

import logging
import socket
import ssl
from socketserver import ThreadingMixIn
from typing import Optional
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from nanoauth.auth import DEFAULT_HEADER, Credentials, Guard, GuardMiddleware
from nanoauth.router import default_router
from nanoauth.tls import Certificate, CertificateError, generate_certificate

logger = logging.getLogger(__name__)

# Seconds a new TLS connection may take to complete its handshake
HANDSHAKE_TIMEOUT = 10


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """WSGI server handling each connection in its own thread.

    TLS sockets are accepted without a handshake; it runs here on the
    connection's worker thread so a stalled client only holds its own thread.
    """

    daemon_threads = True
    handshake_timeout = HANDSHAKE_TIMEOUT

    def finish_request(self, request, client_address):
        if isinstance(request, ssl.SSLSocket):
            request.settimeout(self.handshake_timeout)
            try:
                request.do_handshake()
            except (ssl.SSLError, OSError) as e:
                logger.debug("TLS handshake with %s failed: %s", client_address[0], e)
                return
            request.settimeout(None)
        super().finish_request(request, client_address)


class ThreadingWSGIServer6(ThreadingWSGIServer):
    address_family = socket.AF_INET6


class GateRequestHandler(WSGIRequestHandler):
    """Request handler that logs through Python logging."""

    def log_message(self, format: str, *args):
        """Override to use Python logging."""
        logger.info("%s - %s", self.address_string(), format % args)


def parse_address(address: str) -> tuple[str, int]:
    """Split a "host:port" address.

    An empty host (":8080") binds all interfaces. IPv6 hosts must be
    bracketed ("[::1]:8080").

    Raises:
        ValueError: If the address is malformed
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"Missing port in address: {address}")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"Too many colons in address: {address}")

    try:
        port_num = int(port)
    except ValueError:
        raise ValueError(f"Invalid port in address: {address}") from None
    if not 0 <= port_num <= 65535:
        raise ValueError(f"Port out of range in address: {address}")

    return host, port_num


class Gate:
    """A token-guarded listener owning its credentials and certificate."""

    def __init__(
        self,
        header: str = DEFAULT_HEADER,
        certificate: Optional[Certificate] = None,
        hostname: str = "",
        latch_exclusions: bool = False,
    ):
        """Initialize gate.

        Args:
            header: Token header (and form field) name
            certificate: Certificate for TLS (generated on TLS start if None)
            hostname: Hostname for a generated certificate
            latch_exclusions: Disable the check for all later requests once
                any excluded path is requested
        """
        self.header = header
        self.certificate = certificate
        self.hostname = hostname
        self.latch_exclusions = latch_exclusions
        self.credentials: Optional[Credentials] = None
        self.guard: Optional[Guard] = None
        self.app = None
        self.tls = False
        self.server: Optional[WSGIServer] = None
        self._serving = False

    @property
    def server_address(self) -> tuple:
        if not self.server:
            raise RuntimeError("Gate not started")
        return self.server.server_address

    @property
    def url(self) -> str:
        host, port = self.server_address[:2]
        if ":" in host:
            host = f"[{host}]"
        scheme = "https" if self.tls else "http"
        return f"{scheme}://{host}:{port}"

    def start(self, address: str, token: str, app=None, *excluded_paths: str, tls: bool = False):
        """Configure the guard and bind the listener.

        Args:
            address: "host:port" to bind
            token: Shared secret ("" disables the check)
            app: WSGI application to protect (default: default_router)
            *excluded_paths: Paths that bypass the check
            tls: Serve HTTPS with this gate's certificate

        Raises:
            ValueError: If the address is malformed
            RuntimeError: If the certificate or listener cannot be set up
        """
        if self.server:
            raise RuntimeError("Gate already started")

        host, port = parse_address(address)

        # Auto-generate TLS cert if not provided
        if tls and self.certificate is None:
            try:
                self.certificate = generate_certificate(self.hostname)
            except CertificateError as e:
                logger.error("Failed to generate TLS cert: %s", e)
                raise RuntimeError(f"TLS init failed: {e}") from e

        self.credentials = Credentials(
            token=token, header=self.header, excluded_paths=excluded_paths
        )
        self.guard = Guard(self.credentials, latch_exclusions=self.latch_exclusions)
        self.app = app if app is not None else default_router
        self.tls = tls

        server_class = ThreadingWSGIServer6 if ":" in host else ThreadingWSGIServer
        try:
            server = make_server(
                host, port, GuardMiddleware(self.app, self.guard),
                server_class=server_class,
                handler_class=GateRequestHandler,
            )
        except OSError as e:
            logger.error("Failed to bind %s: %s", address, e)
            raise RuntimeError(f"Listen failed on {address}: {e}") from e

        # Wrap with TLS
        if tls:
            try:
                context = self.certificate.ssl_context()
            except (OSError, ValueError) as e:
                server.server_close()
                logger.error("Failed to load TLS cert: %s", e)
                raise RuntimeError(f"TLS init failed: {e}") from e
            server.socket = context.wrap_socket(
                server.socket, server_side=True, do_handshake_on_connect=False
            )
            server.base_environ["HTTPS"] = "on"

        self.server = server

        logger.info("Gate listening on %s", self.url)
        if tls:
            logger.info("Certificate fingerprint: %s", self.certificate.fingerprint)
        if not token:
            logger.warning("Empty token; requests are not checked")
        if excluded_paths:
            logger.info("Excluded paths: %s", ", ".join(excluded_paths))

    def serve_forever(self):
        """Serve requests until shutdown."""
        if not self.server:
            raise RuntimeError("Gate not started")

        self._serving = True
        try:
            self.server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutdown requested")
        finally:
            self.shutdown()

    def shutdown(self):
        """Stop serving and close the listener."""
        server, self.server = self.server, None
        serving, self._serving = self._serving, False
        if server:
            logger.info("Shutting down gate")
            # BaseServer.shutdown blocks unless serve_forever was entered
            if serving:
                server.shutdown()
            server.server_close()

    def listen_and_serve(self, address: str, token: str, app=None, *excluded_paths: str):
        """Serve plain HTTP on address, blocking until the listener stops."""
        self.start(address, token, app, *excluded_paths)
        self.serve_forever()

    def listen_and_serve_tls(self, address: str, token: str, app=None, *excluded_paths: str):
        """Serve HTTPS on address, blocking until the listener stops."""
        self.start(address, token, app, *excluded_paths, tls=True)
        self.serve_forever()


def create_gate(
    header: str = DEFAULT_HEADER,
    certificate: Optional[Certificate] = None,
    hostname: str = "",
    latch_exclusions: bool = False,
) -> Gate:
    """Create a gate instance.

    Returns:
        Gate instance (not yet started)
    """
    return Gate(
        header=header,
        certificate=certificate,
        hostname=hostname,
        latch_exclusions=latch_exclusions,
    )


def listen_and_serve(address: str, token: str, app=None, *excluded_paths: str, **options):
    """Serve plain HTTP through a new gate. Options are passed to create_gate()."""
    create_gate(**options).listen_and_serve(address, token, app, *excluded_paths)


def listen_and_serve_tls(address: str, token: str, app=None, *excluded_paths: str, **options):
    """Serve HTTPS through a new gate. Options are passed to create_gate()."""
    create_gate(**options).listen_and_serve_tls(address, token, app, *excluded_paths)
