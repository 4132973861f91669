"""Token-gated HTTP/HTTPS serving.

A gate wraps a WSGI application with a shared-secret token check and serves
it over plain HTTP or TLS, generating a self-signed certificate when none is
supplied.
"""

from nanoauth.httpd import (
    Gate,
    create_gate,
    listen_and_serve,
    listen_and_serve_tls,
    parse_address,
)
from nanoauth.tls import (
    Certificate,
    CertificateError,
    DEFAULT_HOSTNAME,
    generate_certificate,
    write_pem,
)
from nanoauth.auth import (
    DEFAULT_HEADER,
    Credentials,
    Guard,
    GuardMiddleware,
    GuardState,
    extract_token,
)
from nanoauth.router import Router, default_router

__all__ = [
    # Listener
    "Gate",
    "create_gate",
    "listen_and_serve",
    "listen_and_serve_tls",
    "parse_address",
    # TLS
    "Certificate",
    "CertificateError",
    "DEFAULT_HOSTNAME",
    "generate_certificate",
    "write_pem",
    # Guard
    "DEFAULT_HEADER",
    "Credentials",
    "Guard",
    "GuardMiddleware",
    "GuardState",
    "extract_token",
    # Routing
    "Router",
    "default_router",
]
