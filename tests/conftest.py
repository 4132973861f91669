"""Shared pytest fixtures for nanoauth tests."""

import http.client
import io
import ssl
import sys
import threading
from pathlib import Path
from wsgiref.util import setup_testing_defaults

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from nanoauth.httpd import Gate
from nanoauth.tls import generate_certificate


class RecordingApp:
    """WSGI app answering 200 "ok" and remembering what it saw."""

    def __init__(self):
        self.calls = []

    def __call__(self, environ, start_response):
        length = int(environ.get("CONTENT_LENGTH") or 0)
        body = environ["wsgi.input"].read(length) if length else b""
        self.calls.append({
            "path": environ.get("PATH_INFO"),
            "query": environ.get("QUERY_STRING"),
            "scheme": environ.get("wsgi.url_scheme"),
            "body": body,
        })
        start_response("200 OK", [("Content-Type", "text/plain"), ("Content-Length", "2")])
        return [b"ok"]


def make_environ(path="/", headers=None, query="", method="GET", body=b"", content_type=""):
    """Build a minimal WSGI environ for unit tests."""
    environ = {
        "PATH_INFO": path,
        "QUERY_STRING": query,
        "REQUEST_METHOD": method,
        "wsgi.input": io.BytesIO(body),
        "CONTENT_LENGTH": str(len(body)) if body else "",
    }
    if content_type:
        environ["CONTENT_TYPE"] = content_type
    for name, value in (headers or {}).items():
        environ["HTTP_" + name.upper().replace("-", "_")] = value
    setup_testing_defaults(environ)
    return environ


def request(gate, path="/", headers=None, method="GET", body=None):
    """Send one request to a running gate and return (status, body)."""
    host, port = gate.server_address[:2]
    if gate.tls:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        conn = http.client.HTTPSConnection(host, port, timeout=5, context=context)
    else:
        conn = http.client.HTTPConnection(host, port, timeout=5)
    try:
        conn.request(method, path, body=body, headers=headers or {})
        response = conn.getresponse()
        return response.status, response.read()
    finally:
        conn.close()


@pytest.fixture(scope="session")
def certificate():
    """One generated certificate shared across the session."""
    return generate_certificate("localhost")


@pytest.fixture
def app():
    return RecordingApp()


@pytest.fixture
def start_gate():
    """Start gates on an OS-assigned port, serving in background threads."""
    gates = []

    def _start(token, app, *excluded_paths, tls=False, **options):
        gate = Gate(**options)
        gate.start("127.0.0.1:0", token, app, *excluded_paths, tls=tls)
        thread = threading.Thread(target=gate.serve_forever, daemon=True)
        thread.start()
        gates.append(gate)
        return gate

    yield _start

    for gate in gates:
        gate.shutdown()
