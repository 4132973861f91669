"""Token guard for the gate.

Provides:
- Credential configuration (header name, shared token, excluded paths)
- Token extraction from a header, falling back to a form field
- A per-gate guard state machine and the WSGI middleware that enforces it
"""

import hmac
import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import parse_qs

from multipart import MultipartError, MultipartParser, parse_options_header

logger = logging.getLogger(__name__)

DEFAULT_HEADER = "X-NANOBOX-TOKEN"

# Upper bound on form bodies parsed for the form fallback
MAX_FORM_BYTES = 10 << 20

FORM_METHODS = ("POST", "PUT", "PATCH")
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
MULTIPART_CONTENT_TYPE = "multipart/form-data"


@dataclass
class Credentials:
    """Shared-secret credential configuration.

    An empty token disables the check entirely.
    """

    token: str = ""
    header: str = DEFAULT_HEADER
    excluded_paths: tuple = field(default_factory=tuple)

    def __post_init__(self):
        self.excluded_paths = tuple(self.excluded_paths)


class GuardState(Enum):
    """Whether the token check is enforced."""

    ARMED = "armed"
    DISARMED = "disarmed"


def request_path(environ: dict) -> str:
    """Full request path as seen by the root application."""
    return environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")


def _header_key(header: str) -> str:
    return "HTTP_" + header.upper().replace("-", "_")


def _header_value(environ: dict, header: str) -> str:
    """Header value as UTF-8 text, undoing the latin-1 decoding WSGI applies.

    Bytes that are not valid UTF-8 survive as surrogate escapes so the raw
    value can be recovered with errors="surrogateescape".
    """
    value = environ.get(_header_key(header), "")
    try:
        return value.encode("latin-1").decode("utf-8", errors="surrogateescape")
    except UnicodeEncodeError:
        return value


def _first(values: dict, name: str) -> str:
    found = values.get(name)
    return found[0] if found else ""


def _post_form(environ: dict) -> dict:
    """Parse a form request body, leaving wsgi.input re-readable.

    Url-encoded and multipart/form-data bodies are parsed. File parts of a
    multipart body are skipped, and malformed bodies yield no fields.
    """
    if environ.get("REQUEST_METHOD", "GET").upper() not in FORM_METHODS:
        return {}

    content_type, options = parse_options_header(environ.get("CONTENT_TYPE", ""))
    if content_type not in (FORM_CONTENT_TYPE, MULTIPART_CONTENT_TYPE):
        return {}

    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        return {}
    if length <= 0 or length > MAX_FORM_BYTES:
        return {}

    body = environ["wsgi.input"].read(length)
    environ["wsgi.input"] = io.BytesIO(body)
    environ["CONTENT_LENGTH"] = str(len(body))

    if content_type == FORM_CONTENT_TYPE:
        return parse_qs(body.decode("utf-8", errors="replace"), keep_blank_values=True)

    boundary = options.get("boundary", "")
    if not boundary:
        return {}

    fields = {}
    try:
        parser = MultipartParser(
            io.BytesIO(body), boundary, len(body),
            charset=options.get("charset", "utf-8"),
        )
        for part in parser:
            if part.filename is None:
                fields.setdefault(part.name, []).append(part.value)
    except (MultipartError, LookupError, UnicodeDecodeError) as e:
        logger.debug("Ignoring malformed multipart body: %s", e)
        return {}
    return fields


def extract_token(environ: dict, header: str = DEFAULT_HEADER) -> str:
    """Extract the presented token from a WSGI request.

    The header wins; when it is absent or empty, the form field with the
    same (case-sensitive) name is used. Body values take precedence over
    query-string values.

    Args:
        environ: WSGI environ
        header: Token header name (also the form field name)

    Returns:
        Token string, or "" if none was presented
    """
    token = _header_value(environ, header)
    if token:
        return token

    token = _first(_post_form(environ), header)
    if token:
        return token

    query = parse_qs(environ.get("QUERY_STRING", ""), keep_blank_values=True)
    return _first(query, header)


class Guard:
    """Token check state for one gate instance.

    By default excluded paths are matched per request and the state never
    changes after construction. With latch_exclusions=True the first request
    to an excluded path disarms the check for every later request on this
    instance. That flip is an unsynchronized attribute write; concurrent
    requests may still observe the old state.
    """

    def __init__(self, credentials: Credentials, latch_exclusions: bool = False):
        self.credentials = credentials
        self.latch_exclusions = latch_exclusions
        self.state = GuardState.ARMED if credentials.token else GuardState.DISARMED

    def is_excluded(self, path: str) -> bool:
        return path in self.credentials.excluded_paths

    def allows(self, environ: dict) -> bool:
        """Decide whether a request may reach the wrapped application."""
        path = request_path(environ)

        if self.is_excluded(path):
            if self.latch_exclusions and self.state is GuardState.ARMED:
                logger.warning(
                    "Excluded path %s requested; token check disabled for this gate", path
                )
                self.state = GuardState.DISARMED
            return True

        if self.state is GuardState.DISARMED:
            return True

        presented = extract_token(environ, self.credentials.header)
        return hmac.compare_digest(
            presented.encode("utf-8", errors="surrogateescape"),
            self.credentials.token.encode("utf-8"),
        )


class GuardMiddleware:
    """WSGI middleware answering 401 unless the guard allows the request."""

    def __init__(self, app, guard: Guard):
        self.app = app
        self.guard = guard

    def __call__(self, environ, start_response):
        if not self.guard.allows(environ):
            logger.info(
                "Unauthorized request for %s from %s",
                request_path(environ),
                environ.get("REMOTE_ADDR", "-"),
            )
            start_response("401 Unauthorized", [("Content-Length", "0")])
            return []

        return self.app(environ, start_response)
