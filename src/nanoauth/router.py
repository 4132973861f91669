"""Path router used when a gate is started without an application.

Patterns ending in "/" match the whole subtree below them; other patterns
match only the exact path. The longest matching pattern wins.
"""

import logging
import threading

from nanoauth.auth import request_path

logger = logging.getLogger(__name__)


def not_found(environ, start_response):
    body = b"404 page not found\n"
    start_response("404 Not Found", [
        ("Content-Type", "text/plain; charset=utf-8"),
        ("Content-Length", str(len(body))),
    ])
    return [body]


class Router:
    """WSGI application dispatching requests to registered applications."""

    def __init__(self):
        self._routes: dict = {}
        self._lock = threading.Lock()

    def add(self, pattern: str, app) -> None:
        """Register app for pattern.

        Raises:
            ValueError: If pattern is empty, not rooted, or already registered
        """
        if not pattern or not pattern.startswith("/"):
            raise ValueError(f"Invalid pattern: {pattern!r}")
        with self._lock:
            if pattern in self._routes:
                raise ValueError(f"Multiple registrations for {pattern}")
            self._routes[pattern] = app
        logger.debug("Registered route %s", pattern)

    def route(self, pattern: str):
        """Decorator form of add()."""
        def decorator(app):
            self.add(pattern, app)
            return app
        return decorator

    def match(self, path: str):
        """Return the application registered for path, or None."""
        with self._lock:
            app = self._routes.get(path)
            if app is not None:
                return app

            best = None
            for pattern, candidate in self._routes.items():
                if pattern.endswith("/") and path.startswith(pattern):
                    if best is None or len(pattern) > len(best[0]):
                        best = (pattern, candidate)
        return best[1] if best else None

    def __call__(self, environ, start_response):
        app = self.match(request_path(environ)) or not_found
        return app(environ, start_response)


# Process-wide router for gates started without an application
default_router = Router()
