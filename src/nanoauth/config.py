"""Gate configuration management.

Configuration is loaded from a YAML file, then overridden by environment
variables:
- NANOAUTH_ADDRESS: listen address ("host:port")
- NANOAUTH_TOKEN: shared secret
- NANOAUTH_HEADER: token header name

The CLI applies its own flags on top of the result.
"""

import importlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from nanoauth.auth import DEFAULT_HEADER

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = ":8443"

ENV_OVERRIDES = {
    "NANOAUTH_ADDRESS": "address",
    "NANOAUTH_TOKEN": "token",
    "NANOAUTH_HEADER": "header",
}


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class GateConfig:
    """Settings for one gate listener."""

    address: str = DEFAULT_ADDRESS
    token: str = ""
    header: str = DEFAULT_HEADER
    excluded_paths: list = field(default_factory=list)
    latch_exclusions: bool = False
    app: str = ""

    # TLS
    tls: bool = False
    hostname: str = ""
    cert_path: Optional[Path] = None
    key_path: Optional[Path] = None

    def __post_init__(self):
        if isinstance(self.cert_path, str):
            self.cert_path = Path(self.cert_path)
        if isinstance(self.key_path, str):
            self.key_path = Path(self.key_path)

    @classmethod
    def from_dict(cls, data: dict) -> "GateConfig":
        """Build config from a parsed YAML mapping.

        Raises:
            ConfigError: If a value has the wrong type
        """
        tls = data.get("tls") or {}
        if not isinstance(tls, dict):
            raise ConfigError("'tls' must be a mapping")

        excluded = data.get("excluded_paths") or []
        if isinstance(excluded, str):
            excluded = [excluded]
        if not isinstance(excluded, list) or not all(isinstance(p, str) for p in excluded):
            raise ConfigError("'excluded_paths' must be a list of paths")

        token = data.get("token", "")
        if token is None:
            token = ""
        if not isinstance(token, str):
            raise ConfigError("'token' must be a string")

        return cls(
            address=str(data.get("address", DEFAULT_ADDRESS)),
            token=token,
            header=str(data.get("header") or DEFAULT_HEADER),
            excluded_paths=list(excluded),
            latch_exclusions=bool(data.get("latch_exclusions", False)),
            app=str(data.get("app") or ""),
            tls=bool(tls.get("enabled", False)),
            hostname=str(tls.get("hostname") or ""),
            cert_path=tls.get("cert"),
            key_path=tls.get("key"),
        )

    def apply_env(self, environ: Optional[dict] = None) -> "GateConfig":
        """Override settings from NANOAUTH_* environment variables."""
        environ = os.environ if environ is None else environ
        for var, attr in ENV_OVERRIDES.items():
            if var in environ:
                logger.debug("Using %s from environment", attr)
                setattr(self, attr, environ[var])
        return self


def _parse_yaml(path: Path) -> dict:
    """Parse YAML file and return dict."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}")
    return data


def load_config(path: Optional[Path] = None, environ: Optional[dict] = None) -> GateConfig:
    """Load gate configuration.

    Args:
        path: YAML config file (defaults only when None)
        environ: Environment mapping for overrides (default: os.environ)

    Returns:
        GateConfig with file values and environment overrides applied

    Raises:
        ConfigError: If the file is missing or invalid
    """
    data = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        data = _parse_yaml(path)
        logger.info("Loaded config from %s", path)

    return GateConfig.from_dict(data).apply_env(environ)


def load_app(spec: str):
    """Import a WSGI application from "package.module:attribute".

    Raises:
        ConfigError: If the module or attribute cannot be loaded
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"App must be given as 'module:attribute', got '{spec}'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import {module_name}: {e}") from e

    app = getattr(module, attr, None)
    if app is None or not callable(app):
        raise ConfigError(f"{spec} is not a callable WSGI application")
    return app
