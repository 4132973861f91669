"""CLI for nanoauth.

Provides the `serve`, `cert` and `check` commands.
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from nanoauth.auth import DEFAULT_HEADER
from nanoauth.config import ConfigError, GateConfig, load_app, load_config
from nanoauth.httpd import Gate
from nanoauth.probe import probe
from nanoauth.tls import (
    DEFAULT_CERT_DAYS,
    DEFAULT_KEY_SIZE,
    CertificateError,
    generate_certificate,
    load_or_generate,
    write_pem,
)

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _apply_args(config: GateConfig, args) -> GateConfig:
    """Override config values with explicitly given flags."""
    if args.address is not None:
        config.address = args.address
    if args.token is not None:
        config.token = args.token
    if args.header is not None:
        config.header = args.header
    if args.exclude:
        config.excluded_paths = config.excluded_paths + args.exclude
    if args.latch_exclusions:
        config.latch_exclusions = True
    if args.app is not None:
        config.app = args.app
    if args.tls:
        config.tls = True
    if args.hostname is not None:
        config.hostname = args.hostname
    if args.cert is not None:
        config.cert_path = args.cert
        config.tls = True
    if args.key is not None:
        config.key_path = args.key
    return config


def _create_gate(config: GateConfig) -> Gate:
    """Create a Gate from resolved configuration.

    Raises:
        SystemExit: On configuration errors.
    """
    certificate = None
    if config.tls:
        try:
            certificate = load_or_generate(
                config.cert_path, config.key_path, config.hostname
            )
        except (ValueError, FileNotFoundError, CertificateError) as e:
            logger.error("TLS setup failed: %s", e)
            sys.exit(1)

    return Gate(
        header=config.header,
        certificate=certificate,
        hostname=config.hostname,
        latch_exclusions=config.latch_exclusions,
    )


def _handle_serve(argv):
    """Handle 'serve': run a gate in the foreground."""
    parser = argparse.ArgumentParser(
        prog="nanoauth serve",
        description="Serve an application behind a token gate",
    )
    parser.add_argument("--config", "-c", type=Path, help="YAML config file")
    parser.add_argument("--address", "-a", help="Address to listen on (host:port)")
    parser.add_argument("--token", "-t", help="Shared token (empty disables the check)")
    parser.add_argument("--header", help=f"Token header name (default: {DEFAULT_HEADER})")
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Path that skips the token check (repeatable)",
    )
    parser.add_argument(
        "--latch-exclusions",
        action="store_true",
        help="Disable the check for all requests after any excluded path is hit",
    )
    parser.add_argument("--app", help="WSGI application as module:attribute")
    parser.add_argument("--tls", action="store_true", help="Serve HTTPS")
    parser.add_argument("--hostname", help="Hostname for a generated certificate")
    parser.add_argument("--cert", type=Path, help="Path to TLS certificate (implies --tls)")
    parser.add_argument("--key", type=Path, help="Path to TLS private key")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = _apply_args(load_config(args.config), args)
        app = load_app(config.app) if config.app else None
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    gate = _create_gate(config)

    try:
        gate.start(
            config.address, config.token, app, *config.excluded_paths, tls=config.tls
        )
    except (RuntimeError, ValueError) as e:
        logger.error("Failed to start gate: %s", e)
        return 1

    print(f"\nGate running at {gate.url}")
    if config.tls:
        print(f"Certificate fingerprint: {gate.certificate.fingerprint}")
    print("\nPress Ctrl+C to stop...")

    def handle_sigterm(signum, frame):
        """Handle SIGTERM for graceful shutdown."""
        logger.info("Received SIGTERM")
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, handle_sigterm)

    gate.serve_forever()
    return 0


def _handle_cert(argv):
    """Handle 'cert': generate a self-signed certificate on disk."""
    parser = argparse.ArgumentParser(
        prog="nanoauth cert",
        description="Generate a self-signed certificate",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--hostname", default="", help="Certificate hostname")
    parser.add_argument("--out-dir", "-o", type=Path, default=Path("."), help="Output directory")
    parser.add_argument("--days", type=int, default=DEFAULT_CERT_DAYS, help="Validity in days")
    parser.add_argument("--key-size", type=int, default=DEFAULT_KEY_SIZE, help="RSA key size")
    parser.add_argument("--force", action="store_true", help="Overwrite existing files")
    parser.add_argument("--json", action="store_true", help="Output as JSON")

    args = parser.parse_args(argv)

    try:
        certificate = generate_certificate(args.hostname, days=args.days, key_size=args.key_size)
        cert_path, key_path = write_pem(certificate, args.out_dir, force=args.force)
    except (CertificateError, FileExistsError, PermissionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        info = {
            "cert": str(cert_path),
            "key": str(key_path),
            "hostnames": certificate.hostnames,
            "fingerprint": certificate.fingerprint,
            "not_valid_after": certificate.not_valid_after.isoformat(),
        }
        print(json.dumps(info, indent=2))
    else:
        print(f"Certificate: {cert_path}")
        print(f"Key: {key_path}")
        print(f"Certificate fingerprint: {certificate.fingerprint}")
    return 0


def _handle_check(argv):
    """Handle 'check': probe a running gate with a token."""
    parser = argparse.ArgumentParser(
        prog="nanoauth check",
        description="Check that a gate accepts a token",
    )
    parser.add_argument("url", help="Gate URL")
    parser.add_argument("--token", "-t", default="", help="Token to present")
    parser.add_argument("--header", default=DEFAULT_HEADER, help="Token header name")
    parser.add_argument("--insecure", "-k", action="store_true", help="Skip certificate verification")
    parser.add_argument("--timeout", type=float, default=10, help="Timeout in seconds")

    args = parser.parse_args(argv)

    ok, message = probe(
        args.url, args.token, header=args.header,
        verify=not args.insecure, timeout=args.timeout,
    )
    print(message)
    return 0 if ok else 1


def main(argv=None):
    """CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    subcommands = {
        "serve": _handle_serve,
        "cert": _handle_cert,
        "check": _handle_check,
    }

    if not argv or argv[0] in ("-h", "--help"):
        print("Usage: nanoauth <command> [options]")
        print()
        print("Commands:")
        print("  serve    Serve an application behind a token gate")
        print("  cert     Generate a self-signed certificate")
        print("  check    Check that a gate accepts a token")
        print()
        print("Run 'nanoauth <command> --help' for command-specific options.")
        return 0

    subcmd = argv[0]
    if subcmd not in subcommands:
        print(f"Error: Unknown command '{subcmd}'")
        print(f"Available commands: {', '.join(subcommands)}")
        return 1

    return subcommands[subcmd](argv[1:])


if __name__ == "__main__":
    sys.exit(main())
