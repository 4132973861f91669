"""TLS certificate management for the gate.

Provides in-memory self-signed certificate generation, PEM interop and
server-side SSL context construction for a single certificate.
"""

import datetime
import ipaddress
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

logger = logging.getLogger(__name__)

# Certificate defaults
DEFAULT_HOSTNAME = "nanobox.io"
DEFAULT_CERT_DAYS = 365
DEFAULT_KEY_SIZE = 2048
MIN_KEY_SIZE = 2048


class CertificateError(Exception):
    """Certificate generation or parsing error."""


@dataclass
class Certificate:
    """A private key paired with its signed leaf certificate."""

    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate

    @property
    def hostnames(self) -> list[str]:
        """Subject common name followed by any SAN entries not already listed."""
        names = [
            attr.value
            for attr in self.certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        ]
        try:
            san = self.certificate.extensions.get_extension_for_class(
                x509.SubjectAlternativeName
            ).value
        except x509.ExtensionNotFound:
            return names

        for name in san.get_values_for_type(x509.DNSName):
            if name not in names:
                names.append(name)
        for ip in san.get_values_for_type(x509.IPAddress):
            if str(ip) not in names:
                names.append(str(ip))
        return names

    @property
    def not_valid_before(self) -> datetime.datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_valid_after(self) -> datetime.datetime:
        return self.certificate.not_valid_after_utc

    @property
    def serial_number(self) -> int:
        return self.certificate.serial_number

    @property
    def fingerprint(self) -> str:
        """SHA256 fingerprint as hex string with colons (e.g., "AB:CD:EF:...")."""
        digest = self.certificate.fingerprint(hashes.SHA256())
        return ":".join(f"{b:02X}" for b in digest)

    def to_pem(self) -> tuple[bytes, bytes]:
        """Encode as a (certificate PEM, private key PEM) pair."""
        cert_pem = self.certificate.public_bytes(serialization.Encoding.PEM)
        key_pem = self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return cert_pem, key_pem

    @classmethod
    def from_pem(cls, cert_pem: bytes, key_pem: bytes) -> "Certificate":
        """Rebuild a certificate from PEM-encoded certificate and key.

        Args:
            cert_pem: PEM certificate (str or bytes)
            key_pem: PEM private key, unencrypted (str or bytes)

        Returns:
            Certificate ready for ssl_context()

        Raises:
            CertificateError: If either input cannot be parsed or the key
                does not belong to the certificate
        """
        if isinstance(cert_pem, str):
            cert_pem = cert_pem.encode()
        if isinstance(key_pem, str):
            key_pem = key_pem.encode()

        try:
            certificate = x509.load_pem_x509_certificate(cert_pem)
        except ValueError as e:
            raise CertificateError(f"Invalid certificate PEM: {e}") from e

        try:
            private_key = serialization.load_pem_private_key(key_pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CertificateError(f"Invalid private key PEM: {e}") from e

        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise CertificateError(
                f"Unsupported key type: {type(private_key).__name__}"
            )

        if private_key.public_key().public_numbers() != certificate.public_key().public_numbers():
            raise CertificateError("Private key does not match certificate")

        return cls(private_key=private_key, certificate=certificate)

    @classmethod
    def from_paths(cls, cert_path: Path, key_path: Path) -> "Certificate":
        """Load a certificate from existing PEM files.

        Raises:
            FileNotFoundError: If files don't exist
            CertificateError: If the files cannot be parsed
        """
        cert_path = Path(cert_path)
        key_path = Path(key_path)
        if not cert_path.exists():
            raise FileNotFoundError(f"Certificate not found: {cert_path}")
        if not key_path.exists():
            raise FileNotFoundError(f"Key not found: {key_path}")

        return cls.from_pem(cert_path.read_bytes(), key_path.read_bytes())

    def ssl_context(self) -> ssl.SSLContext:
        """Create a server-side SSL context serving only this certificate."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        cert_pem, key_pem = self.to_pem()

        # load_cert_chain only reads from files
        with tempfile.NamedTemporaryFile(mode="wb", suffix=".pem", delete=False) as cert_file:
            cert_file.write(cert_pem)
            cert_path = cert_file.name

        with tempfile.NamedTemporaryFile(mode="wb", suffix=".key", delete=False) as key_file:
            key_file.write(key_pem)
            key_path = key_file.name

        try:
            context.load_cert_chain(certfile=cert_path, keyfile=key_path)
        finally:
            os.unlink(cert_path)
            os.unlink(key_path)

        return context


def _subject_alt_name(hostname: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(hostname))
    except ValueError:
        return x509.DNSName(hostname)


def generate_certificate(
    hostname: str = "",
    days: int = DEFAULT_CERT_DAYS,
    key_size: int = DEFAULT_KEY_SIZE,
) -> Certificate:
    """Generate a self-signed certificate in memory.

    Creates a certificate with:
    - CN = hostname
    - SAN = hostname (IP address entry for IP literals)
    - RSA key of key_size bits
    - Validity = now until now + days

    Args:
        hostname: Hostname for certificate CN (default: nanobox.io)
        days: Certificate validity in days
        key_size: RSA key size in bits

    Returns:
        Certificate with private key and signed certificate

    Raises:
        CertificateError: If the key or certificate cannot be generated
    """
    hostname = hostname or DEFAULT_HOSTNAME

    if key_size < MIN_KEY_SIZE:
        raise CertificateError(
            f"Key size {key_size} below minimum of {MIN_KEY_SIZE} bits"
        )
    if days <= 0:
        raise CertificateError(f"Validity must be positive, got {days} days")

    logger.info("Generating self-signed certificate for %s", hostname)

    try:
        key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)

        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
        now = datetime.datetime.now(datetime.timezone.utc)

        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=days))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    key_encipherment=True,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                critical=False,
            )
            .add_extension(
                x509.SubjectAlternativeName([_subject_alt_name(hostname)]),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CertificateError(f"Certificate generation failed: {e}") from e

    result = Certificate(private_key=key, certificate=certificate)
    logger.debug("Certificate fingerprint (SHA256): %s", result.fingerprint)
    return result


def write_pem(
    certificate: Certificate,
    cert_dir: Path,
    force: bool = False,
) -> tuple[Path, Path]:
    """Write a certificate to cert_dir as server.crt and server.key.

    Args:
        certificate: Certificate to persist
        cert_dir: Directory to store certificate files (created if missing)
        force: Overwrite existing files

    Returns:
        (cert_path, key_path) tuple

    Raises:
        FileExistsError: If either file exists and force=False
    """
    cert_dir = Path(cert_dir)
    cert_dir.mkdir(parents=True, exist_ok=True)

    cert_path = cert_dir / "server.crt"
    key_path = cert_dir / "server.key"

    if not force:
        for path in (cert_path, key_path):
            if path.exists():
                raise FileExistsError(f"Certificate already exists: {path}")

    cert_pem, key_pem = certificate.to_pem()

    # Key is created private; chmod covers a pre-existing file
    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.fchmod(fd, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(key_pem)

    cert_path.write_bytes(cert_pem)
    os.chmod(cert_path, 0o644)

    logger.info("Wrote certificate to %s", cert_path)
    return cert_path, key_path


def load_or_generate(
    cert_path: Optional[Path] = None,
    key_path: Optional[Path] = None,
    hostname: str = "",
) -> Certificate:
    """Load a caller-supplied certificate, or generate one when none is given.

    Raises:
        ValueError: If only one of cert_path and key_path is given
        FileNotFoundError: If the supplied files don't exist
        CertificateError: If loading or generation fails
    """
    if cert_path or key_path:
        if not (cert_path and key_path):
            raise ValueError("Both certificate and key paths are required")
        logger.info("Using existing certificate: %s", cert_path)
        return Certificate.from_paths(cert_path, key_path)
    return generate_certificate(hostname)
