"""Identities for mutually authenticated transport.

An identity is a self-signed certificate and key carrying both the serverAuth
and clientAuth usages, so the same kind of pair serves either end. Two
identities trust each other by naming the peer's certificate as ``ca``:

    listen: cert=server.crt key=server.key ca=client.crt request_cert=true
    send:   cert=client.crt key=client.key ca=server.crt

The SHA256 fingerprint is reported so the pair can be compared out of band.
"""

import datetime
import ipaddress
import logging
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

logger = logging.getLogger(__name__)

DEFAULT_CERT_DIR = Path.home() / ".tls-transport" / "tls"
DEFAULT_CERT_DAYS = 365
DEFAULT_KEY_SIZE = 2048
PAIR_NAMES = ("server", "client")

# Clock skew allowance between the two ends
BACKDATE = datetime.timedelta(minutes=5)


@dataclass(frozen=True)
class TLSIdentity:
    """Certificate/key pair on disk."""

    cert_path: Path
    key_path: Path
    fingerprint: str

    @classmethod
    def load(cls, cert_path: Path, key_path: Path) -> "TLSIdentity":
        """Load an identity from existing files.

        Raises:
            FileNotFoundError: If either file is missing
            ValueError: If the certificate is not PEM
        """
        if not cert_path.exists():
            raise FileNotFoundError(f"Certificate not found: {cert_path}")
        if not key_path.exists():
            raise FileNotFoundError(f"Key not found: {key_path}")
        return cls(cert_path=cert_path, key_path=key_path, fingerprint=fingerprint(cert_path))

    def as_options(self, peer: Optional["TLSIdentity"] = None) -> dict:
        """Connection options presenting this identity, trusting peer if given."""
        options = {"cert": self.cert_path, "key": self.key_path}
        if peer is not None:
            options["ca"] = peer.cert_path
        return options


def fingerprint(cert_path: Path) -> str:
    """SHA256 fingerprint of a PEM certificate as "AB:CD:..."."""
    cert = x509.load_pem_x509_certificate(Path(cert_path).read_bytes())
    return cert.fingerprint(hashes.SHA256()).hex(":").upper()


def _subject_alt_names(hostname: str) -> x509.SubjectAlternativeName:
    try:
        names = [x509.IPAddress(ipaddress.ip_address(hostname))]
    except ValueError:
        names = [x509.DNSName(hostname)]
        if hostname == "localhost":
            names.append(x509.IPAddress(ipaddress.ip_address("127.0.0.1")))
    return x509.SubjectAlternativeName(names)


def _build_certificate(key: rsa.RSAPrivateKey, hostname: str, days: int) -> x509.Certificate:
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - BACKDATE)
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
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
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )
        .add_extension(_subject_alt_names(hostname), critical=False)
        .sign(key, hashes.SHA256())
    )


def generate_identity(
    cert_dir: Optional[Path] = None,
    name: str = "transport",
    hostname: Optional[str] = None,
    days: int = DEFAULT_CERT_DAYS,
    key_size: int = DEFAULT_KEY_SIZE,
    force: bool = False,
) -> TLSIdentity:
    """Create {name}.crt and {name}.key in cert_dir.

    An existing pair is reused unless force is set. The key file is written
    owner-only.

    Args:
        cert_dir: Output directory (default: ~/.tls-transport/tls)
        name: Base file name
        hostname: CN and SAN (default: system hostname); localhost also
            gets 127.0.0.1, an IP literal becomes an IP SAN
        days: Validity in days
        key_size: RSA key size in bits
        force: Replace an existing pair

    Returns:
        TLSIdentity with paths and fingerprint
    """
    cert_dir = cert_dir or DEFAULT_CERT_DIR
    hostname = hostname or socket.gethostname()
    cert_path = cert_dir / f"{name}.crt"
    key_path = cert_dir / f"{name}.key"

    if cert_path.exists() and key_path.exists() and not force:
        logger.info("Using existing certificate: %s", cert_path)
        return TLSIdentity.load(cert_path, key_path)

    logger.info("Generating %s identity for %s", name, hostname)
    cert_dir.mkdir(parents=True, exist_ok=True)

    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    cert = _build_certificate(key, hostname, days)

    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))
    os.chmod(key_path, 0o600)
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    os.chmod(cert_path, 0o644)

    identity = TLSIdentity.load(cert_path, key_path)
    logger.info("Certificate fingerprint (SHA256): %s", identity.fingerprint)
    return identity


def generate_pair(
    cert_dir: Optional[Path] = None,
    hostname: Optional[str] = None,
    days: int = DEFAULT_CERT_DAYS,
    key_size: int = DEFAULT_KEY_SIZE,
    force: bool = False,
) -> tuple:
    """Generate the server and client identities for mutual TLS.

    Returns:
        (server, client) TLSIdentity tuple
    """
    return tuple(
        generate_identity(
            cert_dir=cert_dir,
            name=name,
            hostname=hostname,
            days=days,
            key_size=key_size,
            force=force,
        )
        for name in PAIR_NAMES
    )


def mutual_tls_config(server: TLSIdentity, client: TLSIdentity) -> dict:
    """Config mapping (listen/send sections) wiring a pair to trust each other."""
    def _paths(options):
        return {key: str(value) for key, value in options.items()}

    return {
        "listen": {**_paths(server.as_options(peer=client)), "request_cert": True},
        "send": _paths(client.as_options(peer=server)),
    }
