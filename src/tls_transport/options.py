"""Connection options and SSL context construction.

Sender and server each honor a fixed allow-list of option keys. Anything
else in a request mapping is dropped before it reaches ssl.

Credential values (key, cert, ca, crl) may be PEM text as str or bytes, a
filesystem path, or for ca/crl a list of those. pfx is PKCS#12 bytes or a
path to a .p12/.pfx file.
"""

import logging
import os
import ssl
import tempfile
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Union

from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)

logger = logging.getLogger(__name__)

Credential = Union[str, bytes, os.PathLike]

SENDER_OPTION_KEYS = (
    "pfx", "key", "passphrase", "cert", "ca", "reject_unauthorized",
    "npn_protocols", "servername", "secure_protocol",
)
SERVER_OPTION_KEYS = (
    "pfx", "key", "passphrase", "cert", "ca", "crl", "ciphers",
    "handshake_timeout", "honor_cipher_order", "request_cert",
    "reject_unauthorized", "npn_protocols", "session_id_context",
    "secure_protocol",
)
CREDENTIAL_KEYS = ("pfx", "key", "cert", "ca", "crl")

# OpenSSL method names mapped to (minimum_version, maximum_version)
SECURE_PROTOCOLS = {
    "TLS_method": (None, None),
    "SSLv23_method": (None, None),
    "TLSv1_method": (ssl.TLSVersion.TLSv1, ssl.TLSVersion.TLSv1),
    "TLSv1_1_method": (ssl.TLSVersion.TLSv1_1, ssl.TLSVersion.TLSv1_1),
    "TLSv1_2_method": (ssl.TLSVersion.TLSv1_2, ssl.TLSVersion.TLSv1_2),
    "TLSv1_3_method": (ssl.TLSVersion.TLSv1_3, ssl.TLSVersion.TLSv1_3),
}

PEM_MARKER = "-----BEGIN"


def pick_options(message: Mapping[str, Any], keys: tuple) -> dict:
    """Copy the allow-listed, non-None keys out of a request mapping."""
    return {key: message[key] for key in keys if message.get(key) is not None}


def _is_inline(value: Credential) -> bool:
    """True for credential data, False for a path."""
    if isinstance(value, bytes):
        return True
    return isinstance(value, str) and value.lstrip().startswith(PEM_MARKER)


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


@contextmanager
def _credential_file(value: Credential) -> Iterator[Path]:
    """Yield a path holding the credential, spilling inline data to a temp file.

    ssl only loads certificate chains from files. Temp files are created
    owner-only and removed on exit.
    """
    if not _is_inline(value):
        yield Path(value)
        return

    data = value.encode("ascii") if isinstance(value, str) else value
    with tempfile.NamedTemporaryFile(mode="wb", suffix=".pem", delete=False) as f:
        f.write(data)
        path = Path(f.name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)


def load_pkcs12(pfx: Credential, passphrase: Optional[Union[str, bytes]] = None) -> tuple[bytes, bytes]:
    """Unpack a PKCS#12 bundle into PEM key and certificate chain.

    Returns:
        (key_pem, cert_chain_pem)

    Raises:
        ValueError: If the bundle cannot be decrypted or lacks a key or cert
    """
    data = pfx if isinstance(pfx, bytes) else Path(pfx).read_bytes()
    password = passphrase.encode("utf-8") if isinstance(passphrase, str) else passphrase

    key, cert, additional = pkcs12.load_key_and_certificates(data, password)
    if key is None or cert is None:
        raise ValueError("PKCS#12 bundle must contain a private key and a certificate")

    key_pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    chain_pem = cert.public_bytes(Encoding.PEM) + b"".join(
        extra.public_bytes(Encoding.PEM) for extra in additional or []
    )
    return key_pem, chain_pem


def _load_identity(context: ssl.SSLContext, options: Mapping[str, Any]):
    passphrase = options.get("passphrase")

    if "pfx" in options:
        key_pem, chain_pem = load_pkcs12(options["pfx"], passphrase)
        with _credential_file(chain_pem) as certfile, _credential_file(key_pem) as keyfile:
            context.load_cert_chain(certfile=str(certfile), keyfile=str(keyfile))

    if "cert" in options:
        key = options.get("key")
        with _credential_file(options["cert"]) as certfile, \
                (_credential_file(key) if key is not None else nullcontext(None)) as keyfile:
            context.load_cert_chain(
                certfile=str(certfile),
                keyfile=str(keyfile) if keyfile else None,
                password=passphrase,
            )
    elif "key" in options:
        raise ValueError("key given without cert")


def _load_trust(context: ssl.SSLContext, options: Mapping[str, Any], purpose: ssl.Purpose):
    cas = _as_list(options.get("ca"))
    for ca in cas:
        if not _is_inline(ca):
            context.load_verify_locations(cafile=str(ca))
        elif isinstance(ca, bytes) and not ca.lstrip().startswith(PEM_MARKER.encode()):
            context.load_verify_locations(cadata=ca)  # DER
        else:
            context.load_verify_locations(cadata=ca.decode("ascii") if isinstance(ca, bytes) else ca)
    if not cas:
        context.load_default_certs(purpose)

    crls = _as_list(options.get("crl"))
    for crl in crls:
        with _credential_file(crl) as crlfile:
            context.load_verify_locations(cafile=str(crlfile))
    if crls:
        context.verify_flags |= ssl.VERIFY_CRL_CHECK_LEAF


def _apply_protocol(context: ssl.SSLContext, options: Mapping[str, Any]):
    method = options.get("secure_protocol")
    if method is not None:
        # client/server specific method names pin the same versions
        name = method.replace("_client_method", "_method").replace("_server_method", "_method")
        if name not in SECURE_PROTOCOLS:
            raise ValueError(f"Unknown secure_protocol: {method}")
        minimum, maximum = SECURE_PROTOCOLS[name]
        if minimum is not None:
            context.minimum_version = minimum
            context.maximum_version = maximum

    protocols = options.get("npn_protocols")
    if protocols:
        context.set_alpn_protocols([
            p.decode("ascii") if isinstance(p, bytes) else p for p in protocols
        ])


def build_client_context(options: Mapping[str, Any]) -> ssl.SSLContext:
    """Build the sender's SSL context from sender options.

    The peer certificate and hostname are verified unless
    reject_unauthorized is False.

    Raises:
        ssl.SSLError: If credential material is rejected by OpenSSL
        OSError: If a credential file cannot be read
        ValueError: On an unusable option value
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    if options.get("reject_unauthorized") is False:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    _apply_protocol(context, options)
    _load_identity(context, options)
    _load_trust(context, options, ssl.Purpose.SERVER_AUTH)
    return context


def build_server_context(options: Mapping[str, Any]) -> ssl.SSLContext:
    """Build the listener's SSL context from server options.

    Client certificates are only asked for when request_cert is set; they
    are then required unless reject_unauthorized is False.

    Raises:
        ssl.SSLError: If credential material is rejected by OpenSSL
        OSError: If a credential file cannot be read
        ValueError: On an unusable option value
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    if options.get("request_cert"):
        if options.get("reject_unauthorized") is False:
            context.verify_mode = ssl.CERT_OPTIONAL
        else:
            context.verify_mode = ssl.CERT_REQUIRED

    _apply_protocol(context, options)
    if "ciphers" in options:
        context.set_ciphers(options["ciphers"])
    if options.get("honor_cipher_order"):
        context.options |= ssl.OP_CIPHER_SERVER_PREFERENCE
    if "session_id_context" in options:
        logger.warning("session_id_context cannot be set through ssl; ignoring")

    _load_identity(context, options)
    _load_trust(context, options, ssl.Purpose.CLIENT_AUTH)
    return context


def handshake_timeout(options: Mapping[str, Any]) -> Optional[float]:
    """Return handshake_timeout (milliseconds) as socket timeout seconds."""
    timeout = options.get("handshake_timeout")
    if timeout is None:
        return None
    return float(timeout) / 1000.0
