"""
Inbound TLS configuration.

TLS 1.2 is the floor. For TLS 1.2 only the listed AEAD suites are
offered, ECDHE key exchange ahead of static RSA, and the server's order
wins. TLS 1.3 suites are fixed by OpenSSL and are all AEAD.
"""

import logging
import os
import ssl

logger = logging.getLogger("uvicorn.error")

MINIMUM_VERSION = ssl.TLSVersion.TLSv1_2

CIPHER_SUITES = (
    "ECDHE-RSA-AES256-GCM-SHA384",
    "ECDHE-RSA-CHACHA20-POLY1305",
    "ECDHE-RSA-AES128-GCM-SHA256",
    "AES256-GCM-SHA384",
    "AES128-GCM-SHA256",
)

ECDH_CURVE = "secp384r1"


class TLSConfigError(Exception):
    """The listener's certificate or key cannot be used."""


def base_server_context() -> ssl.SSLContext:
    """Server context with protocol floor and cipher policy, no certificate yet."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = MINIMUM_VERSION
    context.set_ciphers(":".join(CIPHER_SUITES))
    context.options |= ssl.OP_CIPHER_SERVER_PREFERENCE
    context.options |= ssl.OP_NO_COMPRESSION
    try:
        context.set_ecdh_curve(ECDH_CURVE)
    except (ValueError, ssl.SSLError) as e:
        logger.warning(f"Keeping OpenSSL default ECDH curves ({ECDH_CURVE} rejected: {e})")
    return context


def build_server_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    """
    Load the listener certificate and key into a hardened server context.

    Raises:
        TLSConfigError: if either file is missing, unreadable or malformed,
            or if the key does not belong to the certificate.
    """
    for label, path in (("certificate", cert_file), ("private key", key_file)):
        if not path:
            raise TLSConfigError(f"No {label} file configured")
        if not os.path.isfile(path):
            raise TLSConfigError(f"{label.capitalize()} file not found: {path}")

    context = base_server_context()
    try:
        context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    except (OSError, ssl.SSLError) as e:
        raise TLSConfigError(
            f"Cannot load certificate {cert_file} with key {key_file}: {e}"
        ) from e

    logger.info(f"Loaded TLS certificate {cert_file} (minimum version {MINIMUM_VERSION.name})")
    return context
