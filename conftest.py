# Make `import ssl_proxy` resolve to this checkout when running pytest from the repo root.
import datetime
import json as json_module
import os
import sys

import httpx
import pytest
from fastapi.testclient import TestClient

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from ssl_proxy.proxy import ProxyConfig  # noqa: E402
from ssl_proxy.server import create_app  # noqa: E402
from ssl_proxy.upstreams.registry import (  # noqa: E402
    INTERNAL_ARTIFACTORY,
    PRODUCT,
    PUBLIC_ARTIFACTORY,
)

UPSTREAM_NAMES = (PRODUCT, INTERNAL_ARTIFACTORY, PUBLIC_ARTIFACTORY)


class ChunkedBody(httpx.AsyncByteStream):
    """Upstream body that is read lazily, the way a network response is."""

    def __init__(self, chunks):
        self._chunks = list(chunks)

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk


def upstream_response(status_code=200, content=b"", headers=None, json=None):
    """Build a mock upstream response whose body has not been read yet.

    ``httpx.Response(content=...)`` reads its body on construction, which a
    relay streaming with ``aiter_raw`` cannot consume again.
    """
    headers = httpx.Headers(headers or {})
    if json is not None:
        content = json_module.dumps(json).encode("utf-8")
        headers.setdefault("content-type", "application/json")
    if "transfer-encoding" not in headers:
        headers.setdefault("content-length", str(len(content)))
    return httpx.Response(status_code, headers=headers, stream=ChunkedBody([content]))


class UpstreamRecorder:
    """Stands in for every upstream; records what reached it."""

    def __init__(self):
        self.requests = []
        self.reply(200, content=b"upstream says hi")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    def reply(self, status_code=200, content=b"", headers=None, json=None):
        """Answer every following request with a fresh streamed response."""
        self.respond = lambda request: upstream_response(
            status_code, content=content, headers=headers, json=json
        )

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def upstream():
    return UpstreamRecorder()


@pytest.fixture
def proxy_client(upstream):
    """TestClient for the proxy app with all upstreams served by ``upstream``."""
    transports = {name: httpx.MockTransport(upstream) for name in UPSTREAM_NAMES}
    config = ProxyConfig.default(transports=transports)
    with TestClient(create_app(config)) as client:
        yield client


@pytest.fixture
def self_signed_cert(tmp_path):
    """Write a throwaway certificate/key pair for localhost; returns both paths."""
    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import rsa
    from cryptography.x509.oid import NameOID

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName("localhost")]), critical=False
        )
        .sign(private_key, hashes.SHA256())
    )

    cert_path = tmp_path / "cert.pem"
    key_path = tmp_path / "key.pem"
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return str(cert_path), str(key_path)
