"""
Fixed registry of upstream origins.

Each upstream owns a dedicated ``httpx.AsyncClient`` so that connection
pooling, timeouts and certificate trust are configured per origin. The
registry is built once at startup and only read afterwards.
"""

import logging
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

import httpx

from ssl_proxy.vars import (
    INTERNAL_ARTIFACTORY_CA_FILE,
    INTERNAL_ARTIFACTORY_TLS_TRUST,
    INTERNAL_ARTIFACTORY_URL,
    PRODUCT_CA_FILE,
    PRODUCT_TLS_TRUST,
    PRODUCT_URL,
    PROXY_TIMEOUT,
    PUBLIC_ARTIFACTORY_CA_FILE,
    PUBLIC_ARTIFACTORY_TLS_TRUST,
    PUBLIC_ARTIFACTORY_URL,
    UPSTREAM_IDLE_TIMEOUT,
    UPSTREAM_MAX_IDLE_CONNECTIONS,
)

logger = logging.getLogger("uvicorn.error")

PRODUCT = "product"
INTERNAL_ARTIFACTORY = "internal-artifactory"
PUBLIC_ARTIFACTORY = "public-artifactory"

# Headers httpx adds to every request unless told otherwise
CLIENT_DEFAULT_HEADERS = ("Accept", "Accept-Encoding", "User-Agent")


class UpstreamConfigError(Exception):
    """Raised at startup when an upstream cannot be configured."""


class UnknownUpstreamError(UpstreamConfigError):
    """Raised when a name does not refer to a registered upstream."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown upstream: {name!r}")


class TrustMode(str, Enum):
    """How the certificate presented by an upstream is verified."""

    VERIFY = "verify"
    CUSTOM_CA = "custom-ca"
    INSECURE = "insecure"

    @classmethod
    def parse(cls, value: str) -> "TrustMode":
        try:
            return cls(value.strip().lower())
        except ValueError:
            allowed = ", ".join(mode.value for mode in cls)
            raise UpstreamConfigError(
                f"Invalid TLS trust mode {value!r} (expected one of: {allowed})"
            ) from None


@dataclass(frozen=True)
class Upstream:
    name: str
    base_url: str
    description: str = ""
    trust: TrustMode = TrustMode.VERIFY
    ca_file: Optional[str] = None
    max_idle_connections: int = UPSTREAM_MAX_IDLE_CONNECTIONS
    idle_timeout: float = UPSTREAM_IDLE_TIMEOUT
    timeout: float = PROXY_TIMEOUT

    @property
    def url(self) -> httpx.URL:
        return httpx.URL(self.base_url)

    @property
    def scheme(self) -> str:
        return self.url.scheme

    @property
    def host(self) -> str:
        """Host header value for this origin (host plus explicit port)."""
        return self.url.netloc.decode("ascii")

    def url_for(self, target: bytes) -> httpx.URL:
        """Build the outbound URL for an inbound ``path?query`` target.

        The upstream's own base path, if any, is joined in front of the
        request path with exactly one slash between them.
        """
        base = self.url
        base_path = base.raw_path.split(b"?", 1)[0]
        if not target.startswith(b"/"):
            target = b"/" + target
        raw_path = base_path.rstrip(b"/") + target
        return base.copy_with(raw_path=raw_path)

    def tls_verify(self) -> Union[bool, ssl.SSLContext]:
        """Translate the trust mode into an ``httpx`` ``verify`` argument."""
        if self.trust is TrustMode.INSECURE:
            return False
        if self.trust is TrustMode.CUSTOM_CA:
            if not self.ca_file:
                raise UpstreamConfigError(
                    f"Upstream {self.name!r} uses custom-ca trust but no CA file is set"
                )
            try:
                # System CAs stay trusted; the bundle is added on top.
                context = ssl.create_default_context()
                context.load_verify_locations(cafile=self.ca_file)
            except (OSError, ssl.SSLError) as e:
                raise UpstreamConfigError(
                    f"Cannot load CA file {self.ca_file!r} for upstream {self.name!r}: {e}"
                ) from e
            return context
        return ssl.create_default_context()


class UpstreamRegistry:
    """Name -> upstream lookup with one pooled client per upstream."""

    def __init__(
        self,
        upstreams: Iterable[Upstream],
        transports: Optional[Dict[str, httpx.AsyncBaseTransport]] = None,
    ):
        transports = transports or {}
        self._upstreams: Dict[str, Upstream] = {}
        self._clients: Dict[str, httpx.AsyncClient] = {}

        for upstream in upstreams:
            if upstream.name in self._upstreams:
                raise UpstreamConfigError(f"Duplicate upstream name: {upstream.name!r}")
            self._upstreams[upstream.name] = upstream

        unknown = set(transports) - set(self._upstreams)
        if unknown:
            raise UnknownUpstreamError(sorted(unknown)[0])

        for name, upstream in self._upstreams.items():
            self._clients[name] = self._build_client(upstream, transports.get(name))
            if upstream.trust is TrustMode.INSECURE:
                logger.warning(
                    f"Certificate verification is disabled for upstream {name} ({upstream.base_url})"
                )
            logger.info(
                f"Registered upstream {name} -> {upstream.base_url} (trust={upstream.trust.value})"
            )

    @staticmethod
    def _build_client(
        upstream: Upstream, transport: Optional[httpx.AsyncBaseTransport]
    ) -> httpx.AsyncClient:
        limits = httpx.Limits(
            max_connections=None,
            max_keepalive_connections=upstream.max_idle_connections,
            keepalive_expiry=upstream.idle_timeout,
        )
        kwargs = {}
        if transport is not None:
            kwargs["transport"] = transport
        client = httpx.AsyncClient(
            verify=upstream.tls_verify(),
            limits=limits,
            timeout=httpx.Timeout(upstream.timeout),
            follow_redirects=False,
            trust_env=False,
            **kwargs,
        )
        # Only forward what the caller sent
        for name in CLIENT_DEFAULT_HEADERS:
            del client.headers[name]
        return client

    def resolve(self, name: str) -> Upstream:
        try:
            return self._upstreams[name]
        except KeyError:
            raise UnknownUpstreamError(name) from None

    def client_for(self, name: str) -> httpx.AsyncClient:
        try:
            return self._clients[name]
        except KeyError:
            raise UnknownUpstreamError(name) from None

    def names(self) -> List[str]:
        return list(self._upstreams)

    def __contains__(self, name: str) -> bool:
        return name in self._upstreams

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()


def default_upstreams() -> List[Upstream]:
    """The three origins the proxy fronts, as configured in ``ssl_proxy.vars``."""
    return [
        Upstream(
            name=PRODUCT,
            base_url=PRODUCT_URL,
            description="product",
            trust=TrustMode.parse(PRODUCT_TLS_TRUST),
            ca_file=PRODUCT_CA_FILE or None,
        ),
        Upstream(
            name=INTERNAL_ARTIFACTORY,
            base_url=INTERNAL_ARTIFACTORY_URL,
            description="internal artifactory",
            trust=TrustMode.parse(INTERNAL_ARTIFACTORY_TLS_TRUST),
            ca_file=INTERNAL_ARTIFACTORY_CA_FILE or None,
        ),
        Upstream(
            name=PUBLIC_ARTIFACTORY,
            base_url=PUBLIC_ARTIFACTORY_URL,
            description="public artifactory",
            trust=TrustMode.parse(PUBLIC_ARTIFACTORY_TLS_TRUST),
            ca_file=PUBLIC_ARTIFACTORY_CA_FILE or None,
        ),
    ]
