"""
Per-request working copy used to retarget an inbound request.

The inbound ``Request`` is never modified. ``ProxyRequest.from_request``
copies what is needed to re-issue it (method, raw target, headers, body
or body stream, caller address); ``retarget`` points the copy at an
upstream; ``build`` turns it into an ``httpx.Request`` for that
upstream's client.
"""

from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Tuple, Union
from urllib.parse import quote

import httpx
from fastapi import Request

from ssl_proxy.upstreams.registry import Upstream
from ssl_proxy.utils import client_host

# Hop-by-hop headers that should NOT be forwarded (RFC 7230 section 6.1)
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


class NotRetargetedError(RuntimeError):
    """Raised when a proxy request is sent before it was pointed at an upstream."""


def _connection_tokens(headers: List[Tuple[str, str]]) -> set:
    """Header names listed in ``Connection`` are hop-by-hop for this message too."""
    tokens = set()
    for name, value in headers:
        if name.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def strip_hop_by_hop(headers: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
    dropped = HOP_BY_HOP_HEADERS | _connection_tokens(headers)
    return [(name, value) for name, value in headers if name.lower() not in dropped]


def request_path(request: Request) -> str:
    """Decoded request path; unlike ``request.url.path`` it survives an encoded ``?``."""
    return request.scope["path"]


def declares_body(request: Request) -> bool:
    """True when the inbound message carries a body (chunked or a non-zero length)."""
    headers = request.headers
    if "transfer-encoding" in headers:
        return True
    return headers.get("content-length", "").strip() not in ("", "0")


def inbound_target(request: Request) -> bytes:
    """The origin-form request target (``/path?query``) exactly as received."""
    raw_path = request.scope.get("raw_path") or quote(request_path(request)).encode("ascii")
    query = request.scope.get("query_string") or b""
    if query:
        return raw_path + b"?" + query
    return raw_path


@dataclass
class ProxyRequest:
    method: str
    target: bytes
    headers: List[Tuple[str, str]]
    # Buffered bytes, or the inbound body stream relayed chunk by chunk
    content: Union[bytes, AsyncIterator[bytes]]
    client_host: Optional[str] = None
    scheme: str = "https"
    # Request-line target inherited from the inbound message; cleared by retarget()
    request_target: Optional[bytes] = None
    url: Optional[httpx.URL] = None
    upstream: Optional[str] = None

    @classmethod
    def from_request(
        cls, request: Request, body: Union[bytes, AsyncIterator[bytes]]
    ) -> "ProxyRequest":
        target = inbound_target(request)
        headers = [
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in request.headers.raw
        ]
        return cls(
            method=request.method,
            target=target,
            headers=headers,
            content=body,
            client_host=client_host(request.client),
            scheme=request.scope.get("scheme", "https"),
            request_target=target,
        )

    def header(self, name: str) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

    def _set_header(self, name: str, value: str) -> None:
        lower = name.lower()
        self.headers = [(k, v) for k, v in self.headers if k.lower() != lower]
        self.headers.append((name, value))

    def retarget(self, upstream: Upstream) -> "ProxyRequest":
        """Point this copy at ``upstream``: URL, Host header and forwarding headers."""
        original_host = self.header("host") or ""
        self.headers = strip_hop_by_hop(self.headers)

        # X-Forwarded-For: append client IP
        client_ip = self.client_host or "unknown"
        existing_xff = self.header("x-forwarded-for") or ""
        self._set_header("X-Forwarded-For", f"{existing_xff}, {client_ip}".strip(", "))
        if original_host:
            self._set_header("X-Forwarded-Host", original_host)
        self._set_header("X-Forwarded-Proto", self.scheme)

        self.url = upstream.url_for(self.target)
        self._set_header("Host", upstream.host)
        self.request_target = None
        self.upstream = upstream.name
        return self

    def build(self, client: httpx.AsyncClient) -> httpx.Request:
        if self.url is None or self.request_target is not None:
            raise NotRetargetedError(
                f"{self.method} {self.target!r} has not been retargeted to an upstream"
            )
        return client.build_request(
            method=self.method,
            url=self.url,
            headers=self.headers,
            content=self.content,
        )
