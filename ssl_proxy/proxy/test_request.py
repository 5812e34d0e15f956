import httpx
import pytest
from fastapi import Request

from ssl_proxy.proxy.request import (
    NotRetargetedError,
    ProxyRequest,
    declares_body,
    inbound_target,
    request_path,
    strip_hop_by_hop,
)
from ssl_proxy.upstreams.registry import Upstream

ARTIFACTORY = Upstream(
    name="internal-artifactory", base_url="https://artifactory.tools.duckutil.net"
)


def make_request(
    path="/artifactory/foo/bar.jar",
    raw_path=None,
    query=b"",
    method="GET",
    headers=None,
    client=("192.168.1.100", 51234),
):
    if headers is None:
        headers = [
            (b"host", b"localhost:8443"),
            (b"user-agent", b"test-agent"),
            (b"authorization", b"Bearer token123"),
        ]
    scope = {
        "type": "http",
        "method": method,
        "scheme": "https",
        "path": path,
        "raw_path": raw_path if raw_path is not None else path.encode("ascii"),
        "query_string": query,
        "root_path": "",
        "headers": headers,
        "client": client,
        "server": ("localhost", 8443),
    }
    return Request(scope)


class TestInboundTarget:
    def test_path_only(self):
        assert inbound_target(make_request()) == b"/artifactory/foo/bar.jar"

    def test_with_query(self):
        request = make_request(path="/scans", query=b"q=hello%20world&limit=10")
        assert inbound_target(request) == b"/scans?q=hello%20world&limit=10"

    def test_raw_path_preferred_over_decoded(self):
        request = make_request(path="/a b", raw_path=b"/a%20b")
        assert inbound_target(request) == b"/a%20b"
        assert request_path(request) == "/a b"

    def test_falls_back_to_quoted_path(self):
        request = make_request(path="/a b", raw_path=b"")
        assert inbound_target(request) == b"/a%20b"


class TestDeclaresBody:
    @pytest.mark.parametrize(
        "headers, expected",
        [
            ([], False),
            ([(b"content-length", b"0")], False),
            ([(b"content-length", b"12")], True),
            ([(b"transfer-encoding", b"chunked")], True),
        ],
    )
    def test_declares_body(self, headers, expected):
        request = make_request(method="PUT", headers=[(b"host", b"localhost:8443")] + headers)
        assert declares_body(request) is expected


class TestStripHopByHop:
    def test_standard_hop_by_hop_headers_removed(self):
        headers = [
            ("Connection", "keep-alive"),
            ("Transfer-Encoding", "chunked"),
            ("Upgrade", "websocket"),
            ("Proxy-Authorization", "Basic abc"),
            ("User-Agent", "test-agent"),
        ]
        assert strip_hop_by_hop(headers) == [("User-Agent", "test-agent")]

    def test_connection_listed_headers_removed(self):
        headers = [
            ("Connection", "close, X-Trace-Hop"),
            ("X-Trace-Hop", "1"),
            ("X-Keep", "yes"),
        ]
        assert strip_hop_by_hop(headers) == [("X-Keep", "yes")]


class TestProxyRequest:
    def test_copy_preserves_method_headers_body(self):
        request = make_request(method="POST")
        proxy_request = ProxyRequest.from_request(request, b'{"name": "test"}')

        assert proxy_request.method == "POST"
        assert proxy_request.content == b'{"name": "test"}'
        assert proxy_request.header("authorization") == "Bearer token123"
        assert proxy_request.client_host == "192.168.1.100"
        assert proxy_request.request_target == b"/artifactory/foo/bar.jar"

    def test_retarget_rewrites_origin_and_host(self):
        proxy_request = ProxyRequest.from_request(make_request(), b"").retarget(
            ARTIFACTORY
        )

        assert proxy_request.url.scheme == "https"
        assert proxy_request.url.host == "artifactory.tools.duckutil.net"
        assert proxy_request.url.raw_path == b"/artifactory/foo/bar.jar"
        assert proxy_request.header("host") == "artifactory.tools.duckutil.net"
        assert proxy_request.request_target is None
        assert proxy_request.upstream == "internal-artifactory"

    def test_retarget_sets_forwarding_headers(self):
        proxy_request = ProxyRequest.from_request(make_request(), b"").retarget(
            ARTIFACTORY
        )

        assert proxy_request.header("x-forwarded-for") == "192.168.1.100"
        assert proxy_request.header("x-forwarded-host") == "localhost:8443"
        assert proxy_request.header("x-forwarded-proto") == "https"

    def test_x_forwarded_for_chain(self):
        request = make_request(
            headers=[
                (b"host", b"localhost:8443"),
                (b"x-forwarded-for", b"10.0.0.1, 10.0.0.2"),
            ]
        )
        proxy_request = ProxyRequest.from_request(request, b"").retarget(ARTIFACTORY)
        assert proxy_request.header("x-forwarded-for") == "10.0.0.1, 10.0.0.2, 192.168.1.100"

    def test_client_without_address(self):
        request = make_request(client=None)
        proxy_request = ProxyRequest.from_request(request, b"").retarget(ARTIFACTORY)
        assert proxy_request.header("x-forwarded-for") == "unknown"

    def test_single_host_header_after_retarget(self):
        proxy_request = ProxyRequest.from_request(make_request(), b"").retarget(
            ARTIFACTORY
        )
        hosts = [v for k, v in proxy_request.headers if k.lower() == "host"]
        assert hosts == ["artifactory.tools.duckutil.net"]

    def test_inbound_request_is_not_mutated(self):
        request = make_request(
            headers=[(b"host", b"localhost:8443"), (b"connection", b"keep-alive")]
        )
        before = list(request.scope["headers"])

        ProxyRequest.from_request(request, b"").retarget(ARTIFACTORY)

        assert request.scope["headers"] == before
        assert request.headers["host"] == "localhost:8443"
        assert request.headers["connection"] == "keep-alive"

    @pytest.mark.asyncio
    async def test_build_uses_upstream_client(self):
        async with httpx.AsyncClient() as client:
            proxy_request = ProxyRequest.from_request(
                make_request(method="PUT"), b"payload"
            ).retarget(ARTIFACTORY)
            outbound = proxy_request.build(client)

        assert outbound.method == "PUT"
        assert str(outbound.url) == "https://artifactory.tools.duckutil.net/artifactory/foo/bar.jar"
        assert outbound.headers["host"] == "artifactory.tools.duckutil.net"
        assert outbound.content == b"payload"

    @pytest.mark.asyncio
    async def test_build_refuses_unretargeted_request(self):
        async with httpx.AsyncClient() as client:
            proxy_request = ProxyRequest.from_request(make_request(), b"")
            with pytest.raises(NotRetargetedError):
                proxy_request.build(client)
