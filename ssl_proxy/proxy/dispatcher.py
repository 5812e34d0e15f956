"""
Catch-all route that classifies every request and either answers it
locally or forwards it to exactly one upstream.

Forwarding makes a single attempt. Transport failures (refused
connection, TLS handshake failure, DNS failure, timeout) are logged and
turned into a 502 with a fixed JSON body; they never reach the caller as
raw errors and are never retried.

The route has no method filter: WebDAV and other extension methods
reach the classifier like any other request. Request bodies are streamed
to the upstream as they arrive; only requests that declare no body are
read up front.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect
from starlette.types import Receive, Scope, Send

from ssl_proxy.proxy.config import ProxyConfig
from ssl_proxy.proxy.request import (
    ProxyRequest,
    declares_body,
    request_path,
    strip_hop_by_hop,
)
from ssl_proxy.proxy.responses import (
    apply_cors,
    client_closed_response,
    health_response,
    preflight_response,
    upstream_unavailable_response,
)
from ssl_proxy.routing.classifier import ShowHealth, ShowPreflight, classify
from ssl_proxy.upstreams.registry import Upstream
from ssl_proxy.utils import client_address
from ssl_proxy.utils.exception_logging import log_exception_with_details
from ssl_proxy.utils.traced_requests import traced_request

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")


class ClientDisconnected(Exception):
    """The caller went away before the upstream produced a status line."""


async def _wait_for_disconnect(
    request: Request, body_sent: Optional[asyncio.Event] = None
) -> None:
    # Only safe once the body has been read; until then receive() yields body chunks.
    if body_sent is not None:
        await body_sent.wait()
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def send_or_abandon(
    request: Request,
    client: httpx.AsyncClient,
    outbound: httpx.Request,
    body_sent: Optional[asyncio.Event] = None,
) -> httpx.Response:
    """
    Send ``outbound`` and wait for the upstream's response headers.

    If the caller disconnects first the outbound call is cancelled and
    ``ClientDisconnected`` is raised. When the body is still being streamed,
    pass ``body_sent``; disconnects are only watched for once it is set.
    """
    send = asyncio.ensure_future(client.send(outbound, stream=True))
    disconnect = asyncio.ensure_future(_wait_for_disconnect(request, body_sent))
    try:
        done, _ = await asyncio.wait(
            {send, disconnect}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        send.cancel()
        disconnect.cancel()
        raise

    disconnect.cancel()
    if send in done:
        return send.result()

    send.cancel()
    try:
        late_response = await send
    except (asyncio.CancelledError, httpx.HTTPError):
        late_response = None
    if late_response is not None:
        await late_response.aclose()
    raise ClientDisconnected()


def _response_headers(upstream_response: httpx.Response):
    headers = [
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in upstream_response.headers.raw
    ]
    return [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in strip_hop_by_hop(headers)
    ]


async def stream_upstream_body(
    upstream_response: httpx.Response, method: str, path: str
) -> AsyncIterator[bytes]:
    """Relay the upstream body untouched (still compressed, if it was)."""
    try:
        async for chunk in upstream_response.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        log_exception_with_details(
            logger, f"Upstream stream interrupted for {method} {path}", e
        )
        raise
    finally:
        await upstream_response.aclose()


def relay_response(
    upstream_response: httpx.Response, method: str, path: str
) -> StreamingResponse:
    response = StreamingResponse(
        stream_upstream_body(upstream_response, method, path),
        status_code=upstream_response.status_code,
        background=BackgroundTask(upstream_response.aclose),
    )
    response.raw_headers.extend(_response_headers(upstream_response))
    return apply_cors(response)


async def relay_request_body(
    request: Request, body_sent: asyncio.Event
) -> AsyncIterator[bytes]:
    """Pass inbound body chunks through; ``body_sent`` is set once the stream ends."""
    try:
        async for chunk in request.stream():
            if chunk:
                yield chunk
    finally:
        body_sent.set()


async def forward_to_upstream(
    request: Request, upstream: Upstream, client: httpx.AsyncClient
) -> Response:
    method = request.method
    path = request_path(request)

    body_sent = None
    if declares_body(request):
        body_sent = asyncio.Event()
        body = relay_request_body(request, body_sent)
    else:
        try:
            body = await request.body()
        except ClientDisconnect:
            logger.info(f"Client disconnected while sending {method} {path}")
            return client_closed_response()

    proxy_request = ProxyRequest.from_request(request, body).retarget(upstream)

    with traced_request(
        tracer,
        operation="proxy_request",
        upstream=upstream.name,
        start_message=f"Proxying to {upstream.description or upstream.name}: {path}",
        extra_attrs={
            "proxy.method": method,
            "proxy.path": path,
            "proxy.target_url": str(proxy_request.url),
        },
    ) as span:
        try:
            upstream_response = await send_or_abandon(
                request, client, proxy_request.build(client), body_sent
            )
        except (ClientDisconnected, ClientDisconnect):
            span.set_attribute("proxy.error", "client_disconnected")
            logger.info(
                f"Client went away before {upstream.name} answered {method} {path}; request abandoned"
            )
            return client_closed_response()
        except httpx.HTTPError as e:
            span.set_attribute("proxy.error", type(e).__name__)
            log_exception_with_details(logger, f"Proxy error for {method} {path}", e)
            return upstream_unavailable_response()

        span.set_attribute("proxy.status_code", upstream_response.status_code)

    return relay_response(upstream_response, method, path)


async def dispatch(request: Request) -> Response:
    """Classify the request, then answer locally or proxy it."""
    config: ProxyConfig = request.app.state.proxy_config
    path = request_path(request)
    logger.info(
        f"Received request: {request.method} {path} from {client_address(request.client)}"
    )

    decision = classify(request.method, path, config.rules)
    if isinstance(decision, ShowPreflight):
        return preflight_response()
    if isinstance(decision, ShowHealth):
        return health_response()

    upstream = config.registry.resolve(decision.upstream)
    return await forward_to_upstream(
        request, upstream, config.registry.client_for(upstream.name)
    )


class ProxyEndpoint:
    """
    ASGI endpoint for the catch-all route.

    Starlette limits function endpoints to GET unless methods are listed;
    an ASGI endpoint is routed for every method.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive, send)
        response = await dispatch(request)
        await response(scope, receive, send)


router.add_route("/{path:path}", ProxyEndpoint(), name="proxy", include_in_schema=False)
