from unittest.mock import Mock

from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export import SpanExportResult

from ssl_proxy.proxy import ProxyConfig
from ssl_proxy.server import FilteringSpanExporter, create_app


def test_create_app_attaches_config():
    config = ProxyConfig.default()
    app = create_app(config)

    assert app.state.proxy_config is config


def test_no_docs_routes_shadow_upstream_paths(proxy_client, upstream):
    for path in ("/docs", "/openapi.json", "/metrics"):
        assert proxy_client.get(path).content == b"upstream says hi"

    assert [request.url.raw_path for request in upstream.requests] == [
        b"/docs",
        b"/openapi.json",
        b"/metrics",
    ]


def test_shutdown_closes_upstream_clients():
    config = ProxyConfig.default()
    with TestClient(create_app(config)):
        pass

    for name in config.registry.names():
        assert config.registry.client_for(name).is_closed


class TestFilteringSpanExporter:
    def _span(self, attributes):
        span = Mock()
        span.attributes = attributes
        return span

    def test_drops_response_body_spans(self):
        inner = Mock()
        inner.export.return_value = SpanExportResult.SUCCESS
        exporter = FilteringSpanExporter(inner)
        keep = self._span({"proxy.upstream": "product"})
        drop = self._span({"asgi.event.type": "http.response.body"})

        assert exporter.export([keep, drop]) == SpanExportResult.SUCCESS
        inner.export.assert_called_once_with([keep])

    def test_nothing_left_to_export(self):
        inner = Mock()
        exporter = FilteringSpanExporter(inner)

        result = exporter.export([self._span({"asgi.event.type": "http.response.body"})])

        assert result == SpanExportResult.SUCCESS
        inner.export.assert_not_called()
