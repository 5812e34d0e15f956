"""
Entry point: ``python -m ssl_proxy`` or the ``ssl-proxy`` console script.

Startup is all-or-nothing. A bad certificate or key, an unusable
upstream configuration, or a listener that cannot bind ends the process
with exit status 1 before any request is served.
"""

import logging
import sys

import uvicorn

from ssl_proxy.frontend.tls import CIPHER_SUITES, TLSConfigError, build_server_context
from ssl_proxy.proxy import ProxyConfig
from ssl_proxy.server import configure_telemetry, create_app
from ssl_proxy.upstreams.registry import UpstreamConfigError
from ssl_proxy.vars import (
    CERT_FILE,
    CONFIG_ERRORS,
    HOST,
    KEY_FILE,
    LOG_LEVEL,
    PORT,
    SERVER_TIMEOUT_KEEP_ALIVE,
)

logger = logging.getLogger("uvicorn.error")


def build_server(config: ProxyConfig, tls_context) -> uvicorn.Server:
    app = create_app(config)
    configure_telemetry(app)

    server_config = uvicorn.Config(
        app,
        host=HOST,
        port=PORT,
        log_level=LOG_LEVEL,
        # Logging is configured by main
        log_config=None,
        timeout_keep_alive=SERVER_TIMEOUT_KEEP_ALIVE,
        ssl_certfile=CERT_FILE,
        ssl_keyfile=KEY_FILE,
        ssl_ciphers=":".join(CIPHER_SUITES),
    )
    server_config.load()
    # uvicorn cannot express a minimum protocol version; swap in our context
    server_config.ssl = tls_context
    return uvicorn.Server(server_config)


def main() -> int:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if CONFIG_ERRORS:
        logger.critical(f"Refusing to start: {'; '.join(CONFIG_ERRORS)}")
        return 1
    try:
        tls_context = build_server_context(CERT_FILE, KEY_FILE)
        config = ProxyConfig.default()
    except (TLSConfigError, UpstreamConfigError) as e:
        logger.critical(f"Refusing to start: {e}")
        return 1

    server = build_server(config, tls_context)
    logger.info(f"Starting HTTPS server on {HOST}:{PORT}...")
    server.run()
    # uvicorn returns without starting when the socket cannot be bound
    if not server.started:
        logger.critical(f"HTTPS server failed to start on {HOST}:{PORT}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
