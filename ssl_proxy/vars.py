import os

# Malformed numeric settings; main refuses to start while this is non-empty
CONFIG_ERRORS = []


def _parse_number(name: str, default, cast=int):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        CONFIG_ERRORS.append(f"{name} must be a number, got {raw!r}")
        return default


SERVICE_NAME = os.getenv("SERVICE_NAME", "ssl-proxy")
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

HOST = os.getenv("SSL_PROXY_HOST", "localhost")
PORT = _parse_number("SSL_PROXY_PORT", 8443)
CERT_FILE = os.getenv("SSL_PROXY_CERT_FILE", "cert.pem")
KEY_FILE = os.getenv("SSL_PROXY_KEY_FILE", "key.pem")
# Generous keep-alive so clients pulling large artifacts can reuse connections
SERVER_TIMEOUT_KEEP_ALIVE = _parse_number("SERVER_TIMEOUT_KEEP_ALIVE", 120)

PROXY_TIMEOUT = _parse_number("PROXY_TIMEOUT", 300.0, float)  # 5 minutes default
UPSTREAM_MAX_IDLE_CONNECTIONS = _parse_number("UPSTREAM_MAX_IDLE_CONNECTIONS", 100)
UPSTREAM_IDLE_TIMEOUT = _parse_number("UPSTREAM_IDLE_TIMEOUT", 90.0, float)

PRODUCT_URL = os.getenv("PRODUCT_URL", "https://integrations-qa.dev.cnc.duckutil.net")
PRODUCT_TLS_TRUST = os.getenv("PRODUCT_TLS_TRUST", "verify").lower()
PRODUCT_CA_FILE = os.getenv("PRODUCT_CA_FILE", "")

INTERNAL_ARTIFACTORY_URL = os.getenv(
    "INTERNAL_ARTIFACTORY_URL", "https://artifactory.tools.duckutil.net"
)
INTERNAL_ARTIFACTORY_TLS_TRUST = os.getenv(
    "INTERNAL_ARTIFACTORY_TLS_TRUST", "verify"
).lower()
INTERNAL_ARTIFACTORY_CA_FILE = os.getenv("INTERNAL_ARTIFACTORY_CA_FILE", "")

PUBLIC_ARTIFACTORY_URL = os.getenv("PUBLIC_ARTIFACTORY_URL", "https://repo.blackduck.com/")
PUBLIC_ARTIFACTORY_TLS_TRUST = os.getenv("PUBLIC_ARTIFACTORY_TLS_TRUST", "verify").lower()
PUBLIC_ARTIFACTORY_CA_FILE = os.getenv("PUBLIC_ARTIFACTORY_CA_FILE", "")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# Unset means no metrics listener
METRICS_PORT = _parse_number("METRICS_PORT", None)
