from .registry import (
    TrustMode,
    UnknownUpstreamError,
    Upstream,
    UpstreamConfigError,
    UpstreamRegistry,
    default_upstreams,
)

__all__ = [
    "TrustMode",
    "UnknownUpstreamError",
    "Upstream",
    "UpstreamConfigError",
    "UpstreamRegistry",
    "default_upstreams",
]
