from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from ssl_proxy.routing.classifier import DEFAULT_RULES, RuleSet
from ssl_proxy.upstreams.registry import UpstreamRegistry, default_upstreams


@dataclass(frozen=True)
class ProxyConfig:
    """Everything a request handler needs, built once at startup.

    Attached to ``app.state.proxy_config`` by ``create_app``; handlers read
    it from the request instead of from module globals.
    """

    registry: UpstreamRegistry
    rules: RuleSet = field(default=DEFAULT_RULES)

    def validate(self) -> "ProxyConfig":
        """Resolve every upstream the rules can route to.

        Raises ``UnknownUpstreamError`` for a name that is not registered.
        """
        for name in self.rules.targets():
            self.registry.resolve(name)
        return self

    @classmethod
    def default(
        cls, transports: Optional[Dict[str, httpx.AsyncBaseTransport]] = None
    ) -> "ProxyConfig":
        registry = UpstreamRegistry(default_upstreams(), transports=transports)
        return cls(registry=registry).validate()
