from .config import ProxyConfig
from .dispatcher import router

__all__ = ["ProxyConfig", "router"]
