from .tls import TLSConfigError, build_server_context

__all__ = ["TLSConfigError", "build_server_context"]
