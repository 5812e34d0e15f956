from typing import Optional


def client_address(client) -> str:
    """Format an ASGI ``(host, port)`` client pair for log lines."""
    if not client:
        return "unknown"
    host, port = client[0], client[1]
    return f"{host}:{port}" if port else str(host)


def client_host(client) -> Optional[str]:
    if not client:
        return None
    return client[0]
