"""
Endpoint normalization for captured request URLs.
"""
from urllib.parse import urlsplit

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}


def _origin(scheme: str, hostname: str, port) -> str:
    if ":" in hostname:
        hostname = f"[{hostname}]"
    if port is None or DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{hostname}"
    return f"{scheme}://{hostname}:{port}"


def normalize_url(raw_url: str, include_query_string: bool = False) -> str:
    """
    Reduce a request URL to its endpoint identity: origin + path, plus the
    query string when include_query_string is set.

    URLs that cannot be parsed are returned unchanged.
    """
    try:
        parsed = urlsplit(raw_url)
        scheme = parsed.scheme.lower()
        hostname = parsed.hostname
        port = parsed.port
    except (ValueError, TypeError, AttributeError):
        return raw_url

    if not scheme or not hostname:
        return raw_url

    endpoint = _origin(scheme, hostname, port) + (parsed.path or "/")
    if include_query_string and parsed.query:
        endpoint += f"?{parsed.query}"
    return endpoint
