"""Origin canonicalization.

IdP and RP both reduce URIs to the same comparable string so that the
audience check on an assertion is a plain string equality.
"""

from urllib.parse import urlsplit

from letsauth.core.errors import InvalidURIError

_DEFAULT_PORTS = {"http": 80, "https": 443}


def canonicalize(uri: str) -> str:
    """Normalize an absolute http(s) URI to its origin.

    Args:
        uri: Absolute URI, e.g. ``https://example.com:443/path``.

    Returns:
        ``scheme://host`` when the port is the scheme default, otherwise
        ``scheme://host:port``. Scheme and host are lower-cased.

    Raises:
        InvalidURIError: If the URI lacks a scheme or host, uses another
            scheme, or has an invalid port.
    """
    try:
        parts = urlsplit(uri.strip())
        port = parts.port
    except ValueError as exc:
        raise InvalidURIError(uri, "invalid port or host") from exc

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise InvalidURIError(uri)

    host = parts.hostname
    if not host:
        raise InvalidURIError(uri, "missing host")
    if ":" in host:
        host = f"[{host}]"

    if port is None or port == _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"
