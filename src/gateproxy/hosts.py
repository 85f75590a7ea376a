"""Target URL parsing and allowlist matching of target hostnames."""

from typing import Sequence, Union

import httpx

from gateproxy.errors import InvalidTarget

ALLOWED_SCHEMES = ("http", "https")


def parse_target(target: str) -> httpx.URL:
    """Parse an absolute target URL with a host.

    The scheme is left to ``require_supported_scheme`` so that the host
    decision comes first.

    Raises:
        InvalidTarget: If the value is not an absolute URL with a host
    """
    try:
        url = httpx.URL(target)
    except (httpx.InvalidURL, TypeError) as e:
        raise InvalidTarget() from e

    if not url.scheme or not url.host:
        raise InvalidTarget()
    return url


def require_supported_scheme(url: httpx.URL) -> None:
    """Reject targets the upstream client cannot dispatch (http and https only)."""
    if url.scheme not in ALLOWED_SCHEMES:
        raise InvalidTarget(details=f"Unsupported scheme: {url.scheme}")


def host_matches(hostname: str, pattern: str) -> bool:
    """Match one hostname against an exact or ``*.suffix`` pattern.

    A wildcard covers the bare suffix and subdomains at any depth, so
    ``*.example.com`` matches ``example.com`` and ``a.b.example.com`` but
    not ``evilexample.com``.
    """
    hostname = hostname.lower()
    pattern = pattern.lower()
    if pattern.startswith("*."):
        domain = pattern[2:]
        return hostname == domain or hostname.endswith("." + domain)
    return hostname == pattern


def is_host_allowed(target: Union[str, httpx.URL], patterns: Sequence[str]) -> bool:
    """Return True if the target's hostname matches any allowed pattern.

    Fails closed: an empty pattern list or an unparsable target is never
    allowed. Scheme and port play no part in the decision.
    """
    if not patterns:
        return False

    try:
        url = target if isinstance(target, httpx.URL) else parse_target(target)
    except InvalidTarget:
        return False

    return any(host_matches(url.host, pattern) for pattern in patterns)
