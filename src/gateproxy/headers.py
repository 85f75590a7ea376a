"""Header filtering for both directions of the proxy.

Requests lose their hop-by-hop headers, ``host`` and ``origin`` and gain
``X-Forwarded-*`` metadata. Responses lose the same hop-by-hop set, plus the
encoding headers that no longer describe a body the transport decompressed.
"""

import logging
import re
from typing import Iterable, Optional

from gateproxy.models import Headers

logger = logging.getLogger("gateproxy")

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# host is derived from the target URL; origin belongs to the caller's context
REQUEST_ONLY_HEADERS = frozenset({"host", "origin"})

DECOMPRESSED_HEADERS = frozenset({"content-encoding", "content-length"})

_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_INVALID_VALUE_RE = re.compile(r"[\r\n\x00]")


def get_header(headers: Iterable[tuple[str, str]], name: str) -> Optional[str]:
    """Return the first value of a header, matching the name case-insensitively."""
    name = name.lower()
    for key, value in headers:
        if key.lower() == name:
            return value
    return None


def remove_header(headers: Headers, name: str) -> Headers:
    name = name.lower()
    return [(key, value) for key, value in headers if key.lower() != name]


def set_header(headers: Headers, name: str, value: str) -> Headers:
    """Replace every occurrence of a header with a single value."""
    return remove_header(headers, name) + [(name, value)]


def sanitize_request_headers(
    headers: Iterable[tuple[str, str]],
    client_address: Optional[str] = None,
    scheme: Optional[str] = None,
    host: Optional[str] = None,
) -> Headers:
    """Build the upstream header list from the caller's headers.

    Args:
        headers: Inbound (name, value) pairs, duplicates allowed
        client_address: Caller address appended to X-Forwarded-For
        scheme: Inbound scheme for X-Forwarded-Proto
        host: Inbound Host header value for X-Forwarded-Host

    Returns:
        Outbound (name, value) pairs
    """
    forwarded_for: list[str] = []
    result: Headers = []

    for name, value in headers:
        lower = name.lower()
        if lower in HOP_BY_HOP_HEADERS or lower in REQUEST_ONLY_HEADERS:
            continue
        if lower == "x-forwarded-for":
            forwarded_for.append(value)
            continue
        result.append((name, value))

    if client_address:
        forwarded_for.append(client_address)
    if forwarded_for:
        result.append(("x-forwarded-for", ", ".join(v for v in forwarded_for if v)))

    if scheme:
        result = set_header(result, "x-forwarded-proto", scheme)
    if host:
        result = set_header(result, "x-forwarded-host", host)

    return result


def sanitize_response_headers(
    headers: Iterable[tuple[str, str]], decompressed: bool = False
) -> Headers:
    """Filter upstream response headers before they reach the caller.

    When the transport decompressed the body, content-encoding and
    content-length describe bytes the caller will never see and are dropped.
    """
    result: Headers = []
    for name, value in headers:
        lower = name.lower()
        if lower in HOP_BY_HOP_HEADERS:
            continue
        if decompressed and lower in DECOMPRESSED_HEADERS:
            continue
        result.append((name, value))
    return result


def encode_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[bytes, bytes]]:
    """Encode headers for an ASGI response, skipping any that cannot be sent.

    A malformed name or value only drops that header, never the response.
    """
    raw: list[tuple[bytes, bytes]] = []
    for name, value in headers:
        if not _TOKEN_RE.match(name) or _INVALID_VALUE_RE.search(value):
            logger.warning(f"Skipping unsendable response header: {name!r}")
            continue
        try:
            raw.append((name.lower().encode("latin-1"), value.encode("latin-1")))
        except UnicodeEncodeError:
            logger.warning(f"Skipping non latin-1 response header: {name!r}")
    return raw
