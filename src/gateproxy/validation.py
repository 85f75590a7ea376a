"""Caller authentication for gateproxy."""

import re
import secrets
from typing import Mapping, Optional

from gateproxy.errors import Unauthorized

_BEARER_PREFIX = re.compile(r"^Bearer\s+", re.IGNORECASE)


def provided_api_key(headers: Mapping[str, str]) -> Optional[str]:
    """Return the key presented by the caller.

    ``X-API-KEY`` takes precedence; otherwise ``Authorization`` is used with
    an optional ``Bearer`` prefix stripped.
    """
    key = headers.get("x-api-key")
    if key:
        return key
    authorization = headers.get("authorization") or ""
    return _BEARER_PREFIX.sub("", authorization) or None


def check_api_key(headers: Mapping[str, str], api_key: str) -> None:
    """Verify the caller's key when one is configured.

    Args:
        headers: Inbound request headers (case-insensitive mapping)
        api_key: Configured shared secret; empty disables the check

    Raises:
        Unauthorized: If the key is missing or does not match
    """
    if not api_key:
        return

    provided = provided_api_key(headers)
    if not provided or not secrets.compare_digest(
        provided.encode("utf-8"), api_key.encode("utf-8")
    ):
        raise Unauthorized()
