"""Upstream dispatch and streaming relay of the upstream response.

This module implements the network half of the pipeline:
- One client per request, redirects followed, body sent as given
- A single deadline bounds connect, upload, response headers and download
- Responses are streamed back chunk by chunk, never buffered
- Mid-stream failures abort the client stream; the status is already sent
"""

import asyncio
import logging
from typing import AsyncIterator, Optional, Sequence

import httpx
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from gateproxy.errors import HostNotAllowed, UpstreamNetworkError, UpstreamTimeoutError
from gateproxy.headers import encode_headers, sanitize_response_headers
from gateproxy.hosts import is_host_allowed
from gateproxy.models import Headers, OutboundRequest

logger = logging.getLogger("gateproxy")

# Encodings httpx decodes without optional packages
ACCEPT_ENCODING = "gzip, deflate"
DECODABLE_ENCODINGS = frozenset({"gzip", "x-gzip", "deflate", "identity"})


def content_encodings(headers: httpx.Headers) -> list[str]:
    """List the content codings applied to a response, outermost last."""
    return [
        token.strip().lower()
        for value in headers.get_list("content-encoding")
        for token in value.split(",")
        if token.strip()
    ]


class UpstreamResponse:
    """A streamed upstream response and the client that owns its connection.

    The body is consumed once by the relay; ``aclose`` releases the
    connection and may be called any number of times.
    """

    def __init__(self, response: httpx.Response, client: httpx.AsyncClient, deadline: float):
        self.response = response
        self.deadline = deadline
        self._client = client

        encodings = content_encodings(response.headers)
        self.decompressed = any(e != "identity" for e in encodings) and all(
            e in DECODABLE_ENCODINGS for e in encodings
        )

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def headers(self) -> Headers:
        return sanitize_response_headers(self.response.headers.multi_items(), self.decompressed)

    def iter_body(self) -> AsyncIterator[bytes]:
        # Codings httpx cannot undo are relayed as-is along with their headers
        if self.decompressed:
            return self.response.aiter_bytes()
        return self.response.aiter_raw()

    async def aclose(self) -> None:
        await self.response.aclose()
        await self._client.aclose()


def redirect_guard(patterns: Sequence[str]):
    """Build a request hook that re-checks every hop against the allowlist."""

    async def check_redirect_target(request: httpx.Request) -> None:
        if not is_host_allowed(request.url, patterns):
            logger.warning(f"Blocked redirect to disallowed host: {request.url.host}")
            raise HostNotAllowed("Redirect target host not allowed by proxy configuration")

    return check_redirect_target


async def dispatch(
    outbound: OutboundRequest,
    timeout_ms: int,
    *,
    follow_redirects: bool = True,
    allowed_hosts: Optional[Sequence[str]] = None,
) -> UpstreamResponse:
    """Send the outbound request and return once response headers arrive.

    The deadline armed here also bounds the relay's body reads.

    Args:
        outbound: Translated upstream request
        timeout_ms: Deadline for the whole exchange in milliseconds
        follow_redirects: Follow 3xx responses
        allowed_hosts: When given, every redirect hop must match these patterns

    Returns:
        UpstreamResponse with an unread body

    Raises:
        UpstreamTimeoutError: If the deadline passes before headers arrive
        UpstreamNetworkError: On any other transport failure
        HostNotAllowed: If a redirect leaves the allowlist (guard enabled)
    """
    deadline = asyncio.get_running_loop().time() + timeout_ms / 1000

    event_hooks = {}
    if allowed_hosts is not None:
        event_hooks["request"] = [redirect_guard(allowed_hosts)]

    client = httpx.AsyncClient(
        timeout=timeout_ms / 1000,
        follow_redirects=follow_redirects,
        event_hooks=event_hooks,
    )
    try:
        # Header values arrive latin-1 decoded; send the original bytes back out
        request = client.build_request(
            outbound.method,
            outbound.url,
            headers=[(k.encode("latin-1"), v.encode("latin-1")) for k, v in outbound.headers],
            content=outbound.content,
        )
        request.headers["accept-encoding"] = ACCEPT_ENCODING
        if "connection" in request.headers:
            del request.headers["connection"]

        async with asyncio.timeout_at(deadline):
            response = await client.send(request, stream=True)

    except (TimeoutError, httpx.TimeoutException) as e:
        await client.aclose()
        logger.error(f"Request timeout after {timeout_ms}ms")
        raise UpstreamTimeoutError() from e

    except httpx.RequestError as e:
        await client.aclose()
        logger.error(f"Network error: {type(e).__name__}: {e}")
        raise UpstreamNetworkError(details=str(e) or type(e).__name__) from e

    except BaseException:
        await client.aclose()
        raise

    return UpstreamResponse(response, client, deadline)


async def stream_body(upstream: UpstreamResponse) -> AsyncIterator[bytes]:
    """Yield the upstream body chunk by chunk.

    A failure after the status line is logged and re-raised so the server
    aborts the client connection rather than completing a truncated body.
    """
    chunks = upstream.iter_body()
    try:
        while True:
            try:
                async with asyncio.timeout_at(upstream.deadline):
                    chunk = await anext(chunks)
            except StopAsyncIteration:
                break
            yield chunk

    except TimeoutError:
        logger.error("Upstream body timed out; aborting client stream")
        raise

    except httpx.HTTPError as e:
        logger.error(f"Upstream stream error: {type(e).__name__}: {e}")
        raise

    finally:
        await upstream.aclose()


def relay(upstream: UpstreamResponse) -> StreamingResponse:
    """Mirror the upstream status and headers and stream its body to the caller."""
    response = StreamingResponse(
        stream_body(upstream),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    # raw_headers keeps repeated headers such as set-cookie
    response.raw_headers.extend(encode_headers(upstream.headers))
    return response
