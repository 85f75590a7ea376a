"""Translation of an inbound proxy request into the upstream request.

The body representation is decided once, here: a JSON body is buffered
(bounded by ``max_json_bytes``) so it can be parsed for the target URL and
re-serialized; every other body stays a live stream that is never read
into memory.
"""

import json
import math
from typing import Any, AsyncIterator, Optional

import httpx
from starlette.requests import Request

from gateproxy.errors import InvalidTarget, MissingTarget, PayloadTooLarge
from gateproxy.headers import get_header, remove_header, sanitize_request_headers, set_header
from gateproxy.hosts import parse_target
from gateproxy.models import (
    Body,
    EmptyBody,
    InboundRequest,
    JsonBody,
    OutboundRequest,
    StreamBody,
)

BODYLESS_METHODS = frozenset({"GET", "HEAD"})
JSON_MEDIA_TYPE = "application/json"


def is_json_content_type(content_type: Optional[str]) -> bool:
    """Check for application/json, ignoring parameters such as charset."""
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() == JSON_MEDIA_TYPE


def encode_json(value: Any) -> bytes:
    """Serialize a JSON value to its compact canonical byte form."""
    return json.dumps(
        value, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def _reject_constant(name: str) -> float:
    raise ValueError(f"Non-standard JSON constant: {name}")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"Number out of range: {text}")
    return value


def decode_json(raw: bytes) -> Any:
    """Parse strict JSON: NaN, Infinity and overflowing numbers are rejected."""
    return json.loads(raw, parse_constant=_reject_constant, parse_float=_finite_float)


async def _iter_request(request: Request) -> AsyncIterator[bytes]:
    async for chunk in request.stream():
        if chunk:
            yield chunk


async def _replay(data: bytes) -> AsyncIterator[bytes]:
    yield data


async def _read_limited(request: Request, limit: int) -> bytes:
    """Read the request body, refusing anything over ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise PayloadTooLarge()

    buffer = bytearray()
    async for chunk in request.stream():
        buffer.extend(chunk)
        if len(buffer) > limit:
            raise PayloadTooLarge()
    return bytes(buffer)


def parse_json_body(raw: bytes) -> Body:
    """Parse a buffered JSON body.

    Unparsable bytes are kept as a stream so they are forwarded verbatim.
    """
    if not raw:
        return EmptyBody()
    try:
        return JsonBody(decode_json(raw))
    except ValueError:
        return StreamBody(_replay(raw))


async def read_inbound(request: Request, max_json_bytes: int) -> InboundRequest:
    """Capture the caller's request, deciding the body representation.

    Args:
        request: The incoming Starlette request
        max_json_bytes: Upper bound for buffering a JSON body

    Returns:
        InboundRequest for the rest of the pipeline

    Raises:
        PayloadTooLarge: If a JSON body exceeds max_json_bytes
    """
    if is_json_content_type(request.headers.get("content-type")):
        body = parse_json_body(await _read_limited(request, max_json_bytes))
    else:
        body = StreamBody(_iter_request(request))

    return InboundRequest(
        method=request.method.upper(),
        headers=request.headers.items(),
        body=body,
        query_target=request.query_params.get("url"),
        client_address=request.client.host if request.client else None,
        scheme=request.url.scheme,
        host=request.headers.get("host"),
    )


def extract_target(inbound: InboundRequest) -> str:
    """Pick the target URL: the ``url`` query parameter, else a JSON body field.

    Raises:
        MissingTarget: If neither source supplies a value
        InvalidTarget: If the JSON field is not a string
    """
    if inbound.query_target:
        return inbound.query_target

    body = inbound.body
    if isinstance(body, JsonBody) and isinstance(body.value, dict):
        target = body.value.get("url")
        if target is not None and not isinstance(target, str):
            raise InvalidTarget()
        if target:
            return target

    raise MissingTarget()


def resolve_target(inbound: InboundRequest) -> httpx.URL:
    """Extract and parse the target URL."""
    return parse_target(extract_target(inbound))


def translate(inbound: InboundRequest, url: httpx.URL) -> OutboundRequest:
    """Map the inbound request onto the upstream request.

    GET and HEAD never carry a body upstream. A parsed JSON body is
    re-serialized with an exact content-length; any other body is passed
    through as the original stream with its headers untouched.
    """
    headers = sanitize_request_headers(
        inbound.headers,
        client_address=inbound.client_address,
        scheme=inbound.scheme,
        host=inbound.host,
    )
    body = inbound.body
    content = None

    if inbound.method in BODYLESS_METHODS or isinstance(body, EmptyBody):
        headers = remove_header(headers, "content-length")
    elif isinstance(body, JsonBody):
        content = encode_json(body.value)
        if get_header(headers, "content-type") is None:
            headers.append(("content-type", JSON_MEDIA_TYPE))
        headers = set_header(headers, "content-length", str(len(content)))
    else:
        content = body.stream

    return OutboundRequest(method=inbound.method, url=url, headers=headers, content=content)
