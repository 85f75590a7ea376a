"""Request, body and error models passed between pipeline stages."""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Union

import httpx
from pydantic import BaseModel

Headers = list[tuple[str, str]]


@dataclass(frozen=True)
class EmptyBody:
    """No body to forward."""


@dataclass(frozen=True)
class JsonBody:
    """A JSON body that was parsed and will be re-serialized."""

    value: Any


@dataclass(frozen=True)
class StreamBody:
    """An opaque body forwarded chunk by chunk without buffering."""

    stream: AsyncIterator[bytes]


Body = Union[EmptyBody, JsonBody, StreamBody]


@dataclass
class InboundRequest:
    """The caller's request as seen by the pipeline."""

    method: str
    headers: Headers
    body: Body = field(default_factory=EmptyBody)
    query_target: Optional[str] = None
    client_address: Optional[str] = None
    scheme: str = "http"
    host: Optional[str] = None


@dataclass
class OutboundRequest:
    """The request issued to the upstream target."""

    method: str
    url: httpx.URL
    headers: Headers
    content: Union[bytes, AsyncIterator[bytes], None] = None


class ErrorResponse(BaseModel):
    """Standardized error response format."""

    error: str
    details: Optional[str] = None
