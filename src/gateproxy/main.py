"""Main FastAPI application for gateproxy."""

import logging
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.routing import APIRoute
from starlette.routing import Match
from starlette.types import Receive, Scope, Send

from gateproxy.config import ProxyConfig, resolve_config
from gateproxy.errors import HostNotAllowed, ProxyError, proxy_error_handler
from gateproxy.hosts import is_host_allowed, require_supported_scheme
from gateproxy.proxy import dispatch, relay
from gateproxy.translate import read_inbound, resolve_target, translate
from gateproxy.validation import check_api_key

# Configure minimal logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("gateproxy")

PROXY_PATH = "/proxy"
# Declared methods only; AnyMethodRoute forwards every other method as well
PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


class AnyMethodRoute(APIRoute):
    """APIRoute that hands requests of any HTTP method to its endpoint."""

    def matches(self, scope: Scope) -> tuple[Match, Scope]:
        match, child_scope = super().matches(scope)
        if match == Match.PARTIAL:
            match = Match.FULL
        return match, child_scope

    async def handle(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.app(scope, receive, send)


def get_config() -> ProxyConfig:
    """Resolve the configuration snapshot for one request."""
    return resolve_config()


async def proxy_endpoint(request: Request, config: ProxyConfig = Depends(get_config)) -> Response:
    """Handle any method on /proxy - the only supported endpoint.

    Stages run strictly in order and any failure short-circuits to its
    error response: auth check, target extraction, host validation,
    translation, dispatch, relay. Nothing is retried.

    Args:
        request: Raw FastAPI Request object
        config: Configuration snapshot for this request

    Returns:
        StreamingResponse mirroring the upstream status, headers and body

    Raises:
        ProxyError: On any stage failure (handled by exception handler)
    """
    try:
        check_api_key(request.headers, config.api_key)

        inbound = await read_inbound(request, config.max_json_bytes)
        url = resolve_target(inbound)

        if not is_host_allowed(url, config.allowed_host_patterns):
            raise HostNotAllowed()
        require_supported_scheme(url)

        outbound = translate(inbound, url)

        if config.logging_mode in ["metadata", "debug"]:
            logger.info(f"Forwarding {outbound.method} to: {url.host}")
            if config.logging_mode == "debug":
                logger.debug(f"Headers: {[name for name, _ in outbound.headers]}")

        upstream = await dispatch(
            outbound,
            config.timeout_ms,
            follow_redirects=config.follow_redirects,
            allowed_hosts=config.allowed_host_patterns if config.revalidate_redirects else None,
        )

        if config.logging_mode in ["metadata", "debug"]:
            logger.info(f"Response: {upstream.status_code} from {url.host}")

        return relay(upstream)

    except ProxyError:
        # Let the exception handler deal with it
        raise

    except Exception as e:
        # Catch any unexpected programming errors
        logger.error(f"Unexpected error in {PROXY_PATH}: {type(e).__name__}: {e}")
        raise ProxyError() from e


def create_app(config: Optional[ProxyConfig] = None) -> FastAPI:
    """Create the FastAPI proxy application.

    Args:
        config: Startup configuration for CORS; resolved from the
            environment when omitted. The proxy route itself re-resolves
            configuration per request through ``get_config``.

    Returns:
        Configured FastAPI application.
    """
    config = config or resolve_config()

    app = FastAPI(
        title="Gateproxy",
        description="Allowlisted single-endpoint forwarding proxy",
        version="0.1.0",
        docs_url=None,  # Disable Swagger UI
        redoc_url=None,  # Disable ReDoc
        openapi_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    app.add_exception_handler(ProxyError, proxy_error_handler)

    app.router.add_api_route(
        PROXY_PATH,
        proxy_endpoint,
        methods=PROXY_METHODS,
        route_class_override=AnyMethodRoute,
    )

    return app


app = create_app()


def run() -> None:
    """Start the proxy server with uvicorn."""
    config = resolve_config()
    if config.logging_mode == "debug":
        logger.setLevel(logging.DEBUG)

    logger.info(f"Listening on: {config.host}:{config.port}")
    logger.info(f"Allowed hosts: {', '.join(config.allowed_host_patterns) or 'None (deny all)'}")
    logger.info(f"Auth: {'API key required' if config.auth_required else 'DISABLED'}")
    logger.info(f"Timeout: {config.timeout_ms}ms")
    if config.follow_redirects and not config.revalidate_redirects:
        logger.warning("Redirects are followed without re-checking the allowlist")

    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    run()
