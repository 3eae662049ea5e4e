"""FastAPI app answering ACME HTTP-01 validation requests."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..certmanager.challenges import ChallengeResponder, normalize_hostname
from ..shared.exceptions import ChallengeLookupError
from .. import __version__

logger = logging.getLogger(__name__)

ACME_CHALLENGE_PREFIX = "/.well-known/acme-challenge/"

TOKEN_NOT_FOUND = "Error: These aren't the tokens you're looking for. Move along."
NOT_FOUND = "Not found"


def error_response(message: str) -> JSONResponse:
    """404 with the structured error body; the only failure clients ever see."""
    return JSONResponse(status_code=404, content={"error": {"message": message}})


def create_challenge_app(responder: ChallengeResponder) -> FastAPI:
    """Create the challenge server application."""

    app = FastAPI(
        title="ACME Companion",
        description="HTTP-01 challenge responder",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None
    )

    app.state.responder = responder

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Routing errors such as 405 are reported as 404 like any other miss
        return error_response(NOT_FOUND)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"[Server] {request.method} {request.url.path}")
        return await call_next(request)

    @app.api_route(ACME_CHALLENGE_PREFIX + "{token}", methods=["GET", "HEAD"])
    async def acme_challenge(token: str, request: Request) -> Response:
        """Serve the key authorization for (Host, token), staging first."""
        hostname = normalize_hostname(request.headers.get("host"))

        try:
            secret = responder.lookup_staging(hostname, token)
        except ChallengeLookupError as e:
            logger.error(f"Error while looking for staging secret: {e}")
            return error_response(TOKEN_NOT_FOUND)
        if secret:
            logger.info(f"Found staging secret for {hostname}")
            return PlainTextResponse(secret)

        try:
            secret = responder.lookup_production(hostname, token)
        except ChallengeLookupError as e:
            logger.error(f"Error while looking for production secret: {e}")
            return error_response(TOKEN_NOT_FOUND)
        if not secret:
            logger.warning(f"Secret not found for hostname {hostname}")
            return error_response(TOKEN_NOT_FOUND)

        logger.info(f"Found production secret for {hostname}")
        return PlainTextResponse(secret)

    @app.api_route("/{path:path}", methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
    async def not_found(path: str) -> Response:
        return error_response(NOT_FOUND)

    return app
