"""FastAPI application factory."""

from fastapi import FastAPI, Request, Response

from evoinbox.observability.correlation import (
    CORRELATION_ID_HEADER,
    accept_correlation_id,
    correlation_scope,
)

from .routers import health
from .routes import webhooks_evolution


def create_app() -> FastAPI:
    """Create FastAPI app with health and webhook routes."""
    app = FastAPI(
        title="evoinbox",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = accept_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        with correlation_scope(cid):
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = cid
        return response

    app.include_router(health.router)
    app.include_router(webhooks_evolution.router)

    return app
