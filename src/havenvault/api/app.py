"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from havenvault import __version__
from havenvault.api.deps import close_rpc
from havenvault.config import get_settings
from havenvault.errors import HavenError
from havenvault.ledger.database import close_db, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    # Startup: a deployment that cannot sponsor transactions must not serve
    if settings.environment.lower() != "test":
        settings.require_pipeline_config()
    await init_db()
    yield
    # Shutdown
    await close_rpc()
    await close_db()


async def haven_error_handler(request: Request, exc: HavenError) -> JSONResponse:
    """Render expected failures as ``{"error", "code"}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"Cache-Control": "no-store"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Haven Vault API",
        description="Custodial co-signing and savings ledger",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(HavenError, haven_error_handler)

    # Register routes
    from havenvault.api.routers import savings
    from havenvault.api.routes import health

    app.include_router(health.router, tags=["Health"])
    app.include_router(savings.router)

    return app
