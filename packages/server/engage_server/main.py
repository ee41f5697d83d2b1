"""
Engage Hub API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from engage_server.api.v1 import router as api_v1_router
from engage_server.core.config import get_settings
from engage_server.core.errors import EngageError
from engage_server.core.logging import configure_logging

settings = get_settings()
log = structlog.get_logger()


async def engage_error_handler(request: Request, exc: EngageError) -> JSONResponse:
    """Render domain errors with the standard error envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "status": exc.status_code,
            }
        },
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Engage Hub",
        description="Organisations, members and role-based access for the engagement platform.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(EngageError, engage_error_handler)

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        log.info("engage.starting", debug=settings.debug)

    @app.on_event("shutdown")
    async def on_shutdown():
        from engage_server.core.database import engine

        log.info("engage.shutting_down")
        await engine.dispose()

    return app


app = create_app()
