"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or with the settings-driven runner:
    python -m backend.app.main
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.runtime import AlertRuntime, build_runtime

# ── API routers ──
from backend.app.api.v1.alerts import router as alert_router
from backend.app.api.v1.capture import router as capture_router
from backend.app.api.v1.places import router as places_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def create_app(runtime: Optional[AlertRuntime] = None) -> FastAPI:
    """
    Build the application. A pre-built runtime may be injected (tests);
    otherwise one is built from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        app.state.runtime = runtime or build_runtime(settings)
        try:
            yield
        finally:
            logger.info("Shutting down %s", settings.APP_NAME)
            await app.state.runtime.aclose()

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Emergency alert capture service. One trigger starts video and "
            "audio recording, shares the device position and finds nearby "
            "police stations, hospitals and shelters; every device handle "
            "and captured artifact is released when the alert ends."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    app.include_router(alert_router)
    app.include_router(capture_router)
    app.include_router(places_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": ["alerts", "capture", "safe-places"],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health check of all subsystems."""
        report = await run_health_check(app.state.runtime)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        report = await run_health_check(app.state.runtime)
        if report.status is HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()


def run(**uvicorn_kwargs) -> None:
    """Serve the app with uvicorn; reload only applies in development."""
    config = {
        "app": "backend.app.main:app",
        "host": settings.HOST,
        "port": settings.PORT,
        "reload": settings.RELOAD and settings.is_development,
        "log_config": None,
    }
    config.update(uvicorn_kwargs)
    uvicorn.run(**config)


if __name__ == "__main__":
    run()
