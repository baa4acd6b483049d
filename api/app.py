"""
AccessHub API application

Run with ``accesshub serve`` or ``uvicorn api.app:app``.
"""
import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import settings
from core.logging_config import log_service_shutdown, log_service_startup, setup_logging
from core.sweeper import run_expiry_sweeper
from models.database import init_db
from .error_handlers import register_error_handlers
from .routes import ROUTERS

logger = setup_logging()


def create_app(run_sweeper: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        run_sweeper: Start the background expiry sweep (disabled in tests)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events"""
        log_service_startup(logger, settings.port)
        init_db()

        sweeper = None
        if run_sweeper and settings.expiry_sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(run_expiry_sweeper(settings.expiry_sweep_interval_seconds))

        yield

        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        log_service_shutdown(logger)

    app = FastAPI(
        title="AccessHub",
        description="Access-governance backend: tool catalog, access requests, approvals and audit",
        version=settings.version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    for router in ROUTERS:
        app.include_router(router)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name, "version": settings.version}

    return app


app = create_app()
