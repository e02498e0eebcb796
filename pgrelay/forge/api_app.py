from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from pgrelay.config import Settings, settings
from pgrelay.forge import app as forge_app
from pgrelay.forge.forge_app_initializer import start_forge_app
from pgrelay.forge.sdk.notification.listener import ConnectFunc
from pgrelay.forge.sdk.routes import routers

LOG = structlog.get_logger()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncGenerator[None, Any]:
    """Lifespan context manager for FastAPI app startup and shutdown."""

    LOG.info("Server started")
    if forge_app.api_app_startup_event:
        LOG.info("Calling api app startup event")
        try:
            await forge_app.api_app_startup_event()
        except Exception:
            LOG.exception("Failed to execute api app startup event")
    yield
    LOG.info("Shutting down gracefully")
    if forge_app.api_app_shutdown_event:
        LOG.info("Calling api app shutdown event")
        try:
            await forge_app.api_app_shutdown_event()
        except Exception:
            LOG.exception("Failed to execute api app shutdown event")
    LOG.info("Server shut down")


def create_api_app(app_settings: Settings | None = None, connect: ConnectFunc | None = None) -> FastAPI:
    """
    Build the relay server. uvicorn calls this as a factory.
    """
    app_settings = app_settings or settings
    start_forge_app(app_settings, connect=connect)

    fastapi_app = FastAPI(title="pgrelay", lifespan=lifespan)

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    fastapi_app.include_router(routers.base_router)

    @fastapi_app.exception_handler(Exception)
    async def unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        LOG.exception("Unexpected error in relay server.", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": f"Unexpected error: {exc}"})

    return fastapi_app
