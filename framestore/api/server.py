"""
FastAPI server for the framestore storage API.
"""

import asyncio
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config.settings import ServerSettings
from ..exceptions import StorageError
from .router import create_storage_router
from .routes import http_error

logger = logging.getLogger(__name__)


def create_app(server_settings: Optional[ServerSettings] = None, **services) -> FastAPI:
    """Build the FastAPI application with the storage routes mounted.

    Args:
        server_settings: Host, port and CORS settings
        **services: Service instances passed to create_storage_router

    Returns:
        Configured FastAPI application
    """
    server_settings = server_settings or ServerSettings()

    app = FastAPI(
        title="Framestore API",
        description="Storage providers, sync and media cache for the photo frame",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    cors_origins = list(server_settings.cors_origins)
    for origin in ("http://localhost:8080", "http://localhost:5173"):
        if origin not in cors_origins:
            cors_origins.append(origin)
    logger.info(f"CORS allowed origins: {cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Check API health status."""
        content = {"status": "healthy", "version": __version__}
        cache = services.get("cache")
        if cache is not None:
            try:
                status = await cache.get_status()
                content["cache"] = status.to_dict()
            except Exception as e:
                logger.error(f"Health check failed: {e}")
                content["status"] = "degraded"
                content["error"] = str(e)
        return JSONResponse(status_code=200, content=content)

    app.include_router(create_storage_router(**services))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        """Handle storage errors that escaped a route."""
        error = http_error(exc)
        logger.warning(f"Storage error on {request.url.path}: {exc.to_log_string()}")
        return JSONResponse(status_code=error.status_code, content=error.detail)

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        """Handle unexpected errors."""
        logger.error(f"Unhandled error in storage endpoint: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_SERVER_ERROR",
                "message": "An unexpected error occurred",
            },
        )

    return app


class StorageServer:
    """Runs the storage API with uvicorn in a background task."""

    def __init__(self, settings: ServerSettings, app: FastAPI):
        self.settings = settings
        self.app = app
        self.server: Optional[uvicorn.Server] = None
        self._server_task: Optional[asyncio.Task] = None

    async def start_server(self) -> None:
        """Start the server without blocking."""
        if self._server_task is not None:
            logger.warning("Storage server already running")
            return

        host = self.settings.host
        port = self.settings.port
        logger.info(f"Starting storage server on {host}:{port}")

        server_config = uvicorn.Config(
            app=self.app,
            host=host,
            port=port,
            log_level="info",
            access_log=True,
            loop="asyncio",
        )
        self.server = uvicorn.Server(server_config)
        self._server_task = asyncio.create_task(self.server.serve())

        logger.info(f"API docs available at http://{host}:{port}/docs")

    async def stop_server(self) -> None:
        """Stop the server gracefully."""
        if self.server is None:
            logger.warning("Storage server not running")
            return

        logger.info("Stopping storage server...")
        self.server.should_exit = True

        if self._server_task:
            try:
                await asyncio.wait_for(self._server_task, timeout=10.0)
            except asyncio.TimeoutError:
                logger.warning("Server shutdown timed out, cancelling task")
                self._server_task.cancel()
                try:
                    await self._server_task
                except asyncio.CancelledError:
                    pass

        self.server = None
        self._server_task = None
        logger.info("Storage server stopped")

    @property
    def is_running(self) -> bool:
        return self._server_task is not None and not self._server_task.done()
