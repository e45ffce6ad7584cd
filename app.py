"""Main FastAPI application for the Blacktop Blackout module platform."""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

# Configure logging BEFORE importing any modules that use logger
log_level = os.getenv('LOG_LEVEL', 'INFO')
logging.basicConfig(
    level=getattr(logging, log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Import after logging is configured
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from blacktop import constants
from blacktop.dependencies import ServiceContainer
from blacktop.errors import BlacktopError
from blacktop.models.responses import ApiResponse
from blacktop.routers import messaging, plugins
from blacktop.routers.plugin_routes import PluginRouteMounter

LIFECYCLE_EVENTS = (
    "beforeInstall",
    "installed",
    "pluginLoaded",
    "pluginUnloaded",
    "pluginEnabled",
    "pluginDisabled",
    "pluginUninstalled",
)


def _bridge_manager_events(services: ServiceContainer, mounter: PluginRouteMounter) -> None:
    """Republish plugin lifecycle events on the messaging bus and keep plugin routes in sync."""
    manager = services.manager
    bus = services.messaging

    for event in LIFECYCLE_EVENTS:
        def _forward(subject: str, _event: str = event):
            return bus.publish(f"plugins.{_event}", {"pluginId": subject})
        manager.on(event, _forward)

    def _forward_error(error: Exception, plugin_id: Optional[str] = None):
        return bus.publish("plugins.error", {"pluginId": plugin_id, "error": str(error)})
    manager.on("error", _forward_error)

    def _mount(plugin_id: str) -> None:
        context = manager.get_plugin_context(plugin_id)
        if context is not None:
            mounter.mount(plugin_id, context)
    manager.on("pluginLoaded", _mount)
    manager.on("pluginUnloaded", mounter.unmount)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BlacktopError)
    async def blacktop_error_handler(request: Request, exc: BlacktopError):
        return JSONResponse(status_code=exc.status_code, content=ApiResponse.fail(str(exc)))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        error = exc.detail if exc.status_code != 404 or exc.detail != "Not Found" else "Route not found"
        return JSONResponse(status_code=exc.status_code, content=ApiResponse.fail(str(error)))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=ApiResponse.fail("Invalid request", message=str(exc.errors())),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        message = "Something went wrong" if constants.APP_ENV == "production" else str(exc)
        return JSONResponse(status_code=500, content=ApiResponse.fail("Internal server error", message=message))


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the application around a service container."""
    services = services or ServiceContainer.build()

    app = FastAPI(
        title="Blacktop Blackout",
        description="Modular platform host: plugin lifecycle, messaging and module catalog",
        version=constants.APP_VERSION,
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[constants.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    app.include_router(plugins.router)  # /api/plugins endpoints
    app.include_router(messaging.router)  # /api/messaging endpoints

    mounter = PluginRouteMounter(app)
    app.state.plugin_routes = mounter
    _bridge_manager_events(services, mounter)

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": constants.APP_VERSION,
        }

    @app.on_event("startup")
    async def startup_event():
        """Application startup event."""
        logger.info("Starting Blacktop Blackout backend")
        logger.info(f"Working directory: {Path.cwd()}")

        manager = services.manager
        found = manager.discover()
        logger.info(f"Discovered {found} plugin(s)")

        if constants.PLUGIN_CATALOG_FILE:
            services.registry.load_catalog(constants.PLUGIN_CATALOG_FILE)

        await manager.load_enabled()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Application shutdown event."""
        logger.info("Shutting down Blacktop Blackout backend")
        await services.manager.shutdown()
        services.messaging.shutdown()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=constants.PORT, reload=constants.APP_ENV != "production")
