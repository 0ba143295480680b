"""Main FastAPI application."""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import routes
from .config import API_TITLE, API_VERSION, CORS_HEADERS, CORS_METHODS, CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL
from .services.monitor import Monitor

# Setup logging
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


def create_app(monitor: Optional[Monitor] = None) -> FastAPI:
    """Build the app; the monitor is created on startup unless one is given."""
    app = FastAPI(title=API_TITLE, version=API_VERSION)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )
    app.include_router(routes.router)
    app.state.monitor = monitor

    @app.on_event("startup")
    async def start_monitor() -> None:
        if app.state.monitor is None:
            app.state.monitor = Monitor()
        await app.state.monitor.start()

    @app.on_event("shutdown")
    async def stop_monitor() -> None:
        if app.state.monitor is not None:
            await app.state.monitor.stop()

    return app


app = create_app()
