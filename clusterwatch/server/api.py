"""
Lightweight API server using FastAPI.

Version: 0.3.0
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clusterwatch import __version__
from clusterwatch.core.exceptions import ClusterwatchError
from clusterwatch.core.logging_utils import configure_logging
from clusterwatch.core.session import MonitoringSession
from clusterwatch.server.routers import alerts, metrics, snapshots

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "RULE_NOT_FOUND": 404,
    "ALERT_NOT_FOUND": 404,
    "VALIDATION_ERROR": 422,
    "CONFIG_ERROR": 500,
}


async def clusterwatch_exception_handler(request: Request, exc: ClusterwatchError):
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(exc.code, 500),
        content={"error": {"code": exc.code, "message": str(exc), "details": exc.details}},
    )


def create_app(session: MonitoringSession, manage_session: bool = True) -> FastAPI:
    """Build the FastAPI application around ``session``.

    Args:
        session: Session every router operates on
        manage_session: Start the tracker sweep on startup and stop it on
            shutdown

    Returns:
        The configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown events."""
        if manage_session:
            session.start()
        yield
        if manage_session:
            session.stop()

    app = FastAPI(
        title="clusterwatch API",
        description="Rates, latencies and threshold alerts for a monitored cluster.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.session = session

    app.include_router(snapshots.router)
    app.include_router(metrics.router)
    app.include_router(alerts.router)
    app.add_exception_handler(ClusterwatchError, clusterwatch_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["system"])
    async def health() -> dict:
        return {
            "status": "ok",
            "version": __version__,
            "target": session.target,
            "sweep_running": session.tracker.is_running,
        }

    return app


@dataclass
class ClusterwatchAPIServer:
    """Server that runs the clusterwatch FastAPI application."""

    session: MonitoringSession
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: Optional[str] = None

    def start(self) -> None:
        """Start the API server (blocking)."""
        active_log_level = configure_logging(self.log_level or "INFO")
        app = create_app(self.session)

        logger.info("Starting clusterwatch API server on %s:%s", self.host, self.port)
        try:
            uvicorn.run(
                app,
                host=self.host,
                port=self.port,
                log_level=active_log_level.lower(),
            )
        except Exception as e:
            logger.error("Server crashed: %s", e)
            raise
