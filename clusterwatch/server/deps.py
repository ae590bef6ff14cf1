"""Request-scoped accessors shared by the routers."""

from __future__ import annotations

from fastapi import Request

from clusterwatch.core.session import MonitoringSession


def get_session(request: Request) -> MonitoringSession:
    """The session the application was created for."""
    return request.app.state.session
