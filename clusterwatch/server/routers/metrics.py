"""Metrics router: current rates, chart buffer and summary."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from clusterwatch.core.session import MonitoringSession
from clusterwatch.server.deps import get_session

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/current")
async def current_metrics(session: MonitoringSession = Depends(get_session)) -> Dict[str, float]:
    """Rates and latencies of the latest interval."""
    return session.tracker.get_current_metrics().to_dict()


@router.get("/chart")
async def chart_data(session: MonitoringSession = Depends(get_session)) -> List[Dict[str, float]]:
    return [p.to_dict() for p in session.tracker.get_chart_data()]


@router.get("/history")
async def counter_history(session: MonitoringSession = Depends(get_session)) -> List[Dict[str, float]]:
    return [e.to_dict() for e in session.tracker.get_history()]


@router.get("/summary")
async def performance_summary(
    minutes: float = Query(default=5, gt=0, description="Window size in minutes."),
    session: MonitoringSession = Depends(get_session),
) -> Dict[str, Any]:
    """Average and peak rates over the last ``minutes``."""
    return session.tracker.get_performance_summary(minutes=minutes).to_dict()
