"""Ingestion router: snapshots in, tick results out; target switching."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from clusterwatch.core.session import MonitoringSession
from clusterwatch.core.snapshot import Snapshot
from clusterwatch.server.deps import get_session
from clusterwatch.server.models import SnapshotRequest, TargetRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["snapshots"])


@router.post("/snapshots")
async def ingest_snapshot(
    request: SnapshotRequest,
    session: MonitoringSession = Depends(get_session),
) -> Dict[str, Any]:
    """Run one tick with the posted snapshot.

    The tick takes the session lock, so it runs in the default executor
    rather than on the event loop.
    """
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(
        None,
        partial(
            session.tick,
            Snapshot.from_dict(request.snapshot),
            scope_label=request.scope_label,
            node_id=request.node_id,
            index_name=request.index_name,
        ),
    )
    if result is None:
        return {}
    if result.new_alerts:
        logger.info("Snapshot raised %d alert(s)", len(result.new_alerts))
    return result.to_dict()


@router.get("/target")
async def current_target(session: MonitoringSession = Depends(get_session)) -> Dict[str, Optional[str]]:
    return {"label": session.target}


@router.post("/target")
async def switch_target(
    request: TargetRequest,
    session: MonitoringSession = Depends(get_session),
) -> Dict[str, Optional[str]]:
    """Switch the monitored target; tracker data and pending dwells are dropped."""
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, session.switch_target, request.label)
    return {"label": session.target}
