"""Alert router: active alerts, history, rules and settings."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from clusterwatch.core.exceptions import AlertNotFoundError, RuleNotFoundError
from clusterwatch.core.session import MonitoringSession
from clusterwatch.server.deps import get_session
from clusterwatch.server.models import RuleUpdateRequest, SettingsUpdateRequest, SnoozeRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("/active")
async def list_active_alerts(session: MonitoringSession = Depends(get_session)) -> List[Dict[str, Any]]:
    """Active alerts, critical first."""
    return [a.to_dict() for a in session.evaluator.get_active_alerts()]


@router.get("/stats")
async def alert_stats(session: MonitoringSession = Depends(get_session)) -> Dict[str, Any]:
    return session.evaluator.get_alert_stats().to_dict()


@router.get("/history")
async def alert_history(limit: int = 100, session: MonitoringSession = Depends(get_session)) -> List[Dict[str, Any]]:
    """Alert history, newest first."""
    return [a.to_dict() for a in session.evaluator.get_alert_history()[: max(limit, 0)]]


@router.delete("/history")
async def clear_alert_history(session: MonitoringSession = Depends(get_session)) -> Dict[str, str]:
    session.evaluator.clear_alert_history()
    return {"status": "cleared"}


@router.post("/{alert_id}/snooze")
async def snooze_alert(
    alert_id: str,
    request: SnoozeRequest,
    session: MonitoringSession = Depends(get_session),
) -> Dict[str, Any]:
    """Snooze an active alert."""
    if not session.evaluator.snooze_alert(alert_id, request.minutes):
        raise AlertNotFoundError(alert_id)
    alert = session.evaluator.get_alert(alert_id)
    return alert.to_dict() if alert else {"id": alert_id}


@router.post("/{alert_id}/dismiss")
async def dismiss_alert(alert_id: str, session: MonitoringSession = Depends(get_session)) -> Dict[str, str]:
    if not session.evaluator.dismiss_alert(alert_id):
        raise AlertNotFoundError(alert_id)
    return {"status": "dismissed", "id": alert_id}


@router.get("/rules")
async def list_rules(session: MonitoringSession = Depends(get_session)) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in session.evaluator.get_rules()]


@router.patch("/rules/{rule_id}")
async def update_rule(
    rule_id: str,
    request: RuleUpdateRequest,
    session: MonitoringSession = Depends(get_session),
) -> Dict[str, Any]:
    """Apply a partial update to one rule."""
    updates = request.model_dump(exclude_unset=True)
    if not session.evaluator.update_rule(rule_id, updates):
        raise RuleNotFoundError(rule_id)
    rule = session.evaluator.get_rule(rule_id)
    return rule.to_dict() if rule else {"id": rule_id}


@router.get("/settings")
async def get_settings(session: MonitoringSession = Depends(get_session)) -> Dict[str, Any]:
    return session.evaluator.get_settings().to_dict()


@router.patch("/settings")
async def update_settings(
    request: SettingsUpdateRequest,
    session: MonitoringSession = Depends(get_session),
) -> Dict[str, Any]:
    settings = session.evaluator.update_settings(request.model_dump(exclude_unset=True))
    return settings.to_dict()


@router.post("/reset")
async def reset_to_defaults(session: MonitoringSession = Depends(get_session)) -> Dict[str, Any]:
    """Restore the default rules and settings."""
    session.evaluator.reset_to_defaults()
    logger.info("Alert configuration reset through the API")
    return {
        "rules": [r.to_dict() for r in session.evaluator.get_rules()],
        "settings": session.evaluator.get_settings().to_dict(),
    }
