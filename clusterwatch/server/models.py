"""Pydantic models for clusterwatch API requests."""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field


class SnapshotRequest(BaseModel):
    """Request model for POST /snapshots."""

    snapshot: Dict[str, Any] = Field(
        ..., description="Raw fetch result: nodeStats, indexStats, indices, health, fetchedAt."
    )
    scope_label: Optional[str] = Field(
        default=None, description="Label of the monitored target stored on new alerts."
    )
    node_id: Optional[str] = Field(default=None, description="Track a single node.")
    index_name: Optional[str] = Field(default=None, description="Track a single index.")


class TargetRequest(BaseModel):
    """Request model for POST /target."""

    label: Optional[str] = Field(default=None, description="Label of the new target.")


class SnoozeRequest(BaseModel):
    """Request model for POST /alerts/{alert_id}/snooze."""

    minutes: float = Field(default=60, gt=0, description="Snooze duration in minutes.")


class RuleUpdateRequest(BaseModel):
    """Partial rule update. Only the fields sent are applied."""

    name: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[str] = None
    threshold: Optional[Union[float, str]] = None
    unit: Optional[str] = None
    metric: Optional[str] = None
    condition: Optional[str] = None
    category: Optional[str] = None
    enabled: Optional[bool] = None
    cooldown_minutes: Optional[float] = None


class SettingsUpdateRequest(BaseModel):
    """Partial settings update. Only the fields sent are applied."""

    enabled: Optional[bool] = None
    browser_notifications: Optional[bool] = None
    sound_alerts: Optional[bool] = None
    max_history_days: Optional[int] = None
