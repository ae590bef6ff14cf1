"""Alert rule catalog, global alert settings and stored-rule migrations.

Version: 0.3.0

Rules are immutable values: runtime edits build a new rule with
:meth:`AlertRule.merged`, which validates the result the same way a rule
restored from storage is validated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from clusterwatch.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================

class AlertSeverity(str, Enum):
    """Severity levels for alerts."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertCondition(str, Enum):
    """Comparison applied between the metric value and the threshold."""

    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"


class AlertCategory(str, Enum):
    """Grouping used by stats and the dashboard."""

    CLUSTER = "cluster"
    PERFORMANCE = "performance"
    RESOURCE = "resource"
    INDEX = "index"


class MetricId(str, Enum):
    """Metrics a rule can watch. Values are the stored dotted paths."""

    CLUSTER_STATUS = "health.status"
    UNASSIGNED_SHARDS = "health.unassignedShards"
    NODE_COUNT = "health.numberOfNodes"
    CPU_USAGE = "clusterResources.cpuUsage"
    JVM_HEAP = "clusterResources.jvmHeap"
    STORAGE_PERCENT = "clusterResources.storagePercent"
    MAX_SHARD_SIZE = "indices.maxShardSize"
    MAX_DOC_COUNT = "indices.maxDocCount"
    INDEXING_RATE = "performanceMetrics.indexingRate"
    SEARCH_RATE = "performanceMetrics.searchRate"
    INDEX_LATENCY = "performanceMetrics.indexLatency"
    SEARCH_LATENCY = "performanceMetrics.searchLatency"

    @property
    def is_status(self) -> bool:
        return self is MetricId.CLUSTER_STATUS


SEVERITY_ORDER = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.INFO: 2,
}

CLUSTER_STATUS_RULE_PREFIX = "cluster-status-"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class AlertRule:
    """A threshold rule evaluated on every tick.

    Attributes:
        id: Unique, stable identifier (also the persisted key)
        name: Human-readable name shown in notifications
        description: Sentence used as the notification body
        severity: Alert severity level
        threshold: Numeric threshold, or the expected status string for
            status rules
        unit: Display unit of the metric ("%", "ms", "bytes", ...)
        metric: Metric this rule watches
        condition: Comparison between value and threshold
        category: Grouping for stats
        enabled: Disabled rules are never evaluated
        cooldown_minutes: Stored and exposed, not used for gating
    """

    id: str
    name: str
    description: str
    severity: AlertSeverity
    threshold: Union[float, str]
    unit: str
    metric: MetricId
    condition: AlertCondition
    category: AlertCategory
    enabled: bool = True
    cooldown_minutes: float = 0

    @property
    def expected_status(self) -> Optional[str]:
        """Status a status rule compares against.

        Rules stored by older releases carry a numeric threshold; the
        expected status is then taken from the ``cluster-status-<status>`` id.
        """
        if isinstance(self.threshold, str):
            return self.threshold
        if self.id.startswith(CLUSTER_STATUS_RULE_PREFIX):
            return self.id[len(CLUSTER_STATUS_RULE_PREFIX):]
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "severity": self.severity.value,
            "threshold": self.threshold,
            "unit": self.unit,
            "metric": self.metric.value,
            "condition": self.condition.value,
            "category": self.category.value,
            "enabled": self.enabled,
            "cooldown_minutes": self.cooldown_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRule":
        """Deserialize and validate.

        Raises:
            ValidationError: If a field is missing or holds an invalid value
        """
        if not isinstance(data, dict):
            raise ValidationError("Rule must be a mapping")
        rule_id = data.get("id")
        if not isinstance(rule_id, str) or not rule_id:
            raise ValidationError("Rule id must be a non-empty string")

        try:
            metric = MetricId(data.get("metric", data.get("metricPath")))
            rule = cls(
                id=rule_id,
                name=str(data.get("name", rule_id)),
                description=str(data.get("description", "")),
                severity=AlertSeverity(data.get("severity", "warning")),
                threshold=_coerce_threshold(data.get("threshold"), metric),
                unit=str(data.get("unit", "")),
                metric=metric,
                condition=AlertCondition(data.get("condition", "greater_than")),
                category=AlertCategory(data.get("category", "cluster")),
                enabled=_coerce_bool(data.get("enabled", True), "enabled"),
                cooldown_minutes=_coerce_cooldown(data.get("cooldown_minutes", data.get("cooldownMinutes", 0))),
            )
        except ValueError as e:
            raise ValidationError(f"Invalid rule {rule_id}: {e}", details={"rule_id": rule_id}) from e

        if isinstance(rule.threshold, str) and rule.condition not in (
            AlertCondition.EQUALS,
            AlertCondition.NOT_EQUALS,
        ):
            raise ValidationError(
                f"Rule {rule_id}: status thresholds only support equals/not_equals",
                details={"rule_id": rule_id},
            )
        return rule

    def merged(self, updates: Dict[str, Any]) -> "AlertRule":
        """Return a copy with ``updates`` applied. The id cannot change."""
        data = self.to_dict()
        data.update({k: v for k, v in updates.items() if k != "id"})
        return AlertRule.from_dict(data)


def _coerce_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"{name} must be a boolean")


def _coerce_cooldown(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError("cooldown_minutes must be a non-negative number")
    return value


def _coerce_threshold(value: Any, metric: MetricId) -> Union[float, str]:
    if metric.is_status:
        # Legacy numeric thresholds are resolved through the rule id
        if isinstance(value, str):
            return value.lower()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise ValueError("status threshold must be a status string")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("threshold must be a number")
    return float(value)


@dataclass(frozen=True)
class AlertSettings:
    """Global switches for the alert evaluator."""

    enabled: bool = True
    browser_notifications: bool = True
    sound_alerts: bool = False
    max_history_days: int = 30

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "enabled": self.enabled,
            "browser_notifications": self.browser_notifications,
            "sound_alerts": self.sound_alerts,
            "max_history_days": self.max_history_days,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["AlertSettings"] = None) -> "AlertSettings":
        """Build settings from ``data``, taking missing keys from ``base``.

        Raises:
            ValidationError: If a value has the wrong type or range
        """
        base = base or cls()
        aliases = {
            "browserNotifications": "browser_notifications",
            "soundAlerts": "sound_alerts",
            "maxHistoryDays": "max_history_days",
        }
        values = base.to_dict()
        for key, value in data.items():
            key = aliases.get(key, key)
            if key in values:
                values[key] = value

        for key in ("enabled", "browser_notifications", "sound_alerts"):
            if not isinstance(values[key], bool):
                raise ValidationError(f"{key} must be a boolean", details={"field": key})
        days = values["max_history_days"]
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise ValidationError("max_history_days must be a positive integer", details={"field": "max_history_days"})
        return cls(**values)


# =============================================================================
# Default Catalog
# =============================================================================

GIB = 1024 ** 3

DEFAULT_ALERT_SETTINGS = AlertSettings()

DEFAULT_ALERT_RULES: List[AlertRule] = [
    # Critical
    AlertRule(
        id="cluster-status-red",
        name="Cluster Status Critical",
        description="Cluster status is red - immediate attention required",
        severity=AlertSeverity.CRITICAL,
        threshold="red",
        unit="status",
        metric=MetricId.CLUSTER_STATUS,
        condition=AlertCondition.EQUALS,
        category=AlertCategory.CLUSTER,
    ),
    AlertRule(
        id="critical-jvm-heap",
        name="Critical JVM Heap Usage",
        description="JVM heap usage is critically high - risk of OutOfMemoryError",
        severity=AlertSeverity.CRITICAL,
        threshold=85.0,
        unit="%",
        metric=MetricId.JVM_HEAP,
        condition=AlertCondition.GREATER_THAN,
        category=AlertCategory.RESOURCE,
    ),
    AlertRule(
        id="low-disk-space",
        name="Low Disk Space",
        description="Cluster storage usage is critically high - risk of readonly mode",
        severity=AlertSeverity.CRITICAL,
        threshold=90.0,
        unit="%",
        metric=MetricId.STORAGE_PERCENT,
        condition=AlertCondition.GREATER_THAN,
        category=AlertCategory.RESOURCE,
    ),
    AlertRule(
        id="high-cpu-usage",
        name="Critical CPU Usage",
        description="CPU usage is critically high - performance can be impacted",
        severity=AlertSeverity.CRITICAL,
        threshold=90.0,
        unit="%",
        metric=MetricId.CPU_USAGE,
        condition=AlertCondition.GREATER_THAN,
        category=AlertCategory.RESOURCE,
    ),
    AlertRule(
        id="slow-search-critical",
        name="Slow Search Performance",
        description="Search latency is critically high - user experience can be impacted",
        severity=AlertSeverity.CRITICAL,
        threshold=1000.0,
        unit="ms",
        metric=MetricId.SEARCH_LATENCY,
        condition=AlertCondition.GREATER_THAN,
        category=AlertCategory.PERFORMANCE,
    ),
    # Warning
    AlertRule(
        id="cluster-status-yellow",
        name="Cluster Status Warning",
        description="Cluster status is yellow - some issues detected",
        severity=AlertSeverity.WARNING,
        threshold="yellow",
        unit="status",
        metric=MetricId.CLUSTER_STATUS,
        condition=AlertCondition.EQUALS,
        category=AlertCategory.CLUSTER,
    ),
    AlertRule(
        id="high-jvm-heap",
        name="High JVM Heap Usage",
        description="JVM heap usage is getting high - monitor closely",
        severity=AlertSeverity.WARNING,
        threshold=75.0,
        unit="%",
        metric=MetricId.JVM_HEAP,
        condition=AlertCondition.GREATER_THAN,
        category=AlertCategory.RESOURCE,
    ),
    AlertRule(
        id="high-disk-usage",
        name="High Disk Usage",
        description="Storage usage is getting high - consider cleanup or expansion",
        severity=AlertSeverity.WARNING,
        threshold=80.0,
        unit="%",
        metric=MetricId.STORAGE_PERCENT,
        condition=AlertCondition.GREATER_THAN,
        category=AlertCategory.RESOURCE,
    ),
    AlertRule(
        id="high-cpu-load",
        name="High CPU Load",
        description="CPU usage is high - performance may be impacted",
        severity=AlertSeverity.WARNING,
        threshold=80.0,
        unit="%",
        metric=MetricId.CPU_USAGE,
        condition=AlertCondition.GREATER_THAN,
        category=AlertCategory.RESOURCE,
    ),
    AlertRule(
        id="slow-indexing",
        name="Slow Indexing Performance",
        description="Index latency is high - indexing performance degraded",
        severity=AlertSeverity.WARNING,
        threshold=500.0,
        unit="ms",
        metric=MetricId.INDEX_LATENCY,
        condition=AlertCondition.GREATER_THAN,
        category=AlertCategory.PERFORMANCE,
    ),
    AlertRule(
        id="large-shard-size",
        name="Large Shard Size Detected",
        description="One or more indices have very large shards - consider reindexing",
        severity=AlertSeverity.WARNING,
        threshold=float(50 * GIB),
        unit="bytes",
        metric=MetricId.MAX_SHARD_SIZE,
        condition=AlertCondition.GREATER_THAN,
        category=AlertCategory.INDEX,
    ),
    # Info
    AlertRule(
        id="no-indexing-activity",
        name="No Indexing Activity",
        description="No indexing operations detected - verify if this is expected",
        severity=AlertSeverity.INFO,
        threshold=0.0,
        unit="ops/sec",
        metric=MetricId.INDEXING_RATE,
        condition=AlertCondition.EQUALS,
        category=AlertCategory.PERFORMANCE,
    ),
    AlertRule(
        id="no-search-activity",
        name="No Search Activity",
        description="No search activity detected - verify if this is expected",
        severity=AlertSeverity.INFO,
        threshold=0.0,
        unit="ops/sec",
        metric=MetricId.SEARCH_RATE,
        condition=AlertCondition.LESS_THAN,
        category=AlertCategory.PERFORMANCE,
    ),
]


def default_rules() -> List[AlertRule]:
    """A fresh copy of the default catalog."""
    return list(DEFAULT_ALERT_RULES)


# =============================================================================
# Migrations
# =============================================================================

RETIRED_RULE_IDS = {"high-document-count"}
RETIRED_RULE_NAMES = {"High Document Count"}

# (old id, old name) -> (new id, new name)
RENAMED_RULES = {
    ("medium-disk-usage", "Medium Disk Usage"): ("high-disk-usage", "High Disk Usage"),
    ("low-search-activity", "Low Search Activity"): ("no-search-activity", "No Search Activity"),
}


def _renamed(rule_id: Any, name: Any) -> Optional[tuple]:
    for (old_id, old_name), target in RENAMED_RULES.items():
        if rule_id == old_id or name == old_name:
            return target
    return None


def migrate_rule_records(records: Iterable[Any], id_key: str = "id", name_key: str = "name") -> List[Dict[str, Any]]:
    """Drop retired rules and rename moved ones in raw stored records.

    Works for both rule records (``id``/``name``) and alert history records
    (``rule_id``/``rule_name``).
    """
    migrated = []
    for record in records:
        if not isinstance(record, dict):
            continue
        if record.get(id_key) in RETIRED_RULE_IDS or record.get(name_key) in RETIRED_RULE_NAMES:
            logger.info("Dropping retired rule record %s", record.get(id_key))
            continue
        rename = _renamed(record.get(id_key), record.get(name_key))
        if rename:
            record = {**record, id_key: rename[0], name_key: rename[1]}
        migrated.append(record)
    return migrated


def restore_rules(records: Any) -> List[AlertRule]:
    """Turn stored rule records into the live catalog.

    Migrates ids, drops records that fail validation, keeps the first record
    per id, appends defaults that are missing from storage and converts
    legacy numeric thresholds on status rules to their expected status.
    """
    if not isinstance(records, list):
        return default_rules()

    rules: List[AlertRule] = []
    seen = set()
    for record in migrate_rule_records(records):
        try:
            rule = AlertRule.from_dict(record)
        except ValidationError as e:
            logger.warning("Skipping stored rule: %s", e)
            continue
        if rule.id in seen:
            logger.warning("Skipping duplicate stored rule %s", rule.id)
            continue
        seen.add(rule.id)
        if rule.metric.is_status and not isinstance(rule.threshold, str):
            expected = rule.expected_status
            if expected is None:
                logger.warning("Skipping status rule %s without an expected status", rule.id)
                continue
            rule = replace(rule, threshold=expected)
        rules.append(rule)

    for default in DEFAULT_ALERT_RULES:
        if default.id not in seen:
            logger.info("Adding new default rule %s", default.id)
            rules.append(default)
    return rules
