"""Alert evaluator for cluster snapshots.

Version: 0.3.0

This module evaluates the rule catalog against every snapshot and manages
the lifecycle of the resulting alerts.

Features:
- One live alert slot per rule id
- 30 second dwell before a new alert is raised
- Automatic resolution when the condition clears, reactivation when it
  comes back
- Snooze and dismissal
- History bounded by age, statistics, persistence of rules/settings/history
- Notification of critical alerts through an injected callable

Usage:
    from clusterwatch.core.alerting import AlertEvaluator

    evaluator = AlertEvaluator(store=MemoryStore(), notifier=my_notify)
    new_alerts = evaluator.evaluate_alerts(snapshot, scope_label="prod")
    for alert in evaluator.get_active_alerts():
        ...
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import uuid4

from clusterwatch.core.exceptions import ValidationError
from clusterwatch.core.resolvers import evaluate_condition, format_alert_value, resolve_metric
from clusterwatch.core.rules import (
    DEFAULT_ALERT_SETTINGS,
    SEVERITY_ORDER,
    AlertCategory,
    AlertRule,
    AlertSettings,
    AlertSeverity,
    default_rules,
    migrate_rule_records,
    restore_rules,
)
from clusterwatch.core.snapshot import Snapshot, parse_timestamp
from clusterwatch.core.storage import KeyValueStore, load_json, save_json

logger = logging.getLogger(__name__)

RULES_KEY = "rules"
SETTINGS_KEY = "settings"
HISTORY_KEY = "history"

DEFAULT_DWELL_SECONDS = 30.0
SECONDS_PER_DAY = 24 * 60 * 60

# notify(title, body, *, tag, require_interaction)
Notifier = Callable[..., None]


# =============================================================================
# Enums
# =============================================================================

class AlertStatus(str, Enum):
    """State of an alert instance."""

    ACTIVE = "active"
    RESOLVED = "resolved"
    SNOOZED = "snoozed"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class AlertInstance:
    """A raised alert. At most one instance per rule is live at a time.

    Attributes:
        id: Unique identifier for this alert instance
        rule_id: ID of the rule that raised the alert
        rule_name: Name of that rule at the time the alert was raised
        severity: Alert severity
        status: Current state of the alert
        message: Short alert message
        description: Longer explanation taken from the rule
        current_value: Latest metric value while the condition held
        threshold: Rule threshold when the alert was raised
        unit: Display unit of the value
        triggered_at: When the alert last became active (epoch seconds)
        first_triggered_at: When the alert was first raised
        count: How many times the alert became active
        resolved_at: When the condition last cleared
        snoozed_until: End of the snooze window
        category: Rule category
        cluster_name: Scope label of the monitored target
    """

    id: str
    rule_id: str
    rule_name: str
    severity: AlertSeverity
    message: str
    description: str
    current_value: Union[float, str]
    threshold: Union[float, str]
    unit: str
    triggered_at: float
    first_triggered_at: float
    category: AlertCategory
    status: AlertStatus = AlertStatus.ACTIVE
    count: int = 1
    resolved_at: Optional[float] = None
    snoozed_until: Optional[float] = None
    cluster_name: Optional[str] = None
    node_id: Optional[str] = None
    index_name: Optional[str] = None

    def activate(self, now: float) -> None:
        """Bring a resolved or snoozed alert back to active."""
        self.status = AlertStatus.ACTIVE
        self.resolved_at = None
        self.snoozed_until = None
        self.triggered_at = now
        self.count += 1

    def resolve(self, now: float) -> None:
        """Mark this alert as resolved."""
        self.status = AlertStatus.RESOLVED
        self.resolved_at = now

    def snooze(self, until: float) -> None:
        self.status = AlertStatus.SNOOZED
        self.snoozed_until = until

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "severity": self.severity.value,
            "status": self.status.value,
            "message": self.message,
            "description": self.description,
            "current_value": self.current_value,
            "threshold": self.threshold,
            "unit": self.unit,
            "triggered_at": self.triggered_at,
            "first_triggered_at": self.first_triggered_at,
            "count": self.count,
            "resolved_at": self.resolved_at,
            "snoozed_until": self.snoozed_until,
            "category": self.category.value,
            "cluster_name": self.cluster_name,
            "node_id": self.node_id,
            "index_name": self.index_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertInstance":
        """Deserialize from dictionary.

        Raises:
            ValueError: If a required field is missing or invalid
        """
        triggered_at = parse_timestamp(data.get("triggered_at"))
        if triggered_at is None:
            raise ValueError("alert without triggered_at")
        first_triggered_at = parse_timestamp(data.get("first_triggered_at"))
        return cls(
            id=str(data["id"]),
            rule_id=str(data["rule_id"]),
            rule_name=str(data.get("rule_name", data["rule_id"])),
            severity=AlertSeverity(data.get("severity", "warning")),
            status=AlertStatus(data.get("status", "active")),
            message=str(data.get("message", "")),
            description=str(data.get("description", "")),
            current_value=data.get("current_value", 0),
            threshold=data.get("threshold", 0),
            unit=str(data.get("unit", "")),
            triggered_at=triggered_at,
            first_triggered_at=first_triggered_at if first_triggered_at is not None else triggered_at,
            count=int(data.get("count") or 1),
            resolved_at=parse_timestamp(data.get("resolved_at")),
            snoozed_until=parse_timestamp(data.get("snoozed_until")),
            category=AlertCategory(data.get("category", "cluster")),
            cluster_name=data.get("cluster_name"),
            node_id=data.get("node_id"),
            index_name=data.get("index_name"),
        )


@dataclass
class AlertStats:
    """Counts over history (total/resolved/snoozed) and active alerts."""

    total: int = 0
    active: int = 0
    resolved: int = 0
    snoozed: int = 0
    by_severity: Dict[str, int] = field(default_factory=lambda: {s.value: 0 for s in AlertSeverity})
    by_category: Dict[str, int] = field(default_factory=lambda: {c.value: 0 for c in AlertCategory})

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "total": self.total,
            "active": self.active,
            "resolved": self.resolved,
            "snoozed": self.snoozed,
            "by_severity": dict(self.by_severity),
            "by_category": dict(self.by_category),
        }


@dataclass(frozen=True)
class DwellState:
    """Debounce state of one rule: idle, or pending since a timestamp."""

    since: Optional[float] = None

    @property
    def is_pending(self) -> bool:
        return self.since is not None

    def observe(self, now: float) -> "DwellState":
        """The condition holds at ``now``. Idle becomes pending."""
        return self if self.is_pending else DwellState(since=now)

    def elapsed(self, now: float) -> float:
        return now - self.since if self.since is not None else 0.0


# =============================================================================
# Alert Evaluator
# =============================================================================

class AlertEvaluator:
    """Evaluates rules against snapshots and manages the alert lifecycle.

    This class handles:
    - Metric resolution and condition checks for every enabled rule
    - Dwell-then-trigger creation of alerts
    - Resolution, reactivation, snooze and dismissal
    - Rules, settings and history persistence with id migrations

    The public API does not raise for unknown ids; it logs and returns False.
    Invalid rule or settings values raise :class:`ValidationError`.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time,
        dwell_seconds: float = DEFAULT_DWELL_SECONDS,
        default_settings: Optional[AlertSettings] = None,
        lock: Optional[threading.RLock] = None,
    ):
        """Initialize the evaluator and restore persisted state.

        Args:
            store: Key-value store for the rules, settings and history keys
            notifier: Called for critical alerts when notifications are on
            clock: Returns the current epoch time in seconds
            dwell_seconds: How long a condition must hold before alerting
            default_settings: Settings used when none are stored and on reset
            lock: Lock shared with the owning session
        """
        self._store = store
        self._notifier = notifier
        self._clock = clock
        self._dwell_seconds = dwell_seconds
        self._default_settings = default_settings or DEFAULT_ALERT_SETTINGS
        self._lock = lock or threading.RLock()

        self._rules: List[AlertRule] = default_rules()
        self._settings: AlertSettings = self._default_settings
        self._history: List[AlertInstance] = []
        self._slots: Dict[str, AlertInstance] = {}  # rule_id -> live alert
        self._dwell: Dict[str, DwellState] = {}  # rule_id -> pending state

        self._load_state()
        logger.debug(
            "AlertEvaluator initialized (%d rules, dwell=%.1fs)",
            len(self._rules),
            dwell_seconds,
        )

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate_alerts(self, snapshot: Snapshot, scope_label: Optional[str] = None) -> List[AlertInstance]:
        """Evaluate every enabled rule against ``snapshot``.

        Args:
            snapshot: Snapshot with performance metrics attached
            scope_label: Label of the monitored target, stored on new alerts

        Returns:
            Alerts created or reactivated by this evaluation
        """
        with self._lock:
            if not self._settings.enabled:
                return []

            now = self._clock()
            emitted: List[AlertInstance] = []

            for rule in self._rules:
                if not rule.enabled:
                    continue
                value = resolve_metric(snapshot, rule.metric)
                if value is None:
                    continue

                if evaluate_condition(rule, value):
                    alert = self._on_condition_held(rule, value, now, scope_label)
                    if alert is not None:
                        emitted.append(alert)
                else:
                    self._on_condition_cleared(rule, now)

            self._prune_history(now)
            self._persist_state()
            notify = self._settings.browser_notifications

        # delivery happens outside the lock
        for alert in emitted:
            if notify:
                self._notify(alert)
            logger.warning(
                "Alert %s: %s (value %s, threshold %s)",
                alert.id,
                alert.rule_name,
                alert.current_value,
                alert.threshold,
            )
        return emitted

    def _on_condition_held(
        self,
        rule: AlertRule,
        value: Union[float, str],
        now: float,
        scope_label: Optional[str],
    ) -> Optional[AlertInstance]:
        alert = self._slots.get(rule.id)
        if alert is not None:
            alert.current_value = value
            if alert.status == AlertStatus.ACTIVE:
                return None
            alert.activate(now)
            return alert

        dwell = self._dwell.get(rule.id, DwellState()).observe(now)
        if dwell.elapsed(now) < self._dwell_seconds:
            self._dwell[rule.id] = dwell
            return None

        self._dwell.pop(rule.id, None)
        alert = self._create_alert(rule, value, now, scope_label)
        self._slots[rule.id] = alert
        self._history.insert(0, alert)
        return alert

    def _on_condition_cleared(self, rule: AlertRule, now: float) -> None:
        self._dwell.pop(rule.id, None)
        alert = self._slots.get(rule.id)
        if alert is not None and alert.status == AlertStatus.ACTIVE:
            alert.resolve(now)
            logger.info("Alert resolved: %s (%s)", alert.id, rule.name)

    def _create_alert(
        self,
        rule: AlertRule,
        value: Union[float, str],
        now: float,
        scope_label: Optional[str],
    ) -> AlertInstance:
        return AlertInstance(
            id=f"{rule.id}-{uuid4().hex[:8]}",
            rule_id=rule.id,
            rule_name=rule.name,
            severity=rule.severity,
            message=rule.name,
            description=rule.description,
            current_value=value,
            threshold=rule.threshold,
            unit=rule.unit,
            triggered_at=now,
            first_triggered_at=now,
            category=rule.category,
            cluster_name=scope_label,
        )

    def _notify(self, alert: AlertInstance) -> None:
        if self._notifier is None or alert.severity != AlertSeverity.CRITICAL:
            return
        try:
            self._notifier(
                f"Cluster Alert: {alert.rule_name}",
                f"{alert.description}\nCurrent: {format_alert_value(alert.current_value, alert.unit)}",
                tag=f"cluster-alert-{alert.rule_id}",
                require_interaction=True,
            )
        except Exception as e:
            logger.error("Failed to send alert notification: %s", e)

    def reset_pending(self) -> None:
        """Forget every pending dwell, e.g. when the monitored target changes."""
        with self._lock:
            self._dwell.clear()
        logger.debug("Cleared pending alert conditions")

    # -------------------------------------------------------------------------
    # Alert Management
    # -------------------------------------------------------------------------

    def _find_alert(self, alert_id: str) -> Optional[AlertInstance]:
        for alert in self._slots.values():
            if alert.id == alert_id:
                return alert
        return None

    def get_alert(self, alert_id: str) -> Optional[AlertInstance]:
        """Return the live alert with ``alert_id``, if any."""
        with self._lock:
            return self._find_alert(alert_id)

    def get_active_alerts(self) -> List[AlertInstance]:
        """Active alerts, critical first, then most recently triggered."""
        with self._lock:
            active = [a for a in self._slots.values() if a.status == AlertStatus.ACTIVE]
        return sorted(active, key=lambda a: (SEVERITY_ORDER[a.severity], -a.triggered_at))

    def get_alert_stats(self) -> AlertStats:
        """Counts from history plus breakdowns of the active alerts."""
        active = self.get_active_alerts()
        with self._lock:
            history = list(self._history)

        stats = AlertStats(
            total=len(history),
            active=len(active),
            resolved=sum(1 for a in history if a.status == AlertStatus.RESOLVED),
            snoozed=sum(1 for a in history if a.status == AlertStatus.SNOOZED),
        )
        for alert in active:
            stats.by_severity[alert.severity.value] += 1
            stats.by_category[alert.category.value] += 1
        return stats

    def snooze_alert(self, alert_id: str, minutes: float) -> bool:
        """Snooze an active alert for ``minutes``.

        Returns:
            True if the alert was snoozed

        Raises:
            ValidationError: If ``minutes`` is not positive
        """
        if isinstance(minutes, bool) or not isinstance(minutes, (int, float)) or minutes <= 0:
            raise ValidationError("Snooze duration must be a positive number of minutes")
        with self._lock:
            alert = self._find_alert(alert_id)
            if alert is None or alert.status != AlertStatus.ACTIVE:
                logger.info("Cannot snooze %s: no active alert with that id", alert_id)
                return False
            alert.snooze(self._clock() + minutes * 60)
            self._persist_state()
        logger.info("Snoozed alert %s for %s minutes", alert_id, minutes)
        return True

    def dismiss_alert(self, alert_id: str) -> bool:
        """Remove an alert from its live slot. History is kept.

        Returns:
            True if the alert was dismissed
        """
        with self._lock:
            alert = self._find_alert(alert_id)
            if alert is None:
                logger.info("Cannot dismiss %s: no live alert with that id", alert_id)
                return False
            del self._slots[alert.rule_id]
            self._persist_state()
        logger.info("Dismissed alert %s", alert_id)
        return True

    def get_alert_history(self) -> List[AlertInstance]:
        """Past and present alerts, newest first."""
        with self._lock:
            return list(self._history)

    def clear_alert_history(self) -> None:
        with self._lock:
            self._history = []
            self._persist_state()
        logger.info("Cleared alert history")

    def _prune_history(self, now: float) -> None:
        cutoff = now - self._settings.max_history_days * SECONDS_PER_DAY
        kept = [a for a in self._history if a.triggered_at > cutoff]
        if len(kept) != len(self._history):
            logger.debug("Pruned %d old alerts from history", len(self._history) - len(kept))
            self._history = kept

    # -------------------------------------------------------------------------
    # Rules & Settings
    # -------------------------------------------------------------------------

    def get_rules(self) -> List[AlertRule]:
        with self._lock:
            return list(self._rules)

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        with self._lock:
            return next((r for r in self._rules if r.id == rule_id), None)

    def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> bool:
        """Merge ``updates`` into the rule with ``rule_id``.

        Disabling a rule drops its pending dwell and resolves its active
        alert, since a disabled rule is no longer evaluated.

        Returns:
            True if the rule exists and was updated

        Raises:
            ValidationError: If the merged rule is invalid
        """
        with self._lock:
            for index, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    break
            else:
                logger.info("Cannot update unknown rule %s", rule_id)
                return False

            updated = rule.merged(updates)
            self._rules[index] = updated
            if not updated.enabled:
                self._on_condition_cleared(updated, self._clock())
            self._persist_state()
        logger.info("Updated rule %s: %s", rule_id, ", ".join(sorted(updates)))
        return True

    def get_settings(self) -> AlertSettings:
        with self._lock:
            return self._settings

    def update_settings(self, updates: Dict[str, Any]) -> AlertSettings:
        """Merge ``updates`` into the settings and return the result.

        Raises:
            ValidationError: If a value has the wrong type or range
        """
        with self._lock:
            self._settings = AlertSettings.from_dict(updates, base=self._settings)
            self._prune_history(self._clock())
            self._persist_state()
            settings = self._settings
        logger.info("Updated alert settings: %s", ", ".join(sorted(updates)))
        return settings

    def reset_to_defaults(self) -> None:
        """Restore the default catalog and settings. Live alerts are kept."""
        with self._lock:
            self._rules = default_rules()
            self._settings = self._default_settings
            self._dwell.clear()
            self._persist_state()
        logger.info("Alert rules and settings reset to defaults")

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _persist_state(self) -> None:
        """Persist rules, settings and history. Failures are logged."""
        save_json(self._store, RULES_KEY, [r.to_dict() for r in self._rules])
        save_json(self._store, SETTINGS_KEY, self._settings.to_dict())
        save_json(self._store, HISTORY_KEY, [a.to_dict() for a in self._history])

    def _load_state(self) -> None:
        """Restore rules, settings and history, migrating legacy records."""
        if self._store is None:
            return

        stored_rules = load_json(self._store, RULES_KEY)
        if stored_rules is not None:
            self._rules = restore_rules(stored_rules)

        stored_settings = load_json(self._store, SETTINGS_KEY)
        if isinstance(stored_settings, dict):
            try:
                self._settings = AlertSettings.from_dict(stored_settings, base=self._default_settings)
            except ValidationError as e:
                logger.warning("Ignoring stored alert settings: %s", e)

        stored_history = load_json(self._store, HISTORY_KEY)
        if isinstance(stored_history, list):
            records = migrate_rule_records(
                stored_history,
                id_key="rule_id",
                name_key="rule_name",
            )
            for data in records:
                try:
                    self._history.append(AlertInstance.from_dict(data))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("Failed to load alert: %s", e)

        self._prune_history(self._clock())
        logger.info(
            "Loaded %d rules and %d historical alerts",
            len(self._rules),
            len(self._history),
        )
