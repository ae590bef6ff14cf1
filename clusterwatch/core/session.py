"""Monitoring session: one tracker and one evaluator driven tick by tick.

Version: 0.3.0
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from clusterwatch.config import ClusterwatchConfig
from clusterwatch.core.alerting import AlertEvaluator, AlertInstance, AlertStats, Notifier
from clusterwatch.core.rules import AlertSettings
from clusterwatch.core.snapshot import PerformanceMetrics, Snapshot
from clusterwatch.core.storage import JsonFileStore, KeyValueStore, MemoryStore
from clusterwatch.core.tracker import MetricsTracker

logger = logging.getLogger(__name__)

NOTIFIER_CLOSE_TIMEOUT = 10.0


@dataclass
class TickResult:
    """Everything one tick produced."""

    metrics: PerformanceMetrics
    new_alerts: List[AlertInstance]
    active_alerts: List[AlertInstance]
    stats: AlertStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metrics": self.metrics.to_dict(),
            "new_alerts": [a.to_dict() for a in self.new_alerts],
            "active_alerts": [a.to_dict() for a in self.active_alerts],
            "stats": self.stats.to_dict(),
        }


def build_store(config: ClusterwatchConfig, root_path: Optional[Path] = None) -> KeyValueStore:
    """Store described by ``config.storage``; in-memory when no path is set."""
    if not config.storage.path:
        return MemoryStore()
    path = Path(config.storage.path)
    if not path.is_absolute() and root_path is not None:
        path = root_path / path
    return JsonFileStore(path)


class MonitoringSession:
    """Owns the tracker and the evaluator for one monitored target.

    Ticks, target switches and the tracker's background sweep all run under
    one re-entrant lock, so a switch never interleaves with a tick.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[ClusterwatchConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or ClusterwatchConfig()
        self.store = store if store is not None else MemoryStore()
        self._lock = threading.RLock()
        self._switch_hooks: List[Callable[[], None]] = []
        self.notifier = notifier
        self.target: Optional[str] = None

        tracker_cfg = self.config.tracker
        self.tracker = MetricsTracker(
            store=self.store,
            clock=clock,
            max_history=tracker_cfg.max_history,
            max_chart_points=tracker_cfg.max_chart_points,
            min_interval_seconds=tracker_cfg.min_interval_seconds,
            max_rate_per_sec=tracker_cfg.max_rate_per_sec,
            max_latency_ms=tracker_cfg.max_latency_ms,
            retention_seconds=tracker_cfg.retention_seconds,
            cleanup_interval_seconds=tracker_cfg.cleanup_interval_seconds,
            lock=self._lock,
        )

        alerting_cfg = self.config.alerting
        self.evaluator = AlertEvaluator(
            store=self.store,
            notifier=notifier,
            clock=clock,
            dwell_seconds=alerting_cfg.dwell_seconds,
            default_settings=AlertSettings(
                enabled=alerting_cfg.enabled,
                browser_notifications=alerting_cfg.browser_notifications,
                sound_alerts=alerting_cfg.sound_alerts,
                max_history_days=alerting_cfg.max_history_days,
            ),
            lock=self._lock,
        )

    def tick(
        self,
        snapshot: Union[Snapshot, Dict[str, Any], None],
        scope_label: Optional[str] = None,
        node_id: Optional[str] = None,
        index_name: Optional[str] = None,
    ) -> Optional[TickResult]:
        """Track one snapshot, then evaluate alerts against it.

        Args:
            snapshot: A :class:`Snapshot` or the raw fetch result; None is a no-op
            scope_label: Label of the monitored target (defaults to the
                current target)
            node_id: Track a single node
            index_name: Track a single index

        Returns:
            The tick result, or None when no snapshot was given
        """
        if snapshot is None:
            return None
        if isinstance(snapshot, dict):
            snapshot = Snapshot.from_dict(snapshot)

        with self._lock:
            metrics = self.tracker.add_snapshot(snapshot, node_id=node_id, index_name=index_name)
            enriched = replace(snapshot, performance_metrics=metrics)
            label = scope_label or self.target
            if label is None and snapshot.health is not None and snapshot.health.cluster_name:
                label = snapshot.health.cluster_name
            new_alerts = self.evaluator.evaluate_alerts(enriched, scope_label=label)
            return TickResult(
                metrics=metrics,
                new_alerts=new_alerts,
                active_alerts=self.evaluator.get_active_alerts(),
                stats=self.evaluator.get_alert_stats(),
            )

    def on_target_switch(self, hook: Callable[[], None]) -> Callable[[], None]:
        """Register a hook run on every target switch, e.g. to cancel fetches.

        Returns the hook so this can be used as a decorator.
        """
        self._switch_hooks.append(hook)
        return hook

    def switch_target(self, label: Optional[str]) -> None:
        """Point the session at another target and drop per-target state."""
        with self._lock:
            for hook in list(self._switch_hooks):
                try:
                    hook()
                except Exception as e:
                    logger.error("Target switch hook failed: %s", e)
            self.tracker.clear_data()
            self.evaluator.reset_pending()
            previous, self.target = self.target, label
        logger.info("Switched target from %s to %s", previous, label)

    def start(self) -> None:
        self.tracker.start()

    def stop(self) -> None:
        self.tracker.stop()
        # let queued notifications go out before shutdown
        if hasattr(self.notifier, "close"):
            self.notifier.close(NOTIFIER_CLOSE_TIMEOUT)

    def __enter__(self) -> "MonitoringSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
