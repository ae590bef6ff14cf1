"""Metrics tracker turning cumulative counters into rates and latencies.

Version: 0.3.0

Each snapshot contributes one :class:`HistoryEntry` of cumulative counters.
The latest two entries give the instantaneous indexing/search rate
(ops/sec) and the average latency (ms) over that interval, which is also
appended to a bounded chart buffer.

Usage:
    from clusterwatch.core.tracker import MetricsTracker

    tracker = MetricsTracker(store=MemoryStore())
    metrics = tracker.add_snapshot(snapshot)
    summary = tracker.get_performance_summary(minutes=5)
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

from clusterwatch.core.snapshot import PerformanceMetrics, Snapshot
from clusterwatch.core.storage import KeyValueStore, delete_key, load_json, save_json

logger = logging.getLogger(__name__)

STORAGE_KEY = "performance-history"

DEFAULT_MAX_HISTORY = 120
DEFAULT_MAX_CHART_POINTS = 60
MIN_TIME_DIFF_SECONDS = 1.0
MAX_RATE_PER_SEC = 50_000_000
MAX_LATENCY_MS = 300_000
RETENTION_SECONDS = 10 * 60
CLEANUP_INTERVAL_SECONDS = 5 * 60


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class HistoryEntry:
    """Cumulative counters captured at ``timestamp`` (epoch seconds)."""

    timestamp: float
    total_indexing_ops: float = 0.0
    total_search_ops: float = 0.0
    total_index_time_ms: float = 0.0
    total_search_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        """Serialize to dictionary."""
        return {
            "timestamp": self.timestamp,
            "total_indexing_ops": self.total_indexing_ops,
            "total_search_ops": self.total_search_ops,
            "total_index_time_ms": self.total_index_time_ms,
            "total_search_time_ms": self.total_search_time_ms,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["HistoryEntry"]:
        """Deserialize a stored entry, or None when it is unusable."""
        if not isinstance(data, dict):
            return None
        timestamp = _finite(data.get("timestamp"))
        indexing = _finite(data.get("total_indexing_ops"))
        search = _finite(data.get("total_search_ops"))
        if timestamp is None or indexing is None or search is None:
            return None
        return cls(
            timestamp=timestamp,
            total_indexing_ops=indexing,
            total_search_ops=search,
            total_index_time_ms=_finite(data.get("total_index_time_ms")) or 0.0,
            total_search_time_ms=_finite(data.get("total_search_time_ms")) or 0.0,
        )


@dataclass(frozen=True)
class ChartPoint:
    """Derived metrics for the interval ending at ``timestamp``."""

    timestamp: float
    indexing_rate: float = 0.0
    search_rate: float = 0.0
    index_latency_ms: float = 0.0
    search_latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        """Serialize to dictionary."""
        return {
            "timestamp": self.timestamp,
            "indexing_rate": self.indexing_rate,
            "search_rate": self.search_rate,
            "index_latency_ms": self.index_latency_ms,
            "search_latency_ms": self.search_latency_ms,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ChartPoint"]:
        if not isinstance(data, dict):
            return None
        timestamp = _finite(data.get("timestamp"))
        indexing = _finite(data.get("indexing_rate"))
        search = _finite(data.get("search_rate"))
        if timestamp is None or indexing is None or search is None:
            return None
        return cls(
            timestamp=timestamp,
            indexing_rate=indexing,
            search_rate=search,
            index_latency_ms=_finite(data.get("index_latency_ms")) or 0.0,
            search_latency_ms=_finite(data.get("search_latency_ms")) or 0.0,
        )

    @classmethod
    def from_metrics(cls, timestamp: float, metrics: PerformanceMetrics) -> "ChartPoint":
        return cls(
            timestamp=timestamp,
            indexing_rate=metrics.indexing_rate,
            search_rate=metrics.search_rate,
            index_latency_ms=metrics.index_latency_ms,
            search_latency_ms=metrics.search_latency_ms,
        )


@dataclass(frozen=True)
class PerformanceSummary:
    """Average and peak rates over a recent window of chart points."""

    avg_indexing_rate: float = 0.0
    peak_indexing_rate: float = 0.0
    avg_search_rate: float = 0.0
    peak_search_rate: float = 0.0
    points: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "avg_indexing_rate": self.avg_indexing_rate,
            "peak_indexing_rate": self.peak_indexing_rate,
            "avg_search_rate": self.avg_search_rate,
            "peak_search_rate": self.peak_search_rate,
            "points": self.points,
        }


# =============================================================================
# Metrics Tracker
# =============================================================================

class MetricsTracker:
    """Bounded history of counter snapshots and the rates derived from them.

    Thread-safe: every public method runs under ``lock``. The session passes
    its own re-entrant lock so that ticks and the background sweep never
    interleave.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
        max_history: int = DEFAULT_MAX_HISTORY,
        max_chart_points: int = DEFAULT_MAX_CHART_POINTS,
        min_interval_seconds: float = MIN_TIME_DIFF_SECONDS,
        max_rate_per_sec: float = MAX_RATE_PER_SEC,
        max_latency_ms: float = MAX_LATENCY_MS,
        retention_seconds: float = RETENTION_SECONDS,
        cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
        lock: Optional[threading.RLock] = None,
    ):
        """Initialize the tracker and restore persisted buffers.

        Args:
            store: Key-value store for the ``performance-history`` key
            clock: Returns the current epoch time in seconds
            max_history: Maximum number of history entries kept
            max_chart_points: Maximum number of chart points kept
            min_interval_seconds: Shorter intervals yield zero metrics
            max_rate_per_sec: Rates above this are treated as bogus and zeroed
            max_latency_ms: Latencies are capped at this value
            retention_seconds: Entries older than this are evicted by cleanup
            cleanup_interval_seconds: Period of the background sweep
            lock: Lock shared with the owning session
        """
        self._store = store
        self._clock = clock
        self._min_interval = min_interval_seconds
        self._max_rate = max_rate_per_sec
        self._max_latency = max_latency_ms
        self._retention = retention_seconds
        self._cleanup_interval = cleanup_interval_seconds
        self._lock = lock or threading.RLock()

        self._history: Deque[HistoryEntry] = deque(maxlen=max_history)
        self._chart: Deque[ChartPoint] = deque(maxlen=max_chart_points)

        self._stop_event = threading.Event()
        self._sweep_thread: Optional[threading.Thread] = None

        self._load()
        logger.debug(
            "MetricsTracker initialized (max_history=%d, max_chart_points=%d)",
            max_history,
            max_chart_points,
        )

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def add_snapshot(
        self,
        snapshot: Snapshot,
        node_id: Optional[str] = None,
        index_name: Optional[str] = None,
    ) -> PerformanceMetrics:
        """Record one snapshot and return the metrics for the latest interval.

        Args:
            snapshot: Snapshot carrying cumulative counters
            node_id: Track a single node instead of the whole cluster
            index_name: Track a single index (takes precedence over node_id)

        Returns:
            Rates and latencies derived from the last two entries
        """
        totals = snapshot.operation_totals(node_id=node_id, index_name=index_name)
        timestamp = snapshot.fetched_at if snapshot.fetched_at is not None else self._clock()
        entry = HistoryEntry(
            timestamp=timestamp,
            total_indexing_ops=totals.indexing_ops,
            total_search_ops=totals.search_ops,
            total_index_time_ms=totals.index_time_ms,
            total_search_time_ms=totals.search_time_ms,
        )

        with self._lock:
            self._history.append(entry)
            metrics = self._calculate_metrics()
            self._chart.append(ChartPoint.from_metrics(timestamp, metrics))
            self._persist()

        logger.debug(
            "Tracked snapshot at %.3f: indexing=%.2f/s search=%.2f/s",
            timestamp,
            metrics.indexing_rate,
            metrics.search_rate,
        )
        return metrics

    def _calculate_metrics(self) -> PerformanceMetrics:
        if len(self._history) < 2:
            return PerformanceMetrics()

        previous, current = self._history[-2], self._history[-1]
        elapsed = current.timestamp - previous.timestamp
        if elapsed <= 0 or elapsed < self._min_interval:
            return PerformanceMetrics()

        indexing_delta = max(0.0, current.total_indexing_ops - previous.total_indexing_ops)
        search_delta = max(0.0, current.total_search_ops - previous.total_search_ops)
        index_time_delta = max(0.0, current.total_index_time_ms - previous.total_index_time_ms)
        search_time_delta = max(0.0, current.total_search_time_ms - previous.total_search_time_ms)

        return PerformanceMetrics(
            indexing_rate=self._bounded_rate(indexing_delta / elapsed),
            search_rate=self._bounded_rate(search_delta / elapsed),
            index_latency_ms=self._bounded_latency(index_time_delta, indexing_delta),
            search_latency_ms=self._bounded_latency(search_time_delta, search_delta),
        )

    def _bounded_rate(self, rate: float) -> float:
        # Implausible rates come from counter glitches
        if rate > self._max_rate:
            return 0.0
        return rate

    def _bounded_latency(self, time_delta: float, ops_delta: float) -> float:
        if ops_delta <= 0:
            return 0.0
        return min(time_delta / ops_delta, self._max_latency)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_current_metrics(self) -> PerformanceMetrics:
        """Metrics for the interval between the two most recent entries."""
        with self._lock:
            return self._calculate_metrics()

    def get_chart_data(self) -> List[ChartPoint]:
        """Chart points, oldest first."""
        with self._lock:
            return list(self._chart)

    def get_history(self) -> List[HistoryEntry]:
        """History entries, oldest first."""
        with self._lock:
            return list(self._history)

    def get_performance_summary(self, minutes: float = 5) -> PerformanceSummary:
        """Average and peak rates over the chart points of the last ``minutes``."""
        cutoff = self._clock() - minutes * 60
        with self._lock:
            recent = [p for p in self._chart if p.timestamp > cutoff]

        if not recent:
            return PerformanceSummary()

        indexing = [p.indexing_rate for p in recent]
        search = [p.search_rate for p in recent]
        return PerformanceSummary(
            avg_indexing_rate=sum(indexing) / len(indexing),
            peak_indexing_rate=max(indexing),
            avg_search_rate=sum(search) / len(search),
            peak_search_rate=max(search),
            points=len(recent),
        )

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def cleanup(self) -> int:
        """Evict entries older than the retention window.

        Returns:
            Number of history entries and chart points removed
        """
        cutoff = self._clock() - self._retention
        with self._lock:
            removed = self._evict_before(cutoff)
            if removed:
                self._persist()
        if removed:
            logger.debug("Evicted %d stale tracker entries", removed)
        return removed

    def _evict_before(self, cutoff: float) -> int:
        # restored or replayed entries may be out of timestamp order
        before = len(self._history) + len(self._chart)
        self._history = deque((e for e in self._history if e.timestamp > cutoff), maxlen=self._history.maxlen)
        self._chart = deque((p for p in self._chart if p.timestamp > cutoff), maxlen=self._chart.maxlen)
        return before - len(self._history) - len(self._chart)

    def clear_data(self) -> None:
        """Drop both buffers and the persisted copy."""
        with self._lock:
            self._history.clear()
            self._chart.clear()
            delete_key(self._store, STORAGE_KEY)
        logger.info("Cleared performance history")

    def start(self) -> None:
        """Start the periodic cleanup sweep on a daemon thread."""
        if self._sweep_thread is not None and self._sweep_thread.is_alive():
            logger.debug("Tracker sweep already running")
            return

        self._stop_event.clear()
        self._sweep_thread = threading.Thread(
            target=self._sweep_loop,
            name="MetricsTrackerSweep",
            daemon=True,
        )
        self._sweep_thread.start()
        logger.info("Tracker sweep started (interval: %.1fs)", self._cleanup_interval)

    def stop(self) -> None:
        """Stop the cleanup sweep and wait for the thread to exit."""
        if self._sweep_thread is None:
            return

        self._stop_event.set()
        self._sweep_thread.join(timeout=5.0)
        self._sweep_thread = None
        logger.info("Tracker sweep stopped")

    @property
    def is_running(self) -> bool:
        return self._sweep_thread is not None and self._sweep_thread.is_alive()

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self._cleanup_interval):
            try:
                self.cleanup()
            except Exception as e:
                logger.error("Tracker cleanup failed: %s", e)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _persist(self) -> None:
        save_json(
            self._store,
            STORAGE_KEY,
            {
                "history": [e.to_dict() for e in self._history],
                "chart_data": [p.to_dict() for p in self._chart],
            },
        )

    def _load(self) -> None:
        state = load_json(self._store, STORAGE_KEY)
        if not isinstance(state, dict):
            return

        raw_history = state.get("history")
        raw_chart = state.get("chart_data")

        for data in raw_history if isinstance(raw_history, list) else []:
            entry = HistoryEntry.from_dict(data)
            if entry is not None:
                self._history.append(entry)
        for data in raw_chart if isinstance(raw_chart, list) else []:
            point = ChartPoint.from_dict(data)
            if point is not None:
                self._chart.append(point)

        logger.info(
            "Restored %d history entries and %d chart points",
            len(self._history),
            len(self._chart),
        )
        self.cleanup()
