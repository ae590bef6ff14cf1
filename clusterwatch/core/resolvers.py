"""Metric resolution and condition evaluation for alert rules.

Every :class:`MetricId` has one resolver. A resolver returns None when the
snapshot lacks the input it needs (no nodes, no indices, no health, no
metrics) or when the result is not a finite number; the rule is then skipped
for that tick.
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Union

from clusterwatch.core.rules import AlertCondition, AlertRule, MetricId
from clusterwatch.core.snapshot import Snapshot

MetricValue = Union[float, str]
Resolver = Callable[[Snapshot], Optional[MetricValue]]

ZERO_TOLERANCE = 0.001


def _finite(value: Optional[float]) -> Optional[float]:
    if value is None or not math.isfinite(value):
        return None
    return float(value)


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# =============================================================================
# Resolvers
# =============================================================================

def _cluster_status(snapshot: Snapshot) -> Optional[MetricValue]:
    return snapshot.health.status if snapshot.health else None


def _unassigned_shards(snapshot: Snapshot) -> Optional[MetricValue]:
    return float(snapshot.health.unassigned_shards) if snapshot.health else None


def _node_count(snapshot: Snapshot) -> Optional[MetricValue]:
    return float(snapshot.health.number_of_nodes) if snapshot.health else None


def _cpu_usage(snapshot: Snapshot) -> Optional[MetricValue]:
    if not snapshot.nodes:
        return None
    readings = [n.cpu_percent for n in snapshot.nodes.values() if n.cpu_percent and n.cpu_percent > 0]
    return _finite(_average(readings))


def _jvm_heap(snapshot: Snapshot) -> Optional[MetricValue]:
    if not snapshot.nodes:
        return None
    readings = []
    for node in snapshot.nodes.values():
        if node.heap_max_bytes and node.heap_max_bytes > 0:
            percent = (node.heap_used_bytes or 0.0) / node.heap_max_bytes * 100
            if percent > 0:
                readings.append(percent)
    return _finite(_average(readings))


def _storage_percent(snapshot: Snapshot) -> Optional[MetricValue]:
    if not snapshot.nodes:
        return None
    total = 0.0
    used = 0.0
    for node in snapshot.nodes.values():
        node_total = node.fs_total_bytes or 0.0
        total += node_total
        used += node_total - (node.fs_available_bytes or 0.0)
    return _finite(used / total * 100) if total > 0 else 0.0


def _max_shard_size(snapshot: Snapshot) -> Optional[MetricValue]:
    if not snapshot.indices:
        return None
    return _finite(max(i.primary_store_bytes / (i.primary_shards or 1) for i in snapshot.indices))


def _max_doc_count(snapshot: Snapshot) -> Optional[MetricValue]:
    if not snapshot.indices:
        return None
    return float(max(i.document_count for i in snapshot.indices))


def _performance(attribute: str) -> Resolver:
    def resolve(snapshot: Snapshot) -> Optional[MetricValue]:
        if snapshot.performance_metrics is None:
            return None
        return _finite(getattr(snapshot.performance_metrics, attribute))

    return resolve


RESOLVERS: Dict[MetricId, Resolver] = {
    MetricId.CLUSTER_STATUS: _cluster_status,
    MetricId.UNASSIGNED_SHARDS: _unassigned_shards,
    MetricId.NODE_COUNT: _node_count,
    MetricId.CPU_USAGE: _cpu_usage,
    MetricId.JVM_HEAP: _jvm_heap,
    MetricId.STORAGE_PERCENT: _storage_percent,
    MetricId.MAX_SHARD_SIZE: _max_shard_size,
    MetricId.MAX_DOC_COUNT: _max_doc_count,
    MetricId.INDEXING_RATE: _performance("indexing_rate"),
    MetricId.SEARCH_RATE: _performance("search_rate"),
    MetricId.INDEX_LATENCY: _performance("index_latency_ms"),
    MetricId.SEARCH_LATENCY: _performance("search_latency_ms"),
}


def resolve_metric(snapshot: Snapshot, metric: MetricId) -> Optional[MetricValue]:
    """Resolve ``metric`` against ``snapshot``, or None when unavailable."""
    return RESOLVERS[metric](snapshot)


# =============================================================================
# Conditions
# =============================================================================

def evaluate_condition(rule: AlertRule, value: MetricValue) -> bool:
    """Return True when ``value`` satisfies the rule's condition.

    Strings only support equality against the rule's expected status.
    Numbers compare against a numeric threshold; ``equals`` against a zero
    threshold uses a small tolerance. Any other type pairing is False.
    """
    if isinstance(value, str):
        expected = rule.expected_status
        if expected is None:
            return False
        if rule.condition == AlertCondition.EQUALS:
            return value == expected
        if rule.condition == AlertCondition.NOT_EQUALS:
            return value != expected
        return False

    if isinstance(rule.threshold, str):
        return False
    threshold = rule.threshold

    if rule.condition == AlertCondition.GREATER_THAN:
        return value > threshold
    elif rule.condition == AlertCondition.LESS_THAN:
        return value < threshold
    elif rule.condition == AlertCondition.EQUALS:
        if threshold == 0:
            return abs(value) < ZERO_TOLERANCE
        return value == threshold
    elif rule.condition == AlertCondition.NOT_EQUALS:
        return value != threshold
    return False


# =============================================================================
# Formatting
# =============================================================================

_BYTE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def format_bytes(value: float) -> str:
    """Human-readable size using 1024 steps, e.g. ``53.7 GB``."""
    size = float(value)
    unit = 0
    while abs(size) >= 1024 and unit < len(_BYTE_UNITS) - 1:
        size /= 1024
        unit += 1
    if unit == 0:
        return f"{size:.0f} B"
    return f"{size:.1f} {_BYTE_UNITS[unit]}"


def format_alert_value(value: MetricValue, unit: str) -> str:
    """Render a metric value for notification bodies and the CLI."""
    if isinstance(value, str):
        return value
    if unit == "bytes":
        return format_bytes(value)
    if unit == "%":
        return f"{value:.1f}%"
    if unit == "status":
        return str(value)
    return f"{value:.1f} {unit}".rstrip()
