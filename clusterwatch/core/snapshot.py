"""Snapshot models for one poll of a monitored cluster.

A snapshot carries cumulative operation counters per node and per index,
resource gauges, cluster health and the ``_cat/indices`` rows. It is built
from the Elasticsearch-shaped dictionary the fetch layer produces with
:meth:`Snapshot.from_dict`; missing sections become empty, never errors.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

CLUSTER_STATUSES = ("green", "yellow", "red", "unknown")

_SIZE_UNITS = {
    "b": 1,
    "kb": 1024,
    "mb": 1024 ** 2,
    "gb": 1024 ** 3,
    "tb": 1024 ** 4,
    "pb": 1024 ** 5,
}
_SIZE_PATTERN = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([kmgtp]?b)?\s*$", re.IGNORECASE)


def _number(value: Any) -> Optional[float]:
    """Coerce JSON scalars to a finite float, or None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _dig(data: Any, *path: str) -> Any:
    for part in path:
        if not isinstance(data, dict) or part not in data:
            return None
        data = data[part]
    return data


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def parse_size_to_bytes(value: Any) -> float:
    """Parse a ``_cat`` size such as ``"20.4gb"`` into bytes (1024 based)."""
    number = _number(value)
    if number is not None:
        return number
    if not isinstance(value, str):
        return 0.0
    match = _SIZE_PATTERN.match(value)
    if not match:
        return 0.0
    unit = (match.group(2) or "b").lower()
    return float(match.group(1)) * _SIZE_UNITS[unit]


def parse_timestamp(value: Any) -> Optional[float]:
    """Return epoch seconds for ISO strings, seconds or milliseconds."""
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return _number(value)
    number = _number(value)
    if number is None:
        return None
    # Milliseconds
    if number > 1e12:
        return number / 1000.0
    return number


@dataclass(frozen=True)
class OperationStats:
    """Cumulative count and time (ms) for one kind of operation."""

    total: float = 0.0
    time_ms: float = 0.0

    @classmethod
    def from_dict(cls, data: Any, total_key: str, time_key: str) -> Optional["OperationStats"]:
        if not isinstance(data, dict):
            return None
        return cls(
            total=_number(data.get(total_key)) or 0.0,
            time_ms=_number(data.get(time_key)) or 0.0,
        )


@dataclass(frozen=True)
class OperationTotals:
    """The four counters one history entry is built from."""

    indexing_ops: float = 0.0
    index_time_ms: float = 0.0
    search_ops: float = 0.0
    search_time_ms: float = 0.0


@dataclass(frozen=True)
class NodeStats:
    """Counters and resource gauges reported by a single node."""

    name: str = ""
    indexing: OperationStats = field(default_factory=OperationStats)
    search: OperationStats = field(default_factory=OperationStats)
    os_cpu_percent: Optional[float] = None
    process_cpu_percent: Optional[float] = None
    heap_used_bytes: Optional[float] = None
    heap_max_bytes: Optional[float] = None
    fs_total_bytes: Optional[float] = None
    fs_available_bytes: Optional[float] = None

    @property
    def cpu_percent(self) -> Optional[float]:
        """OS CPU percent, falling back to process CPU percent."""
        if self.os_cpu_percent is not None:
            return self.os_cpu_percent
        return self.process_cpu_percent

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeStats":
        indices = data.get("indices") or {}
        return cls(
            name=str(data.get("name", "")),
            indexing=OperationStats.from_dict(indices.get("indexing"), "index_total", "index_time_in_millis")
            or OperationStats(),
            search=OperationStats.from_dict(indices.get("search"), "query_total", "query_time_in_millis")
            or OperationStats(),
            os_cpu_percent=_number(_dig(data, "os", "cpu", "percent")),
            process_cpu_percent=_number(_dig(data, "process", "cpu", "percent")),
            heap_used_bytes=_number(_dig(data, "jvm", "mem", "heap_used_in_bytes")),
            heap_max_bytes=_number(_dig(data, "jvm", "mem", "heap_max_in_bytes")),
            fs_total_bytes=_number(_dig(data, "fs", "total", "total_in_bytes")),
            fs_available_bytes=_number(_dig(data, "fs", "total", "available_in_bytes")),
        )


@dataclass(frozen=True)
class IndexStats:
    """Per-index counters from ``/_stats``, split by primaries and total."""

    primaries_indexing: Optional[OperationStats] = None
    primaries_search: Optional[OperationStats] = None
    total_indexing: Optional[OperationStats] = None
    total_search: Optional[OperationStats] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexStats":
        primaries = data.get("primaries") or {}
        total = data.get("total") or {}
        return cls(
            primaries_indexing=OperationStats.from_dict(
                primaries.get("indexing"), "index_total", "index_time_in_millis"
            ),
            primaries_search=OperationStats.from_dict(
                primaries.get("search"), "query_total", "query_time_in_millis"
            ),
            total_indexing=OperationStats.from_dict(total.get("indexing"), "index_total", "index_time_in_millis"),
            total_search=OperationStats.from_dict(total.get("search"), "query_total", "query_time_in_millis"),
        )


@dataclass(frozen=True)
class IndexInfo:
    """One ``_cat/indices`` row; sizes and counts stay as reported."""

    index: str
    pri: str = "1"
    rep: str = "0"
    pri_store_size: str = "0b"
    store_size: str = "0b"
    docs_count: str = "0"

    @property
    def primary_shards(self) -> int:
        try:
            return int(self.pri)
        except (TypeError, ValueError):
            return 0

    @property
    def primary_store_bytes(self) -> float:
        return parse_size_to_bytes(self.pri_store_size)

    @property
    def document_count(self) -> int:
        try:
            return int(self.docs_count)
        except (TypeError, ValueError):
            return 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexInfo":
        return cls(
            index=str(data.get("index", "")),
            pri=str(_pick(data, "pri") or "1"),
            rep=str(_pick(data, "rep") or "0"),
            pri_store_size=str(_pick(data, "pri.store.size", "pri_store_size") or "0b"),
            store_size=str(_pick(data, "store.size", "store_size") or "0b"),
            docs_count=str(_pick(data, "docs.count", "docs_count") or "0"),
        )


@dataclass(frozen=True)
class ClusterHealth:
    """Subset of ``_cluster/health`` the engine reads."""

    status: str = "unknown"
    cluster_name: str = ""
    number_of_nodes: int = 0
    active_shards: int = 0
    unassigned_shards: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterHealth":
        status = str(data.get("status", "unknown")).lower()
        if status not in CLUSTER_STATUSES:
            status = "unknown"
        return cls(
            status=status,
            cluster_name=str(data.get("cluster_name", "")),
            number_of_nodes=int(_number(data.get("number_of_nodes")) or 0),
            active_shards=int(_number(data.get("active_shards")) or 0),
            unassigned_shards=int(_number(data.get("unassigned_shards")) or 0),
        )


@dataclass(frozen=True)
class PerformanceMetrics:
    """Rates (ops/sec) and interval latencies (ms) for the latest interval."""

    indexing_rate: float = 0.0
    search_rate: float = 0.0
    index_latency_ms: float = 0.0
    search_latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "indexing_rate": self.indexing_rate,
            "search_rate": self.search_rate,
            "index_latency_ms": self.index_latency_ms,
            "search_latency_ms": self.search_latency_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceMetrics":
        return cls(
            indexing_rate=_number(_pick(data, "indexing_rate", "indexingRate")) or 0.0,
            search_rate=_number(_pick(data, "search_rate", "searchRate")) or 0.0,
            index_latency_ms=_number(_pick(data, "index_latency_ms", "indexLatency")) or 0.0,
            search_latency_ms=_number(_pick(data, "search_latency_ms", "searchLatency")) or 0.0,
        )


@dataclass(frozen=True)
class Snapshot:
    """One poll's worth of cumulative counters and health state."""

    nodes: Dict[str, NodeStats] = field(default_factory=dict)
    index_stats: Dict[str, IndexStats] = field(default_factory=dict)
    indices: Optional[List[IndexInfo]] = None
    health: Optional[ClusterHealth] = None
    fetched_at: Optional[float] = None
    performance_metrics: Optional[PerformanceMetrics] = None

    def operation_totals(
        self,
        node_id: Optional[str] = None,
        index_name: Optional[str] = None,
    ) -> OperationTotals:
        """Select the counter scope: one index, one node, or the whole cluster.

        Index scope reads indexing from primaries and search from all shards,
        each falling back to the other side when missing.
        """
        if index_name and index_name in self.index_stats:
            stats = self.index_stats[index_name]
            indexing = stats.primaries_indexing or stats.total_indexing or OperationStats()
            search = stats.total_search or stats.primaries_search or OperationStats()
            return OperationTotals(indexing.total, indexing.time_ms, search.total, search.time_ms)

        if node_id and node_id in self.nodes:
            node = self.nodes[node_id]
            return OperationTotals(
                node.indexing.total, node.indexing.time_ms, node.search.total, node.search.time_ms
            )

        return OperationTotals(
            indexing_ops=sum(n.indexing.total for n in self.nodes.values()),
            index_time_ms=sum(n.indexing.time_ms for n in self.nodes.values()),
            search_ops=sum(n.search.total for n in self.nodes.values()),
            search_time_ms=sum(n.search.time_ms for n in self.nodes.values()),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        """Build a snapshot from the Elasticsearch-shaped fetch result.

        Accepts both the camelCase keys of the fetch layer (``nodeStats``,
        ``indexStats``, ``fetchedAt``) and snake_case equivalents.
        """
        node_section = _pick(data, "node_stats", "nodeStats") or {}
        raw_nodes = node_section.get("nodes") if isinstance(node_section, dict) else None
        nodes = {
            str(node_id): NodeStats.from_dict(node)
            for node_id, node in (raw_nodes or {}).items()
            if isinstance(node, dict)
        }

        index_section = _pick(data, "index_stats", "indexStats") or {}
        raw_index_stats = index_section.get("indices") if isinstance(index_section, dict) else None
        index_stats = {
            str(name): IndexStats.from_dict(stats)
            for name, stats in (raw_index_stats or {}).items()
            if isinstance(stats, dict)
        }

        raw_indices = data.get("indices")
        indices = (
            [IndexInfo.from_dict(row) for row in raw_indices if isinstance(row, dict)]
            if isinstance(raw_indices, list)
            else None
        )

        raw_health = data.get("health")
        raw_metrics = _pick(data, "performance_metrics", "performanceMetrics")

        return cls(
            nodes=nodes,
            index_stats=index_stats,
            indices=indices,
            health=ClusterHealth.from_dict(raw_health) if isinstance(raw_health, dict) else None,
            fetched_at=parse_timestamp(_pick(data, "fetched_at", "fetchedAt", "timestamp")),
            performance_metrics=(
                PerformanceMetrics.from_dict(raw_metrics) if isinstance(raw_metrics, dict) else None
            ),
        )
