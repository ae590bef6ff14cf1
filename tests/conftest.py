"""Shared fixtures for clusterwatch tests."""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from clusterwatch.core.snapshot import Snapshot
from clusterwatch.core.storage import MemoryStore

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def raw_node(
    indexing: float = 0,
    index_time: float = 0,
    search: float = 0,
    search_time: float = 0,
    cpu: Optional[float] = None,
    process_cpu: Optional[float] = None,
    heap: Optional[Tuple[float, float]] = None,
    fs: Optional[Tuple[float, float]] = None,
    name: str = "node-1",
) -> Dict[str, Any]:
    """Node stats in the shape returned by ``/_nodes/stats``."""
    node: Dict[str, Any] = {
        "name": name,
        "indices": {
            "indexing": {"index_total": indexing, "index_time_in_millis": index_time},
            "search": {"query_total": search, "query_time_in_millis": search_time},
        },
    }
    if cpu is not None:
        node["os"] = {"cpu": {"percent": cpu}}
    if process_cpu is not None:
        node["process"] = {"cpu": {"percent": process_cpu}}
    if heap is not None:
        node["jvm"] = {"mem": {"heap_used_in_bytes": heap[0], "heap_max_in_bytes": heap[1]}}
    if fs is not None:
        node["fs"] = {"total": {"total_in_bytes": fs[0], "available_in_bytes": fs[1]}}
    return node


def raw_snapshot(
    fetched_at: Optional[float] = None,
    nodes: Optional[Dict[str, Dict[str, Any]]] = None,
    status: Optional[str] = None,
    indices: Optional[List[Dict[str, Any]]] = None,
    **node_kwargs: Any,
) -> Dict[str, Any]:
    """Fetch result with one node built from ``node_kwargs`` unless ``nodes`` is given."""
    data: Dict[str, Any] = {
        "nodeStats": {"nodes": nodes if nodes is not None else {"n1": raw_node(**node_kwargs)}},
    }
    if fetched_at is not None:
        data["fetchedAt"] = fetched_at
    if status is not None:
        data["health"] = {"cluster_name": "prod", "status": status, "number_of_nodes": 3}
    if indices is not None:
        data["indices"] = indices
    return data


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_snapshot():
    """Build a :class:`Snapshot` from the same arguments as ``raw_snapshot``."""

    def build(**kwargs: Any) -> Snapshot:
        return Snapshot.from_dict(raw_snapshot(**kwargs))

    return build


@pytest.fixture
def make_raw_snapshot():
    return raw_snapshot


@pytest.fixture
def make_node():
    return raw_node
