"""Handlers for the clusterwatch CLI subcommands."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, TextIO

from clusterwatch.config import ClusterwatchConfig
from clusterwatch.core.alerting import AlertEvaluator
from clusterwatch.core.notifications import build_notifier
from clusterwatch.core.resolvers import format_alert_value
from clusterwatch.core.session import MonitoringSession, build_store
from clusterwatch.core.snapshot import Snapshot
from clusterwatch.core.storage import MemoryStore
from clusterwatch.server.api import ClusterwatchAPIServer

logger = logging.getLogger(__name__)


class ReplayClock:
    """Clock that follows the timestamps of replayed snapshots."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def _read_snapshots(path: Path) -> Iterator[Dict[str, Any]]:
    with path.open("r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping line %d of %s: %s", line_number, path, e)
                continue
            if isinstance(data, dict):
                yield data
            else:
                logger.warning("Skipping line %d of %s: not an object", line_number, path)


def handle_rules(config: ClusterwatchConfig, root: Path, as_json: bool = False, out: Optional[TextIO] = None) -> None:
    """Print the rule catalog as stored for this root (defaults when nothing is stored)."""
    out = out or sys.stdout
    evaluator = AlertEvaluator(store=build_store(config, root))
    rules = evaluator.get_rules()

    if as_json:
        out.write(json.dumps([r.to_dict() for r in rules], indent=2) + "\n")
        return

    for rule in rules:
        threshold = format_alert_value(rule.threshold, rule.unit)
        state = "on " if rule.enabled else "off"
        out.write(
            f"[{state}] {rule.severity.value:<8} {rule.id:<24} "
            f"{rule.metric.value} {rule.condition.value} {threshold}\n"
        )


def handle_replay(
    config: ClusterwatchConfig,
    root: Path,
    path: Path,
    interval: float = 10.0,
    scope_label: Optional[str] = None,
    persist: bool = False,
    as_json: bool = False,
    out: Optional[TextIO] = None,
) -> List[Dict[str, Any]]:
    """Feed a JSON-lines file of snapshots through a session.

    Time follows the snapshots' ``fetchedAt``; snapshots without one are
    spaced ``interval`` seconds apart.

    Returns:
        The tick results as dictionaries
    """
    out = out or sys.stdout
    clock = ReplayClock()
    store = build_store(config, root) if persist else MemoryStore()
    notifier = build_notifier(config)
    session = MonitoringSession(store=store, notifier=notifier, config=config, clock=clock)

    results: List[Dict[str, Any]] = []
    for tick_number, raw in enumerate(_read_snapshots(path), start=1):
        snapshot = Snapshot.from_dict(raw)
        clock.now = snapshot.fetched_at if snapshot.fetched_at is not None else clock.now + interval
        if snapshot.fetched_at is None:
            snapshot = replace(snapshot, fetched_at=clock.now)
        result = session.tick(snapshot, scope_label=scope_label)
        if result is None:
            continue
        payload = result.to_dict()
        payload["tick"] = tick_number
        results.append(payload)

        if as_json:
            out.write(json.dumps(payload) + "\n")
            continue
        m = result.metrics
        out.write(
            f"#{tick_number:<4} indexing {m.indexing_rate:10.1f}/s  search {m.search_rate:10.1f}/s  "
            f"index {m.index_latency_ms:8.2f} ms  search {m.search_latency_ms:8.2f} ms  "
            f"active alerts {len(result.active_alerts)}\n"
        )
        for alert in result.new_alerts:
            out.write(
                f"      ALERT {alert.severity.value.upper()} {alert.rule_name}: "
                f"{format_alert_value(alert.current_value, alert.unit)}\n"
            )

    notifier.flush()
    logger.info("Replayed %d snapshots from %s", len(results), path)
    return results


def handle_serve(config: ClusterwatchConfig, root: Path, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Start the API server."""
    session = MonitoringSession(store=build_store(config, root), notifier=build_notifier(config), config=config)
    server = ClusterwatchAPIServer(
        session=session,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.logging.level,
    )
    server.start()
