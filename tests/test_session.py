"""Tests for the monitoring session."""

import logging
import threading
import time
from pathlib import Path

import httpx
import pytest

from clusterwatch.config import ClusterwatchConfig, StorageConfig
from clusterwatch.core.notifications import WebhookNotifier
from clusterwatch.core.session import MonitoringSession, TickResult, build_store
from clusterwatch.core.storage import JsonFileStore, MemoryStore


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def notifications():
    return []


@pytest.fixture
def session(store, clock, notifications):
    def notify(title, body, **kwargs):
        notifications.append(title)

    return MonitoringSession(store=store, notifier=notify, clock=clock)


def busy_tick(session, make_raw_snapshot, clock, step, **kwargs):
    """Tick with steadily increasing counters so activity rules stay quiet."""
    return session.tick(
        make_raw_snapshot(fetched_at=clock.now, indexing=step * 100, search=step * 50, **kwargs)
    )


# =============================================================================
# Ticks
# =============================================================================

class TestTick:
    """Tests for MonitoringSession.tick."""

    def test_none_is_noop(self, session):
        assert session.tick(None) is None
        assert session.tracker.get_history() == []

    def test_accepts_raw_dict(self, session, make_raw_snapshot, clock):
        result = session.tick(make_raw_snapshot(fetched_at=clock.now, indexing=10))
        assert isinstance(result, TickResult)
        assert result.new_alerts == []
        assert len(session.tracker.get_history()) == 1

    def test_metrics_reach_the_evaluator(self, session, make_snapshot, clock):
        # Constant counters give an indexing rate of 0, which the
        # no-indexing-activity rule watches
        for _ in range(4):
            result = session.tick(make_snapshot(fetched_at=clock.now, indexing=500))
            clock.advance(12)
        assert [a.rule_id for a in result.new_alerts] == ["no-indexing-activity"]

    def test_cpu_alert_end_to_end(self, session, make_raw_snapshot, clock, notifications):
        busy_tick(session, make_raw_snapshot, clock, 1, cpu=95)
        clock.advance(20)
        assert busy_tick(session, make_raw_snapshot, clock, 2, cpu=95).new_alerts == []
        clock.advance(15)

        result = busy_tick(session, make_raw_snapshot, clock, 3, cpu=95)

        assert {a.rule_id for a in result.new_alerts} == {"high-cpu-usage", "high-cpu-load"}
        assert [a.rule_id for a in result.active_alerts] == ["high-cpu-usage", "high-cpu-load"]
        assert result.stats.active == 2
        assert result.metrics.indexing_rate == pytest.approx(100 / 15)
        assert notifications == ["Cluster Alert: Critical CPU Usage"]

        clock.advance(10)
        busy_tick(session, make_raw_snapshot, clock, 4, cpu=95)
        assert len(notifications) == 1

    def test_label_falls_back_to_health(self, session, make_snapshot, clock):
        red = make_snapshot(status="red")
        session.tick(red)
        clock.advance(30)
        alerts = session.tick(red).new_alerts
        assert alerts[0].cluster_name == "prod"

    def test_label_prefers_target(self, session, make_snapshot, clock):
        session.switch_target("staging")
        red = make_snapshot(status="red")
        session.tick(red)
        clock.advance(30)
        assert session.tick(red).new_alerts[0].cluster_name == "staging"

    def test_to_dict(self, session, make_snapshot, clock):
        payload = session.tick(make_snapshot(fetched_at=clock.now)).to_dict()
        assert set(payload) == {"metrics", "new_alerts", "active_alerts", "stats"}
        assert payload["metrics"]["indexing_rate"] == 0.0


# =============================================================================
# Target switching
# =============================================================================

class TestSwitchTarget:
    """Tests for switching the monitored target."""

    def test_switch_clears_per_target_state(self, session, make_raw_snapshot, clock):
        busy_tick(session, make_raw_snapshot, clock, 1, cpu=95)
        calls = []
        session.on_target_switch(lambda: calls.append("cancelled"))

        session.switch_target("other")

        assert calls == ["cancelled"]
        assert session.target == "other"
        assert session.tracker.get_history() == []

        # Dwell restarted: 35s after the first observation is not enough
        clock.advance(35)
        assert busy_tick(session, make_raw_snapshot, clock, 2, cpu=95).new_alerts == []

    def test_failing_hook_is_logged(self, session, caplog):
        @session.on_target_switch
        def broken():
            raise RuntimeError("fetch already gone")

        with caplog.at_level(logging.ERROR):
            session.switch_target("other")

        assert session.target == "other"
        assert "fetch already gone" in caplog.text


# =============================================================================
# Lifecycle and stores
# =============================================================================

class TestLifecycle:
    """Tests for start/stop and store construction."""

    def test_context_manager_runs_sweep(self, store, clock):
        with MonitoringSession(store=store, clock=clock) as session:
            assert session.tracker.is_running
        assert not session.tracker.is_running

    def test_config_defaults_flow_to_components(self, store, clock):
        config = ClusterwatchConfig()
        config.alerting.enabled = False
        config.alerting.max_history_days = 3
        session = MonitoringSession(store=store, clock=clock, config=config)
        assert session.evaluator.get_settings().enabled is False
        assert session.evaluator.get_settings().max_history_days == 3

    def test_build_store_in_memory(self):
        config = ClusterwatchConfig(storage=StorageConfig(path=None))
        assert isinstance(build_store(config), MemoryStore)

    def test_build_store_relative_to_root(self, tmp_path):
        store = build_store(ClusterwatchConfig(), root_path=tmp_path)
        assert isinstance(store, JsonFileStore)
        assert store.path == tmp_path / Path("state/clusterwatch.json")

    def test_state_survives_restart(self, tmp_path, make_raw_snapshot, clock):
        config = ClusterwatchConfig()
        first = MonitoringSession(store=build_store(config, tmp_path), clock=clock)
        first.evaluator.update_rule("high-cpu-usage", {"threshold": 99})
        busy_tick(first, make_raw_snapshot, clock, 1)

        second = MonitoringSession(store=build_store(config, tmp_path), clock=clock)

        assert second.evaluator.get_rule("high-cpu-usage").threshold == 99.0
        assert len(second.tracker.get_history()) == 1


# =============================================================================
# Notification delivery
# =============================================================================

class TestNotificationDelivery:
    """Tests for webhook delivery during ticks."""

    def test_slow_webhook_does_not_hold_up_tick(self, store, clock, make_raw_snapshot):
        release = threading.Event()
        attempts = []

        def handler(request):
            attempts.append(request)
            release.wait(5.0)
            return httpx.Response(500)

        webhook = WebhookNotifier(
            url="https://hooks.example.test/cw",
            retry_count=2,
            retry_delay=0.5,
            client=httpx.Client(transport=httpx.MockTransport(handler)),
            sleep=lambda seconds: None,
        )
        session = MonitoringSession(store=store, notifier=webhook, clock=clock)
        session.tick(make_raw_snapshot(fetched_at=clock.now, cpu=95, indexing=100, search=50))
        clock.advance(35)

        started = time.monotonic()
        result = session.tick(make_raw_snapshot(fetched_at=clock.now, cpu=95, indexing=450, search=225))
        elapsed = time.monotonic() - started

        try:
            assert "high-cpu-usage" in {a.rule_id for a in result.new_alerts}
            assert elapsed < 1.0
            assert (webhook.sent, webhook.failed) == (0, 0)
        finally:
            release.set()
            webhook.flush()

        assert webhook.stats() == {"sent": 0, "failed": 1, "pending": 0}
        assert len(attempts) == 3

    def test_stop_drains_webhook_queue(self, store, clock, make_raw_snapshot):
        received = []

        def handler(request):
            received.append(request)
            return httpx.Response(200)

        webhook = WebhookNotifier(
            url="https://hooks.example.test/cw",
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        session = MonitoringSession(store=store, notifier=webhook, clock=clock)
        session.tick(make_raw_snapshot(fetched_at=clock.now, cpu=95, indexing=100, search=50))
        clock.advance(35)
        session.tick(make_raw_snapshot(fetched_at=clock.now, cpu=95, indexing=450, search=225))

        session.stop()

        assert webhook.sent == 1
        assert len(received) == 1
