"""Tests for metric resolution, conditions and value formatting."""

import pytest

from clusterwatch.core.resolvers import (
    evaluate_condition,
    format_alert_value,
    format_bytes,
    resolve_metric,
)
from clusterwatch.core.rules import AlertCondition, AlertRule, MetricId
from clusterwatch.core.snapshot import PerformanceMetrics, Snapshot

GIB = 1024 ** 3


def rule_for(metric, condition, threshold, rule_id="test-rule"):
    return AlertRule.from_dict(
        {
            "id": rule_id,
            "name": "Test",
            "metric": metric.value,
            "condition": condition.value,
            "threshold": threshold,
        }
    )


# =============================================================================
# Resource resolvers
# =============================================================================

class TestResourceResolvers:
    """Tests for cpu, heap and storage derivations."""

    def test_cpu_average_ignores_zero_readings(self, make_snapshot, make_node):
        snapshot = make_snapshot(
            nodes={"a": make_node(cpu=90), "b": make_node(cpu=70), "c": make_node(cpu=0)}
        )
        assert resolve_metric(snapshot, MetricId.CPU_USAGE) == pytest.approx(80.0)

    def test_cpu_without_readings_is_zero(self, make_snapshot):
        assert resolve_metric(make_snapshot(), MetricId.CPU_USAGE) == 0.0

    def test_no_nodes_is_unresolved(self):
        snapshot = Snapshot()
        assert resolve_metric(snapshot, MetricId.CPU_USAGE) is None
        assert resolve_metric(snapshot, MetricId.JVM_HEAP) is None
        assert resolve_metric(snapshot, MetricId.STORAGE_PERCENT) is None

    def test_jvm_heap_average(self, make_snapshot, make_node):
        snapshot = make_snapshot(
            nodes={"a": make_node(heap=(80, 100)), "b": make_node(heap=(40, 100)), "c": make_node()}
        )
        assert resolve_metric(snapshot, MetricId.JVM_HEAP) == pytest.approx(60.0)

    def test_storage_percent_over_cluster(self, make_snapshot, make_node):
        snapshot = make_snapshot(
            nodes={"a": make_node(fs=(1000, 100)), "b": make_node(fs=(1000, 300))}
        )
        assert resolve_metric(snapshot, MetricId.STORAGE_PERCENT) == pytest.approx(80.0)

    def test_storage_without_totals_is_zero(self, make_snapshot):
        assert resolve_metric(make_snapshot(), MetricId.STORAGE_PERCENT) == 0.0


# =============================================================================
# Health, index and performance resolvers
# =============================================================================

class TestOtherResolvers:
    """Tests for health, index and performance derivations."""

    def test_health_values(self, make_snapshot):
        snapshot = make_snapshot(status="yellow")
        assert resolve_metric(snapshot, MetricId.CLUSTER_STATUS) == "yellow"
        assert resolve_metric(snapshot, MetricId.NODE_COUNT) == 3.0
        assert resolve_metric(snapshot, MetricId.UNASSIGNED_SHARDS) == 0.0

    def test_no_health_is_unresolved(self, make_snapshot):
        assert resolve_metric(make_snapshot(), MetricId.CLUSTER_STATUS) is None

    def test_max_shard_size(self, make_snapshot):
        snapshot = make_snapshot(
            indices=[
                {"index": "big", "pri": "2", "pri.store.size": "100gb", "docs.count": "10"},
                {"index": "small", "pri": "1", "pri.store.size": "30gb", "docs.count": "5000"},
            ]
        )
        assert resolve_metric(snapshot, MetricId.MAX_SHARD_SIZE) == pytest.approx(50 * GIB)
        assert resolve_metric(snapshot, MetricId.MAX_DOC_COUNT) == 5000.0

    def test_zero_primaries_counts_as_one(self, make_snapshot):
        snapshot = make_snapshot(indices=[{"index": "odd", "pri": "0", "pri.store.size": "10gb"}])
        assert resolve_metric(snapshot, MetricId.MAX_SHARD_SIZE) == pytest.approx(10 * GIB)

    @pytest.mark.parametrize("indices", [None, []])
    def test_no_indices_is_unresolved(self, make_snapshot, indices):
        snapshot = make_snapshot(indices=indices)
        assert resolve_metric(snapshot, MetricId.MAX_SHARD_SIZE) is None
        assert resolve_metric(snapshot, MetricId.MAX_DOC_COUNT) is None

    def test_performance_values(self):
        snapshot = Snapshot(performance_metrics=PerformanceMetrics(indexing_rate=12.5, search_latency_ms=40))
        assert resolve_metric(snapshot, MetricId.INDEXING_RATE) == 12.5
        assert resolve_metric(snapshot, MetricId.SEARCH_LATENCY) == 40
        assert resolve_metric(snapshot, MetricId.SEARCH_RATE) == 0.0

    def test_performance_without_metrics_is_unresolved(self):
        assert resolve_metric(Snapshot(), MetricId.INDEX_LATENCY) is None


# =============================================================================
# Conditions
# =============================================================================

class TestEvaluateCondition:
    """Tests for comparisons between values and thresholds."""

    @pytest.mark.parametrize(
        "condition,threshold,value,expected",
        [
            (AlertCondition.GREATER_THAN, 90, 95, True),
            (AlertCondition.GREATER_THAN, 90, 90, False),
            (AlertCondition.LESS_THAN, 10, 5, True),
            (AlertCondition.LESS_THAN, 10, 10, False),
            (AlertCondition.EQUALS, 5, 5, True),
            (AlertCondition.NOT_EQUALS, 5, 6, True),
            (AlertCondition.NOT_EQUALS, 5, 5, False),
        ],
    )
    def test_numeric(self, condition, threshold, value, expected):
        rule = rule_for(MetricId.CPU_USAGE, condition, threshold)
        assert evaluate_condition(rule, value) is expected

    def test_equals_zero_uses_tolerance(self):
        rule = rule_for(MetricId.INDEXING_RATE, AlertCondition.EQUALS, 0)
        assert evaluate_condition(rule, 0.0005)
        assert not evaluate_condition(rule, 0.01)

    def test_status_equality(self):
        rule = rule_for(MetricId.CLUSTER_STATUS, AlertCondition.EQUALS, "red")
        assert evaluate_condition(rule, "red")
        assert not evaluate_condition(rule, "yellow")

    def test_status_not_equals(self):
        rule = rule_for(MetricId.CLUSTER_STATUS, AlertCondition.NOT_EQUALS, "green")
        assert evaluate_condition(rule, "yellow")
        assert not evaluate_condition(rule, "green")

    def test_legacy_numeric_status_threshold(self):
        rule = rule_for(MetricId.CLUSTER_STATUS, AlertCondition.EQUALS, 2, rule_id="cluster-status-red")
        assert evaluate_condition(rule, "red")

    def test_type_mismatch_is_false(self):
        status_rule = rule_for(MetricId.CLUSTER_STATUS, AlertCondition.EQUALS, "red")
        numeric_rule = rule_for(MetricId.CPU_USAGE, AlertCondition.GREATER_THAN, 90)
        assert not evaluate_condition(status_rule, 99.0)
        assert not evaluate_condition(numeric_rule, "red")


# =============================================================================
# Formatting
# =============================================================================

class TestFormatting:
    """Tests for values shown in notifications."""

    def test_format_bytes(self):
        assert format_bytes(512) == "512 B"
        assert format_bytes(1536) == "1.5 KB"
        assert format_bytes(50 * GIB) == "50.0 GB"

    @pytest.mark.parametrize(
        "value,unit,expected",
        [
            (95, "%", "95.0%"),
            (1234.56, "ms", "1234.6 ms"),
            (0, "ops/sec", "0.0 ops/sec"),
            ("red", "status", "red"),
            (2 * GIB, "bytes", "2.0 GB"),
        ],
    )
    def test_format_alert_value(self, value, unit, expected):
        assert format_alert_value(value, unit) == expected
