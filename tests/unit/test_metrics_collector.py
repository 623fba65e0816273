"""Unit tests for metrics collector."""

import pytest
from prometheus_client import CollectorRegistry

from container_panel.utils.metrics_collector import MetricsCollector, get_metrics_collector


@pytest.fixture
def metrics_collector():
    """Create metrics collector on a private registry."""
    return MetricsCollector(registry=CollectorRegistry())


def test_metrics_collector_singleton():
    """Test that get_metrics_collector returns singleton instance."""
    collector1 = get_metrics_collector()
    collector2 = get_metrics_collector()
    assert collector1 is collector2


def test_record_container_operation(metrics_collector):
    """Test recording lifecycle operations."""
    metrics_collector.record_container_operation("create", "success")
    metrics_collector.record_container_operation("create", "success")
    metrics_collector.record_container_operation("update_settings", "failure")

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "container_panel_container_operations_total" in metrics_data
    assert 'action="create",outcome="success"} 2.0' in metrics_data
    assert 'action="update_settings",outcome="failure"} 1.0' in metrics_data


def test_record_image_pull(metrics_collector):
    """Test recording image pulls."""
    metrics_collector.record_image_pull("node:20", "success")

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "container_panel_image_pulls_total" in metrics_data
    assert 'image="node:20"' in metrics_data


def test_record_fs_and_archive_operations(metrics_collector):
    """Test recording filesystem operations and archive tool runs."""
    metrics_collector.record_fs_operation("write")
    metrics_collector.record_archive_tool_run("unzip", "failure")

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert 'op_type="write"' in metrics_data
    assert 'tool="unzip",outcome="failure"' in metrics_data


def test_recreate_duration(metrics_collector):
    """Test recording recreate duration."""
    metrics_collector.record_recreate_duration(1.5)
    metrics_collector.record_recreate_duration(12.0)

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "container_panel_recreate_duration_seconds_count 2.0" in metrics_data


def test_active_log_subscriptions(metrics_collector):
    """Test setting active log subscriptions gauge."""
    metrics_collector.set_active_log_subscriptions(3)

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "container_panel_active_log_subscriptions 3.0" in metrics_data


def test_collectors_are_independent():
    """Separate registries do not share counts."""
    first = MetricsCollector(registry=CollectorRegistry())
    second = MetricsCollector(registry=CollectorRegistry())

    first.record_fs_operation("list")

    assert 'op_type="list"' in first.get_metrics().decode("utf-8")
    assert 'op_type="list"' not in second.get_metrics().decode("utf-8")
