import pytest

from apps.api.metrics import MetricsRegistry, PrometheusExporter, register_default_metrics
from apps.api.metrics.base import track_duration
from apps.api.metrics.definitions import TICKET_ACTION_DURATION_SECONDS, TICKET_ACTIONS_TOTAL


def test_registry_returns_same_metric_by_name():
    registry = MetricsRegistry()
    first = registry.counter("jobs_total", label_names=("queue",))
    assert registry.counter("jobs_total", label_names=("queue",)) is first
    with pytest.raises(TypeError):
        registry.distribution("jobs_total")


def test_counter_requires_declared_labels():
    registry = MetricsRegistry()
    counter = registry.counter("jobs_total", label_names=("queue",))
    with pytest.raises(ValueError):
        counter.inc(labels={"lane": "fast"})
    with pytest.raises(ValueError):
        counter.inc(-1, labels={"queue": "fast"})


def test_exporter_renders_counters_and_summaries():
    registry = MetricsRegistry()
    register_default_metrics(registry)
    registry.counter(TICKET_ACTIONS_TOTAL).inc(labels={"action": "assign"})
    with track_duration(registry.distribution(TICKET_ACTION_DURATION_SECONDS), labels={"action": "assign"}):
        pass

    payload = PrometheusExporter(registry).build_payload()

    assert "# TYPE ticket_actions_total counter" in payload
    assert 'ticket_actions_total{action="assign"} 1.0' in payload
    assert "# TYPE ticket_action_duration_seconds summary" in payload
    assert 'ticket_action_duration_seconds_count{action="assign"} 1.0' in payload
