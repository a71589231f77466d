"""Group hardware metrics collector.

Fetches the members of a monitored group, normalizes their hardware and
exports per-group component totals, so operators can watch how scarce
hardware is spread across groups between pin and unpin runs.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

import structlog
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.metrics_core import Metric

from .. import workflow
from ..backend import HsmBackend

logger = structlog.get_logger(__name__)


@dataclass
class GroupHardwareMetric:
    """Hardware totals of one group."""

    group: str
    node_count: int = 0
    components: dict[str, int] = field(default_factory=dict)
    failed_nodes: int = 0


def fetch(
    backend: HsmBackend,
    group: str,
    patterns: Iterable[str],
    settings: workflow.WorkflowSettings,
) -> GroupHardwareMetric:
    """Fetch the hardware totals of one group.

    Args:
        backend: Control plane adapter.
        group: Group label.
        patterns: Component patterns the operator cares about.
        settings: Memory unit and fetch concurrency.

    Returns:
        Totals of the group's members whose inventory could be fetched.
    """
    report = workflow.get_group_hardware(backend, group, patterns, settings)
    return GroupHardwareMetric(
        group=group,
        node_count=len(report.group.members),
        components=report.summary,
        failed_nodes=len(report.failed_nodes),
    )


def generate_metrics(groups: list[GroupHardwareMetric]) -> Iterator[Metric]:
    """Generate Prometheus metrics from group totals.

    Args:
        groups: Totals per group.

    Yields:
        Prometheus Metric objects.
    """
    component_count = GaugeMetricFamily(
        "hsm_group_hw_component_count",
        "hardware components per group and component type",
        labels=["group", "component"],
    )
    for metric in groups:
        for component, count in metric.components.items():
            component_count.add_metric([metric.group, component], count)
    yield component_count

    node_count = GaugeMetricFamily(
        "hsm_group_node_count",
        "member nodes per group",
        labels=["group"],
    )
    for metric in groups:
        node_count.add_metric([metric.group], metric.node_count)
    yield node_count

    fetch_failures = GaugeMetricFamily(
        "hsm_group_inventory_fetch_failures",
        "member nodes whose hardware inventory could not be fetched",
        labels=["group"],
    )
    for metric in groups:
        fetch_failures.add_metric([metric.group], metric.failed_nodes)
    yield fetch_failures
