"""
Monitoring - Metrics.

============================================================
RESPONSIBILITY
============================================================
Collects and exposes probe metrics.

- Set-only gauges for deal and retrieval counts
- Prometheus text exposition for an external exporter
- No read path is needed by the probe itself

============================================================
STANDARD METRICS
============================================================
- storage_deals_pending
- storage_deals_successful
- storage_deals_failed
- retrieve_deals_successful
- retrieve_deals_failed

============================================================
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


logger = logging.getLogger(__name__)


class MetricType(Enum):
    GAUGE = "gauge"
    COUNTER = "counter"


@dataclass
class MetricDefinition:
    """A registered metric."""

    name: str
    type: MetricType
    description: str


@dataclass
class MetricValue:
    """Current value of a metric."""

    name: str
    value: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================
# STANDARD METRICS
# ============================================================

STORAGE_DEALS_PENDING = "storage_deals_pending"
STORAGE_DEALS_SUCCESSFUL = "storage_deals_successful"
STORAGE_DEALS_FAILED = "storage_deals_failed"
RETRIEVE_DEALS_SUCCESSFUL = "retrieve_deals_successful"
RETRIEVE_DEALS_FAILED = "retrieve_deals_failed"

STANDARD_METRICS: List[MetricDefinition] = [
    MetricDefinition(STORAGE_DEALS_PENDING, MetricType.GAUGE, "Storage deals awaiting a terminal state"),
    MetricDefinition(STORAGE_DEALS_SUCCESSFUL, MetricType.GAUGE, "Storage deals that reached Active"),
    MetricDefinition(STORAGE_DEALS_FAILED, MetricType.GAUGE, "Storage deals that failed or timed out"),
    MetricDefinition(RETRIEVE_DEALS_SUCCESSFUL, MetricType.GAUGE, "Retrievals with a matching hash"),
    MetricDefinition(RETRIEVE_DEALS_FAILED, MetricType.GAUGE, "Retrievals that failed, timed out or mismatched"),
]


# ============================================================
# COLLECTOR
# ============================================================

class MetricsCollector:
    """
    In-process metric store.

    Thread-safe so an exporter thread may call render().
    """

    def __init__(self, namespace: str = "qab"):
        self._namespace = namespace
        self._definitions: Dict[str, MetricDefinition] = {}
        self._values: Dict[str, MetricValue] = {}
        self._lock = threading.Lock()

    def register_metric(self, definition: MetricDefinition) -> None:
        with self._lock:
            self._definitions[definition.name] = definition
            self._values.setdefault(definition.name, MetricValue(definition.name, 0.0))

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge. Unregistered names are registered on the fly."""
        with self._lock:
            if name not in self._definitions:
                self._definitions[name] = MetricDefinition(name, MetricType.GAUGE, name)
            self._values[name] = MetricValue(name, float(value))

    def get_metric(self, name: str) -> Optional[MetricValue]:
        with self._lock:
            return self._values.get(name)

    def render(self) -> str:
        """Prometheus text exposition format."""
        lines: List[str] = []
        with self._lock:
            for name, definition in self._definitions.items():
                full_name = f"{self._namespace}_{name}" if self._namespace else name
                value = self._values.get(name)
                lines.append(f"# HELP {full_name} {definition.description}")
                lines.append(f"# TYPE {full_name} {definition.type.value}")
                lines.append(f"{full_name} {format_value(value.value if value else 0.0)}")
        return "\n".join(lines) + "\n"


def format_value(value: float) -> str:
    if value == int(value):
        return str(int(value))
    return repr(value)


def create_probe_metrics(namespace: str = "qab") -> MetricsCollector:
    """Collector with the standard probe metrics registered."""
    collector = MetricsCollector(namespace=namespace)
    for definition in STANDARD_METRICS:
        collector.register_metric(definition)
    return collector
