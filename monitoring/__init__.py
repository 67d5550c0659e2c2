"""
Monitoring Package.

============================================================
PURPOSE
============================================================
Strictly observational metrics for the probe.

PRINCIPLES:
1. SET-ONLY - The probe writes gauges, never reads them back
2. RESILIENT - A missing exporter never affects the probe

============================================================
"""

from .metrics import (
    MetricDefinition,
    MetricType,
    MetricValue,
    MetricsCollector,
    RETRIEVE_DEALS_FAILED,
    RETRIEVE_DEALS_SUCCESSFUL,
    STANDARD_METRICS,
    STORAGE_DEALS_FAILED,
    STORAGE_DEALS_PENDING,
    STORAGE_DEALS_SUCCESSFUL,
    create_probe_metrics,
)


__all__ = [
    "MetricDefinition",
    "MetricType",
    "MetricValue",
    "MetricsCollector",
    "STANDARD_METRICS",
    "STORAGE_DEALS_PENDING",
    "STORAGE_DEALS_SUCCESSFUL",
    "STORAGE_DEALS_FAILED",
    "RETRIEVE_DEALS_SUCCESSFUL",
    "RETRIEVE_DEALS_FAILED",
    "create_probe_metrics",
]
