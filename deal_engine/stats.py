"""
Deal Engine - Stats Aggregator.

============================================================
PURPOSE
============================================================
Owns the probe's outcome counters and reports a periodic
summary.

- Every change is pushed to the metrics sink
- report() logs totals plus a per-provider summary for
  providers with proposed volume

============================================================
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from core.constants import format_bytes
from monitoring.metrics import (
    RETRIEVE_DEALS_FAILED,
    RETRIEVE_DEALS_SUCCESSFUL,
    STORAGE_DEALS_FAILED,
    STORAGE_DEALS_PENDING,
    STORAGE_DEALS_SUCCESSFUL,
    MetricsCollector,
)

from .allowance import ProviderAllowanceTracker
from .registry import ProviderRegistry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of the counters."""

    storage_pending: int = 0
    storage_successful: int = 0
    storage_failed: int = 0
    retrieval_successful: int = 0
    retrieval_failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            STORAGE_DEALS_PENDING: self.storage_pending,
            STORAGE_DEALS_SUCCESSFUL: self.storage_successful,
            STORAGE_DEALS_FAILED: self.storage_failed,
            RETRIEVE_DEALS_SUCCESSFUL: self.retrieval_successful,
            RETRIEVE_DEALS_FAILED: self.retrieval_failed,
        }


class StatsAggregator:
    """Outcome counters of one probe process."""

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self._metrics = metrics
        self.storage_pending = 0
        self.storage_successful = 0
        self.storage_failed = 0
        self.retrieval_successful = 0
        self.retrieval_failed = 0

    def _push(self, name: str, value: int) -> None:
        if self._metrics is not None:
            self._metrics.set_gauge(name, value)

    # --------------------------------------------------------
    # UPDATES
    # --------------------------------------------------------

    def set_pending(self, count: int) -> None:
        self.storage_pending = count
        self._push(STORAGE_DEALS_PENDING, count)

    def record_storage_success(self) -> None:
        self.storage_successful += 1
        self._push(STORAGE_DEALS_SUCCESSFUL, self.storage_successful)

    def record_storage_failure(self) -> None:
        self.storage_failed += 1
        self._push(STORAGE_DEALS_FAILED, self.storage_failed)

    def record_retrieval_success(self) -> None:
        self.retrieval_successful += 1
        self._push(RETRIEVE_DEALS_SUCCESSFUL, self.retrieval_successful)

    def record_retrieval_failure(self) -> None:
        self.retrieval_failed += 1
        self._push(RETRIEVE_DEALS_FAILED, self.retrieval_failed)

    # --------------------------------------------------------
    # REPORTING
    # --------------------------------------------------------

    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            storage_pending=self.storage_pending,
            storage_successful=self.storage_successful,
            storage_failed=self.storage_failed,
            retrieval_successful=self.retrieval_successful,
            retrieval_failed=self.retrieval_failed,
        )

    def report(
        self,
        allowances: ProviderAllowanceTracker,
        registry: Optional[ProviderRegistry] = None,
    ) -> StatsSnapshot:
        """Log totals and the per-provider summary."""
        snapshot = self.snapshot()

        logger.info(
            f"Storage deals: pending={snapshot.storage_pending} "
            f"successful={snapshot.storage_successful} failed={snapshot.storage_failed}"
        )
        logger.info(
            f"Retrievals: successful={snapshot.retrieval_successful} "
            f"failed={snapshot.retrieval_failed}"
        )

        for address, record in allowances.active_records():
            provider = registry.get(address) if registry is not None else None
            capacity = provider.capacity if provider is not None else record.last_observed_capacity
            logger.info(
                f"[stats][{address}] allowance={format_bytes(record.daily_allowance)} "
                f"capacity={format_bytes(capacity)} "
                f"outstanding={record.current_outstanding_count}/"
                f"{format_bytes(record.current_outstanding_volume)} "
                f"proposed={record.lifetime_proposed_count}/"
                f"{format_bytes(record.lifetime_proposed_volume)} "
                f"succeeded={record.lifetime_success_count}/"
                f"{format_bytes(record.lifetime_success_volume)}"
            )

        return snapshot
