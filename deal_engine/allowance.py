"""
Deal Engine - Provider Allowance Tracker.

============================================================
PURPOSE
============================================================
Maintains, per provider, a rolling daily volume allowance
derived from capacity growth, plus outstanding and lifetime
proposal counters.

ALLOWANCE RULE:
    On first contact: allowance = floor
    Every window (24h) after that:
        allowance = clamp((capacity - last_capacity) / 2,
                          floor, ceiling)
        outstanding counters reset

INVARIANTS:
- floor <= daily_allowance <= ceiling
- outstanding volume never negative
- at most one recompute per window per provider

============================================================
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from core.constants import format_bytes

from .config import AllowanceConfig
from .types import Provider, ProviderAllowanceRecord


logger = logging.getLogger(__name__)


def clamp_allowance(growth: int, floor: int, ceiling: int) -> int:
    """Half the capacity growth, clamped to [floor, ceiling]."""
    return max(floor, min(ceiling, growth // 2))


class ProviderAllowanceTracker:
    """
    Per-provider allowance records.

    Records are created lazily and mutated only through this
    tracker. Readers get copies.
    """

    def __init__(self, config: Optional[AllowanceConfig] = None):
        self._config = config or AllowanceConfig()
        self._records: Dict[str, ProviderAllowanceRecord] = {}

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self._config.window_hours)

    # --------------------------------------------------------
    # RECOMPUTE
    # --------------------------------------------------------

    def recompute_allowance(self, address: str, current_capacity: int, now: datetime) -> bool:
        """
        Create or recompute the allowance record of a provider.

        Args:
            address: Provider address
            current_capacity: Capacity reported this cycle
            now: Current time

        Returns:
            True if a record was created or recomputed
        """
        record = self._records.get(address)

        if record is None:
            self._records[address] = ProviderAllowanceRecord(
                daily_allowance=self._config.min_daily_allowance,
                last_observed_capacity=current_capacity,
                last_recomputed_at=now,
            )
            logger.debug(
                f"[allowance][{address}] first contact, "
                f"allowance {format_bytes(self._config.min_daily_allowance)}"
            )
            return True

        if now - record.last_recomputed_at < self.window:
            return False

        record.daily_allowance = clamp_allowance(
            current_capacity - record.last_observed_capacity,
            self._config.min_daily_allowance,
            self._config.max_daily_allowance,
        )
        record.last_observed_capacity = current_capacity
        record.current_outstanding_count = 0
        record.current_outstanding_volume = 0
        record.last_recomputed_at = now

        logger.info(
            f"[allowance][{address}] new daily allowance "
            f"{format_bytes(record.daily_allowance)} (capacity {format_bytes(current_capacity)})"
        )
        return True

    def recompute_all(self, providers: Iterable[Provider], now: datetime) -> int:
        """Recompute every provider; returns how many changed."""
        return sum(
            1 for provider in providers
            if self.recompute_allowance(provider.address, provider.capacity, now)
        )

    # --------------------------------------------------------
    # COUNTERS
    # --------------------------------------------------------

    def record_proposal(self, address: str, size: int) -> None:
        """Count a proposal accepted by the node."""
        record = self._records.get(address)
        if record is None:
            logger.warning(f"[allowance][{address}] proposal recorded without allowance record")
            return

        record.current_outstanding_count += 1
        record.current_outstanding_volume += max(0, size)
        record.lifetime_proposed_count += 1
        record.lifetime_proposed_volume += max(0, size)

    def record_success(self, address: str, size: int) -> None:
        """Count a deal that reached Active."""
        record = self._records.get(address)
        if record is None:
            return

        record.lifetime_success_count += 1
        record.lifetime_success_volume += max(0, size)

    # --------------------------------------------------------
    # ACCESS
    # --------------------------------------------------------

    def get(self, address: str) -> Optional[ProviderAllowanceRecord]:
        record = self._records.get(address)
        return record.copy() if record is not None else None

    def snapshot(self) -> Dict[str, ProviderAllowanceRecord]:
        return {address: record.copy() for address, record in self._records.items()}

    def active_records(self) -> List[Tuple[str, ProviderAllowanceRecord]]:
        """Providers with non-zero proposed volume."""
        return [
            (address, record.copy())
            for address, record in self._records.items()
            if record.lifetime_proposed_volume > 0
        ]

    def __len__(self) -> int:
        return len(self._records)
