"""
Deal Engine - Deal Admission Controller.

============================================================
PURPOSE
============================================================
Per-cycle gate deciding which providers may receive a new
proposal.

RULES (in order):
1. pending >= max_pending       -> admit nobody
2. outstanding >= allowance     -> deny that provider
3. admit at most (max_pending - pending) providers, in list
   order; the rest wait for a later cycle

Fairness is by list order only. This is a gate, not a
priority queue.

============================================================
"""

import logging
from typing import List, Mapping, Optional, Sequence

from core.constants import format_bytes

from .config import AdmissionConfig
from .types import Provider, ProviderAllowanceRecord


logger = logging.getLogger(__name__)


class DealAdmissionController:
    """Admission control for new storage deal proposals."""

    def __init__(self, config: Optional[AdmissionConfig] = None):
        self._config = config or AdmissionConfig()

    @property
    def max_pending(self) -> int:
        return self._config.max_pending

    def has_capacity(self, pending_count: int) -> bool:
        """Whether one more deal fits under the pending cap."""
        return pending_count < self._config.max_pending

    def select_providers_for_proposal(
        self,
        providers: Sequence[Provider],
        allowances: Mapping[str, ProviderAllowanceRecord],
        pending_count: int,
    ) -> List[Provider]:
        """
        Select providers to propose to this cycle.

        Args:
            providers: Candidate providers in listing order
            allowances: Allowance records by address
            pending_count: Current number of pending storage deals

        Returns:
            Admitted providers, in listing order
        """
        if not self.has_capacity(pending_count):
            logger.info(
                f"Admission closed: {pending_count} pending deals "
                f">= max {self._config.max_pending}"
            )
            return []

        slots = self._config.max_pending - pending_count
        admitted: List[Provider] = []
        deferred = 0

        for provider in providers:
            record = allowances.get(provider.address)
            if record is not None and record.allowance_exhausted:
                logger.debug(
                    f"[admission][{provider.address}] denied: outstanding "
                    f"{format_bytes(record.current_outstanding_volume)} >= allowance "
                    f"{format_bytes(record.daily_allowance)}"
                )
                continue

            if len(admitted) >= slots:
                deferred += 1
                continue

            admitted.append(provider)

        if deferred:
            logger.info(f"Admission: {deferred} eligible providers deferred to a later cycle")

        logger.info(f"Admission: {len(admitted)} providers admitted ({pending_count} pending)")
        return admitted
