"""
Deal Engine - Deal Lifecycle Tracker.

============================================================
PURPOSE
============================================================
Owns the in-flight storage deals, polls each one's state on
the node and applies the action table in state_machine.

CRITICAL PRINCIPLE:
    "The node reports the deal state; the tracker only reacts."

POLLING RULES:
- A pass iterates the deal IDs present when it starts, so a
  deal removed earlier in the pass is never polled again
- A failed poll (error, no usable state, StorageDealUnknown
  or an unmapped code) leaves the deal pending and records
  nothing
- Deals in a non-terminal state fail once older than the
  deal timeout

============================================================
"""

import asyncio
import logging
from dataclasses import replace
from datetime import timedelta
from typing import TYPE_CHECKING, Callable, Dict, Optional

from core.clock import ClockProtocol, SystemClock

from .adapters.base import NodeAdapter
from .allowance import ProviderAllowanceTracker
from .config import TimeoutConfig
from .errors import STORAGE_SUCCESS, deal_timeout_message
from .retrieval import RetrievalVerifier
from .state_machine import action_for_state
from .stats import StatsAggregator
from .test_files import TestFileManager
from .types import (
    DealAction,
    DealOutcome,
    DealState,
    PendingRetrieval,
    PendingStorageDeal,
    PollSummary,
)

if TYPE_CHECKING:
    from reporting.backend_client import BackendClient


logger = logging.getLogger(__name__)


class DealLifecycleTracker:
    """
    Pending storage deals keyed by deal CID.
    """

    def __init__(
        self,
        node: NodeAdapter,
        allowances: ProviderAllowanceTracker,
        retrievals: RetrievalVerifier,
        files: TestFileManager,
        stats: StatsAggregator,
        reporter: Optional["BackendClient"] = None,
        timeout_config: Optional[TimeoutConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._node = node
        self._allowances = allowances
        self._retrievals = retrievals
        self._files = files
        self._stats = stats
        self._reporter = reporter
        self._timeouts = timeout_config or TimeoutConfig()
        self._clock = clock or SystemClock()

        self._pending: Dict[str, PendingStorageDeal] = {}

    @property
    def deal_timeout(self) -> timedelta:
        return timedelta(hours=self._timeouts.deal_timeout_hours)

    # --------------------------------------------------------
    # MAP ACCESS
    # --------------------------------------------------------

    def track(self, deal_cid: str, deal: PendingStorageDeal) -> None:
        """
        Start tracking a proposed deal.

        Raises:
            ValueError: If the deal CID is already tracked
        """
        if deal_cid in self._pending:
            raise ValueError(f"Deal {deal_cid} is already tracked")

        self._pending[deal_cid] = deal
        self._stats.set_pending(len(self._pending))

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def snapshot(self) -> Dict[str, PendingStorageDeal]:
        return {cid: replace(deal) for cid, deal in self._pending.items()}

    def __contains__(self, deal_cid: str) -> bool:
        return deal_cid in self._pending

    # --------------------------------------------------------
    # POLLING
    # --------------------------------------------------------

    async def poll(self, deal_cid: str) -> DealOutcome:
        """
        Poll one deal and react to its reported state.

        Returns:
            DealOutcome
        """
        deal = self._pending.get(deal_cid)
        if deal is None:
            return DealOutcome.ABSENT

        try:
            code = await asyncio.wait_for(
                self._node.deal_status(deal_cid),
                self._timeouts.rpc_request_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[deal][{deal.provider}] {deal_cid}: status poll failed: {e}")
            return DealOutcome.POLL_FAILED

        state = DealState.from_code(code) if code is not None else DealState.UNKNOWN
        if state is DealState.UNKNOWN:
            logger.warning(f"[deal][{deal.provider}] {deal_cid}: no usable status ({code})")
            return DealOutcome.POLL_FAILED

        action = action_for_state(state)
        logger.debug(f"[deal][{deal.provider}] {deal_cid}: {state.value} -> {action.value}")

        return self._apply(deal_cid, deal, state, action)

    async def poll_all(self, should_stop: Optional[Callable[[], bool]] = None) -> PollSummary:
        """Poll every deal pending at the start of the pass."""
        summary = PollSummary()
        deal_cids = list(self._pending)

        for index, deal_cid in enumerate(deal_cids):
            if should_stop is not None and should_stop():
                summary.stopped_early = True
                break

            try:
                outcome = await self.poll(deal_cid)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[deal] {deal_cid}: unexpected error while polling: {e}")
                outcome = DealOutcome.POLL_FAILED

            summary.add(outcome)

            if index < len(deal_cids) - 1 and self._timeouts.poll_pause_seconds > 0:
                await asyncio.sleep(self._timeouts.poll_pause_seconds)

        return summary

    # --------------------------------------------------------
    # ACTIONS
    # --------------------------------------------------------

    def _apply(
        self,
        deal_cid: str,
        deal: PendingStorageDeal,
        state: DealState,
        action: DealAction,
    ) -> DealOutcome:
        if action is DealAction.RECORD_SUCCESS:
            self._remove(deal_cid)
            self._files.delete(deal.file_path)
            self._stats.record_storage_success()
            self._allowances.record_success(deal.provider, deal.size)
            self._report(deal, True, STORAGE_SUCCESS)
            if deal.data_cid not in self._retrievals:
                self._retrievals.enqueue(deal.data_cid, PendingRetrieval(
                    provider=deal.provider,
                    file_path=deal.file_path,
                    content_hash=deal.content_hash,
                    size=deal.size,
                    created_at=self._clock.now(),
                ))
            return DealOutcome.SUCCEEDED

        if action is DealAction.CLEANUP:
            self._remove(deal_cid)
            self._retrievals.discard(deal.data_cid)
            self._files.delete(deal.file_path)
            logger.info(f"[deal][{deal.provider}] {deal_cid}: completed, cleaned up")
            return DealOutcome.CLEANED_UP

        if action is DealAction.RELEASE_FILE:
            self._files.delete(deal.file_path)
            return DealOutcome.PENDING

        if action is DealAction.RECORD_FAILURE:
            self._fail(deal_cid, deal, f"deal failed in state: {state.value}")
            return DealOutcome.FAILED

        if self._clock.now() - deal.created_at > self.deal_timeout:
            self._fail(deal_cid, deal, deal_timeout_message(state))
            return DealOutcome.TIMED_OUT

        return DealOutcome.PENDING

    def _fail(self, deal_cid: str, deal: PendingStorageDeal, message: str) -> None:
        self._remove(deal_cid)
        self._files.delete(deal.file_path)
        self._stats.record_storage_failure()
        self._report(deal, False, message)

    def _remove(self, deal_cid: str) -> None:
        self._pending.pop(deal_cid, None)
        self._stats.set_pending(len(self._pending))

    def _report(self, deal: PendingStorageDeal, success: bool, message: str) -> None:
        if self._reporter is not None:
            self._reporter.report_storage_outcome(deal.provider, success, message, data_cid=deal.data_cid)
        else:
            tag = "PASSED" if success else "FAILED"
            logger.info(f"[{tag}][storage][{deal.provider}] {message}")
