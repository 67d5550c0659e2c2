"""
Deal Engine - Deal Proposer.

============================================================
PURPOSE
============================================================
Sends storage deal proposals to admitted providers.

FLOW PER PROVIDER:
1. First contact: peer ID and sector size (miner info)
2. Live ask query
3. Generate a random test file (capped to half a sector)
4. Import it into the node
5. Start the deal, track it as pending

Only a refused ask or proposal counts as a storage failure;
it leaves no local state behind. Contact, import and wallet
errors and transient errors are skipped and retried next cycle.

Proposals go out one at a time with a fixed pause; the
pending cap is re-checked before each one.

============================================================
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, List, Optional

from core.clock import ClockProtocol, SystemClock
from core.constants import format_bytes

from .adapters.base import DealProposal, NodeAdapter
from .admission import DealAdmissionController
from .allowance import ProviderAllowanceTracker
from .config import DealEngineConfig
from .errors import FailureKind, classify_error, error_message
from .lifecycle import DealLifecycleTracker
from .registry import ProviderRegistry
from .stats import StatsAggregator
from .test_files import GeneratedFile, TestFileManager, effective_file_size
from .types import PendingStorageDeal, ProposalSummary, Provider

if TYPE_CHECKING:
    from reporting.backend_client import BackendClient


logger = logging.getLogger(__name__)


class DealProposer:
    """Proposes storage deals to admitted providers."""

    def __init__(
        self,
        node: NodeAdapter,
        registry: ProviderRegistry,
        allowances: ProviderAllowanceTracker,
        admission: DealAdmissionController,
        lifecycle: DealLifecycleTracker,
        files: TestFileManager,
        stats: StatsAggregator,
        config: DealEngineConfig,
        reporter: Optional["BackendClient"] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._node = node
        self._registry = registry
        self._allowances = allowances
        self._admission = admission
        self._lifecycle = lifecycle
        self._files = files
        self._stats = stats
        self._config = config
        self._reporter = reporter
        self._clock = clock or SystemClock()
        self._wallet: Optional[str] = None

    @property
    def _rpc_timeout(self) -> float:
        return self._config.timeout.rpc_request_timeout_seconds

    async def propose(
        self,
        admitted: List[Provider],
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> ProposalSummary:
        """
        Propose to each admitted provider in order.

        Returns:
            ProposalSummary
        """
        summary = ProposalSummary(admitted=len(admitted))
        pause = self._config.admission.proposal_pause_seconds

        for index, provider in enumerate(admitted):
            if should_stop is not None and should_stop():
                summary.stopped_early = True
                break

            if not self._admission.has_capacity(self._lifecycle.pending_count):
                logger.info(f"Pending cap reached, deferring {len(admitted) - index} providers")
                break

            try:
                deal_cid = await self._propose_one(provider, summary)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[propose][{provider.address}] unexpected error: {e}")
                deal_cid = None

            if deal_cid is not None:
                summary.proposed += 1
                summary.deal_ids.append(deal_cid)

            if index < len(admitted) - 1 and pause > 0:
                await asyncio.sleep(pause)

        logger.info(
            f"Proposals: {summary.proposed} sent, {summary.failed} failed, "
            f"{summary.skipped} skipped of {summary.admitted} admitted"
        )
        return summary

    async def _propose_one(self, provider: Provider, summary: ProposalSummary) -> Optional[str]:
        address = provider.address

        # Contact
        try:
            peer_id, sector_size = await self._contact(provider)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[propose][{address}] contact skipped: {e}")
            return None

        # Ask
        try:
            ask = await asyncio.wait_for(self._node.query_ask(peer_id, address), self._rpc_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._registry.record_ask(address, None, reachable=False)
            self._on_error(address, "ask", e, summary)
            return None

        self._registry.record_ask(address, ask.price, reachable=True)

        size = effective_file_size(self._config.test_file.size, sector_size)
        generated = await self._files.generate(size)

        # Import
        try:
            data_cid = await asyncio.wait_for(self._node.import_file(generated.path), self._rpc_timeout)
            wallet = await self._default_wallet()
        except asyncio.CancelledError:
            self._files.delete(generated.path)
            raise
        except Exception as e:
            self._files.delete(generated.path)
            logger.warning(f"[propose][{address}] import skipped: {e}")
            return None

        # Propose
        try:
            deal_cid = await asyncio.wait_for(
                self._node.start_deal(DealProposal(
                    data_cid=data_cid,
                    wallet=wallet,
                    miner=address,
                    epoch_price=ask.price,
                    min_blocks_duration=self._config.node.min_blocks_duration,
                    transfer_type=self._config.node.transfer_type,
                )),
                self._rpc_timeout,
            )
        except asyncio.CancelledError:
            self._files.delete(generated.path)
            raise
        except Exception as e:
            self._files.delete(generated.path)
            self._on_error(address, "deal", e, summary)
            return None

        self._track(deal_cid, data_cid, address, generated)
        logger.info(
            f"[propose][{address}] deal {deal_cid} for {data_cid} "
            f"({format_bytes(generated.size)} at {ask.price} attoFIL/epoch)"
        )
        return deal_cid

    async def _contact(self, provider: Provider):
        """Peer ID and sector size, fetched on first contact."""
        known = self._registry.get(provider.address) or provider
        if known.peer_id:
            return known.peer_id, known.sector_size

        info = await asyncio.wait_for(self._node.miner_info(provider.address), self._rpc_timeout)
        self._registry.record_contact(provider.address, info.peer_id, info.sector_size)

        try:
            connectedness = await asyncio.wait_for(self._node.net_connectedness(info.peer_id), self._rpc_timeout)
            logger.debug(f"[propose][{provider.address}] connectedness {connectedness}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"[propose][{provider.address}] connectedness unknown: {e}")

        return info.peer_id, info.sector_size

    async def _default_wallet(self) -> str:
        if self._wallet is None:
            self._wallet = await asyncio.wait_for(self._node.default_wallet(), self._rpc_timeout)
        return self._wallet

    def _track(self, deal_cid: str, data_cid: str, address: str, generated: GeneratedFile) -> None:
        self._lifecycle.track(deal_cid, PendingStorageDeal(
            data_cid=data_cid,
            provider=address,
            file_path=generated.path,
            content_hash=generated.content_hash,
            size=generated.size,
            created_at=self._clock.now(),
        ))
        self._allowances.record_proposal(address, generated.size)

    def _on_error(self, address: str, stage: str, error: Exception, summary: ProposalSummary) -> None:
        kind = classify_error(error)
        if kind is FailureKind.TRANSIENT:
            logger.warning(f"[propose][{address}] {stage} skipped: {error}")
            return

        summary.failed += 1
        self._stats.record_storage_failure()
        message = f"{stage} failed: {error_message(error)}"
        if self._reporter is not None:
            self._reporter.report_storage_outcome(address, False, message)
        else:
            logger.info(f"[FAILED][storage][{address}] {message}")
