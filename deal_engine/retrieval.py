"""
Deal Engine - Retrieval Verifier.

============================================================
PURPOSE
============================================================
For each deal that reached Active, retrieves the data and
compares its SHA-256 against the hash recorded when the test
file was generated.

OUTCOMES:
- No offers         -> keep pending, try next cycle
- Timeout           -> failure "<cid> retrieve deal timeout",
                       record removed, partial output left alone
- Transfer error    -> failure with the error text, removed
- Hash equal        -> success, original file deleted, removed
- Hash different    -> "hash check failed", same cleanup

There is no automatic retry once a retrieval has failed.

============================================================
"""

import asyncio
import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Callable, Dict, Optional

from .adapters.base import NodeAdapter
from .config import TimeoutConfig
from .errors import (
    HASH_CHECK_FAILED,
    RETRIEVAL_SUCCESS,
    error_message,
    retrieval_timeout_message,
)
from .stats import StatsAggregator
from .test_files import TestFileManager
from .types import PendingRetrieval, RetrievalOutcome, RetrievalSummary

if TYPE_CHECKING:
    from reporting.backend_client import BackendClient


logger = logging.getLogger(__name__)


class RetrievalVerifier:
    """
    Owns the pending retrieval map (keyed by data CID).
    """

    def __init__(
        self,
        node: NodeAdapter,
        files: TestFileManager,
        stats: StatsAggregator,
        reporter: Optional["BackendClient"] = None,
        timeout_config: Optional[TimeoutConfig] = None,
    ):
        self._node = node
        self._files = files
        self._stats = stats
        self._reporter = reporter
        self._timeouts = timeout_config or TimeoutConfig()

        self._pending: Dict[str, PendingRetrieval] = {}
        self._wallet: Optional[str] = None

    # --------------------------------------------------------
    # MAP ACCESS
    # --------------------------------------------------------

    def enqueue(self, data_cid: str, retrieval: PendingRetrieval) -> None:
        self._pending[data_cid] = retrieval
        logger.debug(f"[retrieval][{retrieval.provider}] queued {data_cid}")

    def discard(self, data_cid: str) -> bool:
        """Drop a pending retrieval without recording an outcome."""
        return self._pending.pop(data_cid, None) is not None

    def snapshot(self) -> Dict[str, PendingRetrieval]:
        return {cid: replace(record) for cid, record in self._pending.items()}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def __contains__(self, data_cid: str) -> bool:
        return data_cid in self._pending

    # --------------------------------------------------------
    # VERIFICATION
    # --------------------------------------------------------

    async def verify(self, data_cid: str, retrieval: PendingRetrieval) -> RetrievalOutcome:
        """
        Retrieve and verify one data CID.

        Args:
            data_cid: Data CID to retrieve
            retrieval: Its pending record

        Returns:
            RetrievalOutcome
        """
        if data_cid not in self._pending:
            return RetrievalOutcome.ABSENT

        rpc_timeout = self._timeouts.rpc_request_timeout_seconds
        try:
            offers = await asyncio.wait_for(self._node.find_retrieval_offers(data_cid), rpc_timeout)
            wallet = await self._default_wallet()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[retrieval][{retrieval.provider}] {data_cid}: offer query failed: {e}")
            return RetrievalOutcome.DEFERRED

        if not offers:
            logger.info(f"[retrieval][{retrieval.provider}] {data_cid}: no retrieval offers yet")
            return RetrievalOutcome.NO_OFFERS

        dest_path = self._files.retrieval_path()
        logger.info(f"[retrieval][{retrieval.provider}] retrieving {data_cid} to {dest_path}")

        try:
            await asyncio.wait_for(
                self._node.retrieve(offers[0], wallet, dest_path),
                timeout=self._timeouts.retrieval_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._fail(data_cid, retrieval, retrieval_timeout_message(data_cid))
            return RetrievalOutcome.TIMED_OUT
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(data_cid, retrieval, error_message(e))
            self._discard_artifact(dest_path)
            return RetrievalOutcome.TRANSFER_ERROR

        try:
            retrieved_hash = await self._files.hash_file(dest_path)
        except OSError as e:
            self._fail(data_cid, retrieval, f"retrieved file unreadable: {e}")
            self._discard_artifact(dest_path)
            return RetrievalOutcome.TRANSFER_ERROR

        self._files.delete(retrieval.file_path)
        self._discard_artifact(dest_path)

        if retrieved_hash != retrieval.content_hash:
            self._fail(data_cid, retrieval, HASH_CHECK_FAILED)
            return RetrievalOutcome.INTEGRITY_FAILURE

        self._pending.pop(data_cid, None)
        self._stats.record_retrieval_success()
        self._report(retrieval.provider, True, RETRIEVAL_SUCCESS, data_cid)
        return RetrievalOutcome.VERIFIED

    async def verify_all(self, should_stop: Optional[Callable[[], bool]] = None) -> RetrievalSummary:
        """
        Verify every pending retrieval, one at a time.

        Iterates a snapshot taken at the start of the pass.
        """
        summary = RetrievalSummary()
        items = list(self._pending.items())

        for index, (data_cid, retrieval) in enumerate(items):
            if should_stop is not None and should_stop():
                summary.stopped_early = True
                break

            try:
                outcome = await self.verify(data_cid, retrieval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[retrieval][{retrieval.provider}] {data_cid}: unexpected error: {e}")
                outcome = RetrievalOutcome.DEFERRED

            summary.add(outcome)

            if index < len(items) - 1 and self._timeouts.retrieval_pause_seconds > 0:
                await asyncio.sleep(self._timeouts.retrieval_pause_seconds)

        return summary

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    async def _default_wallet(self) -> str:
        if self._wallet is None:
            self._wallet = await asyncio.wait_for(
                self._node.default_wallet(),
                self._timeouts.rpc_request_timeout_seconds,
            )
        return self._wallet

    def _fail(self, data_cid: str, retrieval: PendingRetrieval, message: str) -> None:
        self._pending.pop(data_cid, None)
        self._stats.record_retrieval_failure()
        self._report(retrieval.provider, False, message, data_cid)

    def _discard_artifact(self, path: str) -> None:
        if not self._files.config.keep_retrieved_files:
            self._files.delete(path)

    def _report(self, provider: str, success: bool, message: str, data_cid: str) -> None:
        if self._reporter is not None:
            self._reporter.report_retrieval_outcome(provider, success, message, data_cid=data_cid)
        else:
            tag = "PASSED" if success else "FAILED"
            logger.info(f"[{tag}][retrieval][{provider}] {message}")
