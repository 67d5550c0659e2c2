"""
Reporting - Backend Client.

============================================================
PURPOSE
============================================================
HTTP client for the outcome-reporting backend.

- Paginated provider listing:  GET  /miners?skip=N
- Storage outcome:             POST /deals/storage
- Retrieval outcome:           POST /deals/retrieval

Outcome reports are fire-and-forget: each is posted from a
background task, failures are logged and never raised, and
close() drains whatever is still in flight.

In standalone mode nothing is sent; outcomes are only logged.

============================================================
"""

import asyncio
import logging
from typing import List, Optional, Set

import aiohttp
from pydantic import ValidationError

from deal_engine.config import BackendConfig, TimeoutConfig

from .schemas import MinerItem, MinerPage, OutcomeKindEnum, OutcomeReport


logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Backend request failed or returned an unusable body."""


class BackendClient:
    """
    Outcome-reporting backend client.
    """

    def __init__(
        self,
        config: BackendConfig,
        timeout_config: Optional[TimeoutConfig] = None,
    ):
        self._config = config
        self._timeout_config = timeout_config or TimeoutConfig()
        self._base_url = config.base_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def standalone(self) -> bool:
        return self._config.standalone

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        if self.standalone or self._session is not None:
            return

        headers = {}
        if self._config.api_token:
            headers["Authorization"] = f"Bearer {self._config.api_token}"

        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._timeout_config.backend_request_timeout_seconds),
            headers=headers,
        )
        logger.info(f"Backend client connected ({self._base_url})")

    async def close(self) -> None:
        """Drain pending reports and close the session."""
        await self.drain()
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def drain(self) -> None:
        """Wait for in-flight reports."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --------------------------------------------------------
    # PROVIDER LISTING
    # --------------------------------------------------------

    async def fetch_miner_page(self, skip: int) -> MinerPage:
        """Fetch one page of the provider listing."""
        if self._session is None:
            raise BackendError("Backend client not connected")

        url = f"{self._base_url}/miners"
        try:
            async with self._session.get(url, params={"skip": str(skip)}) as response:
                if response.status != 200:
                    raise BackendError(f"GET /miners?skip={skip} returned HTTP {response.status}")
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BackendError(f"GET /miners?skip={skip} failed: {e}") from e

        try:
            return MinerPage.model_validate(payload)
        except ValidationError as e:
            raise BackendError(f"Malformed miner page: {e}") from e

    async def fetch_all_miners(self) -> List[MinerItem]:
        """
        Load the full provider listing.

        Raises:
            BackendError: If any page fails
        """
        items: List[MinerItem] = []
        while True:
            page = await self.fetch_miner_page(skip=len(items))
            items.extend(page.items)
            if not page.items or len(items) >= page.count:
                break
        return items

    # --------------------------------------------------------
    # OUTCOMES
    # --------------------------------------------------------

    def report_storage_outcome(
        self,
        provider: str,
        success: bool,
        message: str,
        data_cid: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        return self._report(OutcomeReport(
            kind=OutcomeKindEnum.STORAGE,
            miner=provider,
            success=success,
            message=message,
            data_cid=data_cid,
        ))

    def report_retrieval_outcome(
        self,
        provider: str,
        success: bool,
        message: str,
        data_cid: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        return self._report(OutcomeReport(
            kind=OutcomeKindEnum.RETRIEVAL,
            miner=provider,
            success=success,
            message=message,
            data_cid=data_cid,
        ))

    def _report(self, report: OutcomeReport) -> Optional[asyncio.Task]:
        log_outcome(report)

        if self.standalone or self._session is None:
            return None

        task = asyncio.get_running_loop().create_task(self._post(report))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _post(self, report: OutcomeReport) -> bool:
        url = f"{self._base_url}/deals/{report.kind.value}"
        try:
            async with self._session.post(url, json=report.model_dump(mode="json")) as response:
                if response.status >= 300:
                    logger.warning(f"Backend rejected {report.kind.value} report for {report.miner}: HTTP {response.status}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Backend {report.kind.value} report for {report.miner} failed: {e}")
            return False
        return True


def log_outcome(report: OutcomeReport) -> None:
    """Log one outcome as a [PASSED]/[FAILED] line."""
    tag = "PASSED" if report.success else "FAILED"
    line = f"[{tag}][{report.kind.value}][{report.miner}] {report.message}"
    if report.success:
        logger.info(line)
    else:
        logger.warning(line)
