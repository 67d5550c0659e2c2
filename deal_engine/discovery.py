"""
Deal Engine - Provider Discovery.

============================================================
PURPOSE
============================================================
Sources of the provider list fed into the registry.

SOURCES:
- BackendProviderSource: paginated listing from the backend
  (backend mode, reloaded every cycle)
- NetworkProviderSource: chain enumeration through the node,
  keeping providers with power > 0 (standalone mode, loaded
  once at startup)

A source either returns the full list or raises; the caller
keeps the previous list on failure.

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, List, Optional

from core.concurrency import run_in_batches

from .adapters.base import NodeAdapter
from .types import Provider

if TYPE_CHECKING:
    from reporting.backend_client import BackendClient


logger = logging.getLogger(__name__)


class ProviderSource(ABC):
    """Abstract provider listing."""

    reload_every_cycle: bool = True

    @abstractmethod
    async def load(self, should_stop: Optional[Callable[[], bool]] = None) -> List[Provider]:
        pass


class BackendProviderSource(ProviderSource):
    """Provider listing served by the backend."""

    reload_every_cycle = True

    def __init__(self, client: "BackendClient"):
        self._client = client

    async def load(self, should_stop: Optional[Callable[[], bool]] = None) -> List[Provider]:
        items = await self._client.fetch_all_miners()
        providers = [Provider(address=item.id, capacity=item.power) for item in items]
        logger.info(f"Loaded {len(providers)} providers from backend")
        return providers


class NetworkProviderSource(ProviderSource):
    """Provider listing enumerated from chain state."""

    reload_every_cycle = False

    def __init__(
        self,
        node: NodeAdapter,
        batch_size: int = 50,
        timeout_seconds: float = 60.0,
    ):
        self._node = node
        self._batch_size = batch_size
        self._timeout = timeout_seconds

    async def load(self, should_stop: Optional[Callable[[], bool]] = None) -> List[Provider]:
        addresses = await asyncio.wait_for(self._node.list_miners(), self._timeout)
        logger.info(f"Enumerating power of {len(addresses)} providers")

        async def power_of(address: str) -> int:
            return await asyncio.wait_for(self._node.miner_power(address), self._timeout)

        outcome = await run_in_batches(
            addresses,
            power_of,
            batch_size=self._batch_size,
            should_stop=should_stop,
        )
        if outcome.errors:
            logger.warning(f"Power query failed for {len(outcome.errors)} providers")

        providers = [
            Provider(address=address, capacity=power)
            for address, power in outcome.results
            if power > 0
        ]
        logger.info(f"Found {len(providers)} providers with power")
        return providers
