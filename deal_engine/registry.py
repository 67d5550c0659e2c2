"""
Deal Engine - Provider Registry.

============================================================
PURPOSE
============================================================
Holds the current set of known providers with their address,
capacity and last observed ask price/reachability.

The registry is populated by a provider source (backend or
network enumeration) and enriched on first contact with the
provider's peer ID and sector size.

OWNERSHIP:
- Mutated only by the orchestrator loop
- list_providers() hands out copies

============================================================
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from core.concurrency import run_in_batches

from .adapters.base import NodeAdapter
from .types import Provider


logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Ordered set of providers keyed by address.

    Iteration order is the order of the last listing, which is
    the order admission serves providers in.
    """

    def __init__(self):
        self._providers: Dict[str, Provider] = {}

    # --------------------------------------------------------
    # POPULATION
    # --------------------------------------------------------

    def replace(self, providers: Iterable[Provider]) -> None:
        """
        Replace the provider list.

        Contact details (peer ID, sector size, ask) learned for
        an address survive the replacement.
        """
        updated: Dict[str, Provider] = {}
        for provider in providers:
            known = self._providers.get(provider.address)
            if known is not None:
                provider.peer_id = provider.peer_id or known.peer_id
                provider.sector_size = provider.sector_size or known.sector_size
                provider.last_ask_price = known.last_ask_price
                provider.reachable = known.reachable
            updated[provider.address] = provider

        self._providers = updated
        logger.info(f"Provider registry holds {len(self._providers)} providers")

    def record_contact(self, address: str, peer_id: str, sector_size: int) -> None:
        provider = self._providers.get(address)
        if provider is not None:
            provider.peer_id = peer_id
            provider.sector_size = sector_size

    def record_ask(self, address: str, price: Optional[str], reachable: bool) -> None:
        """Record the outcome of an ask query."""
        provider = self._providers.get(address)
        if provider is None:
            return
        if price is not None:
            provider.last_ask_price = price
        provider.reachable = reachable

    # --------------------------------------------------------
    # ACCESS
    # --------------------------------------------------------

    def get(self, address: str) -> Optional[Provider]:
        return self._providers.get(address)

    def list_providers(self) -> List[Provider]:
        """Copies of all providers in listing order."""
        return [p.copy() for p in self._providers.values()]

    @property
    def addresses(self) -> List[str]:
        return list(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, address: str) -> bool:
        return address in self._providers

    # --------------------------------------------------------
    # ASK REFRESH
    # --------------------------------------------------------

    async def refresh_asks(
        self,
        node: NodeAdapter,
        batch_size: int,
        timeout_seconds: float,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> int:
        """
        Refresh cached ask prices and reachability.

        Informational only: proposals always query a live ask.

        Returns:
            Number of providers that answered
        """

        async def refresh_one(provider: Provider) -> bool:
            try:
                if not provider.peer_id:
                    info = await asyncio.wait_for(node.miner_info(provider.address), timeout_seconds)
                    self.record_contact(provider.address, info.peer_id, info.sector_size)
                    provider.peer_id = info.peer_id

                ask = await asyncio.wait_for(
                    node.query_ask(provider.peer_id, provider.address),
                    timeout_seconds,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"[ask][{provider.address}] unreachable: {e}")
                self.record_ask(provider.address, None, reachable=False)
                return False

            self.record_ask(provider.address, ask.price, reachable=True)
            return True

        outcome = await run_in_batches(
            self.list_providers(),
            refresh_one,
            batch_size=batch_size,
            should_stop=should_stop,
        )
        answered = sum(1 for _, ok in outcome.results if ok)
        logger.info(f"Ask refresh: {answered}/{len(self._providers)} providers reachable")
        return answered
