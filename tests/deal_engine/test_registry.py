"""
Provider Registry and Discovery Tests.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from deal_engine import BackendProviderSource, NetworkProviderSource, Provider, ProviderRegistry
from reporting.schemas import MinerItem


class TestProviderRegistry:

    def test_replace_keeps_contact_details(self):
        registry = ProviderRegistry()
        registry.replace([Provider("f01000", capacity=10)])
        registry.record_contact("f01000", "12D3KooWpeer", 2048)
        registry.record_ask("f01000", "500", reachable=True)

        registry.replace([Provider("f01000", capacity=20), Provider("f01001")])

        provider = registry.get("f01000")
        assert provider.capacity == 20
        assert provider.peer_id == "12D3KooWpeer"
        assert provider.sector_size == 2048
        assert provider.last_ask_price == "500"
        assert provider.reachable is True
        assert registry.addresses == ["f01000", "f01001"]

    def test_replace_drops_missing(self):
        registry = ProviderRegistry()
        registry.replace([Provider("f01000"), Provider("f01001")])
        registry.replace([Provider("f01001")])

        assert "f01000" not in registry
        assert len(registry) == 1

    def test_failed_ask_keeps_last_price(self):
        registry = ProviderRegistry()
        registry.replace([Provider("f01000")])
        registry.record_ask("f01000", "500", reachable=True)
        registry.record_ask("f01000", None, reachable=False)

        provider = registry.get("f01000")
        assert provider.last_ask_price == "500"
        assert provider.reachable is False

    def test_list_providers_returns_copies(self):
        registry = ProviderRegistry()
        registry.replace([Provider("f01000", capacity=1)])

        registry.list_providers()[0].capacity = 999

        assert registry.get("f01000").capacity == 1

    @pytest.mark.asyncio
    async def test_refresh_asks(self, node):
        node.add_miner("f01000", ask_price="700")
        node.add_miner("f01001", reject_ask=True)
        registry = ProviderRegistry()
        registry.replace([Provider("f01000"), Provider("f01001"), Provider("f09999")])

        answered = await registry.refresh_asks(node, batch_size=2, timeout_seconds=5)

        assert answered == 1
        assert registry.get("f01000").last_ask_price == "700"
        assert registry.get("f01000").reachable is True
        assert registry.get("f01000").peer_id == "12D3KooWf01000"
        assert registry.get("f01001").reachable is False
        assert registry.get("f09999").reachable is False


class TestProviderSources:

    @pytest.mark.asyncio
    async def test_network_source_keeps_powered_providers(self, node):
        node.add_miner("f01000", power=1 << 40)
        node.add_miner("f01001", power=0)
        node.add_miner("f01002", power=1 << 35)

        source = NetworkProviderSource(node, batch_size=2, timeout_seconds=5)
        providers = await source.load()

        assert [p.address for p in providers] == ["f01000", "f01002"]
        assert providers[0].capacity == 1 << 40
        assert source.reload_every_cycle is False

    @pytest.mark.asyncio
    async def test_network_source_skips_failed_power_queries(self, node):
        node.add_miner("f01000")
        node.add_miner("f01001")
        node.fail_next("miner_power")

        providers = await NetworkProviderSource(node, batch_size=1, timeout_seconds=5).load()

        assert [p.address for p in providers] == ["f01001"]

    @pytest.mark.asyncio
    async def test_backend_source(self):
        client = MagicMock()
        client.fetch_all_miners = AsyncMock(return_value=[
            MinerItem(id="f01000", power=100),
            MinerItem(id="f01001"),
        ])

        source = BackendProviderSource(client)
        providers = await source.load()

        assert [(p.address, p.capacity) for p in providers] == [("f01000", 100), ("f01001", 0)]
        assert source.reload_every_cycle is True
