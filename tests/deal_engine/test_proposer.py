"""
Deal Proposer Tests.

============================================================
PURPOSE
============================================================
Tests for asking, generating, importing and proposing.

TEST PRINCIPLES:
- The pending cap holds across a whole proposal pass
- A refused ask or proposal is one recorded failure
- Contact, import and wallet errors are never charged to the provider
- A failed proposal leaves no local file behind

============================================================
"""

import os

import pytest

from deal_engine import Provider
from deal_engine.adapters import ErrorCategory, NodeError, map_rpc_error


@pytest.fixture
def setup_providers(node, registry, allowances, clock):
    """Register mock providers and give them allowance records."""

    def _setup(*addresses, **miner_kwargs):
        for address in addresses:
            node.add_miner(address, **miner_kwargs)
        registry.replace([Provider(address, capacity=node.miners[address].power) for address in addresses])
        allowances.recompute_all(registry.list_providers(), clock.now())
        return registry.list_providers()

    return _setup


def import_dir_files(engine_config):
    return os.listdir(engine_config.test_file.import_dir)


class TestPropose:

    @pytest.mark.asyncio
    async def test_successful_proposal(self, proposer, setup_providers, lifecycle, allowances, registry, node):
        providers = setup_providers("f01000", ask_price="2500")

        summary = await proposer.propose(providers)

        assert summary.proposed == 1
        assert summary.failed == 0
        assert lifecycle.pending_count == 1
        assert summary.deal_ids[0] in lifecycle

        deal = lifecycle.snapshot()[summary.deal_ids[0]]
        assert os.path.exists(deal.file_path)
        assert os.path.getsize(deal.file_path) == 4096

        record = allowances.get("f01000")
        assert record.current_outstanding_count == 1
        assert record.current_outstanding_volume == 4096

        provider = registry.get("f01000")
        assert provider.peer_id == "12D3KooWf01000"
        assert provider.last_ask_price == "2500"
        assert provider.reachable is True

        proposal = node.deals[summary.deal_ids[0]].proposal
        assert proposal.epoch_price == "2500"
        assert proposal.wallet == "f3mockwallet"

    @pytest.mark.asyncio
    async def test_first_contact_only_once(self, proposer, setup_providers, node):
        providers = setup_providers("f01000")

        await proposer.propose(providers)
        await proposer.propose(providers)

        assert node.call_count("miner_info") == 1
        assert node.call_count("query_ask") == 2

    @pytest.mark.asyncio
    async def test_file_capped_to_half_sector(self, proposer, setup_providers, allowances):
        providers = setup_providers("f01000", sector_size=2048)

        await proposer.propose(providers)

        assert allowances.get("f01000").current_outstanding_volume == 1024


class TestPendingCap:

    @pytest.mark.asyncio
    async def test_max_pending_two_three_providers(self, proposer, setup_providers, admission, allowances, lifecycle, engine_config, registry):
        engine_config.admission.max_pending = 2
        setup_providers("f01000", "f01001", "f01002")

        admitted = admission.select_providers_for_proposal(
            registry.list_providers(), allowances.snapshot(), lifecycle.pending_count
        )
        summary = await proposer.propose(admitted)

        assert summary.proposed == 2
        assert lifecycle.pending_count == 2
        assert allowances.get("f01002").lifetime_proposed_count == 0

        again = admission.select_providers_for_proposal(
            registry.list_providers(), allowances.snapshot(), lifecycle.pending_count
        )
        assert again == []

    @pytest.mark.asyncio
    async def test_cap_rechecked_before_each_proposal(self, proposer, setup_providers, lifecycle, engine_config, node):
        engine_config.admission.max_pending = 1
        providers = setup_providers("f01000", "f01001")

        summary = await proposer.propose(providers)

        assert summary.proposed == 1
        assert lifecycle.pending_count == 1
        assert node.call_count("query_ask") == 1

    @pytest.mark.asyncio
    async def test_stop_requested(self, proposer, setup_providers, lifecycle):
        providers = setup_providers("f01000", "f01001")

        summary = await proposer.propose(providers, should_stop=lambda: True)

        assert summary.stopped_early is True
        assert lifecycle.pending_count == 0


class TestFailures:

    @pytest.mark.asyncio
    async def test_rejected_ask_is_failure(self, proposer, setup_providers, stats, reporter, registry, engine_config):
        providers = setup_providers("f01000", reject_ask=True)

        summary = await proposer.propose(providers)

        assert summary.failed == 1
        assert stats.storage_failed == 1
        assert registry.get("f01000").reachable is False
        assert import_dir_files(engine_config) == []
        reporter.report_storage_outcome.assert_called_once_with(
            "f01000", False, "ask failed: failed to query ask: stream reset"
        )

    @pytest.mark.asyncio
    async def test_rejected_deal_removes_file(self, proposer, setup_providers, node, stats, lifecycle, engine_config):
        providers = setup_providers("f01000")
        node.fail_next("start_deal", NodeError("deal rejected: price too low", category=ErrorCategory.REJECTED))

        summary = await proposer.propose(providers)

        assert summary.failed == 1
        assert stats.storage_failed == 1
        assert lifecycle.pending_count == 0
        assert import_dir_files(engine_config) == []

    @pytest.mark.asyncio
    async def test_transient_error_is_skipped(self, proposer, setup_providers, node, stats, reporter, engine_config, allowances):
        providers = setup_providers("f01000")
        node.fail_next("import_file")

        summary = await proposer.propose(providers)

        assert summary.failed == 0
        assert summary.proposed == 0
        assert summary.skipped == 1
        assert stats.storage_failed == 0
        assert import_dir_files(engine_config) == []
        assert allowances.get("f01000").current_outstanding_volume == 0
        reporter.report_storage_outcome.assert_not_called()

    @pytest.mark.asyncio
    async def test_import_error_is_not_charged_to_provider(self, proposer, setup_providers, node, stats, reporter, engine_config, lifecycle):
        providers = setup_providers("f01000")
        node.fail_next("import_file", map_rpc_error({"code": 1, "message": "failed to import: no space left on device"}))

        summary = await proposer.propose(providers)

        assert summary.failed == 0
        assert summary.skipped == 1
        assert stats.storage_failed == 0
        assert lifecycle.pending_count == 0
        assert import_dir_files(engine_config) == []
        reporter.report_storage_outcome.assert_not_called()

        summary = await proposer.propose(providers)
        assert summary.proposed == 1

    @pytest.mark.asyncio
    async def test_wallet_error_is_not_charged_to_provider(self, proposer, setup_providers, node, stats, reporter, engine_config):
        providers = setup_providers("f01000")
        node.fail_next("default_wallet", map_rpc_error({"code": 1, "message": "no default wallet"}))

        summary = await proposer.propose(providers)

        assert summary.failed == 0
        assert stats.storage_failed == 0
        assert import_dir_files(engine_config) == []
        reporter.report_storage_outcome.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_miner_is_skipped(self, proposer, setup_providers, node, stats, reporter):
        providers = setup_providers("f01000")
        node.fail_next("miner_info", NodeError("actor not found: f01000", category=ErrorCategory.NOT_FOUND))

        summary = await proposer.propose(providers)

        assert summary.failed == 0
        assert stats.storage_failed == 0
        assert node.call_count("query_ask") == 0
        reporter.report_storage_outcome.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, proposer, setup_providers, node, stats):
        providers = setup_providers("f01000")
        node.fail_next("query_ask", NodeError("Request timeout", category=ErrorCategory.TIMEOUT))

        summary = await proposer.propose(providers)

        assert summary.failed == 0
        assert stats.storage_failed == 0

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_pass(self, proposer, node, registry, allowances, clock, lifecycle):
        node.add_miner("f01000", reject_ask=True)
        node.add_miner("f01001")
        registry.replace([Provider("f01000"), Provider("f01001")])
        allowances.recompute_all(registry.list_providers(), clock.now())

        summary = await proposer.propose(registry.list_providers())

        assert summary.failed == 1
        assert summary.proposed == 1
        assert lifecycle.pending_count == 1
