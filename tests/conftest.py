"""
Shared fixtures for the probe tests.

Every component is wired to an in-memory MockNodeAdapter, a
MockClock and test file directories under tmp_path.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from core.clock import MockClock
from deal_engine import (
    DealAdmissionController,
    DealEngineConfig,
    DealLifecycleTracker,
    DealProposer,
    PendingStorageDeal,
    ProviderAllowanceTracker,
    ProviderRegistry,
    RetrievalVerifier,
    StatsAggregator,
    TestFileManager,
)
from deal_engine.adapters import DealProposal, MockNodeAdapter
from monitoring.metrics import create_probe_metrics


@pytest.fixture
def engine_config(tmp_path) -> DealEngineConfig:
    return DealEngineConfig.for_testing(str(tmp_path))


@pytest.fixture
def clock() -> MockClock:
    return MockClock(datetime(2024, 1, 1, tzinfo=timezone.utc))


@pytest.fixture
def node() -> MockNodeAdapter:
    return MockNodeAdapter()


@pytest.fixture
def reporter() -> MagicMock:
    """Stands in for the backend client; records outcome reports."""
    return MagicMock()


@pytest.fixture
def files(engine_config) -> TestFileManager:
    manager = TestFileManager(engine_config.test_file)
    manager.prepare()
    return manager


@pytest.fixture
def stats() -> StatsAggregator:
    return StatsAggregator(create_probe_metrics())


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
def allowances(engine_config) -> ProviderAllowanceTracker:
    return ProviderAllowanceTracker(engine_config.allowance)


@pytest.fixture
def admission(engine_config) -> DealAdmissionController:
    return DealAdmissionController(engine_config.admission)


@pytest.fixture
def retrievals(node, files, stats, reporter, engine_config) -> RetrievalVerifier:
    return RetrievalVerifier(
        node=node,
        files=files,
        stats=stats,
        reporter=reporter,
        timeout_config=engine_config.timeout,
    )


@pytest.fixture
def lifecycle(node, allowances, retrievals, files, stats, reporter, engine_config, clock) -> DealLifecycleTracker:
    return DealLifecycleTracker(
        node=node,
        allowances=allowances,
        retrievals=retrievals,
        files=files,
        stats=stats,
        reporter=reporter,
        timeout_config=engine_config.timeout,
        clock=clock,
    )


@pytest.fixture
def proposer(
    node, registry, allowances, admission, lifecycle, files, stats, engine_config, reporter, clock
) -> DealProposer:
    return DealProposer(
        node=node,
        registry=registry,
        allowances=allowances,
        admission=admission,
        lifecycle=lifecycle,
        files=files,
        stats=stats,
        config=engine_config,
        reporter=reporter,
        clock=clock,
    )


@pytest.fixture
def make_deal(node, files, lifecycle, clock):
    """Factory for a tracked deal whose data the mock node holds."""

    async def _make(provider: str = "f01000"):
        if provider not in node.miners:
            node.add_miner(provider)

        generated = await files.generate()
        data_cid = await node.import_file(generated.path)
        deal_cid = await node.start_deal(DealProposal(
            data_cid=data_cid,
            wallet="f3mockwallet",
            miner=provider,
            epoch_price="1000",
            min_blocks_duration=10000,
        ))
        deal = PendingStorageDeal(
            data_cid=data_cid,
            provider=provider,
            file_path=generated.path,
            content_hash=generated.content_hash,
            size=generated.size,
            created_at=clock.now(),
        )
        lifecycle.track(deal_cid, deal)
        return deal_cid, deal

    return _make
