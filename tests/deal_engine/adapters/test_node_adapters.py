"""
Node Adapter Tests.

============================================================
PURPOSE
============================================================
Unit tests for the storage node adapters.

TEST CATEGORIES:
- Factory tests: Adapter selection
- Error mapping tests: JSON-RPC and HTTP mapping
- Response parsing tests: Lotus result shapes
- Command mode tests: lotus binary invocation
- Mock tests: Scripted behavior used by the engine tests

============================================================
"""

import asyncio
import base64
from unittest.mock import AsyncMock, MagicMock, patch

import base58
import pytest

from deal_engine.adapters import (
    DealProposal,
    ErrorCategory,
    LotusCommandAdapter,
    LotusRpcAdapter,
    MockNodeAdapter,
    NodeError,
    RetrievalOffer,
    atto_fil_to_fil,
    create_node_adapter,
    map_rpc_error,
    normalize_peer_id,
)
from deal_engine.adapters.lotus import map_http_status, parse_retrieval_offer
from deal_engine.config import NodeConfig, TimeoutConfig
from deal_engine.errors import FailureKind, classify_error
from deal_engine.types import DealState


MULTIHASH = bytes([0x12, 0x20]) + bytes(range(32))


# ============================================================
# FACTORY
# ============================================================

class TestFactory:

    def test_rpc_by_default(self):
        adapter = create_node_adapter(NodeConfig(), TimeoutConfig())
        assert isinstance(adapter, LotusRpcAdapter)
        assert not isinstance(adapter, LotusCommandAdapter)
        assert adapter.node_id == "lotus_rpc"

    def test_command_mode(self):
        adapter = create_node_adapter(NodeConfig(cmd_mode=True))
        assert isinstance(adapter, LotusCommandAdapter)
        assert adapter.node_id == "lotus_cmd"


# ============================================================
# ERROR MAPPING
# ============================================================

class TestErrorMapping:

    def test_not_found(self):
        error = map_rpc_error({"code": 1, "message": "deal not found"}, operation="ClientGetDealInfo")
        assert error.category is ErrorCategory.NOT_FOUND
        assert error.operation == "ClientGetDealInfo"

    def test_protocol(self):
        error = map_rpc_error({"code": -32602, "message": "invalid params"})
        assert error.category is ErrorCategory.PROTOCOL
        assert error.is_retryable is True

    def test_refusal(self):
        error = map_rpc_error({"code": 1, "message": "failed to query ask: stream reset"})
        assert error.category is ErrorCategory.REJECTED
        assert error.is_retryable is False
        assert classify_error(error) is FailureKind.REJECTED

    @pytest.mark.parametrize("status,category", [
        (401, ErrorCategory.REJECTED),
        (403, ErrorCategory.REJECTED),
        (404, ErrorCategory.NOT_FOUND),
        (502, ErrorCategory.NETWORK),
    ])
    def test_http_status(self, status, category):
        assert map_http_status(status) is category

    def test_classify(self):
        assert classify_error(NodeError("x", category=ErrorCategory.TIMEOUT)) is FailureKind.TRANSIENT
        assert classify_error(NodeError("x", category=ErrorCategory.NETWORK)) is FailureKind.TRANSIENT
        assert classify_error(NodeError("x", category=ErrorCategory.COMMAND)) is FailureKind.REJECTED
        assert classify_error(RuntimeError("x")) is FailureKind.TRANSIENT
        assert FailureKind.TRANSIENT.is_recorded() is False
        assert FailureKind.INTEGRITY.is_recorded() is True


# ============================================================
# PEER IDS AND PRICES
# ============================================================

class TestPeerId:

    def test_base58_passthrough(self):
        peer_id = base58.b58encode(MULTIHASH).decode()
        assert normalize_peer_id(peer_id) == peer_id

    def test_base64_converted(self):
        encoded = base64.b64encode(MULTIHASH).decode()
        assert normalize_peer_id(encoded) == base58.b58encode(MULTIHASH).decode()

    def test_garbage_rejected(self):
        with pytest.raises(NodeError) as exc_info:
            normalize_peer_id("not a peer id!")
        assert exc_info.value.category is ErrorCategory.PROTOCOL


class TestAttoFil:

    @pytest.mark.parametrize("atto,fil", [
        ("500000000", "0.0000000005"),
        ("1000000000000000000", "1"),
        ("2500000000000000000", "2.5"),
        ("0", "0"),
    ])
    def test_conversion(self, atto, fil):
        assert atto_fil_to_fil(atto) == fil

    def test_invalid(self):
        with pytest.raises(NodeError):
            atto_fil_to_fil("lots")


# ============================================================
# RPC ADAPTER
# ============================================================

class TestLotusRpcAdapter:

    @pytest.fixture
    def adapter(self):
        return LotusRpcAdapter(NodeConfig(api_url="http://lotus.test/rpc/v0"))

    @pytest.mark.asyncio
    async def test_not_connected(self, adapter):
        with pytest.raises(NodeError) as exc_info:
            await adapter.list_miners()
        assert exc_info.value.category is ErrorCategory.NETWORK
        assert adapter.is_connected is False

    @pytest.mark.asyncio
    async def test_miner_info_normalises_peer_id(self, adapter):
        adapter._call = AsyncMock(return_value={
            "PeerId": base64.b64encode(MULTIHASH).decode(),
            "SectorSize": 34359738368,
        })

        info = await adapter.miner_info("f01000")

        assert info.peer_id == base58.b58encode(MULTIHASH).decode()
        assert info.sector_size == 34359738368
        adapter._call.assert_awaited_once_with("StateMinerInfo", ["f01000", None])

    @pytest.mark.asyncio
    async def test_query_ask_unwraps(self, adapter):
        adapter._call = AsyncMock(return_value={"Ask": {"Price": "500000000", "MinPieceSize": 256}})

        ask = await adapter.query_ask("12D3KooW", "f01000")

        assert ask.price == "500000000"
        assert ask.min_piece_size == 256

    @pytest.mark.asyncio
    async def test_miner_power(self, adapter):
        adapter._call = AsyncMock(return_value={"MinerPower": {"RawBytePower": "1", "QualityAdjPower": "1024"}})
        assert await adapter.miner_power("f01000") == 1024

    @pytest.mark.asyncio
    async def test_import_and_deal_cids(self, adapter):
        adapter._call = AsyncMock(side_effect=[
            {"Root": {"/": "bafydata"}, "ImportID": 3},
            {"/": "bafydeal"},
        ])

        data_cid = await adapter.import_file("/tmp/qab/import/file")
        deal_cid = await adapter.start_deal(DealProposal(
            data_cid=data_cid,
            wallet="f3wallet",
            miner="f01000",
            epoch_price="500000000",
            min_blocks_duration=10000,
        ))

        assert data_cid == "bafydata"
        assert deal_cid == "bafydeal"
        method, params = adapter._call.await_args_list[1].args
        assert method == "ClientStartDeal"
        assert params[0]["Data"]["Root"] == {"/": "bafydata"}
        assert params[0]["EpochPrice"] == "500000000"

    @pytest.mark.asyncio
    async def test_deal_status(self, adapter):
        adapter._call = AsyncMock(return_value={"State": 6, "Message": ""})
        assert await adapter.deal_status("bafydeal") == DealState.ACTIVE.code

        adapter._call = AsyncMock(return_value={"Message": "no state"})
        assert await adapter.deal_status("bafydeal") is None

    @pytest.mark.asyncio
    async def test_find_retrieval_offers_skips_errors(self, adapter):
        adapter._call = AsyncMock(return_value=[
            {"Err": "miner offline", "Root": {"/": "bafydata"}},
            {
                "Root": {"/": "bafydata"},
                "Miner": "f01000",
                "Size": 4096,
                "MinPrice": "0",
                "MinerPeer": {"Address": "f01000", "ID": "12D3KooWpeer"},
            },
        ])

        offers = await adapter.find_retrieval_offers("bafydata")

        assert len(offers) == 1
        assert offers[0].miner == "f01000"
        assert offers[0].miner_peer_id == "12D3KooWpeer"
        assert offers[0].size == 4096

    def test_parse_offer_requires_root(self):
        with pytest.raises(NodeError):
            parse_retrieval_offer({"Miner": "f01000"})


# ============================================================
# COMMAND ADAPTER
# ============================================================

class TestLotusCommandAdapter:

    @pytest.mark.asyncio
    async def test_start_deal_arguments(self):
        adapter = LotusCommandAdapter(NodeConfig(cmd_mode=True))
        adapter._run = AsyncMock(return_value=("Deal created\nbafydeal\n", ""))

        deal_cid = await adapter.start_deal(DealProposal(
            data_cid="bafydata",
            wallet="f3wallet",
            miner="f01000",
            epoch_price="500000000",
            min_blocks_duration=10000,
        ))

        assert deal_cid == "bafydeal"
        args = adapter._run.await_args.args
        assert args == ("deal", "client", "deal", "bafydata", "f01000", "0.0000000005", "10000")

    @pytest.mark.asyncio
    async def test_empty_output_is_protocol_error(self):
        adapter = LotusCommandAdapter(NodeConfig(cmd_mode=True))
        adapter._run = AsyncMock(return_value=("", ""))

        with pytest.raises(NodeError) as exc_info:
            await adapter.start_deal(DealProposal("bafydata", "f3wallet", "f01000", "1", 10000))
        assert exc_info.value.category is ErrorCategory.PROTOCOL

    @pytest.mark.asyncio
    async def test_retrieve_arguments(self):
        adapter = LotusCommandAdapter(NodeConfig(cmd_mode=True))
        adapter._run = AsyncMock(return_value=("", ""))

        await adapter.retrieve(RetrievalOffer(root="bafydata", miner="f01000"), "f3wallet", "/tmp/out")

        assert adapter._run.await_args.args == ("retrieve", "client", "retrieve", "bafydata", "/tmp/out")

    @pytest.mark.asyncio
    async def test_cancelled_retrieval_reaps_process(self):
        adapter = LotusCommandAdapter(NodeConfig(cmd_mode=True))

        async def hang():
            await asyncio.sleep(30)

        process = MagicMock()
        process.communicate = hang
        process.wait = AsyncMock(return_value=-9)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(
                    adapter.retrieve(RetrievalOffer(root="bafydata", miner="f01000"), "f3wallet", "/tmp/out"),
                    timeout=0.05,
                )

        process.kill.assert_called_once()
        process.wait.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        adapter = LotusCommandAdapter(NodeConfig(cmd_mode=True, lotus_binary="/nonexistent/lotus"))

        with pytest.raises(NodeError) as exc_info:
            await adapter.retrieve(RetrievalOffer(root="bafydata", miner="f01000"), "f3wallet", "/tmp/out")
        assert exc_info.value.category is ErrorCategory.NETWORK


# ============================================================
# MOCK ADAPTER
# ============================================================

class TestMockNodeAdapter:

    @pytest.mark.asyncio
    async def test_fail_next_is_consumed(self):
        node = MockNodeAdapter()
        node.fail_next("list_miners", count=2)

        for _ in range(2):
            with pytest.raises(NodeError):
                await node.list_miners()
        assert await node.list_miners() == []
        assert node.call_count("list_miners") == 3

    @pytest.mark.asyncio
    async def test_unknown_deal(self):
        node = MockNodeAdapter()
        with pytest.raises(NodeError) as exc_info:
            await node.deal_status("bafynothing")
        assert exc_info.value.category is ErrorCategory.NOT_FOUND

    @pytest.mark.asyncio
    async def test_context_manager(self):
        async with MockNodeAdapter() as node:
            assert node.is_connected
        assert not node.is_connected
