"""
Deal Engine - Mock Node Adapter.

============================================================
PURPOSE
============================================================
In-memory storage node for testing the deal engine.

FEATURES:
- Scripted deal states
- Error injection per operation
- Ask rejection
- Withheld retrieval offers
- Corrupted or slow retrievals
- Full call log

============================================================
"""

import asyncio
import itertools
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, List, Optional, Set, Tuple, Union

from ..types import DealState
from .base import (
    AskResponse,
    DealProposal,
    MinerInfo,
    NodeAdapter,
    RetrievalOffer,
)
from .errors import ErrorCategory, NodeError


logger = logging.getLogger(__name__)


# ============================================================
# MOCK STATE
# ============================================================

@dataclass
class MockMiner:
    """A simulated storage provider."""

    address: str
    power: int
    peer_id: str
    sector_size: int
    ask_price: str = "1000"
    reject_ask: bool = False


@dataclass
class MockDeal:
    """A simulated storage deal."""

    deal_cid: str
    data_cid: str
    miner: str
    proposal: DealProposal
    state_code: int = DealState.PROPOSAL_ACCEPTED.code


# ============================================================
# MOCK NODE ADAPTER
# ============================================================

class MockNodeAdapter(NodeAdapter):
    """
    Mock storage node for testing.

    Imported files are held in memory, so retrieval still works
    after the engine deletes its local copy.
    """

    def __init__(
        self,
        wallet: str = "f3mockwallet",
        latency_seconds: float = 0.0,
    ):
        self._wallet = wallet
        self._latency = latency_seconds
        self._connected = False

        self.miners: Dict[str, MockMiner] = {}
        self.deals: Dict[str, MockDeal] = {}
        self.imports: Dict[str, bytes] = {}

        self.corrupted: Set[str] = set()
        """Data CIDs whose retrieval returns altered bytes."""

        self.withheld_offers: Set[str] = set()
        """Data CIDs with no retrieval offers."""

        self.retrieval_delay_seconds: float = 0.0
        """Delay before a retrieval writes its output."""

        self.calls: List[Tuple[str, tuple]] = []
        self._injected: Dict[str, Deque[Exception]] = defaultdict(deque)
        self._ids = itertools.count(1)

    @property
    def node_id(self) -> str:
        return "mock"

    @property
    def is_connected(self) -> bool:
        return self._connected

    # --------------------------------------------------------
    # TEST CONTROLS
    # --------------------------------------------------------

    def add_miner(
        self,
        address: str,
        power: int = 1 << 40,
        sector_size: int = 32 << 30,
        ask_price: str = "1000",
        peer_id: Optional[str] = None,
        reject_ask: bool = False,
    ) -> MockMiner:
        miner = MockMiner(
            address=address,
            power=power,
            peer_id=peer_id or f"12D3KooW{address}",
            sector_size=sector_size,
            ask_price=ask_price,
            reject_ask=reject_ask,
        )
        self.miners[address] = miner
        return miner

    def set_deal_state(self, deal_cid: str, state: Union[DealState, int]) -> None:
        """Script the state reported for a deal."""
        code = state.code if isinstance(state, DealState) else int(state)
        self.deals[deal_cid].state_code = code

    def set_all_deal_states(self, state: Union[DealState, int]) -> None:
        for deal_cid in self.deals:
            self.set_deal_state(deal_cid, state)

    def fail_next(
        self,
        operation: str,
        error: Optional[Exception] = None,
        count: int = 1,
    ) -> None:
        """Make the next `count` calls of `operation` raise."""
        for _ in range(count):
            self._injected[operation].append(
                error or NodeError("injected failure", category=ErrorCategory.NETWORK, operation=operation)
            )

    def deal_for_data(self, data_cid: str) -> Optional[MockDeal]:
        for deal in self.deals.values():
            if deal.data_cid == data_cid:
                return deal
        return None

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def _enter(self, operation: str, *args) -> None:
        self.calls.append((operation, args))
        if self._latency:
            await asyncio.sleep(self._latency)
        if self._injected[operation]:
            raise self._injected[operation].popleft()

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    # --------------------------------------------------------
    # PROVIDER QUERIES
    # --------------------------------------------------------

    def _miner(self, address: str, operation: str) -> MockMiner:
        miner = self.miners.get(address)
        if miner is None:
            raise NodeError(f"actor not found: {address}", category=ErrorCategory.NOT_FOUND, operation=operation)
        return miner

    async def miner_info(self, miner: str) -> MinerInfo:
        await self._enter("miner_info", miner)
        info = self._miner(miner, "miner_info")
        return MinerInfo(peer_id=info.peer_id, sector_size=info.sector_size)

    async def query_ask(self, peer_id: str, miner: str) -> AskResponse:
        await self._enter("query_ask", peer_id, miner)
        info = self._miner(miner, "query_ask")
        if info.reject_ask:
            raise NodeError("failed to query ask: stream reset", category=ErrorCategory.REJECTED, operation="query_ask")
        return AskResponse(price=info.ask_price)

    async def net_connectedness(self, peer_id: str) -> int:
        await self._enter("net_connectedness", peer_id)
        return 1

    async def list_miners(self) -> List[str]:
        await self._enter("list_miners")
        return list(self.miners)

    async def miner_power(self, miner: str) -> int:
        await self._enter("miner_power", miner)
        return self._miner(miner, "miner_power").power

    # --------------------------------------------------------
    # DEALS
    # --------------------------------------------------------

    async def default_wallet(self) -> str:
        await self._enter("default_wallet")
        return self._wallet

    async def import_file(self, path: str) -> str:
        await self._enter("import_file", path)
        data_cid = f"bafymockdata{next(self._ids)}"
        self.imports[data_cid] = Path(path).read_bytes()
        return data_cid

    async def start_deal(self, proposal: DealProposal) -> str:
        await self._enter("start_deal", proposal)
        self._miner(proposal.miner, "start_deal")
        deal_cid = f"bafymockdeal{next(self._ids)}"
        self.deals[deal_cid] = MockDeal(
            deal_cid=deal_cid,
            data_cid=proposal.data_cid,
            miner=proposal.miner,
            proposal=proposal,
        )
        return deal_cid

    async def deal_status(self, deal_cid: str) -> Optional[int]:
        await self._enter("deal_status", deal_cid)
        deal = self.deals.get(deal_cid)
        if deal is None:
            raise NodeError(f"deal not found: {deal_cid}", category=ErrorCategory.NOT_FOUND, operation="deal_status")
        return deal.state_code

    # --------------------------------------------------------
    # RETRIEVAL
    # --------------------------------------------------------

    async def find_retrieval_offers(self, data_cid: str) -> List[RetrievalOffer]:
        await self._enter("find_retrieval_offers", data_cid)
        if data_cid in self.withheld_offers or data_cid not in self.imports:
            return []

        deal = self.deal_for_data(data_cid)
        miner = deal.miner if deal else ""
        return [
            RetrievalOffer(
                root=data_cid,
                miner=miner,
                size=len(self.imports[data_cid]),
                miner_peer_id=self.miners[miner].peer_id if miner in self.miners else "",
            )
        ]

    async def retrieve(self, offer: RetrievalOffer, wallet: str, dest_path: str) -> None:
        await self._enter("retrieve", offer, wallet, dest_path)
        if self.retrieval_delay_seconds:
            await asyncio.sleep(self.retrieval_delay_seconds)

        data = self.imports.get(offer.root)
        if data is None:
            raise NodeError(f"no data for {offer.root}", category=ErrorCategory.NOT_FOUND, operation="retrieve")

        if offer.root in self.corrupted:
            data = bytes([data[0] ^ 0xFF]) + data[1:] if data else b"\x00"

        Path(dest_path).write_bytes(data)
