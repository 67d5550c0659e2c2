"""
Deal Engine - Node Adapter Base.

============================================================
PURPOSE
============================================================
Abstract interface for storage node adapters.

DESIGN PRINCIPLES:
- Node-agnostic interface consumed by the deal engine
- Clean separation from lifecycle logic
- Fully testable with the mock adapter

Every call is request/response and may fail with NodeError.
Callers treat any failure as "retry later", never as fatal.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


# ============================================================
# ADAPTER REQUEST/RESPONSE TYPES
# ============================================================

@dataclass
class MinerInfo:
    """Static information about a provider."""

    peer_id: str
    """libp2p peer ID (base58)."""

    sector_size: int
    """Sector size in bytes."""


@dataclass
class AskResponse:
    """A provider's current storage ask."""

    price: str
    """Price per GiB per epoch in attoFIL."""

    verified_price: str = "0"
    min_piece_size: int = 0
    max_piece_size: int = 0

    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DealProposal:
    """Parameters of a storage deal proposal."""

    data_cid: str
    wallet: str
    miner: str
    epoch_price: str
    """Price per epoch in attoFIL, as returned by the ask."""

    min_blocks_duration: int
    transfer_type: str = "graphsync"


@dataclass
class RetrievalOffer:
    """A retrieval offer for stored data."""

    root: str
    miner: str
    size: int = 0
    min_price: str = "0"
    payment_interval: int = 0
    payment_interval_increase: int = 0
    miner_peer_id: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# NODE ADAPTER INTERFACE
# ============================================================

class NodeAdapter(ABC):
    """
    Abstract storage node adapter.

    Implementations:
    - LotusRpcAdapter: JSON-RPC over HTTP
    - LotusCommandAdapter: lotus binary for deals/retrievals
    - MockNodeAdapter: in-memory node for tests
    """

    @property
    @abstractmethod
    def node_id(self) -> str:
        """Adapter identifier for logs."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    # --------------------------------------------------------
    # PROVIDER QUERIES
    # --------------------------------------------------------

    @abstractmethod
    async def miner_info(self, miner: str) -> MinerInfo:
        """Peer ID and sector size of a provider."""
        pass

    @abstractmethod
    async def query_ask(self, peer_id: str, miner: str) -> AskResponse:
        """Current ask of a provider. Raises NodeError(REJECTED) on refusal."""
        pass

    @abstractmethod
    async def net_connectedness(self, peer_id: str) -> int:
        """libp2p connectedness to a peer (informational)."""
        pass

    @abstractmethod
    async def list_miners(self) -> List[str]:
        """Every provider address known to the chain."""
        pass

    @abstractmethod
    async def miner_power(self, miner: str) -> int:
        """Quality-adjusted power of a provider in bytes."""
        pass

    # --------------------------------------------------------
    # DEALS
    # --------------------------------------------------------

    @abstractmethod
    async def default_wallet(self) -> str:
        pass

    @abstractmethod
    async def import_file(self, path: str) -> str:
        """Import a local file, return its data CID."""
        pass

    @abstractmethod
    async def start_deal(self, proposal: DealProposal) -> str:
        """Propose a deal, return the deal (proposal) CID."""
        pass

    @abstractmethod
    async def deal_status(self, deal_cid: str) -> Optional[int]:
        """Numeric deal state, or None when no usable status."""
        pass

    # --------------------------------------------------------
    # RETRIEVAL
    # --------------------------------------------------------

    @abstractmethod
    async def find_retrieval_offers(self, data_cid: str) -> List[RetrievalOffer]:
        pass

    @abstractmethod
    async def retrieve(self, offer: RetrievalOffer, wallet: str, dest_path: str) -> None:
        """Retrieve data to `dest_path`. Raises NodeError on failure."""
        pass

    # --------------------------------------------------------
    # CONTEXT MANAGER
    # --------------------------------------------------------

    async def __aenter__(self) -> "NodeAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
