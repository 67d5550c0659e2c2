"""
Deal Engine - Lotus JSON-RPC Adapter.

============================================================
PURPOSE
============================================================
Production adapter for a Lotus full node's JSON-RPC API.

FEATURES:
- Bearer token authentication
- Per-call timeouts (retrieval runs without one; the
  retrieval verifier bounds it)
- JSON-RPC error mapping to NodeError
- Peer ID normalisation to base58

============================================================
"""

import asyncio
import base64
import binascii
import itertools
import logging
from typing import Any, Dict, List, Optional

import aiohttp
import base58

from ..config import NodeConfig, TimeoutConfig
from .base import (
    AskResponse,
    DealProposal,
    MinerInfo,
    NodeAdapter,
    RetrievalOffer,
)
from .errors import (
    ErrorCategory,
    NodeError,
    create_network_error,
    create_protocol_error,
    create_timeout_error,
    map_rpc_error,
)


logger = logging.getLogger(__name__)


# ============================================================
# PEER ID HELPERS
# ============================================================

_MULTIHASH_CODES = {0x00, 0x12}
"""identity and sha2-256, the two hashes libp2p peer IDs use."""


def is_b58_multihash(value: str) -> bool:
    """Check whether `value` is a base58btc-encoded multihash."""
    if not value:
        return False
    try:
        decoded = base58.b58decode(value)
    except ValueError:
        return False
    if len(decoded) < 2:
        return False
    return decoded[0] in _MULTIHASH_CODES and decoded[1] == len(decoded) - 2


def normalize_peer_id(raw: str) -> str:
    """
    Return a base58 peer ID.

    Some Lotus versions return the peer ID as base64 of the raw
    multihash bytes instead of the usual base58 string.

    Raises:
        NodeError: If the value is neither form
    """
    if is_b58_multihash(raw):
        return raw
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise create_protocol_error(f"Unrecognised peer ID: {raw!r}", operation="StateMinerInfo")
    return base58.b58encode(decoded).decode("ascii")


def cid_ref(cid: str) -> Dict[str, str]:
    """IPLD link form of a CID."""
    return {"/": cid}


def cid_from_ref(value: Any, operation: str) -> str:
    """Extract a CID from a link (``{"/": cid}``) or plain string."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict):
        if "/" in value:
            return str(value["/"])
        if "Root" in value:
            return cid_from_ref(value["Root"], operation)
    raise create_protocol_error(f"No CID in response: {value!r}", operation=operation)


def build_retrieval_order(offer: RetrievalOffer, wallet: str) -> Dict[str, Any]:
    """Retrieval order for Filecoin.ClientRetrieve from an offer."""
    return {
        "Root": cid_ref(offer.root),
        "Piece": None,
        "Size": offer.size,
        "Total": offer.min_price,
        "UnsealPrice": "0",
        "PaymentInterval": offer.payment_interval,
        "PaymentIntervalIncrease": offer.payment_interval_increase,
        "Client": wallet,
        "Miner": offer.miner,
        "MinerPeer": {
            "Address": offer.miner,
            "ID": offer.miner_peer_id,
            "PieceCID": None,
        },
    }


def parse_retrieval_offer(data: Dict[str, Any]) -> RetrievalOffer:
    """Normalise a ClientFindData entry."""
    peer = data.get("MinerPeer") or {}
    return RetrievalOffer(
        root=cid_from_ref(data.get("Root"), "ClientFindData"),
        miner=str(data.get("Miner", "")),
        size=int(data.get("Size", 0) or 0),
        min_price=str(data.get("MinPrice", "0")),
        payment_interval=int(data.get("PaymentInterval", 0) or 0),
        payment_interval_increase=int(data.get("PaymentIntervalIncrease", 0) or 0),
        miner_peer_id=str(peer.get("ID") or data.get("MinerPeerID") or ""),
        raw=dict(data),
    )


# ============================================================
# LOTUS RPC ADAPTER
# ============================================================

class LotusRpcAdapter(NodeAdapter):
    """
    Lotus full node adapter.

    Implements the NodeAdapter interface over Lotus JSON-RPC.
    """

    def __init__(
        self,
        config: NodeConfig,
        timeout_config: Optional[TimeoutConfig] = None,
    ):
        """
        Initialize Lotus adapter.

        Args:
            config: Node configuration
            timeout_config: Timeout configuration
        """
        self._config = config
        self._timeout_config = timeout_config or TimeoutConfig()
        self._url = config.api_url
        self._token = config.api_token

        self._session: Optional[aiohttp.ClientSession] = None
        self._connected = False
        self._request_ids = itertools.count(1)

    @property
    def node_id(self) -> str:
        return "lotus_rpc"

    @property
    def is_connected(self) -> bool:
        return self._connected and self._session is not None

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self._session is not None:
            await self.disconnect()

        timeout = aiohttp.ClientTimeout(total=self._timeout_config.rpc_request_timeout_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout)
        self._connected = True
        logger.info(f"Lotus RPC session opened ({self._url})")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        self._connected = False
        if self._session:
            await self._session.close()
            self._session = None
        logger.info("Lotus RPC session closed")

    # --------------------------------------------------------
    # PROVIDER QUERIES
    # --------------------------------------------------------

    async def miner_info(self, miner: str) -> MinerInfo:
        result = await self._call("StateMinerInfo", [miner, None])
        if not isinstance(result, dict) or "PeerId" not in result:
            raise create_protocol_error(f"No miner info for {miner}", operation="StateMinerInfo")

        return MinerInfo(
            peer_id=normalize_peer_id(str(result["PeerId"])),
            sector_size=int(result.get("SectorSize", 0)),
        )

    async def query_ask(self, peer_id: str, miner: str) -> AskResponse:
        result = await self._call("ClientQueryAsk", [peer_id, miner])
        if not isinstance(result, dict):
            raise create_protocol_error(f"Empty ask from {miner}", operation="ClientQueryAsk")

        # Older nodes wrap the ask as {"Ask": {...}, "Signature": ...}
        ask = result.get("Ask", result)
        return AskResponse(
            price=str(ask.get("Price", "0")),
            verified_price=str(ask.get("VerifiedPrice", "0")),
            min_piece_size=int(ask.get("MinPieceSize", 0) or 0),
            max_piece_size=int(ask.get("MaxPieceSize", 0) or 0),
            raw=dict(result),
        )

    async def net_connectedness(self, peer_id: str) -> int:
        result = await self._call("NetConnectedness", [peer_id])
        return int(result or 0)

    async def list_miners(self) -> List[str]:
        result = await self._call("StateListMiners", [None])
        return [str(m) for m in (result or [])]

    async def miner_power(self, miner: str) -> int:
        result = await self._call("StateMinerPower", [miner, None])
        try:
            return int(result["MinerPower"]["QualityAdjPower"])
        except (KeyError, TypeError, ValueError):
            raise create_protocol_error(f"No power for {miner}", operation="StateMinerPower")

    # --------------------------------------------------------
    # DEALS
    # --------------------------------------------------------

    async def default_wallet(self) -> str:
        result = await self._call("WalletDefaultAddress", [])
        if not result:
            raise create_protocol_error("No default wallet", operation="WalletDefaultAddress")
        return str(result)

    async def import_file(self, path: str) -> str:
        result = await self._call("ClientImport", [{"Path": path, "IsCAR": False}])
        return cid_from_ref(result, "ClientImport")

    async def start_deal(self, proposal: DealProposal) -> str:
        data_ref = {
            "Data": {
                "TransferType": proposal.transfer_type,
                "Root": cid_ref(proposal.data_cid),
                "PieceCid": None,
                "PieceSize": 0,
            },
            "Wallet": proposal.wallet,
            "Miner": proposal.miner,
            "EpochPrice": proposal.epoch_price,
            "MinBlocksDuration": proposal.min_blocks_duration,
        }
        result = await self._call("ClientStartDeal", [data_ref])
        return cid_from_ref(result, "ClientStartDeal")

    async def deal_status(self, deal_cid: str) -> Optional[int]:
        result = await self._call("ClientGetDealInfo", [cid_ref(deal_cid)])
        if not isinstance(result, dict) or result.get("State") is None:
            return None
        return int(result["State"])

    # --------------------------------------------------------
    # RETRIEVAL
    # --------------------------------------------------------

    async def find_retrieval_offers(self, data_cid: str) -> List[RetrievalOffer]:
        result = await self._call("ClientFindData", [cid_ref(data_cid), None])
        offers = []
        for entry in result or []:
            if entry.get("Err"):
                logger.debug(f"ClientFindData [{data_cid}] offer error: {entry['Err']}")
                continue
            offers.append(parse_retrieval_offer(entry))
        return offers

    async def retrieve(self, offer: RetrievalOffer, wallet: str, dest_path: str) -> None:
        await self._call(
            "ClientRetrieve",
            [build_retrieval_order(offer, wallet), {"Path": dest_path, "IsCAR": False}],
            timeout=aiohttp.ClientTimeout(total=None),
        )

    # --------------------------------------------------------
    # TRANSPORT
    # --------------------------------------------------------

    async def _call(
        self,
        method: str,
        params: List[Any],
        timeout: Optional[aiohttp.ClientTimeout] = None,
    ) -> Any:
        """Make a JSON-RPC call and return its result."""
        if not self._session:
            raise create_network_error("Not connected", operation=method)

        payload = {
            "jsonrpc": "2.0",
            "method": f"Filecoin.{method}",
            "params": params,
            "id": next(self._request_ids),
        }
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            async with self._session.post(
                self._url,
                json=payload,
                headers=headers,
                timeout=timeout,
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    raise NodeError(
                        f"HTTP {response.status}: {text[:200]}",
                        category=map_http_status(response.status),
                        code=response.status,
                        operation=method,
                    )
                data = await response.json(content_type=None)

        except aiohttp.ClientError as e:
            raise create_network_error(str(e), operation=method)
        except asyncio.TimeoutError:
            raise create_timeout_error(operation=method)

        if not isinstance(data, dict):
            raise create_protocol_error(f"Malformed response: {data!r}", operation=method)
        if data.get("error"):
            raise map_rpc_error(data["error"], operation=method)

        return data.get("result")


def map_http_status(status: int) -> ErrorCategory:
    """Error category for a non-200 HTTP status."""
    if status in (401, 403):
        return ErrorCategory.REJECTED
    if status == 404:
        return ErrorCategory.NOT_FOUND
    return ErrorCategory.NETWORK
