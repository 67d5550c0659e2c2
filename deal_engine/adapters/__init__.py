"""
Deal Engine - Adapters Package.

============================================================
PURPOSE
============================================================
Storage node adapter implementations.

AVAILABLE ADAPTERS:
- LotusRpcAdapter: Lotus JSON-RPC API
- LotusCommandAdapter: lotus binary for deals/retrievals
- MockNodeAdapter: For testing

ERROR HANDLING:
- NodeError: Unified error representation
- ErrorCategory: Standardized error categories

============================================================
"""

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
    map_rpc_error,
)
from .factory import create_node_adapter
from .lotus import LotusRpcAdapter, normalize_peer_id
from .lotus_cmd import LotusCommandAdapter, atto_fil_to_fil
from .mock import MockNodeAdapter


__all__ = [
    # Base
    "NodeAdapter",
    "MinerInfo",
    "AskResponse",
    "DealProposal",
    "RetrievalOffer",
    # Errors
    "NodeError",
    "ErrorCategory",
    "map_rpc_error",
    # Adapters
    "LotusRpcAdapter",
    "LotusCommandAdapter",
    "MockNodeAdapter",
    "normalize_peer_id",
    "atto_fil_to_fil",
    # Factory
    "create_node_adapter",
]
