"""
Node Adapter Factory.

============================================================
PURPOSE
============================================================
Creates the node adapter matching the configured mode.

- RPC mode (default): LotusRpcAdapter
- Command mode:       LotusCommandAdapter

The mock adapter is constructed directly by tests.

============================================================
"""

import logging
from typing import Optional

from ..config import NodeConfig, TimeoutConfig
from .base import NodeAdapter
from .lotus import LotusRpcAdapter
from .lotus_cmd import LotusCommandAdapter


logger = logging.getLogger(__name__)


def create_node_adapter(
    config: NodeConfig,
    timeout_config: Optional[TimeoutConfig] = None,
) -> NodeAdapter:
    """
    Create a node adapter for the configured mode.

    Args:
        config: Node configuration
        timeout_config: Timeout configuration

    Returns:
        Unconnected NodeAdapter
    """
    if config.cmd_mode:
        logger.info(f"Using lotus command adapter ({config.lotus_binary})")
        return LotusCommandAdapter(config, timeout_config)

    logger.info(f"Using lotus RPC adapter ({config.api_url})")
    return LotusRpcAdapter(config, timeout_config)
