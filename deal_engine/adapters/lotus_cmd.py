"""
Deal Engine - Lotus Command Adapter.

============================================================
PURPOSE
============================================================
"cmd mode": queries still go over JSON-RPC, but deal start
and retrieval run through the lotus binary.

    lotus client deal <data-cid> <miner> <price-FIL> <duration>
    lotus client retrieve <data-cid> <out-path>

============================================================
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from core.constants import ATTO_FIL_PER_FIL

from ..config import NodeConfig, TimeoutConfig
from .base import DealProposal, RetrievalOffer
from .errors import (
    create_command_error,
    create_network_error,
    create_protocol_error,
    create_timeout_error,
)
from .lotus import LotusRpcAdapter


logger = logging.getLogger(__name__)


def atto_fil_to_fil(price: str) -> str:
    """
    Convert an attoFIL amount to a plain FIL decimal string.

    >>> atto_fil_to_fil("500000000")
    '0.0000000005'
    """
    try:
        value = Decimal(price) / Decimal(ATTO_FIL_PER_FIL)
    except InvalidOperation:
        raise create_protocol_error(f"Invalid price: {price!r}", operation="client deal")
    return format(value.normalize(), "f")


class LotusCommandAdapter(LotusRpcAdapter):
    """
    Lotus adapter that shells out for deals and retrievals.
    """

    def __init__(
        self,
        config: NodeConfig,
        timeout_config: Optional[TimeoutConfig] = None,
    ):
        super().__init__(config, timeout_config)
        self._binary = config.lotus_binary

    @property
    def node_id(self) -> str:
        return "lotus_cmd"

    async def start_deal(self, proposal: DealProposal) -> str:
        stdout, _ = await self._run(
            "deal",
            "client",
            "deal",
            proposal.data_cid,
            proposal.miner,
            atto_fil_to_fil(proposal.epoch_price),
            str(proposal.min_blocks_duration),
            timeout=self._timeout_config.rpc_request_timeout_seconds,
        )
        deal_cid = stdout.strip().splitlines()[-1].strip() if stdout.strip() else ""
        if not deal_cid:
            raise create_protocol_error("lotus client deal printed no deal CID", operation="client deal")
        return deal_cid

    async def retrieve(self, offer: RetrievalOffer, wallet: str, dest_path: str) -> None:
        await self._run("retrieve", "client", "retrieve", offer.root, dest_path)

    async def _run(
        self,
        operation: str,
        *args: str,
        timeout: Optional[float] = None,
    ) -> Tuple[str, str]:
        """Run the lotus binary and return (stdout, stderr)."""
        logger.debug(f"Running {self._binary} {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                self._binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise create_network_error(f"cannot run {self._binary}: {e}", operation=operation)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise create_timeout_error(operation=operation, timeout_seconds=timeout)
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        out = stdout.decode(errors="replace")
        err = stderr.decode(errors="replace")
        if process.returncode != 0:
            raise create_command_error(process.returncode, err, operation=operation)
        return out, err
