"""
Read-only chain access: transaction receipts and chain head.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import structlog
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound

from .exceptions import UpstreamUnavailableError

logger = structlog.get_logger()


@dataclass(frozen=True)
class RawLog:
    """Undecoded log entry as emitted in a receipt."""

    address: str
    topics: tuple[bytes, ...]
    data: bytes
    log_index: Optional[int] = None

    @classmethod
    def from_web3(cls, log: Mapping[str, Any]) -> "RawLog":
        return cls(
            address=str(log["address"]),
            topics=tuple(bytes(HexBytes(t)) for t in log.get("topics", [])),
            data=bytes(HexBytes(log.get("data", b""))),
            log_index=log.get("logIndex"),
        )


@dataclass(frozen=True)
class Receipt:
    """Mined transaction outcome."""

    tx_hash: str
    block_number: int
    status: int
    logs: tuple[RawLog, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_web3(cls, receipt: Mapping[str, Any]) -> "Receipt":
        return cls(
            tx_hash=AsyncWeb3.to_hex(receipt["transactionHash"]),
            block_number=int(receipt["blockNumber"]),
            status=int(receipt["status"]),
            logs=tuple(RawLog.from_web3(log) for log in receipt.get("logs", [])),
        )


class ChainReader:
    """
    Async read-only RPC client.

    Every call is bounded by `timeout`; RPC errors and timeouts surface as
    UpstreamUnavailableError so they are never mistaken for "not found".
    """

    def __init__(self, rpc_url: str, timeout: float = 30.0, w3: Optional[AsyncWeb3] = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))

    async def _call(self, what: str, awaitable: Any) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except TransactionNotFound:
            raise
        except asyncio.TimeoutError as e:
            logger.warning("chain.timeout", call=what, timeout=self.timeout)
            raise UpstreamUnavailableError(f"RPC timeout during {what}") from e
        except Exception as e:
            logger.warning("chain.rpc_error", call=what, error=str(e))
            raise UpstreamUnavailableError(f"RPC error during {what}: {e}") from e

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """
        Fetch a transaction receipt.

        Returns:
            Receipt, or None if the transaction is pending or unknown

        Raises:
            UpstreamUnavailableError: RPC unreachable, erroring or timed out
        """
        try:
            raw = await self._call(
                "get_transaction_receipt",
                self.w3.eth.get_transaction_receipt(tx_hash),
            )
        except TransactionNotFound:
            return None

        if raw is None or raw.get("blockNumber") is None:
            return None
        return Receipt.from_web3(raw)

    async def get_block_number(self) -> int:
        """Current chain head block number."""
        return int(await self._call("block_number", self.w3.eth.block_number))

    async def check_connectivity(self) -> bool:
        """Check if the RPC is reachable."""
        try:
            await self.get_block_number()
            return True
        except UpstreamUnavailableError:
            return False
