"""
Relayer that mints tokens to beneficiaries of verified payments.

The relayer key is the only credential allowed to call mint() on the token
contract. Submissions from this process are serialized so that nonces are
assigned one at a time.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from .address import canonical_address
from .exceptions import MintOutcomeUnknownError, MintRevertedError, MintSubmissionError
from .units import apply_gas_buffer

logger = structlog.get_logger()


TOKEN_MINT_ABI = [
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "mint",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# Used when gas estimation itself fails
DEFAULT_MINT_GAS_LIMIT = 250_000


@dataclass(frozen=True)
class MintOutcome:
    """Confirmed, successful mint."""

    tx_hash: str
    block_number: int
    gas_used: Optional[int] = None
    gas_limit: Optional[int] = None


class Minter:
    """Signs and submits mint() calls with the relayer key."""

    def __init__(
        self,
        w3: AsyncWeb3,
        token_address: str,
        private_key: str,
        chain_id: Optional[int] = None,
        rpc_timeout: float = 30.0,
        receipt_timeout: float = 180.0,
    ):
        """
        Initialize minter.

        Args:
            w3: AsyncWeb3 instance
            token_address: Token contract exposing mint(address,uint256)
            private_key: Relayer private key (0x-prefixed hex)
            chain_id: Chain ID for signing (fetched from the RPC when None)
            rpc_timeout: Timeout for estimate/nonce/broadcast calls in seconds
            receipt_timeout: Max wait for the mint to be mined in seconds
        """
        self.w3 = w3
        self.token_address = Web3.to_checksum_address(token_address)
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.chain_id = chain_id
        self.rpc_timeout = rpc_timeout
        self.receipt_timeout = receipt_timeout
        self.contract = self.w3.eth.contract(address=self.token_address, abi=TOKEN_MINT_ABI)
        self._lock = asyncio.Lock()

        logger.info(
            "minter.initialized",
            relayer=self.address,
            token=self.token_address,
            receipt_timeout=receipt_timeout,
        )

    async def _rpc(self, awaitable: Any) -> Any:
        return await asyncio.wait_for(awaitable, timeout=self.rpc_timeout)

    async def _get_chain_id(self) -> int:
        if self.chain_id is None:
            self.chain_id = int(await self._rpc(self.w3.eth.chain_id))
        return self.chain_id

    async def estimate_gas(self, beneficiary: str, amount: int) -> int:
        """Gas limit for mint(): estimate + 20%, or the fixed default."""
        try:
            estimate = await self._rpc(
                self.contract.functions.mint(beneficiary, amount).estimate_gas({"from": self.address})
            )
        except Exception as e:
            logger.warning(
                "mint.gas_estimation_failed",
                error=str(e),
                fallback_gas_limit=DEFAULT_MINT_GAS_LIMIT,
            )
            return DEFAULT_MINT_GAS_LIMIT

        gas_limit = apply_gas_buffer(int(estimate))
        logger.debug("mint.gas_estimated", estimated_gas=estimate, gas_limit=gas_limit)
        return gas_limit

    async def mint(self, beneficiary: str, amount: int) -> MintOutcome:
        """
        Mint `amount` base units to `beneficiary` and wait for the receipt.

        Raises:
            MintSubmissionError: Transaction was not broadcast
            MintOutcomeUnknownError: Broadcast, but the receipt could not be obtained
            MintRevertedError: Mined with status 0
        """
        beneficiary = canonical_address(beneficiary)
        gas_limit = await self.estimate_gas(beneficiary, amount)

        async with self._lock:
            try:
                nonce = await self._rpc(self.w3.eth.get_transaction_count(self.address, "pending"))
                chain_id = await self._get_chain_id()
                transaction = await self._rpc(
                    self.contract.functions.mint(beneficiary, amount).build_transaction(
                        {
                            "from": self.address,
                            "nonce": nonce,
                            "gas": gas_limit,
                            "chainId": chain_id,
                        }
                    )
                )
                signed = self.account.sign_transaction(transaction)
            except Exception as e:
                logger.error("mint.build_failed", error=str(e), beneficiary=beneficiary)
                raise MintSubmissionError(f"Mint transaction could not be built: {e}") from e

            signed_hash = Web3.to_hex(signed.hash)
            try:
                tx_hash = Web3.to_hex(await self._rpc(self.w3.eth.send_raw_transaction(signed.raw_transaction)))
            except asyncio.TimeoutError as e:
                logger.error("mint.broadcast_timeout", tx_hash=signed_hash, nonce=nonce)
                raise MintOutcomeUnknownError(
                    f"Broadcast timed out; mint {signed_hash} may still be mined",
                    tx_hash=signed_hash,
                ) from e
            except Exception as e:
                logger.error("mint.submission_failed", error=str(e), nonce=nonce)
                raise MintSubmissionError(f"Mint transaction submission failed: {e}") from e

        logger.info(
            "mint.submitted",
            tx_hash=tx_hash,
            beneficiary=beneficiary,
            amount=str(amount),
            nonce=nonce,
            gas_limit=gas_limit,
        )

        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except TimeExhausted as e:
            logger.error("mint.confirmation_timeout", tx_hash=tx_hash, timeout=self.receipt_timeout)
            raise MintOutcomeUnknownError(
                f"Mint transaction {tx_hash} not mined within {self.receipt_timeout:g}s",
                tx_hash=tx_hash,
            ) from e
        except Exception as e:
            logger.error("mint.receipt_failed", tx_hash=tx_hash, error=str(e))
            raise MintOutcomeUnknownError(
                f"Could not fetch receipt for mint transaction {tx_hash}: {e}",
                tx_hash=tx_hash,
            ) from e

        block_number = int(receipt["blockNumber"])
        if receipt["status"] != 1:
            logger.error(
                "mint.reverted",
                tx_hash=tx_hash,
                block_number=block_number,
                gas_used=receipt.get("gasUsed"),
            )
            raise MintRevertedError(
                "Mint transaction failed",
                tx_hash=tx_hash,
                block_number=block_number,
            )

        logger.info(
            "mint.confirmed",
            tx_hash=tx_hash,
            block_number=block_number,
            gas_used=receipt.get("gasUsed"),
        )
        return MintOutcome(
            tx_hash=tx_hash,
            block_number=block_number,
            gas_used=receipt.get("gasUsed"),
            gas_limit=gas_limit,
        )
