"""
Synthetic chain data and fakes shared by the tests.
"""

import asyncio
from typing import Optional

from mintrelay_api.chain import RawLog, Receipt
from mintrelay_api.events import TRANSFER_TOPIC
from mintrelay_api.exceptions import LedgerBackendError
from mintrelay_api.ledger import IdempotencyLedger, LedgerBackend, MemoryLedgerBackend
from mintrelay_api.minter import MintOutcome
from mintrelay_api.service import MintRelayService
from mintrelay_api.verifier import PaymentPolicy, PaymentVerifier

TOKEN = "0x1111111111111111111111111111111111111111"
USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
OTHER_TOKEN = "0x5555555555555555555555555555555555555555"
PAYER = "0x2222222222222222222222222222222222222222"
BENEFICIARY = "0x3333333333333333333333333333333333333333"
RELAYER = "0x4444444444444444444444444444444444444444"

TX_HASH = "0x" + "ab" * 32
MINT_TX_HASH = "0x" + "cd" * 32

EXPECTED_AMOUNT = 5_000_000  # 5 USDC at 6 decimals
MINT_AMOUNT = 5000 * 10**18
REQUIRED_CONFIRMATIONS = 2
PAYMENT_BLOCK = 100


def topic_address(address: str) -> bytes:
    return b"\x00" * 12 + bytes.fromhex(address[2:])


def transfer_log(
    token: str = USDC,
    sender: str = PAYER,
    to: str = TOKEN,
    value: int = EXPECTED_AMOUNT,
    index: int = 0,
) -> RawLog:
    return RawLog(
        address=token,
        topics=(TRANSFER_TOPIC, topic_address(sender), topic_address(to)),
        data=value.to_bytes(32, "big"),
        log_index=index,
    )


def make_receipt(
    logs: tuple[RawLog, ...] = (),
    block_number: int = PAYMENT_BLOCK,
    status: int = 1,
    tx_hash: str = TX_HASH,
) -> Receipt:
    return Receipt(tx_hash=tx_hash, block_number=block_number, status=status, logs=tuple(logs))


def make_policy(required_confirmations: int = REQUIRED_CONFIRMATIONS) -> PaymentPolicy:
    return PaymentPolicy(
        payment_token=USDC,
        recipient=TOKEN,
        expected_amount=EXPECTED_AMOUNT,
        required_confirmations=required_confirmations,
    )


class FakeChain:
    """ChainReader stand-in returning canned data."""

    def __init__(
        self,
        receipt: Optional[Receipt] = None,
        block_number: int = PAYMENT_BLOCK + REQUIRED_CONFIRMATIONS - 1,
        error: Optional[Exception] = None,
    ):
        self.receipt = receipt
        self.block_number = block_number
        self.error = error
        self.calls: list[tuple[str, ...]] = []

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        self.calls.append(("get_receipt", tx_hash))
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        return self.receipt

    async def get_block_number(self) -> int:
        self.calls.append(("get_block_number",))
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        return self.block_number

    async def check_connectivity(self) -> bool:
        return self.error is None


class FakeMinter:
    """Minter stand-in counting invocations."""

    address = RELAYER

    def __init__(self, outcome: Optional[MintOutcome] = None, error: Optional[Exception] = None):
        self.outcome = outcome or MintOutcome(tx_hash=MINT_TX_HASH, block_number=205, gas_used=60000)
        self.error = error
        self.calls: list[tuple[str, int]] = []

    async def mint(self, beneficiary: str, amount: int) -> MintOutcome:
        self.calls.append((beneficiary, amount))
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        return self.outcome


class FailingBackend(LedgerBackend):
    """Backend whose store is unreachable."""

    name = "failing"

    async def is_marked(self, tx_hash):
        raise LedgerBackendError("connection refused")

    async def mark(self, tx_hash, ttl_seconds):
        raise LedgerBackendError("connection refused")

    async def unmark(self, tx_hash):
        raise LedgerBackendError("connection refused")

    async def complete(self, tx_hash, mint_tx_hash, ttl_seconds):
        raise LedgerBackendError("connection refused")

    async def status(self, tx_hash):
        raise LedgerBackendError("connection refused")


def qualifying_chain() -> FakeChain:
    """Payment of exactly 5 USDC to the token contract, 2 confirmations."""
    return FakeChain(receipt=make_receipt(logs=(transfer_log(),)))


def make_service(
    chain: Optional[FakeChain] = None,
    minter: Optional[FakeMinter] = None,
    ledger: Optional[IdempotencyLedger] = None,
    with_minter: bool = True,
) -> MintRelayService:
    return MintRelayService(
        chain=chain or qualifying_chain(),
        verifier=PaymentVerifier(make_policy()),
        ledger=ledger or IdempotencyLedger(MemoryLedgerBackend()),
        minter=(minter or FakeMinter()) if with_minter else None,
        mint_amount=MINT_AMOUNT,
    )
