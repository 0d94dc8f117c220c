"""
Payment verification and mint orchestration.

Two entry points share the chain reader and verifier:
- verify_payment: read-only check, safe to retry at any time
- verify_and_mint: full policy check, ledger mark, mint, ledger completion

Mint-path sequencing: the payment hash is marked in the ledger before the
mint is submitted, so a concurrent duplicate request aborts before spending
gas. A mark is retracted only when no mint can have landed (not broadcast,
or mined and reverted). If the mint was broadcast but its outcome is
unknown, the mark is kept for manual reconciliation.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .address import canonical_address, is_address, normalize_tx_hash
from .chain import ChainReader
from .config import Settings
from .events import TransferEvent
from .exceptions import (
    AlreadyProcessedError,
    InsufficientConfirmationsError,
    InvalidRequestError,
    MintOutcomeUnknownError,
    NoMatchingTransferError,
    ReceiptNotFoundError,
    RelayerNotConfiguredError,
)
from .ledger import IdempotencyLedger, build_ledger
from .minter import MintOutcome, Minter
from .verifier import (
    InsufficientConfirmations,
    NoMatchingTransfer,
    PaymentPolicy,
    PaymentVerifier,
    Qualifying,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class PaymentCheck:
    """Result of a verify-only request."""

    valid: bool
    transfer: Optional[TransferEvent] = None
    block_number: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class MintResult:
    """Successful verify-and-mint."""

    mint: MintOutcome
    payment: TransferEvent
    payment_block: int


class MintRelayService:
    """Request orchestration for /verify and /mint."""

    def __init__(
        self,
        chain: ChainReader,
        verifier: PaymentVerifier,
        ledger: IdempotencyLedger,
        minter: Optional[Minter],
        mint_amount: int,
    ):
        self.chain = chain
        self.verifier = verifier
        self.ledger = ledger
        self.minter = minter
        self.mint_amount = mint_amount

    async def verify_payment(self, tx_hash: Optional[str], to: Optional[str] = None) -> PaymentCheck:
        """
        Check whether a payment transaction contains a transfer of the expected amount.

        Raises:
            InvalidRequestError: Missing/malformed txHash or recipient
            ReceiptNotFoundError: Transaction not mined yet
            UpstreamUnavailableError: RPC failure
        """
        if not tx_hash:
            raise InvalidRequestError("txHash required")
        try:
            tx_hash = normalize_tx_hash(tx_hash)
        except ValueError as e:
            raise InvalidRequestError(str(e)) from e
        if to is not None and not is_address(to):
            raise InvalidRequestError("Invalid recipient address")

        receipt = await self.chain.get_receipt(tx_hash)
        if receipt is None:
            raise ReceiptNotFoundError("Transaction not found yet")

        transfer = self.verifier.match(receipt, recipient=to)
        if transfer is None:
            return PaymentCheck(valid=False, reason="No matching USDC transfer found in tx logs")

        return PaymentCheck(valid=True, transfer=transfer, block_number=receipt.block_number)

    async def verify_and_mint(self, tx_hash: Optional[str], beneficiary: Optional[str]) -> MintResult:
        """
        Verify a payment and mint to the beneficiary, at most once per payment.

        Raises:
            InvalidRequestError: Missing/malformed txHash or beneficiary
            AlreadyProcessedError: Payment already consumed (or being consumed)
            RelayerNotConfiguredError: No relayer key
            ReceiptNotFoundError: Payment not mined yet
            InsufficientConfirmationsError: Payment not deep enough yet
            NoMatchingTransferError: Receipt holds no qualifying transfer
            UpstreamUnavailableError: RPC failure before minting
            MintError: Mint failed, reverted, or has an unknown outcome
        """
        if not tx_hash or not beneficiary:
            raise InvalidRequestError("txHash and beneficiary required")
        try:
            tx_hash = normalize_tx_hash(tx_hash)
        except ValueError as e:
            raise InvalidRequestError(str(e)) from e
        try:
            beneficiary = canonical_address(beneficiary)
        except ValueError as e:
            raise InvalidRequestError("Invalid beneficiary address") from e

        log = logger.bind(tx_hash=tx_hash, beneficiary=beneficiary)

        if await self.ledger.is_marked(tx_hash):
            log.info("mint.already_processed")
            raise AlreadyProcessedError(tx_hash)

        if self.minter is None:
            raise RelayerNotConfiguredError()

        receipt = await self.chain.get_receipt(tx_hash)
        if receipt is None:
            raise ReceiptNotFoundError("Transaction receipt not found yet")

        current_block = await self.chain.get_block_number()
        verdict = self.verifier.evaluate(receipt, current_block)

        if isinstance(verdict, InsufficientConfirmations):
            raise InsufficientConfirmationsError(verdict.actual, verdict.required)
        if isinstance(verdict, NoMatchingTransfer):
            raise NoMatchingTransferError(verdict.reason)
        if not isinstance(verdict, Qualifying):
            raise ReceiptNotFoundError("Transaction receipt not found yet")

        if not await self.ledger.mark(tx_hash):
            log.info("mint.race_lost")
            raise AlreadyProcessedError(tx_hash)

        log.info(
            "mint.payment_verified",
            payment_from=verdict.transfer.from_address,
            payment_value=str(verdict.transfer.value),
            block_number=verdict.block_number,
            confirmations=verdict.confirmations,
        )

        try:
            outcome = await self.minter.mint(beneficiary, self.mint_amount)
        except MintOutcomeUnknownError as e:
            log.error(
                "mint.outcome_unknown",
                mint_tx_hash=e.tx_hash,
                error=e.reason,
                action="payment stays marked; reconcile manually",
            )
            raise
        except Exception:
            if await self.ledger.unmark(tx_hash):
                log.info("ledger.mark_retracted")
            raise

        await self.ledger.complete(tx_hash, outcome.tx_hash)

        return MintResult(mint=outcome, payment=verdict.transfer, payment_block=verdict.block_number)

    async def close(self) -> None:
        await self.ledger.close()


def build_service(settings: Settings) -> MintRelayService:
    """
    Wire the service from settings.

    Raises:
        ValueError: Contract addresses missing or invalid, bad amounts
    """
    if not settings.token_contract or not settings.usdc_contract:
        raise ValueError("TOKEN_CONTRACT and USDC_CONTRACT must be configured")

    chain = ChainReader(settings.base_rpc, timeout=settings.rpc_timeout_seconds)
    policy = PaymentPolicy(
        payment_token=settings.usdc_contract,
        recipient=settings.token_contract,
        expected_amount=settings.expected_payment_units,
        required_confirmations=settings.required_confirmations,
    )
    ledger = build_ledger(
        upstash_url=settings.upstash_redis_rest_url,
        upstash_token=settings.upstash_redis_rest_token,
        database_url=settings.ledger_database_url,
        ttl_seconds=settings.processed_ttl_seconds,
    )

    minter = None
    if settings.relayer_private_key:
        minter = Minter(
            chain.w3,
            token_address=settings.token_contract,
            private_key=settings.relayer_private_key,
            chain_id=settings.chain_id,
            rpc_timeout=settings.rpc_timeout_seconds,
            receipt_timeout=settings.mint_timeout_seconds,
        )
    else:
        logger.warning("minter.disabled", reason="RELAYER_PRIVATE_KEY not configured")

    return MintRelayService(
        chain=chain,
        verifier=PaymentVerifier(policy),
        ledger=ledger,
        minter=minter,
        mint_amount=settings.mint_units,
    )
