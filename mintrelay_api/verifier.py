"""
Payment verification policy.

Decides whether a payment receipt entitles the payer to a mint:
- the receipt exists (transaction mined)
- confirmations = current_block - receipt.block_number + 1 >= required
- the receipt contains a Transfer of exactly the expected amount, emitted by
  the payment token and addressed to the payment collector

Pure with respect to chain data: callers fetch the receipt and chain head.
"""

from dataclasses import dataclass
from typing import Optional, Union

from .address import canonical_address
from .chain import Receipt
from .events import TransferEvent, find_transfer


@dataclass(frozen=True)
class PaymentPolicy:
    """What counts as a payment."""

    payment_token: str
    recipient: str
    expected_amount: int
    required_confirmations: int

    def __post_init__(self) -> None:
        if self.expected_amount <= 0:
            raise ValueError("expected_amount must be positive")
        if self.required_confirmations < 1:
            raise ValueError("required_confirmations must be at least 1")
        object.__setattr__(self, "payment_token", canonical_address(self.payment_token))
        object.__setattr__(self, "recipient", canonical_address(self.recipient))


@dataclass(frozen=True)
class Qualifying:
    transfer: TransferEvent
    block_number: int
    confirmations: int


@dataclass(frozen=True)
class InsufficientConfirmations:
    actual: int
    required: int


@dataclass(frozen=True)
class NoMatchingTransfer:
    reason: str = "No matching USDC transfer of expected amount to token contract found in tx logs"


@dataclass(frozen=True)
class NotFound:
    pass


Verdict = Union[Qualifying, InsufficientConfirmations, NoMatchingTransfer, NotFound]


def count_confirmations(current_block: int, receipt_block: int) -> int:
    """Blocks on top of (and including) the receipt's block."""
    return current_block - receipt_block + 1


class PaymentVerifier:
    """Applies a PaymentPolicy to receipts."""

    def __init__(self, policy: PaymentPolicy):
        self.policy = policy

    def evaluate(self, receipt: Optional[Receipt], current_block: int) -> Verdict:
        """
        Full mint-path decision.

        Confirmation depth is checked before the log scan.
        """
        if receipt is None:
            return NotFound()

        confirmations = count_confirmations(current_block, receipt.block_number)
        if confirmations < self.policy.required_confirmations:
            return InsufficientConfirmations(
                actual=confirmations,
                required=self.policy.required_confirmations,
            )

        if not receipt.succeeded:
            return NoMatchingTransfer(reason="Payment transaction reverted")

        transfer = find_transfer(
            receipt.logs,
            token=self.policy.payment_token,
            amount=self.policy.expected_amount,
            recipient=self.policy.recipient,
        )
        if transfer is None:
            return NoMatchingTransfer()

        return Qualifying(
            transfer=transfer,
            block_number=receipt.block_number,
            confirmations=confirmations,
        )

    def match(self, receipt: Receipt, recipient: Optional[str] = None) -> Optional[TransferEvent]:
        """
        Verify-only decision: first transfer of the expected amount.

        No confirmation requirement; `recipient` narrows the match when given.
        """
        if not receipt.succeeded:
            return None
        return find_transfer(
            receipt.logs,
            token=self.policy.payment_token,
            amount=self.policy.expected_amount,
            recipient=recipient,
        )
