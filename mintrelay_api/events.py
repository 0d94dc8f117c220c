"""
ERC-20 Transfer event decoding.

Transfer event: Transfer(address indexed from, address indexed to, uint256 value)
- topics[0]: event signature hash
- topics[1]: from address (indexed, padded to 32 bytes)
- topics[2]: to address (indexed, padded to 32 bytes)
- data: value (uint256)
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address

from .address import same_address
from .chain import RawLog

TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"
TRANSFER_TOPIC = keccak(text=TRANSFER_EVENT_SIGNATURE)


@dataclass(frozen=True)
class TransferEvent:
    """Decoded ERC-20 transfer."""

    from_address: str
    to_address: str
    value: int
    log_index: Optional[int] = None


def decode_transfer(log: RawLog) -> Optional[TransferEvent]:
    """
    Decode a raw log as an ERC-20 Transfer.

    Returns None when the log is not a Transfer (wrong signature, ERC-721
    style 4-topic transfer, malformed padding or data).
    """
    if len(log.topics) != 3 or log.topics[0] != TRANSFER_TOPIC:
        return None
    if len(log.data) != 32:
        return None

    try:
        (from_address,) = decode(["address"], log.topics[1])
        (to_address,) = decode(["address"], log.topics[2])
        (value,) = decode(["uint256"], log.data)
    except DecodingError:
        return None

    return TransferEvent(
        from_address=to_checksum_address(from_address),
        to_address=to_checksum_address(to_address),
        value=value,
        log_index=log.log_index,
    )


def find_transfer(
    logs: Iterable[RawLog],
    token: str,
    amount: int,
    recipient: Optional[str] = None,
) -> Optional[TransferEvent]:
    """
    Return the first transfer of exactly `amount` emitted by `token`.

    Logs are scanned in receipt order. Logs from other contracts are skipped
    before decoding; logs that fail to decode are skipped. When `recipient`
    is given the transfer must also be addressed to it.
    """
    for log in logs:
        if not same_address(log.address, token):
            continue

        transfer = decode_transfer(log)
        if transfer is None:
            continue

        if transfer.value != amount:
            continue
        if recipient is not None and not same_address(transfer.to_address, recipient):
            continue

        return transfer

    return None
